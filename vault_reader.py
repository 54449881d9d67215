#!/usr/bin/env python3
"""
ERC-4626 Vault Reader
=====================

Values a wallet's share balance in an ERC-4626 vault (e.g. Avon's USDM
vault on MegaETH) from raw eth_call reads. No API key, no web3.py.

Data Sources (per RPC call):
─────────────────────────────
1. Vault.balanceOf(wallet)           → share balance
2. Vault.convertToAssets(shares)     → redeemable underlying amount
   Ref: https://eips.ethereum.org/EIPS/eip-4626
3. eth_getLogs Transfer(0x0 → wallet) on the vault
   → block of the first share mint = entry timestamp

Yield Formula:
──────────────
  age_days     = max((now − entry) / 86400, 0)
  yield_earned = deposited_usd × apy/100 × age_days/365

Simple interest on the current balance; deliberately not compounded.
"""

import logging
import time
from typing import Callable, List, Optional

from yield_cli.central_config import (
    DAYS_PER_YEAR,
    ENTRY_FALLBACK_SECONDS,
    PROBE_ADDRESS,
    SECONDS_PER_DAY,
)
from yield_cli.models import Position
from yield_cli.protocol_registry import VaultProtocolConfig
from yield_cli.rpc_helpers import (
    RPC_URLS, SELECTORS, TRANSFER_TOPIC, ZERO_ADDRESS,
    # Encoding
    encode_address as _encode_address,
    encode_uint256 as _encode_uint256,
    address_topic as _address_topic,
    # Decoding
    decode_uint as _decode_uint,
    # RPC
    eth_call as _eth_call,
    first_log_timestamp as _first_log_timestamp,
)

logger = logging.getLogger(__name__)


# ── Pure valuation ──────────────────────────────────────────────────────


def value_vault_shares(
    shares: int,
    convert_to_assets: Callable[[int], int],
    config: VaultProtocolConfig,
    entry_timestamp: int,
    now: Optional[int] = None,
) -> List[Position]:
    """
    Turn a share balance into at most one Position.

    Args:
        shares: Raw share balance.
        convert_to_assets: shares → raw underlying amount (the vault's rate).
        config: Vault protocol config (underlying decimals, price, APY).
        entry_timestamp: Unix seconds of the first deposit.
        now: Unix seconds; defaults to the wall clock.

    Returns:
        [] for a zero balance, otherwise a single lending-style Position.
    """
    if shares == 0:
        return []

    now = int(time.time()) if now is None else now
    underlying = config.underlying

    assets = convert_to_assets(shares)
    assets_human = assets / 10 ** underlying.decimals
    deposited_usd = assets_human * underlying.price_usd

    age_days = max((now - entry_timestamp) / SECONDS_PER_DAY, 0)
    yield_earned = deposited_usd * (config.apy_estimate / 100) * (age_days / DAYS_PER_YEAR)

    return [
        Position(
            protocol=config.name,
            asset=underlying.symbol,
            asset_address=underlying.address,
            deposited_amount=assets,
            deposited_usd=deposited_usd,
            current_apy=config.apy_estimate,
            yield_earned=yield_earned,
            position_type=config.position_type,
            entry_timestamp=entry_timestamp,
        )
    ]


# ── Vault Reader ────────────────────────────────────────────────────────


class VaultReader:
    """
    Reads one wallet's position in one ERC-4626 vault.

    Usage:
        reader = VaultReader(AVON)
        positions = await reader.read_positions("0x...")
        healthy = await reader.probe()
    """

    def __init__(
        self,
        config: VaultProtocolConfig,
        rpc_url: Optional[str] = None,
        timeout: int = 20,
        log_from_block: int = 0,
    ):
        self.config = config
        self.rpc_url = rpc_url or RPC_URLS[config.network]
        self.timeout = timeout
        self.log_from_block = log_from_block

    @property
    def protocol(self) -> str:
        return self.config.name

    async def _balance_of(self, owner: str) -> int:
        data = SELECTORS["balanceOf"] + _encode_address(owner)
        raw = await _eth_call(self.rpc_url, self.config.vault, data, self.timeout)
        return _decode_uint(raw)

    async def _convert_to_assets(self, shares: int) -> int:
        data = SELECTORS["convertToAssets"] + _encode_uint256(shares)
        raw = await _eth_call(self.rpc_url, self.config.vault, data, self.timeout)
        return _decode_uint(raw)

    async def entry_timestamp(self, wallet: str, now: Optional[int] = None) -> int:
        """First share mint to the wallet, else one day ago."""
        now = int(time.time()) if now is None else now
        topics = [TRANSFER_TOPIC, _address_topic(ZERO_ADDRESS), _address_topic(wallet)]
        try:
            ts = await _first_log_timestamp(
                self.rpc_url, self.config.vault, topics,
                from_block=self.log_from_block, timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("[%s] mint log lookup failed: %s", self.protocol, exc)
            ts = None
        return ts if ts is not None else now - ENTRY_FALLBACK_SECONDS

    async def read_positions(self, wallet: str) -> List[Position]:
        """
        Read and value the wallet's vault shares.

        Never raises: any RPC or decode failure is logged and yields [].
        """
        try:
            shares = await self._balance_of(wallet)
            if shares == 0:
                return []
            assets = await self._convert_to_assets(shares)
            entry = await self.entry_timestamp(wallet)
            return value_vault_shares(shares, lambda _shares: assets, self.config, entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] failed to fetch positions for %s: %s", self.protocol, wallet, exc)
            return []

    async def probe(self) -> bool:
        """balanceOf(0x…01) answers → the vault is reachable. Never raises."""
        try:
            await self._balance_of(PROBE_ADDRESS)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.info("[%s] probe failed: %s", self.protocol, exc)
            return False
