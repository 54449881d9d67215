#!/usr/bin/env python3
"""
Loop Scanner — find wallets running the vault → LP yield loop on-chain
======================================================================

  1. Vault share mints (Transfer from 0x0) → every depositor address
  2. Batched balanceOf on each LP position manager → depositors holding
     at least one LP NFT (a failed slot counts as 0)
  3. First 2 × limit such wallets: fetch positions, run detect_strategy,
     keep only loops
  4. Sort by total APY, highest first, return the first `limit`

Any failure of the scan as a whole is logged and returns [].
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from portfolio import get_all_positions
from strategy_detector import StrategyRoles, detect_strategy
from yield_cli.central_config import Settings, load_settings
from yield_cli.models import DetectedStrategy, Position
from yield_cli.protocol_registry import VaultProtocolConfig, univ3_protocols, vault_protocols
from yield_cli.rpc_helpers import (
    SELECTORS, TRANSFER_TOPIC, ZERO_ADDRESS,
    address_topic as _address_topic,
    encode_address as _encode_address,
    decode_uint as _decode_uint,
    topic_to_address as _topic_to_address,
    eth_get_logs as _eth_get_logs,
    eth_call_many as _eth_call_many,
)

logger = logging.getLogger(__name__)

DEFAULT_SCAN_LIMIT = 8

PositionFetcher = Callable[[str], Awaitable[List[Position]]]


@dataclass(frozen=True)
class DiscoveredWalletStrategy:
    address: str
    strategy: DetectedStrategy


def _scan_vault(settings: Settings, roles: StrategyRoles) -> Optional[VaultProtocolConfig]:
    vaults = vault_protocols(settings.enabled_protocols())
    for vault in vaults:
        if vault.name == roles.vault_protocol:
            return vault
    return vaults[0] if vaults else None


async def vault_depositors(
    rpc_url: str, vault: str, from_block: int = 0, timeout: int = 30
) -> List[str]:
    """Unique share-mint recipients, in order of first mint."""
    logs = await _eth_get_logs(
        rpc_url, vault, [TRANSFER_TOPIC, _address_topic(ZERO_ADDRESS)],
        from_block=from_block, timeout=timeout,
    )
    depositors: List[str] = []
    seen = set()
    for log in logs:
        topics = log.get("topics") or []
        if len(topics) < 3:
            continue
        addr = _topic_to_address(topics[2])
        if addr == ZERO_ADDRESS or addr in seen:
            continue
        seen.add(addr)
        depositors.append(addr)
    return depositors


async def lp_balances(
    rpc_url: str, position_manager: str, wallets: Sequence[str], timeout: int = 20
) -> List[int]:
    """NFT balance per wallet; a failed or undecodable slot is 0."""
    calls = [(position_manager, SELECTORS["balanceOf"] + _encode_address(w)) for w in wallets]
    results = await _eth_call_many(rpc_url, calls, timeout)
    balances = []
    for raw in results:
        try:
            balances.append(_decode_uint(raw) if raw else 0)
        except ValueError:
            balances.append(0)
    return balances


async def _lp_holders(settings: Settings, wallets: List[str]) -> List[str]:
    managers = univ3_protocols(settings.enabled_protocols())
    results = await asyncio.gather(*[
        lp_balances(settings.rpc_url_for(m.network), m.position_manager, wallets, settings.timeout)
        for m in managers
    ], return_exceptions=True)

    per_manager: List[List[int]] = []
    for manager, result in zip(managers, results):
        if isinstance(result, BaseException):
            logger.warning("[%s] LP balance lookup failed: %s", manager.name, result)
            result = [0] * len(wallets)
        per_manager.append(result)
    return [
        wallet for i, wallet in enumerate(wallets)
        if any(balances[i] > 0 for balances in per_manager)
    ]


async def scan_for_loop_strategists(
    limit: int = DEFAULT_SCAN_LIMIT,
    settings: Optional[Settings] = None,
    fetch_positions: Optional[PositionFetcher] = None,
    roles: Optional[StrategyRoles] = None,
) -> List[DiscoveredWalletStrategy]:
    """
    Discover up to `limit` wallets whose positions form a yield loop.

    Args:
        limit: Maximum results; at most 2 × limit wallets are fetched.
            Zero or negative scans nothing.
        settings: Network, protocols and log cursor; loaded when omitted.
        fetch_positions: wallet → positions; defaults to get_all_positions.
        roles: Vault/LP roles; derived from the enabled protocols.
    """
    if limit <= 0:
        return []

    try:
        settings = settings or load_settings()
        roles = roles or StrategyRoles.from_protocols(settings.enabled_protocols())
        vault = _scan_vault(settings, roles)
        if vault is None:
            logger.info("No vault protocol enabled, nothing to scan")
            return []

        depositors = await vault_depositors(
            settings.rpc_url_for(vault.network), vault.vault,
            from_block=settings.log_from_block,
        )
        logger.info("%d %s depositors found", len(depositors), vault.name)
        if not depositors:
            return []

        candidates = (await _lp_holders(settings, depositors))[: 2 * limit]
        logger.info("%d depositors also hold LP NFTs", len(candidates))
        if not candidates:
            return []

        fetch = fetch_positions or (lambda wallet: get_all_positions(wallet, settings))

        async def _detect(wallet: str) -> Optional[DiscoveredWalletStrategy]:
            try:
                strategy = detect_strategy(await fetch(wallet), roles)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Strategy detection for %s failed: %s", wallet, exc)
                return None
            if strategy is None or not strategy.is_loop:
                return None
            return DiscoveredWalletStrategy(address=wallet, strategy=strategy)

        found = [d for d in await asyncio.gather(*[_detect(w) for w in candidates]) if d]
    except Exception as exc:  # noqa: BLE001
        logger.warning("Loop scan failed: %s", exc)
        return []

    found.sort(key=lambda d: d.strategy.total_apy, reverse=True)
    return found[:limit]
