#!/usr/bin/env python3
"""
Aave V3 Lending Reader
======================

Values a wallet's supplied balances in an Aave V3 market from raw
eth_call reads against the market's PoolDataProvider.

Data Sources (per RPC call):
─────────────────────────────
1. PoolDataProvider.getAllReservesTokens()
   → (string symbol, address token)[] of every listed reserve
2. PoolDataProvider.getUserReserveData(asset, wallet), batched per reserve
   → word 0: currentATokenBalance (raw underlying units)
     word 6: liquidityRate (supply rate, ray = 1e27)
   Ref: https://docs.aave.com/developers/core-contracts/aaveprotocoldataprovider

Yield Formula:
──────────────
  apy          = liquidityRate / 1e27 × 100
  yield_earned = deposited_usd × apy/100 × assumed_age_days/365

The data provider reports no supply time, so every position is dated
assumed_age_days back. Listed reserves missing from the config's reserve
table have no known decimals or price and are skipped.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from yield_cli.central_config import DAYS_PER_YEAR, SECONDS_PER_DAY
from yield_cli.models import Position
from yield_cli.protocol_registry import AaveProtocolConfig, UnderlyingToken
from yield_cli.rpc_helpers import (
    ABI_WORD_BYTES, ABI_WORD_HEX, RAY, RPC_URLS, SELECTORS,
    # Encoding
    encode_address as _encode_address,
    # Decoding
    decode_address as _decode_address,
    decode_uint as _decode_uint,
    # RPC
    eth_call as _eth_call,
    eth_call_many as _eth_call_many,
)

logger = logging.getLogger(__name__)

# getUserReserveData return slots
BALANCE_SLOT = 0
LIQUIDITY_RATE_SLOT = 6


@dataclass(frozen=True)
class UserReserveData:
    balance: int
    liquidity_rate: int


# ── ABI decoding ────────────────────────────────────────────────────────


def decode_reserve_tokens(hex_data: str) -> List[Tuple[str, str]]:
    """
    Decode getAllReservesTokens() into [(symbol, lowercase address), ...].

    Layout (offsets in bytes):
        word 0            → offset of the array
        array word 0      → length n
        array words 1..n  → offset of each tuple, from array word 1
        tuple word 0      → offset of the symbol string, from the tuple
        tuple word 1      → token address

    Raises:
        ValueError: truncated or malformed response.
    """
    array_slot = _decode_uint(hex_data, 0) // ABI_WORD_BYTES
    count = _decode_uint(hex_data, array_slot)
    heads = array_slot + 1

    tokens = []
    for i in range(count):
        tuple_slot = heads + _decode_uint(hex_data, heads + i) // ABI_WORD_BYTES
        string_slot = tuple_slot + _decode_uint(hex_data, tuple_slot) // ABI_WORD_BYTES
        address = _decode_address(hex_data, tuple_slot + 1)
        length = _decode_uint(hex_data, string_slot)
        start = (string_slot + 1) * ABI_WORD_HEX
        raw = hex_data[start:start + length * 2]
        if len(raw) != length * 2:
            raise ValueError(f"Reserve {i}: symbol truncated")
        symbol = bytes.fromhex(raw).decode("utf-8", errors="replace")
        tokens.append((symbol, address))
    return tokens


def decode_user_reserve(hex_data: str) -> UserReserveData:
    """getUserReserveData() → supplied balance and supply rate."""
    return UserReserveData(
        balance=_decode_uint(hex_data, BALANCE_SLOT),
        liquidity_rate=_decode_uint(hex_data, LIQUIDITY_RATE_SLOT),
    )


# ── Pure valuation ──────────────────────────────────────────────────────


def value_aave_reserve(
    reserve: UnderlyingToken,
    data: UserReserveData,
    config: AaveProtocolConfig,
    now: Optional[int] = None,
) -> Optional[Position]:
    """
    Turn one reserve's supplied balance into a Position.

    Returns:
        None for a zero balance, otherwise a lending-style Position whose
        APY is the reserve's current supply rate.
    """
    if data.balance == 0:
        return None

    now = int(time.time()) if now is None else now
    deposited_usd = data.balance / 10 ** reserve.decimals * reserve.price_usd
    apy = data.liquidity_rate / RAY * 100
    yield_earned = deposited_usd * (apy / 100) * (config.assumed_age_days / DAYS_PER_YEAR)

    return Position(
        protocol=config.name,
        asset=reserve.symbol,
        asset_address=reserve.address,
        deposited_amount=data.balance,
        deposited_usd=deposited_usd,
        current_apy=apy,
        yield_earned=yield_earned,
        position_type=config.position_type,
        entry_timestamp=now - config.assumed_age_days * SECONDS_PER_DAY,
    )


# ── Aave Reader ─────────────────────────────────────────────────────────


class AaveReader:
    """
    Reads a wallet's supplied reserves in one Aave V3 market.

    Usage:
        reader = AaveReader(AAVE_V3)
        positions = await reader.read_positions("0x...")
    """

    def __init__(
        self,
        config: AaveProtocolConfig,
        rpc_url: Optional[str] = None,
        timeout: int = 20,
    ):
        self.config = config
        self.rpc_url = rpc_url or RPC_URLS[config.network]
        self.timeout = timeout

    @property
    def protocol(self) -> str:
        return self.config.name

    async def reserve_addresses(self) -> List[str]:
        """Every reserve the market lists, in listing order."""
        raw = await _eth_call(
            self.rpc_url, self.config.data_provider, SELECTORS["getAllReservesTokens"], self.timeout,
        )
        return [address for _symbol, address in decode_reserve_tokens(raw)]

    async def read_positions(self, wallet: str) -> List[Position]:
        """
        Read and value every reserve the wallet supplies.

        Never raises: a failed reserve listing is logged and yields [];
        a failed or undecodable reserve slot drops only that reserve.
        """
        known = {r.address: r for r in self.config.reserves}
        try:
            listed = await self.reserve_addresses()
            assets = [a for a in listed if a in known]
            if len(assets) < len(listed):
                logger.debug("[%s] %d listed reserves have no price, skipped",
                             self.protocol, len(listed) - len(assets))
            if not assets:
                return []

            calls = [
                (self.config.data_provider,
                 SELECTORS["getUserReserveData"] + _encode_address(a) + _encode_address(wallet))
                for a in assets
            ]
            results = await _eth_call_many(self.rpc_url, calls, self.timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] failed to fetch positions for %s: %s", self.protocol, wallet, exc)
            return []

        now = int(time.time())
        positions = []
        for asset, raw in zip(assets, results):
            if not raw:
                logger.debug("[%s] getUserReserveData(%s) failed", self.protocol, asset)
                continue
            try:
                data = decode_user_reserve(raw)
            except ValueError as exc:
                logger.debug("[%s] getUserReserveData(%s) undecodable: %s", self.protocol, asset, exc)
                continue
            position = value_aave_reserve(known[asset], data, self.config, now=now)
            if position is not None:
                positions.append(position)
        return positions

    async def probe(self) -> bool:
        """getAllReservesTokens() answers and decodes → reachable. Never raises."""
        try:
            await self.reserve_addresses()
            return True
        except Exception as exc:  # noqa: BLE001
            logger.info("[%s] probe failed: %s", self.protocol, exc)
            return False
