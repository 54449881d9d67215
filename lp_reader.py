#!/usr/bin/env python3
"""
Concentrated-Liquidity LP Reader for Uniswap V3 Forks
=====================================================

Reads every LP NFT a wallet holds on one V3-fork position manager (Prism,
Kumbaya, …) and values it in USD. No API key, no web3.py: raw eth_call
over httpx, batched where the node allows.

Data Sources (per RPC call):
─────────────────────────────
1. NonfungiblePositionManager.balanceOf(wallet)
2. NonfungiblePositionManager.tokenOfOwnerByIndex(wallet, i)   [batch]
3. NonfungiblePositionManager.positions(tokenId)               [batch]
   Returns: nonce, operator, token0, token1, fee, tickLower, tickUpper,
            liquidity, feeGrowthInside0LastX128, feeGrowthInside1LastX128,
            tokensOwed0, tokensOwed1
   Ref: https://github.com/Uniswap/v3-periphery/blob/main/contracts/NonfungiblePositionManager.sol
4. ERC-20.symbol(), ERC-20.decimals()                          [batch]
5. UniswapV3Factory.getPool(token0, token1, fee)               [batch]
6. Pool.slot0() → sqrtPriceX96, tick                           [batch]
7. eth_getLogs Transfer(0x0 → *, tokenId) → mint block → entry time

Valuation:
──────────
  amounts      : uniswap_math.UniswapV3Math.get_token_amounts_from_liquidity
  USD prices   : uniswap_math.anchor_pair_prices (0.0 without an anchor)
  yield_earned : tokensOwed0/1 valued like the principal
  current_apy  : fee-tier table estimate

Each batch tolerates per-slot failure: a position whose slot failed is
left out, its siblings are still returned.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from uniswap_math import UniswapV3Math, anchor_pair_prices
from yield_cli.central_config import ENTRY_FALLBACK_SECONDS, PROBE_ADDRESS
from yield_cli.models import Position
from yield_cli.protocol_registry import DEFAULT_LP_APY, UniV3ProtocolConfig
from yield_cli.rpc_helpers import (
    RPC_URLS, SELECTORS, TRANSFER_TOPIC, ZERO_ADDRESS,
    # Encoding
    encode_address as _encode_address,
    encode_uint256 as _encode_uint256,
    encode_uint24 as _encode_uint24,
    address_topic as _address_topic,
    uint_topic as _uint_topic,
    # Decoding
    decode_uint as _decode_uint,
    decode_int as _decode_int,
    decode_address as _decode_address,
    decode_string as _decode_string,
    # RPC
    eth_call as _eth_call,
    eth_call_many as _eth_call_many,
    first_log_timestamp as _first_log_timestamp,
    # Symbol normalization
    normalize_symbol as _normalize_symbol,
)

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "???"
DEFAULT_DECIMALS = 18


# ── Decoded on-chain records ────────────────────────────────────────────


@dataclass(frozen=True)
class PositionRecord:
    """The fields of positions(tokenId) the valuation needs."""

    token_id: int
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int
    tokens_owed1: int


@dataclass(frozen=True)
class PoolState:
    sqrt_price_x96: int
    tick: int


@dataclass(frozen=True)
class TokenMeta:
    symbol: str = UNKNOWN_SYMBOL
    decimals: int = DEFAULT_DECIMALS


def decode_position(token_id: int, hex_data: str) -> PositionRecord:
    """Decode a positions(tokenId) return tuple (12 words)."""
    return PositionRecord(
        token_id=token_id,
        token0=_decode_address(hex_data, 2),
        token1=_decode_address(hex_data, 3),
        fee=_decode_uint(hex_data, 4),
        tick_lower=_decode_int(hex_data, 5),
        tick_upper=_decode_int(hex_data, 6),
        liquidity=_decode_uint(hex_data, 7),
        tokens_owed0=_decode_uint(hex_data, 10),
        tokens_owed1=_decode_uint(hex_data, 11),
    )


def decode_slot0(hex_data: str) -> PoolState:
    """slot0() → (sqrtPriceX96, tick); the remaining words are ignored."""
    return PoolState(sqrt_price_x96=_decode_uint(hex_data, 0), tick=_decode_int(hex_data, 1))


def fee_label(fee: int) -> str:
    """Fee tier in hundredths of a bip → "0.30%"."""
    return f"{fee / 10_000:.2f}%"


# ── Pure valuation ──────────────────────────────────────────────────────


def value_lp_position(
    record: PositionRecord,
    pool_state: PoolState,
    token0_meta: TokenMeta,
    token1_meta: TokenMeta,
    protocol: str,
    anchors: Mapping[str, float],
    fee_tier_apy: Mapping[int, float],
    default_apy: float,
    entry_timestamp: int,
    pool_address: str,
    position_type: str = "lp",
) -> Optional[Position]:
    """
    Value one LP NFT. Returns None for zero liquidity.

    Token amounts are always populated; USD fields stay 0.0 when neither
    pool token is a known anchor.

    Raises:
        ValueError: inverted tick range.
    """
    if record.liquidity == 0:
        return None

    d0, d1 = token0_meta.decimals, token1_meta.decimals
    amount0_raw, amount1_raw = UniswapV3Math.get_token_amounts_from_liquidity(
        record.liquidity,
        pool_state.sqrt_price_x96,
        record.tick_lower,
        record.tick_upper,
        tick_current=pool_state.tick,
    )
    amount0 = amount0_raw / 10 ** d0
    amount1 = amount1_raw / 10 ** d1
    fees0 = record.tokens_owed0 / 10 ** d0
    fees1 = record.tokens_owed1 / 10 ** d1

    price0, price1 = anchor_pair_prices(
        record.token0, record.token1, pool_state.sqrt_price_x96, d0, d1, anchors,
    )

    return Position(
        protocol=protocol,
        asset=f"{token0_meta.symbol}/{token1_meta.symbol} {fee_label(record.fee)}",
        asset_address=pool_address,
        deposited_amount=record.liquidity,
        deposited_usd=amount0 * price0 + amount1 * price1,
        current_apy=fee_tier_apy.get(record.fee, default_apy),
        yield_earned=fees0 * price0 + fees1 * price1,
        position_type=position_type,
        entry_timestamp=entry_timestamp,
        tick_lower=record.tick_lower,
        tick_upper=record.tick_upper,
        tick_current=pool_state.tick,
        token0_decimals=d0,
        token1_decimals=d1,
        token0_symbol=token0_meta.symbol,
        token1_symbol=token1_meta.symbol,
        token0_amount=amount0,
        token1_amount=amount1,
        token0_price_usd=price0,
        token1_price_usd=price1,
        fee_token0_amount=fees0,
        fee_token1_amount=fees1,
        position_id=record.token_id,
        token0_address=record.token0,
        token1_address=record.token1,
    )


# ── LP Position Reader ──────────────────────────────────────────────────


class LPPositionReader:
    """
    Reads a wallet's LP NFTs on one Uniswap V3 fork.

    Usage:
        reader = LPPositionReader(PRISM, anchors=default_anchors(3100))
        positions = await reader.read_positions("0x...")
    """

    def __init__(
        self,
        config: UniV3ProtocolConfig,
        anchors: Mapping[str, float],
        rpc_url: Optional[str] = None,
        timeout: int = 20,
        log_from_block: int = 0,
    ):
        self.config = config
        self.anchors = anchors
        self.rpc_url = rpc_url or RPC_URLS[config.network]
        self.timeout = timeout
        self.log_from_block = log_from_block

    @property
    def protocol(self) -> str:
        return self.config.name

    async def _nft_balance(self, owner: str) -> int:
        data = SELECTORS["balanceOf"] + _encode_address(owner)
        raw = await _eth_call(self.rpc_url, self.config.position_manager, data, self.timeout)
        return _decode_uint(raw)

    async def _token_ids(self, wallet: str, count: int) -> List[int]:
        pm = self.config.position_manager
        calls = [
            (pm, SELECTORS["tokenOfOwnerByIndex"] + _encode_address(wallet) + _encode_uint256(i))
            for i in range(count)
        ]
        results = await _eth_call_many(self.rpc_url, calls, self.timeout)

        token_ids = []
        for index, raw in enumerate(results):
            if not raw:
                logger.debug("[%s] tokenOfOwnerByIndex(%d) failed", self.protocol, index)
                continue
            try:
                token_ids.append(_decode_uint(raw))
            except ValueError as exc:
                logger.debug("[%s] tokenOfOwnerByIndex(%d) undecodable: %s", self.protocol, index, exc)
        return token_ids

    async def _position_records(self, token_ids: List[int]) -> List[PositionRecord]:
        pm = self.config.position_manager
        calls = [(pm, SELECTORS["positions"] + _encode_uint256(tid)) for tid in token_ids]
        results = await _eth_call_many(self.rpc_url, calls, self.timeout)

        records = []
        for tid, raw in zip(token_ids, results):
            if not raw:
                logger.debug("[%s] positions(%d) failed", self.protocol, tid)
                continue
            try:
                records.append(decode_position(tid, raw))
            except ValueError as exc:
                logger.debug("[%s] positions(%d) undecodable: %s", self.protocol, tid, exc)
        return records

    async def _token_meta(self, tokens: List[str]) -> Dict[str, TokenMeta]:
        calls = [(t, SELECTORS["symbol"]) for t in tokens]
        calls += [(t, SELECTORS["decimals"]) for t in tokens]
        results = await _eth_call_many(self.rpc_url, calls, self.timeout)
        symbols, decimals = results[:len(tokens)], results[len(tokens):]

        meta = {}
        for token, sym_raw, dec_raw in zip(tokens, symbols, decimals):
            symbol = _normalize_symbol(_decode_string(sym_raw)) if sym_raw else UNKNOWN_SYMBOL
            try:
                dec = _decode_uint(dec_raw) if dec_raw else DEFAULT_DECIMALS
            except ValueError:
                dec = DEFAULT_DECIMALS
            meta[token] = TokenMeta(symbol=symbol or UNKNOWN_SYMBOL, decimals=dec)
        return meta

    async def _pool_addresses(self, records: List[PositionRecord]) -> List[Optional[str]]:
        factory = self.config.factory
        calls = [
            (factory, SELECTORS["getPool"] + _encode_address(r.token0)
             + _encode_address(r.token1) + _encode_uint24(r.fee))
            for r in records
        ]
        results = await _eth_call_many(self.rpc_url, calls, self.timeout)
        pools: List[Optional[str]] = []
        for record, raw in zip(records, results):
            try:
                addr = _decode_address(raw) if raw else None
            except ValueError as exc:
                logger.debug("[%s] getPool for #%d undecodable: %s", self.protocol, record.token_id, exc)
                addr = None
            pools.append(addr if addr and addr != ZERO_ADDRESS else None)
        return pools

    async def _pool_states(self, pools: List[Optional[str]]) -> List[Optional[PoolState]]:
        live = sorted({p for p in pools if p})
        results = await _eth_call_many(self.rpc_url, [(p, SELECTORS["slot0"]) for p in live], self.timeout)
        by_pool: Dict[str, PoolState] = {}
        for pool, raw in zip(live, results):
            if not raw:
                continue
            try:
                by_pool[pool] = decode_slot0(raw)
            except ValueError:
                logger.debug("[%s] slot0 of %s undecodable", self.protocol, pool)
        return [by_pool.get(p) if p else None for p in pools]

    async def mint_timestamp(self, token_id: int, now: Optional[int] = None) -> int:
        """Block time of the NFT's mint (Transfer from 0x0), else one day ago."""
        now = int(time.time()) if now is None else now
        topics = [TRANSFER_TOPIC, _address_topic(ZERO_ADDRESS), None, _uint_topic(token_id)]
        try:
            ts = await _first_log_timestamp(
                self.rpc_url, self.config.position_manager, topics,
                from_block=self.log_from_block, timeout=self.timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("[%s] mint lookup for #%d failed: %s", self.protocol, token_id, exc)
            ts = None
        return ts if ts is not None else now - ENTRY_FALLBACK_SECONDS

    async def read_positions(self, wallet: str) -> List[Position]:
        """
        Read and value every LP NFT the wallet holds here.

        Never raises: a whole-read failure is logged and yields [].
        """
        try:
            count = await self._nft_balance(wallet)
            if count == 0:
                return []

            token_ids = await self._token_ids(wallet, count)
            records = [r for r in await self._position_records(token_ids) if r.liquidity > 0]
            if not records:
                return []

            tokens = sorted({r.token0 for r in records} | {r.token1 for r in records})
            meta, pools = await asyncio.gather(
                self._token_meta(tokens),
                self._pool_addresses(records),
            )
            states = await self._pool_states(pools)
            entries = await asyncio.gather(*[self.mint_timestamp(r.token_id) for r in records])
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] UniV3 read failed for %s: %s", self.protocol, wallet, exc)
            return []

        positions = []
        for record, pool, state, entry in zip(records, pools, states, entries):
            if pool is None or state is None:
                logger.debug("[%s] #%d: pool state unavailable, skipped", self.protocol, record.token_id)
                continue
            try:
                position = value_lp_position(
                    record, state,
                    meta.get(record.token0, TokenMeta()),
                    meta.get(record.token1, TokenMeta()),
                    protocol=self.protocol,
                    anchors=self.anchors,
                    fee_tier_apy=self.config.fee_tier_apy,
                    default_apy=DEFAULT_LP_APY,
                    entry_timestamp=entry,
                    pool_address=pool,
                    position_type=self.config.position_type,
                )
            except ValueError as exc:
                logger.debug("[%s] #%d: valuation failed: %s", self.protocol, record.token_id, exc)
                continue
            if position is not None:
                positions.append(position)
        return positions

    async def probe(self) -> bool:
        """balanceOf(0x…01) on the position manager answers → reachable."""
        try:
            await self._nft_balance(PROBE_ADDRESS)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.info("[%s] probe failed: %s", self.protocol, exc)
            return False
