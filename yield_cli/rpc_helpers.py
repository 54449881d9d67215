#!/usr/bin/env python3
"""
RPC Helpers — Shared ABI Encoding/Decoding and JSON-RPC Gateway
================================================================

Low-level EVM read primitives shared by vault_reader.py, lp_reader.py,
aave_reader.py, loop_scanner.py and wallet_activity.py:

  • ABI encoding/decoding (uint256, int256, address, uint24, string)
  • JSON-RPC gateway (eth_call, eth_call_batch, eth_call_many,
    eth_getLogs, eth_getBlockByNumber)
  • Named constants for ABI word sizes, Q-values and event topics

Read-only by construction: nothing here signs or submits transactions.

All constants reference the Ethereum ABI specification:
  https://docs.soliditylang.org/en/latest/abi-spec.html

Terminology:
  • Word:  32 bytes = 256 bits = 64 hex characters
  • Slot:  Position of a 32-byte word in an ABI response
  • Q96:   2^96  — fixed-point denominator for sqrtPriceX96
  • Q256:  2^256 — two's complement boundary for int256
  • RAY:   10^27 — Aave fixed-point rate unit
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

# ── ABI Word Constants ──────────────────────────────────────────────────

ABI_WORD_BYTES = 32          # 1 ABI word = 32 bytes
ABI_WORD_HEX = 64            # 32 bytes × 2 hex chars
ADDRESS_HEX = 40              # 20 bytes × 2 hex chars
ADDRESS_PAD_HEX = 24          # Left padding in a 32-byte slot = 64 - 40
SIGN_BIT = 1 << 255           # Two's complement sign bit for int256

# ── Uniswap V3 Fixed-Point Constants ───────────────────────────────────
# Ref: Uniswap V3 Whitepaper §6.1 — https://uniswap.org/whitepaper-v3.pdf

Q96 = 2 ** 96                # sqrtPriceX96 denominator (FixedPoint96.RESOLUTION)
Q192 = 2 ** 192              # (sqrtPriceX96)^2 denominator
Q256 = 2 ** 256              # int256 overflow boundary

# Aave rates (liquidityRate, variableBorrowRate) are 27-decimal "ray" values
RAY = 10 ** 27

ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX

# ── Symbol Normalization ────────────────────────────────────────────────

SYMBOL_MAP = {
    "USD₮0": "USDT",
    "USD₮": "USDT",
    "USDT0": "USDT",
}


def normalize_symbol(raw_symbol: str) -> str:
    """Normalize on-chain token symbol to common name."""
    cleaned = raw_symbol.strip().strip("\x00")
    return SYMBOL_MAP.get(cleaned, cleaned)


# ── Public RPC Endpoints ────────────────────────────────────────────────
# dRPC public relays, no API key required. Overridable per settings file.

RPC_URLS: dict[str, str] = {
    "megaeth": "https://megaeth.drpc.org",
    "sepolia": "https://sepolia.drpc.org",
}


# ── ABI Function Selectors ──────────────────────────────────────────────
# First 4 bytes of keccak256(function_signature).

SELECTORS: dict[str, str] = {
    # ERC-20 / ERC-721 / ERC-4626 shared
    "balanceOf":              "0x70a08231",  # balanceOf(address)

    # ERC-4626 vault
    "convertToAssets":        "0x07a2d13a",  # convertToAssets(uint256)

    # NonfungiblePositionManager (ERC-721 Enumerable)
    "tokenOfOwnerByIndex":    "0x2f745c59",  # tokenOfOwnerByIndex(address,uint256)
    "positions":              "0x99fbab88",  # positions(uint256)

    # UniswapV3Pool
    "slot0":                  "0x3850c7bd",  # slot0()

    # UniswapV3Factory
    "getPool":                "0x1698ee82",  # getPool(address,address,uint24)

    # Aave V3 PoolDataProvider
    "getAllReservesTokens":   "0xb316ff89",  # getAllReservesTokens()
    "getUserReserveData":     "0x28dd2d01",  # getUserReserveData(address,address)

    # ERC-20 metadata
    "symbol":                 "0x95d89b41",  # symbol()
    "decimals":               "0x313ce567",  # decimals()
}

# keccak256("Transfer(address,address,uint256)"); identical for ERC-20 and
# ERC-721; the two differ only in whether the third argument is indexed.
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


# ── ABI Encoding ────────────────────────────────────────────────────────

def encode_uint256(value: int) -> str:
    """ABI-encode a uint256 as 32-byte hex (no 0x prefix).

    >>> encode_uint256(1)
    '0000000000000000000000000000000000000000000000000000000000000001'
    """
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_address(addr: str) -> str:
    """ABI-encode an address as 32 bytes (left-padded, no 0x prefix)."""
    return addr.lower().replace("0x", "").zfill(ABI_WORD_HEX)


def encode_uint24(val: int) -> str:
    """ABI-encode a uint24 as 32 bytes (fee tier parameter).

    >>> encode_uint24(3000)
    '0000000000000000000000000000000000000000000000000000000000000bb8'
    """
    return format(val, f'0{ABI_WORD_HEX}x')


def address_topic(addr: str) -> str:
    """Indexed address as a log topic (0x + 32-byte word)."""
    return "0x" + encode_address(addr)


def uint_topic(value: int) -> str:
    """Indexed uint256 as a log topic (0x + 32-byte word)."""
    return "0x" + encode_uint256(value)


# ── ABI Decoding ────────────────────────────────────────────────────────

def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Decode uint256 from ABI response at 32-byte slot offset.

    Args:
        hex_data: Hex string (without 0x prefix).
        slot: Which 32-byte word to read (0-indexed).
    """
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return int(word, 16)


def decode_int(hex_data: str, slot: int = 0) -> int:
    """Decode int256 (two's complement) from ABI response."""
    val = decode_uint(hex_data, slot)
    if val >= SIGN_BIT:
        return val - Q256
    return val


def decode_address(hex_data: str, slot: int = 0) -> str:
    """Decode address (last 20 bytes of 32-byte slot), lowercased."""
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return "0x" + word[ADDRESS_PAD_HEX:].lower()


def decode_string(hex_data: str) -> str:
    """Decode ABI-encoded dynamic string return value.

    Handles both standard dynamic strings (offset + length + data)
    and non-standard bytes32 returns from some token contracts.
    """
    try:
        offset = decode_uint(hex_data, 0)
        word_offset = offset // ABI_WORD_BYTES
        length = decode_uint(hex_data, word_offset)
        start_byte = (word_offset + 1) * ABI_WORD_HEX
        hex_str = hex_data[start_byte:start_byte + length * 2]
        return bytes.fromhex(hex_str).decode("utf-8").strip("\x00")
    except (ValueError, UnicodeDecodeError):
        # Some tokens return bytes32 instead of string
        try:
            raw = bytes.fromhex(hex_data[:ABI_WORD_HEX])
            return raw.decode("utf-8").strip("\x00").strip()
        except (ValueError, UnicodeDecodeError):
            return "UNK"


def topic_to_address(topic: str) -> str:
    """Indexed address topic (0x + 64 hex) → lowercase 0x address."""
    return "0x" + topic[-ADDRESS_HEX:].lower()


# ── JSON-RPC Gateway ────────────────────────────────────────────────────

async def _rpc(rpc_url: str, method: str, params: list, timeout: int) -> Any:
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(rpc_url, json=payload)
        result = resp.json()
    if "error" in result:
        error = result["error"]
        message = error.get("message", error) if isinstance(error, dict) else error
        raise RuntimeError(f"RPC error: {message}")
    return result.get("result")


async def eth_call(rpc_url: str, to: str, data: str, timeout: int = 20) -> str:
    """
    Execute eth_call on an EVM node.

    Returns:
        Hex response string (without 0x prefix).

    Raises:
        RuntimeError: If RPC returns an error or empty response.
    """
    raw = await _rpc(rpc_url, "eth_call", [{"to": to, "data": data}, "latest"], timeout)
    if not raw or raw == "0x" or len(raw) < 4:
        raise RuntimeError("Empty response — contract may not exist at this address")
    return raw[2:]


async def eth_call_batch(
    rpc_url: str, calls: List[Tuple[str, str]], timeout: int = 20
) -> List[str]:
    """
    Batch multiple eth_call requests into a single HTTP request.

    Each slot fails independently: a reverted or missing call yields ""
    at its index while its siblings keep their results.

    Returns:
        List of hex result strings (without 0x prefix), in same order as calls.
    """
    if not calls:
        return []

    payloads = []
    for i, (to, data) in enumerate(calls):
        payloads.append({
            "jsonrpc": "2.0",
            "id": i + 1,
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        })

    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(rpc_url, json=payloads)
        results = resp.json()

    if not isinstance(results, list):
        # Some RPCs answer a batch with a single object
        results = [results]

    by_id: Dict[int, str] = {}
    for r in results:
        raw = r.get("result") if isinstance(r, dict) else None
        if isinstance(raw, str) and len(raw) > 2:
            by_id[r.get("id", 0)] = raw[2:]
    return [by_id.get(i + 1, "") for i in range(len(calls))]


async def eth_call_many(
    rpc_url: str, calls: List[Tuple[str, str]], timeout: int = 20
) -> List[str]:
    """
    eth_call_batch with a sequential fallback for endpoints that reject
    JSON-RPC batches. Failed slots are "" either way.
    """
    try:
        return await eth_call_batch(rpc_url, calls, timeout)
    except (httpx.HTTPError, ValueError) as exc:
        logger.debug("Batch call failed (%s), falling back to sequential", exc)

    results = []
    for to, data in calls:
        try:
            results.append(await eth_call(rpc_url, to, data, timeout))
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.debug("eth_call to %s failed: %s", to, exc)
            results.append("")
    return results


async def eth_get_logs(
    rpc_url: str,
    address: str,
    topics: List[Optional[str]],
    from_block: int = 0,
    to_block: str = "latest",
    timeout: int = 30,
) -> List[Dict[str, Any]]:
    """
    Fetch event logs for one contract.

    Args:
        address: Emitting contract.
        topics: Topic filter; None entries match anything.
        from_block: First block to scan (the caller's cursor).

    Returns:
        Raw log objects as returned by the node.
    """
    params = [{
        "address": address,
        "topics": topics,
        "fromBlock": hex(from_block),
        "toBlock": to_block,
    }]
    result = await _rpc(rpc_url, "eth_getLogs", params, timeout)
    return result or []


async def eth_get_block_timestamp(rpc_url: str, block_number: int, timeout: int = 10) -> int:
    """Unix timestamp of a block."""
    result = await _rpc(rpc_url, "eth_getBlockByNumber", [hex(block_number), False], timeout)
    if not result:
        raise RuntimeError(f"Block {block_number} not found")
    return int(result["timestamp"], 16)


def log_block_number(log: Dict[str, Any]) -> Optional[int]:
    """Block number of a raw log, or None for pending logs."""
    raw = log.get("blockNumber")
    return int(raw, 16) if raw else None


async def first_log_timestamp(
    rpc_url: str,
    address: str,
    topics: List[Optional[str]],
    from_block: int = 0,
    timeout: int = 30,
) -> Optional[int]:
    """
    Block timestamp of the earliest log matching a filter, or None when
    nothing matches. Used to date share mints and NFT mints.
    """
    logs = await eth_get_logs(rpc_url, address, topics, from_block=from_block, timeout=timeout)
    blocks = [b for b in (log_block_number(log) for log in logs) if b is not None]
    if not blocks:
        return None
    return await eth_get_block_timestamp(rpc_url, min(blocks), timeout=timeout)
