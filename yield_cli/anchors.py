"""
Anchor Tokens — Known USD Prices for Pool Valuation
====================================================

A concentrated-liquidity pool only knows the ratio between its two tokens.
If one side is a token with a known USD price (a stablecoin or WETH), the
other side's price follows from the pool's sqrtPriceX96 (see
uniswap_math.anchor_pair_prices).

This module only knows WHICH tokens are anchors:
  - USD-pegged stables, priced at $1.00
  - canonical wrapped-ETH contracts, priced at a caller-supplied ETH price

Addresses are lowercase. There is deliberately no symbol-based guessing:
an unknown token is never assumed to be worth anything.
"""

from typing import Dict, Mapping

DEFAULT_ETH_PRICE_USD = 2500.0

# ── Known Anchor Tokens ─────────────────────────────────────────────────

STABLE_ANCHORS: Dict[str, str] = {
    "0xfafddbb3fc7688494971a79cc65dca3ef82079e7": "USDM",   # MegaETH USDM
}

WETH_ADDRESSES: frozenset = frozenset({
    "0x4200000000000000000000000000000000000006",  # OP Stack WETH (MegaETH, Base, Optimism)
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",  # Ethereum mainnet WETH
    "0x82af49447d8a07e3bd95bd0d56f35241523fbab1",  # Arbitrum WETH
})


def default_anchors(eth_price_usd: float = DEFAULT_ETH_PRICE_USD) -> Dict[str, float]:
    """Anchor map {lowercase address: USD price} for stables and WETH."""
    anchors = {addr: 1.0 for addr in STABLE_ANCHORS}
    for addr in WETH_ADDRESSES:
        anchors[addr] = float(eth_price_usd)
    return anchors


def anchor_side(token0: str, token1: str, anchors: Mapping[str, float]) -> int:
    """
    Identify which side of the pair carries a known USD price.

    Returns:
        1  — token1 is an anchor (preferred when both are)
        0  — only token0 is an anchor
        -1 — neither side is an anchor

    Examples:
        >>> anchor_side("0xaaa", "0x4200000000000000000000000000000000000006", default_anchors())
        1
        >>> anchor_side("0xaaa", "0xbbb", default_anchors())
        -1
    """
    if token1.strip().lower() in anchors:
        return 1
    if token0.strip().lower() in anchors:
        return 0
    return -1
