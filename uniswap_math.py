#!/usr/bin/env python3
"""
Uniswap V3 Math — Ticks, Prices, Liquidity, USD Anchoring
=========================================================

Pure, synchronous helpers behind every LP valuation in this project.
Nothing here performs I/O; every function is safe to call from any thread.

FORMULA SOURCES:
──────────────────────────────────────────────
1. Uniswap V3 Core Whitepaper
   https://uniswap.org/whitepaper-v3.pdf
   - §6.1  Tick-Indexed Concentrated Liquidity  (p(i) = 1.0001^i)
   - §6.2  Global State  (sqrtPriceX96 = √P · 2^96)
   - §6.3  Per-Tick State  (token amounts held by a position)

2. Uniswap V3 Development Book — Concentrated Liquidity Math
   https://uniswapv3book.com/docs/milestone_1/calculating-liquidity/

3. Uniswap V3 Docs — Math primer
   https://blog.uniswap.org/uniswap-v3-math-primer

Conventions:
  • "price" is token1 per token0.
  • Raw prices ignore decimals; adjusted prices multiply by 10^(d0 − d1).
  • Token amounts from liquidity are raw base units (wei-like), not human.
"""

from fractions import Fraction
from typing import Mapping, Optional, Tuple

from yield_cli.anchors import anchor_side
from yield_cli.rpc_helpers import Q96, Q192

MIN_TICK = -887272
MAX_TICK = 887272


class UniswapV3Math:
    """
    Pure functions implementing Uniswap V3 concentrated-liquidity math.
    Every formula references a specific section of the Uniswap V3 Whitepaper.
    """

    @staticmethod
    def tick_to_price(tick: int) -> float:
        """
        Convert a tick index to a raw price.
        Formula (Whitepaper §6.1): p(i) = 1.0001^i
        """
        return 1.0001 ** tick

    @staticmethod
    def tick_to_adjusted_price(tick: int, decimals0: int, decimals1: int) -> float:
        """
        Human-readable price of token0 in token1 at a tick.

            adjusted = 1.0001^tick × 10^(decimals0 − decimals1)

        Example: WETH(18)/USDC(6) at tick −197000 → ~2790 USDC per WETH.
        """
        return UniswapV3Math.tick_to_price(tick) * 10 ** (decimals0 - decimals1)

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
        """
        Convert slot0.sqrtPriceX96 to a human price (token1 per token0).

        Formula (Whitepaper §6.2):
            price = sqrtPriceX96² / 2^192 × 10^(decimals0 − decimals1)

        Evaluated as an exact rational over Python ints and converted to
        float once, so 18/6 and 6/18 decimal pairs keep full precision.
        """
        exact = Fraction(sqrt_price_x96 * sqrt_price_x96 * 10 ** decimals0, Q192 * 10 ** decimals1)
        return float(exact)

    @staticmethod
    def sqrt_price_at_tick(tick: int) -> float:
        """√P at a tick: √(1.0001^tick) = 1.0001^(tick/2)."""
        return 1.0001 ** (tick / 2)

    @staticmethod
    def get_token_amounts_from_liquidity(
        liquidity: int,
        sqrt_price_x96: int,
        tick_lower: int,
        tick_upper: int,
        tick_current: Optional[int] = None,
    ) -> Tuple[float, float]:
        """
        Token amounts (raw base units) represented by a position.

        Formula (Whitepaper §6.3), with √Pa = √P(tick_lower), √Pb = √P(tick_upper):
          current ≤ lower:  amount0 = L·(√Pb − √Pa)/(√Pa·√Pb),  amount1 = 0
          current ≥ upper:  amount0 = 0,  amount1 = L·(√Pb − √Pa)
          in between:       amount0 = L·(√Pb − √P)/(√P·√Pb)
                            amount1 = L·(√P − √Pa)

        When tick_current is given the regime is picked from ticks, so a
        position sitting exactly on a boundary reports an exact zero on the
        other side. Otherwise the regime comes from comparing √P values.

        Raises:
            ValueError: tick_lower >= tick_upper.
        """
        if tick_lower >= tick_upper:
            raise ValueError(f"tick_lower ({tick_lower}) must be < tick_upper ({tick_upper})")
        if liquidity == 0:
            return 0.0, 0.0

        sqrt_a = UniswapV3Math.sqrt_price_at_tick(tick_lower)
        sqrt_b = UniswapV3Math.sqrt_price_at_tick(tick_upper)
        sqrt_p = sqrt_price_x96 / Q96

        if tick_current is not None:
            below = tick_current <= tick_lower
            above = tick_current >= tick_upper
        else:
            below = sqrt_p <= sqrt_a
            above = sqrt_p >= sqrt_b

        if below:
            return liquidity * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b), 0.0
        if above:
            return 0.0, liquidity * (sqrt_b - sqrt_a)

        # slot0 price and tick can disagree by one tick's rounding
        sqrt_p = min(max(sqrt_p, sqrt_a), sqrt_b)
        amount0 = liquidity * (sqrt_b - sqrt_p) / (sqrt_p * sqrt_b)
        amount1 = liquidity * (sqrt_p - sqrt_a)
        return amount0, amount1


# ── Price Anchoring ─────────────────────────────────────────────────────


def derive_prices_from_sqrt_price(
    sqrt_price_x96: int,
    decimals0: int,
    decimals1: int,
    known_side: int,
    known_price_usd: float,
) -> Tuple[float, float]:
    """
    USD prices for both pool tokens from one known side.

        price0in1 = sqrt_price_x96_to_price(...)
        token1 known:  p1 = known,  p0 = p1 × price0in1
        token0 known:  p0 = known,  p1 = p0 / price0in1

    Any other known_side returns (0.0, 0.0): no anchor, no price.
    """
    if known_side not in (0, 1):
        return 0.0, 0.0

    price0_in_1 = UniswapV3Math.sqrt_price_x96_to_price(sqrt_price_x96, decimals0, decimals1)
    if known_side == 1:
        return known_price_usd * price0_in_1, known_price_usd
    if price0_in_1 <= 0:
        return known_price_usd, 0.0
    return known_price_usd, known_price_usd / price0_in_1


def anchor_pair_prices(
    token0: str,
    token1: str,
    sqrt_price_x96: int,
    decimals0: int,
    decimals1: int,
    anchors: Mapping[str, float],
) -> Tuple[float, float]:
    """
    Resolve (price0_usd, price1_usd) for a pool against an anchor map.

    token1 is preferred when both tokens are anchors; a pair with no anchor
    reports (0.0, 0.0) rather than guessing.
    """
    side = anchor_side(token0, token1, anchors)
    if side == -1:
        return 0.0, 0.0
    known = token1 if side == 1 else token0
    return derive_prices_from_sqrt_price(
        sqrt_price_x96, decimals0, decimals1, side, anchors[known.strip().lower()]
    )
