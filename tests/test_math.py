"""
Test Suite — Uniswap V3 Formula Validation
==========================================

Tests every formula in uniswap_math.py against known inputs, verifying
correctness with reverse calculations and documented expected values.

Formula Sources:
  - Uniswap V3 Whitepaper §6.1, §6.2, §6.3
  - Uniswap V3 Math Primer (sqrtPriceX96 ↔ price)

Run:  python -m pytest tests/test_math.py -v
"""

import math
from decimal import Decimal, localcontext

import pytest

from uniswap_math import (
    MAX_TICK,
    MIN_TICK,
    UniswapV3Math,
    anchor_pair_prices,
    derive_prices_from_sqrt_price,
)
from yield_cli.anchors import default_anchors
from yield_cli.rpc_helpers import Q96

USDM = "0xfafddbb3fc7688494971a79cc65dca3ef82079e7"
WETH = "0x4200000000000000000000000000000000000006"
OTHER0 = "0x1111111111111111111111111111111111111111"
OTHER1 = "0x2222222222222222222222222222222222222222"


def sqrt_price_x96_at_tick(tick: int) -> int:
    """Q64.96 √P at a tick, as slot0 would report it (60-digit decimal)."""
    with localcontext() as ctx:
        ctx.prec = 60
        return int(Decimal("1.0001") ** (Decimal(tick) / 2) * Q96)


# ── Tick → Price (Whitepaper §6.1) ───────────────────────────────────────

class TestTickPrice:
    """p(i) = 1.0001^i"""

    def test_known_tick_value(self):
        """1.0001^0 = 1.0 — tick 0 always maps to price 1."""
        assert UniswapV3Math.tick_to_price(0) == 1.0

    def test_one_tick_is_one_basis_point(self):
        assert UniswapV3Math.tick_to_price(1) == pytest.approx(1.0001, rel=1e-12)
        assert UniswapV3Math.tick_to_price(-1) == pytest.approx(1 / 1.0001, rel=1e-12)

    def test_ticks_beyond_v3_range_are_not_clamped(self):
        assert UniswapV3Math.tick_to_price(MAX_TICK + 1000) > UniswapV3Math.tick_to_price(MAX_TICK)
        assert UniswapV3Math.tick_to_price(MIN_TICK - 1000) < UniswapV3Math.tick_to_price(MIN_TICK)


class TestAdjustedPrice:
    """adjusted = 1.0001^tick × 10^(d0 − d1)"""

    @pytest.mark.parametrize("decimals", [0, 6, 8, 18, 24])
    def test_tick_zero_equal_decimals_is_one(self, decimals):
        assert UniswapV3Math.tick_to_adjusted_price(0, decimals, decimals) == 1.0

    @pytest.mark.parametrize("d0,d1", [(18, 6), (6, 18), (8, 18), (0, 24), (24, 0)])
    def test_decimal_shift(self, d0, d1):
        assert UniswapV3Math.tick_to_adjusted_price(0, d0, d1) == pytest.approx(10.0 ** (d0 - d1))

    def test_strictly_increasing_over_full_range(self):
        ticks = list(range(MIN_TICK, MAX_TICK + 1, 8873)) + [MAX_TICK]
        prices = [UniswapV3Math.tick_to_adjusted_price(t, 18, 6) for t in ticks]
        assert all(a < b for a, b in zip(prices, prices[1:]))

    @pytest.mark.parametrize("tick", [MIN_TICK, -1, 0, MAX_TICK - 1])
    def test_strictly_increasing_adjacent_ticks(self, tick):
        assert (
            UniswapV3Math.tick_to_adjusted_price(tick, 6, 18)
            < UniswapV3Math.tick_to_adjusted_price(tick + 1, 6, 18)
        )

    def test_weth_usdc_tick(self):
        """WETH(18)/USDC(6) around tick −197000 trades near 2,790 USDC."""
        price = UniswapV3Math.tick_to_adjusted_price(-197000, 18, 6)
        assert 2700 < price < 2900


# ── sqrtPriceX96 (Whitepaper §6.2) ───────────────────────────────────────

class TestSqrtPriceX96:
    """price = sqrtPriceX96² / 2^192 × 10^(d0 − d1)"""

    @pytest.mark.parametrize("d0,d1", [
        (0, 0), (6, 6), (18, 18), (24, 24),
        (18, 6), (6, 18), (8, 18), (18, 8), (24, 0), (0, 24),
    ])
    def test_unit_sqrt_price_across_decimals(self, d0, d1):
        result = UniswapV3Math.sqrt_price_x96_to_price(Q96, d0, d1)
        assert result == pytest.approx(10.0 ** (d0 - d1), rel=1e-15)

    def test_doubling_sqrt_quadruples_price(self):
        assert UniswapV3Math.sqrt_price_x96_to_price(2 * Q96, 18, 18) == 4.0

    def test_weth_usdm_price(self):
        """√2500 = 50 → 2500 USDM per WETH, both 18 decimals."""
        assert UniswapV3Math.sqrt_price_x96_to_price(50 * Q96, 18, 18) == 2500.0

    def test_zero_sqrt_price(self):
        assert UniswapV3Math.sqrt_price_x96_to_price(0, 18, 6) == 0.0

    def test_large_sqrt_price_keeps_precision(self):
        """10^12 × Q96 squared exceeds float range mid-computation in naive code."""
        result = UniswapV3Math.sqrt_price_x96_to_price(10 ** 12 * Q96, 6, 18)
        assert result == pytest.approx(1e24 * 1e-12, rel=1e-15)

    @pytest.mark.parametrize("tick", [-200000, -50000, -1, 0, 1, 50000, 200000])
    def test_sqrt_price_at_tick_matches_tick_price(self, tick):
        sqrt_x96 = sqrt_price_x96_at_tick(tick)
        assert UniswapV3Math.sqrt_price_x96_to_price(sqrt_x96, 0, 0) == pytest.approx(
            UniswapV3Math.tick_to_price(tick), rel=1e-9
        )

    def test_sqrt_price_at_tick_float(self):
        assert UniswapV3Math.sqrt_price_at_tick(0) == 1.0
        assert UniswapV3Math.sqrt_price_at_tick(20000) == pytest.approx(
            math.sqrt(1.0001 ** 20000), rel=1e-12
        )

    def test_sqrt_price_x96_at_tick_zero_is_q96(self):
        assert sqrt_price_x96_at_tick(0) == Q96


# ── Liquidity Decomposition (Whitepaper §6.3) ────────────────────────────

L = 10 ** 18
LOWER, UPPER = -600, 600


def _amounts(tick, with_tick=True):
    return UniswapV3Math.get_token_amounts_from_liquidity(
        L, sqrt_price_x96_at_tick(tick), LOWER, UPPER,
        tick_current=tick if with_tick else None,
    )


class TestLiquidityDecomposition:

    def test_zero_liquidity(self):
        assert UniswapV3Math.get_token_amounts_from_liquidity(0, Q96, LOWER, UPPER, 0) == (0.0, 0.0)

    @pytest.mark.parametrize("lower,upper", [(600, 600), (600, -600)])
    def test_invalid_range_raises(self, lower, upper):
        with pytest.raises(ValueError):
            UniswapV3Math.get_token_amounts_from_liquidity(L, Q96, lower, upper, 0)

    def test_below_range_is_all_token0(self):
        a0, a1 = _amounts(-1000)
        sqrt_a = UniswapV3Math.sqrt_price_at_tick(LOWER)
        sqrt_b = UniswapV3Math.sqrt_price_at_tick(UPPER)
        assert a1 == 0.0
        assert a0 == pytest.approx(L * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b))

    def test_above_range_is_all_token1(self):
        a0, a1 = _amounts(1000)
        sqrt_a = UniswapV3Math.sqrt_price_at_tick(LOWER)
        sqrt_b = UniswapV3Math.sqrt_price_at_tick(UPPER)
        assert a0 == 0.0
        assert a1 == pytest.approx(L * (sqrt_b - sqrt_a))

    def test_exactly_at_lower_tick_has_no_token1(self):
        a0, a1 = _amounts(LOWER)
        assert a1 == 0.0
        assert a0 > 0

    def test_exactly_at_upper_tick_has_no_token0(self):
        a0, a1 = _amounts(UPPER)
        assert a0 == 0.0
        assert a1 > 0

    @pytest.mark.parametrize("tick", [LOWER + 1, -300, 0, 300, UPPER - 1])
    def test_inside_range_holds_both(self, tick):
        a0, a1 = _amounts(tick)
        assert a0 > 0 and a1 > 0

    def test_symmetric_range_at_tick_zero_splits_evenly(self):
        """√Pa = 1/√Pb when the range is symmetric around tick 0."""
        a0, a1 = _amounts(0)
        assert a0 == pytest.approx(a1, rel=1e-9)

    def test_mixed_formula(self):
        a0, a1 = _amounts(200)
        sqrt_p = sqrt_price_x96_at_tick(200) / Q96
        sqrt_a = UniswapV3Math.sqrt_price_at_tick(LOWER)
        sqrt_b = UniswapV3Math.sqrt_price_at_tick(UPPER)
        assert a0 == pytest.approx(L * (sqrt_b - sqrt_p) / (sqrt_p * sqrt_b))
        assert a1 == pytest.approx(L * (sqrt_p - sqrt_a))

    def test_regime_from_sqrt_price_without_tick(self):
        a0, a1 = _amounts(-1000, with_tick=False)
        assert a1 == 0.0 and a0 > 0
        a0, a1 = _amounts(1000, with_tick=False)
        assert a0 == 0.0 and a1 > 0

    def test_token0_shrinks_as_price_rises(self):
        low, _ = _amounts(-300)
        high, _ = _amounts(300)
        assert low > high

    def test_amounts_scale_with_liquidity(self):
        one = UniswapV3Math.get_token_amounts_from_liquidity(L, Q96, LOWER, UPPER, 0)
        two = UniswapV3Math.get_token_amounts_from_liquidity(2 * L, Q96, LOWER, UPPER, 0)
        assert two[0] == pytest.approx(2 * one[0])
        assert two[1] == pytest.approx(2 * one[1])


# ── Price Anchoring ──────────────────────────────────────────────────────

class TestPriceDerivation:
    """token1 known: p0 = p1 × price0in1;  token0 known: p1 = p0 / price0in1"""

    def test_token1_known(self):
        # raw price 4: one token0 buys four token1
        p0, p1 = derive_prices_from_sqrt_price(2 * Q96, 18, 18, known_side=1, known_price_usd=1.0)
        assert (p0, p1) == (4.0, 1.0)

    def test_token0_known(self):
        p0, p1 = derive_prices_from_sqrt_price(2 * Q96, 18, 18, known_side=0, known_price_usd=1.0)
        assert p0 == 1.0
        assert p1 == pytest.approx(0.25)

    def test_no_anchor_is_zero(self):
        assert derive_prices_from_sqrt_price(2 * Q96, 18, 18, known_side=-1, known_price_usd=1.0) == (0.0, 0.0)

    def test_decimals_respected(self):
        """WETH(18)/USDC(6): raw sqrt of 2500e-12 → $2500 WETH."""
        sqrt_x96 = 50 * Q96 // 10 ** 6
        p0, p1 = derive_prices_from_sqrt_price(sqrt_x96, 18, 6, known_side=1, known_price_usd=1.0)
        assert p1 == 1.0
        assert p0 == pytest.approx(2500.0, rel=1e-9)


class TestAnchorPairPrices:

    def test_weth_usdm_pool_prices_weth_from_usdm(self):
        p0, p1 = anchor_pair_prices(WETH, USDM, 50 * Q96, 18, 18, default_anchors(3000))
        # token1 (USDM) preferred over WETH even though both are anchors
        assert p1 == 1.0
        assert p0 == pytest.approx(2500.0)

    def test_token0_anchor_only(self):
        p0, p1 = anchor_pair_prices(USDM, OTHER1, 2 * Q96, 18, 18, default_anchors())
        assert p0 == 1.0
        assert p1 == pytest.approx(0.25)

    def test_weth_anchor_uses_eth_price(self):
        p0, p1 = anchor_pair_prices(OTHER0, WETH, Q96, 18, 18, default_anchors(3100))
        assert (p0, p1) == (3100.0, 3100.0)

    def test_unknown_pair_is_not_guessed(self):
        assert anchor_pair_prices(OTHER0, OTHER1, Q96, 18, 18, default_anchors()) == (0.0, 0.0)

    def test_mixed_case_addresses(self):
        p0, p1 = anchor_pair_prices(OTHER0, USDM.upper().replace("0X", "0x"), Q96, 18, 18, default_anchors())
        assert p1 == 1.0
