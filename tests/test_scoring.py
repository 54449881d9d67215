"""
Test Suite — Yield Score, Strategy Tags, Wallet Summary
=======================================================

score = 35·apy + 25·diversification + 20·consistency + 20·capital efficiency,
each factor clamped to [0, 1], total clamped to [0, 100].

Run:  python -m pytest tests/test_scoring.py -v
"""

import pytest

from vault_reader import value_vault_shares
from yield_cli.models import Position
from yield_cli.protocol_registry import AVON
from yield_score import (
    WalletSummary,
    apy_factor,
    calculate_yield_score,
    capital_efficiency_factor,
    clamp,
    consistency_factor,
    derive_strategy_tags,
    diversification_factor,
    position_age_days,
    summarize_wallet,
    top_protocol,
    weighted_apy,
)

NOW = 1_750_000_000
DAY = 86_400


def _pos(protocol="Avon", usd=1000.0, apy=8.0, earned=0.0, days=30, ptype="lending", asset="USDM"):
    return Position(
        protocol=protocol, asset=asset, asset_address="0x" + "a" * 40,
        deposited_amount=int(usd * 10 ** 18), deposited_usd=usd, current_apy=apy,
        yield_earned=earned, position_type=ptype, entry_timestamp=NOW - days * DAY,
    )


# ── End-to-end scenario ──────────────────────────────────────────────────

@pytest.fixture
def scenario():
    """$10k Avon at 8% for 90 days + $5k LP at 20% for 30 days."""
    [vault] = value_vault_shares(10_000 * 10 ** 18, lambda s: s, AVON, NOW - 90 * DAY, now=NOW)
    lp = _pos(protocol="Prism", usd=5000.0, apy=20.0, days=30, ptype="lp", asset="USDMy/WETH 0.30%")
    return [vault, lp]


class TestScenario:

    def test_vault_yield(self, scenario):
        assert scenario[0].yield_earned == pytest.approx(10_000 * 0.08 * 90 / 365)
        assert scenario[0].yield_earned == pytest.approx(197.26, abs=0.01)

    def test_weighted_apy(self, scenario):
        assert weighted_apy(scenario) == pytest.approx(12.0)

    def test_apy_factor(self, scenario):
        assert apy_factor(scenario) == pytest.approx(0.48)

    def test_other_factors(self, scenario):
        assert diversification_factor(scenario) == pytest.approx(0.4)
        assert consistency_factor(scenario, NOW) == pytest.approx(60 / 90)
        assert capital_efficiency_factor(scenario) == pytest.approx((197.26 / 15_000) / 0.10, rel=1e-4)

    def test_score(self, scenario):
        # 16.8 + 10 + 13.33 + 2.63
        assert calculate_yield_score(scenario, NOW) == 43

    def test_summary(self, scenario):
        summary = summarize_wallet(scenario, NOW)
        assert isinstance(summary, WalletSummary)
        assert summary.total_deposited == pytest.approx(15_000.0)
        assert summary.total_yield_earned == pytest.approx(197.26, abs=0.01)
        assert summary.weighted_apy == pytest.approx(12.0)
        assert summary.yield_score == 43
        assert summary.top_protocol == "Avon"
        assert summary.position_count == 2
        assert summary.strategy_tags == ["LP Provider", "Lender"]


# ── Helpers ──────────────────────────────────────────────────────────────

class TestHelpers:

    @pytest.mark.parametrize("value,expected", [(-1, 0), (0.5, 0.5), (2, 1)])
    def test_clamp(self, value, expected):
        assert clamp(value, 0, 1) == expected

    def test_age_floors_to_whole_days(self):
        assert position_age_days(NOW - 2 * DAY + 1, NOW) == 1
        assert position_age_days(NOW - 2 * DAY, NOW) == 2
        assert position_age_days(NOW, NOW) == 0

    def test_weighted_apy_empty(self):
        assert weighted_apy([]) == 0.0
        assert weighted_apy([_pos(usd=0.0)]) == 0.0

    def test_top_protocol(self):
        positions = [_pos("Avon", 100), _pos("Prism", 300), _pos("Avon", 250)]
        assert top_protocol(positions) == "Avon"
        assert top_protocol([]) == ""

    def test_top_protocol_tie_goes_to_first(self):
        assert top_protocol([_pos("Prism", 100), _pos("Avon", 100)]) == "Prism"


# ── Score bounds & monotonicity ──────────────────────────────────────────

class TestYieldScore:

    def test_empty_wallet(self):
        assert calculate_yield_score([], NOW) == 0

    def test_zero_deposited(self):
        assert calculate_yield_score([_pos(usd=0.0, apy=50.0, days=400)], NOW) == 0

    def test_perfect_wallet_is_100(self):
        positions = [
            _pos(protocol=f"P{i}", usd=1000.0, apy=30.0, earned=200.0, days=120)
            for i in range(5)
        ]
        assert calculate_yield_score(positions, NOW) == 100

    def test_factors_are_clamped(self):
        positions = [_pos(apy=500.0, earned=10_000.0, days=10_000)]
        assert apy_factor(positions) == 1.0
        assert consistency_factor(positions, NOW) == 1.0
        assert capital_efficiency_factor(positions) == 1.0

    def test_future_entry_does_not_go_negative(self):
        assert consistency_factor([_pos(days=-10)], NOW) == 0.0

    @pytest.mark.parametrize("apy", [0.0, 5.0, 12.0, 40.0, 1000.0])
    def test_score_in_range(self, apy):
        score = calculate_yield_score([_pos(apy=apy), _pos("Prism", apy=apy, ptype="lp")], NOW)
        assert 0 <= score <= 100

    def test_monotone_in_apy(self):
        scores = [
            calculate_yield_score([_pos(apy=apy, days=45), _pos("Prism", apy=apy, ptype="lp")], NOW)
            for apy in (0.0, 5.0, 10.0, 15.0, 20.0, 25.0, 30.0)
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_more_protocols_scores_higher(self):
        one = calculate_yield_score([_pos("Avon"), _pos("Avon")], NOW)
        two = calculate_yield_score([_pos("Avon"), _pos("Prism")], NOW)
        assert two > one


# ── Strategy tags ────────────────────────────────────────────────────────

class TestStrategyTags:

    def test_empty(self):
        assert derive_strategy_tags([], NOW) == []

    def test_single_protocol_conservative(self):
        assert derive_strategy_tags([_pos(apy=3.0)], NOW) == ["Single Protocol", "Lender", "Conservative"]

    def test_high_yield_long_term(self):
        tags = derive_strategy_tags([_pos("Prism", apy=25.0, days=200, ptype="lp")], NOW)
        assert tags == ["Single Protocol", "LP Provider", "High Yield", "Long-term Holder"]

    def test_capped_at_four_in_priority_order(self):
        positions = [
            _pos("Avon", apy=20.0, days=200),
            _pos("Prism", apy=20.0, days=200, ptype="lp"),
            _pos("Staker", apy=20.0, days=200, ptype="staking"),
        ]
        assert derive_strategy_tags(positions, NOW) == ["Diversified", "Staker", "LP Provider", "Lender"]

    def test_boundaries_are_strict(self):
        tags = derive_strategy_tags([_pos(apy=15.0, days=180), _pos(apy=15.0, days=180)], NOW)
        assert "High Yield" not in tags
        assert "Long-term Holder" not in tags
        assert "Conservative" not in derive_strategy_tags([_pos(apy=5.0)], NOW)

    def test_summary_of_empty_wallet(self):
        summary = summarize_wallet([], NOW)
        assert summary.yield_score == 0
        assert summary.position_count == 0
        assert summary.top_protocol == ""
        assert summary.strategy_tags == []
