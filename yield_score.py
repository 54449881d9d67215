#!/usr/bin/env python3
"""
Yield Score — 0-100 wallet rating and strategy tags
===================================================

    score = 35 × apy_factor
          + 25 × diversification_factor
          + 20 × consistency_factor
          + 20 × capital_efficiency_factor

Each factor is clamped to [0, 1] before weighting:

  apy_factor                 USD-weighted APY / 25%
  diversification_factor     distinct protocols / 5
  consistency_factor         mean position age (whole days) / 90
  capital_efficiency_factor  (Σ yield earned / Σ deposited) / 10%

The total is clamped to [0, 100] and rounded. An empty wallet or one with
nothing deposited scores 0.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from yield_cli.central_config import SECONDS_PER_DAY
from yield_cli.models import Position

# ── Weights & normalisers ───────────────────────────────────────────────

APY_WEIGHT = 35
DIVERSIFICATION_WEIGHT = 25
CONSISTENCY_WEIGHT = 20
CAPITAL_EFFICIENCY_WEIGHT = 20

APY_CEILING_PCT = 25.0          # 25% weighted APY → full marks
PROTOCOL_CEILING = 5            # 5 distinct protocols → full marks
AGE_CEILING_DAYS = 90           # 90-day average age → full marks
YIELD_RATIO_CEILING = 0.10      # 10% of principal earned → full marks

MAX_TAGS = 4
HIGH_YIELD_APY = 15.0
CONSERVATIVE_APY = 5.0
LONG_TERM_DAYS = 180


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def position_age_days(entry_timestamp: int, now: Optional[int] = None) -> int:
    """Whole days since entry (floor)."""
    now = int(time.time()) if now is None else now
    return (now - entry_timestamp) // SECONDS_PER_DAY


def total_deposited(positions: Sequence[Position]) -> float:
    return sum(p.deposited_usd for p in positions)


def weighted_apy(positions: Sequence[Position]) -> float:
    """Σ(apy × usd) / Σ usd, or 0.0 when nothing is deposited."""
    total = total_deposited(positions)
    if total <= 0:
        return 0.0
    return sum(p.current_apy * p.deposited_usd for p in positions) / total


# ── Factors ─────────────────────────────────────────────────────────────


def apy_factor(positions: Sequence[Position]) -> float:
    return clamp(weighted_apy(positions) / APY_CEILING_PCT, 0.0, 1.0)


def diversification_factor(positions: Sequence[Position]) -> float:
    return clamp(len({p.protocol for p in positions}) / PROTOCOL_CEILING, 0.0, 1.0)


def consistency_factor(positions: Sequence[Position], now: Optional[int] = None) -> float:
    if not positions:
        return 0.0
    now = int(time.time()) if now is None else now
    mean_age = sum(position_age_days(p.entry_timestamp, now) for p in positions) / len(positions)
    return clamp(mean_age / AGE_CEILING_DAYS, 0.0, 1.0)


def capital_efficiency_factor(positions: Sequence[Position]) -> float:
    total = total_deposited(positions)
    if total <= 0:
        return 0.0
    ratio = sum(p.yield_earned for p in positions) / total
    return clamp(ratio / YIELD_RATIO_CEILING, 0.0, 1.0)


def calculate_yield_score(positions: Sequence[Position], now: Optional[int] = None) -> int:
    """
    Rate a wallet's positions 0-100.

    Example:
        10 000 USD at 8% for 90 days (≈197.26 earned) plus 5 000 USD of LP
        at 20%: weighted APY 12% → apy_factor 0.48.
    """
    if not positions or total_deposited(positions) <= 0:
        return 0

    score = (
        APY_WEIGHT * apy_factor(positions)
        + DIVERSIFICATION_WEIGHT * diversification_factor(positions)
        + CONSISTENCY_WEIGHT * consistency_factor(positions, now)
        + CAPITAL_EFFICIENCY_WEIGHT * capital_efficiency_factor(positions)
    )
    return round(clamp(score, 0, 100))


# ── Strategy tags ───────────────────────────────────────────────────────


def derive_strategy_tags(positions: Sequence[Position], now: Optional[int] = None) -> List[str]:
    """
    Short labels for a wallet, in fixed priority order, at most four:

    Diversified (≥3 protocols), Single Protocol, Staker, LP Provider,
    Lender, High Yield (mean APY > 15), Conservative (mean APY < 5),
    Long-term Holder (mean age > 180 days).
    """
    if not positions:
        return []
    now = int(time.time()) if now is None else now

    tags = []
    protocols = {p.protocol for p in positions}
    kinds = {p.position_type for p in positions}

    if len(protocols) >= 3:
        tags.append("Diversified")
    if len(protocols) == 1:
        tags.append("Single Protocol")
    if "staking" in kinds:
        tags.append("Staker")
    if "lp" in kinds:
        tags.append("LP Provider")
    if "lending" in kinds:
        tags.append("Lender")

    mean_apy = sum(p.current_apy for p in positions) / len(positions)
    if mean_apy > HIGH_YIELD_APY:
        tags.append("High Yield")
    if mean_apy < CONSERVATIVE_APY:
        tags.append("Conservative")

    mean_age = sum(position_age_days(p.entry_timestamp, now) for p in positions) / len(positions)
    if mean_age > LONG_TERM_DAYS:
        tags.append("Long-term Holder")

    return tags[:MAX_TAGS]


# ── Wallet summary (leaderboard row) ────────────────────────────────────


@dataclass(frozen=True)
class WalletSummary:
    total_deposited: float
    total_yield_earned: float
    weighted_apy: float
    yield_score: int
    top_protocol: str
    position_count: int
    strategy_tags: List[str] = field(default_factory=list)


def top_protocol(positions: Sequence[Position]) -> str:
    """Protocol holding the most USD; ties go to the first seen."""
    by_protocol: Dict[str, float] = defaultdict(float)
    for p in positions:
        by_protocol[p.protocol] += p.deposited_usd
    if not by_protocol:
        return ""
    return max(by_protocol, key=by_protocol.get)


def summarize_wallet(positions: Sequence[Position], now: Optional[int] = None) -> WalletSummary:
    return WalletSummary(
        total_deposited=total_deposited(positions),
        total_yield_earned=sum(p.yield_earned for p in positions),
        weighted_apy=weighted_apy(positions),
        yield_score=calculate_yield_score(positions, now),
        top_protocol=top_protocol(positions),
        position_count=len(positions),
        strategy_tags=derive_strategy_tags(positions, now),
    )
