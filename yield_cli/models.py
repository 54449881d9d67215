"""
Value Objects — Position, StrategyStep, DetectedStrategy
========================================================

Created per call by the readers and the strategy detector; never persisted.

Position mirrors one row of a wallet dashboard: a vault deposit or a single
LP NFT. LP-only fields stay None for vault positions. When any of them is
set the three ticks must be present, and ``in_range`` is derived from them:

    in_range  ⇔  tick_lower ≤ tick_current < tick_upper

(Uniswap V3 Whitepaper §6.3: a position earns fees only while the current
tick sits in [tick_lower, tick_upper).)
"""

from dataclasses import dataclass, field, fields
from typing import List, Optional, Tuple

POSITION_TYPES = frozenset({"lending", "staking", "lp", "bond"})

COMPLEXITY_LEVELS = ("Simple", "Intermediate", "Advanced")

_LP_FIELDS = (
    "tick_lower", "tick_upper", "tick_current",
    "token0_decimals", "token1_decimals",
    "token0_symbol", "token1_symbol",
    "token0_amount", "token1_amount",
    "token0_price_usd", "token1_price_usd",
    "fee_token0_amount", "fee_token1_amount",
    "in_range",
)


@dataclass(frozen=True)
class Position:
    """One valued DeFi position held by a wallet."""

    protocol: str
    asset: str
    asset_address: str
    deposited_amount: int
    deposited_usd: float
    current_apy: float
    yield_earned: float
    position_type: str
    entry_timestamp: int

    # ── LP-only ──
    tick_lower: Optional[int] = None
    tick_upper: Optional[int] = None
    tick_current: Optional[int] = None
    token0_decimals: Optional[int] = None
    token1_decimals: Optional[int] = None
    token0_symbol: Optional[str] = None
    token1_symbol: Optional[str] = None
    token0_amount: Optional[float] = None
    token1_amount: Optional[float] = None
    token0_price_usd: Optional[float] = None
    token1_price_usd: Optional[float] = None
    fee_token0_amount: Optional[float] = None
    fee_token1_amount: Optional[float] = None
    in_range: Optional[bool] = None

    # ── Provenance ──
    position_id: Optional[int] = None
    token0_address: Optional[str] = None
    token1_address: Optional[str] = None

    def __post_init__(self):
        if self.position_type not in POSITION_TYPES:
            raise ValueError(
                f"Unknown position_type '{self.position_type}'. "
                f"Expected one of {sorted(POSITION_TYPES)}"
            )
        if self.deposited_usd < 0:
            raise ValueError("deposited_usd must be non-negative")
        if self.current_apy < 0:
            raise ValueError("current_apy must be non-negative")

        # Frozen: normalise through object.__setattr__
        object.__setattr__(self, "asset_address", self.asset_address.lower())
        for name in ("token0_address", "token1_address"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, value.lower())

        if not self.is_lp_shaped:
            return

        ticks = (self.tick_lower, self.tick_upper, self.tick_current)
        if any(t is None for t in ticks):
            raise ValueError(
                "LP fields require tick_lower, tick_upper and tick_current"
            )
        if self.tick_lower > self.tick_upper:
            raise ValueError(
                f"tick_lower ({self.tick_lower}) > tick_upper ({self.tick_upper})"
            )
        derived = self.tick_lower <= self.tick_current < self.tick_upper
        if self.in_range is None:
            object.__setattr__(self, "in_range", derived)
        elif self.in_range != derived:
            raise ValueError(
                f"in_range={self.in_range} contradicts ticks "
                f"[{self.tick_lower}, {self.tick_upper}) @ {self.tick_current}"
            )

    @property
    def is_lp_shaped(self) -> bool:
        """True when any LP-only field is set."""
        return any(getattr(self, name) is not None for name in _LP_FIELDS)

    @property
    def dedupe_key(self) -> Tuple[str, str, Optional[int]]:
        return (self.protocol, self.asset_address, self.position_id)

    def to_dict(self) -> dict:
        """Plain dict (None fields dropped), e.g. for JSON output."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class StrategyStep:
    step_number: int
    protocol: str
    action: str
    input_token: str
    output_token: str
    apy: float
    position_value: float


def complexity_for(step_count: int) -> str:
    """1 step → Simple, 2 → Intermediate, 3+ → Advanced."""
    if step_count <= 1:
        return "Simple"
    if step_count == 2:
        return "Intermediate"
    return "Advanced"


@dataclass(frozen=True)
class DetectedStrategy:
    """
    A wallet's positions classified into one named strategy.

    base_apy is the first step's APY; bonus_apy sums the rest, so
    total_apy = base_apy + bonus_apy is the yield stacked along the chain.
    """

    name: str
    description: str
    steps: Tuple[StrategyStep, ...]
    base_apy: float
    bonus_apy: float
    total_apy: float
    total_value: float
    complexity: str
    is_loop: bool
    tags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.steps:
            raise ValueError("A strategy needs at least one step")
        numbers = [s.step_number for s in self.steps]
        if numbers != list(range(1, len(self.steps) + 1)):
            raise ValueError(f"Step numbers must be 1..n, got {numbers}")
        if self.complexity not in COMPLEXITY_LEVELS:
            raise ValueError(f"Unknown complexity '{self.complexity}'")
        if len(set(self.tags)) != len(self.tags):
            raise ValueError(f"Duplicate strategy tags: {self.tags}")

    @property
    def protocols(self) -> List[str]:
        """Distinct protocols in step order."""
        seen: List[str] = []
        for step in self.steps:
            if step.protocol not in seen:
                seen.append(step.protocol)
        return seen
