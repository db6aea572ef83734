from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Literal, Optional, Tuple

import structlog

from .protocols import (
    PROTOCOLS,
    Allocation,
    YieldSnapshot,
    apy_map,
    apys_with_fallback,
)
from .risk import get_risk_profile, risk_level_for

logger = structlog.get_logger(__name__)

AllocationSource = Literal["market", "baseline", "fallback"]

BASE_ALLOCATIONS: Dict[str, Dict[str, float]] = {
    "Conservative": {"aave": 70, "traderjoe": 30, "yieldyak": 0},
    "Balanced": {"aave": 40, "traderjoe": 40, "yieldyak": 20},
    "Aggressive": {"aave": 20, "traderjoe": 30, "yieldyak": 50},
}

# (floor, ceiling) per slot; a slot whose base share is zero gets a zero floor
PROTOCOL_BOUNDS: Dict[str, Tuple[float, float]] = {
    "aave": (5.0, 85.0),
    "traderjoe": (5.0, 85.0),
    "yieldyak": (0.0, 80.0),
}

# max pull, in percentage points, for a protocol yielding 2x the average
YIELD_TILT = 10.0

DEFAULT_EXPECTED_APY: Dict[str, float] = {
    "Conservative": 0.065,
    "Balanced": 0.088,
    "Aggressive": 0.112,
}


@dataclass(frozen=True)
class AllocationStrategy:
    allocation: Allocation
    rationale: str
    expected_apy: float  # fraction, 0.085 == 8.5%
    risk_level: str

    def to_dict(self) -> dict:
        return {
            **self.allocation.as_dict(),
            "rationale": self.rationale,
            "expected_apy": self.expected_apy,
            "risk_level": self.risk_level,
        }


@dataclass(frozen=True)
class AllocationResult:
    """
    Strategy plus where it came from:
      market   - all three live yields, tilted and normalized
      baseline - yields incomplete, profile table with fallback APYs
      fallback - generation failed, fixed profile defaults
    """
    strategy: AllocationStrategy
    source: AllocationSource
    risk_profile: str
    error: Optional[str] = field(default=None)

    @property
    def used_fallback(self) -> bool:
        return self.source == "fallback"


def profile_bounds(profile: str) -> Dict[str, Tuple[float, float]]:
    base = BASE_ALLOCATIONS[profile]
    return {
        p: (0.0 if base[p] == 0 else lo, hi)
        for p, (lo, hi) in PROTOCOL_BOUNDS.items()
    }


def yield_adjustments(apys: Dict[str, float]) -> Dict[str, float]:
    avg = sum(apys[p] for p in PROTOCOLS) / len(PROTOCOLS)
    if avg == 0 or not math.isfinite(avg):
        raise ValueError(f"cannot tilt allocation on average APY {avg}")
    return {p: (apys[p] - avg) / avg * YIELD_TILT for p in PROTOCOLS}


def normalize(values: Dict[str, float]) -> Dict[str, float]:
    total = sum(values.values())
    if total <= 0 or not math.isfinite(total):
        raise ValueError(f"cannot normalize allocation with total {total}")
    out = {p: values[p] / total * 100.0 for p in PROTOCOLS}
    # push float residue into the largest slot so the triple sums to 100 exactly
    biggest = max(PROTOCOLS, key=lambda p: out[p])
    out[biggest] += 100.0 - sum(out.values())
    return out


def allocation_rationale(profile: str, allocation: Allocation, apys: Dict[str, float]) -> str:
    parts = [f"This {profile} allocation strategy "]

    if allocation.aave >= 50:
        parts.append(
            f"prioritizes stability with {allocation.aave:.0f}% in Aave lending "
            f"({apys['aave']:.1f}% APY), "
        )
    if allocation.traderjoe >= 30:
        parts.append(
            f"includes {allocation.traderjoe:.0f}% in TraderJoe LP for balanced risk-reward "
            f"({apys['traderjoe']:.1f}% APY), "
        )
    if allocation.yieldyak > 0:
        parts.append(
            f"and allocates {allocation.yieldyak:.0f}% to YieldYak farming for higher yields "
            f"({apys['yieldyak']:.1f}% APY). "
        )
    else:
        parts.append("and avoids high-risk farming protocols. ")

    parts.append("This allocation is optimized for your risk profile while considering current market yields.")
    return "".join(parts)


def default_strategy(profile: str) -> AllocationStrategy:
    return AllocationStrategy(
        allocation=Allocation.from_mapping(BASE_ALLOCATIONS[profile]),
        rationale=f"Using default {profile} allocation due to market data unavailability.",
        expected_apy=DEFAULT_EXPECTED_APY[profile],
        risk_level=risk_level_for(profile),
    )


def _build(risk_score: float, yields: Optional[Iterable[YieldSnapshot]]) -> Tuple[AllocationStrategy, AllocationSource, str]:
    profile = get_risk_profile(risk_score)
    values = dict(BASE_ALLOCATIONS[profile])
    live = apy_map(yields)
    source: AllocationSource = "baseline"

    if all(p in live for p in PROTOCOLS):
        adj = yield_adjustments(live)
        bounds = profile_bounds(profile)
        for p in PROTOCOLS:
            lo, hi = bounds[p]
            values[p] = max(lo, min(hi, values[p] + adj[p]))
        values = normalize(values)
        source = "market"

    apys = apys_with_fallback(yields)
    if not all(math.isfinite(apys[p]) for p in PROTOCOLS):
        raise ValueError("non-finite APY in yield data")

    allocation = Allocation.from_mapping(values)
    expected = sum(values[p] * apys[p] for p in PROTOCOLS) / 10_000.0

    strategy = AllocationStrategy(
        allocation=allocation,
        rationale=allocation_rationale(profile, allocation, apys),
        expected_apy=expected,
        risk_level=risk_level_for(profile),
    )
    return strategy, source, profile


def generate_allocation_strategy(
    risk_score: float,
    yields: Optional[Iterable[YieldSnapshot]] = None,
) -> AllocationResult:
    """
    Target allocation for a risk score, tilted toward protocols yielding above
    the three-way average. Never raises: failures come back as source="fallback".
    """
    if yields is not None:
        yields = list(yields)
    try:
        strategy, source, profile = _build(risk_score, yields)
    except (ValueError, ArithmeticError, KeyError, TypeError) as e:
        profile = get_risk_profile(risk_score)
        logger.error("allocation_generation_failed", risk_score=risk_score, profile=profile, error=str(e))
        return AllocationResult(default_strategy(profile), "fallback", profile, error=str(e))

    logger.info(
        "allocation_strategy_generated",
        risk_score=risk_score,
        profile=profile,
        source=source,
        expected_apy=round(strategy.expected_apy, 6),
        **strategy.allocation.as_dict(),
    )
    return AllocationResult(strategy, source, profile)
