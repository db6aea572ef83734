from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional

import structlog

from .allocation import AllocationResult, generate_allocation_strategy
from .profiles import UserProfile
from .protocols import HIGHEST_RISK, LOWEST_RISK, PROTOCOLS, Allocation, apys_with_fallback, weighted_apy_bps
from .providers import GasPriceProvider, YieldProvider

logger = structlog.get_logger(__name__)

Urgency = Literal["low", "medium", "high"]
URGENCY_RANK: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}

DEFAULT_REBALANCE_FREQUENCY_DAYS = 30
TIME_HIGH_URGENCY_DAYS = 60

DRIFT_THRESHOLD_PCT = 10.0
DRIFT_HIGH_URGENCY_PCT = 20.0

OPPORTUNITY_THRESHOLD_BPS = 100.0
OPPORTUNITY_HIGH_URGENCY_BPS = 300.0

CONSERVATIVE_MAX_HIGH_RISK_PCT = 20.0
AGGRESSIVE_MAX_LOW_RISK_PCT = 50.0

REBALANCE_GAS_UNITS = 300_000
FALLBACK_GAS_COST = 0.5  # native units


@dataclass
class RebalanceDecision:
    should_rebalance: bool
    reason: str
    urgency: Urgency
    new_allocation: Optional[Allocation] = None
    expected_improvement: Optional[float] = None  # percent APY
    estimated_gas_cost: Optional[float] = None  # native units
    rule: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["new_allocation"] = self.new_allocation.as_dict() if self.new_allocation else None
        return d


NO_REBALANCE = RebalanceDecision(False, "Portfolio is optimally balanced", "low")


@dataclass(frozen=True)
class DriftAnalysis:
    drifts: Dict[str, float]
    max_drift: float


def calculate_allocation_drift(current: Allocation, target: Allocation) -> DriftAnalysis:
    drifts = {p: abs(current[p] - target[p]) for p in PROTOCOLS}
    return DriftAnalysis(drifts, max(drifts.values()))


def days_between(earlier: datetime, later: datetime) -> float:
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    return (later - earlier).total_seconds() / 86_400


# -----------------------------
# Rules. Each returns a triggered decision or None.
# -----------------------------
def time_rule(profile: UserProfile, now: datetime) -> Optional[RebalanceDecision]:
    days = days_between(profile.last_rebalance, now)
    frequency = profile.preferences.rebalance_frequency or DEFAULT_REBALANCE_FREQUENCY_DAYS
    if days < frequency:
        return None
    return RebalanceDecision(
        True,
        f"It has been {int(days)} days since last rebalance",
        "high" if days > TIME_HIGH_URGENCY_DAYS else "medium",
        rule="time",
    )


def drift_rule(current: Allocation, target: Allocation) -> Optional[RebalanceDecision]:
    drift = calculate_allocation_drift(current, target)
    if drift.max_drift <= DRIFT_THRESHOLD_PCT:
        return None
    return RebalanceDecision(
        True,
        f"Portfolio allocation has drifted {drift.max_drift:.1f}% from target",
        "high" if drift.max_drift > DRIFT_HIGH_URGENCY_PCT else "medium",
        new_allocation=target,
        rule="drift",
    )


def opportunity_rule(current: Allocation, optimal: AllocationResult, apys: Dict[str, float]) -> Optional[RebalanceDecision]:
    current_bps = weighted_apy_bps(current, apys)
    optimal_bps = optimal.strategy.expected_apy * 10_000
    improvement = optimal_bps - current_bps
    if improvement <= OPPORTUNITY_THRESHOLD_BPS:
        return None
    return RebalanceDecision(
        True,
        f"Market conditions present {improvement / 100:.2f}% APY improvement opportunity",
        "high" if improvement > OPPORTUNITY_HIGH_URGENCY_BPS else "medium",
        new_allocation=optimal.strategy.allocation,
        expected_improvement=improvement / 100,
        rule="opportunity",
    )


def profile_mismatch_rule(profile: UserProfile, current: Allocation) -> Optional[RebalanceDecision]:
    if profile.risk_profile == "Conservative" and current[HIGHEST_RISK] > CONSERVATIVE_MAX_HIGH_RISK_PCT:
        return RebalanceDecision(True, "High-risk allocation detected for conservative profile", "high", rule="profile_mismatch")
    if profile.risk_profile == "Aggressive" and current[LOWEST_RISK] > AGGRESSIVE_MAX_LOW_RISK_PCT:
        return RebalanceDecision(True, "Low-yield allocation detected for aggressive profile", "medium", rule="profile_mismatch")
    return None


def select_decision(candidates: List[RebalanceDecision]) -> RebalanceDecision:
    if not candidates:
        return replace(NO_REBALANCE)
    # sorted() is stable: equal urgency keeps rule order
    return sorted(candidates, key=lambda d: URGENCY_RANK[d.urgency], reverse=True)[0]


class RebalanceEngine:
    """
    Runs the four rebalance rules against a user's live allocation.
    Suspends only to fetch yields and the gas price; nothing is persisted.
    """

    def __init__(
        self,
        yield_provider: YieldProvider,
        gas_provider: Optional[GasPriceProvider] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.yield_provider = yield_provider
        self.gas_provider = gas_provider
        self.clock = clock

    async def estimate_gas_cost(self) -> float:
        if self.gas_provider is None:
            return FALLBACK_GAS_COST
        try:
            price = await self.gas_provider.gas_price()
        except Exception as e:
            logger.error("gas_estimate_failed", error=str(e))
            return FALLBACK_GAS_COST
        return float(price) * REBALANCE_GAS_UNITS

    async def evaluate_rebalance_decision(self, profile: UserProfile, current_allocation: Allocation) -> RebalanceDecision:
        try:
            yields = await self.yield_provider.get_yields()
        except Exception as e:
            logger.error("yield_fetch_failed", user_id=profile.id, error=str(e))
            yields = []
        target = generate_allocation_strategy(profile.risk_score, yields)
        apys = apys_with_fallback(yields)

        triggered = [
            d for d in (
                time_rule(profile, self.clock()),
                drift_rule(current_allocation, target.strategy.allocation),
                opportunity_rule(current_allocation, target, apys),
                profile_mismatch_rule(profile, current_allocation),
            )
            if d is not None
        ]
        decision = select_decision(triggered)

        if decision.should_rebalance:
            if decision.new_allocation is None:
                decision.new_allocation = target.strategy.allocation
            decision.estimated_gas_cost = await self.estimate_gas_cost()

        logger.info(
            "rebalance_decision_made",
            user_id=profile.id,
            should_rebalance=decision.should_rebalance,
            reason=decision.reason,
            urgency=decision.urgency,
            rule=decision.rule,
            triggered=[d.rule for d in triggered],
            target_source=target.source,
        )
        return decision
