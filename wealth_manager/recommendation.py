from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Literal, Optional

import structlog

from .allocation import AllocationResult, generate_allocation_strategy
from .profiles import UserProfile
from .protocols import Allocation, YieldSnapshot, apys_with_fallback, weighted_apy_bps
from .rebalance import RebalanceDecision
from .surplus import SurplusResult

logger = structlog.get_logger(__name__)

RecommendationType = Literal["deposit", "rebalance", "yield_opportunity"]

MIN_PORTFOLIO_VALUE_USD = 100.0
SURPLUS_DEPOSIT_THRESHOLD = 100.0
REBALANCE_CONFIDENCE: Dict[str, float] = {"high": 0.85, "medium": 0.7, "low": 0.6}

BEHAVIOUR_WINDOW = timedelta(days=30)
MIN_SUCCESS_RATE = 0.7
SLIPPAGE_STEP = 0.5
MIN_SLIPPAGE = 0.5


@dataclass(frozen=True)
class Recommendation:
    user_id: str
    type: RecommendationType
    title: str
    description: str
    confidence: float
    expected_return: float  # %
    risk_level: str
    action_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "expected_return": self.expected_return,
            "risk_level": self.risk_level,
            "action_data": self.action_data,
        }


def build_recommendation(
    profile: UserProfile,
    allocation: AllocationResult,
    portfolio_value: float = 0.0,
    surplus: Optional[SurplusResult] = None,
    decision: Optional[RebalanceDecision] = None,
    yields: Optional[Iterable[YieldSnapshot]] = None,
    min_portfolio_value: float = MIN_PORTFOLIO_VALUE_USD,
) -> Recommendation:
    """
    Pick one next step for the user.

    Default is a yield opportunity. A portfolio under the minimum or a monthly
    surplus worth investing turns it into a deposit, and a triggered rebalance
    decision overrides either.
    """
    kind: RecommendationType = "yield_opportunity"
    title = "Yield Optimization Opportunity"
    description = "Market conditions present opportunities for yield optimization."
    confidence = 0.7

    if portfolio_value < min_portfolio_value:
        kind = "deposit"
        title = "Initial Investment Recommended"
        description = (
            f"Consider making an initial investment of at least ${min_portfolio_value:,.0f} "
            "to start optimizing yields across Avalanche DeFi protocols."
        )
        confidence = 0.8
    elif surplus is not None and surplus.investable_amount > SURPLUS_DEPOSIT_THRESHOLD:
        kind = "deposit"
        title = "Regular Investment Opportunity"
        description = (
            f"Based on your monthly surplus of ${surplus.investable_amount:,.0f}, "
            "consider increasing your DeFi investment allocation."
        )
        confidence = 0.75

    if decision is not None and decision.should_rebalance:
        kind = "rebalance"
        title = "Portfolio Rebalancing Recommended"
        description = decision.reason
        confidence = REBALANCE_CONFIDENCE[decision.urgency]

    strategy = allocation.strategy
    rec = Recommendation(
        user_id=profile.id,
        type=kind,
        title=title,
        description=description,
        confidence=confidence,
        expected_return=strategy.expected_apy * 100,
        risk_level=strategy.risk_level,
        action_data={
            "allocation": strategy.to_dict(),
            "allocation_source": allocation.source,
            "surplus": surplus.to_dict() if surplus else None,
            "rebalance": decision.to_dict() if decision else None,
            "market": [
                {"protocol": y.protocol, "apy": y.apy, "is_active": y.is_active}
                for y in (yields or [])
            ],
        },
    )
    logger.info(
        "recommendation_generated",
        user_id=profile.id,
        type=kind,
        confidence=confidence,
        portfolio_value=portfolio_value,
    )
    return rec


@dataclass(frozen=True)
class UserAction:
    type: str
    timestamp: datetime
    successful: bool = True


def infer_preferences(
    actions: Iterable[UserAction],
    now: datetime,
    current_max_slippage: float = 2.0,
) -> Dict[str, float]:
    """
    Preference updates learned from the last 30 days of actions.
    Returns only the keys that changed; empty when there is nothing recent.
    """
    recent = sorted(
        (a for a in actions if timedelta(0) <= now - a.timestamp < BEHAVIOUR_WINDOW),
        key=lambda a: a.timestamp,
    )
    if not recent:
        return {}

    out: Dict[str, float] = {}

    rebalances = [a for a in recent if a.type == "rebalance"]
    if rebalances:
        if len(rebalances) > 1:
            span = rebalances[-1].timestamp - rebalances[0].timestamp
            avg_days = span.total_seconds() / 86_400 / (len(rebalances) - 1)
        else:
            avg_days = 30.0
        out["rebalance_frequency"] = max(1, round(avg_days))

    success_rate = sum(1 for a in recent if a.successful) / len(recent)
    if success_rate < MIN_SUCCESS_RATE:
        out["max_slippage"] = max(MIN_SLIPPAGE, current_max_slippage - SLIPPAGE_STEP)

    logger.info("preferences_inferred", actions=len(recent), success_rate=round(success_rate, 3), **out)
    return out


def analyze_portfolio(
    risk_score: int,
    current: Optional[Allocation] = None,
    current_apy: Optional[float] = None,  # %
    yields: Optional[Iterable[YieldSnapshot]] = None,
) -> dict:
    """Current allocation against the optimal one for `risk_score`."""
    if yields is not None:
        yields = list(yields)
    optimal = generate_allocation_strategy(risk_score, yields)
    current = current or Allocation(0.0, 0.0, 0.0)
    if current_apy is None:
        current_apy = weighted_apy_bps(current, apys_with_fallback(yields)) / 100
    optimal_apy = optimal.strategy.expected_apy * 100

    notes: List[str] = [optimal.strategy.rationale]
    if optimal_apy - current_apy > 0:
        notes.append("Consider rebalancing to optimize yield potential")
    notes.append("Monitor market conditions for better opportunities")

    return {
        "current_allocation": current.as_dict(),
        "optimal_allocation": optimal.strategy.allocation.as_dict(),
        "performance": {
            "current_apy": current_apy,
            "optimal_apy": optimal_apy,
            "improvement_potential": optimal_apy - current_apy,
        },
        "risk_level": optimal.strategy.risk_level,
        "recommendations": notes,
    }
