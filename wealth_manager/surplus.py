from __future__ import annotations

from dataclasses import asdict, dataclass

import structlog

logger = structlog.get_logger(__name__)

# share of the surplus diverted to the emergency fund while it is short
EMERGENCY_FUND_SHARE = 0.5
MIN_RECOMMENDED_PCT = 20.0
MAX_RECOMMENDED_PCT = 80.0


@dataclass(frozen=True)
class SurplusResult:
    monthly_surplus: float
    emergency_fund_needed: float
    investable_amount: float
    recommended_investment_percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_surplus(
    monthly_income: float,
    monthly_expenses: float,
    emergency_fund_target: float = 6,  # months of expenses
    current_emergency_fund: float = 0,
) -> SurplusResult:
    surplus = monthly_income - monthly_expenses
    fund_needed = max(0.0, monthly_expenses * emergency_fund_target - current_emergency_fund)

    investable = surplus
    if fund_needed > 0:
        investable = surplus - min(surplus * EMERGENCY_FUND_SHARE, fund_needed)

    raw_pct = (investable / surplus * 100) if surplus > 0 else 0.0
    pct = min(MAX_RECOMMENDED_PCT, max(MIN_RECOMMENDED_PCT, raw_pct))

    result = SurplusResult(
        monthly_surplus=max(0.0, surplus),
        emergency_fund_needed=fund_needed,
        investable_amount=max(0.0, investable),
        recommended_investment_percentage=pct,
    )
    logger.info("surplus_calculated", monthly_income=monthly_income, monthly_expenses=monthly_expenses, **result.to_dict())
    return result


def surplus_analysis(result: SurplusResult) -> dict:
    if result.investable_amount > 100:
        advice = "Consider investing surplus in DeFi protocols"
    elif result.emergency_fund_needed > 0:
        advice = "Focus on building emergency fund first"
    else:
        advice = "Monitor expenses to create investment surplus"

    return {
        "can_invest": result.investable_amount > 0,
        "emergency_fund_status": "needs_funding" if result.emergency_fund_needed > 0 else "adequate",
        "recommendation": advice,
    }
