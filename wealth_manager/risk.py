from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Literal

import structlog

logger = structlog.get_logger(__name__)

InvestmentGoal = Literal["short_term", "medium_term", "long_term", "retirement"]
RiskTolerance = Literal["very_low", "low", "medium", "high", "very_high"]
Experience = Literal["none", "beginner", "intermediate", "advanced", "expert"]
LiquidityNeed = Literal["low", "medium", "high"]
RiskProfile = Literal["Conservative", "Balanced", "Aggressive"]

WEIGHTS: Dict[str, float] = {
    "age": 0.20,
    "income": 0.15,
    "expenses": 0.10,
    "goal": 0.15,
    "tolerance": 0.25,
    "experience": 0.10,
    "time_horizon": 0.05,
}

GOAL_SCORES: Dict[str, float] = {
    "short_term": 20,
    "medium_term": 45,
    "long_term": 70,
    "retirement": 80,
}

TOLERANCE_SCORES: Dict[str, float] = {
    "very_low": 10,
    "low": 25,
    "medium": 50,
    "high": 75,
    "very_high": 90,
}

EXPERIENCE_SCORES: Dict[str, float] = {
    "none": 10,
    "beginner": 25,
    "intermediate": 50,
    "advanced": 75,
    "expert": 90,
}

RISK_PROFILE_CATALOG: Dict[str, dict] = {
    "Conservative": {
        "range": "0-33",
        "description": "Prioritizes capital preservation with lower volatility",
        "allocation": {"aave": 70, "traderjoe": 30, "yieldyak": 0},
        "expected_apy": "5.5-6.5%",
        "suitable_for": ["New investors", "Risk-averse individuals", "Short-term goals"],
    },
    "Balanced": {
        "range": "34-66",
        "description": "Balances growth potential with moderate risk",
        "allocation": {"aave": 40, "traderjoe": 40, "yieldyak": 20},
        "expected_apy": "7.5-9.5%",
        "suitable_for": ["Medium-term goals", "Moderate risk tolerance", "Diversified approach"],
    },
    "Aggressive": {
        "range": "67-100",
        "description": "Maximizes growth potential with higher volatility",
        "allocation": {"aave": 20, "traderjoe": 30, "yieldyak": 50},
        "expected_apy": "10-13%",
        "suitable_for": ["Long-term goals", "High risk tolerance", "Experienced investors"],
    },
}


@dataclass(frozen=True)
class RiskAssessmentAnswers:
    age: float
    income: float
    monthly_expenses: float
    investment_goal: InvestmentGoal
    risk_tolerance: RiskTolerance
    investment_experience: Experience
    time_horizon: float  # years
    liquidity_need: LiquidityNeed = "medium"


def _clamp(x: float, lo: float, hi: float) -> float:
    # NaN sinks to the floor instead of leaking through min/max
    if math.isnan(x):
        return lo
    return max(lo, min(hi, x))


def _expense_score(monthly_expenses: float, income: float) -> float:
    # No income means expenses consume everything: lowest capacity.
    if not income or income <= 0 or math.isnan(income):
        return 0.0
    ratio = (monthly_expenses * 12) / income
    return _clamp(100 - ratio * 100, 0, 100)


def calculate_risk_score(answers: RiskAssessmentAnswers) -> int:
    """
    Weighted 0..100 risk capacity score from the questionnaire.
    Every sub-score lives on 0..100 and the weights sum to 1.0.
    Conservative 0-33, Balanced 34-66, Aggressive 67-100.
    """
    parts = {
        "age": _clamp((40 - answers.age) * 2 + 50, 0, 100),
        "income": _clamp(answers.income / 100_000 * 40 + 30, 0, 100),
        "expenses": _expense_score(answers.monthly_expenses, answers.income),
        "goal": GOAL_SCORES[answers.investment_goal],
        "tolerance": TOLERANCE_SCORES[answers.risk_tolerance],
        "experience": EXPERIENCE_SCORES[answers.investment_experience],
        "time_horizon": _clamp(answers.time_horizon / 20 * 100, 0, 100),
    }

    score = sum(parts[k] * WEIGHTS[k] for k in WEIGHTS)
    # half-up rounding; round() would bank 66.5 down to 66
    final = int(_clamp(math.floor(score + 0.5), 0, 100)) if math.isfinite(score) else 0

    logger.info(
        "risk_score_calculated",
        final_score=final,
        age=answers.age,
        risk_tolerance=answers.risk_tolerance,
        experience=answers.investment_experience,
    )
    return final


def get_risk_profile(score: float) -> RiskProfile:
    if score <= 33:
        return "Conservative"
    if score <= 66:
        return "Balanced"
    return "Aggressive"


def risk_level_for(profile: str) -> str:
    return {"Conservative": "low", "Balanced": "medium", "Aggressive": "high"}.get(profile, "low")
