from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from wealth_manager.protocols import Allocation

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
MAX_BACKTEST_DAYS = 3650

class AllocationModel(BaseModel):
    aave: float = Field(0.0, ge=0, le=100)
    traderjoe: float = Field(0.0, ge=0, le=100)
    yieldyak: float = Field(0.0, ge=0, le=100)

    def to_allocation(self) -> Allocation:
        return Allocation(self.aave, self.traderjoe, self.yieldyak)

# ---- ai ----

class RiskAssessmentRequest(BaseModel):
    age: int = Field(..., ge=18, le=100)
    income: float = Field(..., ge=0, description="annual income, USD")
    monthly_expenses: float = Field(..., ge=0)
    investment_goal: Literal["short_term", "medium_term", "long_term", "retirement"]
    risk_tolerance: Literal["very_low", "low", "medium", "high", "very_high"]
    investment_experience: Literal["none", "beginner", "intermediate", "advanced", "expert"]
    time_horizon: float = Field(..., ge=0, le=100, description="years")
    liquidity_need: Literal["low", "medium", "high"] = "medium"

class AllocationRequest(BaseModel):
    risk_score: int = Field(..., ge=0, le=100)

class SurplusRequest(BaseModel):
    monthly_income: float = Field(..., ge=0)
    monthly_expenses: float = Field(..., ge=0)
    emergency_fund_target: float = Field(6, ge=0, le=60, description="months of expenses")
    current_emergency_fund: float = Field(0, ge=0)

class RecommendationRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    portfolio_value: float = Field(0.0, ge=0)
    monthly_income: Optional[float] = Field(None, ge=0)
    monthly_expenses: Optional[float] = Field(None, ge=0)
    current_allocation: Optional[AllocationModel] = None

class AnalyzePortfolioRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    allocation: Optional[AllocationModel] = None
    estimated_apy: Optional[float] = Field(None, ge=0, description="percent")

# ---- users ----

class CreateUserRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    risk_score: int = Field(..., ge=0, le=100)
    auto_rebalance: bool = False
    rebalance_frequency: int = Field(30, ge=1, le=365)
    max_slippage: float = Field(2.0, ge=0, le=50)
    total_deposited: float = Field(0.0, ge=0)

# ---- rebalance ----

class RebalanceEvaluateRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    current_allocation: Optional[AllocationModel] = None

class AutoRebalanceRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS_PATTERN)
    enabled: bool = True
    check_interval: Optional[float] = Field(None, gt=0, le=7 * 24 * 60, description="minutes; server default when omitted")
    max_slippage: float = Field(2.0, ge=0, le=50)

# ---- backtesting ----

class BacktestRequest(BaseModel):
    initial_amount: float = Field(10000.0, gt=0)
    risk_score: int = Field(50, ge=0, le=100)
    start_date: date
    end_date: date
    rebalance_frequency: int = Field(30, ge=1, description="days")
    compounding_enabled: bool = True
    seed: Optional[int] = Field(None, ge=0)
    include_timeline: bool = True

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if (self.end_date - self.start_date).days > MAX_BACKTEST_DAYS:
            raise ValueError(f"backtest range is limited to {MAX_BACKTEST_DAYS} days")
        return self

class ScenarioModel(BaseModel):
    name: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_keys(self):
        allowed = {"initial_amount", "risk_score", "start_date", "end_date", "rebalance_frequency", "compounding_enabled"}
        unknown = set(self.params) - allowed
        if unknown:
            raise ValueError(f"unknown scenario parameters: {sorted(unknown)}")
        return self

class ScenarioRequest(BaseModel):
    base_params: BacktestRequest
    scenarios: List[ScenarioModel] = Field(..., min_length=1, max_length=10)
    seed: Optional[int] = Field(None, ge=0)

class SeriesPoint(BaseModel):
    t: str
    v: float

class RebalanceMarker(BaseModel):
    t: str
    action: str
    equity: float
    gas_used: Optional[float] = None
    allocation: Dict[str, float]

class BacktestMetrics(BaseModel):
    final_value: float
    total_return: float
    return_percentage: float
    annualized_return: float
    max_drawdown: float
    sharpe_ratio: float
    volatility: float
    rebalance_count: int

class BacktestRunResponse(BaseModel):
    success: bool = True
    meta: Dict[str, Any]
    metrics: BacktestMetrics
    comparison_benchmark: Dict[str, float]
    drawdown_window: Dict[str, Optional[str]]
    equity: List[SeriesPoint]
    markers: List[RebalanceMarker]
    timeline: Optional[List[Dict[str, Any]]] = None
