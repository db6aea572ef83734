from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

import numpy as np
import structlog
from fastapi import Depends, FastAPI, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from wealth_manager.allocation import generate_allocation_strategy
from wealth_manager.backtest import PREDEFINED_SCENARIOS, BacktestParams, Scenario, run_backtest, run_scenario_analysis
from wealth_manager.config import Settings
from wealth_manager.errors import APIError, NotFoundError, UpstreamError, ValidationError
from wealth_manager.logs import configure_logging
from wealth_manager.profiles import UserPreferences, UserProfile
from wealth_manager.protocols import PROTOCOL_INFO
from wealth_manager.providers import InMemoryPortfolioReader
from wealth_manager.recommendation import analyze_portfolio, build_recommendation
from wealth_manager.risk import RISK_PROFILE_CATALOG, RiskAssessmentAnswers, calculate_risk_score, get_risk_profile
from wealth_manager.scheduler import AutoRebalanceConfig
from wealth_manager.surplus import calculate_surplus, surplus_analysis

from .models import (
    ADDRESS_PATTERN,
    AllocationModel,
    AllocationRequest,
    AnalyzePortfolioRequest,
    AutoRebalanceRequest,
    BacktestMetrics,
    BacktestRequest,
    BacktestRunResponse,
    CreateUserRequest,
    RebalanceEvaluateRequest,
    RebalanceMarker,
    RecommendationRequest,
    RiskAssessmentRequest,
    ScenarioRequest,
    SeriesPoint,
    SurplusRequest,
)
from .services.backtest import metrics_row, scenario_summary, to_markers, to_points
from .services.data import market_yields
from .services.state import Services, build_services, get_services

logger = structlog.get_logger(__name__)

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def ok(data: Any) -> dict:
    return {"success": True, "data": data, "timestamp": _now()}

def _error(status: int, message: str, code: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": message, "code": code, "timestamp": _now(), **extra},
    )

async def _require_profile(svc: Services, address: str) -> UserProfile:
    profile = await svc.profiles.get_profile(address)
    if profile is None:
        raise NotFoundError("User profile")
    return profile

def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = services.settings if services is not None else (settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        logger.info("api_started", env=settings.app_env, chain_id=settings.chain_id)
        yield
        await app.state.services.scheduler.shutdown()
        logger.info("api_stopped")

    app = FastAPI(title="DeFi Wealth Manager API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("api_error", path=request.url.path, status=exc.status_code, code=exc.code, error=exc.message)
        return _error(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_validation_failed", path=request.url.path, errors=len(exc.errors()))
        details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
        return _error(400, "Invalid request", "VALIDATION_ERROR", details=details)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("unhandled_error", path=request.url.path, exc_info=exc)
        message = str(exc) if not settings.is_production else "Internal server error"
        return _error(500, message, "INTERNAL_ERROR")

    register_routes(app)
    return app

def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health(svc: Services = Depends(get_services)):
        return {
            "ok": True,
            "environment": svc.settings.app_env,
            "chain": svc.settings.chain.name,
            "timestamp": _now(),
        }

    # ---- ai ----

    @app.post("/ai/risk-score")
    def risk_score(req: RiskAssessmentRequest):
        score = calculate_risk_score(RiskAssessmentAnswers(**req.model_dump()))
        profile = get_risk_profile(score)
        return ok({"risk_score": score, "risk_profile": profile, "profile": RISK_PROFILE_CATALOG[profile]})

    @app.post("/ai/allocation")
    async def allocation(req: AllocationRequest, svc: Services = Depends(get_services)):
        snapshots = await svc.yields.get_yields()
        result = generate_allocation_strategy(req.risk_score, snapshots)
        return ok({
            "allocation": result.strategy.to_dict(),
            "risk_profile": result.risk_profile,
            "source": result.source,
            "market": market_yields(snapshots),
        })

    @app.post("/ai/surplus")
    def surplus(req: SurplusRequest):
        result = calculate_surplus(
            req.monthly_income, req.monthly_expenses, req.emergency_fund_target, req.current_emergency_fund,
        )
        return ok({**result.to_dict(), "analysis": surplus_analysis(result)})

    @app.post("/ai/recommendation")
    async def recommendation(req: RecommendationRequest, svc: Services = Depends(get_services)):
        profile = await _require_profile(svc, req.address)
        snapshots = await svc.yields.get_yields()
        alloc = generate_allocation_strategy(profile.risk_score, snapshots)

        surplus_result = None
        if req.monthly_income is not None and req.monthly_expenses is not None:
            surplus_result = calculate_surplus(req.monthly_income, req.monthly_expenses)

        current = req.current_allocation.to_allocation() if req.current_allocation else None
        if current is None:
            try:
                current = await svc.portfolios.get_allocation(req.address)
            except (LookupError, UpstreamError) as e:
                logger.info("recommendation_without_allocation", address=req.address, error=str(e))
        decision = await svc.engine.evaluate_rebalance_decision(profile, current) if current else None

        rec = build_recommendation(
            profile, alloc, req.portfolio_value, surplus_result, decision, snapshots,
            min_portfolio_value=svc.settings.min_portfolio_value_usd,
        )
        return ok(rec.to_dict())

    @app.get("/ai/risk-profiles")
    def risk_profiles():
        return ok({"profiles": RISK_PROFILE_CATALOG, "protocols": PROTOCOL_INFO})

    @app.post("/ai/analyze-portfolio")
    async def analyze(req: AnalyzePortfolioRequest, svc: Services = Depends(get_services)):
        profile = await _require_profile(svc, req.address)
        snapshots = await svc.yields.get_yields()
        current = req.allocation.to_allocation() if req.allocation else None
        return ok(analyze_portfolio(profile.risk_score, current, req.estimated_apy, snapshots))

    # ---- users ----

    @app.post("/users")
    async def create_user(req: CreateUserRequest, svc: Services = Depends(get_services)):
        existing = await svc.profiles.get_profile(req.address)
        prefs = UserPreferences(max_slippage=req.max_slippage, rebalance_frequency=req.rebalance_frequency)
        if existing is not None:
            profile = replace(
                existing,
                risk_score=req.risk_score,
                auto_rebalance=req.auto_rebalance,
                preferences=prefs,
                total_deposited=req.total_deposited,
            )
        else:
            profile = UserProfile(
                address=req.address,
                risk_score=req.risk_score,
                last_rebalance=datetime.now(timezone.utc),
                auto_rebalance=req.auto_rebalance,
                preferences=prefs,
                total_deposited=req.total_deposited,
            )
        await svc.profiles.save_profile(profile)
        logger.info("user_profile_saved", user_id=profile.id, created=existing is None)
        return ok(profile.to_dict())

    @app.get("/users/{address}")
    async def get_user(address: str, svc: Services = Depends(get_services)):
        profile = await _require_profile(svc, address)
        return ok(profile.to_dict())

    # ---- rebalance ----

    @app.post("/rebalance/evaluate")
    async def evaluate(req: RebalanceEvaluateRequest, svc: Services = Depends(get_services)):
        profile = await _require_profile(svc, req.address)
        if req.current_allocation is not None:
            current = req.current_allocation.to_allocation()
        else:
            try:
                current = await svc.portfolios.get_allocation(req.address)
            except LookupError:
                raise NotFoundError("Portfolio") from None
        decision = await svc.engine.evaluate_rebalance_decision(profile, current)
        return ok(decision.to_dict())

    @app.put("/portfolio/{address}")
    async def record_portfolio(
        allocation: AllocationModel,
        address: str = Path(..., pattern=ADDRESS_PATTERN),
        svc: Services = Depends(get_services),
    ):
        if not isinstance(svc.portfolios, InMemoryPortfolioReader):
            raise ValidationError("Portfolio is read from the YieldOptimizer contract")
        svc.portfolios.set_allocation(address, allocation.to_allocation())
        return ok({"address": address, **allocation.model_dump()})

    @app.get("/portfolio/{address}")
    async def get_portfolio(address: str, svc: Services = Depends(get_services)):
        try:
            current = await svc.portfolios.get_allocation(address)
        except LookupError:
            raise NotFoundError("Portfolio") from None
        return ok({"address": address, **current.as_dict()})

    @app.post("/rebalance/auto")
    async def setup_auto(req: AutoRebalanceRequest, svc: Services = Depends(get_services)):
        profile = await _require_profile(svc, req.address)
        prefs = replace(profile.preferences, max_slippage=req.max_slippage)
        await svc.profiles.save_profile(replace(profile, auto_rebalance=req.enabled, preferences=prefs))
        interval = req.check_interval or svc.settings.default_check_interval_minutes
        status = await svc.scheduler.setup(
            req.address,
            AutoRebalanceConfig(enabled=req.enabled, check_interval=interval, max_slippage=req.max_slippage),
        )
        return ok(status.to_dict())

    @app.get("/rebalance/auto/{address}")
    def auto_status(address: str, svc: Services = Depends(get_services)):
        return ok(svc.scheduler.status(address).to_dict())

    @app.delete("/rebalance/auto/{address}")
    async def disable_auto(address: str, svc: Services = Depends(get_services)):
        was_scheduled = svc.scheduler.disable(address)
        profile = await svc.profiles.get_profile(address)
        if profile is not None and profile.auto_rebalance:
            await svc.profiles.save_profile(replace(profile, auto_rebalance=False))
        return ok({"disabled": was_scheduled, **svc.scheduler.status(address).to_dict()})

    # ---- backtesting ----

    @app.post("/backtesting/run", response_model=BacktestRunResponse)
    def backtest(req: BacktestRequest):
        params = _params(req)
        rng = np.random.default_rng(req.seed)
        result = run_backtest(params, rng=rng)
        return BacktestRunResponse(
            meta={
                "start_date": params.start_date.isoformat(),
                "end_date": params.end_date.isoformat(),
                "risk_score": params.risk_score,
                "risk_profile": get_risk_profile(params.risk_score),
                "seed": req.seed,
            },
            metrics=BacktestMetrics(**metrics_row(result)),
            comparison_benchmark=result.comparison_benchmark,
            drawdown_window=result.drawdown_window,
            equity=[SeriesPoint(**p) for p in to_points(result)],
            markers=[RebalanceMarker(**m) for m in to_markers(result)],
            timeline=[e.to_dict() for e in result.timeline] if req.include_timeline else None,
        )

    @app.post("/backtesting/scenarios")
    def scenarios(req: ScenarioRequest):
        base = _params(req.base_params)
        base_fields = req.base_params.model_dump()
        specs = []
        for s in req.scenarios:
            # overrides go through the same range and bound checks as the base request
            try:
                merged = BacktestRequest.model_validate({**base_fields, **s.params})
            except PydanticValidationError as e:
                raise ValidationError(f"Scenario {s.name!r}: {e.errors()[0]['msg']}") from e
            specs.append(Scenario(s.name, {k: getattr(merged, k) for k in s.params}))
        try:
            results = run_scenario_analysis(base, specs, seed=req.seed)
        except (ValueError, TypeError) as e:
            raise ValidationError(str(e)) from e
        return ok(scenario_summary(results))

    @app.get("/backtesting/predefined-scenarios")
    def predefined_scenarios():
        return ok([{"name": s.name, "params": s.params} for s in PREDEFINED_SCENARIOS])

    # ---- market ----

    @app.get("/market/yields")
    async def yields(svc: Services = Depends(get_services)):
        return ok(market_yields(await svc.yields.get_yields()))

    @app.get("/market/native-price")
    async def native_price(svc: Services = Depends(get_services)):
        price = await run_in_threadpool(svc.native_price)
        return ok({"ticker": svc.settings.native_price_ticker, "price_usd": price})

def _params(req: BacktestRequest) -> BacktestParams:
    try:
        return BacktestParams(
            initial_amount=req.initial_amount,
            risk_score=req.risk_score,
            start_date=req.start_date,
            end_date=req.end_date,
            rebalance_frequency=req.rebalance_frequency,
            compounding_enabled=req.compounding_enabled,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

app = create_app()
