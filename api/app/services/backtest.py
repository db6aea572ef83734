from __future__ import annotations
from typing import List, Sequence, Tuple

from wealth_manager.backtest import BacktestResult

def to_points(result: BacktestResult) -> List[dict]:
    return [dict(t=e.date.isoformat(), v=float(e.portfolio_value)) for e in result.timeline]

def to_markers(result: BacktestResult) -> List[dict]:
    return [
        dict(
            t=e.date.isoformat(),
            action=e.action,
            equity=float(e.portfolio_value),
            gas_used=e.gas_used,
            allocation=e.allocation.as_dict(),
        )
        for e in result.timeline if e.action
    ]

def metrics_row(result: BacktestResult) -> dict:
    d = result.to_dict(include_timeline=False)
    return {k: d[k] for k in (
        "final_value", "total_return", "return_percentage", "annualized_return",
        "max_drawdown", "sharpe_ratio", "volatility", "rebalance_count",
    )}

def scenario_summary(results: Sequence[Tuple[str, BacktestResult]]) -> dict:
    """Per-scenario metrics plus the winner on each headline measure."""
    rows = [dict(name=name, **metrics_row(r)) for name, r in results]
    if not rows:
        return dict(scenarios=[], best={})
    best = dict(
        return_percentage=max(rows, key=lambda r: r["return_percentage"])["name"],
        sharpe_ratio=max(rows, key=lambda r: r["sharpe_ratio"])["name"],
        max_drawdown=min(rows, key=lambda r: r["max_drawdown"])["name"],
    )
    return dict(scenarios=rows, best=best)
