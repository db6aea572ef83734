from __future__ import annotations

import math
from typing import Dict, Optional

import numpy as np
import pandas as pd

DAYS_PER_YEAR = 365
RISK_FREE_ANNUAL = 0.02

# analytic benchmark assumptions
NATIVE_TOKEN_ANNUAL_RETURN = 0.20
SAVINGS_ANNUAL_RETURN = 0.02


def drawdown_series(equity: pd.Series) -> pd.Series:
    peak = equity.cummax()
    return equity / peak - 1.0


def daily_returns(equity: pd.Series) -> pd.Series:
    return equity.pct_change().dropna()


def annualized_return(initial_value: float, final_value: float, days: int) -> float:
    """
    (final/initial)^(365/days) - 1, as a fraction.
    Zero elapsed days has no annual rate: 0.0. A wiped-out portfolio is -1.0.
    """
    if days <= 0 or initial_value <= 0:
        return 0.0
    ratio = final_value / initial_value
    if ratio <= 0:
        return -1.0
    return float(ratio ** (DAYS_PER_YEAR / days) - 1.0)


def annualized_vol(returns: pd.Series) -> float:
    if len(returns) < 2:
        return 0.0
    vol = returns.std(ddof=0)
    if vol == 0 or np.isnan(vol):
        return 0.0
    return float(vol * math.sqrt(DAYS_PER_YEAR))


def sharpe_ratio(returns: pd.Series, rf_annual: float = RISK_FREE_ANNUAL) -> float:
    if len(returns) < 2:
        return 0.0
    vol = returns.std(ddof=0)
    if vol == 0 or np.isnan(vol):
        return 0.0
    rf_daily = rf_annual / DAYS_PER_YEAR
    return float((returns.mean() - rf_daily) / vol * math.sqrt(DAYS_PER_YEAR))


def worst_drawdown_window(equity: pd.Series) -> Dict[str, Optional[object]]:
    equity = equity.dropna()
    if len(equity) < 2:
        return {"peak_date": None, "trough_date": None, "recovery_date": None, "max_drawdown": 0.0}

    dd = drawdown_series(equity)
    trough_date = dd.idxmin()
    max_dd = float(dd.loc[trough_date])
    if max_dd >= 0:
        return {"peak_date": None, "trough_date": None, "recovery_date": None, "max_drawdown": 0.0}

    peak_date = equity.loc[:trough_date].idxmax()
    # first date after trough where equity is back at the old peak
    after = equity.loc[trough_date:]
    rec = after[after >= equity.loc[peak_date]]
    recovery_date = rec.index[0] if len(rec) else None

    return {
        "peak_date": peak_date,
        "trough_date": trough_date,
        "recovery_date": recovery_date,
        "max_drawdown": max_dd,
    }


def benchmark_comparison(initial_amount: float, days: int) -> Dict[str, float]:
    """
    Closed-form comparisons over the same horizon, independent of any simulation:
    hold the native token, hold a stablecoin, park in savings. Daily compounding.
    """
    days = max(0, int(days))
    hold_native = initial_amount * (1 + NATIVE_TOKEN_ANNUAL_RETURN / DAYS_PER_YEAR) ** days
    savings = initial_amount * (1 + SAVINGS_ANNUAL_RETURN / DAYS_PER_YEAR) ** days
    return {
        "hold_avax": float(hold_native),
        "hold_usdc": float(initial_amount),
        "traditional_savings": float(savings),
    }


def compute_metrics(equity: pd.Series, initial_value: float) -> dict:
    rets = daily_returns(equity)
    days = (equity.index[-1] - equity.index[0]).days if len(equity) else 0
    final = float(equity.iloc[-1]) if len(equity) else float(initial_value)
    return {
        "final": final,
        "total_return": final - initial_value,
        "cagr": annualized_return(initial_value, final, days),
        "sharpe": sharpe_ratio(rets),
        "vol": annualized_vol(rets),
    }


def benchmark_curves(initial_amount: float, index: pd.DatetimeIndex) -> pd.DataFrame:
    """Day-by-day path of each benchmark_comparison leg over `index`."""
    if len(index) == 0:
        return pd.DataFrame(columns=["hold_avax", "hold_usdc", "traditional_savings"])
    elapsed = np.asarray((index - index[0]).days, dtype=float)
    return pd.DataFrame(
        {
            "hold_avax": initial_amount * (1 + NATIVE_TOKEN_ANNUAL_RETURN / DAYS_PER_YEAR) ** elapsed,
            "hold_usdc": np.full(len(index), float(initial_amount)),
            "traditional_savings": initial_amount * (1 + SAVINGS_ANNUAL_RETURN / DAYS_PER_YEAR) ** elapsed,
        },
        index=index,
    )
