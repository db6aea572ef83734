from __future__ import annotations

import os
from datetime import date, timedelta
from typing import Optional

import pandas as pd
import structlog
import yfinance as yf

logger = structlog.get_logger(__name__)

CACHE_DIR = ".cache_prices"
NATIVE_TICKER = "AVAX-USD"
FALLBACK_NATIVE_PRICE = 45.23


def _cache_path(cache_dir: str, ticker: str, start: str, end: str) -> str:
    safe = (ticker or "").replace("/", "_").replace(":", "_")
    return os.path.join(cache_dir, f"{safe}_{start}_{end}.parquet")


def _normalize_download_df(df: pd.DataFrame) -> pd.DataFrame:
    if df is None or len(df) == 0:
        raise ValueError("No data returned from yfinance")
    # yfinance sometimes returns MultiIndex columns
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)
    df = df.copy()
    df.index = pd.to_datetime(df.index)
    df = df.sort_index()
    return df[~df.index.duplicated(keep="last")]


def fetch_prices(
    ticker: str,
    start: str,
    end: str,
    use_cache: bool = True,
    cache_dir: str = CACHE_DIR,
) -> pd.DataFrame:
    """
    Daily Close for `ticker` over [start, end).
    Completed ranges are cached as parquet under `cache_dir`.
    """
    path = _cache_path(cache_dir, ticker, start, end)

    if use_cache and os.path.exists(path):
        df = _normalize_download_df(pd.read_parquet(path))
    else:
        df = yf.download(ticker, start=start, end=end, auto_adjust=True, progress=False)
        df = _normalize_download_df(df)
        if use_cache:
            os.makedirs(cache_dir, exist_ok=True)
            df.to_parquet(path)

    if "Close" not in df.columns:
        if "Adj Close" in df.columns:
            df["Close"] = df["Adj Close"]
        else:
            df["Close"] = df.iloc[:, -1]

    return df[["Close"]].dropna()


def latest_native_price(
    ticker: str = NATIVE_TICKER,
    lookback_days: int = 7,
    today: Optional[date] = None,
) -> float:
    """Last close of the native token in USD; FALLBACK_NATIVE_PRICE when the feed is unavailable."""
    today = today or date.today()
    start = (today - timedelta(days=lookback_days)).isoformat()
    end = (today + timedelta(days=1)).isoformat()
    try:
        # the window moves every day, nothing worth caching
        df = fetch_prices(ticker, start, end, use_cache=False)
        return float(df["Close"].iloc[-1])
    except Exception as e:
        logger.warning("native_price_unavailable", ticker=ticker, error=str(e), fallback=FALLBACK_NATIVE_PRICE)
        return FALLBACK_NATIVE_PRICE


def hold_curve(prices: pd.Series, initial_amount: float) -> pd.Series:
    """Value of `initial_amount` bought at the first close and held."""
    prices = prices.dropna()
    if len(prices) == 0:
        return pd.Series(dtype=float)
    return initial_amount * prices / float(prices.iloc[0])
