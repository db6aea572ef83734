from __future__ import annotations
from datetime import date, timedelta

import numpy as np
import pandas as pd
import streamlit as st
import plotly.graph_objects as go
import plotly.express as px

from wealth_manager.config import Settings
from wealth_manager.backtest import PREDEFINED_SCENARIOS, BacktestParams, Scenario, run_scenario_analysis, timeline_frame
from wealth_manager.data import fetch_prices, hold_curve
from wealth_manager.logs import configure_logging
from wealth_manager.metrics import benchmark_curves, compute_metrics, drawdown_series
from wealth_manager.protocols import PROTOCOL_INFO, PROTOCOLS
from wealth_manager.risk import get_risk_profile

settings = Settings.from_env()
configure_logging("WARNING")

st.set_page_config(page_title="DeFi Allocation Lab", layout="wide")
st.title("Research Cockpit: AI allocation vs hold AVAX vs stablecoins vs savings")

def money(x: float) -> str:
    x = float(x)
    ax = abs(x)
    if ax >= 1_000_000:
        return f"${x/1_000_000:,.2f}M"
    if ax >= 1_000:
        return f"${x/1_000:,.1f}K"
    return f"${x:,.0f}"

with st.sidebar:
    st.header("Capital")
    initial = st.number_input("Initial amount (USD)", min_value=100.0, value=10_000.0, step=1000.0)
    risk_score = st.slider("Risk score", 0, 100, 50, 1)
    st.caption(f"Risk profile: **{get_risk_profile(risk_score)}**")

    st.divider()
    st.header("Period")
    end = st.date_input("End", date.today())
    start = st.date_input("Start", end - timedelta(days=365))

    st.divider()
    st.header("Rebalancing")
    reb_freq = st.slider("Rebalance every (days)", 1, 365, 30, 1)
    compounding = st.checkbox("Compounding bonus", value=True)

    st.divider()
    st.header("Scenarios")
    use_predefined = st.checkbox("Add predefined scenarios", value=True)
    seed = st.number_input("Random seed", min_value=0, value=42, step=1)

    st.divider()
    st.header("Market overlay")
    live_avax = st.checkbox(f"Overlay real {settings.native_price_ticker} hold (yfinance)", value=False)

if start > end:
    st.error("Start must not be after End.")
    st.stop()

base = BacktestParams(
    initial_amount=float(initial),
    risk_score=int(risk_score),
    start_date=start,
    end_date=end,
    rebalance_frequency=int(reb_freq),
    compounding_enabled=bool(compounding),
)

scenarios = [Scenario("Custom", {})]
if use_predefined:
    scenarios += list(PREDEFINED_SCENARIOS)

with st.spinner("Simulating..."):
    results = run_scenario_analysis(base, scenarios, seed=int(seed))

frames = {name: timeline_frame(r) for name, r in results}

rows = []
for name, r in results:
    rows.append({
        "Scenario": name,
        "Final": r.final_value,
        "Return": r.return_percentage,
        "Annualized": r.annualized_return,
        "Sharpe": r.sharpe_ratio,
        "Vol": r.volatility,
        "MaxDD": r.max_drawdown,
        "Rebalances": r.rebalance_count,
        "DD trough": r.drawdown_window.get("trough_date") or "",
    })

summary = pd.DataFrame(rows)
disp = summary.copy()
disp["Final"] = disp["Final"].map(money)
for col in ("Return", "Annualized", "Vol", "MaxDD"):
    disp[col] = disp[col].round(1).map(lambda x: f"{x:.1f}%")
disp["Sharpe"] = disp["Sharpe"].round(2)

st.subheader("Performance summary")
st.dataframe(disp, use_container_width=True)

bench = results[0][1].comparison_benchmark
c1, c2, c3 = st.columns(3)
c1.metric("Hold AVAX (20%/yr)", money(bench["hold_avax"]))
c2.metric("Hold USDC", money(bench["hold_usdc"]))
c3.metric("Savings (2%/yr)", money(bench["traditional_savings"]))

# Equity chart
st.subheader("Portfolio value vs benchmarks")
fig = go.Figure()
for name, df in frames.items():
    fig.add_trace(go.Scatter(
        x=df.index, y=df["PortfolioValue"], mode="lines", name=name,
        customdata=np.stack([df["Regime"].values], axis=1),
        hovertemplate="%{x|%Y-%m-%d}<br><b>Value</b>: $%{y:,.0f}<br><b>Regime</b>: %{customdata[0]}<extra>"+name+"</extra>"
    ))
curves = benchmark_curves(float(initial), frames["Custom"].index)
for col, label in (("hold_avax", "Hold AVAX"), ("hold_usdc", "Hold USDC"), ("traditional_savings", "Savings")):
    fig.add_trace(go.Scatter(x=curves.index, y=curves[col], mode="lines", name=label, line=dict(dash="dot")))

if live_avax:
    try:
        prices = fetch_prices(
            settings.native_price_ticker, start.isoformat(), (end + timedelta(days=1)).isoformat(),
            cache_dir=settings.price_cache_dir,
        )
        real = hold_curve(prices["Close"], float(initial))
        m = compute_metrics(real, float(initial))
        fig.add_trace(go.Scatter(x=real.index, y=real, mode="lines", name=f"{settings.native_price_ticker} (real)", line=dict(dash="dash")))
        st.caption(f"Real {settings.native_price_ticker} hold: final {money(m['final'])}, CAGR {m['cagr']*100:.1f}%, Sharpe {m['sharpe']:.2f}")
    except Exception as e:
        st.warning(f"{settings.native_price_ticker} prices unavailable: {e}")

fig.update_layout(hovermode="x unified", height=520, xaxis_title="Date", yaxis_title="Value ($)")
st.plotly_chart(fig, use_container_width=True)

# Drawdown chart
st.subheader("Drawdown comparison")
fig = go.Figure()
for name, df in frames.items():
    dd = drawdown_series(df["PortfolioValue"])
    fig.add_trace(go.Scatter(
        x=dd.index, y=dd, mode="lines", name=name,
        hovertemplate="%{x|%Y-%m-%d}<br>DD: %{y:.2%}<extra>"+name+"</extra>"
    ))
fig.update_layout(hovermode="x unified", height=420, xaxis_title="Date", yaxis_title="Drawdown")
st.plotly_chart(fig, use_container_width=True)

# Allocation stack
st.subheader("Allocation over time")
pick = st.selectbox("Scenario", list(frames.keys()), index=0)
df = frames[pick]
alloc = df[[f"Alloc_{p}" for p in PROTOCOLS]].rename(columns={f"Alloc_{p}": PROTOCOL_INFO[p]["name"] for p in PROTOCOLS})
alloc = alloc.reset_index().melt(id_vars="date", var_name="Protocol", value_name="Share")
fig = px.area(alloc, x="date", y="Share", color="Protocol")
fig.update_layout(height=380, yaxis_title="Allocation (%)", yaxis_range=[0, 100])
st.plotly_chart(fig, use_container_width=True)

# Ledger viewer
st.subheader("Rebalance ledger")
led = df[df["Action"] != ""].copy()
if len(led) == 0:
    st.info("No rebalances in this period.")
else:
    led["PortfolioValue"] = pd.to_numeric(led["PortfolioValue"], errors="coerce").round(0)
    for col in led.columns:
        if col.startswith("Alloc_"):
            led[col] = led[col].round(1)
        if col.startswith("Yield_"):
            led[col] = (led[col] * 365).round(2)
    led = led.rename(columns={f"Yield_{p}": f"APY_{p}" for p in PROTOCOLS})
    st.dataframe(led, use_container_width=True, height=420)
