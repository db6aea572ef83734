"""Shared fixtures: static collaborators and a frozen clock, no network."""

from datetime import datetime, timedelta, timezone

import pytest

from wealth_manager.profiles import InMemoryProfileStore, UserPreferences, UserProfile
from wealth_manager.protocols import FALLBACK_APY, YieldSnapshot
from wealth_manager.providers import DryRunExecutor, InMemoryPortfolioReader, StaticGasPriceProvider, StaticYieldProvider

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
ADDRESS = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


class EmptyYieldProvider:
    async def get_yields(self):
        return []


class FailingYieldProvider:
    async def get_yields(self):
        raise ConnectionError("rpc down")


class FailingGasProvider:
    async def gas_price(self):
        raise ConnectionError("rpc down")


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def live_yields() -> list:
    """All three slots at the fallback APYs, flagged live."""
    return [YieldSnapshot(p, apy, NOW) for p, apy in FALLBACK_APY.items()]


@pytest.fixture
def empty_yields() -> EmptyYieldProvider:
    return EmptyYieldProvider()


@pytest.fixture
def failing_yields() -> FailingYieldProvider:
    return FailingYieldProvider()


@pytest.fixture
def static_yields() -> StaticYieldProvider:
    return StaticYieldProvider(active=True)


@pytest.fixture
def gas() -> StaticGasPriceProvider:
    return StaticGasPriceProvider(25e-9)


@pytest.fixture
def failing_gas() -> FailingGasProvider:
    return FailingGasProvider()


@pytest.fixture
def make_profile():
    def _make(risk_score: int = 50, days_since_rebalance: float = 0, frequency: int = 30, auto: bool = True) -> UserProfile:
        return UserProfile(
            address=ADDRESS,
            risk_score=risk_score,
            last_rebalance=NOW - timedelta(days=days_since_rebalance),
            auto_rebalance=auto,
            preferences=UserPreferences(rebalance_frequency=frequency),
        )
    return _make


@pytest.fixture
def profiles() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def portfolios() -> InMemoryPortfolioReader:
    return InMemoryPortfolioReader()


@pytest.fixture
def executor() -> DryRunExecutor:
    return DryRunExecutor()
