from __future__ import annotations
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from wealth_manager.chain import ChainClient
from wealth_manager.config import Settings
from wealth_manager.profiles import InMemoryProfileStore
from wealth_manager.providers import (
    CachedYieldProvider,
    DefiLlamaYieldProvider,
    DryRunExecutor,
    GasPriceProvider,
    InMemoryPortfolioReader,
    PortfolioReader,
    RebalanceExecutor,
    YieldProvider,
)
from wealth_manager.rebalance import RebalanceEngine
from wealth_manager.scheduler import AutoRebalanceScheduler

from .data import native_price_fn

@dataclass
class Services:
    settings: Settings
    profiles: InMemoryProfileStore
    yields: YieldProvider
    gas: GasPriceProvider
    portfolios: PortfolioReader
    executor: RebalanceExecutor
    engine: RebalanceEngine
    scheduler: AutoRebalanceScheduler
    native_price: Callable[[], float]

def build_services(settings: Settings) -> Services:
    chain = ChainClient(settings.rpc_url, settings.yield_optimizer_address)
    yields = CachedYieldProvider(DefiLlamaYieldProvider(settings.defillama_yields_url))
    # without a deployed contract positions are registered in memory
    portfolios = chain if settings.yield_optimizer_address else InMemoryPortfolioReader()

    profiles = InMemoryProfileStore()
    executor = DryRunExecutor()
    engine = RebalanceEngine(yields, chain)
    scheduler = AutoRebalanceScheduler(engine, profiles, portfolios, executor)
    return Services(
        settings=settings,
        profiles=profiles,
        yields=yields,
        gas=chain,
        portfolios=portfolios,
        executor=executor,
        engine=engine,
        scheduler=scheduler,
        native_price=native_price_fn(settings),
    )

def get_services(request: Request) -> Services:
    return request.app.state.services
