"""
Collaborator seams for the decision engine and scheduler.

The engine only depends on the Protocol interfaces below. Concrete providers:
  - StaticYieldProvider: fallback constants (no network)
  - DefiLlamaYieldProvider: live pool APYs from the DefiLlama yields API
  - CachedYieldProvider: five minute TTL around any yield provider
  - wealth_manager.chain.ChainClient: gas price, contract yields, portfolios
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Protocol, Sequence, Tuple

import aiohttp
import structlog

from .protocols import FALLBACK_APY, PROTOCOLS, Allocation, YieldSnapshot

logger = structlog.get_logger(__name__)


class YieldProvider(Protocol):
    async def get_yields(self) -> List[YieldSnapshot]: ...


class GasPriceProvider(Protocol):
    async def gas_price(self) -> float:
        """Current gas price in native-token units per gas."""
        ...


class PortfolioReader(Protocol):
    async def get_allocation(self, address: str) -> Allocation: ...


class ProfileStore(Protocol):
    async def get_profile(self, address: str): ...

    async def update_last_rebalance(self, address: str, when: datetime) -> None: ...


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class RebalanceExecutor(Protocol):
    async def execute(self, address: str, target: Allocation) -> ExecutionResult: ...


class StaticYieldProvider:
    """Fallback APYs, flagged inactive so callers can tell they are simulated."""

    def __init__(self, apys: Optional[Dict[str, float]] = None, active: bool = False):
        self.apys = dict(apys or FALLBACK_APY)
        self.active = active

    async def get_yields(self) -> List[YieldSnapshot]:
        now = datetime.now(timezone.utc)
        return [YieldSnapshot(p, self.apys[p], now, is_active=self.active) for p in PROTOCOLS if p in self.apys]


# DefiLlama project slugs per slot, searched in order
DEFILLAMA_PROJECTS: Dict[str, Tuple[str, ...]] = {
    "aave": ("aave-v3", "benqi-lending"),
    "traderjoe": ("joe-v2.1", "joe-v2", "trader-joe"),
    "yieldyak": ("yield-yak", "yield-yak-aggregator"),
}


class DefiLlamaYieldProvider:
    def __init__(
        self,
        base_url: str = "https://yields.llama.fi",
        chain: str = "Avalanche",
        projects: Optional[Dict[str, Sequence[str]]] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain = chain
        self.projects = {k: tuple(v) for k, v in (projects or DEFILLAMA_PROJECTS).items()}
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _fetch_pools(self) -> List[dict]:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(f"{self.base_url}/pools") as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=f"HTTP {response.status}",
                    )
                payload = await response.json()
        return payload.get("data", []) if isinstance(payload, dict) else []

    def pick_pools(self, pools: List[dict]) -> List[YieldSnapshot]:
        """Largest-TVL pool on our chain for each slot; slots with no match are left out."""
        now = datetime.now(timezone.utc)
        out = []
        for slot in PROTOCOLS:
            slugs = self.projects.get(slot, ())
            matches = [
                p for p in pools
                if p.get("chain") == self.chain and p.get("project") in slugs and p.get("apy") is not None
            ]
            if not matches:
                logger.warning("defillama_pool_missing", protocol=slot, projects=slugs)
                continue
            best = max(matches, key=lambda p: p.get("tvlUsd") or 0.0)
            out.append(YieldSnapshot(slot, float(best["apy"]), now, tvl=best.get("tvlUsd"), is_active=True))
        return out

    async def get_yields(self) -> List[YieldSnapshot]:
        try:
            pools = await self._fetch_pools()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("defillama_fetch_failed", error=str(e))
            return []
        snaps = self.pick_pools(pools)
        logger.info("protocol_yields_fetched", protocols=[s.protocol for s in snaps])
        return snaps


class CachedYieldProvider:
    def __init__(self, inner: YieldProvider, ttl_seconds: float = 300.0, clock=time.monotonic):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Optional[List[YieldSnapshot]] = None
        self._stamp = 0.0

    async def get_yields(self) -> List[YieldSnapshot]:
        now = self._clock()
        if self._cached is not None and now - self._stamp < self.ttl_seconds:
            logger.debug("yield_cache_hit")
            return list(self._cached)
        snaps = await self.inner.get_yields()
        # only cache complete answers so a partial outage is retried next call
        if len(snaps) == len(PROTOCOLS):
            self._cached, self._stamp = list(snaps), now
        return snaps

    def clear(self) -> None:
        self._cached = None


class StaticGasPriceProvider:
    def __init__(self, price: float = 25e-9):  # 25 nAVAX
        self.price = price

    async def gas_price(self) -> float:
        return self.price


class InMemoryPortfolioReader:
    def __init__(self, allocations: Optional[Dict[str, Allocation]] = None):
        self.allocations = {k.lower(): v for k, v in (allocations or {}).items()}

    def set_allocation(self, address: str, allocation: Allocation) -> None:
        self.allocations[address.lower()] = allocation

    async def get_allocation(self, address: str) -> Allocation:
        try:
            return self.allocations[address.lower()]
        except KeyError:
            raise LookupError(f"no portfolio for {address}") from None


class DryRunExecutor:
    """Records targets instead of submitting transactions."""

    def __init__(self, history: int = 256):
        self.submitted: Deque[Tuple[str, Allocation]] = deque(maxlen=history)

    async def execute(self, address: str, target: Allocation) -> ExecutionResult:
        self.submitted.append((address, target))
        logger.info("auto_rebalance_dry_run", address=address, **target.as_dict())
        return ExecutionResult(success=True)
