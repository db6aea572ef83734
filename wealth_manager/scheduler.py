from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set

import structlog

from .providers import PortfolioReader, ProfileStore, RebalanceExecutor
from .rebalance import RebalanceDecision, RebalanceEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AutoRebalanceConfig:
    enabled: bool = True
    check_interval: float = 60  # minutes
    max_slippage: float = 2.0


@dataclass(frozen=True)
class ScheduleStatus:
    enabled: bool
    check_interval: Optional[float] = None
    last_check: Optional[datetime] = None
    next_check: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "check_interval": self.check_interval,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "next_check": self.next_check.isoformat() if self.next_check else None,
        }


class AutoRebalanceScheduler:
    """
    Per-user periodic rebalance checks.

    One asyncio task per scheduled user sleeps for the check interval and then
    spawns the check as its own task, so a slow or failing check never delays
    or cancels the next one. Enabling an already scheduled user replaces the
    old schedule.
    """

    def __init__(
        self,
        engine: RebalanceEngine,
        profiles: ProfileStore,
        portfolios: PortfolioReader,
        executor: RebalanceExecutor,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.profiles = profiles
        self.portfolios = portfolios
        self.executor = executor
        self.clock = clock

        self._timers: Dict[str, asyncio.Task] = {}
        self._intervals: Dict[str, float] = {}
        self._last_checks: Dict[str, datetime] = {}
        self._ticks: Set[asyncio.Task] = set()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def is_scheduled(self, address: str) -> bool:
        return self._key(address) in self._timers

    async def setup(self, address: str, config: AutoRebalanceConfig) -> ScheduleStatus:
        key = self._key(address)
        self.disable(address)
        if not config.enabled or config.check_interval <= 0:
            return self.status(address)

        self._intervals[key] = float(config.check_interval)
        self._last_checks[key] = self.clock()
        self._timers[key] = asyncio.create_task(self._run(address, float(config.check_interval) * 60))
        logger.info("auto_rebalance_enabled", address=address, check_interval=config.check_interval)
        return self.status(address)

    def disable(self, address: str) -> bool:
        key = self._key(address)
        timer = self._timers.pop(key, None)
        self._intervals.pop(key, None)
        self._last_checks.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.info("auto_rebalance_disabled", address=address)
        return True

    def status(self, address: str) -> ScheduleStatus:
        key = self._key(address)
        if key not in self._timers:
            return ScheduleStatus(enabled=False)
        interval = self._intervals[key]
        last = self._last_checks.get(key)
        return ScheduleStatus(
            enabled=True,
            check_interval=interval,
            last_check=last,
            next_check=last + timedelta(minutes=interval) if last else None,
        )

    async def _run(self, address: str, period_seconds: float) -> None:
        while True:
            await asyncio.sleep(period_seconds)
            tick = asyncio.create_task(self.check_user(address))
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def check_user(self, address: str) -> Optional[RebalanceDecision]:
        """One scheduled check. Never raises; failures are logged and the schedule keeps running."""
        key = self._key(address)
        try:
            profile = await self.profiles.get_profile(address)
            if profile is None or not profile.auto_rebalance:
                logger.info("auto_rebalance_flag_off", address=address)
                self.disable(address)
                return None

            current = await self.portfolios.get_allocation(address)
            decision = await self.engine.evaluate_rebalance_decision(profile, current)
            if key in self._timers:
                self._last_checks[key] = self.clock()

            if decision.should_rebalance and decision.new_allocation is not None:
                result = await self.executor.execute(address, decision.new_allocation)
                if result.success:
                    await self.profiles.update_last_rebalance(address, self.clock())
                    logger.info("auto_rebalance_executed", address=address, tx_hash=result.tx_hash)
                else:
                    logger.error("auto_rebalance_execution_failed", address=address, error=result.error)
            return decision
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("auto_rebalance_check_failed", address=address)
            return None

    async def shutdown(self) -> None:
        pending = list(self._timers.values()) + list(self._ticks)
        for task in pending:
            task.cancel()
        self._timers.clear()
        self._intervals.clear()
        self._last_checks.clear()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info("auto_rebalance_scheduler_stopped", cancelled=len(pending))
