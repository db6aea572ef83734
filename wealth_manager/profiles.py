from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .risk import get_risk_profile


@dataclass
class UserPreferences:
    max_slippage: float = 2.0
    min_yield_threshold: float = 0.0
    rebalance_frequency: int = 30  # days
    excluded_protocols: List[str] = field(default_factory=list)


@dataclass
class UserProfile:
    address: str
    risk_score: int
    last_rebalance: datetime
    auto_rebalance: bool = False
    preferences: UserPreferences = field(default_factory=UserPreferences)
    total_deposited: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def id(self) -> str:
        return self.address.lower()

    @property
    def risk_profile(self) -> str:
        return get_risk_profile(self.risk_score)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "risk_score": self.risk_score,
            "risk_profile": self.risk_profile,
            "last_rebalance": self.last_rebalance.isoformat(),
            "auto_rebalance": self.auto_rebalance,
            "rebalance_frequency": self.preferences.rebalance_frequency,
            "max_slippage": self.preferences.max_slippage,
            "total_deposited": self.total_deposited,
        }


class InMemoryProfileStore:
    """Profile store keyed by lower-cased wallet address."""

    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}
        self._lock = asyncio.Lock()

    async def get_profile(self, address: str) -> Optional[UserProfile]:
        return self._profiles.get(address.lower())

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        async with self._lock:
            self._profiles[profile.id] = profile
        return profile

    async def update_last_rebalance(self, address: str, when: datetime) -> None:
        async with self._lock:
            current = self._profiles.get(address.lower())
            if current is not None:
                self._profiles[current.id] = replace(current, last_rebalance=when)
