from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional, Tuple

# Fixed slot order used everywhere an allocation triple is laid out.
PROTOCOLS: Tuple[str, str, str] = ("aave", "traderjoe", "yieldyak")

LOWEST_RISK = "aave"
HIGHEST_RISK = "yieldyak"

# Annual percentage yields used whenever live data for a protocol is missing.
FALLBACK_APY: Dict[str, float] = {
    "aave": 5.2,
    "traderjoe": 8.7,
    "yieldyak": 12.4,
}

PROTOCOL_INFO: Dict[str, Dict[str, str]] = {
    "aave": {
        "name": "Aave V3",
        "type": "Lending",
        "risk": "Low",
        "description": "Enterprise-grade lending protocol with stable yields",
    },
    "traderjoe": {
        "name": "TraderJoe",
        "type": "DEX/LP",
        "risk": "Medium",
        "description": "Liquidity provision rewards",
    },
    "yieldyak": {
        "name": "YieldYak",
        "type": "Farming",
        "risk": "High",
        "description": "Auto-compounding strategies",
    },
}


def normalize_protocol(name: str) -> str:
    """
    Map provider spellings onto a slot name.
    Benqi held the lending slot before Aave replaced it, so it still maps there.
    """
    key = (name or "").lower().strip().replace(" ", "").replace("_", "").replace("-", "")

    aliases = {
        "aave": "aave",
        "aavev3": "aave",
        "benqi": "aave",
        "traderjoe": "traderjoe",
        "joe": "traderjoe",
        "yieldyak": "yieldyak",
        "yak": "yieldyak",
    }
    return aliases.get(key, key)


@dataclass(frozen=True)
class YieldSnapshot:
    protocol: str
    apy: float  # percent, e.g. 5.2 for 5.2%
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tvl: Optional[float] = None
    is_active: bool = True


@dataclass(frozen=True)
class Allocation:
    """Percentages (0..100) per protocol slot."""
    aave: float = 0.0
    traderjoe: float = 0.0
    yieldyak: float = 0.0

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "Allocation":
        out = {p: 0.0 for p in PROTOCOLS}
        for k, v in values.items():
            slot = normalize_protocol(k)
            if slot in out:
                out[slot] = float(v)
        return cls(**out)

    @classmethod
    def from_amounts(cls, amounts: Mapping[str, float]) -> "Allocation":
        """Turn per-protocol position sizes into percentages."""
        alloc = cls.from_mapping(amounts)
        total = alloc.total()
        if total <= 0:
            return cls()
        return cls(**{p: v / total * 100.0 for p, v in alloc.as_dict().items()})

    def as_dict(self) -> Dict[str, float]:
        return {p: float(getattr(self, p)) for p in PROTOCOLS}

    def total(self) -> float:
        return sum(self.as_dict().values())

    def __getitem__(self, protocol: str) -> float:
        return float(getattr(self, normalize_protocol(protocol)))


def apy_map(yields: Optional[Iterable[YieldSnapshot]]) -> Dict[str, float]:
    """Slot -> APY for the active snapshots supplied. Later snapshots win; unknown protocols and simulated (inactive) rows are dropped."""
    out: Dict[str, float] = {}
    for snap in yields or ():
        if not snap.is_active:
            continue
        slot = normalize_protocol(snap.protocol)
        if slot in PROTOCOLS:
            out[slot] = float(snap.apy)
    return out


def apys_with_fallback(yields: Optional[Iterable[YieldSnapshot]]) -> Dict[str, float]:
    live = apy_map(yields)
    return {p: live.get(p, FALLBACK_APY[p]) for p in PROTOCOLS}


def weighted_apy_bps(allocation: Allocation, apys: Mapping[str, float]) -> float:
    """
    Percent-of-portfolio times percent APY, summed: basis points.
    A 100% position at 5.2% APY is 520 bp.
    """
    return sum(allocation[p] * float(apys.get(p, FALLBACK_APY[p])) for p in PROTOCOLS)
