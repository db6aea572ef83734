from __future__ import annotations
from functools import partial
from typing import Callable, List

from wealth_manager.config import Settings
from wealth_manager.data import latest_native_price
from wealth_manager.protocols import FALLBACK_APY, PROTOCOL_INFO, PROTOCOLS, YieldSnapshot, apy_map

def native_price_fn(settings: Settings) -> Callable[[], float]:
    return partial(latest_native_price, settings.native_price_ticker)

def market_yields(snapshots: List[YieldSnapshot]) -> List[dict]:
    """One row per slot; slots the provider missed carry the fallback APY and is_live=False."""
    live = apy_map(snapshots)
    by_slot = {s.protocol: s for s in snapshots}
    rows = []
    for p in PROTOCOLS:
        snap = by_slot.get(p)
        rows.append(dict(
            protocol=p,
            name=PROTOCOL_INFO[p]["name"],
            apy=live.get(p, snap.apy if snap else FALLBACK_APY[p]),
            tvl=snap.tvl if snap else None,
            is_live=p in live,
            timestamp=snap.timestamp.isoformat() if snap else None,
        ))
    return rows
