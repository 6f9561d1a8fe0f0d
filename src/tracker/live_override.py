"""
Arbitration between simulated and live-reported bus positions.

A bus is under live control while an operator device is broadcasting its GPS
position: either this client holds the driving handle for it, or some other
client reported a position recently. Live buses keep their reported
coordinates; only the display fields derived from the next-stop pointer are
refreshed.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from src.common.models import (
    ETA_LIVE_PLACEHOLDER,
    ETA_NOT_AVAILABLE,
    NEXT_STOP_NONE,
    STATUS_ON_TIME,
    Bus,
)

MODE_LIVE = "LIVE"
MODE_SIMULATED = "SIMULATED"

DEFAULT_LIVE_WINDOW = timedelta(seconds=15)


def select_mode(
    bus: Bus,
    driving_bus_id: Optional[str],
    now: datetime,
    live_window: timedelta = DEFAULT_LIVE_WINDOW
) -> str:
    """
    Decide whether a bus position comes from simulation or a live reporter.

    Args:
        bus: Bus to arbitrate
        driving_bus_id: Bus this client is currently driving, if any
        now: Current time
        live_window: How long a reported position keeps the bus live

    Returns:
        MODE_LIVE or MODE_SIMULATED
    """
    if driving_bus_id is not None and bus.id == driving_bus_id:
        return MODE_LIVE

    if bus.updated_at is not None and _elapsed(bus.updated_at, now) < live_window:
        return MODE_LIVE

    return MODE_SIMULATED


def _elapsed(since: datetime, now: datetime) -> timedelta:
    # Mixed naive/aware timestamps are compared in local time
    if (since.tzinfo is None) != (now.tzinfo is None):
        since, now = _naive_local(since), _naive_local(now)
    return now - since


def _naive_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def apply_live_fields(bus: Bus) -> Bus:
    """
    Refresh display fields of a live bus without touching its position.

    Returns:
        A new Bus sharing the reported current_location
    """
    stops = bus.stops or []
    index = bus.next_stop_index
    next_stop = stops[index] if 0 <= index < len(stops) else None

    return replace(
        bus,
        next_stop_name=next_stop.name if next_stop else NEXT_STOP_NONE,
        eta=ETA_LIVE_PLACEHOLDER if next_stop else ETA_NOT_AVAILABLE,
        status=STATUS_ON_TIME,
    )
