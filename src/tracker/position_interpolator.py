"""
Position interpolation between scheduled stops.

Coordinates are interpolated linearly in latitude and longitude rather than
along a great circle. Over the few kilometres between consecutive stops the
difference is well below map rendering precision.
"""

import math
from datetime import datetime

from src.common.models import Location


def segment_progress(from_time: datetime, to_time: datetime, now: datetime) -> float:
    """
    Fraction of a segment's scheduled duration that has elapsed.

    Args:
        from_time: Scheduled departure from the segment start
        to_time: Scheduled arrival at the segment end
        now: Current time

    Returns:
        Progress clamped to [0.0, 1.0]; 0.0 for a zero-length segment
    """
    duration = (to_time - from_time).total_seconds()
    if duration <= 0:
        return 0.0

    elapsed = (now - from_time).total_seconds()
    return min(1.0, max(0.0, elapsed / duration))


def interpolate_position(
    from_location: Location,
    to_location: Location,
    from_time: datetime,
    to_time: datetime,
    now: datetime
) -> Location:
    """
    Estimate a bus position between two stops from the schedule.

    Args:
        from_location: Coordinates of the stop the bus departed
        to_location: Coordinates of the stop the bus is approaching
        from_time: Scheduled departure time
        to_time: Scheduled arrival time
        now: Current time

    Returns:
        Interpolated Location
    """
    progress = segment_progress(from_time, to_time, now)

    return Location(
        lat=_lerp(from_location.lat, to_location.lat, progress),
        lng=_lerp(from_location.lng, to_location.lng, progress),
    )


def _lerp(start: float, end: float, progress: float) -> float:
    if progress >= 1.0:
        return end
    value = start + (end - start) * progress
    # Rounding must not carry the value outside the segment
    return min(max(value, min(start, end)), max(start, end))


def eta_minutes(to_time: datetime, now: datetime) -> int:
    """Whole minutes until to_time, rounded half up and floored at zero."""
    minutes = math.floor((to_time - now).total_seconds() / 60 + 0.5)
    return max(0, minutes)


def format_eta(minutes: int) -> str:
    return f"{minutes} min"
