"""
On-time status classification for running buses.

Two classifiers are provided. ScheduleStatusClassifier compares the latest
recorded arrival on the current leg with its scheduled time; a deviation within
the on-time band counts as on time. RandomStatusClassifier reproduces the demo
behaviour of drawing a status per tick (10% delayed, 10% early by default).
Both only ever return one of the three running labels.
"""

import logging
import random
from typing import List, Optional, Tuple

from src.common.models import (
    DIRECTION_BACKWARD,
    STATUS_DELAYED,
    STATUS_EARLY,
    STATUS_MODE_RANDOM,
    STATUS_ON_TIME,
    SimulationSettings,
    Stop,
)
from src.tracker.schedule_parser import minutes_of_day
from src.tracker.segment_locator import IN_SEGMENT, LAYOVER, SegmentLocation

logger = logging.getLogger(__name__)


def classify_arrival(
    scheduled_time: Optional[str],
    actual_time: Optional[str],
    on_time_band_minutes: int = 5
) -> Optional[Tuple[str, int]]:
    """
    Compare an actual arrival with its scheduled time.

    Args:
        scheduled_time: Scheduled arrival, "hh:mm AM/PM"
        actual_time: Observed arrival, "hh:mm AM/PM"
        on_time_band_minutes: Deviation still considered on time

    Returns:
        Tuple of (status, minutes late; negative when early), or None if
        either time is missing or malformed
    """
    scheduled = minutes_of_day(scheduled_time)
    actual = minutes_of_day(actual_time)
    if scheduled is None or actual is None:
        return None

    diff = actual - scheduled
    if diff > on_time_band_minutes:
        return STATUS_DELAYED, diff
    if diff < -on_time_band_minutes:
        return STATUS_EARLY, diff
    return STATUS_ON_TIME, diff


def describe_arrival(
    scheduled_time: Optional[str],
    actual_time: Optional[str],
    on_time_band_minutes: int = 5
) -> str:
    """
    Human-readable label for a recorded arrival ("Delayed by 7 min").

    Returns:
        The label, or an empty string if the arrival cannot be classified
    """
    result = classify_arrival(scheduled_time, actual_time, on_time_band_minutes)
    if result is None:
        return ""

    status, diff = result
    if status == STATUS_DELAYED:
        return f"Delayed by {diff} min"
    if status == STATUS_EARLY:
        return f"Early by {-diff} min"
    return STATUS_ON_TIME


class ScheduleStatusClassifier:
    """Derives status from the most recent recorded arrival on the forward leg."""

    def __init__(self, on_time_band_minutes: int = 5):
        self.on_time_band_minutes = on_time_band_minutes

    def classify(self, stops: List[Stop], location: SegmentLocation) -> str:
        """
        Classify a running bus.

        Args:
            stops: Full stop list of the route
            location: Current segment location (IN_SEGMENT or LAYOVER)

        Returns:
            "On Time", "Delayed" or "Early"
        """
        # Recorded arrivals are per day and stamped on the outbound pass
        if location.direction == DIRECTION_BACKWARD:
            return STATUS_ON_TIME

        if location.state == IN_SEGMENT:
            reached = location.to_stop.index
        elif location.state == LAYOVER:
            reached = location.anchor.index + 1
        else:
            return STATUS_ON_TIME

        for stop in reversed(stops[:reached]):
            if not stop.actual_arrival_time:
                continue
            result = classify_arrival(stop.arrival_time, stop.actual_arrival_time, self.on_time_band_minutes)
            if result is not None:
                return result[0]

        return STATUS_ON_TIME


class RandomStatusClassifier:
    """
    Draws a status at random on every call.

    Args:
        delayed_probability: Chance of "Delayed"
        early_probability: Chance of "Early"
        rng: Random generator, injectable for reproducible runs
    """

    def __init__(
        self,
        delayed_probability: float = 0.1,
        early_probability: float = 0.1,
        rng: Optional[random.Random] = None
    ):
        self.delayed_probability = delayed_probability
        self.early_probability = early_probability
        self.rng = rng or random.Random()

    def classify(self, stops: List[Stop], location: SegmentLocation) -> str:
        draw = self.rng.random()
        if draw < self.delayed_probability:
            return STATUS_DELAYED
        if draw > 1.0 - self.early_probability:
            return STATUS_EARLY
        return STATUS_ON_TIME


def create_status_classifier(settings: SimulationSettings, rng: Optional[random.Random] = None):
    """
    Build the classifier selected by the settings.

    Args:
        settings: Simulation settings
        rng: Optional random generator for the random classifier

    Returns:
        A classifier exposing classify(stops, location)
    """
    if settings.status_mode == STATUS_MODE_RANDOM:
        logger.debug("Using random status classifier")
        return RandomStatusClassifier(
            delayed_probability=settings.delayed_probability,
            early_probability=settings.early_probability,
            rng=rng,
        )
    return ScheduleStatusClassifier(on_time_band_minutes=settings.on_time_band_minutes)
