"""
Arrival detection and trip history recording.

Between two ticks the next-stop pointer of a bus moves past the stops it has
reached. This module turns that movement into StopArrival events, stamps them
onto the stops as actual arrival times, and hands them to the trip history
client. History writes never affect the position computation: failures are
logged and dropped.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List

from src.common.models import (
    DIRECTION_BACKWARD,
    DIRECTION_FORWARD,
    RUNNING_STATUSES,
    STATUS_FINISHED,
    Bus,
    StopArrival,
    Trip,
)
from src.tracker.schedule_parser import format_schedule_time

logger = logging.getLogger(__name__)


def detect_arrivals(previous: Bus, current: Bus, now: datetime) -> List[StopArrival]:
    """
    Detect stops reached between two snapshots of the same bus.

    Args:
        previous: Bus as of the previous tick
        current: Bus as of this tick
        now: Time of this tick, used as the arrival time

    Returns:
        Arrivals in the order the stops were reached

    Raises:
        ValueError: If the snapshots belong to different buses
    """
    if previous.id != current.id:
        raise ValueError(f"Cannot compare bus {previous.id} with bus {current.id}")

    if current.status not in RUNNING_STATUSES and current.status != STATUS_FINISHED:
        return []

    stop_count = len(current.stops)
    before = previous.next_stop_index
    after = current.next_stop_index

    if previous.direction == DIRECTION_FORWARD and current.direction == DIRECTION_FORWARD:
        indices = range(before, min(after, stop_count))
    elif previous.direction == DIRECTION_FORWARD and current.direction == DIRECTION_BACKWARD:
        # Turned around at the terminal: the rest of the outbound leg was completed
        indices = range(before, stop_count)
    elif previous.direction == DIRECTION_BACKWARD and current.direction == DIRECTION_BACKWARD:
        # A finished return leg has also reached stop 0
        last = -1 if current.status == STATUS_FINISHED else after
        indices = range(min(before, stop_count - 1), last, -1)
    else:
        indices = range(0)

    return [
        StopArrival(route_id=current.id, stop_index=index, arrival_time=now)
        for index in indices
        if 0 <= index < stop_count
    ]


def detect_tick_arrivals(
    previous: List[Bus],
    current: List[Bus],
    now: datetime,
    live_bus_ids: Iterable[str] = ()
) -> Dict[str, List[StopArrival]]:
    """
    Detect arrivals for every bus between two ticks.

    Buses under live control and buses absent from the previous snapshot
    are skipped.

    Returns:
        Arrivals keyed by bus id; buses without arrivals are left out
    """
    previous_by_id = {bus.id: bus for bus in previous}
    skipped = set(live_bus_ids)
    arrivals = {}

    for bus in current:
        prior = previous_by_id.get(bus.id)
        if prior is None or bus.id in skipped:
            continue
        detected = detect_arrivals(prior, bus, now)
        if detected:
            arrivals[bus.id] = detected

    return arrivals


def stamp_arrivals(bus: Bus, arrivals: Iterable[StopArrival]) -> Bus:
    """
    Copy of a bus with actual arrival times set for the given arrivals.

    Stops that already carry an actual arrival time keep it, so only the
    first arrival of the day at each stop counts.
    """
    return _with_actual_times(
        bus, {arrival.stop_index: format_schedule_time(arrival.arrival_time) for arrival in arrivals}
    )


def merge_trip(bus: Bus, trip: Trip) -> Bus:
    """Copy of a bus with the actual arrival times recorded in a trip."""
    return _with_actual_times(
        bus, {index: stop.actual_arrival_time for index, stop in enumerate(trip.stops) if stop.actual_arrival_time}
    )


def clear_arrivals(bus: Bus) -> Bus:
    """Copy of a bus without actual arrival times, for the start of a new day."""
    stops = bus.stops or []
    if not any(stop.actual_arrival_time for stop in stops):
        return bus
    return replace(bus, stops=[replace(stop, actual_arrival_time=None) for stop in stops])


def _with_actual_times(bus: Bus, actual_times: Dict[int, str]) -> Bus:
    stops = bus.stops or []
    if not any(index in actual_times and not stop.actual_arrival_time for index, stop in enumerate(stops)):
        return bus

    return replace(bus, stops=[
        replace(stop, actual_arrival_time=actual_times[index])
        if index in actual_times and not stop.actual_arrival_time else stop
        for index, stop in enumerate(stops)
    ])


class TripHistoryRecorder:
    """
    Writes detected arrivals to the per-day trip history.

    Args:
        history_client: Client exposing record_arrival(stops, arrival) -> bool
    """

    def __init__(self, history_client):
        self.history_client = history_client

    def record_tick(
        self,
        previous: List[Bus],
        current: List[Bus],
        now: datetime,
        live_bus_ids: Iterable[str] = ()
    ) -> int:
        """
        Record every arrival that happened between two ticks.

        Buses under live control and buses absent from the previous snapshot
        are skipped.

        Args:
            previous: Buses as of the previous tick
            current: Buses as of this tick
            now: Time of this tick
            live_bus_ids: Buses whose position came from a live reporter

        Returns:
            Number of stop arrivals newly written
        """
        return self.record_arrivals(current, detect_tick_arrivals(previous, current, now, live_bus_ids))

    def record_arrivals(self, buses: List[Bus], arrivals_by_bus: Dict[str, List[StopArrival]]) -> int:
        """
        Write already detected arrivals.

        Args:
            buses: Buses as of this tick
            arrivals_by_bus: Arrivals keyed by bus id

        Returns:
            Number of stop arrivals newly written
        """
        recorded = 0

        for bus in buses:
            for arrival in arrivals_by_bus.get(bus.id, []):
                try:
                    if self.history_client.record_arrival(bus.stops, arrival):
                        recorded += 1
                        logger.debug(
                            f"Recorded arrival of bus {bus.id} at stop {arrival.stop_index} "
                            f"({bus.stops[arrival.stop_index].name})"
                        )
                except Exception as e:
                    logger.error(
                        f"Failed to record arrival of bus {bus.id} at stop {arrival.stop_index}: {e}"
                    )

        if recorded:
            logger.info(f"Recorded {recorded} stop arrivals")
        return recorded
