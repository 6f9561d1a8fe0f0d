"""
Bus position simulation for the Kerala Bus Tracker.

This module implements the per-tick recomputation of every bus: it places each
bus on its timetable, interpolates its coordinates, works out the next stop,
ETA and status, and defers to live-reported positions when an operator is
broadcasting. The computation is a pure transform: input buses are never
mutated and a new list is returned in the same order.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from src.common.models import (
    DIRECTION_BACKWARD,
    DIRECTION_FORWARD,
    ETA_AT_STOP,
    ETA_FINISHED,
    ETA_NOT_STARTED,
    ETA_SCHEDULE_INCOMPLETE,
    NEXT_STOP_END_OF_ROUTE,
    NEXT_STOP_NONE,
    STATUS_FINISHED,
    STATUS_NOT_STARTED,
    Bus,
    Location,
    SimulationSettings,
)
from src.tracker.live_override import MODE_LIVE, apply_live_fields, select_mode
from src.tracker.position_interpolator import eta_minutes, format_eta, interpolate_position
from src.tracker.schedule_parser import parse_schedule_time
from src.tracker.segment_locator import (
    AFTER_END,
    BEFORE_START,
    IN_SEGMENT,
    LAYOVER,
    SegmentLocation,
    locate_on_route,
)
from src.tracker.status_classifier import create_status_classifier

logger = logging.getLogger(__name__)


def simulate(
    buses: List[Bus],
    driving_bus_id: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[SimulationSettings] = None,
    status_classifier=None
) -> List[Bus]:
    """
    Recompute position, status, ETA and next-stop pointer for every bus.

    Args:
        buses: Snapshot of buses with their stops
        driving_bus_id: Bus whose position this client is broadcasting, if any
        now: Current time (defaults to datetime.now())
        settings: Simulation settings (defaults to SimulationSettings())
        status_classifier: Classifier overriding the one selected by settings

    Returns:
        New list of buses, same length and order as the input
    """
    now = now or datetime.now()
    settings = settings or SimulationSettings()
    classifier = status_classifier or create_status_classifier(settings)
    live_window = timedelta(seconds=settings.live_window_seconds)

    return [
        simulate_bus(bus, driving_bus_id, now, classifier, live_window)
        for bus in buses
    ]


def simulate_bus(
    bus: Bus,
    driving_bus_id: Optional[str],
    now: datetime,
    status_classifier,
    live_window: timedelta
) -> Bus:
    """
    Recompute a single bus.

    Unexpected errors are logged and the bus degrades to the incomplete
    schedule state so one bad record cannot break the whole tick.

    Returns:
        New Bus instance
    """
    try:
        if select_mode(bus, driving_bus_id, now, live_window) == MODE_LIVE:
            return apply_live_fields(bus)

        location = locate_on_route(bus.stops or [], now, bus.round_trip)
        return _apply_location(bus, location, now, status_classifier)

    except Exception as e:
        logger.error(f"Error simulating bus {bus.id}: {e}", exc_info=True)
        return _incomplete_schedule(bus)


def _apply_location(bus: Bus, location: SegmentLocation, now: datetime, status_classifier) -> Bus:
    stops = bus.stops or []

    if location.state == BEFORE_START:
        return replace(
            bus,
            current_location=_copy_location(location.anchor.stop.location),
            next_stop_index=0,
            next_stop_name=NEXT_STOP_NONE,
            status=STATUS_NOT_STARTED,
            eta=ETA_NOT_STARTED,
            direction=location.direction,
        )

    if location.state == AFTER_END:
        return replace(
            bus,
            current_location=_copy_location(location.anchor.stop.location),
            next_stop_index=0 if location.direction == DIRECTION_BACKWARD else len(stops),
            next_stop_name=NEXT_STOP_END_OF_ROUTE,
            status=STATUS_FINISHED,
            eta=ETA_FINISHED,
            direction=location.direction,
        )

    if location.state == IN_SEGMENT:
        from_stop, to_stop = location.from_stop, location.to_stop
        current_location = interpolate_position(
            from_stop.stop.location,
            to_stop.stop.location,
            from_stop.departure,
            to_stop.arrival,
            now,
        )
        next_stop_index = to_stop.index
        eta = format_eta(eta_minutes(to_stop.arrival, now))

    elif location.state == LAYOVER:
        current_location = _copy_location(location.anchor.stop.location)
        next_stop_index = min(len(stops), max(0, location.anchor.index + location.step))
        eta = ETA_AT_STOP

    else:
        logger.debug(f"Bus {bus.id} has fewer than two schedulable stops")
        return _incomplete_schedule(bus)

    next_stop_name = stops[next_stop_index].name if next_stop_index < len(stops) else NEXT_STOP_END_OF_ROUTE

    return replace(
        bus,
        current_location=current_location,
        next_stop_index=next_stop_index,
        next_stop_name=next_stop_name,
        status=status_classifier.classify(stops, location),
        eta=eta,
        direction=location.direction,
    )


def _incomplete_schedule(bus: Bus) -> Bus:
    stops = bus.stops or []
    first = stops[0] if stops else None

    return replace(
        bus,
        current_location=_copy_location(first.location) if first else Location(),
        next_stop_index=min(1, len(stops)),
        next_stop_name=first.name if first else NEXT_STOP_NONE,
        status=STATUS_NOT_STARTED,
        eta=ETA_SCHEDULE_INCOMPLETE,
        direction=DIRECTION_FORWARD,
    )


def _copy_location(location: Location) -> Location:
    return Location(lat=location.lat, lng=location.lng)


def departure_sort_key(bus: Bus, reference: datetime) -> Tuple[int, datetime]:
    """
    Sort key ordering buses by the departure time embedded in their name.

    Buses whose name carries no time sort after all timed ones.

    Args:
        bus: Bus to key
        reference: Day the departure times are placed on

    Returns:
        Tuple usable as a sort key
    """
    departure = parse_schedule_time(bus.name, reference)
    if departure is None:
        return (1, reference)
    return (0, departure)


def order_for_display(buses: List[Bus], now: datetime) -> List[Bus]:
    """
    Order buses for a route listing: upcoming first, then running, then finished.

    Each group is sorted by departure time.
    """
    upcoming, active, finished = [], [], []

    for bus in buses:
        if bus.status == STATUS_FINISHED:
            finished.append(bus)
            continue
        departure = parse_schedule_time(bus.name, now)
        if departure is not None and departure > now and bus.status == STATUS_NOT_STARTED:
            upcoming.append(bus)
        else:
            active.append(bus)

    def key(bus: Bus) -> Tuple[int, datetime]:
        return departure_sort_key(bus, now)

    return sorted(upcoming, key=key) + sorted(active, key=key) + sorted(finished, key=key)
