"""
Segment location for scheduled bus routes.

Given the stops of a route and the current time, this module works out where
on the timetable the bus is: parked before the first departure, travelling a
segment between two stops, dwelling at a stop, or done for the day. Round-trip
routes get a mirrored return leg once the last stop has been reached.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from src.common.models import DIRECTION_BACKWARD, DIRECTION_FORWARD, Stop
from src.tracker.schedule_parser import parse_schedule_time

logger = logging.getLogger(__name__)


# Locator states

INSUFFICIENT_SCHEDULE = "INSUFFICIENT_SCHEDULE"
BEFORE_START = "BEFORE_START"
IN_SEGMENT = "IN_SEGMENT"
LAYOVER = "LAYOVER"
AFTER_END = "AFTER_END"


@dataclass(frozen=True)
class TimedStop:
    """
    A stop with successfully parsed schedule times.

    Attributes:
        stop: The stop itself
        index: Position of the stop in the route's full stop list
        arrival: Scheduled arrival on the reference day
        departure: Scheduled departure; equal to arrival when the bus does not dwell
    """
    stop: Stop
    index: int
    arrival: datetime
    departure: datetime


@dataclass(frozen=True)
class SegmentLocation:
    """
    Result of locating a bus on its timetable.

    Attributes:
        state: One of the locator states
        direction: Leg the bus is on, "forward" or "backward"
        from_stop: Departure end of the segment (IN_SEGMENT only)
        to_stop: Arrival end of the segment (IN_SEGMENT only)
        anchor: Stop the bus is parked at (BEFORE_START, LAYOVER, AFTER_END)
    """
    state: str
    direction: str = DIRECTION_FORWARD
    from_stop: Optional[TimedStop] = None
    to_stop: Optional[TimedStop] = None
    anchor: Optional[TimedStop] = None

    @property
    def step(self) -> int:
        """Index increment when moving to the next stop on this leg."""
        return -1 if self.direction == DIRECTION_BACKWARD else 1


def build_timetable(stops: List[Stop], reference: datetime) -> List[TimedStop]:
    """
    Parse stop times onto the reference day, dropping unschedulable stops.

    A departure time that is missing, malformed or earlier than the arrival
    is replaced by the arrival time.

    Args:
        stops: Stops in forward order
        reference: Day the schedule is evaluated on

    Returns:
        Stops with valid arrival times, in forward order
    """
    timetable = []
    for index, stop in enumerate(stops):
        arrival = parse_schedule_time(stop.arrival_time, reference)
        if arrival is None:
            logger.debug(f"Excluding stop {index} ({stop.name}): unparsable time '{stop.arrival_time}'")
            continue

        departure = parse_schedule_time(stop.departure_time, reference)
        if departure is None or departure < arrival:
            departure = arrival

        timetable.append(TimedStop(stop=stop, index=index, arrival=arrival, departure=departure))

    return timetable


def build_return_leg(timetable: List[TimedStop]) -> List[TimedStop]:
    """
    Mirror a forward timetable into the return journey.

    The return leg leaves the terminal at its departure time and takes as long
    over each segment, and dwells as long at each stop, as the forward leg.

    Args:
        timetable: Forward timetable with at least one stop

    Returns:
        Return-leg timetable, terminal first
    """
    terminal = timetable[-1]
    pivot = terminal.departure

    return [
        TimedStop(
            stop=timed.stop,
            index=timed.index,
            arrival=pivot + (terminal.arrival - timed.departure),
            departure=pivot + (terminal.arrival - timed.arrival),
        )
        for timed in reversed(timetable)
    ]


def locate_segment(
    leg: List[TimedStop],
    now: datetime,
    direction: str = DIRECTION_FORWARD
) -> SegmentLocation:
    """
    Find where on a single leg the bus is at the given time.

    Segments are scanned in order and the first one whose window
    [departure, next arrival] contains now wins, so a time equal to a stop's
    arrival belongs to the segment ending there.

    Args:
        leg: Timetable in traversal order
        now: Current time
        direction: Direction label for the leg

    Returns:
        SegmentLocation describing the state
    """
    if len(leg) < 2:
        return SegmentLocation(state=INSUFFICIENT_SCHEDULE, direction=direction)

    if now < leg[0].arrival:
        return SegmentLocation(state=BEFORE_START, direction=direction, anchor=leg[0])

    if now > leg[-1].arrival:
        return SegmentLocation(state=AFTER_END, direction=direction, anchor=leg[-1])

    for i in range(len(leg) - 1):
        if leg[i].departure <= now <= leg[i + 1].arrival:
            return SegmentLocation(
                state=IN_SEGMENT,
                direction=direction,
                from_stop=leg[i],
                to_stop=leg[i + 1],
            )

    # Dwelling at a stop, or times out of order: park at the last stop reached
    reached = [timed for timed in leg if timed.arrival <= now]
    return SegmentLocation(state=LAYOVER, direction=direction, anchor=reached[-1])


def locate_on_route(stops: List[Stop], now: datetime, round_trip: bool = False) -> SegmentLocation:
    """
    Locate a bus on its route for the current day.

    Args:
        stops: Route stops in forward order
        now: Current time; also fixes the day schedule times are placed on
        round_trip: Whether the bus returns along the route after the last stop

    Returns:
        SegmentLocation on the forward leg, or on the return leg once the
        forward leg has finished on a round-trip route
    """
    timetable = build_timetable(stops, now)
    location = locate_segment(timetable, now)

    if round_trip and location.state == AFTER_END:
        location = locate_segment(build_return_leg(timetable), now, DIRECTION_BACKWARD)

    return location
