"""
Data models for the Kerala Bus Tracker.

This module contains dataclasses for route stops, buses and per-day trip history
records. All models include validation methods to ensure data integrity, and
dictionary conversion helpers for the realtime document shape used by the
route collection (camelCase keys).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


# Status labels

STATUS_ON_TIME = "On Time"
STATUS_DELAYED = "Delayed"
STATUS_EARLY = "Early"
STATUS_NOT_STARTED = "Not Started"
STATUS_FINISHED = "Finished"

RUNNING_STATUSES = (STATUS_ON_TIME, STATUS_DELAYED, STATUS_EARLY)
ALL_STATUSES = RUNNING_STATUSES + (STATUS_NOT_STARTED, STATUS_FINISHED)

# Traversal directions

DIRECTION_FORWARD = "forward"
DIRECTION_BACKWARD = "backward"

# ETA and next-stop display strings

ETA_NOT_AVAILABLE = "N/A"
ETA_AT_STOP = "At Stop"
ETA_NOT_STARTED = "Route has not started"
ETA_FINISHED = "Route has finished"
ETA_SCHEDULE_INCOMPLETE = "Schedule data incomplete"
ETA_LIVE_PLACEHOLDER = "1 min"

NEXT_STOP_NONE = "N/A"
NEXT_STOP_END_OF_ROUTE = "End of Route"


@dataclass
class Location:
    """
    A geographic coordinate.

    Attributes:
        lat: Latitude in degrees
        lng: Longitude in degrees
    """
    lat: float = 0.0
    lng: float = 0.0

    def validate(self) -> None:
        """
        Validate coordinate ranges.

        Raises:
            ValueError: If validation fails
        """
        if not (-90 <= self.lat <= 90):
            raise ValueError(f"lat must be between -90 and 90, got {self.lat}")
        if not (-180 <= self.lng <= 180):
            raise ValueError(f"lng must be between -180 and 180, got {self.lng}")

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Location":
        if not data:
            return cls()
        return cls(lat=float(data.get("lat", 0.0)), lng=float(data.get("lng", 0.0)))


@dataclass
class Stop:
    """
    A named, geo-located, time-scheduled waypoint on a route.

    Times are kept as the human-readable strings the schedule is written in
    ("08:20 AM"); they are parsed against a reference day by the tracker.

    Attributes:
        name: Human-readable name of the stop
        arrival_time: Scheduled arrival, "hh:mm AM/PM"
        location: Stop coordinates
        departure_time: Optional scheduled departure when the bus dwells at the stop
        actual_arrival_time: Arrival time observed for the current day, if any
    """
    name: str
    arrival_time: str
    location: Location = field(default_factory=Location)
    departure_time: Optional[str] = None
    actual_arrival_time: Optional[str] = None

    def validate(self) -> None:
        """
        Validate stop configuration.

        Malformed time strings are deliberately not rejected here; the tracker
        excludes such stops from timing calculations instead.

        Raises:
            ValueError: If validation fails
        """
        if not self.name:
            raise ValueError("name cannot be empty")
        if self.arrival_time is None:
            raise ValueError(f"stop {self.name} has no arrival_time")
        self.location.validate()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "arrivalTime": self.arrival_time,
            "location": self.location.to_dict(),
        }
        if self.departure_time is not None:
            data["departureTime"] = self.departure_time
        if self.actual_arrival_time is not None:
            data["actualArrivalTime"] = self.actual_arrival_time
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stop":
        return cls(
            name=data.get("name", ""),
            arrival_time=data.get("arrivalTime", ""),
            location=Location.from_dict(data.get("location")),
            departure_time=data.get("departureTime"),
            actual_arrival_time=data.get("actualArrivalTime"),
        )


@dataclass
class Bus:
    """
    A route together with its live-tracking fields.

    In this system a route and the bus running it are the same record: the
    ordered stops plus the position, status and next-stop pointer computed on
    every tick.

    Attributes:
        id: Unique identifier of the route/bus record
        name: Human-readable route name, often with a departure time ("... @ 8:00 AM")
        stops: Stops in forward traversal order
        current_location: Last computed or reported position
        status: One of ALL_STATUSES
        eta: Display string for the time to the next stop
        next_stop_index: Index into stops of the stop being approached;
            len(stops) means past the last stop
        next_stop_name: Display name of the next stop
        direction: "forward" (stop 0 -> n-1) or "backward" (return leg)
        updated_at: Time of the last externally reported live position
        round_trip: Whether the bus returns along the route after the last stop
    """
    id: str
    name: str = ""
    stops: List[Stop] = field(default_factory=list)
    current_location: Location = field(default_factory=Location)
    status: str = STATUS_NOT_STARTED
    eta: str = ETA_NOT_AVAILABLE
    next_stop_index: int = 0
    next_stop_name: str = NEXT_STOP_NONE
    direction: str = DIRECTION_FORWARD
    updated_at: Optional[datetime] = None
    round_trip: bool = False

    def validate(self) -> None:
        """
        Validate bus state.

        Raises:
            ValueError: If validation fails
        """
        if not self.id:
            raise ValueError("id cannot be empty")
        for stop in self.stops:
            stop.validate()
        self.current_location.validate()
        if self.status not in ALL_STATUSES:
            raise ValueError(f"status must be one of {ALL_STATUSES}, got '{self.status}'")
        if not (0 <= self.next_stop_index <= len(self.stops)):
            raise ValueError(
                f"next_stop_index must be between 0 and {len(self.stops)}, got {self.next_stop_index}"
            )
        if self.direction not in (DIRECTION_FORWARD, DIRECTION_BACKWARD):
            raise ValueError(
                f"direction must be '{DIRECTION_FORWARD}' or '{DIRECTION_BACKWARD}', got '{self.direction}'"
            )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the realtime document shape.

        Returns:
            Dictionary with camelCase keys
        """
        return {
            "id": self.id,
            "name": self.name,
            "stops": [stop.to_dict() for stop in self.stops],
            "currentLocation": self.current_location.to_dict(),
            "status": self.status,
            "eta": self.eta,
            "nextStopIndex": self.next_stop_index,
            "nextStopName": self.next_stop_name,
            "direction": self.direction,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "roundTrip": self.round_trip,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bus":
        """
        Build a Bus from the realtime document shape.

        The caller is expected to have normalized ``updatedAt`` from the
        persistence layer's timestamp type; a datetime or an ISO-8601 string
        are accepted. Offset-aware values are converted to naive local time.

        Args:
            data: Document dictionary with camelCase keys

        Returns:
            Bus instance
        """
        updated_at = data.get("updatedAt")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)
        if updated_at is not None and updated_at.tzinfo is not None:
            # Schedules run on naive local time
            updated_at = updated_at.astimezone().replace(tzinfo=None)

        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            stops=[Stop.from_dict(s) for s in data.get("stops") or []],
            current_location=Location.from_dict(data.get("currentLocation")),
            status=data.get("status", STATUS_NOT_STARTED),
            eta=data.get("eta", ETA_NOT_AVAILABLE),
            next_stop_index=int(data.get("nextStopIndex", 0)),
            next_stop_name=data.get("nextStopName", NEXT_STOP_NONE),
            direction=data.get("direction", DIRECTION_FORWARD),
            updated_at=updated_at,
            round_trip=bool(data.get("roundTrip", False)),
        )


@dataclass
class StopArrival:
    """
    Represents a bus reaching a stop during simulation.

    Attributes:
        route_id: Route/bus record the arrival belongs to
        stop_index: Index of the stop in the route's stop list
        arrival_time: Time of arrival
    """
    route_id: str
    stop_index: int
    arrival_time: datetime

    def validate(self) -> None:
        if not self.route_id:
            raise ValueError("route_id cannot be empty")
        if self.stop_index < 0:
            raise ValueError(f"stop_index must be non-negative, got {self.stop_index}")


@dataclass
class Trip:
    """
    A frozen per-day copy of a route's stops annotated with actual arrival times.

    Attributes:
        date: Calendar day, "yyyy-MM-dd"
        stops: Copy of the route's stops for that day
    """
    date: str
    stops: List[Stop] = field(default_factory=list)

    def validate(self) -> None:
        if not self.date:
            raise ValueError("date cannot be empty")
        try:
            datetime.strptime(self.date, "%Y-%m-%d")
        except ValueError:
            raise ValueError(f"date must be formatted as yyyy-MM-dd, got '{self.date}'")
        for stop in self.stops:
            stop.validate()

    def mark_arrival(self, stop_index: int, actual_arrival_time: str) -> bool:
        """
        Set a stop's actual arrival time unless it is already set.

        Args:
            stop_index: Index of the stop that was reached
            actual_arrival_time: Observed arrival, "hh:mm AM/PM"

        Returns:
            True if the stop was updated, False if it was already recorded

        Raises:
            IndexError: If stop_index is outside the trip's stops
        """
        stop = self.stops[stop_index]
        if stop.actual_arrival_time:
            return False
        stop.actual_arrival_time = actual_arrival_time
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "stops": [stop.to_dict() for stop in self.stops]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trip":
        return cls(
            date=data.get("date", ""),
            stops=[Stop.from_dict(s) for s in data.get("stops") or []],
        )


# Configuration Models

STATUS_MODE_SCHEDULE = "schedule"
STATUS_MODE_RANDOM = "random"


@dataclass
class SimulationSettings:
    """
    Tunable parameters for the tracking engine and its service loop.

    Attributes:
        tick_interval_seconds: Seconds between recomputation passes
        live_window_seconds: A live position reported within this window keeps
            the bus under live control
        status_mode: "schedule" (derive status from recorded arrivals) or
            "random" (10% delayed / 10% early draw per tick)
        on_time_band_minutes: Deviation tolerated before a bus counts as
            delayed or early
        delayed_probability: Chance of "Delayed" in random mode
        early_probability: Chance of "Early" in random mode
    """
    tick_interval_seconds: int = 5
    live_window_seconds: float = 15.0
    status_mode: str = STATUS_MODE_SCHEDULE
    on_time_band_minutes: int = 5
    delayed_probability: float = 0.1
    early_probability: float = 0.1

    def validate(self) -> None:
        """
        Validate settings.

        Raises:
            ValueError: If validation fails
        """
        if self.tick_interval_seconds <= 0:
            raise ValueError(f"tick_interval_seconds must be positive, got {self.tick_interval_seconds}")
        if self.live_window_seconds < 0:
            raise ValueError(f"live_window_seconds must be non-negative, got {self.live_window_seconds}")
        if self.status_mode not in (STATUS_MODE_SCHEDULE, STATUS_MODE_RANDOM):
            raise ValueError(
                f"status_mode must be '{STATUS_MODE_SCHEDULE}' or '{STATUS_MODE_RANDOM}', got '{self.status_mode}'"
            )
        if self.on_time_band_minutes < 0:
            raise ValueError(f"on_time_band_minutes must be non-negative, got {self.on_time_band_minutes}")
        if not (0 <= self.delayed_probability <= 1) or not (0 <= self.early_probability <= 1):
            raise ValueError("delayed_probability and early_probability must be between 0 and 1")
        if self.delayed_probability + self.early_probability > 1:
            raise ValueError("delayed_probability + early_probability cannot exceed 1")
