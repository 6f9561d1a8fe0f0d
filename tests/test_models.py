"""
Unit tests for data models.

Tests validation logic, document conversion and trip bookkeeping for all
model classes.
"""

import pytest
from datetime import datetime, timezone
from src.common.models import (
    Bus,
    Location,
    SimulationSettings,
    Stop,
    StopArrival,
    Trip,
    STATUS_FINISHED,
    DIRECTION_BACKWARD,
)


class TestLocation:
    """Tests for Location model."""

    def test_valid_location(self):
        """Test creating a valid location."""
        Location(lat=9.2648, lng=76.7870).validate()  # Should not raise

    def test_invalid_latitude_raises_error(self):
        """Test that latitude outside [-90, 90] raises ValueError."""
        with pytest.raises(ValueError, match="lat must be between -90 and 90"):
            Location(lat=91.0, lng=0.0).validate()

    def test_invalid_longitude_raises_error(self):
        """Test that longitude outside [-180, 180] raises ValueError."""
        with pytest.raises(ValueError, match="lng must be between -180 and 180"):
            Location(lat=0.0, lng=-181.0).validate()

    def test_from_dict_missing_defaults_to_origin(self):
        """Test that a missing location document becomes (0, 0)."""
        assert Location.from_dict(None) == Location(0.0, 0.0)


class TestStop:
    """Tests for Stop model."""

    def test_valid_stop(self):
        """Test creating a valid stop."""
        stop = Stop(name="Adoor", arrival_time="08:20 AM", location=Location(9.1611, 76.7366))
        stop.validate()  # Should not raise

    def test_malformed_time_is_accepted(self):
        """Test that a malformed time does not fail validation."""
        Stop(name="Adoor", arrival_time="around noon").validate()  # Should not raise

    def test_empty_name_raises_error(self):
        """Test that empty name raises ValueError."""
        with pytest.raises(ValueError, match="name cannot be empty"):
            Stop(name="", arrival_time="08:20 AM").validate()

    def test_to_dict_uses_document_keys(self):
        """Test that optional times only appear when set."""
        stop = Stop(name="Adoor", arrival_time="08:20 AM", location=Location(9.0, 76.0))

        assert stop.to_dict() == {
            "name": "Adoor",
            "arrivalTime": "08:20 AM",
            "location": {"lat": 9.0, "lng": 76.0},
        }

        stop.departure_time = "08:25 AM"
        stop.actual_arrival_time = "08:22 AM"
        data = stop.to_dict()
        assert data["departureTime"] == "08:25 AM"
        assert data["actualArrivalTime"] == "08:22 AM"


class TestBus:
    """Tests for Bus model."""

    def test_valid_bus(self):
        """Test creating a valid bus with defaults."""
        bus = Bus(id="B1", stops=[Stop("A", "08:00 AM"), Stop("B", "08:10 AM")])
        bus.validate()  # Should not raise

    def test_empty_id_raises_error(self):
        """Test that empty id raises ValueError."""
        with pytest.raises(ValueError, match="id cannot be empty"):
            Bus(id="").validate()

    def test_next_stop_index_past_end_is_valid(self):
        """Test that len(stops) is a valid pointer (finished)."""
        bus = Bus(id="B1", stops=[Stop("A", "08:00 AM"), Stop("B", "08:10 AM")], next_stop_index=2)
        bus.validate()  # Should not raise

    def test_next_stop_index_out_of_range_raises_error(self):
        """Test that pointers beyond len(stops) raise ValueError."""
        bus = Bus(id="B1", stops=[Stop("A", "08:00 AM")], next_stop_index=2)
        with pytest.raises(ValueError, match="next_stop_index must be between 0 and 1"):
            bus.validate()

    def test_invalid_status_raises_error(self):
        """Test that unknown status raises ValueError."""
        with pytest.raises(ValueError, match="status must be one of"):
            Bus(id="B1", status="Lost").validate()

    def test_invalid_direction_raises_error(self):
        """Test that unknown direction raises ValueError."""
        with pytest.raises(ValueError, match="direction must be"):
            Bus(id="B1", direction="sideways").validate()

    def test_from_dict_parses_document(self):
        """Test building a bus from a realtime document."""
        bus = Bus.from_dict({
            "id": "pta-klm",
            "name": "Pathanamthitta - Kollam @ 8:00 AM",
            "stops": [
                {"name": "Pathanamthitta", "arrivalTime": "08:00 AM", "location": {"lat": 9.26, "lng": 76.78}},
                {"name": "Kollam", "arrivalTime": "09:00 AM", "location": {"lat": 8.89, "lng": 76.61}},
            ],
            "currentLocation": {"lat": 9.0, "lng": 76.7},
            "status": STATUS_FINISHED,
            "nextStopIndex": 2,
            "direction": DIRECTION_BACKWARD,
            "updatedAt": "2026-03-02T08:30:00",
            "roundTrip": True,
        })

        assert bus.id == "pta-klm"
        assert len(bus.stops) == 2
        assert bus.stops[1].location == Location(8.89, 76.61)
        assert bus.current_location == Location(9.0, 76.7)
        assert bus.status == STATUS_FINISHED
        assert bus.next_stop_index == 2
        assert bus.direction == DIRECTION_BACKWARD
        assert bus.updated_at == datetime(2026, 3, 2, 8, 30)
        assert bus.round_trip is True

    def test_from_dict_missing_fields_uses_defaults(self):
        """Test that a sparse document still builds a bus."""
        bus = Bus.from_dict({"id": "x"})

        assert bus.stops == []
        assert bus.current_location == Location(0.0, 0.0)
        assert bus.updated_at is None

    def test_from_dict_offset_timestamp_becomes_local(self):
        """Test that a UTC timestamp is converted to naive local time."""
        bus = Bus.from_dict({"id": "x", "updatedAt": "2026-03-02T06:00:00+00:00"})

        expected = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert bus.updated_at.tzinfo is None
        assert bus.updated_at == expected

    def test_to_dict_and_back(self):
        """Test that the document shape survives conversion."""
        bus = Bus(
            id="B1",
            name="Route",
            stops=[Stop("A", "08:00 AM", Location(1.0, 2.0), departure_time="08:05 AM")],
            updated_at=datetime(2026, 3, 2, 8, 0),
        )

        assert Bus.from_dict(bus.to_dict()) == bus


class TestStopArrival:
    """Tests for StopArrival model."""

    def test_negative_index_raises_error(self):
        """Test that a negative stop index raises ValueError."""
        with pytest.raises(ValueError, match="stop_index must be non-negative"):
            StopArrival(route_id="B1", stop_index=-1, arrival_time=datetime.now()).validate()

    def test_empty_route_id_raises_error(self):
        """Test that empty route_id raises ValueError."""
        with pytest.raises(ValueError, match="route_id cannot be empty"):
            StopArrival(route_id="", stop_index=0, arrival_time=datetime.now()).validate()


class TestTrip:
    """Tests for Trip model."""

    def test_mark_arrival_is_idempotent(self):
        """Test that a stop's arrival is only recorded once."""
        trip = Trip(date="2026-03-02", stops=[Stop("A", "08:00 AM"), Stop("B", "08:10 AM")])

        assert trip.mark_arrival(1, "08:11 AM") is True
        assert trip.mark_arrival(1, "08:15 AM") is False
        assert trip.stops[1].actual_arrival_time == "08:11 AM"
        assert trip.stops[0].actual_arrival_time is None

    def test_invalid_date_raises_error(self):
        """Test that dates must be yyyy-MM-dd."""
        with pytest.raises(ValueError, match="yyyy-MM-dd"):
            Trip(date="02/03/2026").validate()


class TestSimulationSettings:
    """Tests for SimulationSettings model."""

    def test_defaults_are_valid(self):
        """Test that default settings validate."""
        settings = SimulationSettings()
        settings.validate()  # Should not raise
        assert settings.tick_interval_seconds == 5
        assert settings.live_window_seconds == 15.0

    def test_unknown_status_mode_raises_error(self):
        """Test that unknown status modes are rejected."""
        with pytest.raises(ValueError, match="status_mode must be"):
            SimulationSettings(status_mode="psychic").validate()

    def test_probabilities_cannot_exceed_one(self):
        """Test that delayed + early probabilities are bounded."""
        with pytest.raises(ValueError, match="cannot exceed 1"):
            SimulationSettings(delayed_probability=0.6, early_probability=0.6).validate()

    def test_non_positive_tick_interval_raises_error(self):
        """Test that tick interval must be positive."""
        with pytest.raises(ValueError, match="tick_interval_seconds must be positive"):
            SimulationSettings(tick_interval_seconds=0).validate()
