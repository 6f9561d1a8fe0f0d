"""
Unit tests for schedule time parsing.
"""

import pytest
from datetime import date, datetime, timezone

from src.tracker.schedule_parser import (
    format_schedule_time,
    minutes_of_day,
    parse_schedule_time,
)


REFERENCE = datetime(2026, 3, 2, 14, 37, 12, 500)


class TestParseScheduleTime:
    """Tests for parse_schedule_time."""

    def test_parses_morning_time(self):
        """Test a plain AM time lands on the reference day."""
        assert parse_schedule_time("8:05 AM", REFERENCE) == datetime(2026, 3, 2, 8, 5)

    def test_parses_afternoon_time(self):
        """Test that PM hours are shifted by 12."""
        assert parse_schedule_time("03:30 PM", REFERENCE) == datetime(2026, 3, 2, 15, 30)

    @pytest.mark.parametrize("text,hour", [
        ("12:00 AM", 0),
        ("12:45 AM", 0),
        ("12:00 PM", 12),
        ("12:15 PM", 12),
    ])
    def test_twelve_oclock_conversion(self, text, hour):
        """Test 12 AM is midnight and 12 PM is noon."""
        assert parse_schedule_time(text, REFERENCE).hour == hour

    def test_case_insensitive_modifier(self):
        """Test that am/pm are accepted in any case."""
        assert parse_schedule_time("7:10 pm", REFERENCE) == datetime(2026, 3, 2, 19, 10)

    def test_time_embedded_in_text(self):
        """Test that a time inside a route name is found."""
        parsed = parse_schedule_time("Pathanamthitta - Kollam @ 8:00 AM", REFERENCE)
        assert parsed == datetime(2026, 3, 2, 8, 0)

    def test_seconds_are_zeroed(self):
        """Test that seconds and microseconds from the reference are dropped."""
        parsed = parse_schedule_time("9:00 AM", REFERENCE)
        assert parsed.second == 0
        assert parsed.microsecond == 0

    def test_accepts_date_reference(self):
        """Test that a plain date works as reference."""
        assert parse_schedule_time("9:00 PM", date(2026, 3, 2)) == datetime(2026, 3, 2, 21, 0)

    def test_keeps_reference_timezone(self):
        """Test that an aware reference produces an aware result."""
        aware = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        assert parse_schedule_time("9:00 AM", aware).tzinfo == timezone.utc

    @pytest.mark.parametrize("text", [
        "",
        None,
        "noon",
        "8:00",
        "08-00 AM",
        "13:00 PM",
        "08:75 AM",
        "TBD",
    ])
    def test_malformed_returns_none(self, text):
        """Test that malformed times return None instead of raising."""
        assert parse_schedule_time(text, REFERENCE) is None


class TestFormatScheduleTime:
    """Tests for format_schedule_time and minutes_of_day."""

    def test_format_morning(self):
        assert format_schedule_time(datetime(2026, 3, 2, 8, 5)) == "08:05 AM"

    def test_format_afternoon(self):
        assert format_schedule_time(datetime(2026, 3, 2, 15, 30)) == "03:30 PM"

    def test_minutes_of_day(self):
        """Test conversion to minutes since midnight."""
        assert minutes_of_day("08:20 AM") == 500
        assert minutes_of_day("12:00 AM") == 0
        assert minutes_of_day("garbage") is None
