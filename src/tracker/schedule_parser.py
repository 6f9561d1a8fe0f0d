"""
Schedule time parsing for the Kerala Bus Tracker.

Timetables are written as 12-hour clock strings ("8:05 AM"), sometimes embedded
in free text such as a route name ("Pathanamthitta - Kollam @ 8:00 AM"). This
module turns them into datetimes on a reference day and back.
"""

import re
from datetime import date, datetime
from typing import Optional, Union

SCHEDULE_TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)


def parse_schedule_time(
    text: Optional[str],
    reference_date: Union[datetime, date]
) -> Optional[datetime]:
    """
    Parse an "h:mm AM/PM" time found in text onto the reference day.

    The first match anywhere in the text is used. 12 AM maps to hour 0,
    12 PM stays 12 and other PM hours are shifted by 12. Seconds and
    microseconds are zeroed.

    Args:
        text: Text containing the time
        reference_date: Day to place the time on; a datetime keeps its tzinfo

    Returns:
        The parsed datetime, or None if no valid time is present
    """
    if not text or not isinstance(text, str):
        return None

    match = SCHEDULE_TIME_PATTERN.search(text)
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2))
    modifier = match.group(3).upper()

    if hours > 12 or minutes > 59:
        return None

    if modifier == "PM" and hours < 12:
        hours += 12
    if modifier == "AM" and hours == 12:
        hours = 0

    if isinstance(reference_date, datetime):
        return reference_date.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    return datetime(reference_date.year, reference_date.month, reference_date.day, hours, minutes)


def format_schedule_time(value: datetime) -> str:
    """Render a datetime as "hh:mm AM/PM"."""
    return value.strftime("%I:%M %p")


def minutes_of_day(text: Optional[str]) -> Optional[int]:
    """
    Minutes since midnight for a schedule time string.

    Returns:
        Minutes since midnight, or None if the text holds no valid time
    """
    parsed = parse_schedule_time(text, date(2000, 1, 1))
    if parsed is None:
        return None
    return parsed.hour * 60 + parsed.minute
