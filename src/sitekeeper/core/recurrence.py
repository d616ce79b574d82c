"""Weekly recurrence expansion.

Weekdays follow the site's data convention: ``0`` is Sunday through ``6``
Saturday (not Python's Monday-first ``datetime.weekday()``).
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta

ONE_WEEK = timedelta(weeks=1)

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a :class:`datetime.time`.

    Raises:
        ValueError: If *value* is not a valid time of day
    """
    match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return time(hours, minutes, seconds)


def js_weekday(moment: datetime) -> int:
    """Weekday of *moment* with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def expand(
    window_start: datetime,
    window_end: datetime,
    weekday: int,
    time_of_day: time | str,
) -> list[datetime]:
    """Return every ``weekday`` at ``time_of_day`` in ``(window_start, window_end]``.

    The first candidate is the target weekday on or after the calendar date of
    *window_start*; when it is not strictly after *window_start* (same day,
    time already passed) it moves one week on.  Results inherit the tzinfo of
    *window_start* and are spaced exactly seven days apart.

    Raises:
        ValueError: If *weekday* is outside 0–6 or *time_of_day* cannot be parsed
    """
    if isinstance(weekday, bool) or not isinstance(weekday, int) or not 0 <= weekday <= 6:
        raise ValueError(f"Invalid weekday: {weekday!r} (expected 0-6, 0 = Sunday)")
    at = parse_time(time_of_day) if isinstance(time_of_day, str) else time_of_day

    days_ahead = (weekday - js_weekday(window_start)) % 7
    first_date = window_start.date() + timedelta(days=days_ahead)
    current = datetime.combine(first_date, at, tzinfo=window_start.tzinfo)
    if current <= window_start:
        current += ONE_WEEK

    occurrences: list[datetime] = []
    while current <= window_end:
        occurrences.append(current)
        current += ONE_WEEK
    return occurrences
