"""Pay-rate boundaries and hour classification.

All instants handled here are local wall-clock datetimes in the attendance
timezone. Aware datetimes keep their tzinfo; nothing is converted.

Day work runs from just after 06:00:00 up to and including 22:00:00; the rest
of the day is night work. Saturday after 06:00 through Sunday 06:00 is one
premium window (``SATURDAY``), the remainder of Sunday is ``SUNDAY``, and a
legal holiday is ``HOLIDAY`` after 06:00 with its early hours counted as night.
"""

from __future__ import annotations

from collections.abc import Container
from datetime import date, datetime, time, timedelta

from pontaj.models import HourBucket

DAY_START = time(6, 0)
NIGHT_START = time(22, 0)

_SATURDAY = 5
_SUNDAY = 6


def _at(day: date, wall_time: time, reference: datetime) -> datetime:
    return datetime.combine(day, wall_time, tzinfo=reference.tzinfo)


def next_boundary(t: datetime) -> datetime:
    """Return the first of 06:00, 22:00 or next-day 00:00 strictly after ``t``."""
    wall_time = t.time()
    if wall_time < DAY_START:
        return _at(t.date(), DAY_START, t)
    if wall_time < NIGHT_START:
        return _at(t.date(), NIGHT_START, t)
    return _at(t.date() + timedelta(days=1), time.min, t)


def is_night_time(wall_time: time) -> bool:
    return wall_time <= DAY_START or wall_time > NIGHT_START


def classify(instant: datetime, holidays: Container[date]) -> HourBucket:
    """Classify the hour starting at ``instant`` into a time-of-day bucket.

    Decision order, first match wins: legal holiday, Saturday/Sunday-morning
    window, Sunday, night, regular. 06:00:00 itself is still night and 22:00:00
    is still regular.
    """
    wall_time = instant.time()
    weekday = instant.weekday()

    if instant.date() in holidays:
        return HourBucket.NIGHT if wall_time <= DAY_START else HourBucket.HOLIDAY

    if (weekday == _SATURDAY and wall_time > DAY_START) or (weekday == _SUNDAY and wall_time <= DAY_START):
        return HourBucket.SATURDAY

    if weekday == _SUNDAY:
        return HourBucket.SUNDAY

    if is_night_time(wall_time):
        return HourBucket.NIGHT

    return HourBucket.REGULAR
