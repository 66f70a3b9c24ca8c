from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pontaj.settings import get_settings

DEFAULT_TIMEZONE = "Europe/Bucharest"

logger = logging.getLogger("pontaj.local_time")


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo(DEFAULT_TIMEZONE)


def as_utc(ts: datetime) -> datetime:
    # Timestamps read back from SQLite come out naive; they were stored as UTC.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_local(ts: datetime, tz: ZoneInfo | None = None) -> datetime:
    return as_utc(ts).astimezone(tz or attendance_timezone())


def local_date(ts: datetime, tz: ZoneInfo | None = None) -> date:
    return to_local(ts, tz).date()


def local_day_bounds_utc(day: date, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    zone = tz or attendance_timezone()
    start_local = datetime.combine(day, time.min, tzinfo=zone)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def local_today(tz: ZoneInfo | None = None) -> date:
    return datetime.now(timezone.utc).astimezone(tz or attendance_timezone()).date()


def iter_dates(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
