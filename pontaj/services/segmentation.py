"""Cut a shift interval into pay-rate segments.

A segment never crosses a critical boundary (06:00, 22:00, midnight), so each
one lies inside a single local calendar day and a single pay-rate zone.
"""

from __future__ import annotations

from collections.abc import Container
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from pontaj.errors import ShiftIntervalError
from pontaj.models import ActivityTag, HourBucket, ShiftInterval
from pontaj.services.holidays import EMPTY_HOLIDAYS
from pontaj.services.hour_rules import classify, next_boundary
from pontaj.services.local_time import as_utc, attendance_timezone
from pontaj.settings import get_settings

HOURS_QUANTUM = Decimal("0.01")
_MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)

TAG_BUCKETS: dict[ActivityTag, HourBucket] = {
    ActivityTag.DRIVING: HourBucket.DRIVING,
    ActivityTag.PASSENGER: HourBucket.PASSENGER,
    ActivityTag.EQUIPMENT: HourBucket.EQUIPMENT,
}


@dataclass(frozen=True, slots=True)
class SegmentSlice:
    start: datetime
    end: datetime
    work_date: date
    bucket: HourBucket
    hours: Decimal

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(timezone.utc)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(timezone.utc)


def round_hours(value: Decimal) -> Decimal:
    return value.quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def elapsed_hours(start: datetime, end: datetime) -> Decimal:
    """Exact real elapsed hours between two instants, DST-safe."""
    delta = as_utc(end) - as_utc(start)
    return Decimal(delta // timedelta(microseconds=1)) / _MICROSECONDS_PER_HOUR


def ensure_closed_interval(
    start: datetime,
    end: datetime | None,
    *,
    max_hours: int | None = None,
    shift_id: int | None = None,
) -> datetime:
    if end is None:
        raise ShiftIntervalError("SHIFT_OPEN", "Shift has no end time yet.", shift_id=shift_id)
    if as_utc(end) <= as_utc(start):
        raise ShiftIntervalError(
            "INVALID_SHIFT_INTERVAL",
            "Shift end must be after its start.",
            shift_id=shift_id,
        )
    if max_hours is not None and as_utc(end) - as_utc(start) > timedelta(hours=max_hours):
        raise ShiftIntervalError(
            "SHIFT_TOO_LONG",
            f"Shift is longer than the {max_hours}h limit.",
            shift_id=shift_id,
        )
    return end


def split_interval(
    start: datetime,
    end: datetime | None,
    *,
    activity_tag: ActivityTag | None = None,
    holidays: Container[date] = EMPTY_HOLIDAYS,
    tz: ZoneInfo | None = None,
    max_hours: int | None = None,
) -> list[SegmentSlice]:
    """Split ``[start, end)`` into boundary-bounded, bucketed slices.

    Naive inputs are UTC. Driving, passenger and equipment shifts keep their
    fixed bucket on every slice; the boundary walk still runs so each slice
    stays within one calendar day. Other shifts are classified by the slice's
    midpoint, since the slice's first instant is a boundary owned by the
    previous zone.

    Hours are rounded on the running offset from ``start``, so the slices sum
    to exactly the rounded interval length however many there are.
    """
    closed_end = ensure_closed_interval(start, end, max_hours=max_hours)
    zone = tz or attendance_timezone()
    local_start = as_utc(start).astimezone(zone)
    end_utc = as_utc(closed_end)
    fixed_bucket = TAG_BUCKETS.get(activity_tag) if activity_tag is not None else None

    slices: list[SegmentSlice] = []
    cursor = local_start
    rounded_offset = Decimal("0.00")
    while as_utc(cursor) < end_utc:
        boundary_utc = as_utc(next_boundary(cursor))
        segment_end = min(boundary_utc, end_utc).astimezone(zone)

        if fixed_bucket is not None:
            bucket = fixed_bucket
        else:
            midpoint = as_utc(cursor) + (as_utc(segment_end) - as_utc(cursor)) / 2
            bucket = classify(midpoint.astimezone(zone), holidays)

        next_offset = round_hours(elapsed_hours(local_start, segment_end))
        slices.append(
            SegmentSlice(
                start=cursor,
                end=segment_end,
                work_date=cursor.date(),
                bucket=bucket,
                hours=next_offset - rounded_offset,
            )
        )
        rounded_offset = next_offset
        cursor = segment_end

    return slices


def split_shift(
    shift: ShiftInterval,
    holidays: Container[date] = EMPTY_HOLIDAYS,
    *,
    tz: ZoneInfo | None = None,
) -> list[SegmentSlice]:
    try:
        return split_interval(
            shift.start_ts_utc,
            shift.end_ts_utc,
            activity_tag=shift.activity_tag,
            holidays=holidays,
            tz=tz,
            max_hours=get_settings().max_shift_hours,
        )
    except ShiftIntervalError as exc:
        exc.shift_id = shift.id
        raise


def touched_dates(slices: list[SegmentSlice]) -> list[date]:
    return sorted({item.work_date for item in slices})
