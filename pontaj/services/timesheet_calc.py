from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from pontaj.models import BUCKET_COLUMNS, SHIFT_BUCKETS, ZERO_HOURS, HourBucket
from pontaj.services.segmentation import SegmentSlice, round_hours

MAX_DAILY_HOURS = Decimal("24")

BREAK_THRESHOLD_HOURS = Decimal("4")
DAY_BREAK_HOURS = Decimal("0.50")
NIGHT_BREAK_HOURS = Decimal("0.25")
DAY_BREAK_BUCKETS: tuple[HourBucket, ...] = (
    HourBucket.REGULAR,
    HourBucket.SATURDAY,
    HourBucket.SUNDAY,
    HourBucket.HOLIDAY,
)


def _empty_buckets() -> dict[HourBucket, Decimal]:
    return {bucket: ZERO_HOURS for bucket in BUCKET_COLUMNS}


@dataclass
class DailyTotals:
    employee_id: int
    work_date: date
    hours: dict[HourBucket, Decimal] = field(default_factory=_empty_buckets)

    def add(self, bucket: HourBucket, value: Decimal) -> None:
        self.hours[bucket] = self.hours.get(bucket, ZERO_HOURS) + value

    @property
    def total(self) -> Decimal:
        return sum(self.hours.values(), ZERO_HOURS)

    def shift_hours(self) -> dict[HourBucket, Decimal]:
        return {bucket: self.hours.get(bucket, ZERO_HOURS) for bucket in SHIFT_BUCKETS}

    def as_columns(self) -> dict[str, Decimal]:
        return {BUCKET_COLUMNS[bucket]: round_hours(value) for bucket, value in self.hours.items()}

    @classmethod
    def from_mapping(
        cls,
        employee_id: int,
        work_date: date,
        values: Mapping[HourBucket, Decimal],
    ) -> DailyTotals:
        totals = cls(employee_id=employee_id, work_date=work_date)
        for bucket, value in values.items():
            totals.hours[bucket] = Decimal(value)
        return totals


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    bucket: HourBucket | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "code": self.code,
            "message": self.message,
            "bucket": self.bucket.value if self.bucket is not None else None,
        }


def aggregate_segments(slices: Iterable[SegmentSlice], employee_id: int) -> list[DailyTotals]:
    by_date: dict[date, DailyTotals] = {}
    for item in slices:
        totals = by_date.get(item.work_date)
        if totals is None:
            totals = DailyTotals(employee_id=employee_id, work_date=item.work_date)
            by_date[item.work_date] = totals
        totals.add(item.bucket, item.hours)
    return [by_date[key] for key in sorted(by_date)]


def _deduct_proportionally(
    hours: dict[HourBucket, Decimal],
    buckets: tuple[HourBucket, ...],
    deduction: Decimal,
) -> None:
    present = [bucket for bucket in buckets if hours.get(bucket, ZERO_HOURS) > 0]
    base = sum((hours[bucket] for bucket in present), ZERO_HOURS)
    if base <= 0:
        return
    remaining = deduction
    for index, bucket in enumerate(present):
        if index == len(present) - 1:
            share = remaining
        else:
            share = round_hours(deduction * hours[bucket] / base)
        hours[bucket] = hours[bucket] - share
        remaining -= share


def apply_break_policy(totals: DailyTotals) -> DailyTotals:
    """Deduct the unpaid meal break from a day's worked hours.

    A day with at least 4h of day work loses 0.50h spread over the day buckets
    in proportion to their size; at least 4h of night work loses 0.25h.
    Driving, passenger, equipment and leave hours are never reduced.
    """
    adjusted = DailyTotals(
        employee_id=totals.employee_id,
        work_date=totals.work_date,
        hours=dict(totals.hours),
    )
    day_hours = sum((adjusted.hours.get(bucket, ZERO_HOURS) for bucket in DAY_BREAK_BUCKETS), ZERO_HOURS)
    if day_hours >= BREAK_THRESHOLD_HOURS:
        _deduct_proportionally(adjusted.hours, DAY_BREAK_BUCKETS, DAY_BREAK_HOURS)
    if adjusted.hours.get(HourBucket.NIGHT, ZERO_HOURS) >= BREAK_THRESHOLD_HOURS:
        adjusted.hours[HourBucket.NIGHT] -= NIGHT_BREAK_HOURS
    return adjusted


def validate_daily_totals(
    totals: DailyTotals,
    *,
    today: date,
    allow_future: bool = False,
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    total = totals.total
    if total > MAX_DAILY_HOURS:
        issues.append(
            ValidationIssue(
                code="TOTAL_EXCEEDS_24H",
                message=f"{totals.work_date.isoformat()}: total {total}h exceeds 24h.",
            )
        )

    for bucket, value in totals.hours.items():
        if value < 0:
            issues.append(
                ValidationIssue(
                    code="NEGATIVE_HOURS",
                    message=f"{totals.work_date.isoformat()}: {bucket.value.lower()} hours are negative ({value}h).",
                    bucket=bucket,
                )
            )

    if not allow_future and totals.work_date > today:
        issues.append(
            ValidationIssue(
                code="FUTURE_DATE",
                message=f"{totals.work_date.isoformat()} is in the future.",
            )
        )

    return issues
