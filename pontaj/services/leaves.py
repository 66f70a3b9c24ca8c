from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pontaj.errors import ApiError
from pontaj.models import (
    BUCKET_COLUMNS,
    ZERO_HOURS,
    DailyTimesheet,
    Employee,
    HourBucket,
    LeaveKind,
    TimesheetState,
)
from pontaj.services.local_time import iter_dates, local_today
from pontaj.services.locks import timesheet_locks
from pontaj.services.segmentation import round_hours
from pontaj.services.timesheet_calc import DailyTotals, ValidationIssue, validate_daily_totals
from pontaj.services.timesheets import get_daily_timesheet
from pontaj.settings import get_settings

logger = logging.getLogger("pontaj.leaves")

MAX_LEAVE_RANGE_DAYS = 366


LEAVE_KIND_BUCKETS: dict[LeaveKind, HourBucket] = {
    LeaveKind.VACATION: HourBucket.LEAVE,
    LeaveKind.MEDICAL: HourBucket.MEDICAL_LEAVE,
}


@dataclass
class LeaveOutcome:
    employee_id: int
    kind: LeaveKind
    processed_dates: list[date] = field(default_factory=list)
    skipped_dates: list[date] = field(default_factory=list)
    failed_dates: list[date] = field(default_factory=list)
    rejected: dict[date, list[ValidationIssue]] = field(default_factory=dict)
    conflicts: list[date] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "kind": self.kind.value,
            "processed_dates": [item.isoformat() for item in self.processed_dates],
            "skipped_dates": [item.isoformat() for item in self.skipped_dates],
            "failed_dates": [item.isoformat() for item in self.failed_dates],
            "rejected": {
                key.isoformat(): [issue.as_dict() for issue in issues]
                for key, issues in self.rejected.items()
            },
            "conflict_dates": [item.isoformat() for item in self.conflicts],
        }


def _validate_range(db: Session, employee_id: int, start_date: date, end_date: date) -> None:
    if db.get(Employee, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must be greater than or equal to start_date",
        )
    if (end_date - start_date).days + 1 > MAX_LEAVE_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Leave range is limited to {MAX_LEAVE_RANGE_DAYS} days.",
        )


def _write_leave_day(
    db: Session,
    outcome: LeaveOutcome,
    work_date: date,
    value: Decimal,
    *,
    today: date,
) -> None:
    bucket = LEAVE_KIND_BUCKETS[outcome.kind]
    column = BUCKET_COLUMNS[bucket]
    row = get_daily_timesheet(db, outcome.employee_id, work_date)

    if row is None and value == 0:
        return
    if row is not None and row.state == TimesheetState.MANUAL_OVERRIDE:
        if round_hours(row.bucket_hours()[bucket]) != value:
            outcome.conflicts.append(work_date)
            logger.warning(
                "leave_override_conflict",
                extra={"employee_id": outcome.employee_id, "work_date": work_date, "bucket": bucket.value},
            )
        return

    current = row.bucket_hours() if row is not None else {}
    totals = DailyTotals.from_mapping(outcome.employee_id, work_date, current)
    totals.hours[bucket] = value
    # Leave is planned ahead, so future dates are fine here.
    issues = validate_daily_totals(totals, today=today, allow_future=True)
    if issues:
        outcome.rejected[work_date] = issues
        return

    if row is None:
        row = DailyTimesheet(employee_id=outcome.employee_id, work_date=work_date, state=TimesheetState.COMPUTED)
        db.add(row)
    setattr(row, column, value)
    db.commit()
    outcome.processed_dates.append(work_date)


def _set_leave_hours(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    kind: LeaveKind,
    value: Decimal,
) -> LeaveOutcome:
    _validate_range(db, employee_id, start_date, end_date)
    outcome = LeaveOutcome(employee_id=employee_id, kind=kind)
    today = local_today()

    for work_date in iter_dates(start_date, end_date):
        # Sick days are only paid on working days.
        if kind == LeaveKind.MEDICAL and work_date.weekday() >= 5:
            outcome.skipped_dates.append(work_date)
            continue
        with timesheet_locks.hold((employee_id, work_date)):
            try:
                _write_leave_day(db, outcome, work_date, value, today=today)
            except SQLAlchemyError:
                db.rollback()
                outcome.failed_dates.append(work_date)
                logger.exception(
                    "leave_day_write_failed",
                    extra={"employee_id": employee_id, "work_date": work_date, "kind": kind.value},
                )
    return outcome


def apply_leave_days(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    kind: LeaveKind,
    hours: Decimal | None = None,
) -> LeaveOutcome:
    value = round_hours(Decimal(str(get_settings().leave_day_hours)) if hours is None else Decimal(hours))
    outcome = _set_leave_hours(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        kind=kind,
        value=value,
    )
    logger.info(
        "leave_days_applied",
        extra={
            "employee_id": employee_id,
            "kind": kind.value,
            "processed_dates": outcome.processed_dates,
            "failed_dates": outcome.failed_dates,
            "conflict_dates": outcome.conflicts,
        },
    )
    return outcome


def withdraw_leave_days(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    kind: LeaveKind,
) -> LeaveOutcome:
    outcome = _set_leave_hours(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        kind=kind,
        value=ZERO_HOURS,
    )
    logger.info(
        "leave_days_withdrawn",
        extra={
            "employee_id": employee_id,
            "kind": kind.value,
            "processed_dates": outcome.processed_dates,
            "failed_dates": outcome.failed_dates,
        },
    )
    return outcome
