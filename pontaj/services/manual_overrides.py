from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from pontaj.audit import audit_timesheet_event
from pontaj.errors import ApiError
from pontaj.models import BUCKET_COLUMNS, AuditActorType, DailyTimesheet, Employee, HourBucket, TimesheetState
from pontaj.services.local_time import local_today
from pontaj.services.locks import timesheet_locks
from pontaj.services.segmentation import round_hours
from pontaj.services.timesheet_calc import DailyTotals, validate_daily_totals
from pontaj.services.timesheets import AggregationOutcome, get_daily_timesheet, recompute_days

logger = logging.getLogger("pontaj.manual_overrides")


def _ensure_employee_exists(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


def set_manual_override(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    hours: Mapping[HourBucket, Decimal],
    note: str | None,
    actor_id: str,
    today: date | None = None,
) -> DailyTimesheet:
    _ensure_employee_exists(db, employee_id)

    totals = DailyTotals.from_mapping(employee_id, work_date, hours)
    issues = validate_daily_totals(totals, today=today or local_today())
    if issues:
        raise ApiError(
            status_code=422,
            code="TIMESHEET_VALIDATION_FAILED",
            message="; ".join(issue.message for issue in issues),
            details=[issue.as_dict() for issue in issues],
        )

    with timesheet_locks.hold((employee_id, work_date)):
        row = get_daily_timesheet(db, employee_id, work_date)
        if row is None:
            row = DailyTimesheet(employee_id=employee_id, work_date=work_date)
            db.add(row)
        for bucket, column in BUCKET_COLUMNS.items():
            setattr(row, column, round_hours(totals.hours[bucket]))
        row.notes = note
        row.state = TimesheetState.MANUAL_OVERRIDE
        row.override_by = actor_id
        db.commit()

    audit_timesheet_event(
        db,
        employee_id,
        work_date,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="TIMESHEET_OVERRIDE_SET",
        details=totals.as_columns(),
    )
    db.refresh(row)
    return row


def clear_manual_override(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    actor_id: str,
) -> AggregationOutcome:
    with timesheet_locks.hold((employee_id, work_date)):
        row = get_daily_timesheet(db, employee_id, work_date)
        if row is None or row.state != TimesheetState.MANUAL_OVERRIDE:
            raise ApiError(
                status_code=404,
                code="TIMESHEET_OVERRIDE_NOT_FOUND",
                message="No manual override exists for this day.",
            )
        row.state = TimesheetState.COMPUTED
        row.override_by = None
        db.commit()

    audit_timesheet_event(
        db,
        employee_id,
        work_date,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="TIMESHEET_OVERRIDE_CLEARED",
    )
    outcome = recompute_days(db, employee_id, [work_date])
    logger.info(
        "timesheet_override_cleared",
        extra={"employee_id": employee_id, "work_date": work_date, "persisted_dates": outcome.persisted},
    )
    return outcome
