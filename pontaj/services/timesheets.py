from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pontaj.audit import audit_timesheet_event
from pontaj.errors import ApiError, ShiftIntervalError
from pontaj.models import (
    BUCKET_COLUMNS,
    LEAVE_BUCKETS,
    ApprovalStatus,
    AuditActorType,
    DailyTimesheet,
    ShiftInterval,
    ShiftSegment,
    TimesheetState,
)
from pontaj.services.holidays import HolidaySet, load_holiday_set
from pontaj.services.local_time import attendance_timezone, local_day_bounds_utc, local_today
from pontaj.services.locks import timesheet_locks
from pontaj.services.segmentation import round_hours, split_shift, touched_dates
from pontaj.services.timesheet_calc import (
    DailyTotals,
    ValidationIssue,
    apply_break_policy,
    validate_daily_totals,
)
from pontaj.settings import get_settings

logger = logging.getLogger("pontaj.timesheets")

SYSTEM_ACTOR_ID = "aggregator"

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass
class AggregationOutcome:
    employee_id: int
    shift_id: int | None = None
    segment_count: int = 0
    persisted: list[date] = field(default_factory=list)
    rejected: dict[date, list[ValidationIssue]] = field(default_factory=dict)
    conflicts: list[date] = field(default_factory=list)
    failed: list[date] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.rejected

    def as_dict(self) -> dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "shift_id": self.shift_id,
            "segment_count": self.segment_count,
            "persisted_dates": [item.isoformat() for item in self.persisted],
            "rejected": {
                key.isoformat(): [issue.as_dict() for issue in issues]
                for key, issues in self.rejected.items()
            },
            "conflict_dates": [item.isoformat() for item in self.conflicts],
            "failed_dates": [item.isoformat() for item in self.failed],
        }


def _upsert_insert(db: Session):
    dialect_name = db.get_bind().dialect.name
    insert_factory = _UPSERT_INSERTS.get(dialect_name)
    if insert_factory is None:
        raise RuntimeError(f"Timesheet upsert is not supported on dialect {dialect_name!r}")
    return insert_factory


def upsert_computed_timesheet(db: Session, totals: DailyTotals, *, notes: str | None) -> None:
    """Insert or fully replace the computed row for ``(employee_id, work_date)``.

    The update branch only fires while the stored row is still ``COMPUTED``,
    so a manual override that slipped in after the pre-check is kept.
    """
    insert = _upsert_insert(db)
    columns = totals.as_columns()
    stmt = insert(DailyTimesheet).values(
        employee_id=totals.employee_id,
        work_date=totals.work_date,
        notes=notes,
        state=TimesheetState.COMPUTED,
        updated_at=datetime.now(timezone.utc),
        **columns,
    )
    update_columns = {name: stmt.excluded[name] for name in columns}
    update_columns["notes"] = stmt.excluded.notes
    update_columns["updated_at"] = stmt.excluded.updated_at
    stmt = stmt.on_conflict_do_update(
        index_elements=[DailyTimesheet.employee_id, DailyTimesheet.work_date],
        set_=update_columns,
        where=DailyTimesheet.state == TimesheetState.COMPUTED,
    )
    db.execute(stmt)


def get_daily_timesheet(db: Session, employee_id: int, work_date: date) -> DailyTimesheet | None:
    return db.scalar(
        select(DailyTimesheet).where(
            DailyTimesheet.employee_id == employee_id,
            DailyTimesheet.work_date == work_date,
        )
    )


def _load_day_shifts(db: Session, employee_id: int, work_date: date, tz: ZoneInfo) -> list[ShiftInterval]:
    day_start_utc, day_end_utc = local_day_bounds_utc(work_date, tz)
    return list(
        db.scalars(
            select(ShiftInterval)
            .where(
                ShiftInterval.employee_id == employee_id,
                ShiftInterval.end_ts_utc.is_not(None),
                ShiftInterval.approval_status != ApprovalStatus.REJECTED,
                ShiftInterval.start_ts_utc < day_end_utc,
                ShiftInterval.end_ts_utc > day_start_utc,
            )
            .order_by(ShiftInterval.start_ts_utc.asc(), ShiftInterval.id.asc())
        ).all()
    )


def compute_day_totals(
    db: Session,
    employee_id: int,
    work_date: date,
    *,
    holidays: HolidaySet,
    tz: ZoneInfo,
) -> tuple[DailyTotals, str | None]:
    """Recompute a day's shift buckets from every shift that touches it."""
    totals = DailyTotals(employee_id=employee_id, work_date=work_date)
    notes: list[str] = []
    for shift in _load_day_shifts(db, employee_id, work_date, tz):
        try:
            slices = split_shift(shift, holidays, tz=tz)
        except ShiftIntervalError as exc:
            logger.warning(
                "timesheet_shift_skipped",
                extra={"shift_id": shift.id, "work_date": work_date, "error_code": exc.code},
            )
            continue
        for item in slices:
            if item.work_date == work_date:
                totals.add(item.bucket, item.hours)
        note = (shift.notes or "").strip()
        if note and note not in notes:
            notes.append(note)

    if get_settings().break_deduction_enabled:
        totals = apply_break_policy(totals)
    return totals, "; ".join(notes) or None


def _differs(row: DailyTimesheet, totals: DailyTotals) -> bool:
    stored = row.bucket_hours()
    return any(round_hours(stored[bucket]) != round_hours(value) for bucket, value in totals.hours.items())


def _report_override_conflict(db: Session, row: DailyTimesheet, totals: DailyTotals) -> None:
    stored = {BUCKET_COLUMNS[bucket]: value for bucket, value in row.bucket_hours().items()}
    computed = totals.as_columns()
    logger.warning(
        "timesheet_override_conflict",
        extra={
            "employee_id": totals.employee_id,
            "work_date": totals.work_date,
            "override_by": row.override_by,
        },
    )
    audit_timesheet_event(
        db,
        totals.employee_id,
        totals.work_date,
        actor_type=AuditActorType.SYSTEM,
        actor_id=SYSTEM_ACTOR_ID,
        action="TIMESHEET_OVERRIDE_CONFLICT",
        success=False,
        details={"stored": stored, "computed": computed, "override_by": row.override_by},
    )


def _recompute_day(
    db: Session,
    outcome: AggregationOutcome,
    work_date: date,
    *,
    holidays: HolidaySet,
    tz: ZoneInfo,
    today: date,
) -> None:
    employee_id = outcome.employee_id
    totals, notes = compute_day_totals(db, employee_id, work_date, holidays=holidays, tz=tz)
    existing = get_daily_timesheet(db, employee_id, work_date)

    if existing is None and totals.total == 0:
        return
    if existing is not None:
        stored = existing.bucket_hours()
        for bucket in LEAVE_BUCKETS:
            totals.hours[bucket] = stored[bucket]

    issues = validate_daily_totals(totals, today=today)
    if issues:
        outcome.rejected[work_date] = issues
        logger.warning(
            "timesheet_day_rejected",
            extra={
                "employee_id": employee_id,
                "work_date": work_date,
                "issue_codes": [issue.code for issue in issues],
            },
        )
        return

    if existing is not None and existing.state == TimesheetState.MANUAL_OVERRIDE:
        if _differs(existing, totals):
            outcome.conflicts.append(work_date)
            _report_override_conflict(db, existing, totals)
        return

    # An unchanged row is left alone so re-runs keep it byte-identical.
    if existing is not None and existing.notes == notes and not _differs(existing, totals):
        outcome.persisted.append(work_date)
        return

    upsert_computed_timesheet(db, totals, notes=notes)
    db.commit()
    outcome.persisted.append(work_date)


def recompute_days(
    db: Session,
    employee_id: int,
    work_dates: Iterable[date],
    *,
    holidays: HolidaySet | None = None,
    today: date | None = None,
    outcome: AggregationOutcome | None = None,
) -> AggregationOutcome:
    """Rebuild the daily rows of ``employee_id`` for each date, one commit per date.

    Storage failures are caught per date so the remaining dates still go
    through; retrying only ``outcome.failed`` is safe because every date is
    recomputed from scratch.
    """
    tz = attendance_timezone()
    if holidays is None:
        holidays = load_holiday_set(db)
    if today is None:
        today = local_today(tz)
    if outcome is None:
        outcome = AggregationOutcome(employee_id=employee_id)

    for work_date in sorted(set(work_dates)):
        with timesheet_locks.hold((employee_id, work_date)):
            try:
                _recompute_day(db, outcome, work_date, holidays=holidays, tz=tz, today=today)
            except SQLAlchemyError:
                db.rollback()
                outcome.failed.append(work_date)
                logger.exception(
                    "timesheet_upsert_failed",
                    extra={"employee_id": employee_id, "work_date": work_date},
                )
    return outcome


def _replace_segments(db: Session, shift: ShiftInterval, slices) -> None:
    db.execute(delete(ShiftSegment).where(ShiftSegment.shift_id == shift.id))
    for item in slices:
        db.add(
            ShiftSegment(
                shift_id=shift.id,
                employee_id=shift.employee_id,
                work_date=item.work_date,
                start_ts_utc=item.start_utc,
                end_ts_utc=item.end_utc,
                bucket=item.bucket,
                hours=item.hours,
            )
        )
    db.commit()


def process_shift(db: Session, shift_id: int, *, today: date | None = None) -> AggregationOutcome:
    shift = db.get(ShiftInterval, shift_id)
    if shift is None:
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")

    employee_id = shift.employee_id
    holidays = load_holiday_set(db)
    slices = split_shift(shift, holidays)

    previous_dates = set(db.scalars(select(ShiftSegment.work_date).where(ShiftSegment.shift_id == shift_id)).all())
    affected_dates = set(touched_dates(slices)) | previous_dates
    outcome = AggregationOutcome(employee_id=employee_id, shift_id=shift_id, segment_count=len(slices))

    try:
        _replace_segments(db, shift, slices)
    except SQLAlchemyError:
        db.rollback()
        outcome.failed.extend(sorted(affected_dates))
        logger.exception("shift_segments_write_failed", extra={"shift_id": shift_id})
    else:
        recompute_days(db, employee_id, affected_dates, holidays=holidays, today=today, outcome=outcome)

    shift = db.get(ShiftInterval, shift_id)
    if shift is not None:
        shift.needs_reprocessing = bool(outcome.failed)
        shift.last_processed_at = datetime.now(timezone.utc)
        db.commit()

    logger.info(
        "shift_processed",
        extra={
            "shift_id": shift_id,
            "employee_id": employee_id,
            "segment_count": outcome.segment_count,
            "persisted_dates": outcome.persisted,
            "rejected_dates": sorted(outcome.rejected),
            "conflict_dates": outcome.conflicts,
            "failed_dates": outcome.failed,
        },
    )
    return outcome
