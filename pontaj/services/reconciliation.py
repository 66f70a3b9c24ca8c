"""Compare raw shift durations against the stored daily rows.

Findings are data, not errors: every date of the requested range gets a
result, including the days where both sides agree. Nothing here writes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from pontaj.errors import ApiError
from pontaj.models import ZERO_HOURS, ApprovalStatus, DailyTimesheet, Employee, ShiftInterval
from pontaj.services.local_time import attendance_timezone, iter_dates, local_date, local_day_bounds_utc
from pontaj.services.segmentation import elapsed_hours, round_hours

logger = logging.getLogger("pontaj.reconciliation")

# Single tolerance for every reconciliation path.
AUDIT_DISCREPANCY_THRESHOLD_HOURS = Decimal("0.10")
MAX_AUDIT_RANGE_DAYS = 366


class _TimedShift(Protocol):
    start_ts_utc: datetime
    end_ts_utc: datetime | None


@dataclass(frozen=True)
class ReconciliationResult:
    work_date: date
    entries_total: Decimal
    aggregate_total: Decimal | None
    delta: Decimal
    discrepancy: bool
    incomplete: bool
    missing_aggregate: bool
    shift_count: int = 0

    @property
    def flags(self) -> list[str]:
        names: list[str] = []
        if self.discrepancy:
            names.append("discrepancy")
        if self.incomplete:
            names.append("incomplete")
        if self.missing_aggregate:
            names.append("missing_aggregate")
        return names


@dataclass(frozen=True)
class EmployeeDiscrepancy:
    employee_id: int
    full_name: str
    result: ReconciliationResult


@dataclass(frozen=True)
class ReconciliationSummary:
    days: int
    discrepancy_days: int
    incomplete_days: int
    missing_aggregate_days: int
    entries_total: Decimal
    aggregate_total: Decimal
    delta_total: Decimal


def reconcile_day(
    work_date: date,
    shifts: Sequence[_TimedShift],
    aggregate_total: Decimal | None,
    *,
    threshold: Decimal = AUDIT_DISCREPANCY_THRESHOLD_HOURS,
) -> ReconciliationResult:
    entries_total = ZERO_HOURS
    incomplete = False
    for shift in shifts:
        if shift.end_ts_utc is None:
            incomplete = True
            continue
        entries_total += elapsed_hours(shift.start_ts_utc, shift.end_ts_utc)
    entries_total = round_hours(entries_total)

    delta = round_hours(entries_total - (aggregate_total if aggregate_total is not None else ZERO_HOURS))
    return ReconciliationResult(
        work_date=work_date,
        entries_total=entries_total,
        aggregate_total=round_hours(aggregate_total) if aggregate_total is not None else None,
        delta=delta,
        discrepancy=abs(delta) > threshold,
        incomplete=incomplete,
        missing_aggregate=bool(shifts) and aggregate_total is None,
        shift_count=len(shifts),
    )


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not be before start_date.")
    if (end_date - start_date).days + 1 > MAX_AUDIT_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Audit range is limited to {MAX_AUDIT_RANGE_DAYS} days.",
        )


def _load_range(
    db: Session,
    start_date: date,
    end_date: date,
    *,
    employee_id: int | None = None,
) -> tuple[dict[tuple[int, date], list[ShiftInterval]], dict[tuple[int, date], Decimal]]:
    """Shifts grouped by (employee, local start date) and worked totals of the stored rows."""
    tz = attendance_timezone()
    range_start_utc, _ = local_day_bounds_utc(start_date, tz)
    _, range_end_utc = local_day_bounds_utc(end_date, tz)

    shift_stmt = select(ShiftInterval).where(
        ShiftInterval.approval_status != ApprovalStatus.REJECTED,
        ShiftInterval.start_ts_utc >= range_start_utc,
        ShiftInterval.start_ts_utc < range_end_utc,
    )
    row_stmt = select(DailyTimesheet).where(
        DailyTimesheet.work_date >= start_date,
        DailyTimesheet.work_date <= end_date,
    )
    if employee_id is not None:
        shift_stmt = shift_stmt.where(ShiftInterval.employee_id == employee_id)
        row_stmt = row_stmt.where(DailyTimesheet.employee_id == employee_id)

    shifts_by_key: dict[tuple[int, date], list[ShiftInterval]] = defaultdict(list)
    for shift in db.scalars(shift_stmt.order_by(ShiftInterval.start_ts_utc.asc(), ShiftInterval.id.asc())):
        shifts_by_key[(shift.employee_id, local_date(shift.start_ts_utc, tz))].append(shift)

    # Leave hours have no shift behind them, so only worked buckets are compared.
    totals_by_key = {(row.employee_id, row.work_date): row.worked_hours for row in db.scalars(row_stmt)}
    return shifts_by_key, totals_by_key


def audit_employee_range(
    db: Session,
    employee_id: int,
    start_date: date,
    end_date: date,
) -> list[ReconciliationResult]:
    _check_range(start_date, end_date)
    shifts_by_key, totals_by_key = _load_range(db, start_date, end_date, employee_id=employee_id)
    return [
        reconcile_day(
            work_date,
            shifts_by_key.get((employee_id, work_date), []),
            totals_by_key.get((employee_id, work_date)),
        )
        for work_date in iter_dates(start_date, end_date)
    ]


def audit_all_employees_range(db: Session, start_date: date, end_date: date) -> list[EmployeeDiscrepancy]:
    """Team-wide scan; only (employee, date) pairs with at least one flag are returned."""
    _check_range(start_date, end_date)
    shifts_by_key, totals_by_key = _load_range(db, start_date, end_date)
    keys = set(shifts_by_key) | set(totals_by_key)
    if not keys:
        return []

    employee_ids = {employee_id for employee_id, _ in keys}
    names = dict(db.execute(select(Employee.id, Employee.full_name).where(Employee.id.in_(employee_ids))).all())

    findings: list[EmployeeDiscrepancy] = []
    for employee_id, work_date in keys:
        result = reconcile_day(
            work_date,
            shifts_by_key.get((employee_id, work_date), []),
            totals_by_key.get((employee_id, work_date)),
        )
        if result.flags:
            findings.append(
                EmployeeDiscrepancy(
                    employee_id=employee_id,
                    full_name=names.get(employee_id, ""),
                    result=result,
                )
            )
    findings.sort(key=lambda item: (item.result.work_date, item.full_name, item.employee_id))
    logger.info(
        "team_audit_completed",
        extra={
            "start_date": start_date,
            "end_date": end_date,
            "pairs_checked": len(keys),
            "findings": len(findings),
        },
    )
    return findings


def summarize(results: Sequence[ReconciliationResult]) -> ReconciliationSummary:
    entries_total = sum((item.entries_total for item in results), ZERO_HOURS)
    aggregate_total = sum(
        (item.aggregate_total for item in results if item.aggregate_total is not None),
        ZERO_HOURS,
    )
    return ReconciliationSummary(
        days=len(results),
        discrepancy_days=sum(1 for item in results if item.discrepancy),
        incomplete_days=sum(1 for item in results if item.incomplete),
        missing_aggregate_days=sum(1 for item in results if item.missing_aggregate),
        entries_total=round_hours(entries_total),
        aggregate_total=round_hours(aggregate_total),
        delta_total=round_hours(entries_total - aggregate_total),
    )
