from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from pontaj.audit import audit_shift_event, log_audit
from pontaj.db import get_db
from pontaj.errors import ApiError
from pontaj.models import AuditActorType, Employee, ShiftSegment
from pontaj.schemas import (
    AggregationOutcomeRead,
    DailyTimesheetRead,
    DedupeRequest,
    DedupeResponse,
    DedupeShiftRead,
    HolidayCreate,
    HolidayRead,
    LeaveApplyRequest,
    LeaveOutcomeRead,
    LeaveWithdrawRequest,
    ReconciliationResultRead,
    ReconciliationSummaryRead,
    ReprocessRequest,
    ReprocessResponse,
    ShiftApproveRequest,
    ShiftApproveResponse,
    ShiftSegmentRead,
    TeamAuditResponse,
    TeamDiscrepancyRead,
    TimesheetAuditResponse,
    TimesheetOverrideRequest,
)
from pontaj.security import actor_id_from_claims, require_admin_permission
from pontaj.services.dedupe import dedupe_team_day
from pontaj.services.exports import build_audit_xlsx_bytes
from pontaj.services.holidays import create_holiday, delete_holiday, list_holidays
from pontaj.services.leaves import apply_leave_days, withdraw_leave_days
from pontaj.services.manual_overrides import clear_manual_override, set_manual_override
from pontaj.services.reconciliation import (
    AUDIT_DISCREPANCY_THRESHOLD_HOURS,
    audit_all_employees_range,
    audit_employee_range,
    summarize,
)
from pontaj.services.reprocess import reprocess_shifts
from pontaj.services.shifts import approve_shifts
from pontaj.services.timesheets import get_daily_timesheet, process_shift

router = APIRouter(tags=["admin"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post(
    "/api/admin/shifts/{shift_id}/process",
    response_model=AggregationOutcomeRead,
)
def process_shift_endpoint(
    shift_id: int,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("shifts", write=True)),
    db: Session = Depends(get_db),
) -> AggregationOutcomeRead:
    outcome = process_shift(db, shift_id)
    audit_shift_event(
        db,
        shift_id,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
        action="SHIFT_REPROCESSED",
        success=outcome.ok,
        details=outcome.as_dict(),
        request_id=_request_id(request),
    )
    return AggregationOutcomeRead.model_validate(outcome.as_dict())


@router.get(
    "/api/admin/shifts/{shift_id}/segments",
    response_model=list[ShiftSegmentRead],
    dependencies=[Depends(require_admin_permission("shifts"))],
)
def list_shift_segments(shift_id: int, db: Session = Depends(get_db)) -> list[ShiftSegmentRead]:
    return list(
        db.scalars(
            select(ShiftSegment)
            .where(ShiftSegment.shift_id == shift_id)
            .order_by(ShiftSegment.start_ts_utc.asc(), ShiftSegment.id.asc())
        ).all()
    )


@router.post(
    "/api/admin/shifts/approve",
    response_model=ShiftApproveResponse,
)
def approve_shifts_endpoint(
    payload: ShiftApproveRequest,
    claims: dict[str, Any] = Depends(require_admin_permission("shifts", write=True)),
    db: Session = Depends(get_db),
) -> ShiftApproveResponse:
    result = approve_shifts(db, payload.shift_ids, approved_by=actor_id_from_claims(claims))
    return ShiftApproveResponse(
        approved=result.approved,
        not_found=result.not_found,
        errors=result.errors,
        aggregations=[AggregationOutcomeRead.model_validate(item.as_dict()) for item in result.outcomes],
    )


@router.post(
    "/api/admin/timesheets/dedupe",
    response_model=DedupeResponse,
)
def dedupe_endpoint(
    payload: DedupeRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("maintenance", write=True)),
    db: Session = Depends(get_db),
) -> DedupeResponse:
    result = dedupe_team_day(
        db,
        payload.team_id,
        payload.work_date,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
    )
    request.state.flags = {"removed_count": len(result.removed)}
    return DedupeResponse(
        team_id=result.team_id,
        work_date=result.work_date,
        removed_count=len(result.removed),
        removed=[DedupeShiftRead.model_validate(item) for item in result.removed],
        kept=[DedupeShiftRead.model_validate(item) for item in result.kept],
    )


@router.get(
    "/api/admin/timesheets/audit",
    response_model=TimesheetAuditResponse,
    dependencies=[Depends(require_admin_permission("audit"))],
)
def audit_timesheets(
    employee_id: int = Query(ge=1),
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
) -> TimesheetAuditResponse:
    results = audit_employee_range(db, employee_id, start_date, end_date)
    return TimesheetAuditResponse(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        threshold_hours=AUDIT_DISCREPANCY_THRESHOLD_HOURS,
        results=[ReconciliationResultRead.model_validate(item) for item in results],
        summary=ReconciliationSummaryRead.model_validate(summarize(results)),
    )


@router.get(
    "/api/admin/timesheets/audit/team",
    response_model=TeamAuditResponse,
    dependencies=[Depends(require_admin_permission("audit"))],
)
def audit_team_timesheets(
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
) -> TeamAuditResponse:
    findings = audit_all_employees_range(db, start_date, end_date)
    return TeamAuditResponse(
        start_date=start_date,
        end_date=end_date,
        threshold_hours=AUDIT_DISCREPANCY_THRESHOLD_HOURS,
        finding_count=len(findings),
        findings=[TeamDiscrepancyRead.model_validate(item) for item in findings],
    )


@router.get(
    "/api/admin/timesheets/audit/export.xlsx",
)
def export_audit_xlsx(
    request: Request,
    employee_id: int = Query(ge=1),
    start_date: date = Query(),
    end_date: date = Query(),
    claims: dict[str, Any] = Depends(require_admin_permission("audit")),
    db: Session = Depends(get_db),
) -> Response:
    results = audit_employee_range(db, employee_id, start_date, end_date)
    employee = db.get(Employee, employee_id)
    payload = build_audit_xlsx_bytes(
        results,
        employee_id=employee_id,
        employee_name=employee.full_name if employee is not None else None,
        start_date=start_date,
        end_date=end_date,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
        action="TIMESHEET_AUDIT_EXPORT_XLSX",
        entity_type="export",
        entity_id=str(employee_id),
        details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        request_id=_request_id(request),
    )
    filename = f"reconciliere-{employee_id}-{start_date.isoformat()}-{end_date.isoformat()}.xlsx"
    return Response(
        content=payload,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/api/admin/timesheets/reprocess",
    response_model=ReprocessResponse,
)
def reprocess_endpoint(
    payload: ReprocessRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("maintenance", write=True)),
    db: Session = Depends(get_db),
) -> ReprocessResponse:
    report = reprocess_shifts(
        db,
        mode=payload.mode,
        batch_size=payload.batch_size,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
        action="SHIFTS_REPROCESSED",
        success=not report.failed,
        entity_type="maintenance",
        entity_id=payload.mode,
        details={"processed_count": len(report.processed), "failed": {str(k): v for k, v in report.failed.items()}},
        request_id=_request_id(request),
    )
    return ReprocessResponse.model_validate(report)


@router.get(
    "/api/admin/timesheets/{employee_id}/{work_date}",
    response_model=DailyTimesheetRead,
    dependencies=[Depends(require_admin_permission("timesheets"))],
)
def get_timesheet_day(employee_id: int, work_date: date, db: Session = Depends(get_db)) -> DailyTimesheetRead:
    row = get_daily_timesheet(db, employee_id, work_date)
    if row is None:
        raise ApiError(status_code=404, code="TIMESHEET_NOT_FOUND", message="No timesheet row for this day.")
    return row


@router.put(
    "/api/admin/timesheets/{employee_id}/{work_date}/override",
    response_model=DailyTimesheetRead,
)
def set_override_endpoint(
    employee_id: int,
    work_date: date,
    payload: TimesheetOverrideRequest,
    claims: dict[str, Any] = Depends(require_admin_permission("timesheets", write=True)),
    db: Session = Depends(get_db),
) -> DailyTimesheetRead:
    return set_manual_override(
        db,
        employee_id=employee_id,
        work_date=work_date,
        hours=payload.bucket_hours(),
        note=payload.note,
        actor_id=actor_id_from_claims(claims),
    )


@router.delete(
    "/api/admin/timesheets/{employee_id}/{work_date}/override",
    response_model=AggregationOutcomeRead,
)
def clear_override_endpoint(
    employee_id: int,
    work_date: date,
    claims: dict[str, Any] = Depends(require_admin_permission("timesheets", write=True)),
    db: Session = Depends(get_db),
) -> AggregationOutcomeRead:
    outcome = clear_manual_override(
        db,
        employee_id=employee_id,
        work_date=work_date,
        actor_id=actor_id_from_claims(claims),
    )
    return AggregationOutcomeRead.model_validate(outcome.as_dict())


@router.post(
    "/api/admin/leaves/apply",
    response_model=LeaveOutcomeRead,
)
def apply_leave_endpoint(
    payload: LeaveApplyRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("timesheets", write=True)),
    db: Session = Depends(get_db),
) -> LeaveOutcomeRead:
    outcome = apply_leave_days(
        db,
        employee_id=payload.employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        kind=payload.kind,
        hours=payload.hours,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
        action="LEAVE_DAYS_APPLIED",
        success=not outcome.failed_dates,
        entity_type="employee",
        entity_id=str(payload.employee_id),
        details=outcome.as_dict(),
        request_id=_request_id(request),
    )
    return LeaveOutcomeRead.model_validate(outcome.as_dict())


@router.post(
    "/api/admin/leaves/withdraw",
    response_model=LeaveOutcomeRead,
)
def withdraw_leave_endpoint(
    payload: LeaveWithdrawRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("timesheets", write=True)),
    db: Session = Depends(get_db),
) -> LeaveOutcomeRead:
    outcome = withdraw_leave_days(
        db,
        employee_id=payload.employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        kind=payload.kind,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id_from_claims(claims),
        action="LEAVE_DAYS_WITHDRAWN",
        success=not outcome.failed_dates,
        entity_type="employee",
        entity_id=str(payload.employee_id),
        details=outcome.as_dict(),
        request_id=_request_id(request),
    )
    return LeaveOutcomeRead.model_validate(outcome.as_dict())


@router.get(
    "/api/admin/holidays",
    response_model=list[HolidayRead],
    dependencies=[Depends(require_admin_permission("holidays"))],
)
def list_holidays_endpoint(
    year: int | None = Query(default=None, ge=1970, le=2100),
    db: Session = Depends(get_db),
) -> list[HolidayRead]:
    return list_holidays(db, year=year)


@router.post(
    "/api/admin/holidays",
    response_model=HolidayRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("holidays", write=True))],
)
def create_holiday_endpoint(payload: HolidayCreate, db: Session = Depends(get_db)) -> HolidayRead:
    return create_holiday(db, holiday_date=payload.holiday_date, name=payload.name)


@router.delete(
    "/api/admin/holidays/{holiday_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin_permission("holidays", write=True))],
)
def delete_holiday_endpoint(holiday_id: int, db: Session = Depends(get_db)) -> Response:
    delete_holiday(db, holiday_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
