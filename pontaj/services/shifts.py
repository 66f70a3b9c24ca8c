from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from pontaj.audit import audit_shift_event
from pontaj.errors import ApiError, ShiftIntervalError
from pontaj.models import ApprovalStatus, AuditActorType, Employee, ShiftInterval
from pontaj.schemas import ShiftCorrectionRequest, ShiftCreateRequest
from pontaj.services.local_time import as_utc
from pontaj.services.segmentation import ensure_closed_interval
from pontaj.services.timesheets import AggregationOutcome, process_shift
from pontaj.settings import get_settings

logger = logging.getLogger("pontaj.shifts")


@dataclass
class ApprovalResult:
    approved: list[int] = field(default_factory=list)
    not_found: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)
    outcomes: list[AggregationOutcome] = field(default_factory=list)


def _get_shift(db: Session, shift_id: int) -> ShiftInterval:
    shift = db.get(ShiftInterval, shift_id)
    if shift is None:
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")
    return shift


def _check_interval(start: datetime, end: datetime | None, *, shift_id: int | None = None) -> None:
    if end is None:
        return
    ensure_closed_interval(start, end, max_hours=get_settings().max_shift_hours, shift_id=shift_id)


def record_shift(db: Session, payload: ShiftCreateRequest) -> tuple[ShiftInterval, AggregationOutcome | None]:
    if db.get(Employee, payload.employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    start = as_utc(payload.start)
    end = as_utc(payload.end) if payload.end is not None else None
    _check_interval(start, end)

    shift = ShiftInterval(
        employee_id=payload.employee_id,
        start_ts_utc=start,
        end_ts_utc=end,
        activity_tag=payload.activity_tag,
        notes=payload.notes,
        needs_reprocessing=end is not None,
    )
    db.add(shift)
    db.commit()
    db.refresh(shift)
    logger.info(
        "shift_recorded",
        extra={"shift_id": shift.id, "employee_id": shift.employee_id, "closed": end is not None},
    )

    if end is None:
        return shift, None
    outcome = process_shift(db, shift.id)
    db.refresh(shift)
    return shift, outcome


def close_shift(db: Session, shift_id: int, *, end: datetime) -> tuple[ShiftInterval, AggregationOutcome]:
    shift = _get_shift(db, shift_id)
    if shift.end_ts_utc is not None:
        raise ApiError(status_code=409, code="SHIFT_ALREADY_CLOSED", message="Shift is already closed.")

    end_utc = as_utc(end)
    _check_interval(shift.start_ts_utc, end_utc, shift_id=shift_id)
    shift.end_ts_utc = end_utc
    shift.needs_reprocessing = True
    db.commit()

    outcome = process_shift(db, shift_id)
    db.refresh(shift)
    return shift, outcome


def correct_shift(
    db: Session,
    shift_id: int,
    payload: ShiftCorrectionRequest,
    *,
    actor_id: str,
) -> tuple[ShiftInterval, AggregationOutcome | None]:
    shift = _get_shift(db, shift_id)
    changes = payload.model_dump(exclude_unset=True)

    start = as_utc(changes["start"]) if changes.get("start") is not None else as_utc(shift.start_ts_utc)
    if "end" in changes:
        if changes["end"] is None:
            raise ShiftIntervalError("INVALID_SHIFT_INTERVAL", "A closed shift cannot be reopened.", shift_id=shift_id)
        end: datetime | None = as_utc(changes["end"])
    else:
        end = as_utc(shift.end_ts_utc) if shift.end_ts_utc is not None else None
    _check_interval(start, end, shift_id=shift_id)

    before = {
        "start_ts_utc": as_utc(shift.start_ts_utc).isoformat(),
        "end_ts_utc": as_utc(shift.end_ts_utc).isoformat() if shift.end_ts_utc is not None else None,
        "activity_tag": shift.activity_tag.value if shift.activity_tag is not None else None,
    }
    shift.start_ts_utc = start
    shift.end_ts_utc = end
    if "activity_tag" in changes:
        shift.activity_tag = changes["activity_tag"]
    if "notes" in changes:
        shift.notes = changes["notes"]
    shift.needs_reprocessing = end is not None
    db.commit()

    audit_shift_event(
        db,
        shift_id,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="SHIFT_CORRECTED",
        details={"before": before, "changes": sorted(changes)},
    )

    if end is None:
        db.refresh(shift)
        return shift, None
    outcome = process_shift(db, shift_id)
    db.refresh(shift)
    return shift, outcome


def approve_shifts(db: Session, shift_ids: list[int], *, approved_by: str) -> ApprovalResult:
    result = ApprovalResult()
    for shift_id in dict.fromkeys(shift_ids):
        shift = db.get(ShiftInterval, shift_id)
        if shift is None:
            result.not_found.append(shift_id)
            continue
        shift.approval_status = ApprovalStatus.APPROVED
        shift.approved_by = approved_by
        is_closed = shift.end_ts_utc is not None
        db.commit()
        result.approved.append(shift_id)
        if not is_closed:
            continue
        try:
            result.outcomes.append(process_shift(db, shift_id))
        except ShiftIntervalError as exc:
            result.errors[shift_id] = exc.code

    logger.info(
        "shifts_approved",
        extra={
            "approved_by": approved_by,
            "approved_count": len(result.approved),
            "not_found": result.not_found,
            "error_count": len(result.errors),
        },
    )
    return result
