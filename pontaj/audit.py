"""Audit trail writers.

Each entry is committed on its own so that a later failure in the caller
cannot take it down. Shift and daily-timesheet events go through
``audit_shift_event`` / ``audit_timesheet_event`` which keep the entity
keys in one form: ``shift_interval:<id>`` and ``daily_timesheet:<employee>:<date>``.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pontaj.models import AuditActorType, AuditLog

logger = logging.getLogger("pontaj.audit")

SHIFT_ENTITY = "shift_interval"
TIMESHEET_ENTITY = "daily_timesheet"


def timesheet_entity_id(employee_id: int, work_date: date) -> str:
    return f"{employee_id}:{work_date.isoformat()}"


def _jsonable(value: Any) -> Any:
    # Hours stay exact as strings; JSON columns cannot hold Decimal or date.
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return value


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: Mapping[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    payload = _jsonable(details or {})
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            details=payload,
        )
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "entity": f"{entity_type}:{entity_id}"},
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor": f"{actor_type.value}:{actor_id}",
            "entity": f"{entity_type}:{entity_id}",
            "success": success,
        },
    )


def audit_shift_event(
    db: Session,
    shift_id: int,
    *,
    action: str,
    actor_type: AuditActorType,
    actor_id: str,
    success: bool = True,
    details: Mapping[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        success=success,
        entity_type=SHIFT_ENTITY,
        entity_id=str(shift_id),
        details={"shift_id": shift_id, **(details or {})},
        request_id=request_id,
    )


def audit_timesheet_event(
    db: Session,
    employee_id: int,
    work_date: date,
    *,
    action: str,
    actor_type: AuditActorType,
    actor_id: str,
    success: bool = True,
    details: Mapping[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        success=success,
        entity_type=TIMESHEET_ENTITY,
        entity_id=timesheet_entity_id(employee_id, work_date),
        details={"employee_id": employee_id, "work_date": work_date, **(details or {})},
        request_id=request_id,
    )
