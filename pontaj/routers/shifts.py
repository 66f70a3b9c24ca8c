from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from pontaj.db import get_db
from pontaj.schemas import (
    AggregationOutcomeRead,
    ShiftCloseRequest,
    ShiftCorrectionRequest,
    ShiftCreateRequest,
    ShiftMutationResponse,
    ShiftRead,
)
from pontaj.security import actor_id_from_claims, require_admin_permission
from pontaj.services.shifts import close_shift, correct_shift, record_shift
from pontaj.services.timesheets import AggregationOutcome

router = APIRouter(tags=["shifts"])


def _mutation_response(shift, outcome: AggregationOutcome | None) -> ShiftMutationResponse:
    return ShiftMutationResponse(
        shift=ShiftRead.model_validate(shift),
        aggregation=AggregationOutcomeRead.model_validate(outcome.as_dict()) if outcome is not None else None,
    )


@router.post(
    "/api/shifts",
    response_model=ShiftMutationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("shifts", write=True))],
)
def create_shift(
    payload: ShiftCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftMutationResponse:
    shift, outcome = record_shift(db, payload)
    request.state.employee_id = shift.employee_id
    return _mutation_response(shift, outcome)


@router.post(
    "/api/shifts/{shift_id}/close",
    response_model=ShiftMutationResponse,
    dependencies=[Depends(require_admin_permission("shifts", write=True))],
)
def close_shift_endpoint(
    shift_id: int,
    payload: ShiftCloseRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftMutationResponse:
    shift, outcome = close_shift(db, shift_id, end=payload.end)
    request.state.employee_id = shift.employee_id
    return _mutation_response(shift, outcome)


@router.patch(
    "/api/shifts/{shift_id}",
    response_model=ShiftMutationResponse,
)
def correct_shift_endpoint(
    shift_id: int,
    payload: ShiftCorrectionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin_permission("shifts", write=True)),
    db: Session = Depends(get_db),
) -> ShiftMutationResponse:
    shift, outcome = correct_shift(db, shift_id, payload, actor_id=actor_id_from_claims(claims))
    request.state.employee_id = shift.employee_id
    return _mutation_response(shift, outcome)
