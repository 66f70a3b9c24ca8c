from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pontaj.audit import audit_shift_event
from pontaj.errors import ShiftIntervalError
from pontaj.models import ActivityTag, AuditActorType, ShiftInterval, ShiftSegment, TeamSchedule
from pontaj.services.local_time import as_utc, local_day_bounds_utc
from pontaj.services.timesheets import AggregationOutcome, process_shift, recompute_days

logger = logging.getLogger("pontaj.dedupe")

DUPLICATE_TOLERANCE = timedelta(seconds=60)


@dataclass(frozen=True)
class ShiftSnapshot:
    id: int
    employee_id: int
    start_ts_utc: datetime
    end_ts_utc: datetime | None
    activity_tag: ActivityTag | None

    @classmethod
    def of(cls, shift: ShiftInterval) -> ShiftSnapshot:
        return cls(
            id=shift.id,
            employee_id=shift.employee_id,
            start_ts_utc=as_utc(shift.start_ts_utc),
            end_ts_utc=as_utc(shift.end_ts_utc) if shift.end_ts_utc is not None else None,
            activity_tag=shift.activity_tag,
        )


@dataclass
class DedupeResult:
    team_id: int
    work_date: date
    removed: list[ShiftSnapshot] = field(default_factory=list)
    kept: list[ShiftSnapshot] = field(default_factory=list)
    outcomes: list[AggregationOutcome] = field(default_factory=list)


def is_duplicate(anchor: ShiftInterval, candidate: ShiftInterval, tolerance: timedelta = DUPLICATE_TOLERANCE) -> bool:
    if abs(as_utc(anchor.start_ts_utc) - as_utc(candidate.start_ts_utc)) > tolerance:
        return False
    if anchor.end_ts_utc is None or candidate.end_ts_utc is None:
        return True
    return abs(as_utc(anchor.end_ts_utc) - as_utc(candidate.end_ts_utc)) <= tolerance


def group_duplicates(
    shifts: Sequence[ShiftInterval],
    tolerance: timedelta = DUPLICATE_TOLERANCE,
) -> list[list[ShiftInterval]]:
    """Greedy grouping of one employee's shifts, each compared to its group's first member."""
    groups: list[list[ShiftInterval]] = []
    for shift in sorted(shifts, key=lambda item: (as_utc(item.start_ts_utc), item.id)):
        for group in groups:
            if is_duplicate(group[0], shift, tolerance):
                group.append(shift)
                break
        else:
            groups.append([shift])
    return groups


def choose_survivor(group: Sequence[ShiftInterval]) -> ShiftInterval:
    for shift in group:
        if shift.activity_tag is None:
            return shift
    return min(group, key=lambda item: (as_utc(item.start_ts_utc), item.id))


def scheduled_employee_ids(db: Session, team_id: int, work_date: date) -> list[int]:
    week_start = work_date - timedelta(days=work_date.weekday())
    return list(
        db.scalars(
            select(TeamSchedule.employee_id)
            .where(
                TeamSchedule.team_id == team_id,
                TeamSchedule.week_start_date == week_start,
                TeamSchedule.day_of_week == work_date.isoweekday(),
            )
            .distinct()
            .order_by(TeamSchedule.employee_id.asc())
        ).all()
    )


def _shifts_starting_on(db: Session, employee_ids: list[int], work_date: date) -> list[ShiftInterval]:
    day_start_utc, day_end_utc = local_day_bounds_utc(work_date)
    return list(
        db.scalars(
            select(ShiftInterval)
            .where(
                ShiftInterval.employee_id.in_(employee_ids),
                ShiftInterval.start_ts_utc >= day_start_utc,
                ShiftInterval.start_ts_utc < day_end_utc,
            )
            .order_by(ShiftInterval.employee_id.asc(), ShiftInterval.start_ts_utc.asc(), ShiftInterval.id.asc())
        ).all()
    )


def dedupe_team_day(
    db: Session,
    team_id: int,
    work_date: date,
    *,
    actor_type: AuditActorType = AuditActorType.SYSTEM,
    actor_id: str = "dedupe",
) -> DedupeResult:
    result = DedupeResult(team_id=team_id, work_date=work_date)
    employee_ids = scheduled_employee_ids(db, team_id, work_date)
    if not employee_ids:
        logger.info("dedupe_completed", extra={"team_id": team_id, "work_date": work_date, "removed_count": 0})
        return result

    by_employee: dict[int, list[ShiftInterval]] = defaultdict(list)
    for shift in _shifts_starting_on(db, employee_ids, work_date):
        by_employee[shift.employee_id].append(shift)

    survivors: list[int] = []
    kept_for: dict[int, int] = {}
    stale_dates: dict[int, set[date]] = defaultdict(set)
    for employee_id, shifts in by_employee.items():
        for group in group_duplicates(shifts):
            if len(group) < 2:
                continue
            survivor = choose_survivor(group)
            result.kept.append(ShiftSnapshot.of(survivor))
            survivors.append(survivor.id)
            duplicates = [item for item in group if item.id != survivor.id]
            duplicate_ids = [item.id for item in duplicates]
            stale_dates[employee_id].update(
                db.scalars(select(ShiftSegment.work_date).where(ShiftSegment.shift_id.in_(duplicate_ids))).all()
            )
            result.removed.extend(ShiftSnapshot.of(item) for item in duplicates)
            kept_for.update({item.id: survivor.id for item in duplicates})
            db.execute(delete(ShiftSegment).where(ShiftSegment.shift_id.in_(duplicate_ids)))
            for item in duplicates:
                db.delete(item)

    if not result.removed:
        logger.info("dedupe_completed", extra={"team_id": team_id, "work_date": work_date, "removed_count": 0})
        return result

    db.commit()
    for removed in result.removed:
        audit_shift_event(
            db,
            removed.id,
            actor_type=actor_type,
            actor_id=actor_id,
            action="SHIFT_DUPLICATE_REMOVED",
            details={
                "team_id": team_id,
                "work_date": work_date,
                "employee_id": removed.employee_id,
                "start_ts_utc": removed.start_ts_utc,
                "end_ts_utc": removed.end_ts_utc,
                "activity_tag": removed.activity_tag,
                "kept_shift_id": kept_for[removed.id],
            },
        )

    for survivor_id in survivors:
        try:
            outcome = process_shift(db, survivor_id)
        except ShiftIntervalError as exc:
            logger.warning("dedupe_survivor_not_processed", extra={"shift_id": survivor_id, "error_code": exc.code})
            continue
        result.outcomes.append(outcome)
        stale_dates[outcome.employee_id].difference_update(outcome.persisted)

    for employee_id, dates in stale_dates.items():
        if dates:
            result.outcomes.append(recompute_days(db, employee_id, dates))

    logger.info(
        "dedupe_completed",
        extra={
            "team_id": team_id,
            "work_date": work_date,
            "removed_count": len(result.removed),
            "removed_shift_ids": [item.id for item in result.removed],
            "kept_shift_ids": [item.id for item in result.kept],
        },
    )
    return result
