from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pontaj.errors import ApiError, ShiftIntervalError
from pontaj.models import ShiftInterval, ShiftSegment
from pontaj.services.local_time import local_day_bounds_utc
from pontaj.services.timesheets import process_shift
from pontaj.settings import get_settings

ReprocessMode = Literal["missing_segments", "needs_reprocessing", "date_range"]

logger = logging.getLogger("pontaj.reprocess")


@dataclass
class ReprocessReport:
    mode: ReprocessMode
    batches: int = 0
    processed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    days_with_issues: dict[int, list[str]] = field(default_factory=dict)

    @property
    def scanned(self) -> int:
        return len(self.processed) + len(self.failed)


def _candidate_ids(
    db: Session,
    *,
    mode: ReprocessMode,
    after_id: int,
    limit: int,
    start_date: date | None,
    end_date: date | None,
) -> list[int]:
    stmt = select(ShiftInterval.id).where(
        ShiftInterval.end_ts_utc.is_not(None),
        ShiftInterval.id > after_id,
    )
    if mode == "missing_segments":
        stmt = stmt.where(~exists().where(ShiftSegment.shift_id == ShiftInterval.id))
    elif mode == "needs_reprocessing":
        stmt = stmt.where(ShiftInterval.needs_reprocessing.is_(True))
    else:
        range_start_utc, _ = local_day_bounds_utc(start_date)
        _, range_end_utc = local_day_bounds_utc(end_date)
        stmt = stmt.where(
            ShiftInterval.start_ts_utc >= range_start_utc,
            ShiftInterval.start_ts_utc < range_end_utc,
        )
    return list(db.scalars(stmt.order_by(ShiftInterval.id.asc()).limit(limit)).all())


def reprocess_shifts(
    db: Session,
    *,
    mode: ReprocessMode,
    batch_size: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> ReprocessReport:
    """Run closed shifts back through segmentation and aggregation.

    Shifts are walked in id order, one batch at a time, until a batch comes
    back short. A failing shift is recorded and the sweep moves on.
    """
    if mode == "date_range":
        if start_date is None or end_date is None:
            raise ApiError(
                status_code=422,
                code="INVALID_DATE_RANGE",
                message="start_date and end_date are required for date_range mode.",
            )
        if end_date < start_date:
            raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not be before start_date.")

    limit = max(1, batch_size or get_settings().reprocess_batch_size)
    report = ReprocessReport(mode=mode)
    after_id = 0
    while True:
        shift_ids = _candidate_ids(
            db,
            mode=mode,
            after_id=after_id,
            limit=limit,
            start_date=start_date,
            end_date=end_date,
        )
        if not shift_ids:
            break
        report.batches += 1
        for shift_id in shift_ids:
            try:
                outcome = process_shift(db, shift_id)
            except ShiftIntervalError as exc:
                report.failed[shift_id] = exc.code
                continue
            except SQLAlchemyError:
                db.rollback()
                report.failed[shift_id] = "STORAGE_ERROR"
                logger.exception("reprocess_shift_failed", extra={"shift_id": shift_id})
                continue
            if outcome.failed:
                report.failed[shift_id] = "DAYS_FAILED"
                continue
            report.processed.append(shift_id)
            issue_codes = sorted({issue.code for issues in outcome.rejected.values() for issue in issues})
            if issue_codes:
                report.days_with_issues[shift_id] = issue_codes
        after_id = shift_ids[-1]
        if len(shift_ids) < limit:
            break

    logger.info(
        "reprocess_completed",
        extra={
            "mode": mode,
            "batches": report.batches,
            "processed_count": len(report.processed),
            "failed": report.failed,
        },
    )
    return report
