"""One-time backfill of ``activity_tag`` from the legacy ``Tip: <type>`` notes marker."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from pontaj.models import ActivityTag, ShiftInterval

logger = logging.getLogger("pontaj.activity_tags")

# "Condus Utilaj" has to be tried before "Condus".
_TAG_PATTERN = re.compile(r"Tip:\s*(Condus\s+Utilaj|Utilaj|Condus|Pasager|Normal)", re.IGNORECASE)

_TAG_BY_MARKER: dict[str, ActivityTag] = {
    "condus utilaj": ActivityTag.EQUIPMENT,
    "utilaj": ActivityTag.EQUIPMENT,
    "condus": ActivityTag.DRIVING,
    "pasager": ActivityTag.PASSENGER,
    "normal": ActivityTag.NORMAL,
}


@dataclass
class ActivityTagMigrationReport:
    scanned: int = 0
    tagged: Counter = field(default_factory=Counter)
    reprocess_ids: list[int] = field(default_factory=list)


def parse_activity_tag(notes: str | None) -> ActivityTag | None:
    if not notes:
        return None
    match = _TAG_PATTERN.search(notes)
    if match is None:
        return None
    marker = " ".join(match.group(1).lower().split())
    return _TAG_BY_MARKER[marker]


def migrate_activity_tags(db: Session, *, dry_run: bool = False, batch_size: int = 500) -> ActivityTagMigrationReport:
    """Fill ``activity_tag`` on untagged shifts whose notes carry the marker.

    Closed shifts that received a driving, passenger or equipment tag change
    buckets, so their ids are returned for reprocessing.
    """
    report = ActivityTagMigrationReport()
    after_id = 0
    while True:
        shifts = db.scalars(
            select(ShiftInterval)
            .where(
                ShiftInterval.activity_tag.is_(None),
                ShiftInterval.notes.is_not(None),
                ShiftInterval.id > after_id,
            )
            .order_by(ShiftInterval.id.asc())
            .limit(batch_size)
        ).all()
        if not shifts:
            break
        for shift in shifts:
            report.scanned += 1
            tag = parse_activity_tag(shift.notes)
            if tag is None:
                continue
            report.tagged[tag.value] += 1
            if tag != ActivityTag.NORMAL and shift.end_ts_utc is not None:
                report.reprocess_ids.append(shift.id)
            if not dry_run:
                shift.activity_tag = tag
        after_id = shifts[-1].id
        if dry_run:
            db.rollback()
        else:
            db.commit()
        if len(shifts) < batch_size:
            break

    logger.info(
        "activity_tags_migrated",
        extra={
            "dry_run": dry_run,
            "scanned": report.scanned,
            "tagged": dict(report.tagged),
            "reprocess_count": len(report.reprocess_ids),
        },
    )
    return report
