#!/usr/bin/env python
"""Backfill shift activity tags from the legacy notes marker and re-segment affected shifts."""

from __future__ import annotations

import argparse
import json

from pontaj.db import SessionLocal
from pontaj.errors import ShiftIntervalError
from pontaj.logging_utils import setup_json_logging
from pontaj.services.activity_tags import migrate_activity_tags
from pontaj.services.timesheets import process_shift


def run(*, dry_run: bool, batch_size: int) -> dict:
    with SessionLocal() as db:
        report = migrate_activity_tags(db, dry_run=dry_run, batch_size=batch_size)
        processed: list[int] = []
        failed: dict[int, str] = {}
        if not dry_run:
            for shift_id in report.reprocess_ids:
                try:
                    outcome = process_shift(db, shift_id)
                except ShiftIntervalError as exc:
                    failed[shift_id] = exc.code
                    continue
                if outcome.failed:
                    failed[shift_id] = "DAYS_FAILED"
                else:
                    processed.append(shift_id)

    return {
        "dry_run": dry_run,
        "scanned": report.scanned,
        "tagged": dict(report.tagged),
        "reprocess_ids": report.reprocess_ids,
        "processed": processed,
        "failed": failed,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="Report matches without writing.")
    parser.add_argument("--batch-size", type=int, default=500)
    args = parser.parse_args()

    setup_json_logging(service="pontaj-migrate-tags")
    print(json.dumps(run(dry_run=args.dry_run, batch_size=args.batch_size), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
