#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"

REQUIRED_TABLES = (
    "teams",
    "employees",
    "team_schedules",
    "holidays",
    "shift_intervals",
    "shift_segments",
    "daily_timesheets",
    "audit_logs",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        inverted_shifts = conn.execute(
            text(
                """
                select id
                from shift_intervals
                where end_ts_utc is not null and end_ts_utc <= start_ts_utc
                limit 20
                """
            )
        ).fetchall()
        add(
            "shift_inverted_interval",
            "fail" if inverted_shifts else "ok",
            {"sample_ids": [row[0] for row in inverted_shifts]},
        )

        unsegmented = conn.execute(
            text(
                """
                select s.id
                from shift_intervals s
                where s.end_ts_utc is not null
                  and s.approval_status <> 'REJECTED'
                  and not exists (select 1 from shift_segments g where g.shift_id = s.id)
                limit 20
                """
            )
        ).fetchall()
        add(
            "closed_shift_without_segments",
            "warn" if unsegmented else "ok",
            {"sample_ids": [row[0] for row in unsegmented]},
        )

        pending_reprocess = conn.execute(
            text("select count(*) from shift_intervals where needs_reprocessing = true")
        ).scalar()
        add(
            "shift_needs_reprocessing",
            "warn" if pending_reprocess else "ok",
            {"count": int(pending_reprocess or 0)},
        )

        segment_mismatch = conn.execute(
            text(
                """
                select g.id
                from shift_segments g
                join shift_intervals s on s.id = g.shift_id
                where g.employee_id <> s.employee_id
                limit 20
                """
            )
        ).fetchall()
        add(
            "segment_employee_mismatch",
            "fail" if segment_mismatch else "ok",
            {"sample_ids": [row[0] for row in segment_mismatch]},
        )

        oversized_days = conn.execute(
            text(
                """
                select employee_id, work_date
                from daily_timesheets
                where hours_regular + hours_night + hours_saturday + hours_sunday + hours_holiday
                    + hours_driving + hours_passenger + hours_equipment + hours_leave
                    + hours_medical_leave > 24
                limit 20
                """
            )
        ).fetchall()
        add(
            "timesheet_total_exceeds_24h",
            "fail" if oversized_days else "ok",
            {"rows": [[row[0], str(row[1])] for row in oversized_days]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
