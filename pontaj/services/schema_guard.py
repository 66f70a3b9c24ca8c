from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "holidays": {"id", "holiday_date"},
    "shift_intervals": {"id", "employee_id", "start_ts_utc", "end_ts_utc", "activity_tag", "needs_reprocessing"},
    "shift_segments": {"id", "shift_id", "work_date", "bucket", "hours"},
    "daily_timesheets": {
        "id",
        "employee_id",
        "work_date",
        "hours_regular",
        "hours_night",
        "hours_saturday",
        "hours_sunday",
        "hours_holiday",
        "hours_driving",
        "hours_passenger",
        "hours_equipment",
        "hours_leave",
        "hours_medical_leave",
        "state",
    },
    "team_schedules": {"team_id", "employee_id", "week_start_date", "day_of_week"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "hour_bucket": {"REGULAR", "NIGHT", "SATURDAY", "SUNDAY", "HOLIDAY", "DRIVING", "PASSENGER", "EQUIPMENT"},
    "activity_tag": {"NORMAL", "DRIVING", "PASSENGER", "EQUIPMENT"},
    "timesheet_state": {"COMPUTED", "MANUAL_OVERRIDE"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        if table_name not in existing_tables:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    # Only PostgreSQL has named enum types to inspect.
    get_enums = getattr(inspector, "get_enums", None)
    enums = get_enums() if callable(get_enums) else []
    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums or []:
        name = str(enum_item.get("name") or "").strip()
        labels = enum_item.get("labels")
        if name and isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    if "alembic_version" in existing_tables:
        try:
            with engine.connect() as connection:
                row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
        except SQLAlchemyError as exc:
            issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        else:
            if not (str(row).strip() if row is not None else ""):
                issues.append("ALEMBIC_VERSION_EMPTY")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
