from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import create_engine

from pontaj.db import Base
from pontaj.services.schema_guard import REQUIRED_ENUM_VALUES, REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_table_names(self):  # type: ignore[no-untyped-def]
        return list(self._columns_by_table)

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in self._columns_by_table[table_name]]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


def _complete_enums() -> list[dict[str, object]]:
    return [{"name": name, "labels": sorted(values)} for name, values in REQUIRED_ENUM_VALUES.items()]


class SchemaGuardTests(unittest.TestCase):
    def test_ok_when_required_columns_and_enums_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=_complete_enums(),
        )

        with patch("pontaj.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_reports_missing_columns_tables_and_enum_values(self) -> None:
        columns = {name: set(columns) for name, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns["daily_timesheets"].discard("hours_medical_leave")
        del columns["shift_segments"]
        enums = [
            {"name": "hour_bucket", "labels": ["REGULAR", "NIGHT"]},
            {"name": "activity_tag", "labels": ["NORMAL", "DRIVING", "PASSENGER", "EQUIPMENT"]},
        ]
        fake_inspector = _FakeInspector(columns_by_table=columns, enums=enums)

        with patch("pontaj.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_TABLE:shift_segments", result.issues)
        self.assertIn("MISSING_COLUMNS:daily_timesheets:hours_medical_leave", result.issues)
        self.assertTrue(any(item.startswith("MISSING_ENUM_VALUES:hour_bucket:") for item in result.issues))
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)
        self.assertEqual(result.warnings, ["ENUM_NOT_FOUND:timesheet_state"])

    def test_sqlite_schema_without_migrations(self) -> None:
        engine = create_engine("sqlite://")
        Base.metadata.create_all(engine)

        result = verify_runtime_schema(engine)

        self.assertEqual(result.issues, ["MISSING_TABLE:alembic_version"])
        self.assertEqual(len(result.warnings), len(REQUIRED_ENUM_VALUES))


if __name__ == "__main__":
    unittest.main()
