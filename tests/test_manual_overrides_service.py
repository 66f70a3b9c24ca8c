from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from pontaj.errors import ApiError
from pontaj.models import AuditLog, HourBucket, TimesheetState
from pontaj.services.manual_overrides import clear_manual_override, set_manual_override
from pontaj.services.timesheets import get_daily_timesheet, process_shift
from tests._db import add_employee, add_shift, make_session_factory, utc

WORK_DATE = date(2026, 3, 2)
TODAY = date(2026, 10, 1)


class ManualOverridesServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_employee(self.db, 1)

    def tearDown(self) -> None:
        self.db.close()

    def _actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id.asc())).all())

    def test_override_replaces_every_bucket(self) -> None:
        shift = add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))
        process_shift(self.db, shift.id, today=TODAY)

        row = set_manual_override(
            self.db,
            employee_id=1,
            work_date=WORK_DATE,
            hours={HourBucket.REGULAR: Decimal("6.5"), HourBucket.NIGHT: Decimal("1.255")},
            note="pauza neinregistrata",
            actor_id="maria",
            today=TODAY,
        )

        self.assertEqual(row.state, TimesheetState.MANUAL_OVERRIDE)
        self.assertEqual(row.override_by, "maria")
        self.assertEqual(row.hours_regular, Decimal("6.50"))
        self.assertEqual(row.hours_night, Decimal("1.26"))
        self.assertEqual(row.notes, "pauza neinregistrata")
        self.assertEqual(self._actions(), ["TIMESHEET_OVERRIDE_SET"])

    def test_invalid_override_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            set_manual_override(
                self.db,
                employee_id=1,
                work_date=WORK_DATE,
                hours={HourBucket.REGULAR: Decimal("20"), HourBucket.NIGHT: Decimal("5")},
                note=None,
                actor_id="maria",
                today=TODAY,
            )
        self.assertEqual(ctx.exception.code, "TIMESHEET_VALIDATION_FAILED")
        self.assertEqual(ctx.exception.details[0]["code"], "TOTAL_EXCEEDS_24H")
        self.assertIsNone(get_daily_timesheet(self.db, 1, WORK_DATE))

    def test_future_override_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            set_manual_override(
                self.db,
                employee_id=1,
                work_date=WORK_DATE,
                hours={HourBucket.REGULAR: Decimal("8")},
                note=None,
                actor_id="maria",
                today=date(2026, 3, 1),
            )
        self.assertEqual(ctx.exception.details[0]["code"], "FUTURE_DATE")

    def test_clearing_override_restores_computed_hours(self) -> None:
        shift = add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))
        process_shift(self.db, shift.id, today=TODAY)
        set_manual_override(
            self.db,
            employee_id=1,
            work_date=WORK_DATE,
            hours={HourBucket.REGULAR: Decimal("3")},
            note=None,
            actor_id="maria",
            today=TODAY,
        )

        outcome = clear_manual_override(self.db, employee_id=1, work_date=WORK_DATE, actor_id="maria")

        self.assertEqual(outcome.persisted, [WORK_DATE])
        row = get_daily_timesheet(self.db, 1, WORK_DATE)
        self.assertEqual(row.state, TimesheetState.COMPUTED)
        self.assertIsNone(row.override_by)
        self.assertEqual(row.hours_regular, Decimal("8.00"))
        self.assertEqual(self._actions(), ["TIMESHEET_OVERRIDE_SET", "TIMESHEET_OVERRIDE_CLEARED"])

    def test_clearing_without_override(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            clear_manual_override(self.db, employee_id=1, work_date=WORK_DATE, actor_id="maria")
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "TIMESHEET_OVERRIDE_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
