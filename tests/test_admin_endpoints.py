from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import select

from pontaj.db import get_db
from pontaj.main import app
from pontaj.models import AuditLog, HourBucket, TimesheetState
from pontaj.security import require_admin
from pontaj.services.manual_overrides import set_manual_override
from pontaj.services.timesheets import get_daily_timesheet
from tests._db import add_employee, add_shift, make_session_factory, schedule, utc


def _super_admin() -> dict[str, object]:
    return {"sub": "1", "username": "maria", "role": "admin", "is_super_admin": True}


class AdminEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_employee(self.db, 1)

        def _override_get_db() -> Generator[object, None, None]:
            yield self.db

        app.dependency_overrides[get_db] = _override_get_db
        app.dependency_overrides[require_admin] = _super_admin
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id.asc())).all())

    def test_record_closed_shift_aggregates_days(self) -> None:
        response = self.client.post(
            "/api/shifts",
            json={"employee_id": 1, "start": "2026-03-02T14:45:57+02:00", "end": "2026-03-03T08:00:00+02:00"},
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["aggregation"]["persisted_dates"], ["2026-03-02", "2026-03-03"])
        self.assertEqual(body["aggregation"]["segment_count"], 4)
        self.assertFalse(body["shift"]["needs_reprocessing"])

        segments = self.client.get(f"/api/admin/shifts/{body['shift']['id']}/segments")
        self.assertEqual(segments.status_code, 200)
        self.assertEqual(
            [(item["bucket"], item["hours"]) for item in segments.json()],
            [("REGULAR", "7.23"), ("NIGHT", "2.00"), ("NIGHT", "6.00"), ("REGULAR", "2.00")],
        )

        day = self.client.get("/api/admin/timesheets/1/2026-03-02")
        self.assertEqual(day.status_code, 200)
        self.assertEqual(Decimal(day.json()["hours_regular"]), Decimal("7.23"))

    def test_open_then_close_shift(self) -> None:
        created = self.client.post("/api/shifts", json={"employee_id": 1, "start": "2026-03-02T06:00:00Z"})
        self.assertEqual(created.status_code, 201)
        self.assertIsNone(created.json()["aggregation"])
        shift_id = created.json()["shift"]["id"]

        closed = self.client.post(f"/api/shifts/{shift_id}/close", json={"end": "2026-03-02T14:00:00Z"})
        self.assertEqual(closed.status_code, 200)
        self.assertEqual(closed.json()["aggregation"]["persisted_dates"], ["2026-03-02"])

        again = self.client.post(f"/api/shifts/{shift_id}/close", json={"end": "2026-03-02T15:00:00Z"})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "SHIFT_ALREADY_CLOSED")

    def test_invalid_interval_uses_error_envelope(self) -> None:
        response = self.client.post(
            "/api/shifts",
            json={"employee_id": 1, "start": "2026-03-02T14:00:00Z", "end": "2026-03-02T06:00:00Z"},
            headers={"X-Request-Id": "req-1"},
        )

        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["code"], "INVALID_SHIFT_INTERVAL")
        self.assertEqual(error["request_id"], "req-1")

    def test_unknown_employee_is_404(self) -> None:
        response = self.client.post("/api/shifts", json={"employee_id": 42, "start": "2026-03-02T06:00:00Z"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_correct_shift_reaggregates_and_audits(self) -> None:
        shift = add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))

        response = self.client.patch(f"/api/shifts/{shift.id}", json={"end": "2026-03-02T10:00:00Z"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(get_daily_timesheet(self.db, 1, date(2026, 3, 2)).hours_regular, Decimal("4.00"))
        self.assertIn("SHIFT_CORRECTED", self._actions())

        reopened = self.client.patch(f"/api/shifts/{shift.id}", json={"end": None})
        self.assertEqual(reopened.status_code, 422)

    def test_approve_and_process_endpoints(self) -> None:
        shift = add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))

        approved = self.client.post("/api/admin/shifts/approve", json={"shift_ids": [shift.id, 999]})
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["approved"], [shift.id])
        self.assertEqual(approved.json()["not_found"], [999])

        processed = self.client.post(f"/api/admin/shifts/{shift.id}/process")
        self.assertEqual(processed.status_code, 200)
        self.assertEqual(processed.json()["persisted_dates"], ["2026-03-02"])
        self.assertIn("SHIFT_REPROCESSED", self._actions())

        missing = self.client.post("/api/admin/shifts/999/process")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["code"], "SHIFT_NOT_FOUND")

    def test_override_endpoints(self) -> None:
        put = self.client.put(
            "/api/admin/timesheets/1/2026-03-02/override",
            json={"hours_regular": "7.5", "note": "corectie"},
        )
        self.assertEqual(put.status_code, 200)
        self.assertEqual(put.json()["state"], "MANUAL_OVERRIDE")
        self.assertEqual(put.json()["override_by"], "maria")

        too_many = self.client.put(
            "/api/admin/timesheets/1/2026-03-03/override",
            json={"hours_regular": "20", "hours_night": "6"},
        )
        self.assertEqual(too_many.status_code, 422)
        self.assertEqual(too_many.json()["error"]["code"], "TIMESHEET_VALIDATION_FAILED")

        cleared = self.client.delete("/api/admin/timesheets/1/2026-03-02/override")
        self.assertEqual(cleared.status_code, 200)
        self.assertEqual(get_daily_timesheet(self.db, 1, date(2026, 3, 2)).state, TimesheetState.COMPUTED)

        missing = self.client.get("/api/admin/timesheets/1/2026-03-09")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["code"], "TIMESHEET_NOT_FOUND")

    def test_audit_json_and_xlsx(self) -> None:
        add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))

        response = self.client.get(
            "/api/admin/timesheets/audit",
            params={"employee_id": 1, "start_date": "2026-03-02", "end_date": "2026-03-03"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["results"][0]["flags"], ["discrepancy", "missing_aggregate"])
        self.assertEqual(Decimal(body["results"][0]["delta"]), Decimal("8"))
        self.assertEqual(body["summary"]["days"], 2)
        self.assertEqual(Decimal(body["threshold_hours"]), Decimal("0.10"))

        export = self.client.get(
            "/api/admin/timesheets/audit/export.xlsx",
            params={"employee_id": 1, "start_date": "2026-03-02", "end_date": "2026-03-03"},
        )
        self.assertEqual(export.status_code, 200)
        self.assertIn("spreadsheetml", export.headers["content-type"])
        self.assertTrue(export.content.startswith(b"PK"))
        self.assertIn("TIMESHEET_AUDIT_EXPORT_XLSX", self._actions())

        inverted = self.client.get(
            "/api/admin/timesheets/audit",
            params={"employee_id": 1, "start_date": "2026-03-05", "end_date": "2026-03-03"},
        )
        self.assertEqual(inverted.status_code, 422)

    def test_team_audit_lists_mismatched_days(self) -> None:
        add_employee(self.db, 2, "Ana Ionescu")
        add_shift(self.db, employee_id=2, start=utc(2026, 3, 3, 6), end=utc(2026, 3, 3, 14))

        response = self.client.get(
            "/api/admin/timesheets/audit/team",
            params={"start_date": "2026-03-01", "end_date": "2026-03-05"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["finding_count"], 1)
        finding = body["findings"][0]
        self.assertEqual((finding["employee_id"], finding["full_name"]), (2, "Ana Ionescu"))
        self.assertEqual(finding["result"]["work_date"], "2026-03-03")
        self.assertEqual(finding["result"]["flags"], ["discrepancy", "missing_aggregate"])

    def test_dedupe_and_reprocess_endpoints(self) -> None:
        schedule(self.db, team_id=3, employee_id=1, work_date=date(2026, 3, 2))
        add_shift(self.db, start=utc(2026, 3, 2, 6), end=utc(2026, 3, 2, 14))
        add_shift(self.db, start=utc(2026, 3, 2, 6, 0, 20), end=utc(2026, 3, 2, 14))

        dedupe = self.client.post("/api/admin/timesheets/dedupe", json={"team_id": 3, "work_date": "2026-03-02"})
        self.assertEqual(dedupe.status_code, 200)
        self.assertEqual(dedupe.json()["removed_count"], 1)

        reprocess = self.client.post("/api/admin/timesheets/reprocess", json={"mode": "missing_segments"})
        self.assertEqual(reprocess.status_code, 200)
        self.assertEqual(reprocess.json()["failed"], {})
        self.assertIn("SHIFTS_REPROCESSED", self._actions())

        bad = self.client.post("/api/admin/timesheets/reprocess", json={"mode": "date_range"})
        self.assertEqual(bad.status_code, 422)

    def test_leave_endpoints(self) -> None:
        applied = self.client.post(
            "/api/admin/leaves/apply",
            json={"employee_id": 1, "start_date": "2026-03-06", "end_date": "2026-03-09", "kind": "MEDICAL"},
        )
        self.assertEqual(applied.status_code, 200)
        self.assertEqual(applied.json()["processed_dates"], ["2026-03-06", "2026-03-09"])
        self.assertEqual(applied.json()["skipped_dates"], ["2026-03-07", "2026-03-08"])

        withdrawn = self.client.post(
            "/api/admin/leaves/withdraw",
            json={"employee_id": 1, "start_date": "2026-03-06", "end_date": "2026-03-06", "kind": "MEDICAL"},
        )
        self.assertEqual(withdrawn.status_code, 200)
        self.assertEqual(
            self._actions(),
            ["LEAVE_DAYS_APPLIED", "LEAVE_DAYS_WITHDRAWN"],
        )

    def test_holiday_endpoints(self) -> None:
        created = self.client.post("/api/admin/holidays", json={"holiday_date": "2026-12-01", "name": "Ziua Nationala"})
        self.assertEqual(created.status_code, 201)

        duplicate = self.client.post("/api/admin/holidays", json={"holiday_date": "2026-12-01"})
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "HOLIDAY_EXISTS")

        listed = self.client.get("/api/admin/holidays", params={"year": 2026})
        self.assertEqual([item["holiday_date"] for item in listed.json()], ["2026-12-01"])

        deleted = self.client.delete(f"/api/admin/holidays/{created.json()['id']}")
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(self.client.get("/api/admin/holidays").json(), [])

    def test_holiday_changes_bucket_after_reprocess(self) -> None:
        shift = add_shift(self.db, start=utc(2026, 5, 1, 6), end=utc(2026, 5, 1, 14))
        self.client.post(f"/api/admin/shifts/{shift.id}/process")
        self.client.post("/api/admin/holidays", json={"holiday_date": "2026-05-01"})

        self.client.post(
            "/api/admin/timesheets/reprocess",
            json={"mode": "date_range", "start_date": "2026-05-01", "end_date": "2026-05-01"},
        )

        row = get_daily_timesheet(self.db, 1, date(2026, 5, 1))
        self.assertEqual(row.hours_holiday, Decimal("8.00"))
        self.assertEqual(row.hours_regular, Decimal("0.00"))

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


class AdminPermissionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_employee(self.db, 1)

        def _override_get_db() -> Generator[object, None, None]:
            yield self.db

        app.dependency_overrides[get_db] = _override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_missing_token_is_rejected(self) -> None:
        response = self.client.get("/api/admin/holidays")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_team_audit_needs_audit_permission(self) -> None:
        app.dependency_overrides[require_admin] = lambda: {
            "sub": "3",
            "username": "dan",
            "role": "admin",
            "permissions": {"timesheets": {"read": True, "write": True}},
        }
        response = self.client.get(
            "/api/admin/timesheets/audit/team",
            params={"start_date": "2026-03-01", "end_date": "2026-03-05"},
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_read_only_admin_cannot_write(self) -> None:
        app.dependency_overrides[require_admin] = lambda: {
            "sub": "2",
            "username": "ana",
            "role": "admin",
            "permissions": {"timesheets": {"read": True, "write": False}},
        }
        set_manual_override(
            self.db,
            employee_id=1,
            work_date=date(2026, 3, 2),
            hours={HourBucket.REGULAR: Decimal("8")},
            note=None,
            actor_id="maria",
            today=date(2026, 10, 1),
        )

        read = self.client.get("/api/admin/timesheets/1/2026-03-02")
        self.assertEqual(read.status_code, 200)

        write = self.client.delete("/api/admin/timesheets/1/2026-03-02/override")
        self.assertEqual(write.status_code, 403)
        self.assertEqual(write.json()["error"]["code"], "FORBIDDEN")

        holidays = self.client.get("/api/admin/holidays")
        self.assertEqual(holidays.status_code, 403)


if __name__ == "__main__":
    unittest.main()
