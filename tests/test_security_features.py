from __future__ import annotations

import json
import logging
import os
import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch
from zoneinfo import ZoneInfo

from pontaj.errors import ApiError
from pontaj.logging_utils import JsonFormatter
from pontaj.models import HourBucket
from pontaj.security import create_access_token, decode_token, has_permission, normalize_permissions
from pontaj.services.local_time import attendance_timezone
from pontaj.settings import get_settings


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_access_token_roundtrip(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret"}, clear=False):
            get_settings.cache_clear()
            token = create_access_token(sub="4", username="maria", permissions={"audit": True})
            claims = decode_token(token)

        self.assertEqual(claims["username"], "maria")
        self.assertEqual(claims["permissions"]["audit"], {"read": True, "write": True})
        self.assertFalse(claims["permissions"]["shifts"]["read"])

    def test_token_rejected_without_secret_or_with_other_secret(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "first-secret"}, clear=False):
            get_settings.cache_clear()
            token = create_access_token(sub="4", username="maria")
        with patch.dict(os.environ, {"JWT_SECRET": "second-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as ctx:
                decode_token(token)
        self.assertEqual(ctx.exception.status_code, 401)

        with patch.dict(os.environ, {"JWT_SECRET": ""}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError):
                decode_token(token)

    def test_wrong_token_type_is_rejected(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret"}, clear=False):
            get_settings.cache_clear()
            token = create_access_token(sub="4", username="maria")
            with self.assertRaises(ApiError) as ctx:
                decode_token(token, expected_type="refresh")
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")


class PermissionTests(unittest.TestCase):
    def test_normalize_ignores_unknown_keys_and_write_implies_read(self) -> None:
        normalized = normalize_permissions({"timesheets": {"write": True}, "devices": True})
        self.assertEqual(normalized["timesheets"], {"read": True, "write": True})
        self.assertNotIn("devices", normalized)

    def test_super_admin_has_everything(self) -> None:
        self.assertTrue(has_permission({"is_super_admin": True}, "maintenance", write=True))
        self.assertFalse(has_permission({"permissions": {"audit": {"read": True}}}, "audit", write=True))
        self.assertFalse(has_permission({"is_super_admin": True}, "unknown"))


class AmbientTests(unittest.TestCase):
    def tearDown(self) -> None:
        get_settings.cache_clear()
        attendance_timezone.cache_clear()

    def test_json_formatter_serializes_extra_fields(self) -> None:
        record = logging.makeLogRecord(
            {
                "name": "pontaj.timesheets",
                "levelname": "INFO",
                "msg": "shift_processed",
                "work_date": date(2026, 3, 2),
                "hours": Decimal("7.23"),
                "bucket": HourBucket.NIGHT,
            }
        )
        payload = json.loads(JsonFormatter(service="pontaj").format(record))

        self.assertEqual(payload["message"], "shift_processed")
        self.assertEqual(payload["service"], "pontaj")
        self.assertEqual(payload["work_date"], "2026-03-02")
        self.assertEqual(payload["hours"], "7.23")
        self.assertEqual(payload["bucket"], "NIGHT")

    def test_invalid_timezone_falls_back(self) -> None:
        with patch.dict(os.environ, {"ATTENDANCE_TIMEZONE": "Mars/Olympus"}, clear=False):
            get_settings.cache_clear()
            attendance_timezone.cache_clear()
            with self.assertLogs("pontaj.local_time", level="WARNING"):
                zone = attendance_timezone()
        self.assertEqual(zone, ZoneInfo("Europe/Bucharest"))


if __name__ == "__main__":
    unittest.main()
