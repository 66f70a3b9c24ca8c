from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from pontaj.errors import ShiftIntervalError
from pontaj.models import ActivityTag, HourBucket, ShiftInterval
from pontaj.services.holidays import HolidaySet
from pontaj.services.hour_rules import next_boundary
from pontaj.services.segmentation import (
    elapsed_hours,
    round_hours,
    split_interval,
    split_shift,
    touched_dates,
)
from pontaj.services.timesheet_calc import aggregate_segments

BUCHAREST = ZoneInfo("Europe/Bucharest")


def _local(year: int, month: int, day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=BUCHAREST)


def _summary(slices) -> list[tuple[str, str, HourBucket, Decimal]]:
    return [
        (item.start.strftime("%m-%d %H:%M:%S"), item.end.strftime("%m-%d %H:%M:%S"), item.bucket, item.hours)
        for item in slices
    ]


class SplitIntervalTests(unittest.TestCase):
    def test_overnight_weekday_shift(self) -> None:
        slices = split_interval(_local(2026, 3, 2, 14, 45, 57), _local(2026, 3, 3, 8), tz=BUCHAREST)

        self.assertEqual(
            _summary(slices),
            [
                ("03-02 14:45:57", "03-02 22:00:00", HourBucket.REGULAR, Decimal("7.23")),
                ("03-02 22:00:00", "03-03 00:00:00", HourBucket.NIGHT, Decimal("2.00")),
                ("03-03 00:00:00", "03-03 06:00:00", HourBucket.NIGHT, Decimal("6.00")),
                ("03-03 06:00:00", "03-03 08:00:00", HourBucket.REGULAR, Decimal("2.00")),
            ],
        )
        self.assertEqual([item.work_date for item in slices], [date(2026, 3, 2)] * 2 + [date(2026, 3, 3)] * 2)
        self.assertEqual(sum(item.hours for item in slices), Decimal("17.23"))

    def test_saturday_window_covers_sunday_morning(self) -> None:
        slices = split_interval(_local(2026, 3, 7, 7), _local(2026, 3, 8, 7), tz=BUCHAREST)

        by_bucket: dict[HourBucket, Decimal] = {}
        for item in slices:
            by_bucket[item.bucket] = by_bucket.get(item.bucket, Decimal("0")) + item.hours
        self.assertEqual(by_bucket, {HourBucket.SATURDAY: Decimal("23.00"), HourBucket.SUNDAY: Decimal("1.00")})
        self.assertEqual(slices[-1].start, _local(2026, 3, 8, 6))
        self.assertEqual(slices[-1].bucket, HourBucket.SUNDAY)

    def test_driving_tag_keeps_bucket_but_splits_by_day(self) -> None:
        slices = split_interval(
            _local(2026, 3, 2, 20),
            _local(2026, 3, 3, 4),
            activity_tag=ActivityTag.DRIVING,
            tz=BUCHAREST,
        )

        self.assertEqual(len(slices), 3)
        self.assertTrue(all(item.bucket == HourBucket.DRIVING for item in slices))
        totals = aggregate_segments(slices, employee_id=1)
        self.assertEqual([item.work_date for item in totals], [date(2026, 3, 2), date(2026, 3, 3)])
        self.assertEqual(totals[0].hours[HourBucket.DRIVING], Decimal("4.00"))
        self.assertEqual(totals[1].hours[HourBucket.DRIVING], Decimal("4.00"))
        self.assertEqual(totals[0].hours[HourBucket.NIGHT], Decimal("0.00"))

    def test_normal_tag_is_classified_by_time(self) -> None:
        slices = split_interval(
            _local(2026, 3, 2, 21),
            _local(2026, 3, 2, 23),
            activity_tag=ActivityTag.NORMAL,
            tz=BUCHAREST,
        )
        self.assertEqual([item.bucket for item in slices], [HourBucket.REGULAR, HourBucket.NIGHT])

    def test_holiday_early_hours_are_night(self) -> None:
        holidays = HolidaySet([date(2026, 12, 1)])
        slices = split_interval(_local(2026, 12, 1, 4), _local(2026, 12, 1, 10), holidays=holidays, tz=BUCHAREST)
        self.assertEqual(
            [(item.bucket, item.hours) for item in slices],
            [(HourBucket.NIGHT, Decimal("2.00")), (HourBucket.HOLIDAY, Decimal("4.00"))],
        )

    def test_rounding_is_carried_across_slices(self) -> None:
        slices = split_interval(_local(2026, 3, 2, 5, 40), _local(2026, 3, 2, 6, 20), tz=BUCHAREST)
        self.assertEqual([item.hours for item in slices], [Decimal("0.33"), Decimal("0.34")])
        self.assertEqual(sum(item.hours for item in slices), round_hours(Decimal(40) / Decimal(60)))

    def test_naive_timestamps_are_utc(self) -> None:
        slices = split_interval(datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 12), tz=BUCHAREST)
        self.assertEqual(len(slices), 1)
        self.assertEqual(slices[0].start, _local(2026, 3, 2, 12))
        self.assertEqual(slices[0].start_utc, datetime(2026, 3, 2, 10, tzinfo=timezone.utc))

    def test_slices_never_cross_a_boundary_and_cover_the_interval(self) -> None:
        start = _local(2026, 3, 4, 13, 17, 9)
        end = start + timedelta(hours=72)
        slices = split_interval(start, end, tz=BUCHAREST, max_hours=72)

        self.assertEqual(slices[0].start_utc, start.astimezone(timezone.utc))
        self.assertEqual(slices[-1].end_utc, end.astimezone(timezone.utc))
        for previous, current in zip(slices, slices[1:]):
            self.assertEqual(previous.end_utc, current.start_utc)
        for item in slices:
            self.assertEqual(item.start.date(), item.work_date)
            self.assertLessEqual(item.end_utc, next_boundary(item.start).astimezone(timezone.utc))
            self.assertGreater(item.hours, Decimal("0"))
        self.assertEqual(sum(item.hours for item in slices), Decimal("72.00"))

    def test_spring_forward_day_counts_real_hours(self) -> None:
        slices = split_interval(_local(2026, 3, 28, 22), _local(2026, 3, 29, 8), tz=BUCHAREST)
        self.assertEqual(sum(item.hours for item in slices), Decimal("9.00"))
        self.assertEqual(slices[1].hours, Decimal("5.00"))
        self.assertEqual(slices[1].bucket, HourBucket.SATURDAY)
        self.assertEqual(slices[2].bucket, HourBucket.SUNDAY)

    def test_fall_back_day_counts_real_hours(self) -> None:
        slices = split_interval(_local(2026, 10, 24, 22), _local(2026, 10, 25, 6), tz=BUCHAREST)
        self.assertEqual(sum(item.hours for item in slices), Decimal("9.00"))
        self.assertEqual(slices[1].hours, Decimal("7.00"))

    def test_elapsed_hours_uses_real_time(self) -> None:
        self.assertEqual(
            elapsed_hours(_local(2026, 10, 25, 0), _local(2026, 10, 25, 6)),
            Decimal("7"),
        )


class IntervalValidationTests(unittest.TestCase):
    def test_open_shift_is_rejected(self) -> None:
        with self.assertRaises(ShiftIntervalError) as ctx:
            split_interval(_local(2026, 3, 2, 8), None, tz=BUCHAREST)
        self.assertEqual(ctx.exception.code, "SHIFT_OPEN")

    def test_inverted_or_empty_shift_is_rejected(self) -> None:
        for end in (_local(2026, 3, 2, 7), _local(2026, 3, 2, 8)):
            with self.assertRaises(ShiftIntervalError) as ctx:
                split_interval(_local(2026, 3, 2, 8), end, tz=BUCHAREST)
            self.assertEqual(ctx.exception.code, "INVALID_SHIFT_INTERVAL")

    def test_too_long_shift_is_rejected_with_shift_id(self) -> None:
        start = datetime(2026, 3, 2, 6, tzinfo=timezone.utc)
        shift = ShiftInterval(id=9, employee_id=1, start_ts_utc=start, end_ts_utc=start + timedelta(hours=72, seconds=1))
        with self.assertRaises(ShiftIntervalError) as ctx:
            split_shift(shift, tz=BUCHAREST)
        self.assertEqual(ctx.exception.code, "SHIFT_TOO_LONG")
        self.assertEqual(ctx.exception.shift_id, 9)
        self.assertEqual(ctx.exception.to_api_error().status_code, 422)

    def test_touched_dates_are_sorted_and_unique(self) -> None:
        slices = split_interval(_local(2026, 3, 2, 20), _local(2026, 3, 4, 2), tz=BUCHAREST)
        self.assertEqual(touched_dates(slices), [date(2026, 3, 2), date(2026, 3, 3), date(2026, 3, 4)])


if __name__ == "__main__":
    unittest.main()
