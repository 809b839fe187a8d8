import unittest
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfoNotFoundError

from meeting_scheduler.scheduling.business_hours import (DEFAULT_BUSINESS_HOURS, DayHours, WeeklyBusinessHours,
                                                         Weekday, normalize_day, parse_wall_clock,
                                                         project_day_hours)
from meeting_scheduler.scheduling.period import Period

MONDAY = date(2025, 6, 2)
SATURDAY = date(2025, 6, 7)


def utc(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class WallClockTest(unittest.TestCase):

    def test_parse_strings_and_times(self):
        self.assertEqual(parse_wall_clock("09:00"), time(9))
        self.assertEqual(parse_wall_clock("17:30:00"), time(17, 30))
        self.assertEqual(parse_wall_clock(time(8, 15)), time(8, 15))

    def test_garbage_raises(self):
        with self.assertRaises(ValueError):
            parse_wall_clock("nine")
        with self.assertRaises(TypeError):
            parse_wall_clock(900)


class NormalizeDayTest(unittest.TestCase):

    def test_sorted_and_merged(self):
        day = normalize_day([("13:00", "17:00"), ("09:00", "12:00"), ("11:00", "12:30")])
        self.assertEqual(day, ((time(9), time(12, 30)), (time(13), time(17))))

    def test_adjacent_intervals_merge(self):
        self.assertEqual(normalize_day([("09:00", "12:00"), ("12:00", "15:00")]), ((time(9), time(15)),))

    def test_malformed_interval_closes_the_day(self):
        self.assertEqual(normalize_day([("09:00", "12:00"), ("17:00", "13:00")]), ())
        self.assertEqual(normalize_day([("09:00", "09:00")]), ())


class WeeklyBusinessHoursTest(unittest.TestCase):

    def test_missing_days_are_closed(self):
        hours = WeeklyBusinessHours({Weekday.MONDAY: [("09:00", "17:00")]}, timezone="Europe/Berlin")
        self.assertTrue(hours.is_open_on(MONDAY))
        self.assertFalse(hours.is_open_on(SATURDAY))
        self.assertEqual(hours.hours_for(MONDAY), DayHours([("09:00", "17:00")], timezone="Europe/Berlin"))
        self.assertTrue(hours.hours_for(SATURDAY).is_closed)

    def test_multiple_intervals_per_day_are_kept(self):
        hours = WeeklyBusinessHours({Weekday.MONDAY: [("13:00", "17:00"), ("09:00", "12:00")]})
        self.assertEqual(hours.intervals_on(Weekday.MONDAY), ((time(9), time(12)), (time(13), time(17))))

    def test_default_hours(self):
        self.assertEqual(DEFAULT_BUSINESS_HOURS.intervals_on(Weekday.FRIDAY), ((time(9), time(18)),))
        self.assertFalse(DEFAULT_BUSINESS_HOURS.is_open_on(SATURDAY))
        self.assertEqual(DEFAULT_BUSINESS_HOURS.timezone, "UTC")

    def test_unknown_timezone_rejected(self):
        with self.assertRaises(ZoneInfoNotFoundError):
            WeeklyBusinessHours({}, timezone="Mars/Olympus_Mons")


class ProjectionTest(unittest.TestCase):

    def test_summer_new_york(self):
        periods = project_day_hours(MONDAY, [(time(9), time(17))], "America/New_York")
        # EDT is UTC-4
        self.assertEqual(periods, [Period(utc(2025, 6, 2, 13), utc(2025, 6, 2, 21))])

    def test_hours_crossing_utc_midnight(self):
        periods = project_day_hours(MONDAY, [(time(9), time(17))], "Asia/Tokyo")
        self.assertEqual(periods, [Period(utc(2025, 6, 2, 0), utc(2025, 6, 2, 8))])

    def test_spring_forward_day_is_shorter(self):
        # Clocks jump 02:00 -> 03:00 on 2025-03-09 in New York
        periods = project_day_hours(date(2025, 3, 9), [(time(0), time(6))], "America/New_York")
        self.assertEqual(periods[0].begin_period, utc(2025, 3, 9, 5))
        self.assertEqual(periods[0].end_period, utc(2025, 3, 9, 10))
        self.assertEqual(periods[0].duration.total_seconds(), 5 * 3600)

    def test_closed_day_projects_to_nothing(self):
        self.assertEqual(project_day_hours(MONDAY, (), "UTC"), [])


if __name__ == '__main__':
    unittest.main()
