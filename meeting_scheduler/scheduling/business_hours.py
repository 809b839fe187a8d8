"""
Weekly business hours templates.

A template holds, for each weekday, an ordered list of non-overlapping wall-clock
intervals and the timezone those wall clocks are read in. An empty list means closed.

Leniency: a day with any interval whose start is not before its end is treated as
closed for that day instead of raising. Callers that need an audit trail log it at the
point where the data enters (see booking/database.py). Nothing here logs.
"""
from datetime import date, datetime, time
from enum import IntEnum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from .period import Period, merge_periods

WallClock = Union[str, time]
Interval = Tuple[time, time]


class Weekday(IntEnum):
    # Values line up with date.weekday()
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def column_prefix(self) -> str:
        return self.name.lower()

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return cls(day.weekday())


def parse_wall_clock(value: WallClock) -> time:
    """
    Accepts a time or an "HH:MM" / "HH:MM:SS" string, as stored by the admin console.
    Raises ValueError for anything else.
    """
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if not isinstance(value, str):
        raise TypeError(f"Wall clock time must be a string or time, got {type(value).__name__}")
    return time.fromisoformat(value.strip())


def normalize_day(intervals: Iterable[Tuple[WallClock, WallClock]]) -> Tuple[Interval, ...]:
    """
    Sorts and merges the intervals for one day. A malformed pair closes the whole day.
    """
    parsed = []
    for start, end in intervals:
        start, end = parse_wall_clock(start), parse_wall_clock(end)
        if start >= end:
            return ()
        parsed.append((start, end))
    parsed.sort()
    merged: List[Interval] = []
    for start, end in parsed:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return tuple(merged)


class DayHours:
    """
    What a BusinessHoursResolver hands back for one participant on one date.
    timezone may be None, in which case the participant's own timezone applies.
    """

    __slots__ = ("intervals", "timezone")

    def __init__(self, intervals: Iterable[Tuple[WallClock, WallClock]] = (), timezone: Optional[str] = None):
        self.intervals = normalize_day(intervals)
        self.timezone = timezone

    @property
    def is_closed(self) -> bool:
        return not self.intervals

    def __eq__(self, other):
        if not isinstance(other, DayHours):
            return NotImplemented
        return self.intervals == other.intervals and self.timezone == other.timezone

    def __repr__(self):
        return f"DayHours({self.intervals!r}, timezone={self.timezone!r})"


class WeeklyBusinessHours:
    """
    Immutable weekly template. Days missing from *days* are closed.
    """

    def __init__(self, days: Mapping[Weekday, Iterable[Tuple[WallClock, WallClock]]], timezone: str = "UTC"):
        ZoneInfo(timezone)  # fail early on an unknown zone name
        self._timezone = timezone
        self._days: Dict[Weekday, Tuple[Interval, ...]] = {
            weekday: normalize_day(days.get(weekday, ())) for weekday in Weekday
        }

    @property
    def timezone(self) -> str:
        return self._timezone

    def intervals_on(self, weekday: Weekday) -> Tuple[Interval, ...]:
        return self._days[weekday]

    def hours_for(self, day: date) -> DayHours:
        return DayHours(self._days[Weekday.of(day)], timezone=self._timezone)

    def is_open_on(self, day: date) -> bool:
        return bool(self._days[Weekday.of(day)])

    def __eq__(self, other):
        if not isinstance(other, WeeklyBusinessHours):
            return NotImplemented
        return self._days == other._days and self._timezone == other._timezone

    def __repr__(self):
        open_days = {d.name.title(): [(s.isoformat("minutes"), e.isoformat("minutes")) for s, e in v]
                     for d, v in self._days.items() if v}
        return f"WeeklyBusinessHours({open_days}, timezone={self._timezone!r})"


# Fallback when no global or team policy is configured: 9 AM - 6 PM, Monday to Friday
DEFAULT_BUSINESS_HOURS = WeeklyBusinessHours(
    {weekday: [("09:00", "18:00")] for weekday in Weekday if weekday <= Weekday.FRIDAY},
    timezone="UTC",
)


def project_day_hours(local_day: date, intervals: Iterable[Interval], timezone: str) -> List[Period]:
    """
    Turns the wall-clock intervals of *local_day* in *timezone* into absolute periods.

    Input: the local calendar date, its intervals and the IANA zone name they are read in.

    Returns: ascending list of Period objects in UTC.
    """
    tz = ZoneInfo(timezone)
    periods = []
    for start, end in intervals:
        begin = datetime.combine(local_day, start, tzinfo=tz)
        finish = datetime.combine(local_day, end, tzinfo=tz)
        # A wall clock inside a DST gap can land after its end once converted, merge drops those
        periods.append(Period(begin, finish))
    return merge_periods(periods)
