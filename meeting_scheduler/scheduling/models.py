"""
Value objects passed into and out of the availability engine.

All of them are immutable snapshots supplied per request, the engine never persists them.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .error_utils import InputError
from .period import Period

DEFAULT_MIN_NOTICE = timedelta(hours=5)
DEFAULT_MAX_ADVANCE = timedelta(days=60)

# availability_type values stored by the admin console
ROLLING_WINDOW = "available_now"
FIXED_DATE_RANGE = "date_range"


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InputError(f"Unknown timezone: {name}") from e


def reference_day(day: date, timezone: str) -> Period:
    """
    The absolute span of one calendar day in *timezone*, midnight to midnight.
    Not always 24 hours long on DST change days.
    """
    tz = _zone(timezone)
    begin = datetime.combine(day, time(0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return Period(begin, end)


@dataclass(frozen=True)
class Participant:
    id: str
    timezone: str = "UTC"
    name: Optional[str] = None


@dataclass(frozen=True)
class SchedulingWindow:
    """
    Bounds which days and instants may be offered.

    Rolling mode (no explicit dates): from now + min_notice up to now + max_advance.
    Fixed mode (earliest_date and latest_date both set): the explicit date range replaces
    the advance rule entirely. Minimum notice applies in both modes.
    """
    min_notice: timedelta = DEFAULT_MIN_NOTICE
    max_advance: timedelta = DEFAULT_MAX_ADVANCE
    earliest_date: Optional[date] = None
    latest_date: Optional[date] = None

    def __post_init__(self):
        if self.min_notice < timedelta(0) or self.max_advance < timedelta(0):
            raise InputError("Scheduling window durations can't be negative")
        if (self.earliest_date is None) != (self.latest_date is None):
            raise InputError("A fixed date range needs both an earliest and a latest date")

    @property
    def is_fixed_range(self) -> bool:
        return self.earliest_date is not None

    @classmethod
    def from_settings_row(cls, row) -> "SchedulingWindow":
        """
        Builds a window from a scheduling_window_settings row. Missing row means defaults.
        A date_range row without both dates falls back to the rolling rule.
        """
        if not row:
            return cls()
        min_notice_hours = row.get("min_notice_hours")
        max_advance_days = row.get("max_advance_days")
        window = cls(
            min_notice=DEFAULT_MIN_NOTICE if min_notice_hours is None else timedelta(hours=min_notice_hours),
            max_advance=DEFAULT_MAX_ADVANCE if max_advance_days is None else timedelta(days=max_advance_days),
        )
        if row.get("availability_type") == FIXED_DATE_RANGE and row.get("start_date") and row.get("end_date"):
            window = replace(window, earliest_date=_as_date(row["start_date"]), latest_date=_as_date(row["end_date"]))
        return window

    def earliest_instant(self, now: datetime) -> datetime:
        return now + self.min_notice

    def latest_instant(self, now: datetime, timezone: str) -> datetime:
        """
        Latest slot start that may be offered (inclusive).
        """
        if self.is_fixed_range:
            return reference_day(self.latest_date, timezone).end_period - timedelta(microseconds=1)
        return now + self.max_advance

    def candidate_dates(self, now: datetime, timezone: str) -> List[date]:
        """
        Dates worth checking, in *timezone*, ascending.
        """
        if self.is_fixed_range:
            first, last = self.earliest_date, self.latest_date
        else:
            tz = _zone(timezone)
            first = (now + self.min_notice).astimezone(tz).date()
            last = (now + self.max_advance).astimezone(tz).date()
        return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]

    def covers(self, day: date, now: datetime, timezone: str) -> bool:
        dates = self.candidate_dates(now, timezone)
        return bool(dates) and dates[0] <= day <= dates[-1]


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _unique(participants: Iterable[Participant]) -> Tuple[Participant, ...]:
    seen = set()
    result = []
    for participant in participants:
        if participant.id not in seen:
            seen.add(participant.id)
            result.append(participant)
    return tuple(result)


@dataclass(frozen=True)
class SlotQuery:
    """
    One computation request. granularity defaults to the meeting duration.
    Someone listed as both required and optional counts as required.
    """
    required: Tuple[Participant, ...]
    duration: timedelta
    optional: Tuple[Participant, ...] = ()
    granularity: Optional[timedelta] = None
    timezone: str = "UTC"
    day: Optional[date] = None

    def __post_init__(self):
        # frozen, so normalize through object.__setattr__
        required = _unique(self.required)
        required_ids = {p.id for p in required}
        object.__setattr__(self, "required", required)
        object.__setattr__(self, "optional", tuple(p for p in _unique(self.optional) if p.id not in required_ids))
        if self.granularity is None:
            object.__setattr__(self, "granularity", self.duration)
        if self.duration <= timedelta(0):
            raise InputError("Meeting duration must be positive")
        if self.granularity <= timedelta(0):
            raise InputError("Slot granularity must be positive")
        _zone(self.timezone)

    def with_date(self, day: date) -> "SlotQuery":
        return replace(self, day=day)

    def with_required(self, participants: Iterable[Participant]) -> "SlotQuery":
        return replace(self, required=tuple(participants))


@dataclass(frozen=True)
class SlotAvailability:
    """
    A bookable slot plus which optional participants are free for all of it.
    The annotation never affects whether the slot is offered.
    """
    start: datetime
    end: datetime
    optional: Dict[str, bool] = field(default_factory=dict)

    def to_json(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "optional": dict(self.optional)}
