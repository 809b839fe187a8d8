"""
Collaborator interfaces the availability engine queries, plus in-memory versions.

The in-memory classes return fixed fixtures. They stand in for the calendar service and
the business hours store in tests and offline runs.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional

from .business_hours import DEFAULT_BUSINESS_HOURS, DayHours, WeeklyBusinessHours
from .period import Period


class BusyIntervalProvider(ABC):

    @abstractmethod
    def get_busy_intervals(self, participant_id: str, range_start: datetime, range_end: datetime) -> List[Period]:
        """
        Busy periods for *participant_id* overlapping [range_start, range_end).
        May be unsorted or overlapping, the engine normalizes them.
        """


class BusinessHoursResolver(ABC):

    @abstractmethod
    def get_hours_for_date(self, participant_id: str, day: date) -> DayHours:
        """
        Effective open intervals for *participant_id* on the local date *day*.
        An empty DayHours means closed.
        """


class FixtureBusyIntervalProvider(BusyIntervalProvider):
    """
    Serves busy periods from a dict keyed by participant id. Unknown ids are free all the time.
    """

    def __init__(self, busy: Optional[Mapping[str, Iterable[Period]]] = None):
        self._busy: Dict[str, List[Period]] = {pid: list(periods) for pid, periods in (busy or {}).items()}
        # Recorded so tests can check what the engine asked for
        self.calls = []

    def add(self, participant_id: str, period: Period):
        self._busy.setdefault(participant_id, []).append(period)

    def get_busy_intervals(self, participant_id, range_start, range_end):
        self.calls.append((participant_id, range_start, range_end))
        window = Period(range_start, range_end)
        return [p for p in self._busy.get(participant_id, []) if p.overlaps(window)]


class StaticBusinessHoursResolver(BusinessHoursResolver):
    """
    Per participant weekly templates with a shared fallback template.
    """

    def __init__(self, templates: Optional[Mapping[str, WeeklyBusinessHours]] = None,
                 default: WeeklyBusinessHours = DEFAULT_BUSINESS_HOURS):
        self._templates = dict(templates or {})
        self._default = default

    def get_hours_for_date(self, participant_id, day):
        return self._templates.get(participant_id, self._default).hours_for(day)
