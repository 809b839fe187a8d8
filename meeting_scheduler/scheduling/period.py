# Custom time period class used for the implementation of the availability engine
from datetime import datetime, timedelta, timezone
from typing import Iterable, List


"""
Defined as a pair of aware datetime objects, half open: [begin_period, end_period).
"""
class Period:

    __slots__ = ("_begin_period", "_end_period")

    def __init__(self, begin_period: datetime, end_period: datetime):
        # Stored in UTC so timedelta arithmetic is absolute, naive input is read as UTC
        self._begin_period = _as_utc(begin_period)
        self._end_period = _as_utc(end_period)

    @property
    def begin_period(self) -> datetime:
        return self._begin_period

    @property
    def end_period(self) -> datetime:
        return self._end_period

    @property
    def duration(self) -> timedelta:
        return self._end_period - self._begin_period

    def is_empty(self) -> bool:
        return self._end_period <= self._begin_period

    def overlaps(self, other: "Period") -> bool:
        # Touching at a boundary is not an overlap since both ends are half open
        return self._begin_period < other.end_period and other.begin_period < self._end_period

    def contains(self, other: "Period") -> bool:
        return self._begin_period <= other.begin_period and other.end_period <= self._end_period

    def __eq__(self, other):
        if not isinstance(other, Period):
            return NotImplemented
        return self._begin_period == other.begin_period and self._end_period == other.end_period

    def __hash__(self):
        return hash((self._begin_period, self._end_period))

    def __lt__(self, other: "Period"):
        return (self._begin_period, self._end_period) < (other.begin_period, other.end_period)

    def __repr__(self):
        return f"Period({self._begin_period.isoformat()}, {self._end_period.isoformat()})"


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def merge_periods(periods: Iterable[Period]) -> List[Period]:
    """
    Sorts the periods and merges any that overlap or touch. Empty periods are dropped.
    Input from providers is not trusted to be sorted or disjoint.

    Returns: ascending list of disjoint, non-adjacent periods.
    """
    ordered = sorted(p for p in periods if not p.is_empty())
    merged: List[Period] = []
    for period in ordered:
        if merged and period.begin_period <= merged[-1].end_period:
            last = merged[-1]
            merged[-1] = Period(last.begin_period, max(last.end_period, period.end_period))
        else:
            merged.append(period)
    return merged


def intersect_periods(first: Iterable[Period], second: Iterable[Period]) -> List[Period]:
    """
    Set intersection of two period lists. Both inputs are normalized first.
    """
    left = merge_periods(first)
    right = merge_periods(second)
    result = []
    i = j = 0
    # Two pointer walk, advance whichever period finishes first
    while i < len(left) and j < len(right):
        begin = max(left[i].begin_period, right[j].begin_period)
        end = min(left[i].end_period, right[j].end_period)
        if begin < end:
            result.append(Period(begin, end))
        if left[i].end_period <= right[j].end_period:
            i += 1
        else:
            j += 1
    return result


def intersect_all(period_lists: Iterable[Iterable[Period]]) -> List[Period]:
    """
    Intersection across any number of period lists.
    No lists at all gives an empty result, not "everything".
    """
    result = None
    for periods in period_lists:
        result = merge_periods(periods) if result is None else intersect_periods(result, periods)
        if not result:
            return []
    return result or []


def subtract_periods(periods: Iterable[Period], removed: Iterable[Period]) -> List[Period]:
    """
    Removes every instant covered by *removed* from *periods*.

    Returns: ascending list of what remains.
    """
    remaining = merge_periods(periods)
    cuts = merge_periods(removed)
    result = []
    for period in remaining:
        cursor = period.begin_period
        for cut in cuts:
            if cut.end_period <= cursor:
                continue
            if cut.begin_period >= period.end_period:
                break
            if cut.begin_period > cursor:
                result.append(Period(cursor, cut.begin_period))
            cursor = max(cursor, cut.end_period)
        if cursor < period.end_period:
            result.append(Period(cursor, period.end_period))
    return result


def clip_periods(periods: Iterable[Period], bounds: Period) -> List[Period]:
    """
    Clips each period to *bounds*, dropping anything left empty.
    """
    return intersect_periods(periods, [bounds])
