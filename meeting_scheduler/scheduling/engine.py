"""
Availability engine for group meeting booking

Problem:

Given a group of people, each with a weekly business hours template, a timezone and a list of
busy periods from their calendar, show the days that have at least one slot where every required
person is free, and for a picked day the slot start times themselves.

Algorithm, per reference day:
1. Resolve each required participant's open hours and project them to absolute instants,
   clipped to the reference-timezone day.
2. Intersect the open hours of all required participants.
3. Subtract every required participant's busy periods.
4. Step through each free window from its own start at the slot granularity, keeping starts
   whose whole meeting fits inside that window.
5. Drop starts before now + minimum notice or past the advance bound.

The engine does no I/O of its own. Both collaborators are called once per participant per top
level call, optionally fanned out on a thread pool, and every fetch is joined before any interval
math starts. One failed fetch fails the whole query.
"""
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import date, datetime, timedelta, timezone
from threading import Event
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .business_hours import DayHours, project_day_hours
from .error_utils import CollaboratorFailure, InputError, QueryCancelled
from .models import Participant, SchedulingWindow, SlotAvailability, SlotQuery, reference_day
from .period import Period, clip_periods, intersect_all, merge_periods, subtract_periods
from .providers import BusinessHoursResolver, BusyIntervalProvider

# How often a waiting fan-out checks the caller's cancel event, in seconds
CANCEL_POLL_SECONDS = 0.05

ONE_DAY = timedelta(days=1)
# UTC offsets run from -12:00 to +14:00, so a local date up to two days away from the
# reference date can still overlap the reference day
LOCAL_DAY_REACH = 2


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _ConstraintSnapshot:
    """
    Everything fetched for one top level call. Read only once built.
    """

    def __init__(self):
        self.busy: Dict[str, List[Period]] = {}
        self.hours: Dict[str, Dict[date, DayHours]] = {}

    def open_periods(self, participant: Participant, day_span: Period, local_days: Iterable[date]) -> List[Period]:
        periods = []
        for local_day in local_days:
            hours = self.hours[participant.id][local_day]
            periods.extend(project_day_hours(local_day, hours.intervals, hours.timezone or participant.timezone))
        return clip_periods(periods, day_span)

    def free_periods(self, participant: Participant, day_span: Period, local_days: Iterable[date]) -> List[Period]:
        return subtract_periods(self.open_periods(participant, day_span, local_days), self.busy[participant.id])


class AvailabilityEngine:

    def __init__(self, busy_provider: BusyIntervalProvider, hours_resolver: BusinessHoursResolver,
                 clock: Callable[[], datetime] = _utc_now, max_workers: Optional[int] = None):
        """
        Args:
          busy_provider: where busy periods come from.
          hours_resolver: where each participant's business hours come from.
          clock: returns the current aware datetime, injectable for tests.
          max_workers: fan-out width for collaborator fetches. None or 1 fetches sequentially.
        """
        self._busy_provider = busy_provider
        self._hours_resolver = hours_resolver
        self._clock = clock
        self._max_workers = max_workers

    def find_available_dates(self, query: SlotQuery, window: Optional[SchedulingWindow] = None,
                             cancel_event: Optional[Event] = None) -> List[date]:
        """
        Dates in the window that have at least one slot for the whole required group.

        Returns: ascending list of dates. Empty if nothing qualifies or nobody is required.
        """
        window = window or SchedulingWindow()
        if not query.required:
            return []
        now = self._clock()
        days = window.candidate_dates(now, query.timezone)
        if not days:
            return []
        snapshot = self._fetch(query.required, query.timezone, days, cancel_event)
        return [day for day in days if self._slot_starts(query, day, window, now, snapshot)]

    def find_available_slots(self, query: SlotQuery, day: Optional[date] = None,
                             window: Optional[SchedulingWindow] = None,
                             cancel_event: Optional[Event] = None) -> List[datetime]:
        """
        Slot start instants (UTC) on *day* at which every required participant is free.
        *day* defaults to query.day. A day outside the window gives an empty list.
        """
        day = self._query_day(query, day)
        window = window or SchedulingWindow()
        if not query.required:
            return []
        now = self._clock()
        if not window.covers(day, now, query.timezone):
            return []
        snapshot = self._fetch(query.required, query.timezone, [day], cancel_event)
        return self._slot_starts(query, day, window, now, snapshot)

    def free_windows(self, query: SlotQuery, day: Optional[date] = None,
                     cancel_event: Optional[Event] = None) -> List[Period]:
        """
        The periods on *day* where the whole required group is inside business hours and not busy.
        No window or notice filtering, this is the raw group free time.
        """
        day = self._query_day(query, day)
        if not query.required:
            return []
        snapshot = self._fetch(query.required, query.timezone, [day], cancel_event)
        return self._group_free_windows(query.required, query.timezone, day, snapshot)

    def annotate_slots(self, query: SlotQuery, day: Optional[date] = None,
                       window: Optional[SchedulingWindow] = None,
                       cancel_event: Optional[Event] = None) -> List[SlotAvailability]:
        """
        Same slots as find_available_slots, each marked with which optional participants are free.
        Optional participants are fetched in the same fan-out but never change the slot list.
        """
        day = self._query_day(query, day)
        window = window or SchedulingWindow()
        if not query.required:
            return []
        now = self._clock()
        if not window.covers(day, now, query.timezone):
            return []
        snapshot = self._fetch(query.required + query.optional, query.timezone, [day], cancel_event)
        starts = self._slot_starts(query, day, window, now, snapshot)
        optional_free = self._per_participant_free(query.optional, query.timezone, day, snapshot)
        slots = []
        for start in starts:
            meeting = Period(start, start + query.duration)
            slots.append(SlotAvailability(
                start=meeting.begin_period,
                end=meeting.end_period,
                optional={pid: _fits(meeting, free) for pid, free in optional_free.items()},
            ))
        return slots

    def optional_availability(self, query: SlotQuery, slot_start: datetime,
                              cancel_event: Optional[Event] = None) -> Dict[str, bool]:
        """
        For a single slot start, which optional participants are free for the whole meeting.
        """
        if not query.optional:
            return {}
        meeting = Period(slot_start, slot_start + query.duration)
        day = _local_date(meeting.begin_period, query.timezone)
        snapshot = self._fetch(query.optional, query.timezone, [day], cancel_event)
        optional_free = self._per_participant_free(query.optional, query.timezone, day, snapshot)
        return {pid: _fits(meeting, free) for pid, free in optional_free.items()}

    @staticmethod
    def _query_day(query: SlotQuery, day: Optional[date]) -> date:
        day = day or query.day
        if day is None:
            raise InputError("A slot query needs a date")
        return day

    def _slot_starts(self, query: SlotQuery, day: date, window: SchedulingWindow, now: datetime,
                     snapshot: _ConstraintSnapshot) -> List[datetime]:
        earliest = window.earliest_instant(now)
        latest = window.latest_instant(now, query.timezone)
        starts = []
        for free in self._group_free_windows(query.required, query.timezone, day, snapshot):
            # Each window steps from its own start, not from a clock aligned grid
            start = free.begin_period
            while start + query.duration <= free.end_period:
                if earliest <= start <= latest:
                    starts.append(start)
                start += query.granularity
        return starts

    def _group_free_windows(self, participants: Sequence[Participant], tz_name: str, day: date,
                            snapshot: _ConstraintSnapshot) -> List[Period]:
        day_span = reference_day(day, tz_name)
        local_days = _neighbouring_days(day)
        shared_open = intersect_all(snapshot.open_periods(p, day_span, local_days) for p in participants)
        if not shared_open:
            return []
        busy = merge_periods(period for p in participants for period in snapshot.busy[p.id])
        return subtract_periods(shared_open, busy)

    def _per_participant_free(self, participants: Sequence[Participant], tz_name: str, day: date,
                              snapshot: _ConstraintSnapshot) -> Dict[str, List[Period]]:
        day_span = reference_day(day, tz_name)
        local_days = _neighbouring_days(day)
        return {p.id: snapshot.free_periods(p, day_span, local_days) for p in participants}

    def _fetch(self, participants: Sequence[Participant], tz_name: str, days: Sequence[date],
               cancel_event: Optional[Event]) -> _ConstraintSnapshot:
        """
        Fetches busy periods over the whole span of *days* and business hours for every local date
        that can touch it, for each participant. Acts as a barrier: returns only once every fetch is in.
        """
        _raise_if_cancelled(cancel_event)
        span = Period(reference_day(days[0], tz_name).begin_period, reference_day(days[-1], tz_name).end_period)
        # Hours for every local date within LOCAL_DAY_REACH of the span
        first_local = days[0] - LOCAL_DAY_REACH * ONE_DAY
        local_days = [first_local + offset * ONE_DAY
                      for offset in range((days[-1] - days[0]).days + 2 * LOCAL_DAY_REACH + 1)]

        snapshot = _ConstraintSnapshot()
        if not self._max_workers or self._max_workers <= 1 or len(participants) <= 1:
            for participant in participants:
                _raise_if_cancelled(cancel_event)
                self._store(snapshot, participant, self._guarded_fetch(participant, span, local_days))
        else:
            self._fan_out(snapshot, participants, span, local_days, cancel_event)
        _raise_if_cancelled(cancel_event)
        return snapshot

    def _fan_out(self, snapshot: _ConstraintSnapshot, participants: Sequence[Participant], span: Period,
                 local_days: List[date], cancel_event: Optional[Event]):
        executor = ThreadPoolExecutor(max_workers=min(self._max_workers, len(participants)))
        try:
            futures = {executor.submit(self._fetch_participant, p, span, local_days): p for p in participants}
            pending = set(futures)
            while pending:
                _raise_if_cancelled(cancel_event)
                done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    participant = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        # Fail fast, the finally block drops whatever is still queued
                        raise CollaboratorFailure(participant.id, e) from e
                    self._store(snapshot, participant, result)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _guarded_fetch(self, participant: Participant, span: Period, local_days: List[date]):
        try:
            return self._fetch_participant(participant, span, local_days)
        except Exception as e:
            raise CollaboratorFailure(participant.id, e) from e

    def _fetch_participant(self, participant: Participant, span: Period, local_days: List[date]):
        busy = self._busy_provider.get_busy_intervals(participant.id, span.begin_period, span.end_period)
        hours = {local_day: self._hours_resolver.get_hours_for_date(participant.id, local_day)
                 for local_day in local_days}
        return busy, hours

    @staticmethod
    def _store(snapshot: _ConstraintSnapshot, participant: Participant, result):
        busy, hours = result
        snapshot.busy[participant.id] = merge_periods(busy)
        snapshot.hours[participant.id] = hours


def _neighbouring_days(day: date) -> List[date]:
    return [day + offset * ONE_DAY for offset in range(-LOCAL_DAY_REACH, LOCAL_DAY_REACH + 1)]


def _local_date(moment: datetime, tz_name: str) -> date:
    return moment.astimezone(ZoneInfo(tz_name)).date()


def _fits(meeting: Period, free_periods: Iterable[Period]) -> bool:
    return any(free.contains(meeting) for free in free_periods)


def _raise_if_cancelled(cancel_event: Optional[Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise QueryCancelled("Availability query cancelled by caller")
