"""
Booking wizard session.

The guest walks through duration -> team -> date & time -> their info -> guests -> confirm.
The session is an immutable value, every change goes through reduce_session which returns a
new session. Changing an earlier choice clears the choices that depended on it.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import IntEnum
from typing import Iterable, Mapping, Optional, Tuple

from .error_utils import InputError
from .models import Participant, SlotQuery


class Step(IntEnum):
    DURATION = 1
    TEAM = 2
    DATE_TIME = 3
    BOOKER_INFO = 4
    GUESTS = 5
    CONFIRM = 6


@dataclass(frozen=True)
class BookingSession:
    step: Step = Step.DURATION
    duration_minutes: Optional[int] = None
    required_ids: Tuple[str, ...] = ()
    optional_ids: Tuple[str, ...] = ()
    selected_date: Optional[date] = None
    selected_time: Optional[datetime] = None
    booker_name: Optional[str] = None
    booker_email: Optional[str] = None
    guest_emails: Tuple[str, ...] = ()

    def step_complete(self, step: Step) -> bool:
        if step == Step.DURATION:
            return self.duration_minutes is not None
        if step == Step.TEAM:
            return bool(self.required_ids)
        if step == Step.DATE_TIME:
            return self.selected_date is not None and self.selected_time is not None
        if step == Step.BOOKER_INFO:
            return bool(self.booker_name) and bool(self.booker_email)
        # Guests are optional and confirm has nothing to fill in
        return True

    @property
    def is_ready(self) -> bool:
        return all(self.step_complete(step) for step in Step)

    def to_query(self, participants: Mapping[str, Participant], granularity: Optional[timedelta] = None,
                 timezone: str = "UTC") -> SlotQuery:
        """
        Builds the engine query for this session. Unknown ids raise InputError.
        """
        if self.duration_minutes is None:
            raise InputError("Pick a meeting duration first")
        missing = [pid for pid in self.required_ids + self.optional_ids if pid not in participants]
        if missing:
            raise InputError(f"Unknown team members: {', '.join(missing)}")
        return SlotQuery(
            required=tuple(participants[pid] for pid in self.required_ids),
            optional=tuple(participants[pid] for pid in self.optional_ids),
            duration=timedelta(minutes=self.duration_minutes),
            granularity=granularity,
            timezone=timezone,
            day=self.selected_date,
        )


def _select_duration(session, minutes):
    try:
        minutes = int(minutes)
    except (TypeError, ValueError):
        raise InputError(f"Meeting duration is not a number of minutes: {minutes!r}") from None
    if minutes <= 0:
        raise InputError("Meeting duration must be positive")
    return replace(session, duration_minutes=minutes, selected_date=None, selected_time=None)


def _select_team(session, required: Iterable[str], optional: Iterable[str] = ()):
    required = tuple(dict.fromkeys(required))
    if not required:
        raise InputError("At least one required team member must be selected")
    optional = tuple(pid for pid in dict.fromkeys(optional) if pid not in required)
    return replace(session, required_ids=required, optional_ids=optional, selected_date=None, selected_time=None)


def _select_date(session, day: date):
    # A new date invalidates the time picked on the old one
    return replace(session, selected_date=day, selected_time=None)


def _select_time(session, start: datetime):
    if session.selected_date is None:
        raise InputError("Pick a date before picking a time")
    return replace(session, selected_time=start)


def _set_booker(session, name: str, email: str):
    name = (name or "").strip()
    if not name or not email:
        raise InputError("Name and email are required")
    return replace(session, booker_name=name, booker_email=email)


def _add_guest(session, email: str):
    if email.lower() in (guest.lower() for guest in session.guest_emails):
        return session
    return replace(session, guest_emails=session.guest_emails + (email,))


def _remove_guest(session, email: str):
    return replace(session, guest_emails=tuple(g for g in session.guest_emails if g.lower() != email.lower()))


def _next(session):
    if not session.step_complete(session.step):
        raise InputError(f"Step {session.step.name} is not complete")
    if session.step == Step.CONFIRM:
        return session
    return replace(session, step=Step(session.step + 1))


def _back(session):
    if session.step == Step.DURATION:
        return session
    return replace(session, step=Step(session.step - 1))


_ACTIONS = {
    "select_duration": _select_duration,
    "select_team": _select_team,
    "select_date": _select_date,
    "select_time": _select_time,
    "set_booker": _set_booker,
    "add_guest": _add_guest,
    "remove_guest": _remove_guest,
    "next": _next,
    "back": _back,
}


def reduce_session(session: BookingSession, action: str, **payload) -> BookingSession:
    """
    The single state update function for the booking wizard.

    Input: current session, an action name and that action's arguments.

    Returns: a new BookingSession. The input session is never changed.
    """
    try:
        handler = _ACTIONS[action]
    except KeyError:
        raise InputError(f"Unknown booking action: {action}") from None
    return handler(session, **payload)
