from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pathlib import Path
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4
import logging
import os
import threading

from meeting_scheduler.scheduling.period import Period
from meeting_scheduler.scheduling.providers import BusyIntervalProvider

logger = logging.getLogger(__name__)

# The business calendar the service account impersonates when creating meetings
DEFAULT_BUSINESS_EMAIL = "noreply@example.com"

# Define the required scope
SCOPES = ["https://www.googleapis.com/auth/calendar", "https://www.googleapis.com/auth/calendar.events"]

# Attendee responses that block a participant's time. declined and needsAction don't.
BLOCKING_RESPONSES = ("accepted", "tentative")


def business_email() -> str:
    return os.getenv("GOOGLE_ADMIN_EMAIL", DEFAULT_BUSINESS_EMAIL)


class BookingService(BusyIntervalProvider):
    """
    Google Calendar side of booking: busy periods for team members and creating the meeting event.
    Uses a service account with domain-wide delegation so every team calendar in the workspace is readable.
    """

    def __init__(self, service=None, organizer_email: Optional[str] = None, calendar_ids: Optional[Dict[str, str]] = None,
                 service_factory: Optional[Callable[[], object]] = None):
        """
        Args:
          service: a ready calendar resource, shared by every thread. Tests pass a mock here.
          service_factory: builds a calendar resource. Called once per thread that uses this object.
            Defaults to the service account client.
        """
        self.organizer_email = organizer_email or business_email()
        # Participant id -> calendar id. Ids not listed are used as the calendar id directly.
        self.calendar_ids = dict(calendar_ids or {})
        if service_factory is None:
            if service is not None:
                service_factory = lambda: service
            else:
                service_factory = lambda: self._authorize(self.organizer_email)
        self._service_factory = service_factory
        # A googleapiclient resource wraps one httplib2.Http, which isn't thread-safe.
        # The engine fetches participants on a thread pool, so each thread gets its own resource.
        self._thread_locals = threading.local()

    @property
    def service(self):
        service = getattr(self._thread_locals, "service", None)
        if service is None:
            service = self._service_factory()
            self._thread_locals.service = service
        return service

    @staticmethod
    def _find_api_key():
        """
        Since Credentials.from_service_account_file() takes file path, find the file path to either the environment variable in prod or local dev file.
        """
        api_key_path = os.getenv('SERVICE_ACCOUNT_FILE')
        # If none, then get local development key next to this module
        if not api_key_path:
            api_key_path = Path(__file__).parent / "service-account.json"
        return api_key_path

    @staticmethod
    def _authorize(subject: str):
        creds = service_account.Credentials.from_service_account_file(
            BookingService._find_api_key(),
            scopes=SCOPES,
            subject=subject  # Impersonating the business email
        )
        return build("calendar", "v3", credentials=creds, cache_discovery=False)

    def get_busy_intervals(self, participant_id: str, range_start: datetime, range_end: datetime) -> List[Period]:
        """
        Lists the participant's events in the range and keeps the ones they're actually attending.
        The event list is used instead of the freebusy endpoint so declined invites don't block time.

        Raises: googleapiclient.errors.HttpError if the calendar can't be read. The engine wraps it.
        """
        calendar_id = self.calendar_ids.get(participant_id, participant_id)
        busy = []
        page_token = None
        while True:
            logger.info(f"Listing events for {calendar_id} from {range_start.isoformat()} to {range_end.isoformat()}")
            response = self.service.events().list(
                calendarId=calendar_id,
                timeMin=range_start.isoformat(),
                timeMax=range_end.isoformat(),
                singleEvents=True,
                orderBy="startTime",
                pageToken=page_token,
            ).execute()
            for event in response.get("items", []):
                period = _busy_period(event, calendar_id)
                if period is not None:
                    busy.append(period)
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.info(f"Busy periods for {calendar_id}: {len(busy)}")
        return busy

    def plan_event(self, attendees: List[Dict[str, str]], event_time: Dict[str, str], meeting_name: str,
                   description: str = "", time_zone: str = "UTC") -> dict:
        """
        Creates the meeting on the business calendar with a Meet link and invites everyone.

        Input: attendee dicts ({"email": ..., "displayName": ...}), {"start": iso, "end": iso}, the title.

        Returns: the event resource Google sends back.
        """
        event = {"summary": f"{meeting_name}",
                 "description": description,
                 "start": {"dateTime": event_time["start"], "timeZone": time_zone},
                 "end": {"dateTime": event_time["end"], "timeZone": time_zone},
                 "attendees": attendees,
                 "conferenceData":
                    {"createRequest": {"requestId": f"{uuid4().hex}", "conferenceSolutionKey": {"type": "hangoutsMeet"}}},
                 "reminders": {"useDefault": True}
                 }
        try:
            event = self.service.events().insert(calendarId=self.organizer_email, sendUpdates="all", body=event,
                                                 conferenceDataVersion=1).execute()
        except HttpError as e:
            logger.error(f"Calendar event creation failed with status {e.resp.status}")
            raise
        logger.info(f"Calendar event created: {event.get('id')}")
        return event


def _parse_event_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _busy_period(event: dict, email: str) -> Optional[Period]:
    """
    Period the event blocks for *email*, or None if it doesn't block.
    """
    start = event.get("start", {}).get("dateTime")
    end = event.get("end", {}).get("dateTime")
    # Skip all-day events, they only carry a date
    if not start or not end:
        return None
    if event.get("status") == "cancelled":
        return None
    if event.get("organizer", {}).get("email") != email:
        attendee = next((a for a in event.get("attendees", []) if a.get("email") == email), None)
        # Not on the attendee list but on their calendar, so count it
        if attendee is not None and attendee.get("responseStatus") not in BLOCKING_RESPONSES:
            return None
    return Period(_parse_event_time(start), _parse_event_time(end))
