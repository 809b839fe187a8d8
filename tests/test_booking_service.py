import os
import threading
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from threading import Barrier
from unittest.mock import MagicMock, patch

from googleapiclient.errors import HttpError

from meeting_scheduler.booking import booking_service
from meeting_scheduler.booking.booking_service import BookingService
from meeting_scheduler.scheduling.engine import AvailabilityEngine
from meeting_scheduler.scheduling.models import Participant, SchedulingWindow, SlotQuery
from meeting_scheduler.scheduling.period import Period
from meeting_scheduler.scheduling.providers import StaticBusinessHoursResolver

EMAIL = "sam@acme-consulting.com"
RANGE_START = datetime(2025, 6, 2, tzinfo=timezone.utc)
RANGE_END = datetime(2025, 6, 3, tzinfo=timezone.utc)


def event(start, end, **extra):
    item = {"start": {"dateTime": start}, "end": {"dateTime": end}, "status": "confirmed"}
    item.update(extra)
    return item


def utc(hour, minute=0):
    return datetime(2025, 6, 2, hour, minute, tzinfo=timezone.utc)


class BookingServiceTest(unittest.TestCase):
    def setUp(self):
        self.google = MagicMock()
        self.service = BookingService(service=self.google, organizer_email="ops@acme-consulting.com",
                                      calendar_ids={"member-1": EMAIL})

    def list_returns(self, *pages):
        self.google.events.return_value.list.return_value.execute.side_effect = list(pages)

    def test_busy_periods_from_events(self):
        self.list_returns({"items": [event("2025-06-02T09:00:00Z", "2025-06-02T10:00:00Z"),
                                     event("2025-06-02T14:00:00+02:00", "2025-06-02T15:30:00+02:00")]})
        busy = self.service.get_busy_intervals("member-1", RANGE_START, RANGE_END)
        self.assertEqual(busy, [Period(utc(9), utc(10)), Period(utc(12), utc(13, 30))])
        kwargs = self.google.events.return_value.list.call_args.kwargs
        self.assertEqual(kwargs["calendarId"], EMAIL)
        self.assertEqual(kwargs["timeMin"], RANGE_START.isoformat())
        self.assertTrue(kwargs["singleEvents"])

    def test_follows_pages(self):
        self.list_returns({"items": [event("2025-06-02T09:00:00Z", "2025-06-02T10:00:00Z")], "nextPageToken": "p2"},
                          {"items": [event("2025-06-02T11:00:00Z", "2025-06-02T12:00:00Z")]})
        busy = self.service.get_busy_intervals("member-1", RANGE_START, RANGE_END)
        self.assertEqual(len(busy), 2)
        self.assertEqual(self.google.events.return_value.list.call_args.kwargs["pageToken"], "p2")

    def test_events_that_do_not_block(self):
        self.list_returns({"items": [
            {"start": {"date": "2025-06-02"}, "end": {"date": "2025-06-03"}},
            event("2025-06-02T09:00:00Z", "2025-06-02T10:00:00Z", status="cancelled"),
            event("2025-06-02T10:00:00Z", "2025-06-02T11:00:00Z",
                  attendees=[{"email": EMAIL, "responseStatus": "declined"}]),
            event("2025-06-02T11:00:00Z", "2025-06-02T12:00:00Z",
                  attendees=[{"email": EMAIL, "responseStatus": "needsAction"}]),
        ]})
        self.assertEqual(self.service.get_busy_intervals("member-1", RANGE_START, RANGE_END), [])

    def test_events_that_block(self):
        self.list_returns({"items": [
            event("2025-06-02T09:00:00Z", "2025-06-02T10:00:00Z",
                  attendees=[{"email": EMAIL, "responseStatus": "tentative"}]),
            event("2025-06-02T10:00:00Z", "2025-06-02T11:00:00Z", organizer={"email": EMAIL},
                  attendees=[{"email": EMAIL, "responseStatus": "declined"}]),
            event("2025-06-02T11:00:00Z", "2025-06-02T12:00:00Z"),
        ]})
        busy = self.service.get_busy_intervals("member-1", RANGE_START, RANGE_END)
        self.assertEqual(busy, [Period(utc(9), utc(10)), Period(utc(10), utc(11)), Period(utc(11), utc(12))])

    def test_unknown_participant_used_as_calendar_id(self):
        self.list_returns({"items": []})
        self.service.get_busy_intervals("kim@acme-consulting.com", RANGE_START, RANGE_END)
        self.assertEqual(self.google.events.return_value.list.call_args.kwargs["calendarId"],
                         "kim@acme-consulting.com")

    def test_plan_event(self):
        insert = self.google.events.return_value.insert
        insert.return_value.execute.return_value = {"id": "evt-1", "hangoutLink": "https://meet.google.com/abc"}
        attendees = [{"email": EMAIL, "displayName": "Sam"}]
        created = self.service.plan_event(attendees, {"start": utc(9).isoformat(), "end": utc(10).isoformat()},
                                          "Kickoff", description="Agenda", time_zone="Europe/Paris")
        self.assertEqual(created["id"], "evt-1")
        kwargs = insert.call_args.kwargs
        self.assertEqual(kwargs["calendarId"], "ops@acme-consulting.com")
        self.assertEqual(kwargs["sendUpdates"], "all")
        self.assertEqual(kwargs["conferenceDataVersion"], 1)
        self.assertEqual(kwargs["body"]["attendees"], attendees)
        self.assertEqual(kwargs["body"]["start"], {"dateTime": utc(9).isoformat(), "timeZone": "Europe/Paris"})

    def test_plan_event_error_propagates(self):
        response = MagicMock(status=403)
        insert = self.google.events.return_value.insert
        insert.return_value.execute.side_effect = HttpError(response, b'{"error": {"code": 403, "message": "forbidden"}}')
        with self.assertRaises(HttpError):
            self.service.plan_event([], {"start": utc(9).isoformat(), "end": utc(10).isoformat()}, "Kickoff")

    def test_local_key_found_next_to_module(self):
        with patch.dict(os.environ):
            os.environ.pop("SERVICE_ACCOUNT_FILE", None)
            self.assertEqual(BookingService._find_api_key(),
                             Path(booking_service.__file__).parent / "service-account.json")

    def test_key_from_environment(self):
        with patch.dict(os.environ, {"SERVICE_ACCOUNT_FILE": "/run/secrets/calendar.json"}):
            self.assertEqual(BookingService._find_api_key(), "/run/secrets/calendar.json")


class ThreadedFetchTest(unittest.TestCase):

    def client_factory(self, built, on_list=None):
        def build_client():
            client = MagicMock()

            def execute():
                if on_list is not None:
                    on_list()
                return {"items": []}

            client.events.return_value.list.return_value.execute.side_effect = execute
            built.append((threading.get_ident(), client))
            return client
        return build_client

    def test_one_client_per_thread(self):
        built = []
        calendar = BookingService(organizer_email="ops@acme-consulting.com", service_factory=self.client_factory(built))
        calendar.get_busy_intervals(EMAIL, RANGE_START, RANGE_END)
        calendar.get_busy_intervals("kim@acme-consulting.com", RANGE_START, RANGE_END)
        self.assertEqual(len(built), 1)
        self.assertEqual(built[0][1].events.return_value.list.call_count, 2)

    def test_engine_fan_out_never_shares_a_client(self):
        built = []
        # Both fetches must be in flight at once to get past the barrier
        both_fetching = Barrier(2, timeout=2)
        calendar = BookingService(organizer_email="ops@acme-consulting.com",
                                  calendar_ids={"m1": EMAIL, "m2": "kim@acme-consulting.com"},
                                  service_factory=self.client_factory(built, on_list=both_fetching.wait))
        engine = AvailabilityEngine(calendar, StaticBusinessHoursResolver(),
                                    clock=lambda: datetime(2025, 6, 1, 8, tzinfo=timezone.utc), max_workers=2)
        query = SlotQuery(required=(Participant("m1"), Participant("m2")), duration=timedelta(minutes=30))
        window = SchedulingWindow(min_notice=timedelta(0), max_advance=timedelta(days=14))

        slots = engine.find_available_slots(query, date(2025, 6, 2), window)

        self.assertEqual(slots[0], utc(9))
        self.assertEqual(len(built), 2)
        self.assertNotEqual(built[0][0], built[1][0])
        for _, client in built:
            self.assertEqual(client.events.return_value.list.call_count, 1)


if __name__ == '__main__':
    unittest.main()
