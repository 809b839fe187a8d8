from datetime import timedelta
import logging
import os
import secrets
from functools import wraps
from flask import Flask, request, g, jsonify, current_app, abort
from flask_debugtoolbar import DebugToolbarExtension
from googleapiclient.errors import HttpError
from werkzeug.exceptions import HTTPException
from meeting_scheduler.booking import database, booking_service
from meeting_scheduler.booking import booking_utils as util
from meeting_scheduler.scheduling.engine import AvailabilityEngine
from meeting_scheduler.scheduling.error_utils import CollaboratorFailure, InputError
from meeting_scheduler.scheduling.models import Participant, SchedulingWindow, SlotQuery
from meeting_scheduler.scheduling.session import BookingSession, reduce_session
logger = logging.getLogger(__name__)


def create_app():
    app = Flask(__name__)
    app.secret_key = secrets.token_hex(32) #256 bit
    app.config['SECRET_KEY'] = app.secret_key
    # Collaborator factories, swapped out by the tests
    app.config['DATABASE_FACTORY'] = database.DatabasePersistence
    app.config['CALENDAR_FACTORY'] = booking_service.BookingService
    app.config['CLOCK'] = None
    app.config['FETCH_WORKERS'] = int(os.environ.get('FETCH_WORKERS', 4))
    if not os.environ.get('FLASK_ENV') == 'production':
        app.config["DEBUG_TB_INTERCEPT_REDIRECTS"] = False  # Prevents redirect issues
    return app

app = create_app()


# Use decorator to create g.db instance within request context window for functions that require it to conserve resources and prevent N +1 instances
def instantiate_database(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.db = current_app.config['DATABASE_FACTORY']()
        return f(*args, **kwargs)
    return decorated_function


class TeamContext:
    """
    What one request needs to know about a client team: its members, business hours and booking window.
    """

    def __init__(self, db, team_id: str):
        self.team = db.retrieve_client_team(team_id)
        if self.team is None:
            abort(404, description=f"Unknown team {team_id}")
        self.team_id = team_id
        self.members = {str(row['id']): row for row in db.retrieve_team_members(team_id)}
        self.hours = database.DatabaseBusinessHoursResolver(db, team_id)
        self.window = SchedulingWindow.from_settings_row(db.retrieve_scheduling_window_settings())

    def participants(self, member_ids):
        unknown = [member_id for member_id in member_ids if member_id not in self.members]
        if unknown:
            raise InputError(f"Not members of this team: {', '.join(unknown)}")
        return {member_id: Participant(member_id, timezone=self.hours.timezone, name=self.members[member_id]['name'])
                for member_id in member_ids}

    def calendar(self):
        calendar_ids = {member_id: row['calendar_id'] for member_id, row in self.members.items()}
        return current_app.config['CALENDAR_FACTORY'](calendar_ids=calendar_ids)

    def engine(self, calendar):
        options = {"max_workers": current_app.config['FETCH_WORKERS']}
        if current_app.config['CLOCK'] is not None:
            options["clock"] = current_app.config['CLOCK']
        return AvailabilityEngine(calendar, self.hours, **options)


def build_query(args, context: TeamContext) -> SlotQuery:
    """
    Slot query from GET args. This endpoint refuses an empty required list even though the engine
    would just answer with nothing, since the booking page always needs at least one host.
    """
    required = util.parse_id_list(args.get('required'))
    if not required:
        raise InputError("At least one required team member must be selected")
    optional = util.parse_id_list(args.get('optional'))
    duration = util.parse_minutes(args.get('duration'))
    granularity = util.parse_minutes(args.get('granularity'), field="granularity",
                                     default=int(duration.total_seconds() // 60))
    participants = context.participants(required + optional)
    return SlotQuery(
        required=tuple(participants[member_id] for member_id in required),
        optional=tuple(participants[member_id] for member_id in optional),
        duration=duration,
        granularity=granularity,
        timezone=util.parse_timezone(args.get('timezone')),
    )


@app.route("/health")
def health():
    return jsonify({"status": "ok"})


@app.route("/api/teams/<team_id>/available-dates", methods=["GET"])
@instantiate_database
def available_dates(team_id):
    context = TeamContext(g.db, team_id)
    query = build_query(request.args, context)
    dates = context.engine(context.calendar()).find_available_dates(query, context.window)
    return jsonify({"team_id": team_id, "timezone": query.timezone, "dates": [day.isoformat() for day in dates]})


@app.route("/api/teams/<team_id>/available-slots", methods=["GET"])
@instantiate_database
def available_slots(team_id):
    context = TeamContext(g.db, team_id)
    query = build_query(request.args, context)
    day = util.parse_iso_date(request.args.get('date'))
    slots = context.engine(context.calendar()).annotate_slots(query, day, context.window)
    return jsonify({"team_id": team_id, "date": day.isoformat(), "timezone": query.timezone,
                    "slots": [slot.to_json() for slot in slots]})


def session_from_payload(payload) -> BookingSession:
    """
    Walks the booking wizard with everything the guest submitted, so the same step rules apply
    whether the page sends choices one at a time or all at once.
    """
    session = BookingSession()
    session = reduce_session(session, "select_duration", minutes=payload.get('duration'))
    session = reduce_session(session, "next")
    session = reduce_session(session, "select_team", required=util.parse_id_list(payload.get('required')),
                             optional=util.parse_id_list(payload.get('optional')))
    session = reduce_session(session, "next")
    session = reduce_session(session, "select_date", day=util.parse_iso_date(payload.get('date')))
    session = reduce_session(session, "select_time", start=util.parse_slot_start(payload.get('start')))
    session = reduce_session(session, "next")
    session = reduce_session(session, "set_booker", name=payload.get('booker_name'),
                             email=util.sanitize_email(payload.get('booker_email')))
    session = reduce_session(session, "next")
    for guest in util.sanitize_guest_emails(payload.get('guest_emails')):
        session = reduce_session(session, "add_guest", email=guest)
    return reduce_session(session, "next")


@app.route("/api/teams/<team_id>/bookings", methods=["POST"])
@instantiate_database
def create_booking(team_id):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InputError("Booking request must be a JSON object")
    context = TeamContext(g.db, team_id)
    session = session_from_payload(payload)
    timezone = util.parse_timezone(payload.get('timezone'))
    query = session.to_query(context.participants(session.required_ids + session.optional_ids), timezone=timezone)

    calendar = context.calendar()
    # Re-check against live calendars, the slot may have been taken since the page loaded
    available = context.engine(calendar).find_available_slots(query, session.selected_date, context.window)
    if session.selected_time not in available:
        logger.info(f"Slot {session.selected_time.isoformat()} no longer available for team {team_id}")
        return jsonify({"error": "That time is no longer available. Please pick another slot."}), 409

    start = session.selected_time
    end = start + timedelta(minutes=session.duration_minutes)
    members = [context.members[member_id] for member_id in session.required_ids + session.optional_ids]
    attendees = [{"email": member['email'], "displayName": member['name']} for member in members]
    attendees.append({"email": session.booker_email, "displayName": session.booker_name})
    attendees.extend({"email": guest} for guest in session.guest_emails)

    title = (payload.get('title') or f"{context.team['name']} meeting with {session.booker_name}").strip()
    description = (payload.get('description') or "").strip()
    # Raises HttpError, handled below
    event = calendar.plan_event(attendees, {"start": start.isoformat(), "end": end.isoformat()}, title,
                                description=description, time_zone=timezone)

    meeting_id = g.db.insert_meeting(title, start, end, calendar.organizer_email,
                                     [attendee['email'] for attendee in attendees],
                                     client_team_id=team_id, google_event_id=event.get('id'),
                                     google_meet_link=event.get('hangoutLink'), description=description)
    if meeting_id is None:
        # The invite is already out, so don't fail the booking. Needs manual reconciliation.
        logger.error(f"Meeting record insertion failed for calendar event {event.get('id')}")
    else:
        logger.info("Booking submitted.")
    return jsonify({
        "meeting_id": str(meeting_id) if meeting_id else None,
        # False means the invite went out but the meeting record is missing
        "recorded": meeting_id is not None,
        "event_id": event.get('id'),
        "meet_link": event.get('hangoutLink'),
        "start": start.isoformat(),
        "end": end.isoformat(),
        "attendees": [attendee['email'] for attendee in attendees],
    }), 201


@app.errorhandler(InputError)
def handle_input_error(error):
    return jsonify({"error": str(error)}), 400


@app.errorhandler(CollaboratorFailure)
def handle_collaborator_failure(error):
    logger.error(f"Availability lookup failed: {error}")
    return jsonify({"error": "Calendar availability could not be loaded. Please re-try.",
                    "participant": error.participant_id}), 502


# Handle in invalid googleapiclient response which raises a custom HttpError
@app.errorhandler(HttpError)
def handle_bad_api_call(error):
    logger.error(f"Google Calendar call failed: {error}")
    return jsonify({"error": "An error occurred while booking your calendar appointment. Please re-try."}), 502


@app.errorhandler(HTTPException)
def handle_http_exception(error):
    return jsonify({"error": error.description}), error.code


if __name__ == '__main__':
    # production
    if os.environ.get('FLASK_ENV') == 'production':
       app.run(debug=False)
    else:
       app.debug = True
       toolbar = DebugToolbarExtension(app)
       app.run(debug=True, port=5003)
