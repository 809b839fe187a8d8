from uuid import UUID
import psycopg2
from psycopg2.extras import DictCursor
from contextlib import contextmanager
from datetime import datetime
import logging
import os
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from meeting_scheduler.scheduling.business_hours import (DEFAULT_BUSINESS_HOURS, WeeklyBusinessHours, Weekday,
                                                         normalize_day)
from meeting_scheduler.scheduling.providers import BusinessHoursResolver

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

# Table name: DDL. Created in this order when missing.
SCHEMA = {
    "client_teams": """
        CREATE TABLE client_teams (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        name text NOT NULL,
        description text,
        is_active boolean DEFAULT true,
        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);""",
    "team_members": """
        CREATE TABLE team_members (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        name text NOT NULL,
        email text UNIQUE NOT NULL,
        role text NOT NULL DEFAULT '',
        google_calendar_id text,
        is_active boolean DEFAULT true,
        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);""",
    "team_member_client_teams": """
        CREATE TABLE team_member_client_teams (
        id serial PRIMARY KEY,
        team_member_id uuid NOT NULL REFERENCES team_members (id) ON DELETE CASCADE,
        client_team_id uuid NOT NULL REFERENCES client_teams (id) ON DELETE CASCADE,
        UNIQUE (team_member_id, client_team_id));""",
    "business_hours": """
        CREATE TABLE business_hours (
        id serial PRIMARY KEY,
        name text NOT NULL DEFAULT 'Default',
        timezone text NOT NULL DEFAULT 'UTC',
        {day_columns},
        is_active boolean DEFAULT true);""",
    "client_team_business_hours": """
        CREATE TABLE client_team_business_hours (
        id serial PRIMARY KEY,
        client_team_id uuid UNIQUE NOT NULL REFERENCES client_teams (id) ON DELETE CASCADE,
        timezone text NOT NULL DEFAULT 'UTC',
        {day_columns},
        is_active boolean DEFAULT true);""",
    "scheduling_window_settings": """
        CREATE TABLE scheduling_window_settings (
        id serial PRIMARY KEY,
        availability_type text NOT NULL DEFAULT 'available_now',
        start_date date,
        end_date date,
        max_advance_days integer DEFAULT 60,
        min_notice_hours integer DEFAULT 5,
        is_active boolean DEFAULT true);""",
    "meetings": """
        CREATE TABLE meetings (
        id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        title text NOT NULL,
        description text,
        start_time timestamp with time zone NOT NULL,
        end_time timestamp with time zone NOT NULL,
        google_event_id text,
        google_meet_link text,
        organizer_email text NOT NULL,
        attendee_emails text[] NOT NULL DEFAULT '{{}}',
        client_team_id uuid REFERENCES client_teams (id),
        status text NOT NULL DEFAULT 'scheduled',
        created_at timestamp with time zone DEFAULT CURRENT_TIMESTAMP NOT NULL);""",
}

DAY_COLUMNS = ",\n        ".join(f"{day.column_prefix}_start time, {day.column_prefix}_end time" for day in Weekday)


def business_hours_from_row(row) -> WeeklyBusinessHours:
    """
    Converts a business_hours / client_team_business_hours row, with its {day}_start and {day}_end
    columns, into the weekly template the engine works with. This is the only place that shape is read.

    Leniency: a day whose end is not after its start, or whose value can't be parsed, is closed and logged.
    """
    timezone = row.get("timezone") or "UTC"
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"Business hours row {row.get('id')} has unknown timezone {timezone}, using UTC")
        timezone = "UTC"
    days = {}
    for day in Weekday:
        start = row.get(f"{day.column_prefix}_start")
        end = row.get(f"{day.column_prefix}_end")
        if start is None or end is None:
            continue
        try:
            intervals = normalize_day([(start, end)])
        except (TypeError, ValueError):
            logger.warning(f"Unreadable hours for {day.name.title()} ({start!r}, {end!r}), treating as closed")
            continue
        if not intervals:
            logger.warning(f"Hours for {day.name.title()} end before they start ({start}, {end}), treating as closed")
        days[day] = intervals
    return WeeklyBusinessHours(days, timezone=timezone)


def business_hours_to_row(hours: WeeklyBusinessHours) -> dict:
    """
    Narrows a weekly template to the storage shape. The tables hold one interval per day,
    so only the first interval of each day is kept and the rest are dropped with a warning.
    """
    row = {"timezone": hours.timezone}
    for day in Weekday:
        intervals = hours.intervals_on(day)
        if len(intervals) > 1:
            logger.warning(f"Only the first of {len(intervals)} intervals on {day.name.title()} can be stored")
        start, end = intervals[0] if intervals else (None, None)
        row[f"{day.column_prefix}_start"] = start
        row[f"{day.column_prefix}_end"] = end
    return row


class DatabasePersistence:
    def __init__(self):
        self._setup_schema()

    @contextmanager
    def _database_connect(self):
        """
        Internal function to manage the Postgres database connections.
        Must include environment variable for database url path when deploying to production.
        """
        if os.environ.get('FLASK_ENV') == 'production':
            connection = psycopg2.connect(os.environ['DATABASE_URL'])
        else:
            connection = psycopg2.connect(dbname=os.environ.get('DATABASE_NAME', 'meeting_scheduler'))
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def _fetch_one(self, query: str, params=()):
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, params)
                return cursor.fetchone()

    def retrieve_client_team(self, team_id: str):
        query = "SELECT id, name, description FROM client_teams WHERE id = %s AND is_active = TRUE"
        return self._fetch_one(query, (team_id,))

    def retrieve_team_members(self, team_id: str) -> List:
        """
        Active members of a client team. Each row has id, name, email, role and calendar_id
        (the member's google_calendar_id, falling back to their email).
        """
        query = """SELECT team_members.id, name, email, role, COALESCE(google_calendar_id, email) AS calendar_id
                   FROM team_members
                   JOIN team_member_client_teams ON team_member_id = team_members.id
                   WHERE client_team_id = %s AND team_members.is_active = TRUE
                   ORDER BY name"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cursor:
                cursor.execute(query, (team_id,))
                return cursor.fetchall()

    def retrieve_team_business_hours_row(self, team_id: str):
        query = "SELECT * FROM client_team_business_hours WHERE client_team_id = %s AND is_active = TRUE"
        return self._fetch_one(query, (team_id,))

    def retrieve_global_business_hours_row(self):
        query = "SELECT * FROM business_hours WHERE is_active = TRUE ORDER BY id LIMIT 1"
        return self._fetch_one(query)

    def retrieve_scheduling_window_settings(self):
        query = "SELECT * FROM scheduling_window_settings WHERE is_active = TRUE ORDER BY id LIMIT 1"
        return self._fetch_one(query)

    def save_team_business_hours(self, team_id: str, hours: WeeklyBusinessHours) -> bool:
        """
        Inserts or replaces a team's business hours override. Returns True if the write went through.
        """
        row = business_hours_to_row(hours)
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in row)
        query = f"""INSERT INTO client_team_business_hours (client_team_id, {columns}, is_active)
                    VALUES (%s, {placeholders}, TRUE)
                    ON CONFLICT (client_team_id) DO UPDATE SET {updates}, is_active = TRUE"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(query, (team_id, *row.values()))
                except psycopg2.DatabaseError as e:
                    logger.error(f"Business hours insertion failed: {e.args}")
                    return False
        return True

    def insert_meeting(self, title: str, start: datetime, end: datetime, organizer_email: str,
                       attendee_emails: Iterable[str], client_team_id: Optional[str] = None,
                       google_event_id: Optional[str] = None, google_meet_link: Optional[str] = None,
                       description: str = "") -> Optional[UUID]:
        """
        Records a confirmed meeting. Returns the new meeting id, or None if the insert failed.
        """
        query = """INSERT INTO meetings (title, description, start_time, end_time, google_event_id, google_meet_link,
                                         organizer_email, attendee_emails, client_team_id, status)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'scheduled') RETURNING id"""
        logger.info("Executing query: %s", query)
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SET TIME ZONE 'UTC'")
                try:
                    cursor.execute(query, (title, description, start, end, google_event_id, google_meet_link,
                                           organizer_email, list(attendee_emails), client_team_id))
                    meeting_id = cursor.fetchone()[0]
                except psycopg2.DatabaseError as e:
                    logger.error(f"Meeting insertion failed: {e.args}")
                    return None
        return meeting_id

    def _setup_schema(self):
        """
        Internal function to set-up the database schema if the tables do not exist. Primarily used when being deployed in production.
        """
        with self._database_connect() as conn:
            with conn.cursor() as cursor:
                for table_name, ddl in SCHEMA.items():
                    cursor.execute("""
                        SELECT COUNT(*)
                        FROM information_schema.tables
                        WHERE table_schema = 'public' AND table_name = %s;
                    """, (table_name,))
                    if cursor.fetchone()[0] == 0:
                        logger.info(f"Setting up table {table_name}.")
                        cursor.execute(ddl.format(day_columns=DAY_COLUMNS))


class DatabaseBusinessHoursResolver(BusinessHoursResolver):
    """
    Business hours for every member of one client team: the team's override if it has an active one,
    otherwise the global hours, otherwise the built-in default. Loaded once per resolver.
    """

    def __init__(self, db, team_id: str):
        self.team_id = team_id
        self.template = self._load(db, team_id)

    @staticmethod
    def _load(db, team_id) -> WeeklyBusinessHours:
        row = db.retrieve_team_business_hours_row(team_id)
        if row:
            return business_hours_from_row(row)
        row = db.retrieve_global_business_hours_row()
        if row:
            return business_hours_from_row(row)
        logger.info(f"No business hours configured for team {team_id}, using the default")
        return DEFAULT_BUSINESS_HOURS

    @property
    def timezone(self) -> str:
        return self.template.timezone

    def get_hours_for_date(self, participant_id, day):
        return self.template.hours_for(day)
