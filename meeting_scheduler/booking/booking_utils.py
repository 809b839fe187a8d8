# Utility functions for booking request handling
import re
from datetime import date, datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from email_validator import validate_email, EmailNotValidError

from meeting_scheduler.scheduling.error_utils import InputError

# Longest meeting a guest can ask for
MAX_DURATION_MINUTES = 8 * 60
# 254 characters is a common maximum for email addresses by RFC 5321 / 5322 standards
MAX_EMAIL_LENGTH = 254
MAX_GUESTS = 20


def parse_minutes(raw, *, field: str = "duration", default: Optional[int] = None) -> timedelta:
    """
    Parses a positive whole number of minutes from a query arg or JSON value.

    Returns: timedelta of that many minutes.
    """
    if raw is None or raw == "":
        if default is None:
            raise InputError(f"{field} is required")
        raw = default
    try:
        minutes = int(raw)
    except (TypeError, ValueError):
        raise InputError(f"{field} must be a whole number of minutes") from None
    if minutes <= 0 or minutes > MAX_DURATION_MINUTES:
        raise InputError(f"{field} must be between 1 and {MAX_DURATION_MINUTES} minutes")
    return timedelta(minutes=minutes)


def parse_id_list(raw) -> List[str]:
    """
    Accepts "a,b,c" from a query string or a JSON list. Blank entries and repeats are dropped, order kept.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        raise InputError("Member ids must be a list")
    return list(dict.fromkeys(str(item).strip() for item in raw if str(item).strip()))


def parse_iso_date(raw) -> date:
    if not raw:
        raise InputError("date is required")
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        raise InputError(f"date must be YYYY-MM-DD, got {raw!r}") from None


def parse_timezone(raw) -> str:
    timezone = raw or "UTC"
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise InputError(f"Unknown timezone: {timezone}") from None
    return timezone


def parse_slot_start(raw) -> datetime:
    """
    Parses an ISO slot start. The value must carry an offset, a naive time would be ambiguous.
    """
    if not raw:
        raise InputError("start is required")
    try:
        start = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        raise InputError(f"start must be an ISO datetime, got {raw!r}") from None
    if start.tzinfo is None:
        raise InputError("start must include a UTC offset")
    return start


def sanitize_email(email) -> str:
    """
    Trims, length checks and normalizes an email address.
    Raises InputError instead of returning it if it's not deliverable-looking.
    """
    # Step 1: Remove leading and trailing whitespace.
    email = (email or "").strip()

    # Step 2: Enforce a maximum allowed length to prevent oversized input.
    if not email or len(email) > MAX_EMAIL_LENGTH:
        raise InputError("Email is missing or too long")

    # Step 3: Preliminary regex check for allowed characters and basic structure.
    allowed_pattern = re.compile(
        r'^[A-Za-z0-9.!#$%&\'*+/=?^_`{|}~-]+'
        r'@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*'
        r'\.[A-Za-z]{2,}$'
    )
    if not allowed_pattern.fullmatch(email):
        raise InputError(f"Email contains disallowed characters or is not formatted correctly: {email}")

    # Step 4: Use the email_validator library to parse, validate, and normalize the email address.
    # Deliverability means a DNS lookup, which is the calendar's job when it sends the invite.
    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise InputError(f"Invalid email format: {e}") from None
    return valid.normalized


def sanitize_guest_emails(emails) -> List[str]:
    if emails is None:
        return []
    if not isinstance(emails, (list, tuple)):
        raise InputError("guest_emails must be a list")
    if len(emails) > MAX_GUESTS:
        raise InputError(f"At most {MAX_GUESTS} guests can be invited")
    return [sanitize_email(email) for email in emails]
