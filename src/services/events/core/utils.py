# Utility functions for the event series engine
# ID generation, occurrence addressing, datetime handling

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from dateutil import parser as date_parser


# ============================================================================
# ID GENERATION
# ============================================================================


def generate_event_id() -> str:
    """Generate a new event ID (UUID v4, never contains an underscore)."""
    return str(uuid.uuid4())


def generate_instance_id() -> str:
    """Generate a primary key for an override row."""
    return str(uuid.uuid4())


# ============================================================================
# OCCURRENCE ADDRESSING
# ============================================================================


def format_instance_id(event_id: str, instance_date: date) -> str:
    """
    Build the stable occurrence ID for one date of a series.

    Format: {event_id}_{YYYY-MM-DD}
    """
    return f"{event_id}_{format_date(instance_date)}"


def parse_instance_id(value: str) -> tuple[str, Optional[date]]:
    """
    Split an occurrence ID into (event_id, instance_date).

    Plain event IDs come back as (value, None). Only a trailing segment
    that parses as an ISO date is treated as an occurrence suffix.
    """
    base_id, sep, suffix = value.rpartition("_")
    if not sep or not base_id:
        return value, None
    try:
        return base_id, parse_date(suffix)
    except ValueError:
        return value, None


# ============================================================================
# DATETIME HANDLING
# ============================================================================


def calendar_now() -> datetime:
    """Current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values (e.g. read back from SQLite) are assumed to be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: datetime) -> datetime:
    """Convert to naive UTC for the DateTime columns."""
    return ensure_utc(dt).replace(tzinfo=None)


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC3339/ISO-8601 timestamp into aware UTC.

    Supports:
    - Full datetime: 2024-01-15T10:30:00Z
    - With offset: 2024-01-15T10:30:00-05:00
    - Date only: 2024-01-15 (midnight UTC)
    """
    return ensure_utc(date_parser.isoparse(value))


def format_rfc3339(dt: datetime) -> str:
    """Format a datetime as RFC3339 string in UTC with a Z suffix."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def format_date(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return value.strftime("%Y-%m-%d")


def coerce_date(value: date | datetime | str) -> date:
    """Accept a date, a datetime or an ISO string and return the UTC date."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    try:
        return parse_date(value)
    except ValueError:
        return parse_rfc3339(value).date()


def coerce_datetime(value: datetime | str) -> datetime:
    """Accept a datetime or an RFC3339 string and return aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return parse_rfc3339(value)


def start_of_day(value: date) -> datetime:
    """Midnight UTC at the start of a date."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def end_of_day(value: date) -> datetime:
    """Last whole second of a date in UTC."""
    return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)


def shift_to_date(
    series_start: datetime,
    series_end: datetime,
    instance_date: date,
) -> tuple[datetime, datetime]:
    """
    Move a series' start/end onto another date.

    Keeps the start's UTC time-of-day and the series duration.
    """
    series_start = ensure_utc(series_start)
    duration = ensure_utc(series_end) - series_start
    start = datetime.combine(instance_date, series_start.timetz())
    return start, start + duration


def intervals_overlap(
    start: datetime,
    end: datetime,
    range_start: datetime,
    range_end: datetime,
) -> bool:
    """Closed-interval intersection test."""
    return ensure_utc(start) <= ensure_utc(range_end) and ensure_utc(
        end
    ) >= ensure_utc(range_start)


def yesterday(now: datetime) -> date:
    """The UTC date before `now`."""
    return ensure_utc(now).date() - timedelta(days=1)
