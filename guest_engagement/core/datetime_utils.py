"""Centralized datetime utilities for consistent timezone handling.

All database columns hold naive UTC datetimes. Venue-local reasoning (event
dates entered as a date + time pair, "9am the next morning", run-key buckets)
goes through the helpers here so that the conversion lives in one place.

Usage:
    from guest_engagement.core.datetime_utils import utc_now, local_to_naive_utc

    now = utc_now()
    start = local_to_naive_utc(date(2025, 3, 10), time(19, 0), "Europe/London")
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

VENUE_TIMEZONE = "Europe/London"


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(hours: int = 0, days: int = 0, minutes: int = 0, now: datetime | None = None) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now
        minutes: Minutes to subtract from now
        now: Reference time (naive UTC), defaults to the current time

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days, minutes=minutes)
    return (now or utc_now()) - delta


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def to_local(dt: datetime, timezone: str = VENUE_TIMEZONE) -> datetime:
    """Convert a naive UTC datetime to an aware datetime in the given timezone."""
    return dt.replace(tzinfo=UTC).astimezone(ZoneInfo(timezone))


def local_to_naive_utc(day: date, at: time, timezone: str = VENUE_TIMEZONE) -> datetime:
    """Interpret a wall-clock date and time in ``timezone`` and return naive UTC.

    Nonexistent local times (inside a spring-forward gap) resolve with
    ``fold=0`` semantics, which is what ``zoneinfo`` does by default.
    """
    local = datetime.combine(day, at.replace(tzinfo=None), tzinfo=ZoneInfo(timezone))
    return to_naive_utc(local)


def next_local_morning(dt: datetime, hour: int = 9, timezone: str = VENUE_TIMEZONE) -> datetime:
    """Return ``hour``:00 local time on the day after ``dt``'s local date, as naive UTC.

    Args:
        dt: Naive UTC datetime (typically an event start)
        hour: Local hour of the following morning
        timezone: IANA timezone used to decide what "next morning" means
    """
    local_day = to_local(dt, timezone).date()
    return local_to_naive_utc(local_day + timedelta(days=1), time(hour=hour), timezone)


def bucket_run_key(now: datetime, interval_minutes: int = 15, timezone: str = VENUE_TIMEZONE) -> str:
    """Format ``now`` as a run key bucketed to ``interval_minutes`` in ``timezone``.

    Two triggers inside the same bucket produce the same key, e.g.
    ``2025-03-09T19:00`` for any time between 19:00 and 19:14 London time.
    The second pass through a repeated autumn hour carries its UTC offset,
    e.g. ``2025-10-26T01:30+0000``, so it never reuses the first pass's keys.
    """
    local = to_local(to_naive_utc(now), timezone)
    bucket_minute = (local.minute // interval_minutes) * interval_minutes
    key = f"{local:%Y-%m-%dT%H}:{bucket_minute:02d}"
    if local.fold:
        key += f"{local:%z}"
    return key


def format_event_datetime(dt: datetime, timezone: str = VENUE_TIMEZONE) -> str:
    """Human-friendly local date and time for SMS copy, e.g. ``Mon 10 Mar, 7:00pm``."""
    local = to_local(dt, timezone)
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%a} {local.day} {local:%b}, {hour}:{local.minute:02d}{meridiem}"
