"""
Eligibility rules for guest engagement SMS.

Everything here is pure: callers pass in the rows and the reference time, and
get back a template key, a tier or a yes/no. All datetimes are naive UTC.
"""

import datetime as dt
from datetime import datetime, timedelta

from guest_engagement.core.datetime_utils import VENUE_TIMEZONE, local_to_naive_utc, next_local_morning
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking
from guest_engagement.models.customer import Customer
from guest_engagement.models.event import Event

TEMPLATE_REMINDER_7D = "event_reminder_7d"
TEMPLATE_REMINDER_1D = "event_reminder_1d"
TEMPLATE_REVIEW_FOLLOWUP = "event_review_followup"
TEMPLATE_TABLE_REVIEW_FOLLOWUP = "table_review_followup"
TEMPLATE_INTEREST_MARKETING_14D = "event_interest_marketing_14d"

MARKETING_TIERS = ("14d", "7d", "1d")
_TIER_LEAD = {
    "14d": timedelta(days=14),
    "7d": timedelta(days=7),
    "1d": timedelta(days=1),
}


def interest_reminder_template(tier: str) -> str:
    """Template key for a manual interest reminder tier, e.g. ``event_interest_reminder_7d``."""
    return f"event_interest_reminder_{tier}"


# Every template this job sends; the send guard counts these
ENGAGEMENT_TEMPLATE_KEYS = (
    TEMPLATE_REMINDER_7D,
    TEMPLATE_REMINDER_1D,
    TEMPLATE_REVIEW_FOLLOWUP,
    TEMPLATE_TABLE_REVIEW_FOLLOWUP,
    TEMPLATE_INTEREST_MARKETING_14D,
    *(interest_reminder_template(tier) for tier in MARKETING_TIERS),
)


def resolve_start(
    start_datetime: datetime | None,
    date: dt.date | None,
    time: dt.time | None,
    timezone: str = VENUE_TIMEZONE,
) -> datetime | None:
    """Start instant from either a UTC datetime or a venue-local date + time pair."""
    if start_datetime is not None:
        return start_datetime
    if date is not None and time is not None:
        return local_to_naive_utc(date, time, timezone)
    return None


def resolve_event_start(event: Event | None, timezone: str = VENUE_TIMEZONE) -> datetime | None:
    if event is None:
        return None
    return resolve_start(event.start_datetime, event.date, event.time, timezone)


def next_morning_nine(start: datetime, hour: int = 9, timezone: str = VENUE_TIMEZONE) -> datetime:
    """When an event review becomes due: the morning after the local event date."""
    return next_local_morning(start, hour=hour, timezone=timezone)


def is_reachable(customer: Customer | None) -> bool:
    return customer is not None and customer.can_receive_sms


def resolve_reminder_template(start: datetime, now: datetime) -> str | None:
    """At most one reminder applies at a time; the 1-day reminder wins inside its window."""
    if now >= start - timedelta(days=1):
        return TEMPLATE_REMINDER_1D
    if now >= start - timedelta(days=7):
        return TEMPLATE_REMINDER_7D
    return None


def reminder_skip_reason(
    booking: EventBooking,
    start: datetime | None,
    now: datetime,
    real_bookings: set[tuple[str, str]],
) -> str | None:
    """Why a booking gets no reminder at all, before looking at timing.

    ``real_bookings`` holds (customer_id, event_id) pairs of non-reminder-only
    bookings that hold a place.
    """
    if not is_reachable(booking.customer):
        return "unreachable"
    if booking.event is None or start is None:
        return "no_event_start"
    if booking.event.is_inactive:
        return "event_inactive"
    if start <= now:
        return "event_started"
    if booking.is_reminder_only and (booking.customer_id, booking.event_id) in real_bookings:
        return "duplicate_of_real_booking"
    return None


def is_event_review_due(
    booking: EventBooking,
    start: datetime | None,
    now: datetime,
    lookback_days: int = 14,
    send_hour: int = 9,
    timezone: str = VENUE_TIMEZONE,
) -> bool:
    if booking.status != BookingStatus.CONFIRMED or booking.is_reminder_only:
        return False
    if booking.review_sms_sent_at is not None or start is None:
        return False
    if start > now or start < now - timedelta(days=lookback_days):
        return False
    return now >= next_morning_nine(start, hour=send_hour, timezone=timezone)


def is_table_review_due(
    booking: TableBooking,
    now: datetime,
    lookback_days: int = 7,
    delay_hours: int = 4,
) -> bool:
    start = booking.start_datetime
    if booking.status != BookingStatus.CONFIRMED or booking.review_sms_sent_at is not None:
        return False
    if start is None or start > now or start < now - timedelta(days=lookback_days):
        return False
    return now >= start + timedelta(hours=delay_hours)


def resolve_marketing_tier(start: datetime, now: datetime) -> str | None:
    """Closest tier whose lead time has been reached, or None if none has."""
    for tier in reversed(MARKETING_TIERS):
        if now >= start - _TIER_LEAD[tier]:
            return tier
    return None


def is_marketing_event(event: Event, start: datetime | None, now: datetime) -> bool:
    """Open, active, upcoming events inside the 14-day marketing horizon."""
    if not event.booking_open or event.is_inactive or start is None:
        return False
    return start > now and now >= start - _TIER_LEAD["14d"]
