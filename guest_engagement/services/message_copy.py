"""SMS bodies sent by the engagement job."""

from datetime import datetime

from guest_engagement.config import get_config
from guest_engagement.core.datetime_utils import format_event_datetime
from guest_engagement.services.eligibility import TEMPLATE_REMINDER_1D

_TIER_PHRASES = {
    "14d": "is coming up in two weeks",
    "7d": "is next week",
    "1d": "is tomorrow",
}


def _greeting(first_name: str | None) -> str:
    engagement = get_config().engagement
    return f"{engagement.venue_name}: Hi {first_name or 'there'},"


def ensure_reply_instruction(body: str, support_phone: str | None) -> str:
    """Append the help line unless the body already carries the support number."""
    if not support_phone or support_phone in body:
        return body
    return f"{body} Questions? Call {support_phone}."


def reminder_body(
    template_key: str,
    first_name: str | None,
    event_name: str,
    start: datetime,
    manage_link: str | None,
    support_phone: str | None,
) -> str:
    when = format_event_datetime(start, get_config().engagement.timezone)
    if template_key == TEMPLATE_REMINDER_1D:
        body = f"{_greeting(first_name)} reminder: {event_name} is tomorrow at {when}."
    else:
        body = f"{_greeting(first_name)} reminder: {event_name} is coming up on {when}."
    if manage_link:
        body = f"{body} Manage booking: {manage_link}"
    return ensure_reply_instruction(body, support_phone)


def event_review_body(first_name: str | None, event_name: str, review_link: str, support_phone: str | None) -> str:
    return ensure_reply_instruction(
        f"{_greeting(first_name)} thanks for booking {event_name}. We'd love your feedback: {review_link}",
        support_phone,
    )


def table_review_body(first_name: str | None, review_link: str, support_phone: str | None) -> str:
    venue = get_config().engagement.venue_name
    return ensure_reply_instruction(
        f"{_greeting(first_name)} thanks for visiting {venue}. We'd love your feedback: {review_link}",
        support_phone,
    )


def interest_marketing_body(
    first_name: str | None,
    event_name: str,
    start: datetime,
    booking_link: str,
    support_phone: str | None,
) -> str:
    when = format_event_datetime(start, get_config().engagement.timezone)
    return ensure_reply_instruction(
        f"{_greeting(first_name)} we thought you might like {event_name} on {when}. "
        f"Book here: {booking_link} Reply STOP to opt out.",
        support_phone,
    )


def interest_reminder_body(
    tier: str,
    first_name: str | None,
    event_name: str,
    start: datetime,
    booking_link: str,
    support_phone: str | None,
) -> str:
    when = format_event_datetime(start, get_config().engagement.timezone)
    return ensure_reply_instruction(
        f"{_greeting(first_name)} {event_name} {_TIER_PHRASES[tier]} ({when}). "
        f"Book here: {booking_link} Reply STOP to opt out.",
        support_phone,
    )
