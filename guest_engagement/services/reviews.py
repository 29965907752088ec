"""
Post-visit review follow-ups for event bookings and table bookings.

A review SMS carries a review-redirect guest token. The token is created
before sending, deleted if the send fails, and pinned to the review window
once the booking has moved to ``visited_waiting_for_review``.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_config, get_settings
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking
from guest_engagement.models.customer import Customer
from guest_engagement.models.guest_token import GuestTokenAction
from guest_engagement.schemas.engagement import ReviewCounts
from guest_engagement.services.analytics import record_analytics_event
from guest_engagement.services.dedupe import load_sent_template_set
from guest_engagement.services.dispatcher import SendContext, send_sms_safe
from guest_engagement.services.eligibility import (
    TEMPLATE_REVIEW_FOLLOWUP,
    TEMPLATE_TABLE_REVIEW_FOLLOWUP,
    is_event_review_due,
    is_reachable,
    is_table_review_due,
    resolve_event_start,
)
from guest_engagement.services.guest_tokens import (
    PROVISIONAL_REVIEW_TOKEN_DAYS,
    create_guest_token,
    delete_guest_token,
    extend_guest_token,
    review_link,
)
from guest_engagement.services.message_copy import event_review_body, table_review_body
from guest_engagement.services.posthog_client import Events
from guest_engagement.services.sms_gateway import SmsGateway

logger = get_logger(__name__)


async def _load_sent(db: AsyncSession, stage: str, booking_ids: list[str], template_key: str, column: str) -> set:
    try:
        return await load_sent_template_set(db, booking_ids, [template_key], booking_column=column)
    except SQLAlchemyError as e:
        logger.bind(
            stage=stage, template_key=template_key, booking_count=len(booking_ids), error=str(e)
        ).error("review_dedupe_load_failed")
        raise


async def _send_review(
    db: AsyncSession,
    gateway: SmsGateway,
    *,
    model: type[EventBooking] | type[TableBooking],
    booking_id: str,
    customer: Customer,
    body_for_link: Callable[[str], str],
    template_key: str,
    stage: str,
    now: datetime,
    settings: Settings,
    event_id: str | None = None,
    analytics_metadata: dict[str, Any] | None = None,
) -> bool:
    """Send one review SMS and persist its cadence. Returns False if the send failed."""
    engagement = get_config().engagement
    link_field = "event_booking_id" if model is EventBooking else "table_booking_id"

    raw_token, hashed_token = await create_guest_token(
        db,
        customer_id=customer.id,
        action_type=GuestTokenAction.REVIEW_REDIRECT,
        expires_at=now + timedelta(days=PROVISIONAL_REVIEW_TOKEN_DAYS),
        **{link_field: booking_id},
    )
    body = body_for_link(review_link(settings.app_base_url, raw_token))

    metadata: dict[str, Any] = {
        link_field: booking_id,
        "template_key": template_key,
        "review_redirect_target": settings.google_review_url or None,
    }
    if event_id:
        metadata["event_id"] = event_id

    result = await send_sms_safe(
        gateway,
        customer.mobile_number,
        body,
        customer_id=customer.id,
        metadata=metadata,
        context=SendContext(
            stage=f"{stage}:send_sms",
            template_key=template_key,
            booking_id=booking_id,
            customer_id=customer.id,
            event_id=event_id,
        ),
    )
    if not result.success:
        await delete_guest_token(db, hashed_token)
        await db.commit()
        return False

    sent_at = result.scheduled_for or utc_now()
    closes_at = sent_at + timedelta(days=engagement.review_window_days)
    await db.execute(
        update(model)
        .where(model.id == booking_id, model.status == BookingStatus.CONFIRMED)
        .values(
            status=BookingStatus.VISITED_WAITING_FOR_REVIEW,
            review_sms_sent_at=sent_at,
            review_window_closes_at=closes_at,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await extend_guest_token(db, hashed_token, closes_at)
    await db.commit()

    await record_analytics_event(
        db,
        event_type=Events.REVIEW_SMS_SENT,
        customer_id=customer.id,
        **{link_field: booking_id},
        metadata={
            **(analytics_metadata or {}),
            "review_sent_at": sent_at.isoformat(),
            "review_window_closes_at": closes_at.isoformat(),
        },
    )
    return True


async def process_event_reviews(
    db: AsyncSession,
    gateway: SmsGateway,
    bookings: list[EventBooking],
    now: datetime,
    settings: Settings | None = None,
) -> ReviewCounts:
    """Review follow-ups for event bookings, oldest event first.

    The per-run cap counts only reachable bookings not yet sent a review.
    """
    settings = settings or get_settings()
    engagement = get_config().engagement
    stage = "reviews"
    counts = ReviewCounts()

    due: list[tuple[datetime, EventBooking]] = []
    for booking in bookings:
        start = resolve_event_start(booking.event, engagement.timezone)
        if is_event_review_due(
            booking,
            start,
            now,
            lookback_days=engagement.event_review_lookback_days,
            send_hour=engagement.event_review_send_hour_local,
            timezone=engagement.timezone,
        ):
            due.append((start, booking))
    due.sort(key=lambda pair: pair[0])

    sent = await _load_sent(db, stage, [b.id for _, b in due], TEMPLATE_REVIEW_FOLLOWUP, "event_booking_id")
    eligible = [
        booking
        for _, booking in due
        if is_reachable(booking.customer) and (booking.id, TEMPLATE_REVIEW_FOLLOWUP) not in sent
    ]
    counts.skipped += len(due) - len(eligible)

    for booking in eligible[: engagement.max_review_sends]:
        customer = booking.customer
        event_name = booking.event.name
        ok = await _send_review(
            db,
            gateway,
            model=EventBooking,
            booking_id=booking.id,
            customer=customer,
            body_for_link=lambda link, c=customer, n=event_name: event_review_body(
                c.first_name, n, link, settings.support_phone
            ),
            template_key=TEMPLATE_REVIEW_FOLLOWUP,
            stage=stage,
            now=now,
            settings=settings,
            event_id=booking.event_id,
            analytics_metadata={"event_id": booking.event_id},
        )
        if ok:
            counts.sent += 1
        else:
            counts.skipped += 1

    logger.bind(sent=counts.sent, skipped=counts.skipped).info("event_reviews_processed")
    return counts


async def process_table_reviews(
    db: AsyncSession,
    gateway: SmsGateway,
    bookings: list[TableBooking],
    now: datetime,
    settings: Settings | None = None,
) -> ReviewCounts:
    """Review follow-ups for table bookings a few hours after the table started."""
    settings = settings or get_settings()
    engagement = get_config().engagement
    stage = "table_reviews"
    counts = ReviewCounts()

    due = [
        booking
        for booking in bookings
        if is_table_review_due(
            booking,
            now,
            lookback_days=engagement.table_review_lookback_days,
            delay_hours=engagement.table_review_delay_hours,
        )
    ]
    due.sort(key=lambda b: b.start_datetime)

    sent = await _load_sent(db, stage, [b.id for b in due], TEMPLATE_TABLE_REVIEW_FOLLOWUP, "table_booking_id")
    eligible = [
        booking
        for booking in due
        if is_reachable(booking.customer) and (booking.id, TEMPLATE_TABLE_REVIEW_FOLLOWUP) not in sent
    ]
    counts.skipped += len(due) - len(eligible)

    for booking in eligible[: engagement.max_review_sends]:
        customer = booking.customer
        ok = await _send_review(
            db,
            gateway,
            model=TableBooking,
            booking_id=booking.id,
            customer=customer,
            body_for_link=lambda link, c=customer: table_review_body(
                c.first_name, link, settings.support_phone
            ),
            template_key=TEMPLATE_TABLE_REVIEW_FOLLOWUP,
            stage=stage,
            now=now,
            settings=settings,
            analytics_metadata={"booking_type": booking.booking_type or "regular"},
        )
        if ok:
            counts.sent += 1
        else:
            counts.skipped += 1

    logger.bind(sent=counts.sent, skipped=counts.skipped).info("table_reviews_processed")
    return counts
