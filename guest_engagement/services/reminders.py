"""7-day and 1-day event reminders."""

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_config, get_settings
from guest_engagement.core.logging import get_logger
from guest_engagement.models.booking import BookingStatus, EventBooking
from guest_engagement.schemas.engagement import ReminderCounts
from guest_engagement.services.dedupe import chunked, load_sent_template_set
from guest_engagement.services.dispatcher import SendContext, send_sms_safe
from guest_engagement.services.eligibility import (
    TEMPLATE_REMINDER_1D,
    TEMPLATE_REMINDER_7D,
    reminder_skip_reason,
    resolve_event_start,
    resolve_reminder_template,
)
from guest_engagement.services.guest_tokens import create_manage_booking_link, delete_guest_token
from guest_engagement.services.message_copy import reminder_body
from guest_engagement.services.sms_gateway import SmsGateway

logger = get_logger(__name__)

STAGE = "reminders"


async def load_real_booking_pairs(db: AsyncSession, event_ids: list[str]) -> set[tuple[str, str]]:
    """(customer_id, event_id) pairs of real bookings that hold a place."""
    pairs: set[tuple[str, str]] = set()
    for id_chunk in chunked(event_ids):
        result = await db.execute(
            select(EventBooking.customer_id, EventBooking.event_id).where(
                EventBooking.event_id.in_(id_chunk),
                EventBooking.is_reminder_only.is_(False),
                EventBooking.status.in_(BookingStatus.HOLDING),
            )
        )
        pairs.update((customer_id, event_id) for customer_id, event_id in result.all())
    return pairs


async def process_reminders(
    db: AsyncSession,
    gateway: SmsGateway,
    bookings: list[EventBooking],
    now: datetime,
    settings: Settings | None = None,
) -> ReminderCounts:
    """Send whichever reminder is due for each upcoming confirmed booking.

    Raises:
        SQLAlchemyError: if the sent-template set can't be loaded
        FatalSafetySignal: if a send reports a fatal result
    """
    settings = settings or get_settings()
    engagement = get_config().engagement
    counts = ReminderCounts()

    window_start = now - timedelta(days=engagement.reminder_lookback_days)
    window_end = now + timedelta(days=engagement.reminder_lookahead_days)
    candidates: list[tuple[EventBooking, datetime | None]] = []
    for booking in bookings:
        start = resolve_event_start(booking.event, engagement.timezone)
        if start is None or window_start <= start <= window_end:
            candidates.append((booking, start))

    reminder_only_events = sorted(
        {b.event_id for b, _ in candidates if b.is_reminder_only and b.event_id}
    )
    real_bookings = await load_real_booking_pairs(db, reminder_only_events)

    try:
        sent = await load_sent_template_set(
            db,
            [b.id for b, _ in candidates],
            [TEMPLATE_REMINDER_7D, TEMPLATE_REMINDER_1D],
        )
    except SQLAlchemyError as e:
        logger.bind(stage=STAGE, booking_count=len(candidates), error=str(e)).error(
            "reminder_dedupe_load_failed"
        )
        raise

    for booking, start in candidates:
        reason = reminder_skip_reason(booking, start, now, real_bookings)
        template_key = resolve_reminder_template(start, now) if reason is None else None
        if template_key is None or (booking.id, template_key) in sent:
            counts.skipped += 1
            continue

        customer = booking.customer
        manage = await create_manage_booking_link(
            db,
            customer_id=booking.customer_id,
            booking_id=booking.id,
            start=start,
            app_base_url=settings.app_base_url,
        )
        manage_link, manage_token = manage or (None, None)
        body = reminder_body(
            template_key,
            customer.first_name,
            booking.event.name,
            start,
            manage_link,
            settings.support_phone,
        )
        result = await send_sms_safe(
            gateway,
            customer.mobile_number,
            body,
            customer_id=customer.id,
            metadata={
                "event_booking_id": booking.id,
                "event_id": booking.event_id,
                "template_key": template_key,
            },
            context=SendContext(
                stage=f"{STAGE}:send_sms",
                template_key=template_key,
                booking_id=booking.id,
                customer_id=customer.id,
                event_id=booking.event_id,
            ),
        )
        if not result.success:
            if manage_token:
                await delete_guest_token(db, manage_token)
                await db.commit()
            counts.skipped += 1
            continue

        await db.commit()
        sent.add((booking.id, template_key))
        if template_key == TEMPLATE_REMINDER_1D:
            counts.sent_1d += 1
        else:
            counts.sent_7d += 1

    logger.bind(sent_7d=counts.sent_7d, sent_1d=counts.sent_1d, skipped=counts.skipped).info(
        "reminders_processed"
    )
    return counts
