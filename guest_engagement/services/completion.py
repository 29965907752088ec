"""Review-window completion sweeps for event and table bookings."""

from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import get_config
from guest_engagement.core.logging import get_logger
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking
from guest_engagement.schemas.engagement import CompletionCounts
from guest_engagement.services.analytics import record_analytics_event
from guest_engagement.services.dedupe import chunked
from guest_engagement.services.posthog_client import Events

logger = get_logger(__name__)


async def complete_event_bookings(db: AsyncSession, now: datetime) -> CompletionCounts:
    """Move event bookings whose review window has closed into ``completed``."""
    engagement = get_config().engagement
    counts = CompletionCounts()

    result = await db.execute(
        select(EventBooking.id)
        .where(
            EventBooking.status.in_(BookingStatus.AWAITING_REVIEW),
            EventBooking.review_window_closes_at.is_not(None),
            EventBooking.review_window_closes_at <= now,
        )
        .limit(engagement.completion_batch_limit)
    )
    booking_ids = list(result.scalars().all())

    for id_chunk in chunked(booking_ids, engagement.completion_chunk_size):
        updated = await db.execute(
            update(EventBooking)
            .where(EventBooking.id.in_(id_chunk), EventBooking.status.in_(BookingStatus.AWAITING_REVIEW))
            .values(status=BookingStatus.COMPLETED, completed_at=now, updated_at=now)
            .returning(EventBooking.id, EventBooking.customer_id, EventBooking.event_id)
            .execution_options(synchronize_session=False)
        )
        rows = updated.all()
        await db.commit()

        for booking_id, customer_id, event_id in rows:
            counts.completed += 1
            await record_analytics_event(
                db,
                event_type=Events.REVIEW_WINDOW_CLOSED,
                customer_id=customer_id,
                event_booking_id=booking_id,
                metadata={"event_id": event_id},
            )

    logger.bind(completed=counts.completed).info("event_completion_processed")
    return counts


async def complete_table_bookings(db: AsyncSession, now: datetime) -> CompletionCounts:
    """Same sweep for table bookings.

    Rows without a close time fall back to ``review_sms_sent_at`` plus the
    review window.
    """
    engagement = get_config().engagement
    counts = CompletionCounts()
    fallback_cutoff = now - timedelta(days=engagement.review_window_days)

    result = await db.execute(
        select(TableBooking.id)
        .where(
            TableBooking.status.in_(BookingStatus.AWAITING_REVIEW),
            or_(
                and_(
                    TableBooking.review_window_closes_at.is_not(None),
                    TableBooking.review_window_closes_at <= now,
                ),
                and_(
                    TableBooking.review_window_closes_at.is_(None),
                    TableBooking.review_sms_sent_at.is_not(None),
                    TableBooking.review_sms_sent_at <= fallback_cutoff,
                ),
            ),
        )
        .limit(engagement.completion_batch_limit)
    )
    booking_ids = list(result.scalars().all())

    for id_chunk in chunked(booking_ids, engagement.completion_chunk_size):
        updated = await db.execute(
            update(TableBooking)
            .where(TableBooking.id.in_(id_chunk), TableBooking.status.in_(BookingStatus.AWAITING_REVIEW))
            .values(status=BookingStatus.COMPLETED, completed_at=now, updated_at=now)
            .returning(TableBooking.id, TableBooking.customer_id, TableBooking.booking_type)
            .execution_options(synchronize_session=False)
        )
        rows = updated.all()
        await db.commit()

        for booking_id, customer_id, booking_type in rows:
            counts.completed += 1
            await record_analytics_event(
                db,
                event_type=Events.REVIEW_WINDOW_CLOSED,
                customer_id=customer_id,
                table_booking_id=booking_id,
                metadata={"booking_type": booking_type or "regular"},
            )

    logger.bind(completed=counts.completed).info("table_completion_processed")
    return counts
