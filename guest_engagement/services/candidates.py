"""Loading the bookings the engagement stages work through.

Rows come back detached from the session: stages only read them, and write
through UPDATE statements, so a rollback after a failed write can't expire
them mid-loop.
"""

from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import get_config
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking
from guest_engagement.models.event import Event

EVENT_BOOKING_LIMIT = 2000
TABLE_BOOKING_LIMIT = 3000


def event_window(now: datetime) -> tuple[datetime, datetime]:
    """UTC range of event starts that reminders or review follow-ups can still act on."""
    engagement = get_config().engagement
    lookback_days = max(engagement.reminder_lookback_days, engagement.event_review_lookback_days)
    return (
        now - timedelta(days=lookback_days),
        now + timedelta(days=engagement.reminder_lookahead_days),
    )


async def load_event_bookings(db: AsyncSession, now: datetime) -> list[EventBooking]:
    """Confirmed event bookings whose event starts inside ``event_window``, soonest first."""
    window_start, window_end = event_window(now)
    # Local dates can sit a day either side of the UTC instant
    in_window = or_(
        Event.start_datetime.between(window_start, window_end),
        and_(
            Event.start_datetime.is_(None),
            Event.date.between(
                window_start.date() - timedelta(days=1),
                window_end.date() + timedelta(days=1),
            ),
        ),
    )
    result = await db.execute(
        select(EventBooking)
        .join(Event, EventBooking.event_id == Event.id)
        .where(EventBooking.status == BookingStatus.CONFIRMED, in_window)
        .order_by(Event.start_datetime, Event.date, EventBooking.created_at)
        .limit(EVENT_BOOKING_LIMIT)
    )
    bookings = list(result.scalars().all())
    db.expunge_all()
    return bookings


async def load_table_bookings(db: AsyncSession, now: datetime) -> list[TableBooking]:
    """Confirmed table bookings that started inside the review lookback."""
    lookback = timedelta(days=get_config().engagement.table_review_lookback_days)
    result = await db.execute(
        select(TableBooking)
        .where(
            TableBooking.status == BookingStatus.CONFIRMED,
            TableBooking.start_datetime.is_not(None),
            TableBooking.start_datetime >= now - lookback,
        )
        .order_by(TableBooking.start_datetime)
        .limit(TABLE_BOOKING_LIMIT)
    )
    bookings = list(result.scalars().all())
    db.expunge_all()
    return bookings
