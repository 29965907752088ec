"""
Interest-marketing SMS for upcoming events.

Two audiences per event:

- manual recipients, who asked to hear about this event and get one SMS per
  tier (14d, 7d, 1d), tracked on their ``event_interest_manual_recipients`` row
- behaviour candidates, who booked or waitlisted a similar past event and get a
  single ``event_interest_marketing_14d`` nudge per event

Anyone already holding a real booking for the event is left alone.
"""

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_config, get_settings
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.models.booking import BookingStatus, EventBooking, WaitlistEntry
from guest_engagement.models.customer import Customer
from guest_engagement.models.event import Event
from guest_engagement.models.interest import ManualInterestRecipient
from guest_engagement.schemas.engagement import MarketingCounts
from guest_engagement.services.dedupe import load_event_customer_sends
from guest_engagement.services.dispatcher import SendContext, send_sms_safe
from guest_engagement.services.eligibility import (
    TEMPLATE_INTEREST_MARKETING_14D,
    interest_reminder_template,
    is_marketing_event,
    is_reachable,
    resolve_event_start,
    resolve_marketing_tier,
    resolve_start,
)
from guest_engagement.services.message_copy import interest_marketing_body, interest_reminder_body
from guest_engagement.services.send_guard import is_schema_gap_error
from guest_engagement.services.sms_gateway import SmsGateway

logger = get_logger(__name__)

STAGE = "marketing"


@dataclass
class MarketingSegments:
    """Audience of one event. ``manual`` maps customer id to its row (None for fallbacks)."""

    behaviour: set[str] = field(default_factory=set)
    manual: dict[str, ManualInterestRecipient | None] = field(default_factory=dict)
    booked: set[str] = field(default_factory=set)


async def load_marketing_events(db: AsyncSession, now: datetime) -> list[tuple[Event, datetime]]:
    """Open events inside the marketing horizon, with their resolved start."""
    engagement = get_config().engagement
    result = await db.execute(
        select(Event)
        .where(
            Event.booking_open.is_(True),
            or_(Event.start_datetime.is_(None), Event.start_datetime > now),
        )
        .order_by(Event.start_datetime)
        .limit(engagement.max_marketing_events)
    )
    events = list(result.scalars().all())
    db.expunge_all()

    due = []
    for event in events:
        start = resolve_event_start(event, engagement.timezone)
        if is_marketing_event(event, start, now):
            due.append((event, start))
    return due


def _similar_event_clause(target: Event):
    """Match on category, or on event type when the target has no category."""
    if target.category_id:
        return Event.category_id == target.category_id
    if target.event_type:
        return Event.event_type == target.event_type
    return None


async def _past_interest(db: AsyncSession, target: Event, now: datetime) -> set[str]:
    similar = _similar_event_clause(target)
    if similar is None:
        return set()

    timezone = get_config().engagement.timezone
    customer_ids: set[str] = set()
    queries = [
        select(EventBooking.customer_id, Event.start_datetime, Event.date, Event.time)
        .join(Event, EventBooking.event_id == Event.id)
        .where(
            similar,
            Event.id != target.id,
            EventBooking.is_reminder_only.is_(False),
            EventBooking.status.in_(BookingStatus.ATTENDED),
        ),
        select(WaitlistEntry.customer_id, Event.start_datetime, Event.date, Event.time)
        .join(Event, WaitlistEntry.event_id == Event.id)
        .where(similar, Event.id != target.id, WaitlistEntry.customer_id.is_not(None)),
    ]
    for query in queries:
        result = await db.execute(query)
        for customer_id, start_datetime, date, time in result.all():
            start = resolve_start(start_datetime, date, time, timezone)
            if customer_id and start is not None and start < now:
                customer_ids.add(customer_id)
    return customer_ids


async def _manual_recipients(db: AsyncSession, event_id: str) -> dict[str, ManualInterestRecipient | None]:
    """Manual rows for the event.

    Without the manual-recipients table, reminder-only bookings stand in for it.
    """
    try:
        result = await db.execute(
            select(ManualInterestRecipient).where(ManualInterestRecipient.event_id == event_id)
        )
        return {row.customer_id: row for row in result.scalars().all()}
    except DBAPIError as e:
        if not is_schema_gap_error(e):
            raise
        await db.rollback()
        logger.bind(event_id=event_id).warning("manual_interest_table_missing")

    result = await db.execute(
        select(EventBooking.customer_id).where(
            EventBooking.event_id == event_id,
            EventBooking.is_reminder_only.is_(True),
            EventBooking.status.in_(BookingStatus.HOLDING),
        )
    )
    return {customer_id: None for customer_id in result.scalars().all() if customer_id}


async def load_segments(db: AsyncSession, event: Event, now: datetime) -> MarketingSegments:
    result = await db.execute(
        select(EventBooking.customer_id).where(
            EventBooking.event_id == event.id,
            EventBooking.is_reminder_only.is_(False),
            EventBooking.status.in_(BookingStatus.HOLDING),
        )
    )
    booked = set(result.scalars().all())
    segments = MarketingSegments(
        behaviour=await _past_interest(db, event, now),
        manual=await _manual_recipients(db, event.id),
        booked=booked,
    )
    db.expunge_all()
    return segments


async def _load_customers(db: AsyncSession, customer_ids: set[str]) -> dict[str, Customer]:
    if not customer_ids:
        return {}
    result = await db.execute(select(Customer).where(Customer.id.in_(sorted(customer_ids))))
    customers = {customer.id: customer for customer in result.scalars().all()}
    db.expunge_all()
    return customers


async def process_interest_marketing(
    db: AsyncSession,
    gateway: SmsGateway,
    now: datetime,
    settings: Settings | None = None,
) -> MarketingCounts:
    """Send due interest marketing, stopping at the run-wide cap."""
    settings = settings or get_settings()
    engagement = get_config().engagement
    counts = MarketingCounts()
    cap = engagement.max_marketing_sends

    for event, start in await load_marketing_events(db, now):
        if counts.sent >= cap:
            logger.bind(cap=cap).info("marketing_send_cap_reached")
            break

        tier = resolve_marketing_tier(start, now)
        if tier is None:
            continue
        counts.events_processed += 1
        log = logger.bind(event_id=event.id, tier=tier)
        manual_template = interest_reminder_template(tier)

        try:
            segments = await load_segments(db, event, now)
            manual_ids = set(segments.manual) - segments.booked
            behaviour_ids = segments.behaviour - segments.booked - set(segments.manual)
            if not manual_ids and not behaviour_ids:
                continue
            customers = await _load_customers(db, manual_ids | behaviour_ids)
            already_sent = await load_event_customer_sends(
                db, [event.id], [TEMPLATE_INTEREST_MARKETING_14D, manual_template]
            )
        except SQLAlchemyError as e:
            log.bind(error=str(e)).warning("marketing_segments_load_failed")
            await db.rollback()
            continue

        booking_link = f"{settings.app_base_url.rstrip('/')}/events?event_id={event.id}"
        audience = [(cid, True) for cid in sorted(manual_ids)] + [(cid, False) for cid in sorted(behaviour_ids)]

        for customer_id, is_manual in audience:
            if counts.sent >= cap:
                break

            customer = customers.get(customer_id)
            if is_manual:
                row = segments.manual[customer_id]
                template_key = manual_template
                if (row is not None and row.sent_at_for(tier)) or (
                    (event.id, customer_id, template_key) in already_sent
                ):
                    continue
                if not is_reachable(customer):
                    counts.skipped += 1
                    continue
                body = interest_reminder_body(
                    tier, customer.first_name, event.name, start, booking_link, settings.support_phone
                )
            else:
                row = None
                template_key = TEMPLATE_INTEREST_MARKETING_14D
                if (event.id, customer_id, template_key) in already_sent:
                    continue
                if not is_reachable(customer) or not customer.marketing_sms_opt_in:
                    counts.skipped += 1
                    continue
                body = interest_marketing_body(
                    customer.first_name, event.name, start, booking_link, settings.support_phone
                )

            metadata = {
                "event_id": event.id,
                "event_type": event.event_type,
                "template_key": template_key,
                "marketing": True,
            }
            if is_manual:
                metadata["interest_tier"] = tier

            result = await send_sms_safe(
                gateway,
                customer.mobile_number,
                body,
                customer_id=customer.id,
                metadata=metadata,
                context=SendContext(
                    stage=f"{STAGE}:send_sms",
                    template_key=template_key,
                    customer_id=customer.id,
                    event_id=event.id,
                ),
            )
            if not result.success:
                counts.skipped += 1
                continue

            if row is not None:
                column = f"reminder_{tier}_sent_at"
                await db.execute(
                    update(ManualInterestRecipient)
                    .where(
                        ManualInterestRecipient.id == row.id,
                        getattr(ManualInterestRecipient, column).is_(None),
                    )
                    .values(**{column: result.scheduled_for or utc_now()})
                    .execution_options(synchronize_session=False)
                )
            await db.commit()
            already_sent.add((event.id, customer_id, template_key))
            counts.sent += 1

    logger.bind(
        sent=counts.sent, skipped=counts.skipped, events_processed=counts.events_processed
    ).info("interest_marketing_processed")
    return counts
