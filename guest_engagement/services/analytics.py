"""Customer analytics events, stored in ``analytics_events`` and mirrored to PostHog."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.models.analytics import AnalyticsEvent
from guest_engagement.services import posthog_client

logger = get_logger(__name__)


async def record_analytics_event(
    db: AsyncSession,
    *,
    event_type: str,
    customer_id: str | None,
    event_booking_id: str | None = None,
    table_booking_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Best-effort: commits its own row, logs and returns False on failure.

    Callers must commit their own work first; a failure here rolls back the
    session.
    """
    try:
        db.add(
            AnalyticsEvent(
                customer_id=customer_id,
                event_booking_id=event_booking_id,
                table_booking_id=table_booking_id,
                event_type=event_type,
                metadata_json=metadata,
                created_at=utc_now(),
            )
        )
        await db.commit()
    except Exception as e:
        logger.bind(event_type=event_type, customer_id=customer_id, error=str(e)).warning(
            "analytics_event_failed"
        )
        await db.rollback()
        return False

    if customer_id:
        properties = dict(metadata or {})
        if event_booking_id:
            properties["event_booking_id"] = event_booking_id
        if table_booking_id:
            properties["table_booking_id"] = table_booking_id
        posthog_client.capture(customer_id, event_type, properties)
    return True
