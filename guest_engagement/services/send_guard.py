"""Recent-send circuit breaker for the engagement job."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import Settings, get_settings
from guest_engagement.core.datetime_utils import get_cutoff
from guest_engagement.core.logging import get_logger
from guest_engagement.models.message import Message, MessageDirection
from guest_engagement.schemas.engagement import SendGuardResult
from guest_engagement.services.eligibility import ENGAGEMENT_TEMPLATE_KEYS

logger = get_logger(__name__)

# undefined_column, undefined_table
SCHEMA_GAP_SQLSTATES = frozenset({"42703", "42P01"})


def is_schema_gap_error(error: DBAPIError) -> bool:
    """True when a query failed because a table or column does not exist."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in SCHEMA_GAP_SQLSTATES:
        return True
    message = str(orig).lower()
    return "no such table" in message or "no such column" in message


async def evaluate_send_guard(
    db: AsyncSession,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> SendGuardResult:
    """
    Count this job's outbound SMS in the guard window and decide whether to stop.

    Blocked when the count reaches the limit. A missing ``messages`` schema
    either lets the run through or blocks it, depending on
    ``EVENT_ENGAGEMENT_SEND_GUARD_ALLOW_SCHEMA_GAPS``. Any other database
    error propagates.
    """
    settings = settings or get_settings()
    window = settings.event_engagement_send_guard_window_minutes
    limit = settings.event_engagement_send_guard_limit
    since = get_cutoff(minutes=window, now=now)

    stmt = select(func.count(Message.id)).where(
        Message.direction == MessageDirection.OUTBOUND,
        Message.template_key.in_(ENGAGEMENT_TEMPLATE_KEYS),
        Message.created_at >= since,
    )
    try:
        recent_count = (await db.execute(stmt)).scalar_one()
    except DBAPIError as e:
        if not is_schema_gap_error(e):
            raise
        await db.rollback()
        log = logger.bind(error=str(e), window_minutes=window, limit=limit)
        if settings.allow_send_guard_schema_gaps():
            log.warning("send_guard_schema_gap_allowed")
            return SendGuardResult(blocked=False, recent_count=0, window_minutes=window, limit=limit)
        log.error("send_guard_schema_gap_blocked")
        return SendGuardResult(blocked=True, recent_count=limit, window_minutes=window, limit=limit)

    result = SendGuardResult(
        blocked=recent_count >= limit,
        recent_count=recent_count,
        window_minutes=window,
        limit=limit,
    )
    if result.blocked:
        logger.bind(recent_count=recent_count, window_minutes=window, limit=limit).warning(
            "send_guard_blocked"
        )
    return result
