"""Guest action tokens for review-redirect and manage-booking links."""

from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.core.logging import get_logger
from guest_engagement.core.security import generate_token, hash_token
from guest_engagement.models.guest_token import GuestToken, GuestTokenAction

logger = get_logger(__name__)

# Review tokens start with a little slack past the review window, then get pinned to it
PROVISIONAL_REVIEW_TOKEN_DAYS = 8
MANAGE_TOKEN_GRACE = timedelta(hours=48)
MANAGE_TOKEN_MAX_LIFETIME = timedelta(days=180)


async def create_guest_token(
    db: AsyncSession,
    *,
    customer_id: str,
    action_type: str,
    expires_at: datetime,
    event_booking_id: str | None = None,
    table_booking_id: str | None = None,
) -> tuple[str, str]:
    """Store a new token and return ``(raw_token, hashed_token)``.

    Only the hash is persisted; the raw token goes into the link.
    """
    raw_token = generate_token()
    hashed_token = hash_token(raw_token)
    db.add(
        GuestToken(
            hashed_token=hashed_token,
            customer_id=customer_id,
            action_type=action_type,
            event_booking_id=event_booking_id,
            table_booking_id=table_booking_id,
            expires_at=expires_at,
        )
    )
    await db.flush()
    return raw_token, hashed_token


async def delete_guest_token(db: AsyncSession, hashed_token: str) -> None:
    await db.execute(
        delete(GuestToken)
        .where(GuestToken.hashed_token == hashed_token)
        .execution_options(synchronize_session=False)
    )


async def extend_guest_token(db: AsyncSession, hashed_token: str, expires_at: datetime) -> None:
    await db.execute(
        update(GuestToken)
        .where(GuestToken.hashed_token == hashed_token)
        .values(expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )


def review_link(app_base_url: str, raw_token: str) -> str:
    return f"{app_base_url.rstrip('/')}/r/{raw_token}"


def manage_token_expiry(start: datetime | None, now: datetime) -> datetime:
    """Two days after the event, at least an hour from now, at most 180 days out."""
    latest = now + MANAGE_TOKEN_MAX_LIFETIME
    if start is None:
        return min(now + MANAGE_TOKEN_GRACE, latest)
    return min(max(start + MANAGE_TOKEN_GRACE, now + timedelta(hours=1)), latest)


async def create_manage_booking_link(
    db: AsyncSession,
    *,
    customer_id: str,
    booking_id: str,
    start: datetime | None,
    app_base_url: str,
) -> tuple[str, str] | None:
    """``(link, hashed_token)`` for a reminder, or None if the token couldn't be stored."""
    try:
        raw_token, hashed_token = await create_guest_token(
            db,
            customer_id=customer_id,
            action_type=GuestTokenAction.MANAGE_BOOKING,
            event_booking_id=booking_id,
            expires_at=manage_token_expiry(start, utc_now()),
        )
    except Exception as e:
        logger.bind(booking_id=booking_id, error=str(e)).warning("manage_booking_token_failed")
        await db.rollback()
        return None
    return f"{app_base_url.rstrip('/')}/g/{raw_token}/manage-booking", hashed_token
