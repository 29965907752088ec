"""
Idempotence lookups against the ``messages`` log.

Older rows only carry linking ids inside ``metadata``, so every reader falls
back to the JSON payload when the dedicated column is empty.
"""

from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import get_config
from guest_engagement.models.message import Message

BOOKING_COLUMNS = {
    "event_booking_id": Message.event_booking_id,
    "table_booking_id": Message.table_booking_id,
}


def chunked(items: Sequence[Any], size: int | None = None) -> Iterator[Sequence[Any]]:
    size = size or get_config().engagement.completion_chunk_size
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _from_row(column_value: Any, metadata: dict[str, Any] | None, key: str) -> Any:
    if column_value:
        return column_value
    return (metadata or {}).get(key)


async def load_sent_template_set(
    db: AsyncSession,
    booking_ids: Sequence[str],
    template_keys: Iterable[str],
    booking_column: str = "event_booking_id",
) -> set[tuple[str, str]]:
    """(booking_id, template_key) pairs already sent for the given bookings.

    Loaded in chunks of ids. Database errors propagate; callers decide
    whether a missing dedupe set is fatal.
    """
    keys = set(template_keys)
    sent: set[tuple[str, str]] = set()
    if not booking_ids or not keys:
        return sent

    column = BOOKING_COLUMNS[booking_column]
    for id_chunk in chunked(list(booking_ids)):
        result = await db.execute(
            select(column, Message.template_key, Message.metadata_json).where(
                column.in_(id_chunk),
                or_(Message.template_key.in_(keys), Message.template_key.is_(None)),
            )
        )
        for booking_id, template_key, metadata in result.all():
            template_key = _from_row(template_key, metadata, "template_key")
            if booking_id and template_key in keys:
                sent.add((booking_id, template_key))

    return sent


async def load_event_customer_sends(
    db: AsyncSession,
    event_ids: Sequence[str],
    template_keys: Iterable[str],
) -> set[tuple[str, str, str]]:
    """(event_id, customer_id, template_key) triples already sent for the given events."""
    keys = set(template_keys)
    sent: set[tuple[str, str, str]] = set()
    if not event_ids or not keys:
        return sent

    wanted = set(event_ids)
    for id_chunk in chunked(list(event_ids)):
        result = await db.execute(
            select(Message.event_id, Message.customer_id, Message.template_key, Message.metadata_json).where(
                Message.customer_id.is_not(None),
                Message.template_key.in_(keys),
                or_(Message.event_id.in_(id_chunk), Message.event_id.is_(None)),
            )
        )
        for event_id, customer_id, template_key, metadata in result.all():
            event_id = _from_row(event_id, metadata, "event_id")
            if event_id in wanted:
                sent.add((event_id, customer_id, template_key))

    return sent
