"""Outbound/inbound SMS log used for idempotence lookups and the send guard."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base


class MessageDirection:
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class Message(Base):
    """Append-only record of an SMS.

    Older rows only carry the linking ids inside ``metadata``; readers should
    fall back to it when the dedicated columns are empty.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="SET NULL"), index=True, nullable=True
    )
    event_booking_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    table_booking_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    template_key: Mapped[str | None] = mapped_column(String(100), index=True, nullable=True)
    direction: Mapped[str] = mapped_column(String(16), default=MessageDirection.OUTBOUND)
    to_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<Message {self.template_key} {self.direction}>"
