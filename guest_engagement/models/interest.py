"""Manual event-interest opt-ins and their reminder cadence."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base, TimestampMixin


class ManualInterestRecipient(Base, TimestampMixin):
    """A customer explicitly added to an event's marketing audience.

    Each tier timestamp is written once, by a conditional update, when that
    tier's SMS has been sent.
    """

    __tablename__ = "event_interest_manual_recipients"
    __table_args__ = (
        UniqueConstraint("event_id", "customer_id", name="uq_event_interest_manual_recipient"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True
    )
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), index=True
    )
    reminder_14d_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    reminder_7d_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    reminder_1d_sent_at: Mapped[datetime | None] = mapped_column(default=None)

    def sent_at_for(self, tier: str) -> datetime | None:
        return getattr(self, f"reminder_{tier}_sent_at")

    def __repr__(self) -> str:
        return f"<ManualInterestRecipient {self.customer_id}:{self.event_id}>"
