"""Event bookings, table bookings and waitlist entries.

Bookings are created by the booking subsystem. The engagement job owns only
the review cadence fields (``review_sms_sent_at``, ``review_window_closes_at``)
and the transition into ``completed``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guest_engagement.models.base import Base, TimestampMixin, UpdatedAtMixin
from guest_engagement.models.customer import Customer
from guest_engagement.models.event import Event


class BookingStatus:
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    VISITED_WAITING_FOR_REVIEW = "visited_waiting_for_review"
    REVIEW_CLICKED = "review_clicked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    # Statuses the completion sweep moves into COMPLETED
    AWAITING_REVIEW = (VISITED_WAITING_FOR_REVIEW, REVIEW_CLICKED)
    # Statuses that count as "holds a place" for the event
    HOLDING = (CONFIRMED, PENDING_PAYMENT)
    # Statuses that show the guest actually engaged with a past event
    ATTENDED = (CONFIRMED, VISITED_WAITING_FOR_REVIEW, REVIEW_CLICKED, COMPLETED)


class EventBooking(Base, TimestampMixin, UpdatedAtMixin):
    """A ticket booking (or reminder-only interest marker) for an event."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), index=True
    )
    event_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True, nullable=True
    )
    seats: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(40), default=BookingStatus.CONFIRMED, index=True)
    # Created purely to track manual-interest reminders, not a real reservation
    is_reminder_only: Mapped[bool] = mapped_column(Boolean, default=False)
    review_sms_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    review_window_closes_at: Mapped[datetime | None] = mapped_column(default=None, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    customer: Mapped[Customer | None] = relationship(lazy="selectin")
    event: Mapped[Event | None] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<EventBooking {self.id} {self.status}>"


class TableBooking(Base, TimestampMixin, UpdatedAtMixin):
    """A restaurant table reservation."""

    __tablename__ = "table_bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), index=True
    )
    booking_type: Mapped[str | None] = mapped_column(String(40), default="regular")
    status: Mapped[str] = mapped_column(String(40), default=BookingStatus.CONFIRMED, index=True)
    start_datetime: Mapped[datetime | None] = mapped_column(default=None, index=True)
    review_sms_sent_at: Mapped[datetime | None] = mapped_column(default=None)
    review_window_closes_at: Mapped[datetime | None] = mapped_column(default=None, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    customer: Mapped[Customer | None] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<TableBooking {self.id} {self.status}>"


class WaitlistEntry(Base, TimestampMixin):
    """A guest waiting for a place at a sold-out event."""

    __tablename__ = "waitlist_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), index=True, nullable=True
    )
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True
    )

    def __repr__(self) -> str:
        return f"<WaitlistEntry {self.customer_id}:{self.event_id}>"
