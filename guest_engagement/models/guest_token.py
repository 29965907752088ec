"""Hashed guest action tokens behind review and manage-booking links."""

from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base, TimestampMixin


class GuestTokenAction:
    REVIEW_REDIRECT = "review_redirect"
    MANAGE_BOOKING = "manage_booking"


class GuestToken(Base, TimestampMixin):
    """Only the SHA-256 of the raw token is stored; the raw value lives in the SMS link."""

    __tablename__ = "guest_tokens"

    hashed_token: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), index=True
    )
    action_type: Mapped[str] = mapped_column(String(40))
    event_booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    table_booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    expires_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<GuestToken {self.action_type} for {self.customer_id}>"
