"""Customer analytics events written by the engagement job."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import String, func
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base


class AnalyticsEvent(Base):
    """A customer engagement event (review SMS sent, review window closed, ...)."""

    __tablename__ = "analytics_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    event_booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    table_booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<AnalyticsEvent {self.event_type}>"
