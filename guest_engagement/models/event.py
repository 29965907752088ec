"""Event model (managed by the events admin; read-only here)."""

import datetime as dt
from uuid import uuid4

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base, TimestampMixin


class EventStatus:
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    DRAFT = "draft"

    INACTIVE = frozenset({CANCELLED, DRAFT})


class Event(Base, TimestampMixin):
    """A ticketed or free event held at the venue.

    Older rows only carry a local ``date`` + ``time`` pair; newer rows carry
    ``start_datetime`` in UTC. See ``resolve_event_start``.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255))
    start_datetime: Mapped[dt.datetime | None] = mapped_column(default=None, index=True)
    date: Mapped[dt.date | None] = mapped_column(default=None)
    time: Mapped[dt.time | None] = mapped_column(default=None)
    event_status: Mapped[str | None] = mapped_column(String(32), default=EventStatus.SCHEDULED)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    category_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    booking_open: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def is_inactive(self) -> bool:
        return bool(self.event_status) and self.event_status in EventStatus.INACTIVE

    def __repr__(self) -> str:
        return f"<Event {self.name}>"
