"""Customer model (owned by the CRM side; read-only here)."""

from uuid import uuid4

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from guest_engagement.models.base import Base, TimestampMixin


class SmsStatus:
    ACTIVE = "active"
    OPTED_OUT = "opted_out"
    SMS_DEACTIVATED = "sms_deactivated"


class Customer(Base, TimestampMixin):
    """A guest who can be reached by SMS."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sms_status: Mapped[str | None] = mapped_column(String(32), default=SmsStatus.ACTIVE)
    marketing_sms_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)

    @property
    def can_receive_sms(self) -> bool:
        return bool(self.mobile_number) and self.sms_status == SmsStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Customer {self.id}>"
