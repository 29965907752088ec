"""
Pytest configuration and fixtures for guest engagement tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for customers, events, bookings and the message log
- A fake SMS gateway that records sends like the real one
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import date, datetime, time, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from guest_engagement.config import Settings, get_settings
from guest_engagement.core.database import get_db
from guest_engagement.core.datetime_utils import utc_now
from guest_engagement.dependencies import get_gateway
from guest_engagement.main import app
from guest_engagement.models import Base
from guest_engagement.models.booking import BookingStatus, EventBooking, TableBooking, WaitlistEntry
from guest_engagement.models.customer import Customer, SmsStatus
from guest_engagement.models.event import Event, EventStatus
from guest_engagement.models.interest import ManualInterestRecipient
from guest_engagement.models.job_run import CronJobRun, CronRunStatus
from guest_engagement.models.message import Message, MessageDirection
from guest_engagement.services.sms_gateway import SendResult

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_CRON_SECRET = "test-cron-secret"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    cron_secret: str = TEST_CRON_SECRET
    app_base_url: str = "https://example.test"
    contact_phone_number: str = "01753 682707"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    discord_error_webhook_url: str = ""
    resend_api_key: str = ""
    posthog_api_key: str = ""


class FakeGateway:
    """In-memory SMS gateway.

    Successful sends are written to ``messages`` the same way the Twilio
    gateway records them, so dedupe lookups see them. ``results`` is consumed
    in order; once empty every send succeeds.
    """

    def __init__(self, db: AsyncSession | None = None, results: list[SendResult | Exception] | None = None):
        self.db = db
        self.results = list(results or [])
        self.sent: list[dict[str, Any]] = []

    async def send(
        self,
        to: str,
        body: str,
        *,
        customer_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SendResult:
        metadata = metadata or {}
        if self.results:
            outcome = self.results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            if not outcome.success:
                return outcome
        else:
            outcome = SendResult(success=True, sid=f"SM{uuid.uuid4().hex[:10]}", scheduled_for=utc_now())

        self.sent.append({"to": to, "body": body, "customer_id": customer_id, "metadata": metadata})
        if self.db is not None and not outcome.log_failure:
            self.db.add(
                Message(
                    customer_id=customer_id,
                    event_booking_id=metadata.get("event_booking_id"),
                    table_booking_id=metadata.get("table_booking_id"),
                    event_id=metadata.get("event_id"),
                    template_key=metadata.get("template_key"),
                    direction=MessageDirection.OUTBOUND,
                    to_number=to,
                    body=body,
                    status="queued",
                    provider_sid=outcome.sid,
                    metadata_json=metadata,
                    created_at=utc_now(),
                )
            )
            await self.db.flush()
        return outcome

    @property
    def templates(self) -> list[str]:
        return [send["metadata"].get("template_key") for send in self.sent]


@pytest.fixture
def test_settings() -> Settings:
    return TestSettings()


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway_factory():
    """Factory for fake gateways; pass ``db`` to have sends recorded in ``messages``."""

    def _create_gateway(
        results: list[SendResult | Exception] | None = None, db: AsyncSession | None = None
    ) -> FakeGateway:
        return FakeGateway(db, results)

    return _create_gateway


@pytest.fixture
def fake_gateway(db_session: AsyncSession) -> FakeGateway:
    return FakeGateway(db_session)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, test_settings: Settings, fake_gateway: FakeGateway
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database, settings and gateway overrides."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return test_settings

    async def override_get_gateway():
        return fake_gateway

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_gateway] = override_get_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================
#
# Factories commit so that rollbacks inside the code under test don't take
# the fixtures with them.


@pytest_asyncio.fixture
async def customer_factory(db_session: AsyncSession):
    """Factory for creating test customers."""

    async def _create_customer(
        first_name: str | None = "Sam",
        mobile_number: str | None = None,
        sms_status: str = SmsStatus.ACTIVE,
        marketing_sms_opt_in: bool = False,
    ) -> Customer:
        if mobile_number is None:
            mobile_number = f"+4477{uuid.uuid4().int % 10**8:08d}"

        customer = Customer(
            first_name=first_name,
            mobile_number=mobile_number,
            sms_status=sms_status,
            marketing_sms_opt_in=marketing_sms_opt_in,
        )
        db_session.add(customer)
        await db_session.commit()
        return customer

    return _create_customer


@pytest_asyncio.fixture
async def event_factory(db_session: AsyncSession):
    """Factory for creating test events."""

    async def _create_event(
        name: str = "Quiz Night",
        start_datetime: datetime | None = None,
        date: date | None = None,
        time: time | None = None,
        event_status: str = EventStatus.SCHEDULED,
        event_type: str | None = "quiz",
        category_id: str | None = None,
        booking_open: bool = True,
    ) -> Event:
        event = Event(
            name=name,
            start_datetime=start_datetime,
            date=date,
            time=time,
            event_status=event_status,
            event_type=event_type,
            category_id=category_id,
            booking_open=booking_open,
        )
        db_session.add(event)
        await db_session.commit()
        return event

    return _create_event


@pytest_asyncio.fixture
async def booking_factory(db_session: AsyncSession, customer_factory, event_factory):
    """Factory for creating test event bookings."""

    async def _create_booking(
        customer: Customer | None = None,
        event: Event | None = None,
        status: str = BookingStatus.CONFIRMED,
        is_reminder_only: bool = False,
        review_sms_sent_at: datetime | None = None,
        review_window_closes_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> EventBooking:
        if customer is None:
            customer = await customer_factory()
        if event is None:
            event = await event_factory(start_datetime=utc_now() + timedelta(days=3))

        booking = EventBooking(
            customer=customer,
            event=event,
            seats=2,
            status=status,
            is_reminder_only=is_reminder_only,
            review_sms_sent_at=review_sms_sent_at,
            review_window_closes_at=review_window_closes_at,
            created_at=created_at or utc_now(),
        )
        db_session.add(booking)
        await db_session.commit()
        return booking

    return _create_booking


@pytest_asyncio.fixture
async def table_booking_factory(db_session: AsyncSession, customer_factory):
    """Factory for creating test table bookings."""

    async def _create_table_booking(
        customer: Customer | None = None,
        start_datetime: datetime | None = None,
        status: str = BookingStatus.CONFIRMED,
        booking_type: str = "regular",
        review_sms_sent_at: datetime | None = None,
        review_window_closes_at: datetime | None = None,
    ) -> TableBooking:
        if customer is None:
            customer = await customer_factory()

        booking = TableBooking(
            customer=customer,
            start_datetime=start_datetime,
            status=status,
            booking_type=booking_type,
            review_sms_sent_at=review_sms_sent_at,
            review_window_closes_at=review_window_closes_at,
        )
        db_session.add(booking)
        await db_session.commit()
        return booking

    return _create_table_booking


@pytest_asyncio.fixture
async def waitlist_factory(db_session: AsyncSession):
    """Factory for creating test waitlist entries."""

    async def _create_entry(customer: Customer, event: Event) -> WaitlistEntry:
        entry = WaitlistEntry(customer_id=customer.id, event_id=event.id)
        db_session.add(entry)
        await db_session.commit()
        return entry

    return _create_entry


@pytest_asyncio.fixture
async def manual_recipient_factory(db_session: AsyncSession):
    """Factory for creating manual interest recipients."""

    async def _create_recipient(customer: Customer, event: Event, **sent_at: datetime) -> ManualInterestRecipient:
        row = ManualInterestRecipient(customer_id=customer.id, event_id=event.id, **sent_at)
        db_session.add(row)
        await db_session.commit()
        return row

    return _create_recipient


@pytest_asyncio.fixture
async def message_factory(db_session: AsyncSession):
    """Factory for creating message log rows."""

    async def _create_message(
        template_key: str | None = "event_reminder_7d",
        customer_id: str | None = None,
        event_booking_id: str | None = None,
        table_booking_id: str | None = None,
        event_id: str | None = None,
        direction: str = MessageDirection.OUTBOUND,
        metadata: dict | None = None,
        created_at: datetime | None = None,
    ) -> Message:
        message = Message(
            customer_id=customer_id,
            event_booking_id=event_booking_id,
            table_booking_id=table_booking_id,
            event_id=event_id,
            template_key=template_key,
            direction=direction,
            to_number="+447700900000",
            body="test",
            status="delivered",
            metadata_json=metadata,
            created_at=created_at or utc_now(),
        )
        db_session.add(message)
        await db_session.commit()
        return message

    return _create_message


@pytest_asyncio.fixture
async def cron_run_factory(db_session: AsyncSession):
    """Factory for creating run ledger rows."""

    async def _create_run(
        job_name: str = "event-guest-engagement",
        run_key: str = "2025-03-03T12:00",
        status: str = CronRunStatus.COMPLETED,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        error_message: str | None = None,
    ) -> CronJobRun:
        run = CronJobRun(
            job_name=job_name,
            run_key=run_key,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            error_message=error_message,
        )
        db_session.add(run)
        await db_session.commit()
        return run

    return _create_run
