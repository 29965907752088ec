"""Tests for interest marketing."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import get_config
from guest_engagement.models.booking import BookingStatus
from guest_engagement.models.interest import ManualInterestRecipient
from guest_engagement.services.marketing import load_marketing_events, process_interest_marketing

pytestmark = pytest.mark.asyncio

NOW = datetime(2025, 3, 3, 12, 0)


@pytest.fixture
def audience(customer_factory, event_factory, booking_factory, manual_recipient_factory):
    """Build an upcoming quiz night six days out with one customer in every segment."""

    async def _build() -> dict:
        target = await event_factory(name="Quiz Night", start_datetime=NOW + timedelta(days=6), event_type="quiz")
        past = await event_factory(
            name="Quiz Night", start_datetime=NOW - timedelta(days=30), event_type="quiz", booking_open=False
        )

        regular = await customer_factory(first_name="Regular", marketing_sms_opt_in=True)
        await booking_factory(customer=regular, event=past, status=BookingStatus.COMPLETED)

        no_opt_in = await customer_factory(first_name="Quiet")
        await booking_factory(customer=no_opt_in, event=past, status=BookingStatus.COMPLETED)

        already_booked = await customer_factory(first_name="Booked", marketing_sms_opt_in=True)
        await booking_factory(customer=already_booked, event=past, status=BookingStatus.COMPLETED)
        await booking_factory(customer=already_booked, event=target)

        manual_new = await customer_factory(first_name="Keen")
        await manual_recipient_factory(manual_new, target)

        manual_done = await customer_factory(first_name="Told")
        await manual_recipient_factory(manual_done, target, reminder_7d_sent_at=NOW - timedelta(hours=2))

        return {
            "target": target,
            "regular": regular,
            "no_opt_in": no_opt_in,
            "already_booked": already_booked,
            "manual_new": manual_new,
            "manual_done": manual_done,
        }

    return _build


def _sends(gateway) -> set[tuple[str, str]]:
    return {(s["customer_id"], s["metadata"]["template_key"]) for s in gateway.sent}


class TestLoadMarketingEvents:
    """Tests for load_marketing_events."""

    async def test_only_open_events_inside_horizon(self, db_session: AsyncSession, event_factory):
        due = await event_factory(start_datetime=NOW + timedelta(days=10))
        await event_factory(start_datetime=NOW + timedelta(days=20))
        await event_factory(start_datetime=NOW + timedelta(days=5), booking_open=False)
        await event_factory(start_datetime=NOW - timedelta(days=1))

        events = await load_marketing_events(db_session, NOW)

        assert [event.id for event, _ in events] == [due.id]


class TestProcessInterestMarketing:
    """Tests for process_interest_marketing."""

    async def test_segments(self, db_session: AsyncSession, audience, fake_gateway, test_settings):
        people = await audience()

        counts = await process_interest_marketing(db_session, fake_gateway, NOW, test_settings)

        assert _sends(fake_gateway) == {
            (people["regular"].id, "event_interest_marketing_14d"),
            (people["manual_new"].id, "event_interest_reminder_7d"),
        }
        assert counts.sent == 2
        assert counts.skipped == 1  # no marketing opt-in
        assert counts.events_processed == 1

        manual = next(s for s in fake_gateway.sent if s["customer_id"] == people["manual_new"].id)
        assert manual["metadata"]["interest_tier"] == "7d"
        assert manual["metadata"]["marketing"] is True
        assert manual["metadata"]["event_id"] == people["target"].id
        assert f"event_id={people['target'].id}" in manual["body"]
        assert "Reply STOP to opt out." in manual["body"]

    async def test_manual_tier_is_stamped_and_never_resent(
        self, db_session: AsyncSession, audience, fake_gateway, test_settings
    ):
        people = await audience()

        await process_interest_marketing(db_session, fake_gateway, NOW, test_settings)
        second = await process_interest_marketing(db_session, fake_gateway, NOW + timedelta(minutes=15), test_settings)

        assert second.sent == 0
        assert len(fake_gateway.sent) == 2

        result = await db_session.execute(
            select(ManualInterestRecipient)
            .where(ManualInterestRecipient.customer_id == people["manual_new"].id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one()
        assert row.reminder_7d_sent_at is not None
        assert row.reminder_14d_sent_at is None

    async def test_run_wide_cap(self, db_session: AsyncSession, audience, fake_gateway, test_settings, monkeypatch):
        monkeypatch.setattr(get_config().engagement, "max_marketing_sends", 1)
        await audience()

        counts = await process_interest_marketing(db_session, fake_gateway, NOW, test_settings)

        assert counts.sent == 1
        assert len(fake_gateway.sent) == 1

    async def test_waitlist_and_category_count_as_interest(
        self,
        db_session: AsyncSession,
        customer_factory,
        event_factory,
        waitlist_factory,
        fake_gateway,
        test_settings,
    ):
        target = await event_factory(start_datetime=NOW + timedelta(days=12), event_type="music", category_id="live")
        past = await event_factory(start_datetime=NOW - timedelta(days=60), event_type="tribute", category_id="live")
        other = await event_factory(start_datetime=NOW - timedelta(days=60), event_type="music", category_id="comedy")
        fan = await customer_factory(marketing_sms_opt_in=True)
        stranger = await customer_factory(marketing_sms_opt_in=True)
        await waitlist_factory(fan, past)
        await waitlist_factory(stranger, other)

        await process_interest_marketing(db_session, fake_gateway, NOW, test_settings)

        assert _sends(fake_gateway) == {(fan.id, "event_interest_marketing_14d")}
        assert fake_gateway.sent[0]["metadata"]["event_id"] == target.id

    async def test_reminder_only_bookings_stand_in_without_manual_table(
        self,
        db_session: AsyncSession,
        customer_factory,
        event_factory,
        booking_factory,
        fake_gateway,
        test_settings,
        monkeypatch,
    ):
        target = await event_factory(start_datetime=NOW + timedelta(hours=20), event_type="quiz")
        interested = await customer_factory()
        await booking_factory(customer=interested, event=target, is_reminder_only=True)

        real_execute = db_session.execute

        async def execute(statement, *args, **kwargs):
            if "event_interest_manual_recipients" in str(statement):
                raise OperationalError(
                    "select", {}, Exception("no such table: event_interest_manual_recipients")
                )
            return await real_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", execute)

        counts = await process_interest_marketing(db_session, fake_gateway, NOW, test_settings)

        assert counts.sent == 1
        assert _sends(fake_gateway) == {(interested.id, "event_interest_reminder_1d")}
