"""Tests for guest action tokens."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.core.security import hash_token
from guest_engagement.models.guest_token import GuestToken, GuestTokenAction
from guest_engagement.services.guest_tokens import (
    MANAGE_TOKEN_GRACE,
    MANAGE_TOKEN_MAX_LIFETIME,
    create_guest_token,
    create_manage_booking_link,
    delete_guest_token,
    extend_guest_token,
    manage_token_expiry,
    review_link,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2025, 3, 3, 12, 0)


class TestManageTokenExpiry:
    """Tests for manage_token_expiry."""

    async def test_two_days_after_event(self):
        start = NOW + timedelta(days=5)
        assert manage_token_expiry(start, NOW) == start + MANAGE_TOKEN_GRACE

    async def test_at_least_an_hour_from_now(self):
        start = NOW - timedelta(days=3)
        assert manage_token_expiry(start, NOW) == NOW + timedelta(hours=1)

    async def test_capped(self):
        start = NOW + timedelta(days=365)
        assert manage_token_expiry(start, NOW) == NOW + MANAGE_TOKEN_MAX_LIFETIME

    async def test_unknown_start(self):
        assert manage_token_expiry(None, NOW) == NOW + MANAGE_TOKEN_GRACE


class TestGuestTokens:
    """Tests for token storage helpers."""

    async def test_only_hash_is_stored(self, db_session: AsyncSession, customer_factory):
        customer = await customer_factory()

        raw, hashed = await create_guest_token(
            db_session,
            customer_id=customer.id,
            action_type=GuestTokenAction.REVIEW_REDIRECT,
            expires_at=NOW + timedelta(days=8),
            event_booking_id="booking-1",
        )
        await db_session.commit()

        token = (await db_session.execute(select(GuestToken))).scalar_one()
        assert token.hashed_token == hashed == hash_token(raw)
        assert token.event_booking_id == "booking-1"
        assert review_link("https://example.test/", raw) == f"https://example.test/r/{raw}"

    async def test_extend_and_delete(self, db_session: AsyncSession, customer_factory):
        customer = await customer_factory()
        _, hashed = await create_guest_token(
            db_session,
            customer_id=customer.id,
            action_type=GuestTokenAction.REVIEW_REDIRECT,
            expires_at=NOW + timedelta(days=8),
        )
        await db_session.commit()

        await extend_guest_token(db_session, hashed, NOW + timedelta(days=7))
        await db_session.commit()
        token = await db_session.get(GuestToken, hashed, populate_existing=True)
        assert token.expires_at == NOW + timedelta(days=7)

        await delete_guest_token(db_session, hashed)
        await db_session.commit()
        db_session.expunge_all()
        assert await db_session.get(GuestToken, hashed) is None

    async def test_manage_booking_link(self, db_session: AsyncSession, customer_factory):
        customer = await customer_factory()

        link, hashed = await create_manage_booking_link(
            db_session,
            customer_id=customer.id,
            booking_id="booking-1",
            start=NOW + timedelta(days=2),
            app_base_url="https://example.test",
        )

        assert link.startswith("https://example.test/g/")
        assert link.endswith("/manage-booking")
        token = (await db_session.execute(select(GuestToken))).scalar_one()
        assert token.action_type == GuestTokenAction.MANAGE_BOOKING
        assert token.hashed_token == hashed
