"""
Tests for the subscription synchronizer.

WHAT: Status mapping, plan derivation and idempotent upserts.

WHY: The mirror must converge on one row per Stripe subscription no matter
how often an event is delivered, and a status Stripe adds later must never
be read as "active".
"""

from datetime import datetime

import pytest
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from app.services.subscription_service import (
    SubscriptionSyncService,
    derive_plan,
    map_stripe_status,
    parse_timestamp,
)
from tests.factories import ProfileFactory, SubscriptionFactory, stripe_subscription


class TestStatusMapping:
    """Tests for map_stripe_status."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELED),
            ("unpaid", SubscriptionStatus.CANCELED),
            ("incomplete_expired", SubscriptionStatus.CANCELED),
            ("paused", SubscriptionStatus.PAUSED),
            ("incomplete", SubscriptionStatus.INCOMPLETE),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert map_stripe_status(raw) == expected

    @pytest.mark.parametrize("raw", ["on_hold", "", None])
    def test_unrecognised_status_is_unknown(self, raw):
        """Anything unrecognised grants no access."""
        assert map_stripe_status(raw) == SubscriptionStatus.UNKNOWN


class TestPayloadHelpers:
    """Tests for plan and timestamp helpers."""

    def test_derive_plan_annual(self):
        assert derive_plan(stripe_subscription(interval="year")) == SubscriptionPlan.ANNUAL

    def test_derive_plan_monthly(self):
        assert derive_plan(stripe_subscription(interval="month")) == SubscriptionPlan.MONTHLY

    def test_derive_plan_without_items(self):
        assert derive_plan({"id": "sub_x"}) == SubscriptionPlan.MONTHLY

    def test_parse_timestamp(self):
        assert parse_timestamp(1767225600) == datetime(2026, 1, 1)
        assert parse_timestamp(None) is None


class TestUpsert:
    """Tests for SubscriptionSyncService.upsert."""

    @pytest.mark.asyncio
    async def test_upsert_resolves_owner_by_email(self, db_session: AsyncSession):
        profile = await ProfileFactory.create(db_session, email="payer@example.com")

        subscription = await SubscriptionSyncService(db_session).upsert(
            stripe_subscription(),
            email="Payer@Example.com",
            checkout_session_id="cs_1",
        )

        assert subscription.user_id == profile.id
        assert subscription.stripe_checkout_session_id == "cs_1"
        assert subscription.current_period_end == datetime(2026, 1, 1)

    @pytest.mark.asyncio
    async def test_upsert_without_matching_profile_stays_unlinked(self, db_session: AsyncSession):
        subscription = await SubscriptionSyncService(db_session).upsert(
            stripe_subscription(),
            email="nobody@example.com",
        )

        assert subscription.user_id is None

    @pytest.mark.asyncio
    async def test_replayed_upsert_yields_one_row(self, db_session: AsyncSession):
        service = SubscriptionSyncService(db_session)

        for _ in range(3):
            await service.upsert(stripe_subscription(status="trialing", trial_end=1767225600))

        result = await db_session.execute(select(func.count()).select_from(Subscription))
        assert result.scalar_one() == 1

        stored = await service.dao.get_by_stripe_subscription_id("sub_123")
        assert stored.status == SubscriptionStatus.TRIALING
        assert stored.trial_end == datetime(2026, 1, 1)

    @pytest.mark.asyncio
    async def test_upsert_keeps_linked_owner(self, db_session: AsyncSession):
        profile = await ProfileFactory.create(db_session)
        await SubscriptionFactory.create(db_session, stripe_subscription_id="sub_123", user_id=profile.id)

        subscription = await SubscriptionSyncService(db_session).upsert(
            stripe_subscription(status="past_due")
        )

        assert subscription.user_id == profile.id
        assert subscription.status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_upsert_reads_period_from_item(self, db_session: AsyncSession):
        """Newer API versions only carry the period on the line item."""
        payload = stripe_subscription()
        period_end = payload.pop("current_period_end")
        payload.pop("current_period_start")
        payload["items"]["data"][0]["current_period_end"] = period_end

        subscription = await SubscriptionSyncService(db_session).upsert(payload)

        assert subscription.current_period_end == datetime(2026, 1, 1)


class TestUpdateStatus:
    """Tests for SubscriptionSyncService.update_status."""

    @pytest.mark.asyncio
    async def test_update_status_is_idempotent(self, db_session: AsyncSession):
        await SubscriptionFactory.create(db_session, stripe_subscription_id="sub_idem")
        service = SubscriptionSyncService(db_session)

        first = await service.update_status("sub_idem", SubscriptionStatus.PAST_DUE)
        second = await service.update_status("sub_idem", SubscriptionStatus.PAST_DUE)

        assert first.status == second.status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_update_status_unknown_subscription(self, db_session: AsyncSession):
        assert await SubscriptionSyncService(db_session).update_status("sub_none", SubscriptionStatus.ACTIVE) is None
