"""
Tests for the Stripe webhook dispatcher.

WHAT: Event routing, idempotent checkout handling, status events, the
founding cap and the dead-letter record for failing handlers.

HOW: The Stripe client is a spec'd mock; email goes to MockEmailProvider.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import StripeError
from app.dao.invite_code import InviteCodeDAO
from app.dao.profile import ProfileDAO
from app.dao.subscription import SubscriptionDAO
from app.dao.webhook_event import WebhookEventFailureDAO
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier
from app.models.profile import ProfileSubscriptionStatus
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.email import EmailService, MockEmailProvider
from app.services.stripe_service import StripeService, WebhookEvent
from app.services.webhook_service import WebhookService
from tests.factories import InviteCodeFactory, ProfileFactory, SubscriptionFactory, stripe_subscription


def make_event(event_type: str, obj: dict, event_id: str = "evt_1") -> WebhookEvent:
    payload = {"id": event_id, "type": event_type, "data": {"object": obj}}
    return WebhookEvent(id=event_id, type=event_type, data=obj, created=0, payload=payload)


def checkout_session(**overrides) -> dict:
    session = {
        "id": "cs_1",
        "object": "checkout.session",
        "customer_email": "payer@example.com",
        "subscription": "sub_123",
        "client_reference_id": None,
        "metadata": {},
    }
    session.update(overrides)
    return session


@pytest.fixture
def stripe_mock():
    mock = MagicMock(spec=StripeService)
    mock.retrieve_subscription.return_value = stripe_subscription()
    mock.list_checkout_line_items.return_value = []
    mock.deactivate_price.return_value = None
    return mock


@pytest.fixture
def service_factory(stripe_mock):
    def build(db):
        return WebhookService(db, stripe_service=stripe_mock, email_service=EmailService(MockEmailProvider()))

    return build


async def _count(session: AsyncSession, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestDispatch:
    """Tests for WebhookService.process routing."""

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_ignored(self, db_session: AsyncSession, service_factory):
        handled = await service_factory(db_session).process(make_event("customer.created", {"id": "cus_1"}))

        assert handled is True
        assert await _count(db_session, InviteCode) == 0

    @pytest.mark.asyncio
    async def test_handler_failure_is_recorded(self, db_session: AsyncSession, service_factory, stripe_mock):
        """
        A handler that raises leaves no partial writes and one failure row.

        WHY: The endpoint still acknowledges the event; the failure row is
        how operators find it.
        """
        stripe_mock.retrieve_subscription.side_effect = RuntimeError("database went away")

        service = service_factory(db_session)
        handled = await service.process(make_event("checkout.session.completed", checkout_session()))

        assert handled is False
        assert await _count(db_session, InviteCode) == 0
        assert await service.send_queued_emails() == []
        assert MockEmailProvider.sent_emails == []

        failures = await WebhookEventFailureDAO(db_session).list_unresolved()
        assert len(failures) == 1
        assert failures[0].event_id == "evt_1"
        assert failures[0].event_type == "checkout.session.completed"
        assert "database went away" in failures[0].error
        assert failures[0].payload["data"]["object"]["id"] == "cs_1"

    @pytest.mark.asyncio
    async def test_mark_failure_resolved(self, db_session: AsyncSession):
        dao = WebhookEventFailureDAO(db_session)
        failure = await dao.record("evt_9", "invoice.paid", {"id": "evt_9"}, "boom")

        resolved = await dao.mark_resolved(failure.id)

        assert resolved.resolved_at is not None
        assert await dao.list_unresolved() == []
        assert await dao.mark_resolved(failure.id) is None


class TestCheckoutCompleted:
    """Tests for checkout.session.completed."""

    @pytest.mark.asyncio
    async def test_new_payer_gets_paid_invite_and_email(self, db_session: AsyncSession, service_factory):
        service = service_factory(db_session)
        await service.process(make_event("checkout.session.completed", checkout_session()))

        # Nothing is sent until the caller has committed
        assert MockEmailProvider.sent_emails == []
        results = await service.send_queued_emails()
        assert [r.success for r in results] == [True]

        invite = await InviteCodeDAO(db_session).get_by_checkout_session_id("cs_1")
        assert invite.payment_status == InvitePaymentStatus.PAID
        assert invite.email == "payer@example.com"
        assert invite.tier == InviteTier.STANDARD

        subscription = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_123")
        assert subscription.user_id is None
        assert subscription.stripe_checkout_session_id == "cs_1"

        assert len(MockEmailProvider.sent_emails) == 1
        message = MockEmailProvider.sent_emails[0]
        assert message.to_email == "payer@example.com"
        assert invite.code in message.html_content
        assert f"arkline://invite?code={invite.code}" in message.html_content

    @pytest.mark.asyncio
    async def test_existing_profile_is_linked_and_projected(self, db_session: AsyncSession, service_factory):
        profile = await ProfileFactory.create(db_session, email="payer@example.com")
        profile_id = profile.id

        await service_factory(db_session).process(
            make_event("checkout.session.completed", checkout_session(customer_email="PAYER@example.com"))
        )

        subscription = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_123")
        assert subscription.user_id == profile_id
        stored = await ProfileDAO(db_session).get_by_id(profile_id)
        assert stored.subscription_status == ProfileSubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_replayed_checkout_is_idempotent(self, db_session: AsyncSession, service_factory):
        service = service_factory(db_session)
        event = make_event("checkout.session.completed", checkout_session())

        await service.process(event)
        await service.process(event)
        await service.send_queued_emails()

        assert await _count(db_session, InviteCode) == 1
        assert await _count(db_session, Subscription) == 1
        assert len(MockEmailProvider.sent_emails) == 1

    @pytest.mark.asyncio
    async def test_admin_initiated_checkout_marks_invite_paid(self, db_session: AsyncSession, service_factory):
        pending = await InviteCodeFactory.create(
            db_session,
            code="ARK-PEND22",
            email="payer@example.com",
            payment_status=InvitePaymentStatus.PENDING_PAYMENT,
            checkout_session_id="cs_admin",
        )
        pending_id = pending.id

        service = service_factory(db_session)
        await service.process(
            make_event(
                "checkout.session.completed",
                checkout_session(id="cs_admin", client_reference_id=str(pending_id), metadata={"is_trial": "true"}),
            )
        )

        invite = await InviteCodeDAO(db_session).get_by_id(pending_id)
        assert invite.payment_status == InvitePaymentStatus.PAID
        assert await _count(db_session, InviteCode) == 1
        await service.send_queued_emails()
        assert MockEmailProvider.sent_emails[0].subject == "Your Arkline Free Trial Has Started"

    @pytest.mark.asyncio
    async def test_checkout_without_email_is_skipped(self, db_session: AsyncSession, service_factory):
        handled = await service_factory(db_session).process(
            make_event("checkout.session.completed", checkout_session(customer_email=None))
        )

        assert handled is True
        assert await _count(db_session, InviteCode) == 0

    @pytest.mark.asyncio
    async def test_email_from_customer_details(self, db_session: AsyncSession, service_factory):
        await service_factory(db_session).process(
            make_event(
                "checkout.session.completed",
                checkout_session(customer_email=None, customer_details={"email": "details@example.com"}),
            )
        )

        invite = await InviteCodeDAO(db_session).get_by_checkout_session_id("cs_1")
        assert invite.email == "details@example.com"


class TestFoundingCap:
    """Founding price purchases and the member cap."""

    @pytest.fixture(autouse=True)
    def founding_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "FOUNDING_PRICE_IDS", ["price_founding_m", "price_founding_y"])
        monkeypatch.setattr(settings, "FOUNDING_MEMBER_CAP", 2)

    @pytest.mark.asyncio
    async def test_founding_purchase_below_cap(self, db_session: AsyncSession, service_factory, stripe_mock):
        stripe_mock.list_checkout_line_items.return_value = [{"price": {"id": "price_founding_m"}}]

        await service_factory(db_session).process(make_event("checkout.session.completed", checkout_session()))

        invite = await InviteCodeDAO(db_session).get_by_checkout_session_id("cs_1")
        assert invite.tier == InviteTier.FOUNDING
        stripe_mock.deactivate_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_reaching_cap_deactivates_founding_prices(
        self, db_session: AsyncSession, service_factory, stripe_mock
    ):
        await InviteCodeFactory.create(db_session, code="ARK-FOUND2", tier=InviteTier.FOUNDING)
        stripe_mock.list_checkout_line_items.return_value = [{"price": {"id": "price_founding_y"}}]
        stripe_mock.deactivate_price.side_effect = [StripeError(message="already inactive"), None]

        handled = await service_factory(db_session).process(
            make_event("checkout.session.completed", checkout_session())
        )

        assert handled is True
        assert stripe_mock.deactivate_price.call_count == 2

    @pytest.mark.asyncio
    async def test_standard_price_is_not_founding(self, db_session: AsyncSession, service_factory, stripe_mock):
        stripe_mock.list_checkout_line_items.return_value = [{"price": {"id": "price_standard"}}]

        await service_factory(db_session).process(make_event("checkout.session.completed", checkout_session()))

        invite = await InviteCodeDAO(db_session).get_by_checkout_session_id("cs_1")
        assert invite.tier == InviteTier.STANDARD


class TestStatusEvents:
    """Invoice and subscription lifecycle events."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type,obj,expected",
        [
            ("invoice.paid", {"id": "in_1", "subscription": "sub_life"}, SubscriptionStatus.ACTIVE),
            ("invoice.payment_failed", {"id": "in_2", "subscription": "sub_life"}, SubscriptionStatus.PAST_DUE),
            (
                "invoice.payment_failed",
                {"id": "in_3", "parent": {"subscription_details": {"subscription": "sub_life"}}},
                SubscriptionStatus.PAST_DUE,
            ),
            ("customer.subscription.deleted", {"id": "sub_life"}, SubscriptionStatus.CANCELED),
        ],
    )
    async def test_status_event_updates_subscription_and_profile(
        self, db_session: AsyncSession, service_factory, event_type, obj, expected
    ):
        profile = await ProfileFactory.create(db_session)
        profile_id = profile.id
        await SubscriptionFactory.create(
            db_session,
            stripe_subscription_id="sub_life",
            user_id=profile_id,
            status=SubscriptionStatus.TRIALING,
        )

        await service_factory(db_session).process(make_event(event_type, obj))

        subscription = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_life")
        assert subscription.status == expected
        stored = await ProfileDAO(db_session).get_by_id(profile_id)
        assert stored.subscription_status.value == expected.value

    @pytest.mark.asyncio
    async def test_invoice_for_unknown_subscription(self, db_session: AsyncSession, service_factory):
        handled = await service_factory(db_session).process(
            make_event("invoice.paid", {"id": "in_9", "subscription": "sub_unknown"})
        )

        assert handled is True
        assert await _count(db_session, Subscription) == 0

    @pytest.mark.asyncio
    async def test_subscription_updated_upserts(self, db_session: AsyncSession, service_factory):
        await service_factory(db_session).process(
            make_event("customer.subscription.updated", stripe_subscription(subscription_id="sub_upd", interval="year"))
        )

        subscription = await SubscriptionDAO(db_session).get_by_stripe_subscription_id("sub_upd")
        assert subscription.plan.value == "annual"
