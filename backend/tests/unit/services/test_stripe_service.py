"""
Tests for the Stripe service wrapper.

WHAT: Webhook signature verification and the SDK seam.

HOW: Signatures are produced with the real HMAC scheme; SDK calls are
patched on the stripe module and return StripeObjects built from plain
payloads, as the SDK does.
"""

from unittest.mock import patch

import pytest
import stripe

from app.core.exceptions import StripeError, WebhookSignatureError
from app.services.stripe_service import StripeService
from tests.factories import sign_webhook, stripe_event, stripe_object, stripe_subscription


class TestVerifyWebhookSignature:
    """Tests for StripeService.verify_webhook_signature."""

    def test_valid_signature(self):
        body, header = sign_webhook(stripe_event("invoice.paid", {"id": "in_1", "subscription": "sub_1"}))

        event = StripeService().verify_webhook_signature(body, header)

        assert event.id == "evt_1"
        assert event.type == "invoice.paid"
        assert event.data["subscription"] == "sub_1"
        assert event.payload["data"]["object"]["id"] == "in_1"

    def test_wrong_secret_is_rejected(self):
        body, header = sign_webhook(stripe_event("invoice.paid", {"id": "in_1"}), secret="whsec_other")

        with pytest.raises(WebhookSignatureError):
            StripeService().verify_webhook_signature(body, header)

    def test_tampered_body_is_rejected(self):
        body, header = sign_webhook(stripe_event("invoice.paid", {"id": "in_1"}))

        with pytest.raises(WebhookSignatureError):
            StripeService().verify_webhook_signature(body.replace(b"in_1", b"in_2"), header)

    def test_stale_timestamp_is_rejected(self):
        body, header = sign_webhook(stripe_event("invoice.paid", {"id": "in_1"}), timestamp=1_000_000)

        with pytest.raises(WebhookSignatureError):
            StripeService().verify_webhook_signature(body, header)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        body, _ = sign_webhook(stripe_event("invoice.paid", {"id": "in_1"}))

        with pytest.raises(WebhookSignatureError):
            StripeService().verify_webhook_signature(body, header)


class TestSubscriptionCalls:
    """Tests for the subscription SDK calls."""

    @pytest.mark.asyncio
    async def test_retrieve_subscription(self):
        with patch("stripe.Subscription.retrieve", return_value=stripe_object(stripe_subscription())) as retrieve:
            subscription = await StripeService().retrieve_subscription("sub_123")

        retrieve.assert_called_once_with("sub_123")
        assert type(subscription) is dict
        assert subscription.get("status") == "active"
        assert subscription["items"]["data"][0].get("price")["id"] == "price_x"

    @pytest.mark.asyncio
    async def test_sdk_error_is_wrapped(self):
        error = stripe.InvalidRequestError("No such subscription: 'sub_404'", "id")

        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(StripeError) as exc_info:
                await StripeService().retrieve_subscription("sub_404")

        assert exc_info.value.status_code == 502
        assert "No such subscription" in exc_info.value.context["stripe_error"]

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_schedules(self):
        with patch("stripe.Subscription.modify", return_value={}) as modify, patch(
            "stripe.Subscription.cancel"
        ) as cancel:
            await StripeService().cancel_subscription("sub_123")

        modify.assert_called_once_with("sub_123", cancel_at_period_end=True)
        cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_immediately(self):
        with patch("stripe.Subscription.cancel", return_value={}) as cancel:
            await StripeService().cancel_subscription("sub_123", at_period_end=False)

        cancel.assert_called_once_with("sub_123")

    @pytest.mark.asyncio
    async def test_resume_clears_pause_collection(self):
        with patch("stripe.Subscription.modify", return_value={}) as modify:
            await StripeService().set_pause("sub_123", paused=False)

        modify.assert_called_once_with("sub_123", pause_collection="")

    @pytest.mark.asyncio
    async def test_price_change_replaces_existing_item(self):
        with patch("stripe.Subscription.retrieve", return_value=stripe_object(stripe_subscription())), patch(
            "stripe.Subscription.modify", return_value={}
        ) as modify:
            await StripeService().update_subscription_price("sub_123", "price_annual")

        modify.assert_called_once_with(
            "sub_123",
            items=[{"id": "si_123", "price": "price_annual"}],
            proration_behavior="create_prorations",
        )

    @pytest.mark.asyncio
    async def test_price_change_without_items(self):
        empty = stripe_object({**stripe_subscription(), "items": {"data": []}})

        with patch("stripe.Subscription.retrieve", return_value=empty), patch(
            "stripe.Subscription.modify"
        ) as modify:
            with pytest.raises(StripeError) as exc_info:
                await StripeService().update_subscription_price("sub_123", "price_annual")

        modify.assert_not_called()
        assert exc_info.value.context["subscription_id"] == "sub_123"

    @pytest.mark.asyncio
    async def test_checkout_line_items_are_plain_dicts(self):
        line_items = stripe_object({"object": "list", "data": [{"id": "li_1", "price": {"id": "price_founding"}}]})

        with patch("stripe.checkout.Session.list_line_items", return_value=line_items) as list_items:
            items = await StripeService().list_checkout_line_items("cs_1")

        list_items.assert_called_once_with("cs_1", limit=1)
        assert items[0].get("price", {}).get("id") == "price_founding"


class TestPaymentCalls:
    """Tests for refunds, payment history and checkout."""

    @pytest.mark.asyncio
    async def test_full_refund_omits_amount(self):
        refund = {"id": "re_1", "amount": 1999, "status": "succeeded"}

        with patch("stripe.Refund.create", return_value=stripe_object(refund)) as create:
            result = await StripeService().create_refund("pi_1")

        create.assert_called_once_with(payment_intent="pi_1")
        assert result == refund

    @pytest.mark.asyncio
    async def test_partial_refund(self):
        refund = {"id": "re_2", "amount": 500, "status": "pending"}

        with patch("stripe.Refund.create", return_value=refund) as create:
            result = await StripeService().create_refund("pi_1", amount_cents=500, reason="duplicate")

        create.assert_called_once_with(payment_intent="pi_1", amount=500, reason="duplicate")
        assert result["status"] == "pending"

    @pytest.mark.asyncio
    async def test_payment_history_is_simplified(self):
        intents = {
            "data": [
                {
                    "id": "pi_1",
                    "amount": 1999,
                    "currency": "usd",
                    "status": "succeeded",
                    "created": 1767225600,
                    "client_secret": "pi_1_secret",
                }
            ]
        }

        with patch("stripe.PaymentIntent.list", return_value=stripe_object(intents)):
            payments = await StripeService().list_payment_intents("cus_1")

        assert payments == [
            {
                "id": "pi_1",
                "amount": 1999,
                "currency": "usd",
                "status": "succeeded",
                "created": 1767225600,
                "description": None,
            }
        ]

    @pytest.mark.asyncio
    async def test_checkout_session_with_trial(self):
        session = {"id": "cs_1", "url": "https://checkout.stripe.com/c/pay/cs_1"}

        with patch("stripe.checkout.Session.create", return_value=session) as create:
            result = await StripeService().create_checkout_session(
                email="friend@example.com",
                client_reference_id="42",
                price_id="price_monthly",
                trial_days=14,
            )

        params = create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["client_reference_id"] == "42"
        assert params["subscription_data"] == {"trial_period_days": 14}
        assert result.id == "cs_1"
        assert result.url == "https://checkout.stripe.com/c/pay/cs_1"

    @pytest.mark.asyncio
    async def test_deactivate_price(self):
        with patch("stripe.Price.modify", return_value={}) as modify:
            await StripeService().deactivate_price("price_founding")

        modify.assert_called_once_with("price_founding", active=False)
