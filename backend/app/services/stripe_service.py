"""
Stripe payment service for subscription billing.

WHAT: Provides a unified interface for the Stripe operations the billing
core needs: webhook verification, subscription reads and changes, price
deactivation, refunds, checkout and billing portal sessions.

WHY: Stripe is the source of truth for billing state. Every call that can
change it goes through this class so that:
1. Processor failures surface as one exception type (StripeError)
2. Callers can apply the "processor first, then mirror" rule uniformly
3. Tests patch the Stripe SDK at one seam

HOW: Uses the Stripe Python SDK with:
- Webhook signature verification (OWASP A02)
- SDK objects converted to plain dicts before they leave this class
- Structured logging of every mutating call

Design decisions:
- No retries here: webhooks are retried by the dead-letter review, admin
  actions are retried by the operator
- Service class pattern: Testable with mocked Stripe SDK
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

import stripe

from app.core.config import settings
from app.core.exceptions import StripeError, WebhookSignatureError

logger = logging.getLogger(__name__)


# ============================================================================
# Stripe Configuration
# ============================================================================


def configure_stripe() -> None:
    """
    Configure Stripe SDK with API key from settings.

    WHY: Must be called before any Stripe API operations. The API version is
    pinned because the subscription payload shape (period fields, line
    items) depends on it.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION


# Initialize Stripe on module load
configure_stripe()


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """
    Convert a Stripe SDK object to a plain dict.

    WHY: StripeObject is not a dict subclass on current SDK releases, so
    callers using .get() would raise AttributeError.
    """
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return dict(obj)


# ============================================================================
# Data Classes
# ============================================================================


@dataclass
class CheckoutSession:
    """
    Represents a Stripe Checkout Session created for an invite.

    WHY: The invite row stores both values; the URL is what the admin sends
    to the recipient.
    """

    id: str
    """Stripe Checkout Session ID (cs_xxx)."""

    url: str
    """URL to redirect the payer to."""


@dataclass
class WebhookEvent:
    """
    Represents a verified Stripe webhook event.

    WHAT: Data container for webhook event data.

    WHY: Handlers receive plain dicts, independent of the SDK object model.
    """

    id: str
    """Event ID (evt_xxx)."""

    type: str
    """Event type (e.g., checkout.session.completed)."""

    data: Dict[str, Any]
    """The event's data.object."""

    created: int
    """Unix timestamp when event was created."""

    payload: Dict[str, Any]
    """Full decoded event body, stored on handler failure."""


# ============================================================================
# Stripe Service
# ============================================================================


class StripeService:
    """
    Service for Stripe billing operations.

    WHAT: High-level interface for Stripe subscription processing.

    HOW: Each method wraps one SDK call and converts stripe.StripeError into
    the application's StripeError with the processor message attached.
    """

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize Stripe service.

        Args:
            api_key: Optional Stripe API key (defaults to settings)
        """
        if api_key:
            stripe.api_key = api_key

    # ========================================================================
    # Webhook Handling
    # ========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
        webhook_secret: Optional[str] = None,
    ) -> WebhookEvent:
        """
        Verify Stripe webhook signature and parse event.

        WHAT: Validates that webhook came from Stripe.

        WHY: Security critical (OWASP A02). Nothing in the payload is trusted
        or even read before this succeeds.

        HOW: stripe.Webhook.construct_event checks the HMAC-SHA256 signature
        and timestamp tolerance; the verified body is then decoded to a
        plain dict for the handlers.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value
            webhook_secret: Optional webhook signing secret (defaults to settings)

        Returns:
            WebhookEvent with verified event data

        Raises:
            WebhookSignatureError: If the header is missing or does not verify
        """
        if not signature:
            logger.warning("Webhook received without Stripe-Signature header")
            raise WebhookSignatureError()

        secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise WebhookSignatureError()
        except ValueError as e:
            logger.warning(f"Webhook payload is not valid JSON: {e}")
            raise WebhookSignatureError()

        body = json.loads(payload)
        event = WebhookEvent(
            id=body["id"],
            type=body["type"],
            data=body.get("data", {}).get("object", {}),
            created=body.get("created", 0),
            payload=body,
        )

        logger.info(
            f"Verified webhook event {event.id} type {event.type}",
            extra={"event_id": event.id, "event_type": event.type},
        )
        return event

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Retrieve a subscription by ID.

        WHY: The checkout event only carries the subscription id; status,
        plan and periods come from the subscription itself.

        Raises:
            StripeError: If the subscription cannot be retrieved
        """
        try:
            return to_plain_dict(stripe.Subscription.retrieve(subscription_id))
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription retrieval error: {e}")
            raise StripeError(
                message="Failed to retrieve subscription",
                stripe_error=str(e),
                subscription_id=subscription_id,
            )

    async def cancel_subscription(
        self,
        subscription_id: str,
        at_period_end: bool = True,
    ) -> Dict[str, Any]:
        """
        Cancel a subscription now or at the end of the current period.

        Args:
            subscription_id: Stripe subscription ID
            at_period_end: Schedule instead of cancelling immediately

        Raises:
            StripeError: If Stripe rejects the change
        """
        try:
            if at_period_end:
                result = stripe.Subscription.modify(
                    subscription_id,
                    cancel_at_period_end=True,
                )
            else:
                result = stripe.Subscription.cancel(subscription_id)

            logger.info(
                f"Canceled subscription {subscription_id}",
                extra={
                    "subscription_id": subscription_id,
                    "at_period_end": at_period_end,
                },
            )
            return to_plain_dict(result)

        except stripe.StripeError as e:
            logger.error(f"Stripe cancel error: {e}")
            raise StripeError(
                message="Failed to cancel subscription",
                stripe_error=str(e),
                subscription_id=subscription_id,
            )

    async def set_pause(self, subscription_id: str, paused: bool) -> Dict[str, Any]:
        """
        Pause or resume payment collection.

        HOW: Pausing voids invoices raised while paused; resuming clears
        pause_collection (Stripe takes an empty string to unset a field).

        Raises:
            StripeError: If Stripe rejects the change
        """
        pause_collection: Any = {"behavior": "void"} if paused else ""
        try:
            result = stripe.Subscription.modify(
                subscription_id,
                pause_collection=pause_collection,
            )
            logger.info(
                f"{'Paused' if paused else 'Resumed'} subscription {subscription_id}",
                extra={"subscription_id": subscription_id, "paused": paused},
            )
            return to_plain_dict(result)

        except stripe.StripeError as e:
            logger.error(f"Stripe pause error: {e}")
            raise StripeError(
                message="Failed to pause subscription" if paused else "Failed to resume subscription",
                stripe_error=str(e),
                subscription_id=subscription_id,
            )

    async def update_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
    ) -> Dict[str, Any]:
        """
        Move a subscription's first item to another price with proration.

        HOW: Stripe requires the existing item id to replace a price rather
        than add a second item, so the subscription is read first.

        Raises:
            StripeError: If either call fails
        """
        try:
            subscription = to_plain_dict(stripe.Subscription.retrieve(subscription_id))
            items = (subscription.get("items") or {}).get("data") or []
            if not items:
                raise StripeError(
                    message="Subscription has no items to change",
                    subscription_id=subscription_id,
                )

            result = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": items[0]["id"], "price": price_id}],
                proration_behavior="create_prorations",
            )
            logger.info(
                f"Changed price of subscription {subscription_id} to {price_id}",
                extra={"subscription_id": subscription_id, "price_id": price_id},
            )
            return to_plain_dict(result)

        except stripe.StripeError as e:
            logger.error(f"Stripe plan change error: {e}")
            raise StripeError(
                message="Failed to change subscription plan",
                stripe_error=str(e),
                subscription_id=subscription_id,
            )

    # ========================================================================
    # Checkout Sessions and Prices
    # ========================================================================

    async def list_checkout_line_items(
        self,
        session_id: str,
        limit: int = 1,
    ) -> List[Dict[str, Any]]:
        """
        List the line items of a completed checkout session.

        WHY: Checkout events do not embed line items; the purchased price
        decides the invite tier.

        Raises:
            StripeError: If the call fails
        """
        try:
            items = stripe.checkout.Session.list_line_items(session_id, limit=limit)
            return to_plain_dict(items).get("data") or []
        except stripe.StripeError as e:
            logger.error(f"Stripe line item error: {e}")
            raise StripeError(
                message="Failed to list checkout line items",
                stripe_error=str(e),
                session_id=session_id,
            )

    async def deactivate_price(self, price_id: str) -> None:
        """
        Mark a price inactive so new checkouts cannot use it.

        Raises:
            StripeError: If the call fails
        """
        try:
            stripe.Price.modify(price_id, active=False)
            logger.info(f"Deactivated price {price_id}", extra={"price_id": price_id})
        except stripe.StripeError as e:
            logger.error(f"Stripe price deactivation error: {e}")
            raise StripeError(
                message="Failed to deactivate price",
                stripe_error=str(e),
                price_id=price_id,
            )

    async def create_checkout_session(
        self,
        email: str,
        client_reference_id: str,
        price_id: str,
        success_url: Optional[str] = None,
        trial_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a subscription-mode Checkout Session.

        WHAT: Hosted checkout page for a specific invite.

        WHY: client_reference_id carries the invite id, so the completion
        webhook flips that invite to paid instead of issuing a new one.

        Args:
            email: Recipient email, prefilled on the page
            client_reference_id: Local invite id
            price_id: Stripe price to subscribe to
            success_url: Redirect after payment (defaults to CHECKOUT_SUCCESS_URL)
            trial_days: Optional free trial length
            metadata: Extra metadata echoed back in the webhook

        Returns:
            CheckoutSession with id and redirect URL

        Raises:
            StripeError: If Stripe API call fails
        """
        params: Dict[str, Any] = {
            "mode": "subscription",
            "customer_email": email,
            "client_reference_id": client_reference_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or settings.CHECKOUT_SUCCESS_URL,
            "cancel_url": settings.CHECKOUT_CANCEL_URL,
            "metadata": metadata or {},
        }
        if trial_days:
            params["subscription_data"] = {"trial_period_days": trial_days}

        try:
            session = stripe.checkout.Session.create(**params)

            logger.info(
                f"Created checkout session {session['id']} for invite {client_reference_id}",
                extra={
                    "checkout_session_id": session["id"],
                    "invite_id": client_reference_id,
                    "price_id": price_id,
                },
            )
            return CheckoutSession(id=session["id"], url=session["url"])

        except stripe.StripeError as e:
            logger.error(
                f"Stripe checkout session error: {e}",
                extra={"invite_id": client_reference_id},
            )
            raise StripeError(
                message="Failed to create checkout session",
                stripe_error=str(e),
            )

    async def create_billing_portal_session(
        self,
        customer_id: str,
        return_url: str,
    ) -> str:
        """
        Create a billing portal session and return its URL.

        Raises:
            StripeError: If Stripe API call fails
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session["url"]
        except stripe.StripeError as e:
            logger.error(f"Stripe billing portal error: {e}")
            raise StripeError(
                message="Failed to create billing portal session",
                stripe_error=str(e),
                customer_id=customer_id,
            )

    # ========================================================================
    # Payments and Refunds
    # ========================================================================

    async def list_payment_intents(
        self,
        customer_id: str,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """
        List a customer's payments, newest first.

        Returns:
            Simplified payment records (id, amount, currency, status, created)

        Raises:
            StripeError: If Stripe API call fails
        """
        try:
            intents = stripe.PaymentIntent.list(customer=customer_id, limit=limit)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment history error: {e}")
            raise StripeError(
                message="Failed to list payments",
                stripe_error=str(e),
                customer_id=customer_id,
            )

        return [
            {
                "id": intent["id"],
                "amount": intent["amount"],
                "currency": intent["currency"],
                "status": intent["status"],
                "created": intent["created"],
                "description": intent.get("description"),
            }
            for intent in to_plain_dict(intents).get("data") or []
        ]

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a refund for a PaymentIntent.

        WHAT: Refunds a payment (full when amount_cents is omitted).

        Args:
            payment_intent_id: PaymentIntent to refund
            amount_cents: Optional partial refund amount in cents
            reason: Optional Stripe refund reason

        Returns:
            Refund id, amount and status

        Raises:
            StripeError: If refund fails
        """
        try:
            refund_params: Dict[str, Any] = {
                "payment_intent": payment_intent_id,
            }

            if amount_cents:
                refund_params["amount"] = amount_cents

            if reason:
                refund_params["reason"] = reason

            refund = stripe.Refund.create(**refund_params)

            logger.info(
                f"Created refund {refund['id']} for payment {payment_intent_id}",
                extra={
                    "refund_id": refund["id"],
                    "payment_intent_id": payment_intent_id,
                    "amount": amount_cents,
                },
            )

            return {
                "id": refund["id"],
                "amount": refund["amount"],
                "status": refund["status"],
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {e}")
            raise StripeError(
                message="Failed to create refund",
                stripe_error=str(e),
                payment_intent_id=payment_intent_id,
            )


# ============================================================================
# Module-level convenience functions
# ============================================================================


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """
    Get or create the global Stripe service instance.

    Returns:
        StripeService instance
    """
    global _stripe_service

    if _stripe_service is None:
        _stripe_service = StripeService()

    return _stripe_service
