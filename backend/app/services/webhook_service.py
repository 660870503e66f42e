"""
Stripe webhook dispatcher.

WHAT: Routes verified Stripe events to handlers that update the invite
ledger, the subscription mirror and the profile projection.

WHY: Webhooks are the main way billing state reaches this service. Stripe
delivers at least once and in no guaranteed order, so:
1. Every handler is idempotent under redelivery
2. A failing handler never produces a non-2xx response (Stripe would retry
   forever); instead the failure is stored in webhook_event_failures

HOW:
- checkout.session.completed   -> settle invite, sync subscription, queue email
- invoice.paid                  -> status active
- invoice.payment_failed        -> status past_due
- customer.subscription.deleted -> status canceled
- customer.subscription.created/updated -> full upsert
Every subscription change is followed by a projection onto the owner.
Invite emails are queued, and the endpoint sends them only after the
transaction commits, so a payer never receives a code that was not stored.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import StripeError
from app.dao.invite_code import InviteCodeDAO
from app.dao.webhook_event import WebhookEventFailureDAO
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier
from app.models.subscription import SubscriptionStatus
from app.services.email import EmailResult, EmailService, get_email_service
from app.services.invite_code_service import InviteCodeService, deep_link
from app.services.profile_projector import ProfileProjector
from app.services.stripe_service import StripeService, WebhookEvent, get_stripe_service
from app.services.subscription_service import SubscriptionSyncService

logger = logging.getLogger(__name__)


Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class WebhookService:
    """
    Service dispatching Stripe webhook events.

    HOW: One handler per event type; unknown types are acknowledged and
    ignored.
    """

    def __init__(
        self,
        db: AsyncSession,
        stripe_service: Optional[StripeService] = None,
        email_service: Optional[EmailService] = None,
    ):
        """
        Initialize webhook dispatcher.

        Args:
            db: Async database session for this delivery
            stripe_service: Stripe client (defaults to the shared instance)
            email_service: Email sender (defaults to the shared instance)
        """
        self.db = db
        self.stripe = stripe_service or get_stripe_service()
        self.email = email_service or get_email_service()
        self.ledger = InviteCodeService(db)
        self.invites = InviteCodeDAO(db)
        self.sync = SubscriptionSyncService(db)
        self.projector = ProfileProjector(db)
        self.failures = WebhookEventFailureDAO(db)

        # send_invite_email kwargs, held until the caller has committed
        self._queued_emails: List[Dict[str, Any]] = []

        self._handlers: Dict[str, Handler] = {
            "checkout.session.completed": self.handle_checkout_completed,
            "invoice.paid": self.handle_invoice_paid,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "customer.subscription.updated": self.handle_subscription_changed,
            "customer.subscription.created": self.handle_subscription_changed,
        }

    async def process(self, event: WebhookEvent) -> bool:
        """
        Dispatch one verified event.

        WHAT: Runs the handler for the event type inside a SAVEPOINT. Handler
        exceptions are caught here, the savepoint is rolled back and a
        WebhookEventFailure row is written in its place.

        Returns:
            True if the event was handled (or ignored), False if it failed
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(
                f"Ignoring unhandled webhook event type {event.type}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return True

        queued_before = len(self._queued_emails)
        try:
            async with self.db.begin_nested():
                await handler(event.data)
        except Exception as e:
            del self._queued_emails[queued_before:]
            # Stripe must still get a 2xx; the failure row is the retry record.
            logger.exception(
                f"Webhook handler for {event.type} failed",
                extra={"event_id": event.id, "event_type": event.type},
            )
            await self.failures.record(
                event_id=event.id,
                event_type=event.type,
                payload=event.payload,
                error=f"{type(e).__name__}: {e}",
            )
            return False

        logger.info(
            f"Processed webhook event {event.id} ({event.type})",
            extra={"event_id": event.id, "event_type": event.type},
        )
        return True

    async def send_queued_emails(self) -> List[EmailResult]:
        """
        Send the invite emails queued by successful handlers.

        Must be called after the session has committed. Failed sends are
        logged by the email service and returned, not raised.
        """
        queued, self._queued_emails = self._queued_emails, []
        return [await self.email.send_invite_email(**message) for message in queued]

    # ========================================================================
    # Checkout
    # ========================================================================

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> None:
        """
        Handle checkout.session.completed.

        WHAT: Marks (or issues) the paid invite, enforces the founding cap,
        mirrors the subscription and emails the code.

        WHY: The payer may not have an account. The invite and subscription
        rows both keep the session id so the identity linker can join them
        once the code is redeemed.
        """
        session_id = session["id"]
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
        if not email:
            logger.warning(
                f"Checkout {session_id} completed without an email; nothing to issue",
                extra={"checkout_session_id": session_id},
            )
            return

        tier = await self._resolve_tier(session_id)
        invite, newly_paid = await self._settle_invite(session, email, tier)

        if tier == InviteTier.FOUNDING:
            await self._enforce_founding_cap()

        stripe_subscription_id = session.get("subscription")
        if stripe_subscription_id:
            stripe_subscription = await self.stripe.retrieve_subscription(stripe_subscription_id)
            subscription = await self.sync.upsert(
                stripe_subscription,
                email=email,
                checkout_session_id=session_id,
            )
            await self.projector.project(subscription)

        if newly_paid:
            is_trial = (session.get("metadata") or {}).get("is_trial") == "true"
            self._queued_emails.append(
                {
                    "to_email": email,
                    "code": invite.code,
                    "deep_link": deep_link(invite.code),
                    "is_trial": is_trial,
                }
            )

    async def _resolve_tier(self, session_id: str) -> InviteTier:
        """Founding if the purchased price is one of the founding prices."""
        if not settings.FOUNDING_PRICE_IDS:
            return InviteTier.STANDARD

        line_items = await self.stripe.list_checkout_line_items(session_id, limit=1)
        if line_items:
            price_id = (line_items[0].get("price") or {}).get("id")
            if price_id in settings.FOUNDING_PRICE_IDS:
                return InviteTier.FOUNDING
        return InviteTier.STANDARD

    async def _settle_invite(
        self,
        session: Dict[str, Any],
        email: str,
        tier: InviteTier,
    ) -> Tuple[InviteCode, bool]:
        """
        Find or create the paid invite for a checkout.

        Returns:
            (invite, newly_paid) where newly_paid is False on replays
        """
        session_id = session["id"]

        reference = session.get("client_reference_id")
        if reference and str(reference).isdigit():
            if await self.invites.mark_paid(int(reference), session_id, tier):
                invite = await self.invites.get_by_id(int(reference))
                logger.info(
                    f"Invite {invite.code} paid via checkout {session_id}",
                    extra={"code": invite.code, "checkout_session_id": session_id},
                )
                return invite, True

        existing = await self.invites.get_by_checkout_session_id(session_id)
        if existing is not None:
            logger.info(
                f"Checkout {session_id} already settled as {existing.code}",
                extra={"code": existing.code, "checkout_session_id": session_id},
            )
            return existing, False

        invite = await self.ledger.generate(
            expiry_days=settings.CHECKOUT_INVITE_EXPIRY_DAYS,
            email=email,
            payment_status=InvitePaymentStatus.PAID,
            tier=tier,
            checkout_session_id=session_id,
        )
        return invite, True

    async def _enforce_founding_cap(self) -> None:
        """Deactivate founding prices once the cap is reached."""
        founding_count = await self.invites.count_by_tier(InviteTier.FOUNDING)
        if founding_count < settings.FOUNDING_MEMBER_CAP:
            return

        logger.info(
            f"Founding cap reached ({founding_count}/{settings.FOUNDING_MEMBER_CAP}); "
            "deactivating founding prices",
            extra={"founding_count": founding_count},
        )
        for price_id in settings.FOUNDING_PRICE_IDS:
            try:
                await self.stripe.deactivate_price(price_id)
            except StripeError:
                # Already logged by the Stripe service; keep going with the rest.
                continue

    # ========================================================================
    # Invoices and subscription lifecycle
    # ========================================================================

    @staticmethod
    def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
        subscription_id = invoice.get("subscription")
        if subscription_id:
            return subscription_id
        # Newer API versions nest it under parent.subscription_details.
        parent = invoice.get("parent") or {}
        return (parent.get("subscription_details") or {}).get("subscription")

    async def _set_status(self, stripe_subscription_id: Optional[str], status: SubscriptionStatus) -> None:
        if not stripe_subscription_id:
            logger.info(f"Event without a subscription id; no {status.value} update")
            return
        subscription = await self.sync.update_status(stripe_subscription_id, status)
        if subscription is not None:
            await self.projector.project(subscription)

    async def handle_invoice_paid(self, invoice: Dict[str, Any]) -> None:
        """Handle invoice.paid."""
        await self._set_status(self._invoice_subscription_id(invoice), SubscriptionStatus.ACTIVE)

    async def handle_invoice_payment_failed(self, invoice: Dict[str, Any]) -> None:
        """Handle invoice.payment_failed."""
        await self._set_status(self._invoice_subscription_id(invoice), SubscriptionStatus.PAST_DUE)

    async def handle_subscription_deleted(self, stripe_subscription: Dict[str, Any]) -> None:
        """Handle customer.subscription.deleted."""
        await self._set_status(stripe_subscription.get("id"), SubscriptionStatus.CANCELED)

    async def handle_subscription_changed(self, stripe_subscription: Dict[str, Any]) -> None:
        """Handle customer.subscription.created and customer.subscription.updated."""
        subscription = await self.sync.upsert(stripe_subscription)
        await self.projector.project(subscription)
