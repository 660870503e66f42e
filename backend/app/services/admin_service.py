"""
Admin action gateway.

WHAT: Privileged billing operations: cancel, pause/resume, plan change,
refund, admin-initiated checkout, payment history and billing portal, plus
the member list and account deactivation.

WHY: Admins change billing state on behalf of members. The local mirror must
never claim something Stripe did not accept, so every mutation follows one
order:
1. Validate input and look up the local target (400 / 404, no side effects)
2. Call Stripe (StripeError -> 502, local row untouched)
3. Mirror the change locally and project it onto the owner

If step 3 fails after step 2 succeeded, the next webhook for the
subscription repairs the mirror.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ProfileNotFoundError,
    StripeError,
    SubscriptionNotFoundError,
    ValidationError,
)
from app.dao.invite_code import InviteCodeDAO
from app.dao.profile import ProfileDAO
from app.dao.subscription import SubscriptionDAO
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier
from app.models.profile import Profile, ProfileSubscriptionStatus
from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from app.services.invite_code_service import InviteCodeService
from app.services.profile_projector import ProfileProjector
from app.services.stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)


# Refund reasons Stripe accepts.
REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


def price_for_plan(plan: str) -> str:
    """
    Resolve the configured Stripe price for a plan key.

    Raises:
        ValidationError: If the plan is unknown or its price is not configured
    """
    try:
        subscription_plan = SubscriptionPlan(plan)
    except ValueError:
        raise ValidationError(
            message=f"Unknown plan '{plan}'",
            plan=plan,
            allowed=[p.value for p in SubscriptionPlan],
        )

    price_id = {
        SubscriptionPlan.MONTHLY: settings.STRIPE_PRICE_MONTHLY,
        SubscriptionPlan.ANNUAL: settings.STRIPE_PRICE_ANNUAL,
    }[subscription_plan]
    if not price_id:
        raise ValidationError(
            message=f"No Stripe price configured for plan '{plan}'",
            plan=plan,
        )
    return price_id


class AdminService:
    """
    Service behind the /api/admin billing endpoints.

    HOW: Coordinates StripeService with SubscriptionDAO and the projector.
    """

    def __init__(self, db: AsyncSession, stripe_service: Optional[StripeService] = None):
        """
        Initialize admin service.

        Args:
            db: Async database session
            stripe_service: Stripe client (defaults to the shared instance)
        """
        self.db = db
        self.stripe = stripe_service or get_stripe_service()
        self.subscriptions = SubscriptionDAO(db)
        self.invites = InviteCodeDAO(db)
        self.profiles = ProfileDAO(db)
        self.ledger = InviteCodeService(db)
        self.projector = ProfileProjector(db)

    async def _get_subscription(self, stripe_subscription_id: str) -> Subscription:
        subscription = await self.subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id=stripe_subscription_id)
        return subscription

    async def _mirror(self, subscription: Subscription, admin: Profile, action: str, **values: Any) -> Subscription:
        """Write the accepted change locally and project it."""
        updated = await self.subscriptions.mirror_admin_change(subscription.id, **values)
        await self.projector.project(updated)

        logger.info(
            f"Admin {admin.id} {action} subscription {updated.stripe_subscription_id}",
            extra={
                "admin_id": admin.id,
                "action": action,
                "stripe_subscription_id": updated.stripe_subscription_id,
                "status": updated.status.value,
                "plan": updated.plan.value,
            },
        )
        return updated

    # ========================================================================
    # Subscription mutations
    # ========================================================================

    async def cancel(
        self,
        admin: Profile,
        subscription_id: str,
        at_period_end: bool = True,
    ) -> Subscription:
        """
        Cancel a subscription.

        WHAT: At period end the member keeps access until the period runs
        out, so the local status stays active; Stripe's
        customer.subscription.deleted later moves it to canceled. Immediate
        cancellation is mirrored as canceled right away.

        Raises:
            SubscriptionNotFoundError: Unknown subscription id
            StripeError: Stripe rejected the change
        """
        subscription = await self._get_subscription(subscription_id)
        await self.stripe.cancel_subscription(subscription_id, at_period_end=at_period_end)

        status = SubscriptionStatus.ACTIVE if at_period_end else SubscriptionStatus.CANCELED
        action = "scheduled cancellation of" if at_period_end else "canceled"
        return await self._mirror(subscription, admin, action, status=status)

    async def pause_resume(
        self,
        admin: Profile,
        subscription_id: str,
        pause: bool,
    ) -> Subscription:
        """
        Pause or resume payment collection.

        Raises:
            SubscriptionNotFoundError: Unknown subscription id
            StripeError: Stripe rejected the change
        """
        subscription = await self._get_subscription(subscription_id)
        await self.stripe.set_pause(subscription_id, paused=pause)

        status = SubscriptionStatus.PAUSED if pause else SubscriptionStatus.ACTIVE
        return await self._mirror(subscription, admin, "paused" if pause else "resumed", status=status)

    async def change_plan(
        self,
        admin: Profile,
        subscription_id: str,
        plan: str,
    ) -> Subscription:
        """
        Move a subscription to another plan with proration.

        WHY: The price is resolved before anything else so that an unknown
        plan never reaches Stripe.

        Raises:
            ValidationError: Unknown plan or unconfigured price
            SubscriptionNotFoundError: Unknown subscription id
            StripeError: Stripe rejected the change (local plan unchanged)
        """
        price_id = price_for_plan(plan)
        subscription = await self._get_subscription(subscription_id)

        await self.stripe.update_subscription_price(subscription_id, price_id)

        return await self._mirror(
            subscription,
            admin,
            f"changed plan ({plan}) of",
            plan=SubscriptionPlan(plan),
        )

    # ========================================================================
    # Payments
    # ========================================================================

    async def refund(
        self,
        admin: Profile,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Refund a payment in full or in part.

        WHY: Refunds have no local mirror; the processor result is returned
        and the action is logged.

        Raises:
            ValidationError: Bad amount or reason
            StripeError: Stripe rejected the refund
        """
        if amount_cents is not None and amount_cents <= 0:
            raise ValidationError(message="Refund amount must be positive", amount=amount_cents)
        if reason is not None and reason not in REFUND_REASONS:
            raise ValidationError(
                message=f"Unsupported refund reason '{reason}'",
                allowed=list(REFUND_REASONS),
            )

        refund = await self.stripe.create_refund(
            payment_intent_id,
            amount_cents=amount_cents,
            reason=reason,
        )

        logger.info(
            f"Admin {admin.id} refunded payment {payment_intent_id}",
            extra={
                "admin_id": admin.id,
                "payment_intent_id": payment_intent_id,
                "refund_id": refund["id"],
                "amount": refund["amount"],
            },
        )
        return refund

    async def payment_history(self, customer_id: str) -> List[Dict[str, Any]]:
        """List the last 50 payments of a Stripe customer."""
        return await self.stripe.list_payment_intents(customer_id, limit=50)

    async def billing_portal(self, customer_id: str, return_url: Optional[str] = None) -> str:
        """Create a Stripe billing portal session and return its URL."""
        return await self.stripe.create_billing_portal_session(
            customer_id,
            return_url=return_url or f"{settings.INVITE_DEEP_LINK_SCHEME}://settings",
        )

    # ========================================================================
    # Admin-initiated checkout
    # ========================================================================

    async def create_checkout_session(
        self,
        admin: Profile,
        email: str,
        price_id: str,
        recipient_name: Optional[str] = None,
        note: Optional[str] = None,
        trial_days: Optional[int] = None,
    ) -> InviteCode:
        """
        Issue a pending invite and a Stripe checkout for it.

        WHAT: The admin sends the returned checkout URL to the recipient.
        When the checkout completes, the webhook finds the invite through
        client_reference_id and marks it paid.

        HOW: The invite is stored first so its id can travel to Stripe. If
        Stripe fails the invite is deleted again.

        Returns:
            The pending invite with checkout session id and URL set

        Raises:
            StripeError: Stripe rejected the checkout
        """
        tier = InviteTier.FOUNDING if price_id in settings.FOUNDING_PRICE_IDS else InviteTier.STANDARD

        invite = await self.ledger.generate(
            created_by=admin.id,
            expiry_days=settings.CHECKOUT_INVITE_EXPIRY_DAYS,
            email=email,
            payment_status=InvitePaymentStatus.PENDING_PAYMENT,
            tier=tier,
            recipient_name=recipient_name,
            note=note,
            trial_days=trial_days,
        )

        metadata = {
            "invite_id": str(invite.id),
            "recipient_name": recipient_name or "",
            "admin_initiated": "true",
        }
        if trial_days:
            metadata["is_trial"] = "true"

        try:
            session = await self.stripe.create_checkout_session(
                email=invite.email,
                client_reference_id=str(invite.id),
                price_id=price_id,
                success_url=f"{settings.CHECKOUT_SUCCESS_URL}?plan={tier.value}",
                trial_days=trial_days,
                metadata=metadata,
            )
        except StripeError:
            await self.invites.delete(invite.id)
            raise

        updated = await self.invites.update(
            invite.id,
            stripe_checkout_session_id=session.id,
            checkout_url=session.url,
        )

        logger.info(
            f"Admin {admin.id} created checkout {session.id} for invite {updated.code}",
            extra={
                "admin_id": admin.id,
                "code": updated.code,
                "checkout_session_id": session.id,
                "tier": tier.value,
            },
        )
        return updated

    # ========================================================================
    # Members
    # ========================================================================

    async def list_members(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[Tuple[Profile, List[Subscription]]], int]:
        """
        Page through members with their subscriptions.

        Args:
            search: Substring of email or name
            status: Cached subscription status, or "all" for no filter
            page: 1-based page number
            per_page: Page size

        Returns:
            ([(profile, subscriptions)], total matching profiles)

        Raises:
            ValidationError: Unknown status
        """
        subscription_status = None
        if status and status != "all":
            try:
                subscription_status = ProfileSubscriptionStatus(status)
            except ValueError:
                raise ValidationError(
                    message=f"Unknown subscription status '{status}'",
                    status=status,
                    allowed=["all"] + [s.value for s in ProfileSubscriptionStatus],
                )

        profiles, total = await self.profiles.search_members(
            search=search,
            subscription_status=subscription_status,
            skip=(page - 1) * per_page,
            limit=per_page,
        )

        subscriptions = await self.subscriptions.list_by_user_ids([p.id for p in profiles])
        by_owner: Dict[int, List[Subscription]] = {}
        for subscription in subscriptions:
            by_owner.setdefault(subscription.user_id, []).append(subscription)

        return [(profile, by_owner.get(profile.id, [])) for profile in profiles], total

    async def set_member_active(self, admin: Profile, profile_id: int, is_active: bool) -> Profile:
        """
        Deactivate or reactivate a member account.

        WHY: A deactivated profile is refused on its next authenticated
        request. Subscriptions are left alone; cancelling is a separate
        action.

        Raises:
            ValidationError: Admin deactivating their own account
            ProfileNotFoundError: Unknown profile
        """
        if profile_id == admin.id and not is_active:
            raise ValidationError(
                message="Cannot deactivate your own account",
                profile_id=profile_id,
            )

        profile = await self.profiles.update(profile_id, is_active=is_active)
        if profile is None:
            raise ProfileNotFoundError(profile_id=profile_id)

        logger.info(
            f"Admin {admin.id} {'reactivated' if is_active else 'deactivated'} profile {profile_id}",
            extra={"admin_id": admin.id, "profile_id": profile_id, "is_active": is_active},
        )
        return profile
