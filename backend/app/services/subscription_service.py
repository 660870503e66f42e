"""
Subscription synchronizer.

WHAT: Applies Stripe subscription state to the local mirror.

WHY: Stripe is the source of truth for billing, but the app needs status,
plan and owner locally for access checks, linking and metrics. Webhooks
arrive at least once and may be replayed, so every write must converge:
1. Full subscription payloads are upserted by stripe_subscription_id
2. Invoice and deletion events only move the status
3. Owners are resolved by email when known and never cleared afterwards

HOW: Pure mapping helpers (status, plan, timestamps) plus
SubscriptionSyncService, which resolves the owner and delegates the write to
SubscriptionDAO. Projection onto the profile is the caller's next step.

Design decisions:
- Unrecognised Stripe statuses become UNKNOWN (never ACTIVE), logged at
  warning for operator review
- No ordering guard: a late customer.subscription.updated can overwrite a
  newer status. The next event repairs it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.profile import ProfileDAO
from app.dao.subscription import SubscriptionDAO
from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus

logger = logging.getLogger(__name__)


# ============================================================================
# Mapping helpers
# ============================================================================


STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAUSED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
}


def map_stripe_status(raw_status: Optional[str]) -> SubscriptionStatus:
    """
    Reduce a Stripe subscription status to the local vocabulary.

    Args:
        raw_status: Stripe's status string

    Returns:
        Mapped status; UNKNOWN for anything unrecognised
    """
    status = STRIPE_STATUS_MAP.get(raw_status or "")
    if status is None:
        logger.warning(
            f"Unrecognised Stripe subscription status {raw_status!r}; recording as unknown",
            extra={"stripe_status": raw_status},
        )
        return SubscriptionStatus.UNKNOWN
    return status


def _first_item(stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def derive_plan(stripe_subscription: Dict[str, Any]) -> SubscriptionPlan:
    """Annual when the first item's price recurs yearly, monthly otherwise."""
    price = _first_item(stripe_subscription).get("price") or {}
    recurring = price.get("recurring") or {}
    if recurring.get("interval") == "year":
        return SubscriptionPlan.ANNUAL
    return SubscriptionPlan.MONTHLY


def parse_timestamp(ts: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to a naive UTC datetime."""
    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)
    return None


def _period_timestamp(stripe_subscription: Dict[str, Any], key: str) -> Optional[datetime]:
    # Newer API versions carry the period on the item instead of the subscription.
    value = stripe_subscription.get(key)
    if value is None:
        value = _first_item(stripe_subscription).get(key)
    return parse_timestamp(value)


# ============================================================================
# Synchronizer
# ============================================================================


class SubscriptionSyncService:
    """
    Service keeping the local subscription mirror in step with Stripe.

    HOW: Coordinates ProfileDAO (owner resolution) and SubscriptionDAO
    (idempotent writes).
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize subscription synchronizer.

        Args:
            db: Async database session
        """
        self.db = db
        self.dao = SubscriptionDAO(db)
        self.profiles = ProfileDAO(db)

    async def upsert(
        self,
        stripe_subscription: Dict[str, Any],
        email: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Subscription:
        """
        Insert or refresh the mirror of a Stripe subscription.

        WHAT: Writes status, plan, periods and trial end; attaches an owner
        when one can be resolved.

        WHY: Replaying the same payload yields the same single row.

        HOW: Owner resolution order:
        1. Profile whose email matches (case-insensitive)
        2. Owner already stored on the row (kept by the DAO)
        3. None: the identity linker resolves it after sign-up

        Args:
            stripe_subscription: Stripe subscription object
            email: Payer email from the checkout, if known
            checkout_session_id: Checkout session that created the subscription

        Returns:
            The stored Subscription
        """
        user_id = None
        if email:
            profile = await self.profiles.get_by_email(email)
            if profile is not None:
                user_id = profile.id

        subscription = await self.dao.upsert(
            {
                "stripe_subscription_id": stripe_subscription["id"],
                "stripe_customer_id": stripe_subscription.get("customer"),
                "stripe_checkout_session_id": checkout_session_id,
                "user_id": user_id,
                "plan": derive_plan(stripe_subscription),
                "status": map_stripe_status(stripe_subscription.get("status")),
                "current_period_start": _period_timestamp(stripe_subscription, "current_period_start"),
                "current_period_end": _period_timestamp(stripe_subscription, "current_period_end"),
                "trial_end": parse_timestamp(stripe_subscription.get("trial_end")),
            }
        )

        logger.info(
            f"Synced subscription {subscription.stripe_subscription_id} "
            f"(status={subscription.status.value}, plan={subscription.plan.value})",
            extra={
                "stripe_subscription_id": subscription.stripe_subscription_id,
                "user_id": subscription.user_id,
            },
        )
        return subscription

    async def update_status(
        self,
        stripe_subscription_id: str,
        status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        """
        Move a known subscription to a new status.

        Returns:
            Updated Subscription, or None if it is not mirrored locally
        """
        subscription = await self.dao.update_status(stripe_subscription_id, status)
        if subscription is None:
            logger.warning(
                f"Status update for unknown subscription {stripe_subscription_id}",
                extra={"stripe_subscription_id": stripe_subscription_id, "status": status.value},
            )
            return None

        logger.info(
            f"Subscription {stripe_subscription_id} is now {status.value}",
            extra={"stripe_subscription_id": stripe_subscription_id, "status": status.value},
        )
        return subscription
