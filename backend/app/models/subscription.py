"""
Subscription model mirroring Stripe subscriptions.

WHAT: Local copy of each Stripe subscription, keyed by its Stripe id.

WHY: Stripe is the source of truth for billing. The mirror exists so that
access checks, linking and metrics never need a processor round trip:
1. Webhooks upsert rows keyed by stripe_subscription_id
2. Admin actions write here only after Stripe accepted the change
3. The profile projector copies status/trial_end onto the owning profile

ARCHITECTURE:
- Exactly one row per Stripe subscription (unique constraint)
- user_id may be NULL when payment happened before the account existed;
  the identity linker fills it later
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin, value_enum


class SubscriptionPlan(str, enum.Enum):
    """Billing interval of the subscription's first line item."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriptionStatus(str, enum.Enum):
    """
    Reduced subscription status vocabulary.

    WHY: Stripe reports more statuses than the app distinguishes. The
    synchronizer maps them onto this closed set; anything it does not
    recognise becomes UNKNOWN, which grants no access and is surfaced to
    operators in the metrics rollup.
    """

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"


class Subscription(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Local mirror of a Stripe subscription.

    LIFECYCLE:
    1. checkout.session.completed or customer.subscription.* webhook upserts
    2. invoice.* webhooks and admin actions change status/plan
    3. Deferred linking sets user_id once the payer has an account
    """

    __tablename__ = "subscriptions"

    stripe_subscription_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        doc="Stripe subscription ID (sub_xxx)",
    )
    stripe_customer_id = Column(
        String(255),
        nullable=True,
        index=True,
        doc="Stripe customer ID (cus_xxx)",
    )
    stripe_checkout_session_id = Column(
        String(255),
        nullable=True,
        index=True,
        doc="Checkout session that created the subscription (cs_xxx)",
    )

    user_id = Column(
        Integer,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        doc="Owning profile; NULL until linked",
    )

    plan = Column(
        value_enum(SubscriptionPlan, "subscriptionplan"),
        nullable=False,
        default=SubscriptionPlan.MONTHLY,
    )
    status = Column(
        value_enum(SubscriptionStatus, "subscriptionstatus"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )

    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, stripe_subscription_id={self.stripe_subscription_id}, "
            f"plan={self.plan}, status={self.status}, user_id={self.user_id})>"
        )
