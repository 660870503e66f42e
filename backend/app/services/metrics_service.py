"""
Admin metrics rollup.

WHAT: Revenue and membership figures computed from the current mirror.

WHY: Operators need MRR, churn and status counts without opening the Stripe
dashboard. The figures are recomputed on every request; nothing is cached.

Churn is an approximation: subscriptions canceled in the trailing 30 days
(by last update) over currently active plus those canceled. It is not a
cohort calculation.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.dao.invite_code import InviteCodeDAO
from app.dao.profile import ProfileDAO
from app.dao.subscription import SubscriptionDAO
from app.models.invite_code import InviteTier
from app.models.subscription import SubscriptionPlan, SubscriptionStatus

logger = logging.getLogger(__name__)


CHURN_WINDOW_DAYS = 30


@dataclass
class BillingMetrics:
    """Snapshot returned by GET /api/admin/metrics."""

    mrr: float
    arr: float
    churn_rate: float
    total_members: int
    active_members: int
    trialing_members: int
    canceled_members: int
    past_due_members: int
    paused_members: int
    unknown_members: int
    founding_members: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MetricsService:
    """Read-only aggregation over subscriptions, profiles and invites."""

    def __init__(self, db: AsyncSession):
        self.subscriptions = SubscriptionDAO(db)
        self.profiles = ProfileDAO(db)
        self.invites = InviteCodeDAO(db)

    async def compute(self, now: datetime = None) -> BillingMetrics:
        """
        Compute the metrics snapshot.

        Args:
            now: Reference time for the churn window (defaults to utcnow)
        """
        now = now or datetime.utcnow()

        active_monthly = await self.subscriptions.count_by_status(
            SubscriptionStatus.ACTIVE, SubscriptionPlan.MONTHLY
        )
        active_annual = await self.subscriptions.count_by_status(
            SubscriptionStatus.ACTIVE, SubscriptionPlan.ANNUAL
        )
        trialing = await self.subscriptions.count_by_status(SubscriptionStatus.TRIALING)
        canceled = await self.subscriptions.count_by_status(SubscriptionStatus.CANCELED)
        past_due = await self.subscriptions.count_by_status(SubscriptionStatus.PAST_DUE)
        paused = await self.subscriptions.count_by_status(SubscriptionStatus.PAUSED)
        unknown = await self.subscriptions.count_by_status(SubscriptionStatus.UNKNOWN)

        mrr = (
            active_monthly * settings.MONTHLY_PRICE_CENTS / 100
            + active_annual * settings.ANNUAL_PRICE_CENTS / 100 / 12
        )
        arr = mrr * 12

        recently_canceled = await self.subscriptions.count_canceled_since(
            now - timedelta(days=CHURN_WINDOW_DAYS)
        )
        active_total = active_monthly + active_annual + trialing
        churn_rate = (
            recently_canceled / (active_total + recently_canceled) * 100
            if active_total > 0
            else 0.0
        )

        if unknown:
            logger.warning(
                f"{unknown} subscription(s) in unknown status need review",
                extra={"unknown_subscriptions": unknown},
            )

        return BillingMetrics(
            mrr=round(mrr, 2),
            arr=round(arr, 2),
            churn_rate=round(churn_rate, 2),
            total_members=await self.profiles.count_with_subscription(),
            active_members=active_monthly + active_annual,
            trialing_members=trialing,
            canceled_members=canceled,
            past_due_members=past_due,
            paused_members=paused,
            unknown_members=unknown,
            founding_members=await self.invites.count_redeemed_by_tier(InviteTier.FOUNDING),
        )
