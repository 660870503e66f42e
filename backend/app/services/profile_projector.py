"""
Profile status projector.

WHAT: Copies a subscription's status and trial end onto its owning profile.

WHY: The app checks access by reading the profile, not the subscription.
The projection keeps that read cheap while the subscription row stays the
only record anyone writes billing state to. Data flows one way:
Subscription -> Profile, never back.
"""

import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.profile import ProfileDAO
from app.models.profile import ProfileSubscriptionStatus
from app.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


# Both enums share their vocabulary; building the table from the source enum
# fails at import time if a status is ever added to one and not the other.
STATUS_PROJECTION: Dict[SubscriptionStatus, ProfileSubscriptionStatus] = {
    status: ProfileSubscriptionStatus(status.value) for status in SubscriptionStatus
}


class ProfileProjector:
    """Derives profile access fields from subscription state."""

    def __init__(self, db: AsyncSession):
        self.profiles = ProfileDAO(db)

    async def project(self, subscription: Subscription) -> bool:
        """
        Write the subscription's status onto its owner.

        HOW: trial_end is copied when the subscription has one. When it has
        none it is cleared, except while trialing so that an event missing
        the field does not erase a known trial end.

        Args:
            subscription: The subscription that just changed

        Returns:
            True if a profile was updated, False for unlinked subscriptions
        """
        if subscription.user_id is None:
            logger.debug(
                f"Subscription {subscription.stripe_subscription_id} has no owner yet; skipping projection"
            )
            return False

        status = STATUS_PROJECTION[subscription.status]
        updated = await self.profiles.set_subscription_projection(
            profile_id=subscription.user_id,
            status=status,
            trial_end=subscription.trial_end,
            clear_trial_end=subscription.status != SubscriptionStatus.TRIALING,
        )

        if updated:
            logger.info(
                f"Projected status {status.value} onto profile {subscription.user_id}",
                extra={
                    "user_id": subscription.user_id,
                    "stripe_subscription_id": subscription.stripe_subscription_id,
                    "status": status.value,
                },
            )
        else:
            logger.warning(
                f"Owner {subscription.user_id} of subscription "
                f"{subscription.stripe_subscription_id} no longer exists",
                extra={"user_id": subscription.user_id},
            )
        return updated
