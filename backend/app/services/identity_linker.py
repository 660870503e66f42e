"""
Deferred identity linker.

WHAT: Attaches a subscription that was paid for anonymously to the profile
that later redeemed the invite code from that checkout.

WHY: People often pay before they have an account. The checkout webhook
stores the subscription with no owner and emails an invite code; when the
payer signs up and redeems that code, this service connects the two.

HOW: Strict match only. The invite and the subscription both carry the
checkout session id, and the link is one guarded UPDATE:

    UPDATE subscriptions SET user_id = :user
    WHERE stripe_checkout_session_id = :session AND user_id IS NULL

There is no "most recent unlinked subscription" fallback: a guess can hand
someone else's subscription to the caller.
"""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.invite_code import InviteCodeDAO
from app.dao.subscription import SubscriptionDAO
from app.models.invite_code import InvitePaymentStatus
from app.models.profile import Profile
from app.services.invite_code_service import normalize_code
from app.services.profile_projector import ProfileProjector

logger = logging.getLogger(__name__)


class IdentityLinker:
    """Links paid subscriptions to the profiles that redeemed their invites."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.invites = InviteCodeDAO(db)
        self.subscriptions = SubscriptionDAO(db)
        self.projector = ProfileProjector(db)

    @staticmethod
    def _not_linked(reason: str) -> Dict[str, Any]:
        return {"success": True, "linked": False, "reason": reason}

    async def link(self, profile: Profile, invite_code: str) -> Dict[str, Any]:
        """
        Link the subscription paid for with `invite_code` to `profile`.

        A missing or ineligible match is not an error: the caller learns
        `linked: false` and why.

        Args:
            profile: The authenticated caller
            invite_code: Code the caller redeemed

        Returns:
            `{success, linked, status, trial_end}` on success, otherwise
            `{success, linked: False, reason}`
        """
        code = normalize_code(invite_code)
        invite = await self.invites.get_by_code(code)

        if invite is None:
            return self._not_linked("invite_not_found")
        if invite.payment_status != InvitePaymentStatus.PAID or not invite.email:
            return self._not_linked("not_a_paid_invite")
        if invite.used_by != profile.id:
            return self._not_linked("invite_not_redeemed_by_caller")
        if not invite.stripe_checkout_session_id:
            return self._not_linked("no_matching_subscription")

        session_id = invite.stripe_checkout_session_id
        linked = await self.subscriptions.link_owner_by_checkout_session(session_id, profile.id)

        if not linked:
            subscription = await self.subscriptions.get_by_checkout_session_id(session_id)
            if subscription is None:
                logger.info(
                    f"No subscription for checkout {session_id} yet",
                    extra={"code": code, "checkout_session_id": session_id},
                )
                return self._not_linked("no_matching_subscription")
            return self._not_linked("already_linked")

        subscription = await self.subscriptions.get_by_checkout_session_id(session_id)
        await self.projector.project(subscription)

        logger.info(
            f"Linked subscription {subscription.stripe_subscription_id} to profile {profile.id}",
            extra={
                "code": code,
                "user_id": profile.id,
                "stripe_subscription_id": subscription.stripe_subscription_id,
            },
        )

        return {
            "success": True,
            "linked": True,
            "status": subscription.status.value,
            "trial_end": subscription.trial_end,
        }
