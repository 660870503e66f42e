"""
Invite Code Data Access Object (DAO).

WHAT: DAO for the invite code ledger.

WHY: Every state change on a code is expressed as one guarded UPDATE whose
WHERE clause restates the precondition (still unused, still pending, ...).
The rowcount tells the caller whether it won. Concurrent callers can never
both pass a check and then both write.

HOW: Extends BaseDAO with lookups by code / checkout session and the
guarded transitions: redeem, mark_paid, revoke.
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier


class InviteCodeDAO(BaseDAO[InviteCode]):
    """
    Data Access Object for InviteCode model.

    WHAT: Handles all database operations for invite codes.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(InviteCode, session)

    async def get_by_code(self, code: str) -> Optional[InviteCode]:
        """
        Get an invite by its code.

        Args:
            code: Normalised (upper-case) code

        Returns:
            InviteCode if found, None otherwise
        """
        result = await self.session.execute(
            select(InviteCode)
            .where(InviteCode.code == code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_checkout_session_id(self, session_id: str) -> Optional[InviteCode]:
        """
        Get the invite tied to a Stripe checkout session.

        WHY: Replayed checkout.session.completed events find the invite the
        first delivery created instead of issuing a second code.
        """
        result = await self.session.execute(
            select(InviteCode)
            .where(InviteCode.stripe_checkout_session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def redeem(self, code: str, user_id: int, now: Optional[datetime] = None) -> bool:
        """
        Claim a code for a profile with a single conditional update.

        WHAT: Sets used_by/used_at only if the code is unused, unrevoked and
        unexpired at the moment the UPDATE executes.

        WHY: Two members racing for the same code both issue this statement;
        the database serialises them and only the first matches the
        `used_at IS NULL` guard. The loser sees rowcount 0. used_at is never
        cleared, so the guard holds even if used_by were ever nulled.

        Args:
            code: Normalised code
            user_id: Redeeming profile id
            now: Reference time (defaults to utcnow)

        Returns:
            True if this caller redeemed the code
        """
        now = now or datetime.utcnow()
        result = await self.session.execute(
            update(InviteCode)
            .where(
                InviteCode.code == code,
                InviteCode.used_by.is_(None),
                InviteCode.used_at.is_(None),
                InviteCode.is_revoked.is_(False),
                InviteCode.expires_at > now,
            )
            .values(used_by=user_id, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_paid(
        self,
        invite_id: int,
        checkout_session_id: str,
        tier: InviteTier,
    ) -> bool:
        """
        Move an admin-initiated invite from pending_payment to paid.

        WHY: Guarded on the current status so a replayed checkout event is a
        no-op instead of a second transition.

        Returns:
            True if the invite transitioned in this call
        """
        result = await self.session.execute(
            update(InviteCode)
            .where(
                InviteCode.id == invite_id,
                InviteCode.payment_status == InvitePaymentStatus.PENDING_PAYMENT,
            )
            .values(
                payment_status=InvitePaymentStatus.PAID,
                stripe_checkout_session_id=checkout_session_id,
                tier=tier,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke(self, code: str) -> bool:
        """
        Revoke an unused code.

        Returns:
            True if the code was unused and is now revoked
        """
        result = await self.session.execute(
            update(InviteCode)
            .where(InviteCode.code == code, InviteCode.used_by.is_(None))
            .values(is_revoked=True, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_recent(
        self,
        skip: int = 0,
        limit: int = 100,
        payment_status: Optional[InvitePaymentStatus] = None,
    ) -> List[InviteCode]:
        """List invites newest first, optionally filtered by payment status."""
        query = select(InviteCode)
        if payment_status is not None:
            query = query.where(InviteCode.payment_status == payment_status)
        query = query.order_by(InviteCode.created_at.desc(), InviteCode.id.desc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def count_by_tier(self, tier: InviteTier) -> int:
        """Count invites issued for a tier (used for the founding cap)."""
        result = await self.session.execute(
            select(func.count()).select_from(InviteCode).where(InviteCode.tier == tier)
        )
        return result.scalar_one()

    async def count_redeemed_by_tier(self, tier: InviteTier) -> int:
        """Count redeemed invites for a tier."""
        result = await self.session.execute(
            select(func.count())
            .select_from(InviteCode)
            .where(InviteCode.tier == tier, InviteCode.used_by.is_not(None))
        )
        return result.scalar_one()
