"""
Profile Data Access Object.

WHY: Profiles are read for authentication and owner resolution, and written
only by the projector. Keeping both paths here makes it obvious that nothing
else touches the cached status columns.
"""

from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.profile import Profile, ProfileSubscriptionStatus


class ProfileDAO(BaseDAO[Profile]):
    """Data Access Object for Profile model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Profile, session)

    async def get_by_email(self, email: str) -> Optional[Profile]:
        """
        Retrieve profile by email address.

        WHY: Stripe checkouts carry whatever casing the payer typed.
        Case-insensitive comparison links `Jane@X.com` to `jane@x.com`.

        Args:
            email: Email address from the checkout or subscription

        Returns:
            Profile if found, None otherwise
        """
        result = await self.session.execute(
            select(Profile).where(func.lower(Profile.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def set_subscription_projection(
        self,
        profile_id: int,
        status: ProfileSubscriptionStatus,
        trial_end: Optional[datetime],
        clear_trial_end: bool,
    ) -> bool:
        """
        Write the cached subscription fields onto a profile.

        Args:
            profile_id: Profile to update
            status: Projected status
            trial_end: Trial end to store when present
            clear_trial_end: Reset trial_end to NULL when no trial_end is given

        Returns:
            True if the profile exists and was updated
        """
        values = {"subscription_status": status}
        if trial_end is not None:
            values["trial_end"] = trial_end
        elif clear_trial_end:
            values["trial_end"] = None

        result = await self.session.execute(
            update(Profile).where(Profile.id == profile_id).values(**values)
        )
        return result.rowcount > 0

    async def count_with_subscription(self) -> int:
        """Count profiles that have ever had subscription activity."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Profile)
            .where(Profile.subscription_status != ProfileSubscriptionStatus.NONE)
        )
        return result.scalar_one()

    async def search_members(
        self,
        search: Optional[str] = None,
        subscription_status: Optional[ProfileSubscriptionStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Profile], int]:
        """
        Page through profiles for the admin member list.

        WHAT: Newest first, optionally filtered by cached subscription status
        and a case-insensitive substring of email or name.

        Args:
            search: Substring of email or name
            subscription_status: Only profiles with this cached status
            skip: Pagination offset
            limit: Page size

        Returns:
            (profiles on this page, total matching profiles)
        """
        conditions = []
        if subscription_status is not None:
            conditions.append(Profile.subscription_status == subscription_status)
        if search:
            search_term = f"%{search.strip()}%"
            conditions.append(
                or_(Profile.email.ilike(search_term), Profile.name.ilike(search_term))
            )

        total_result = await self.session.execute(
            select(func.count()).select_from(Profile).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await self.session.execute(
            select(Profile)
            .where(*conditions)
            .order_by(Profile.created_at.desc(), Profile.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

