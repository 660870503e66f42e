"""
Member management schemas for the admin API.

WHAT: Paginated member list with each member's subscriptions, and the
activation toggle.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict

from app.models.profile import ProfileRole, ProfileSubscriptionStatus
from app.models.subscription import SubscriptionPlan, SubscriptionStatus


class MemberSubscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stripe_subscription_id: str
    stripe_customer_id: Optional[str] = None
    plan: SubscriptionPlan
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None


class MemberResponse(BaseModel):
    """Profile summary for the member list."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    role: ProfileRole
    is_active: bool
    subscription_status: ProfileSubscriptionStatus
    trial_end: Optional[datetime] = None
    created_at: datetime
    subscriptions: List[MemberSubscription] = []


class MemberList(BaseModel):
    """One page of members, newest first."""

    success: bool = True
    members: List[MemberResponse]
    total: int
    page: int
    per_page: int


class MemberActiveRequest(BaseModel):
    """Deactivate (false) or reactivate (true) a member account."""

    is_active: bool
