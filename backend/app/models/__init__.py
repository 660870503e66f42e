"""
Database models package.

WHY: Centralizing model imports ensures Alembic and the test metadata see
every table.
"""

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin
from app.models.profile import Profile, ProfileRole, ProfileSubscriptionStatus
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier
from app.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus
from app.models.webhook_event import WebhookEventFailure

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Profile",
    "ProfileRole",
    "ProfileSubscriptionStatus",
    "InviteCode",
    "InvitePaymentStatus",
    "InviteTier",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "WebhookEventFailure",
]
