"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from app.dao.base import BaseDAO
from app.dao.profile import ProfileDAO
from app.dao.invite_code import InviteCodeDAO
from app.dao.subscription import SubscriptionDAO
from app.dao.webhook_event import WebhookEventFailureDAO

__all__ = [
    "BaseDAO",
    "ProfileDAO",
    "InviteCodeDAO",
    "SubscriptionDAO",
    "WebhookEventFailureDAO",
]
