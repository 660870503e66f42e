"""
Profile model.

WHY: A profile is the member record of the application. Besides identity and
role, it carries a denormalized copy of the linked subscription's status and
trial end so the client can gate access with one read. That copy is written
only by the profile projector and is never the source of truth.
"""

import enum
from sqlalchemy import Column, String, Boolean, DateTime

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin, value_enum


class ProfileRole(str, enum.Enum):
    """
    Profile role enumeration.

    WHY: Admin actions are gated on a direct lookup of this column.
    """

    ADMIN = "admin"
    MEMBER = "member"


class ProfileSubscriptionStatus(str, enum.Enum):
    """
    Access status cached on the profile.

    WHY: Mirrors SubscriptionStatus plus NONE for profiles that never had a
    subscription. The projector builds its mapping from SubscriptionStatus
    members, so a status added there without a counterpart here fails at
    import time instead of silently defaulting.
    """

    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"


class Profile(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Profile model representing an application member.

    Columns:
    - email: matched case-insensitively when a checkout arrives
    - role: admin or member
    - subscription_status / trial_end: projection of the linked subscription
    """

    __tablename__ = "profiles"

    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)

    role = Column(
        value_enum(ProfileRole, "profilerole"),
        nullable=False,
        default=ProfileRole.MEMBER,
    )

    is_active = Column(Boolean, default=True, nullable=False)

    subscription_status = Column(
        value_enum(ProfileSubscriptionStatus, "profilesubscriptionstatus"),
        nullable=False,
        default=ProfileSubscriptionStatus.NONE,
        doc="Cached status of the linked subscription",
    )
    trial_end = Column(
        DateTime,
        nullable=True,
        doc="Cached trial end of the linked subscription",
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email}, role={self.role})>"
