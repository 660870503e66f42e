"""
Invite code model.

WHAT: Single-use codes (ARK-XXXXXX) that grant access to the application,
optionally tied to a paid Stripe checkout.

WHY: Codes are the hand-off between an anonymous payment and the account the
payer creates later. The redemption columns (used_by, used_at) are written
exactly once by a guarded UPDATE; after that they never change.

LIFECYCLE:
1. Created by an admin (free/comped/trial) or by a completed checkout (paid)
2. Admin-initiated checkouts start as pending_payment and flip to paid when
   the checkout.session.completed webhook arrives
3. Redeemed once by a signed-in member, or revoked, or left to expire
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin, value_enum


class InvitePaymentStatus(str, enum.Enum):
    """
    How the holder of a code paid for access.

    - NONE: plain invite, no payment attached
    - PENDING_PAYMENT: admin started a checkout that has not completed
    - PAID: a Stripe checkout completed for this code
    - FREE_TRIAL: trial granted without payment
    - COMPED: complimentary access
    """

    NONE = "none"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FREE_TRIAL = "free_trial"
    COMPED = "comped"


class InviteTier(str, enum.Enum):
    """Membership tier; founding is capped and priced separately."""

    STANDARD = "standard"
    FOUNDING = "founding"


class InviteCode(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Invite code ledger entry.

    WHY: The unique constraint on `code` is the real guarantor of uniqueness;
    generation treats a violation as a retry signal.
    """

    __tablename__ = "invite_codes"

    code = Column(
        String(32),
        nullable=False,
        unique=True,
        index=True,
        doc="Code in PREFIX-XXXXXX form",
    )

    created_by = Column(
        Integer,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        doc="Admin profile that issued the code; NULL for checkout-issued codes",
    )
    expires_at = Column(DateTime, nullable=False)

    # Recipient
    email = Column(String(255), nullable=True, index=True)
    recipient_name = Column(String(255), nullable=True)
    note = Column(Text, nullable=True)

    payment_status = Column(
        value_enum(InvitePaymentStatus, "invitepaymentstatus"),
        nullable=False,
        default=InvitePaymentStatus.NONE,
    )
    tier = Column(
        value_enum(InviteTier, "invitetier"),
        nullable=False,
        default=InviteTier.STANDARD,
    )
    trial_days = Column(Integer, nullable=True)

    # Stripe checkout linkage
    # WHY: The session id is stored here and on the subscription row so the
    # identity linker can match the two exactly.
    stripe_checkout_session_id = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        doc="Stripe Checkout Session ID (cs_xxx)",
    )
    checkout_url = Column(Text, nullable=True)

    # Redemption
    used_by = Column(
        Integer,
        ForeignKey("profiles.id", ondelete="RESTRICT"),
        nullable=True,
        doc="Profile that redeemed the code; set once",
    )
    used_at = Column(DateTime, nullable=True)

    is_revoked = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<InviteCode(id={self.id}, code={self.code}, "
            f"payment_status={self.payment_status}, used_by={self.used_by})>"
        )

    @property
    def is_used(self) -> bool:
        return self.used_by is not None or self.used_at is not None

    def has_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
