"""
Invite code schemas for API request/response validation.

WHAT: Pydantic schemas for the member invite endpoints and the admin
invite endpoints.

HOW: Uses Pydantic v2 with Field constraints and model_config. Enums are
the model enums themselves, so the API and the database cannot drift apart.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from app.models.invite_code import InvitePaymentStatus, InviteTier


# ============================================================================
# Member endpoints
# ============================================================================


class InviteCodeRequest(BaseModel):
    """Body of /invite-codes/validate and /invite-codes/redeem."""

    code: str = Field(..., min_length=1, max_length=32, description="Invite code, e.g. ARK-7K2PQR")


class InviteCodeValidation(BaseModel):
    """Advisory validity check; redemption re-checks atomically."""

    valid: bool
    reason: Optional[str] = Field(None, description="not_found, revoked, already_used or expired")
    code: Optional[str] = None
    payment_status: Optional[InvitePaymentStatus] = None
    tier: Optional[InviteTier] = None
    expires_at: Optional[datetime] = None


class ActivateSubscriptionRequest(BaseModel):
    """Body of /invite-codes/activate-subscription."""

    invite_code: str = Field(..., min_length=1, max_length=32)


class LinkResult(BaseModel):
    """Outcome of deferred subscription linking."""

    success: bool = True
    linked: bool
    reason: Optional[str] = None
    status: Optional[str] = None
    trial_end: Optional[datetime] = None


class RedeemResponse(BaseModel):
    """Result of redeeming a code, including any subscription it linked."""

    success: bool = True
    code: str
    payment_status: InvitePaymentStatus
    tier: InviteTier
    subscription: Optional[LinkResult] = None


# ============================================================================
# Admin endpoints
# ============================================================================


class InviteCodeCreate(BaseModel):
    """
    Schema for issuing an invite code without a checkout.

    WHY: Paid codes are only created by the checkout webhook, so
    pending_payment and paid are not accepted here.
    """

    email: Optional[EmailStr] = None
    recipient_name: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=2000)
    payment_status: InvitePaymentStatus = InvitePaymentStatus.NONE
    tier: InviteTier = InviteTier.STANDARD
    trial_days: Optional[int] = Field(None, ge=1, le=365)
    expiration_days: Optional[int] = Field(None, ge=1, le=365)


class InviteCodeResponse(BaseModel):
    """Invite code as returned to admins."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    email: Optional[str] = None
    recipient_name: Optional[str] = None
    note: Optional[str] = None
    payment_status: InvitePaymentStatus
    tier: InviteTier
    trial_days: Optional[int] = None
    stripe_checkout_session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    created_by: Optional[int] = None
    used_by: Optional[int] = None
    used_at: Optional[datetime] = None
    is_revoked: bool
    expires_at: datetime
    created_at: datetime


class InviteCodeCreated(BaseModel):
    """Response for a newly issued code."""

    success: bool = True
    code: str
    deep_link: str
    invite: InviteCodeResponse


class InviteCodeList(BaseModel):
    """Paginated invite listing."""

    success: bool = True
    items: List[InviteCodeResponse]
    skip: int
    limit: int
