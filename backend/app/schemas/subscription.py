"""
Admin billing schemas for API request/response validation.

WHAT: Pydantic schemas for the admin subscription, payment and metrics
endpoints.

WHY: Bodies are validated before the gateway runs; a malformed request is
rejected with 400 and never reaches Stripe.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from app.models.subscription import SubscriptionPlan, SubscriptionStatus


# ============================================================================
# Subscription actions
# ============================================================================


class CancelSubscriptionRequest(BaseModel):
    """Cancel now or at the end of the current period."""

    subscription_id: str = Field(..., min_length=1, description="Stripe subscription ID (sub_xxx)")
    at_period_end: bool = True


class PauseSubscriptionRequest(BaseModel):
    """Pause (void invoices) or resume payment collection."""

    subscription_id: str = Field(..., min_length=1)
    pause: bool = True


class UpdatePlanRequest(BaseModel):
    """
    Move a subscription to another plan.

    WHY: `plan` is a plain string so that an unknown plan key is reported
    by the gateway with the list of allowed plans.
    """

    subscription_id: str = Field(..., min_length=1)
    plan: str = Field(..., min_length=1, description="monthly or annual")


class SubscriptionResponse(BaseModel):
    """Local mirror of a subscription after an admin action."""

    model_config = ConfigDict(from_attributes=True)

    stripe_subscription_id: str
    stripe_customer_id: Optional[str] = None
    user_id: Optional[int] = None
    plan: SubscriptionPlan
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None


class SubscriptionActionResponse(BaseModel):
    """Envelope for subscription mutations."""

    success: bool = True
    subscription: SubscriptionResponse


# ============================================================================
# Payments
# ============================================================================


class RefundRequest(BaseModel):
    """Full refund when amount is omitted."""

    payment_intent_id: str = Field(..., min_length=1, description="Stripe PaymentIntent ID (pi_xxx)")
    amount: Optional[int] = Field(None, gt=0, description="Amount in cents")
    reason: Optional[str] = Field(None, description="duplicate, fraudulent or requested_by_customer")


class RefundResponse(BaseModel):
    success: bool = True
    id: str
    amount: int
    status: str


class CheckoutSessionCreate(BaseModel):
    """Admin-initiated checkout for a recipient who has not paid yet."""

    email: EmailStr
    price_id: str = Field(..., min_length=1)
    recipient_name: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=2000)
    trial_days: Optional[int] = Field(None, ge=1, le=365)


class CheckoutSessionCreated(BaseModel):
    success: bool = True
    checkout_url: str
    invite_id: int
    code: str


class CustomerRequest(BaseModel):
    """Body for endpoints addressing a Stripe customer."""

    customer_id: str = Field(..., min_length=1, description="Stripe customer ID (cus_xxx)")


class BillingPortalRequest(CustomerRequest):
    return_url: Optional[str] = None


class BillingPortalResponse(BaseModel):
    success: bool = True
    url: str


class PaymentRecord(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    created: int
    description: Optional[str] = None


class PaymentHistoryResponse(BaseModel):
    success: bool = True
    payments: List[PaymentRecord]


# ============================================================================
# Metrics
# ============================================================================


class MetricsResponse(BaseModel):
    """Revenue and membership rollup."""

    success: bool = True
    mrr: float
    arr: float
    churn_rate: float = Field(..., description="Percent; trailing 30-day approximation")
    total_members: int
    active_members: int
    trialing_members: int
    canceled_members: int
    past_due_members: int
    paused_members: int
    unknown_members: int
    founding_members: int
