"""
Admin billing API endpoints.

WHAT: RESTful API for privileged invite and subscription operations.

WHY: Administrators need to:
1. Issue, list and revoke invite codes
2. Cancel, pause/resume and re-plan subscriptions
3. Refund payments and inspect payment history
4. Start checkouts on behalf of a recipient
5. List, search and deactivate members
6. Read revenue and membership metrics

HOW: FastAPI router with the admin role required on every endpoint. The
gateway calls Stripe before writing the local mirror; a Stripe failure is
returned as 502 with the mirror untouched.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import require_admin
from app.core.exceptions import ValidationError
from app.db.session import get_db
from app.models.invite_code import InvitePaymentStatus
from app.models.profile import Profile
from app.schemas.invite_code import (
    InviteCodeCreate,
    InviteCodeCreated,
    InviteCodeList,
    InviteCodeResponse,
)
from app.schemas.member import (
    MemberActiveRequest,
    MemberList,
    MemberResponse,
    MemberSubscription,
)
from app.schemas.subscription import (
    BillingPortalRequest,
    BillingPortalResponse,
    CancelSubscriptionRequest,
    CheckoutSessionCreate,
    CheckoutSessionCreated,
    CustomerRequest,
    MetricsResponse,
    PauseSubscriptionRequest,
    PaymentHistoryResponse,
    RefundRequest,
    RefundResponse,
    SubscriptionActionResponse,
    SubscriptionResponse,
    UpdatePlanRequest,
)
from app.services.admin_service import AdminService
from app.services.invite_code_service import InviteCodeService, deep_link
from app.services.metrics_service import MetricsService


router = APIRouter(prefix="/admin", tags=["admin"])


# Statuses an admin may issue directly; paid codes only come from checkouts.
ADMIN_ISSUABLE_STATUSES = (
    InvitePaymentStatus.NONE,
    InvitePaymentStatus.FREE_TRIAL,
    InvitePaymentStatus.COMPED,
)


# ============================================================================
# Invite codes
# ============================================================================


@router.post(
    "/invite-codes",
    response_model=InviteCodeCreated,
    status_code=status.HTTP_200_OK,
    summary="Issue invite code",
    description="Issue a free, trial or comped invite code (ADMIN only)",
)
async def create_invite_code(
    body: InviteCodeCreate,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InviteCodeCreated:
    """
    Issue an invite code.

    Raises:
        ValidationError: Paid/pending status requested (400)
        InviteCodeGenerationError: No unique code after retries (500)
    """
    if body.payment_status not in ADMIN_ISSUABLE_STATUSES:
        raise ValidationError(
            message="Paid invite codes are issued by checkout only",
            payment_status=body.payment_status.value,
        )

    invite = await InviteCodeService(db).generate(
        created_by=current_admin.id,
        expiry_days=body.expiration_days,
        email=body.email,
        payment_status=body.payment_status,
        tier=body.tier,
        recipient_name=body.recipient_name,
        note=body.note,
        trial_days=body.trial_days,
    )

    return InviteCodeCreated(
        code=invite.code,
        deep_link=deep_link(invite.code),
        invite=InviteCodeResponse.model_validate(invite),
    )


@router.get(
    "/invite-codes",
    response_model=InviteCodeList,
    status_code=status.HTTP_200_OK,
    summary="List invite codes",
    description="Newest first, optionally filtered by payment status (ADMIN only)",
)
async def list_invite_codes(
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum items to return"),
    payment_status: Optional[InvitePaymentStatus] = Query(default=None),
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InviteCodeList:
    invites = await InviteCodeService(db).list_invites(
        skip=skip,
        limit=limit,
        payment_status=payment_status,
    )
    return InviteCodeList(
        items=[InviteCodeResponse.model_validate(invite) for invite in invites],
        skip=skip,
        limit=limit,
    )


@router.post(
    "/invite-codes/{code}/revoke",
    response_model=InviteCodeResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke invite code",
    description="Revoke an unused invite code (ADMIN only)",
)
async def revoke_invite_code(
    code: str,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InviteCodeResponse:
    invite = await InviteCodeService(db).revoke(code)
    return InviteCodeResponse.model_validate(invite)


# ============================================================================
# Subscriptions
# ============================================================================


@router.post(
    "/subscriptions/cancel",
    response_model=SubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel subscription",
)
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionActionResponse:
    """
    Cancel at period end (default) or immediately.

    Raises:
        SubscriptionNotFoundError: Unknown subscription (404)
        StripeError: Stripe rejected the change (502)
    """
    subscription = await AdminService(db).cancel(
        current_admin,
        body.subscription_id,
        at_period_end=body.at_period_end,
    )
    return SubscriptionActionResponse(subscription=SubscriptionResponse.model_validate(subscription))


@router.post(
    "/subscriptions/pause",
    response_model=SubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Pause or resume subscription",
)
async def pause_subscription(
    body: PauseSubscriptionRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionActionResponse:
    subscription = await AdminService(db).pause_resume(
        current_admin,
        body.subscription_id,
        pause=body.pause,
    )
    return SubscriptionActionResponse(subscription=SubscriptionResponse.model_validate(subscription))


@router.post(
    "/subscriptions/update-plan",
    response_model=SubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Change subscription plan",
)
async def update_subscription_plan(
    body: UpdatePlanRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionActionResponse:
    """
    Change plan with proration.

    Raises:
        ValidationError: Unknown plan or unconfigured price (400)
        SubscriptionNotFoundError: Unknown subscription (404)
        StripeError: Stripe rejected the change (502)
    """
    subscription = await AdminService(db).change_plan(
        current_admin,
        body.subscription_id,
        body.plan,
    )
    return SubscriptionActionResponse(subscription=SubscriptionResponse.model_validate(subscription))


# ============================================================================
# Payments
# ============================================================================


@router.post(
    "/refunds",
    response_model=RefundResponse,
    status_code=status.HTTP_200_OK,
    summary="Refund payment",
)
async def refund_payment(
    body: RefundRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> RefundResponse:
    refund = await AdminService(db).refund(
        current_admin,
        body.payment_intent_id,
        amount_cents=body.amount,
        reason=body.reason,
    )
    return RefundResponse(**refund)


@router.post(
    "/checkout-sessions",
    response_model=CheckoutSessionCreated,
    status_code=status.HTTP_200_OK,
    summary="Create checkout for a recipient",
)
async def create_checkout_session(
    body: CheckoutSessionCreate,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CheckoutSessionCreated:
    """
    Issue a pending invite with a Stripe checkout link.

    Raises:
        StripeError: Stripe rejected the checkout; no invite is kept (502)
    """
    invite = await AdminService(db).create_checkout_session(
        current_admin,
        email=body.email,
        price_id=body.price_id,
        recipient_name=body.recipient_name,
        note=body.note,
        trial_days=body.trial_days,
    )
    return CheckoutSessionCreated(
        checkout_url=invite.checkout_url,
        invite_id=invite.id,
        code=invite.code,
    )


@router.post(
    "/payment-history",
    response_model=PaymentHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Customer payment history",
)
async def payment_history(
    body: CustomerRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    payments = await AdminService(db).payment_history(body.customer_id)
    return PaymentHistoryResponse(payments=payments)


@router.post(
    "/billing-portal",
    response_model=BillingPortalResponse,
    status_code=status.HTTP_200_OK,
    summary="Create billing portal session",
)
async def billing_portal(
    body: BillingPortalRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BillingPortalResponse:
    url = await AdminService(db).billing_portal(body.customer_id, return_url=body.return_url)
    return BillingPortalResponse(url=url)


# ============================================================================
# Members
# ============================================================================


@router.get(
    "/members",
    response_model=MemberList,
    status_code=status.HTTP_200_OK,
    summary="List members",
    description="Members with their subscriptions, searchable and filterable (ADMIN only)",
)
async def list_members(
    search: Optional[str] = Query(default=None, description="Search by email or name"),
    status_filter: Optional[str] = Query(
        default=None,
        alias="status",
        description="Cached subscription status, or 'all'",
    ),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MemberList:
    """
    List members newest first.

    Raises:
        ValidationError: Unknown status (400)
    """
    rows, total = await AdminService(db).list_members(
        search=search,
        status=status_filter,
        page=page,
        per_page=per_page,
    )

    members = []
    for profile, subscriptions in rows:
        member = MemberResponse.model_validate(profile)
        member.subscriptions = [MemberSubscription.model_validate(s) for s in subscriptions]
        members.append(member)

    return MemberList(members=members, total=total, page=page, per_page=per_page)


@router.post(
    "/members/{profile_id}/active",
    response_model=MemberResponse,
    status_code=status.HTTP_200_OK,
    summary="Deactivate or reactivate member",
)
async def set_member_active(
    profile_id: int,
    body: MemberActiveRequest,
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MemberResponse:
    """
    Toggle a member's account.

    Raises:
        ValidationError: Deactivating your own account (400)
        ProfileNotFoundError: Unknown profile (404)
    """
    profile = await AdminService(db).set_member_active(current_admin, profile_id, body.is_active)
    return MemberResponse.model_validate(profile)


# ============================================================================
# Metrics
# ============================================================================


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    status_code=status.HTTP_200_OK,
    summary="Billing metrics",
    description="MRR, ARR, churn and membership counts, recomputed per request (ADMIN only)",
)
async def get_metrics(
    current_admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MetricsResponse:
    metrics = await MetricsService(db).compute()
    return MetricsResponse(**metrics.to_dict())
