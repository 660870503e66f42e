"""
Member invite code endpoints.

WHAT: Validate, redeem and activate-subscription for invite codes.

WHY: A payer who checked out before having an account receives a code by
email. After signing up they redeem it here, which both grants access and
links the anonymous subscription to their profile.

HOW: FastAPI router; validate is public, the rest require a bearer token.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_current_profile
from app.db.session import get_db
from app.models.invite_code import InvitePaymentStatus
from app.models.profile import Profile
from app.schemas.invite_code import (
    ActivateSubscriptionRequest,
    InviteCodeRequest,
    InviteCodeValidation,
    LinkResult,
    RedeemResponse,
)
from app.services.identity_linker import IdentityLinker
from app.services.invite_code_service import InviteCodeService


router = APIRouter(prefix="/invite-codes", tags=["invite-codes"])


@router.post(
    "/validate",
    response_model=InviteCodeValidation,
    status_code=status.HTTP_200_OK,
    summary="Validate invite code",
    description="Check whether a code can currently be redeemed (public)",
)
async def validate_invite_code(
    body: InviteCodeRequest,
    db: AsyncSession = Depends(get_db),
) -> InviteCodeValidation:
    """Advisory check; redemption re-checks atomically."""
    result = await InviteCodeService(db).validate(body.code)
    return InviteCodeValidation(**result)


@router.post(
    "/redeem",
    response_model=RedeemResponse,
    status_code=status.HTTP_200_OK,
    summary="Redeem invite code",
    description="Claim a code for the signed-in profile and link its paid subscription",
)
async def redeem_invite_code(
    body: InviteCodeRequest,
    current_profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> RedeemResponse:
    """
    Redeem a code.

    WHAT: Claims the code, then, for paid codes, links the subscription from
    the same checkout to the caller.

    Raises:
        InviteCodeNotFoundError: Unknown code (404)
        InviteCodeRedemptionError: Revoked, used or expired code (400)
    """
    invite = await InviteCodeService(db).redeem(body.code, current_profile.id)

    link = None
    if invite.payment_status == InvitePaymentStatus.PAID:
        link = LinkResult(**await IdentityLinker(db).link(current_profile, invite.code))

    return RedeemResponse(
        code=invite.code,
        payment_status=invite.payment_status,
        tier=invite.tier,
        subscription=link,
    )


@router.post(
    "/activate-subscription",
    response_model=LinkResult,
    status_code=status.HTTP_200_OK,
    summary="Activate subscription",
    description="Link the subscription paid for with an already redeemed code",
)
async def activate_subscription(
    body: ActivateSubscriptionRequest,
    current_profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
) -> LinkResult:
    """
    Retry deferred linking.

    WHY: The checkout webhook may land after the code was redeemed; the app
    calls this again once the subscription exists. Safe to repeat.
    """
    return LinkResult(**await IdentityLinker(db).link(current_profile, body.invite_code))
