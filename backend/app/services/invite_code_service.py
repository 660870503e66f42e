"""
Invite code ledger service.

WHAT: Issues, validates, redeems and revokes single-use invite codes.

WHY: Invite codes are the only way into the application. They must be:
1. Unique (guaranteed by the database, not by a pre-check)
2. Redeemed at most once, even when two members race for the same code
3. Human-friendly: no 0/O or 1/I confusion when typed from an email

HOW:
- Codes are PREFIX-XXXXXX drawn with `secrets` from a 32-symbol alphabet
- Each insert runs in a SAVEPOINT; a unique violation rolls back only that
  attempt and a new code is drawn (bounded retries)
- Redemption is one guarded UPDATE; the reason for a failure is diagnosed
  afterwards with a read that never influences the outcome
"""

import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InviteCodeGenerationError,
    InviteCodeNotFoundError,
    InviteCodeRedemptionError,
    ValidationError,
)
from app.dao.invite_code import InviteCodeDAO
from app.models.invite_code import InviteCode, InvitePaymentStatus, InviteTier

logger = logging.getLogger(__name__)


# Unambiguous symbols: no 0, 1, I, O.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_GENERATION_ATTEMPTS = 5


class InviteRejection(str, Enum):
    """Reasons a code cannot be redeemed."""

    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"


_REJECTION_MESSAGES = {
    InviteRejection.NOT_FOUND: "Invite code not found",
    InviteRejection.REVOKED: "Invite code has been revoked",
    InviteRejection.ALREADY_USED: "Invite code has already been used",
    InviteRejection.EXPIRED: "Invite code has expired",
}


def generate_code(prefix: Optional[str] = None) -> str:
    """
    Draw a random invite code.

    Returns:
        Code in PREFIX-XXXXXX form, e.g. ARK-7K2PQR
    """
    prefix = prefix or settings.INVITE_CODE_PREFIX
    body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{prefix}-{body}"


def normalize_code(code: str) -> str:
    """Codes are stored upper-case; users type them however they like."""
    return code.strip().upper()


def deep_link(code: str) -> str:
    """App deep link that opens the redemption screen with the code filled in."""
    return f"{settings.INVITE_DEEP_LINK_SCHEME}://invite?code={code}"


def diagnose(invite: Optional[InviteCode], now: datetime) -> Optional[InviteRejection]:
    """
    Explain why a code is not redeemable, or return None if it is.

    WHY: Used for validation responses and for error messages after a
    redemption UPDATE matched no row. It never decides a redemption.
    """
    if invite is None:
        return InviteRejection.NOT_FOUND
    if invite.is_revoked:
        return InviteRejection.REVOKED
    if invite.is_used:
        return InviteRejection.ALREADY_USED
    if invite.has_expired(now):
        return InviteRejection.EXPIRED
    return None


class InviteCodeService:
    """
    Service for the invite code ledger.

    WHAT: Business logic around InviteCodeDAO.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize invite code service.

        Args:
            db: Async database session
        """
        self.db = db
        self.dao = InviteCodeDAO(db)

    async def generate(
        self,
        created_by: Optional[int] = None,
        expiry_days: Optional[int] = None,
        email: Optional[str] = None,
        payment_status: InvitePaymentStatus = InvitePaymentStatus.NONE,
        tier: InviteTier = InviteTier.STANDARD,
        recipient_name: Optional[str] = None,
        note: Optional[str] = None,
        trial_days: Optional[int] = None,
        checkout_session_id: Optional[str] = None,
    ) -> InviteCode:
        """
        Issue a new invite code.

        WHAT: Inserts an invite with a freshly drawn code.

        WHY: The unique index on `code` is the guarantor of uniqueness. A
        pre-check would race with concurrent issuers; a violation here just
        means "draw again".

        HOW: Up to MAX_GENERATION_ATTEMPTS inserts, each in its own
        SAVEPOINT so a failed attempt does not poison the outer transaction.
        When the violation is on the checkout session id instead (the same
        checkout processed concurrently), the invite that won is returned.

        Args:
            created_by: Issuing admin profile id (None for checkout-issued codes)
            expiry_days: Days until expiry (defaults to ADMIN_INVITE_EXPIRY_DAYS)
            email: Recipient email
            payment_status: Initial payment status
            tier: Membership tier
            recipient_name: Optional recipient name
            note: Optional admin note
            trial_days: Optional trial length granted with the code
            checkout_session_id: Stripe checkout session that paid for the code

        Returns:
            The stored InviteCode

        Raises:
            InviteCodeGenerationError: If every attempt collided
        """
        if expiry_days is None:
            expiry_days = settings.ADMIN_INVITE_EXPIRY_DAYS
        if expiry_days <= 0:
            raise ValidationError(
                message="Expiry must be at least one day",
                expiry_days=expiry_days,
            )

        expires_at = datetime.utcnow() + timedelta(days=expiry_days)

        for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
            code = generate_code()
            try:
                async with self.db.begin_nested():
                    invite = await self.dao.create(
                        code=code,
                        created_by=created_by,
                        expires_at=expires_at,
                        email=email.strip().lower() if email else None,
                        recipient_name=recipient_name,
                        note=note,
                        payment_status=payment_status,
                        tier=tier,
                        trial_days=trial_days,
                        stripe_checkout_session_id=checkout_session_id,
                    )
            except IntegrityError:
                if checkout_session_id:
                    existing = await self.dao.get_by_checkout_session_id(checkout_session_id)
                    if existing is not None:
                        logger.info(
                            f"Invite for checkout {checkout_session_id} already exists",
                            extra={"checkout_session_id": checkout_session_id, "code": existing.code},
                        )
                        return existing

                logger.warning(
                    f"Invite code collision on attempt {attempt}",
                    extra={"attempt": attempt},
                )
                continue

            logger.info(
                f"Issued invite code {invite.code}",
                extra={
                    "code": invite.code,
                    "created_by": created_by,
                    "payment_status": payment_status.value,
                    "tier": tier.value,
                },
            )
            return invite

        logger.error(
            f"Could not issue a unique invite code after {MAX_GENERATION_ATTEMPTS} attempts"
        )
        raise InviteCodeGenerationError(attempts=MAX_GENERATION_ATTEMPTS)

    async def validate(self, code: str) -> Dict[str, Any]:
        """
        Check whether a code could be redeemed right now.

        WHY: The app calls this before sign-up to show a friendly message.
        It is advisory only; redemption re-checks atomically.

        Returns:
            Dict with `valid` and, when invalid, `reason`
        """
        normalized = normalize_code(code)
        invite = await self.dao.get_by_code(normalized)
        rejection = diagnose(invite, datetime.utcnow())

        if rejection is not None:
            return {"valid": False, "reason": rejection.value}

        return {
            "valid": True,
            "code": invite.code,
            "payment_status": invite.payment_status.value,
            "tier": invite.tier.value,
            "expires_at": invite.expires_at,
        }

    async def redeem(self, code: str, user_id: int) -> InviteCode:
        """
        Redeem a code for a profile.

        WHAT: Claims the code with one guarded UPDATE.

        WHY: Never read-then-write. Of two concurrent callers exactly one
        matches `used_by IS NULL`; the other gets a clear error.

        Args:
            code: Code as typed by the user
            user_id: Redeeming profile id

        Returns:
            The redeemed InviteCode

        Raises:
            InviteCodeNotFoundError: If the code does not exist
            InviteCodeRedemptionError: If the code is revoked, used or expired
        """
        normalized = normalize_code(code)
        now = datetime.utcnow()

        if await self.dao.redeem(normalized, user_id, now):
            invite = await self.dao.get_by_code(normalized)
            logger.info(
                f"Invite code {normalized} redeemed by profile {user_id}",
                extra={"code": normalized, "user_id": user_id},
            )
            return invite

        invite = await self.dao.get_by_code(normalized)
        rejection = diagnose(invite, now) or InviteRejection.ALREADY_USED

        logger.info(
            f"Invite code {normalized} rejected: {rejection.value}",
            extra={"code": normalized, "user_id": user_id, "reason": rejection.value},
        )

        if rejection == InviteRejection.NOT_FOUND:
            raise InviteCodeNotFoundError(code=normalized)
        raise InviteCodeRedemptionError(
            message=_REJECTION_MESSAGES[rejection],
            reason=rejection.value,
            code=normalized,
        )

    async def revoke(self, code: str) -> InviteCode:
        """
        Revoke an unused code.

        Raises:
            InviteCodeNotFoundError: If the code does not exist
            InviteCodeRedemptionError: If the code was already redeemed
        """
        normalized = normalize_code(code)

        if not await self.dao.revoke(normalized):
            invite = await self.dao.get_by_code(normalized)
            if invite is None:
                raise InviteCodeNotFoundError(code=normalized)
            raise InviteCodeRedemptionError(
                message="A redeemed invite code cannot be revoked",
                reason=InviteRejection.ALREADY_USED.value,
                code=normalized,
            )

        logger.info(f"Revoked invite code {normalized}", extra={"code": normalized})
        return await self.dao.get_by_code(normalized)

    async def list_invites(
        self,
        skip: int = 0,
        limit: int = 100,
        payment_status: Optional[InvitePaymentStatus] = None,
    ) -> List[InviteCode]:
        """List invites newest first."""
        return await self.dao.list_recent(skip=skip, limit=limit, payment_status=payment_status)
