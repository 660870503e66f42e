"""
Bearer token verification.

WHY: Members redeem invite codes and admins mutate subscriptions through
authenticated endpoints. Tokens are issued by the identity provider in front
of this service; here we only:
1. Verify JWT signature and expiry
2. Mint tokens for service-to-service calls and tests

Revocation is by profile, not by token: get_current_profile re-reads
is_active on every request, so a deactivated member or admin is cut off
immediately.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from jose import jwt, JWTError

from app.core.config import settings
from app.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


# ============================================================================
# JWT Token Management
# ============================================================================


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT for a profile.

    WHAT: Copies the caller's claims (user_id, role) and stamps exp, iat and
    nbf in UTC.

    WHY: Production tokens come from the identity provider with the same
    claim names; this is used for service-to-service calls and tests.

    Example:
        >>> token = create_access_token({"user_id": 1})
        >>> verify_token(token)["user_id"]
        1
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    claims = {**data, "iat": issued_at, "nbf": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )

