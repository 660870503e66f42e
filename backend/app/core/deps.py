"""
FastAPI dependencies for authentication and authorization.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, ensuring the member endpoints
and the admin gateway check callers the same way.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_token
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from app.db.session import get_db
from app.models.profile import Profile, ProfileRole
from app.dao.profile import ProfileDAO


# HTTP Bearer token security scheme
# WHY: auto_error=False so a missing header is reported as our own 401 JSON
# body instead of FastAPI's default 403.
security = HTTPBearer(auto_error=False)


async def get_current_profile(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """
    Get current authenticated profile from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches the profile from database
    4. Ensures the profile still exists and is active

    Args:
        credentials: JWT token from Authorization header
        db: Database session

    Returns:
        Authenticated Profile instance

    Raises:
        AuthenticationError: If token is missing, invalid, expired, or the
            profile is unknown or inactive
    """
    if credentials is None:
        raise AuthenticationError(message="Missing authorization")

    token = credentials.credentials

    try:
        payload = verify_token(token)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    profile_id = payload.get("user_id")
    if not profile_id:
        raise AuthenticationError(
            message="Invalid token: missing user_id",
        )

    # WHY: Role and is_active in the token might be stale; always fetch
    profile = await ProfileDAO(db).get_by_id(profile_id)

    if not profile:
        raise AuthenticationError(
            message="User not found",
            user_id=profile_id,
        )

    if not profile.is_active:
        raise AuthenticationError(
            message="User account is inactive",
            user_id=profile_id,
        )

    return profile


async def require_admin(
    current_profile: Profile = Depends(get_current_profile),
) -> Profile:
    """
    Require the caller to have the admin role.

    WHY: RBAC keeps billing mutations away from members (OWASP A01: Broken
    Access Control).

    Raises:
        AuthorizationError: If the caller is not an admin
    """
    if current_profile.role != ProfileRole.ADMIN:
        raise AuthorizationError(
            message="Admin access required",
            user_id=current_profile.id,
            user_role=current_profile.role.value,
        )

    return current_profile
