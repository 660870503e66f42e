"""
Tests for bearer token handling.

WHY: Every member and admin endpoint trusts verify_token:
1. Tokens carry the claims they were issued with
2. Expired and forged tokens are rejected
"""

import pytest
from datetime import datetime, timedelta
from jose import jwt

from app.core.auth import (
    create_access_token,
    verify_token,
)
from app.core.config import settings
from app.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


class TestTokenCreation:
    """Test JWT token creation."""

    def test_create_access_token_with_profile_claims(self):
        token = create_access_token({"user_id": 7, "role": "admin"})

        decoded = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        assert decoded["user_id"] == 7
        assert decoded["role"] == "admin"

    def test_create_access_token_includes_standard_claims(self):
        """Verify token includes exp, iat, and nbf claims."""
        token = create_access_token({"user_id": 1})

        decoded = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])

        assert "exp" in decoded
        assert "iat" in decoded
        assert "nbf" in decoded

    def test_create_access_token_custom_expiration(self):
        expires_delta = timedelta(minutes=30)
        token = create_access_token({"user_id": 1}, expires_delta=expires_delta)

        decoded = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])

        expected_exp = datetime.utcnow() + expires_delta
        actual_exp = datetime.utcfromtimestamp(decoded["exp"])
        assert abs((expected_exp - actual_exp).total_seconds()) < 10


class TestTokenVerification:
    """Test JWT token verification."""

    def test_verify_token_valid(self):
        token = create_access_token({"user_id": 1})

        assert verify_token(token)["user_id"] == 1

    def test_verify_token_expired(self):
        token = create_access_token({"user_id": 1}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(TokenExpiredError):
            verify_token(token)

    def test_verify_token_invalid_signature(self):
        token = jwt.encode({"user_id": 1}, "wrong-secret", algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_verify_token_malformed(self):
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.valid.jwt.token")

    def test_verify_token_wrong_algorithm(self):
        token = jwt.encode({"user_id": 1}, settings.JWT_SECRET, algorithm="HS512")

        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_tampered_role_is_rejected(self):
        """A member cannot promote themselves by re-signing the payload."""
        decoded = jwt.decode(
            create_access_token({"user_id": 1, "role": "member"}),
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        decoded["role"] = "admin"
        tampered = jwt.encode(decoded, "wrong-secret", algorithm="HS256")

        with pytest.raises(TokenInvalidError):
            verify_token(tampered)
