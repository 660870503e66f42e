"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize to the single error shape clients parse
2. HTTP status codes map correctly
3. Sensitive context never leaves the service
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
    ResourceNotFoundError,
    SubscriptionNotFoundError,
    InviteCodeNotFoundError,
    InviteCodeRedemptionError,
    InviteCodeGenerationError,
    StripeError,
    WebhookSignatureError,
)
from app.core.exception_handlers import app_exception_handler


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_status_code(self):
        """Verify custom status code overrides class default."""
        exc = AppException(status_code=418)
        assert exc.status_code == 418

    def test_to_dict_shape(self):
        """Verify exception serializes to the error/error_type/details shape."""
        exc = AppException(message="Test error", user_id=123)
        result = exc.to_dict()

        assert result == {
            "error": "Test error",
            "error_type": "AppException",
            "status_code": 500,
            "details": {"user_id": 123},
        }

    def test_to_dict_filters_sensitive_data(self):
        """Verify sensitive fields are filtered from dict."""
        exc = AppException(
            message="Test error",
            user_id=123,
            token="abc123",
            api_key="key123",
            secret="mysecret",
            signature="t=1,v1=abc",
        )
        details = exc.to_dict()["details"]

        assert details == {"user_id": 123}

    def test_to_dict_no_context(self):
        assert AppException(message="Test error").to_dict()["details"] is None


class TestStatusCodes:
    """Each error class maps to the status its callers expect."""

    @pytest.mark.parametrize(
        "exc_class,status_code",
        [
            (AuthenticationError, 401),
            (TokenExpiredError, 401),
            (TokenInvalidError, 401),
            (AuthorizationError, 403),
            (ValidationError, 400),
            (InviteCodeRedemptionError, 400),
            (WebhookSignatureError, 400),
            (ResourceNotFoundError, 404),
            (SubscriptionNotFoundError, 404),
            (InviteCodeNotFoundError, 404),
            (InviteCodeGenerationError, 500),
            (StripeError, 502),
        ],
    )
    def test_status_code(self, exc_class, status_code):
        assert exc_class().status_code == status_code

    def test_redemption_error_is_validation_error(self):
        """Clients treat a rejected code like any other bad input."""
        assert isinstance(InviteCodeRedemptionError(), ValidationError)

    def test_webhook_signature_message(self):
        assert WebhookSignatureError().message == "Invalid signature"


class TestExceptionHandlerIntegration:
    """Test exception handler integration with FastAPI."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        app.add_exception_handler(AppException, app_exception_handler)

        @app.get("/redeem")
        async def redeem():
            raise InviteCodeRedemptionError(
                message="Invite code has already been used",
                reason="already_used",
                code="ARK-7K2PQR",
            )

        @app.get("/stripe")
        async def stripe_failure():
            raise StripeError(message="Card declined", api_key="sk_live_x")

        return app

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_redemption_error_response(self, client):
        response = client.get("/redeem")

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invite code has already been used"
        assert data["error_type"] == "InviteCodeRedemptionError"
        assert data["details"]["reason"] == "already_used"

    def test_stripe_error_response_hides_key(self, client):
        response = client.get("/stripe")

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "Card declined"
        assert data["details"] is None
