"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error responses for admin, member and webhook endpoints
2. HTTP status code mapping for FastAPI
3. Contextual data for logs without leaking secrets (OWASP A04)

Ordering rule enforced by the services: validation and lookup errors are
raised BEFORE any processor call, and processor errors are raised BEFORE any
local mirror write. An exception therefore always means "no local change".
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        WHY: Callers of the admin API read the `error` field for a
        human-readable message; `error_type` lets clients branch without
        parsing text.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.message,
            "error_type": self.__class__.__name__,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions (OWASP A07)
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    WHY: Missing or invalid bearer tokens, and tokens for unknown or
    inactive profiles, are all rejected the same way so callers learn
    nothing about which check failed.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when user lacks permissions for an action.

    WHY: The admin gateway distinguishes "who are you" (401) from
    "you may not do this" (403).

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when a bearer token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when a bearer token is malformed or its signature is invalid."""

    default_message = "Token is invalid"


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Bad fields and unknown plan keys must be rejected before any
    processor call is made.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class SubscriptionNotFoundError(ResourceNotFoundError):
    """Raised when no local subscription matches the requested id."""

    default_message = "Subscription not found"


class InviteCodeNotFoundError(ResourceNotFoundError):
    """Raised when an invite code does not exist."""

    default_message = "Invite code not found"


class ProfileNotFoundError(ResourceNotFoundError):
    """Raised when an admin addresses a member that does not exist."""

    default_message = "Member not found"


# ============================================================================
# Invite Code Exceptions
# ============================================================================


class InviteCodeRedemptionError(ValidationError):
    """
    Raised when a code exists but cannot be redeemed.

    WHY: The `reason` context (expired, revoked, already_used) lets the
    client show a precise message without a second round trip.
    """

    default_message = "Invite code cannot be redeemed"


class InviteCodeGenerationError(AppException):
    """
    Raised when no unique code could be stored within the retry bound.

    WHY: With a 32^6 namespace, exhausting the retries means something is
    broken (bad random source, constraint misconfigured), not load. Failing
    loudly surfaces that instead of issuing a duplicate.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Failed to generate a unique invite code"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Raised when an external service fails.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class StripeError(ExternalServiceError):
    """
    Raised when a Stripe API call fails.

    WHY: Surfaced to admin callers as a processor failure. The local mirror
    is never written after this is raised.
    """

    default_message = "Payment processing error"


# ============================================================================
# Webhook Exceptions
# ============================================================================


class WebhookError(AppException):
    """Base class for inbound webhook errors."""

    status_code = 400
    default_message = "Webhook error"


class WebhookSignatureError(WebhookError):
    """
    Raised when a webhook signature cannot be verified.

    WHY: This is the only failure that produces a non-2xx webhook response.
    Nothing is read from the payload before verification succeeds.

    HTTP Status: 400 Bad Request
    """

    default_message = "Invalid signature"
