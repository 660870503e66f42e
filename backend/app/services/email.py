"""
Email service for sending invite emails.

WHAT: This service provides a unified interface for sending the one
transactional email the billing core sends: the invite code email issued
after a completed checkout.

WHY: The payer usually has no account yet when the checkout completes. The
email is how the invite code (and the deep link that opens the app with it)
reaches them.

HOW: Uses the Resend API through httpx. Without an API key a mock provider
records messages instead of sending them, which is what tests and local
development use.

Design decisions:
- Provider abstraction: Easy to switch providers
- Fail-safe: A failed send is logged and reported in EmailResult, never
  raised, so the webhook that triggered it still commits
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class EmailMessage:
    """
    Represents an email to be sent.

    WHAT: Data container for email content and metadata.
    """

    to_email: str
    """Recipient email address."""

    subject: str
    """Email subject line."""

    html_content: str
    """HTML email body."""

    text_content: Optional[str] = None
    """Plain text fallback."""

    from_email: Optional[str] = None
    """Sender (defaults to EMAIL_FROM)."""

    metadata: Optional[Dict[str, Any]] = None
    """Additional metadata for tracking."""


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    """Whether email was sent successfully."""

    message_id: Optional[str] = None
    """Provider message ID for tracking."""

    error: Optional[str] = None
    """Error message if send failed."""

    provider: Optional[str] = None
    """Which provider was used."""


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows testing with a mock provider and
    switching providers without touching callers.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Returns:
            EmailResult with success status and provider details
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if this provider is properly configured."""
        pass


class ResendProvider(EmailProvider):
    """Resend email provider implementation."""

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize Resend provider.

        Args:
            api_key: Resend API key (defaults to settings)
        """
        self._api_key = api_key or settings.RESEND_API_KEY
        self._default_from = settings.EMAIL_FROM

    def is_configured(self) -> bool:
        """Check if Resend API key is configured."""
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Resend API.

        HOW: One POST per message with httpx.AsyncClient; any transport or
        API error becomes an unsuccessful EmailResult.

        Args:
            message: Email message to send

        Returns:
            EmailResult with send status
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Resend API key not configured",
                provider="resend",
            )

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": message.from_email or self._default_from,
                        "to": [message.to_email],
                        "subject": message.subject,
                        "html": message.html_content,
                        "text": message.text_content,
                    },
                    timeout=30.0,
                )

                if response.status_code in (200, 201):
                    data = response.json()
                    return EmailResult(
                        success=True,
                        message_id=data.get("id"),
                        provider="resend",
                    )
                return EmailResult(
                    success=False,
                    error=f"Resend API error: {response.status_code} - {response.text}",
                    provider="resend",
                )

        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return EmailResult(
                success=False,
                error=str(e),
                provider="resend",
            )


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    WHY: Allows testing email flows without sending real emails.
    Logs emails instead of sending them.
    """

    sent_emails: List[EmailMessage] = []
    """Class-level list to track sent emails for testing."""

    def is_configured(self) -> bool:
        """Mock provider is always configured."""
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        """Mock send - logs email instead of sending."""
        logger.info(f"[MOCK EMAIL] To: {message.to_email}, Subject: {message.subject}")

        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Clear sent emails list (for test cleanup)."""
        cls.sent_emails = []


# ============================================================================
# Email Templates
# ============================================================================


class EmailTemplates:
    """Templates for the invite email."""

    @staticmethod
    def _base_template(content: str, title: str = "") -> str:
        """Base HTML wrapper shared by all invite emails."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
            <title>{title}</title>
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #0f172a; color: #e2e8f0; margin: 0; padding: 0;">
            <div style="max-width: 560px; margin: 40px auto; background-color: #1e293b; border-radius: 12px; padding: 32px;">
                <h1 style="margin-top: 0; font-size: 22px;">Arkline</h1>
                {content}
                <p style="font-size: 13px; color: #94a3b8; margin-top: 32px;">
                    &copy; {datetime.utcnow().year} Arkline. If you did not expect this email, you can ignore it.
                </p>
            </div>
        </body>
        </html>
        """

    @classmethod
    def invite_email(
        cls,
        code: str,
        deep_link: str,
        is_trial: bool,
    ) -> tuple[str, str, str]:
        """
        Generate the invite code email.

        Args:
            code: Invite code (ARK-XXXXXX)
            deep_link: App deep link carrying the code
            is_trial: Whether the checkout started a free trial

        Returns:
            Tuple of (subject, html_content, text_content)
        """
        if is_trial:
            subject = "Your Arkline Free Trial Has Started"
            intro = "Your free trial has started. Use the code below to activate your account."
        else:
            subject = "Your Arkline Invite Code"
            intro = "Thanks for subscribing. Use the code below to activate your account."

        content = f"""
        <p>{intro}</p>
        <div style="background-color: #0f172a; border-radius: 8px; padding: 16px; font-family: monospace; font-size: 24px; letter-spacing: 3px; text-align: center;">{code}</div>
        <p style="text-align: center;">
            <a href="{deep_link}" style="display: inline-block; background-color: #6366f1; color: #ffffff; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600; margin-top: 16px;">Open in Arkline</a>
        </p>
        <p>If the button does not work, open the app and enter the code manually.</p>
        """

        text_content = f"""
{intro}

Your code: {code}

Open in Arkline: {deep_link}
        """

        return subject, cls._base_template(content, title=subject), text_content


# ============================================================================
# Email Service
# ============================================================================


class EmailService:
    """
    High-level email service.

    WHAT: Composes invite emails and hands them to the configured provider.

    HOW: Resend when RESEND_API_KEY is set, otherwise the mock provider.
    """

    def __init__(self, provider: Optional[EmailProvider] = None):
        """
        Initialize email service.

        Args:
            provider: Email provider to use (auto-detected if not provided)
        """
        if provider:
            self._provider = provider
        elif settings.RESEND_API_KEY:
            self._provider = ResendProvider()
        else:
            logger.warning("No email provider configured, using mock provider")
            self._provider = MockEmailProvider()

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        WHY: Central entry point for all email sending ensures consistent
        logging of every attempt.

        Returns:
            EmailResult with send status
        """
        logger.info(
            f"Sending email to {message.to_email}",
            extra={"to": message.to_email, "subject": message.subject},
        )

        result = await self._provider.send(message)

        if result.success:
            logger.info(
                f"Email sent successfully: {result.message_id}",
                extra={
                    "message_id": result.message_id,
                    "provider": result.provider,
                },
            )
        else:
            logger.error(
                f"Email send failed: {result.error}",
                extra={"to": message.to_email, "error": result.error},
            )

        return result

    async def send_invite_email(
        self,
        to_email: str,
        code: str,
        deep_link: str,
        is_trial: bool = False,
    ) -> EmailResult:
        """
        Send an invite code to the payer of a checkout.

        Args:
            to_email: Payer email
            code: Invite code
            deep_link: App deep link for the code
            is_trial: Use the trial wording

        Returns:
            EmailResult with send status
        """
        subject, html_content, text_content = EmailTemplates.invite_email(
            code=code,
            deep_link=deep_link,
            is_trial=is_trial,
        )
        message = EmailMessage(
            to_email=to_email,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
            metadata={"code": code, "is_trial": is_trial},
        )
        return await self.send_email(message)


# ============================================================================
# Module-level convenience functions
# ============================================================================


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """
    Get or create the global email service instance.

    Returns:
        EmailService instance
    """
    global _email_service

    if _email_service is None:
        _email_service = EmailService()

    return _email_service
