"""
Email service for sending transactional emails.

WHAT: A single interface for the emails the access gate sends: email
verification, password reset, password changed and security alerts.

WHY: Email is how an account proves it owns its address and the only
out-of-band channel for telling a user that something changed on their
account (new trusted device, second factor added or removed).

HOW: Provider abstraction with a Resend HTTP provider (httpx) and a mock
provider used whenever no API key is configured. Bodies are rendered from
Jinja2 templates by EmailTemplateService.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime
from urllib.parse import urlparse

import httpx

from memodams.core.config import settings
from memodams.services.email_template_service import (
    EmailTemplateService,
    RenderedEmail,
    get_email_template_service,
)

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


# ============================================================================
# Email Types and Messages
# ============================================================================


class EmailType(str, Enum):
    """Types of transactional emails."""

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGED = "password_changed"
    SECURITY_ALERT = "security_alert"


@dataclass
class EmailMessage:
    """An email to be sent."""

    to_email: str
    subject: str
    html_content: str
    text_content: Optional[str] = None
    from_email: Optional[str] = None
    reply_to: Optional[str] = None
    email_type: EmailType = EmailType.VERIFICATION
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows switching providers and testing
    with a mock provider.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """Send an email message."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if this provider has its credentials."""


class ResendProvider(EmailProvider):
    """Resend email provider implementation."""

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.RESEND_API_KEY
        domain = urlparse(settings.FRONTEND_URL).netloc or "localhost"
        self._default_from = f"{settings.EMAIL_FROM_NAME} <noreply@{domain}>"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via the Resend REST API.

        Returns:
            EmailResult with send status (never raises)
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
                        "reply_to": message.reply_to,
                    },
                    timeout=30.0,
                )

            if response.status_code in (200, 201):
                return EmailResult(
                    success=True,
                    message_id=response.json().get("id"),
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

    Logs emails instead of sending them and keeps them in `sent_emails`.
    """

    sent_emails: List[EmailMessage] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Subject: {message.subject}, "
            f"Type: {message.email_type.value}"
        )
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
# Email Service
# ============================================================================


class EmailService:
    """
    High-level email service for sending transactional emails.

    HOW: Picks the Resend provider when an API key is configured and the
    mock provider otherwise, renders the body, sends, and logs the result.
    """

    def __init__(
        self,
        provider: Optional[EmailProvider] = None,
        template_service: Optional[EmailTemplateService] = None,
    ):
        if provider:
            self._provider = provider
        elif settings.RESEND_API_KEY:
            self._provider = ResendProvider()
        else:
            logger.warning("No email provider configured, using mock provider")
            self._provider = MockEmailProvider()

        self._template_service = template_service or get_email_template_service()

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message and log the outcome.

        Returns:
            EmailResult with send status
        """
        logger.info(
            f"Sending {message.email_type.value} email",
            extra={
                "email_type": message.email_type.value,
                "to": message.to_email,
            },
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
                extra={
                    "email_type": message.email_type.value,
                    "to": message.to_email,
                    "error": result.error,
                },
            )

        return result

    async def _send_rendered(
        self,
        email_type: EmailType,
        to_email: str,
        rendered: RenderedEmail,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EmailResult:
        subject, html_content, text_content = rendered
        return await self.send_email(
            EmailMessage(
                to_email=to_email,
                subject=subject,
                html_content=html_content,
                text_content=text_content,
                email_type=email_type,
                metadata=metadata,
            )
        )

    async def send_verification_email(
        self,
        to_email: str,
        user_name: str,
        verification_token: str,
    ) -> EmailResult:
        """
        Send the email-verification link.

        WHY: Until the link is opened the account is held on the
        verify-email page.
        """
        url = f"{settings.FRONTEND_URL}/verify-email?token={verification_token}"
        rendered = self._template_service.render_verification_email(
            user_name=user_name,
            verification_url=url,
        )
        return await self._send_rendered(EmailType.VERIFICATION, to_email, rendered)

    async def send_password_reset_email(
        self,
        to_email: str,
        user_name: str,
        reset_token: str,
    ) -> EmailResult:
        url = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"
        rendered = self._template_service.render_password_reset_email(
            user_name=user_name,
            reset_url=url,
        )
        return await self._send_rendered(EmailType.PASSWORD_RESET, to_email, rendered)

    async def send_password_changed_email(
        self,
        to_email: str,
        user_name: str,
        ip_address: Optional[str] = None,
    ) -> EmailResult:
        rendered = self._template_service.render_password_changed_email(
            user_name=user_name,
            ip_address=ip_address,
        )
        return await self._send_rendered(EmailType.PASSWORD_CHANGED, to_email, rendered)

    async def send_security_alert_email(
        self,
        to_email: str,
        user_name: str,
        headline: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> EmailResult:
        """Notify the account owner of a security-relevant change."""
        rendered = self._template_service.render_security_alert_email(
            user_name=user_name,
            headline=headline,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return await self._send_rendered(
            EmailType.SECURITY_ALERT,
            to_email,
            rendered,
            metadata={"headline": headline},
        )


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
