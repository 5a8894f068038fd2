"""
SMS service for one-time sign-in and enrollment codes.

WHAT: Sends short text messages carrying numeric codes to a phone-number
second factor.

WHY: Phone factors prove possession by echoing back a code we texted.
The code itself is generated and digested by the caller; this module only
delivers it.

HOW: Same shape as the email service: an SmsProvider abstraction with a
Twilio provider talking to the Messages REST API over httpx, and a mock
provider used whenever Twilio is not configured.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import httpx

from memodams.core.config import settings
from memodams.core.exceptions import SmsServiceError

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass
class SmsMessage:
    """A text message to be sent."""

    to_number: str
    body: str


@dataclass
class SmsResult:
    """Result of an SMS send operation."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None


class SmsProvider(ABC):
    """Abstract base class for SMS providers."""

    @abstractmethod
    async def send(self, message: SmsMessage) -> SmsResult:
        """Send a text message."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if this provider has its credentials."""


class TwilioSmsProvider(SmsProvider):
    """Twilio Programmable Messaging provider."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
    ):
        self._account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self._auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self._from_number = from_number or settings.TWILIO_FROM

    def is_configured(self) -> bool:
        return all([self._account_sid, self._auth_token, self._from_number])

    async def send(self, message: SmsMessage) -> SmsResult:
        if not self.is_configured():
            return SmsResult(
                success=False,
                error="Twilio is not configured",
                provider="twilio",
            )

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    TWILIO_MESSAGES_URL.format(sid=self._account_sid),
                    auth=(self._account_sid, self._auth_token),
                    data={
                        "To": message.to_number,
                        "From": self._from_number,
                        "Body": message.body,
                    },
                    timeout=15.0,
                )

            if response.status_code in (200, 201):
                return SmsResult(
                    success=True,
                    message_id=response.json().get("sid"),
                    provider="twilio",
                )
            return SmsResult(
                success=False,
                error=f"Twilio API error: {response.status_code} - {response.text}",
                provider="twilio",
            )

        except httpx.HTTPError as e:
            logger.error(f"Twilio send error: {e}")
            return SmsResult(success=False, error=str(e), provider="twilio")


class MockSmsProvider(SmsProvider):
    """
    Mock SMS provider for testing and development.

    Keeps sent messages in `sent_messages` so tests can read the code.
    """

    sent_messages: List[SmsMessage] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, message: SmsMessage) -> SmsResult:
        logger.info(f"[MOCK SMS] To: {mask_phone_number(message.to_number)}")
        MockSmsProvider.sent_messages.append(message)
        return SmsResult(
            success=True,
            message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_messages(cls):
        cls.sent_messages = []


def mask_phone_number(phone_number: str) -> str:
    """Hide all but the last four digits for logs and hints."""
    if len(phone_number) <= 4:
        return "*" * len(phone_number)
    return "*" * (len(phone_number) - 4) + phone_number[-4:]


class SmsService:
    """High-level SMS service for verification codes."""

    def __init__(self, provider: Optional[SmsProvider] = None):
        if provider:
            self._provider = provider
        elif settings.twilio_enabled:
            self._provider = TwilioSmsProvider()
        else:
            logger.warning("No SMS provider configured, using mock provider")
            self._provider = MockSmsProvider()

    async def send_code(self, to_number: str, code: str, purpose: str = "sign-in") -> SmsResult:
        """
        Text a verification code.

        Raises:
            SmsServiceError: If the provider could not deliver the message
        """
        minutes = max(settings.SMS_CODE_TTL_SECONDS // 60, 1)
        body = (
            f"{code} is your {settings.EMAIL_FROM_NAME} {purpose} code. "
            f"It expires in {minutes} minutes. Never share it with anyone."
        )

        result = await self._provider.send(SmsMessage(to_number=to_number, body=body))

        if not result.success:
            logger.error(
                f"SMS send failed: {result.error}",
                extra={"to": mask_phone_number(to_number), "provider": result.provider},
            )
            raise SmsServiceError(provider=result.provider)

        logger.info(
            "SMS code sent",
            extra={"to": mask_phone_number(to_number), "message_id": result.message_id},
        )
        return result


_sms_service: Optional[SmsService] = None


def get_sms_service() -> SmsService:
    """Get or create the global SMS service instance."""
    global _sms_service

    if _sms_service is None:
        _sms_service = SmsService()

    return _sms_service
