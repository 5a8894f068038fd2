"""
Email template rendering.

WHAT: Renders every transactional email as a subject plus matching HTML
and plain-text bodies.

WHY: Wording lives in templates so copy changes never touch the code that
decides when an email goes out.

HOW: One Jinja2 environment over templates/email. Each email has a
`<name>.html` (autoescaped, extends base.html) and a `<name>.txt` (not
escaped, ends with the shared _footer.txt).
"""

import logging
from pathlib import Path
from typing import Dict, Any, NamedTuple, Optional
from datetime import datetime

from jinja2 import Environment, FileSystemLoader, select_autoescape, TemplateNotFound

from memodams.core.config import settings
from memodams.core.exceptions import EmailServiceError


logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M UTC"


class RenderedEmail(NamedTuple):
    subject: str
    html: str
    text: str


class EmailTemplateService:
    """
    Renders the access gate's emails.

    Example:
        subject, html, text = EmailTemplateService().render_verification_email(
            user_name="Ada",
            verification_url="https://...",
        )
    """

    def __init__(self, template_dir: Optional[Path] = None):
        self._template_dir = template_dir or TEMPLATE_DIR
        self._env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            # Names and user agents are user-controlled.
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["truncate"] = self._truncate_filter

    @staticmethod
    def _truncate_filter(text: str, length: int = 200, suffix: str = "...") -> str:
        if len(text) <= length:
            return text
        return text[: length - len(suffix)] + suffix

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render one template file with the shared base context.

        Raises:
            EmailServiceError: If the template is missing or fails to render
        """
        full_context = {
            "year": datetime.utcnow().year,
            "frontend_url": settings.FRONTEND_URL,
            "platform_name": settings.EMAIL_FROM_NAME,
            **context,
        }
        try:
            return self._env.get_template(template_name).render(**full_context)
        except TemplateNotFound:
            logger.error(f"Email template not found: {template_name}")
            raise EmailServiceError(
                message=f"Email template not found: {template_name}",
                template=template_name,
            )
        except Exception as e:
            logger.error(f"Error rendering template {template_name}: {e}")
            raise EmailServiceError(
                message="Failed to render email template",
                template=template_name,
            )

    def _render(self, name: str, subject: str, context: Dict[str, Any]) -> RenderedEmail:
        return RenderedEmail(
            subject=subject,
            html=self.render_template(f"{name}.html", context),
            text=self.render_template(f"{name}.txt", context).strip(),
        )

    def render_verification_email(
        self,
        user_name: str,
        verification_url: str,
        expires_in: str = "24 hours",
    ) -> RenderedEmail:
        return self._render(
            "verification",
            "Verify your email address",
            {
                "user_name": user_name,
                "verification_url": verification_url,
                "expires_in": expires_in,
            },
        )

    def render_password_reset_email(
        self,
        user_name: str,
        reset_url: str,
        expires_in: str = "1 hour",
    ) -> RenderedEmail:
        return self._render(
            "password_reset",
            "Reset your password",
            {"user_name": user_name, "reset_url": reset_url, "expires_in": expires_in},
        )

    def render_password_changed_email(
        self,
        user_name: str,
        changed_at: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RenderedEmail:
        """The link points at forgot-password in case the change was not the owner's."""
        return self._render(
            "password_changed",
            "Your password has been changed",
            {
                "user_name": user_name,
                "changed_at": changed_at or datetime.utcnow().strftime(TIMESTAMP_FORMAT),
                "ip_address": ip_address,
                "reset_url": f"{settings.FRONTEND_URL}/forgot-password",
            },
        )

    def render_security_alert_email(
        self,
        user_name: str,
        headline: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RenderedEmail:
        """
        Render an alert for a new trusted device or a factor change.

        Args:
            headline: One line, e.g. "A new device was verified"; also the subject suffix
        """
        return self._render(
            "security_alert",
            f"Security alert: {headline}",
            {
                "user_name": user_name,
                "headline": headline,
                "occurred_at": datetime.utcnow().strftime(TIMESTAMP_FORMAT),
                "ip_address": ip_address,
                "user_agent": user_agent,
                "reset_url": f"{settings.FRONTEND_URL}/forgot-password",
                "devices_url": f"{settings.FRONTEND_URL}/settings/devices",
            },
        )


_template_service: Optional[EmailTemplateService] = None


def get_email_template_service() -> EmailTemplateService:
    global _template_service

    if _template_service is None:
        _template_service = EmailTemplateService()

    return _template_service
