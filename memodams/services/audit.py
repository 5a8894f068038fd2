"""
Audit logging service.

WHAT: Service layer for creating audit log entries with proper context.

WHY: OWASP A09 (Security Logging and Monitoring) requires security event
logging. Every decision the access gate makes (who signed in, who was
asked for a second factor, which answers were wrong, which devices were
trusted, who became an admin) ends up here.

HOW: Uses the AuditLogDAO for persistence and RequestContext middleware
for automatic IP/user-agent capture. Failures are logged, never raised.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.audit_log import AuditLogDAO
from memodams.models.audit_log import AuditLog, AuditAction
from memodams.middleware.request_context import get_request_context


# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(db)
        await audit.log_login_failure(credentials.email)
    """

    def __init__(self, session: AsyncSession):
        self.dao = AuditLogDAO(session)
        self._session = session

    def _get_context(self) -> tuple[Optional[str], Optional[str]]:
        """
        Get IP address and user agent from request context.

        Returns:
            Tuple of (ip_address, user_agent), both may be None
        """
        ctx = get_request_context()
        if ctx:
            return ctx.ip_address, ctx.user_agent
        return None, None

    async def log_event(
        self,
        action: AuditAction,
        resource_type: str,
        actor_user_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Log a generic audit event.

        Args:
            action: Type of event (from AuditAction enum)
            resource_type: Category of affected resource
            actor_user_id: User who performed the action
            resource_id: Specific resource ID (optional)
            changes: Before/after values for mutations
            extra_data: Additional context
            ip_address: Override auto-detected IP
            user_agent: Override auto-detected user agent

        Returns:
            Created AuditLog or None if logging failed

        Note:
            This method never raises exceptions to prevent audit
            logging from breaking business operations.
        """
        try:
            if ip_address is None or user_agent is None:
                ctx_ip, ctx_ua = self._get_context()
                ip_address = ip_address or ctx_ip
                user_agent = user_agent or ctx_ua

            return await self.dao.create(
                actor_user_id=actor_user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                changes=changes,
                extra_data=extra_data,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        except Exception as e:
            # A logging failure must not stop a user from signing in
            logger.error(
                f"Failed to create audit log: {e}",
                exc_info=True,
                extra={"action": action.value, "actor_user_id": actor_user_id},
            )
            return None

    # =========================================================================
    # Authentication Events
    # =========================================================================

    async def log_login_success(
        self,
        user_id: int,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log a session being issued.

        Args:
            user_id: ID of the authenticated user
            extra_data: How the session was completed (password, second factor,
                security question)
        """
        return await self.log_event(
            action=AuditAction.LOGIN_SUCCESS,
            resource_type="auth",
            actor_user_id=user_id,
            extra_data=extra_data,
        )

    async def log_login_failure(
        self,
        attempted_email: str,
        user_id: Optional[int] = None,
        reason: str = "Invalid credentials",
    ) -> Optional[AuditLog]:
        """
        Log a failed password sign-in.

        WHY: The client always gets the same generic error; the real reason
        (unknown email, wrong password, disabled) is only recorded here.
        """
        return await self.log_event(
            action=AuditAction.LOGIN_FAILURE,
            resource_type="auth",
            actor_user_id=user_id,
            extra_data={
                "attempted_email": attempted_email,
                "reason": reason,
            },
        )

    async def log_logout(self, user_id: int) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.LOGOUT,
            resource_type="auth",
            actor_user_id=user_id,
        )

    async def log_token_refresh(self, user_id: int) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.TOKEN_REFRESH,
            resource_type="auth",
            actor_user_id=user_id,
        )

    async def log_password_reset_request(
        self,
        email: str,
        user_id: Optional[int] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.PASSWORD_RESET_REQUEST,
            resource_type="auth",
            actor_user_id=user_id,
            extra_data={"email": email},
        )

    async def log_password_reset_complete(self, user_id: int) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.PASSWORD_RESET_COMPLETE,
            resource_type="auth",
            actor_user_id=user_id,
        )

    # =========================================================================
    # Step-Up Events
    # =========================================================================

    async def log_step_up_required(
        self,
        user_id: int,
        stage: str,
        device_id: str,
    ) -> Optional[AuditLog]:
        """
        Log that a sign-in was held for an extra proof.

        Args:
            user_id: Account signing in
            stage: Which proof is owed first (awaiting_factor,
                awaiting_security_question)
            device_id: Device the challenge is bound to
        """
        return await self.log_event(
            action=AuditAction.STEP_UP_REQUIRED,
            resource_type="step_up",
            actor_user_id=user_id,
            extra_data={"stage": stage, "device_id": device_id},
        )

    async def log_second_factor(
        self,
        user_id: int,
        success: bool,
        factor_type: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=(
                AuditAction.SECOND_FACTOR_SUCCESS
                if success
                else AuditAction.SECOND_FACTOR_FAILURE
            ),
            resource_type="step_up",
            actor_user_id=user_id,
            extra_data={"factor_type": factor_type, "attempts": attempts},
        )

    async def log_security_question(
        self,
        user_id: int,
        success: bool,
        attempts: Optional[int] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=(
                AuditAction.SECURITY_QUESTION_SUCCESS
                if success
                else AuditAction.SECURITY_QUESTION_FAILURE
            ),
            resource_type="step_up",
            actor_user_id=user_id,
            extra_data={"attempts": attempts},
        )

    async def log_step_up_locked(self, user_id: int, stage: str) -> Optional[AuditLog]:
        """
        Log a challenge being closed after too many wrong attempts.

        WHY: Repeated lockouts for one account are the clearest sign that
        someone holds the password but not the second proof.
        """
        return await self.log_event(
            action=AuditAction.STEP_UP_LOCKED,
            resource_type="step_up",
            actor_user_id=user_id,
            extra_data={"stage": stage},
        )

    async def log_step_up_aborted(self, user_id: int, device_id: str) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.STEP_UP_ABORTED,
            resource_type="step_up",
            actor_user_id=user_id,
            extra_data={"device_id": device_id},
        )

    # =========================================================================
    # Device Events
    # =========================================================================

    async def log_device_trusted(self, user_id: int, device_id: str) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.DEVICE_TRUSTED,
            resource_type="device",
            actor_user_id=user_id,
            extra_data={"device_id": device_id},
        )

    async def log_device_revoked(
        self,
        user_id: Optional[int],
        device_id: str,
        count: int = 1,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.DEVICE_REVOKED,
            resource_type="device",
            actor_user_id=user_id,
            extra_data={"device_id": device_id, "count": count},
        )

    # =========================================================================
    # Account Events
    # =========================================================================

    async def log_account_created(
        self,
        user_id: int,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.ACCOUNT_CREATED,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data=extra_data,
        )

    async def log_email_verified(self, user_id: int) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.EMAIL_VERIFIED,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
        )

    async def log_email_verification_sent(
        self,
        user_id: int,
        email: str,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.EMAIL_VERIFICATION_SENT,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data={"email": email},
        )

    async def log_mfa_enrolled(
        self,
        user_id: int,
        factor_id: int,
        factor_type: str,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.MFA_ENROLLED,
            resource_type="mfa_factor",
            actor_user_id=user_id,
            resource_id=factor_id,
            extra_data={"factor_type": factor_type},
        )

    async def log_mfa_unenrolled(
        self,
        user_id: int,
        factor_id: int,
        factor_type: str,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.MFA_UNENROLLED,
            resource_type="mfa_factor",
            actor_user_id=user_id,
            resource_id=factor_id,
            extra_data={"factor_type": factor_type},
        )

    async def log_security_question_set(
        self,
        user_id: int,
        replaced: bool,
    ) -> Optional[AuditLog]:
        """The question text is recorded; the answer never is."""
        return await self.log_event(
            action=AuditAction.SECURITY_QUESTION_SET,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data={"replaced": replaced},
        )

    async def log_profile_updated(
        self,
        user_id: int,
        fields: list[str],
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.PROFILE_UPDATED,
            resource_type="profile",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data={"fields": sorted(fields)},
        )

    # =========================================================================
    # Federated Identity Events
    # =========================================================================

    async def log_oauth_account_linked(
        self,
        user_id: int,
        provider: str,
        new_account: bool = False,
    ) -> Optional[AuditLog]:
        """
        Log a provider identity being attached to an account.

        Args:
            new_account: True when the account itself was created by this sign-in
        """
        return await self.log_event(
            action=AuditAction.OAUTH_ACCOUNT_LINKED,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data={"provider": provider, "new_account": new_account},
        )

    async def log_oauth_account_unlinked(self, user_id: int, provider: str) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.OAUTH_ACCOUNT_UNLINKED,
            resource_type="user",
            actor_user_id=user_id,
            resource_id=user_id,
            extra_data={"provider": provider},
        )

    # =========================================================================
    # Authorization Events
    # =========================================================================

    async def log_admin_grant(
        self,
        actor_user_id: Optional[int],
        target_user_id: int,
        granted_via: str,
    ) -> Optional[AuditLog]:
        """
        Log an admin claim being set.

        Args:
            actor_user_id: Admin who made the grant (None when seeded from the CLI)
            target_user_id: Account receiving the claim
            granted_via: "admin_claim", "bootstrap_email" or "seed"
        """
        return await self.log_event(
            action=AuditAction.ADMIN_GRANTED,
            resource_type="user",
            actor_user_id=actor_user_id,
            resource_id=target_user_id,
            changes={"admin": {"before": False, "after": True}},
            extra_data={"granted_via": granted_via},
        )

    async def log_admin_grant_denied(
        self,
        actor_user_id: Optional[int],
        target_uid: str,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.ADMIN_GRANT_DENIED,
            resource_type="user",
            actor_user_id=actor_user_id,
            extra_data={"target_uid": target_uid},
        )
