"""
Admin authorization gate.

WHAT: Decides whether an actor may grant admin status to another account,
and applies the grant through the credential store.

WHY: Admin is a custom claim on the account. Only an existing admin may
set it, with one exception so a fresh install can get its first admin:
the configured BOOTSTRAP_ADMIN_EMAIL. The preferred way to create the
first admin is `python -m memodams.cli seed-admin <email>` at
provisioning time, after which BOOTSTRAP_ADMIN_EMAIL can be left unset.

HOW:
- The actor is identified only by their verified token claims.
- Denials raise PermissionDeniedError with a fixed message, leave the
  target untouched and are audited.
- Grants are eventually consistent: the target's current token keeps its
  old claims until it is refreshed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.claims import Claims
from memodams.core.config import settings
from memodams.core.exceptions import PermissionDeniedError, ResourceNotFoundError
from memodams.dao.user import UserDAO
from memodams.models.user import User
from memodams.services.audit import AuditService
from memodams.services.credential_store import CredentialStore, DatabaseCredentialStore

logger = logging.getLogger(__name__)

GRANTED_VIA_ADMIN_CLAIM = "admin_claim"
GRANTED_VIA_BOOTSTRAP = "bootstrap_email"
GRANTED_VIA_SEED = "seed"


@dataclass(frozen=True)
class AdminGrantResult:
    """Outcome of a successful grant."""

    target_uid: str
    target_email: str
    granted_via: str
    already_admin: bool = False
    # The target sees the claim only after their token is refreshed
    effective_after_token_refresh: bool = True


def grant_basis(claims: Claims, bootstrap_email: Optional[str] = None) -> Optional[str]:
    """
    Why this actor may grant admin, or None if they may not.

    Args:
        claims: Decoded claims of the actor's token
        bootstrap_email: Configured bootstrap address (case-insensitive)
    """
    if claims.admin is True:
        return GRANTED_VIA_ADMIN_CLAIM
    if (
        bootstrap_email
        and claims.email
        and claims.email.strip().lower() == bootstrap_email.strip().lower()
    ):
        return GRANTED_VIA_BOOTSTRAP
    return None


class AdminGrantService:
    """
    Grants the admin claim.

    Example:
        service = AdminGrantService(db)
        result = await service.grant_admin(actor_token, target_uid)
    """

    def __init__(self, session: AsyncSession, store: Optional[CredentialStore] = None):
        self._session = session
        self.store = store or DatabaseCredentialStore(session)
        self.users = UserDAO(User, session)
        self.audit = AuditService(session)

    async def grant_admin(self, actor_token: str, target_account_uid: str) -> AdminGrantResult:
        """
        Set admin=true on the target account.

        Args:
            actor_token: The caller's session token
            target_account_uid: Account to promote

        Returns:
            AdminGrantResult (effective after the target refreshes their token)

        Raises:
            PermissionDeniedError: Actor is neither admin nor the bootstrap address
            ResourceNotFoundError: No account with that uid
        """
        claims = await self.store.verify_id_token(actor_token)
        basis = grant_basis(claims, settings.BOOTSTRAP_ADMIN_EMAIL)

        if basis is None:
            await self.audit.log_admin_grant_denied(
                actor_user_id=claims.user_id,
                target_uid=target_account_uid,
            )
            # Keep the denial audit, the request transaction is rolled back
            await self._session.commit()
            logger.warning(
                "Admin grant denied",
                extra={"actor_user_id": claims.user_id},
            )
            raise PermissionDeniedError()

        return await self._grant(target_account_uid, basis, actor_user_id=claims.user_id)

    async def seed_admin(self, email: str) -> AdminGrantResult:
        """
        Provisioning-time grant by email, with no acting account.

        Raises:
            ResourceNotFoundError: No account with that email
        """
        user = await self.users.get_by_email(email)
        if user is None:
            raise ResourceNotFoundError(
                message=f"No account registered for {email}",
                resource_type="User",
            )
        return await self._grant(user.uid, GRANTED_VIA_SEED, actor_user_id=None)

    async def _grant(
        self,
        target_account_uid: str,
        granted_via: str,
        actor_user_id: Optional[int],
    ) -> AdminGrantResult:
        target = await self.users.get_by_uid(target_account_uid)
        if target is None:
            raise ResourceNotFoundError(
                message="Account not found",
                resource_type="User",
            )

        already_admin = target.is_admin
        if not already_admin:
            target = await self.store.set_custom_claims(target_account_uid, {"admin": True})
            await self.audit.log_admin_grant(
                actor_user_id=actor_user_id,
                target_user_id=target.id,
                granted_via=granted_via,
            )
            logger.info(
                "Admin claim granted",
                extra={
                    "actor_user_id": actor_user_id,
                    "target_user_id": target.id,
                    "granted_via": granted_via,
                },
            )

        return AdminGrantResult(
            target_uid=target.uid,
            target_email=target.email,
            granted_via=granted_via,
            already_admin=already_admin,
        )
