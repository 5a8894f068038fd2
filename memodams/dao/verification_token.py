"""
Verification token DAO.

WHAT: Emailed one-time tokens: the verify-email link and the password
reset link.

WHY: A token is the only thing standing between an emailed link and an
account change, so each one is single use, expires, and is revoked as
soon as a newer link of the same type is sent.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.exceptions import ResourceNotFoundError, ValidationError
from memodams.dao.base import BaseDAO
from memodams.models.verification_token import TokenType, VerificationToken


class VerificationTokenDAO(BaseDAO[VerificationToken]):
    """Data Access Object for emailed one-time tokens."""

    def __init__(self, session: AsyncSession):
        super().__init__(VerificationToken, session)

    async def issue(
        self,
        user_id: int,
        token_type: TokenType,
        ip_address: Optional[str] = None,
    ) -> VerificationToken:
        """
        Create the token for a new link, revoking any open one of that type.

        Args:
            user_id: Account the link is for
            token_type: EMAIL_VERIFICATION or PASSWORD_RESET
            ip_address: Address that asked for the link
        """
        await self.revoke_open(user_id, token_type)

        return await self.create(
            user_id=user_id,
            token=VerificationToken.generate_token(),
            token_type=token_type,
            expires_at=VerificationToken.get_expiration(token_type),
            created_ip=ip_address,
        )

    async def get_by_token(
        self,
        token: str,
        token_type: Optional[TokenType] = None,
    ) -> Optional[VerificationToken]:
        query = select(VerificationToken).where(VerificationToken.token == token)
        if token_type is not None:
            query = query.where(VerificationToken.token_type == token_type)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def revoke_open(self, user_id: int, token_type: TokenType) -> int:
        """
        Mark every unused token of this type for the account as used.

        Returns:
            Number of tokens revoked
        """
        result = await self.session.execute(
            update(VerificationToken)
            .where(
                and_(
                    VerificationToken.user_id == user_id,
                    VerificationToken.token_type == token_type,
                    VerificationToken.used_at.is_(None),
                )
            )
            .values(used_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def consume(
        self,
        token: str,
        expected_type: TokenType,
        ip_address: Optional[str] = None,
    ) -> VerificationToken:
        """
        Check a token from a link and use it up.

        Raises:
            ResourceNotFoundError: Unknown token, or a token of another type
            ValidationError: Token expired or already used
        """
        token_obj = await self.get_by_token(token, expected_type)

        if token_obj is None:
            raise ResourceNotFoundError(
                message="Verification token not found or invalid type",
                resource_type="VerificationToken",
            )

        if token_obj.is_expired:
            raise ValidationError(
                message="Token has expired",
                expires_at=token_obj.expires_at.isoformat(),
            )

        if token_obj.is_used:
            raise ValidationError(message="Token has already been used")

        token_obj.used_at = datetime.utcnow()
        token_obj.used_ip = ip_address
        await self.session.flush()
        return token_obj

    async def purge_expired(self, older_than_days: int = 7) -> int:
        """
        Delete tokens that expired more than `older_than_days` days ago.

        Returns:
            Number of tokens deleted
        """
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        result = await self.session.execute(
            delete(VerificationToken).where(VerificationToken.expires_at < cutoff)
        )
        return result.rowcount
