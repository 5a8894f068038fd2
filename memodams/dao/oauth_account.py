"""
Linked identity Data Access Object.

WHAT: Lookups and lifecycle operations for Google identities attached to
accounts.

WHY: Sign-in resolves an identity by provider + subject id only. Email
addresses are compared by the OAuth service when it decides whether to
link, never here.
"""

from typing import List, Optional
from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.oauth_account import OAuthAccount, OAuthProvider


class OAuthAccountDAO(BaseDAO[OAuthAccount]):
    """Data Access Object for OAuthAccount."""

    def __init__(self, session: AsyncSession):
        super().__init__(OAuthAccount, session)

    async def get_by_provider_user_id(
        self,
        provider: OAuthProvider,
        provider_user_id: str,
    ) -> Optional[OAuthAccount]:
        result = await self.session.execute(
            select(OAuthAccount).where(
                and_(
                    OAuthAccount.provider == provider,
                    OAuthAccount.provider_user_id == provider_user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: int) -> List[OAuthAccount]:
        """Identities linked to an account, oldest link first."""
        result = await self.session.execute(
            select(OAuthAccount)
            .where(OAuthAccount.user_id == user_id)
            .order_by(OAuthAccount.created_at, OAuthAccount.id)
        )
        return list(result.scalars().all())

    async def get_by_user_and_provider(
        self,
        user_id: int,
        provider: OAuthProvider,
    ) -> Optional[OAuthAccount]:
        result = await self.session.execute(
            select(OAuthAccount).where(
                and_(
                    OAuthAccount.user_id == user_id,
                    OAuthAccount.provider == provider,
                )
            )
        )
        return result.scalar_one_or_none()

    async def create_oauth_account(
        self,
        user_id: int,
        provider: OAuthProvider,
        provider_user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        picture_url: Optional[str] = None,
    ) -> OAuthAccount:
        return await self.create(
            user_id=user_id,
            provider=provider,
            provider_user_id=provider_user_id,
            email=email,
            name=name,
            picture_url=picture_url,
        )

    async def delete_by_user_and_provider(
        self,
        user_id: int,
        provider: OAuthProvider,
    ) -> bool:
        """
        Returns:
            True if a link was removed
        """
        result = await self.session.execute(
            delete(OAuthAccount).where(
                and_(
                    OAuthAccount.user_id == user_id,
                    OAuthAccount.provider == provider,
                )
            )
        )
        await self.session.flush()
        return result.rowcount > 0
