"""
Profile Data Access Object.

WHAT: Read and merge-write of the per-account profile document.
"""

from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.profile import Profile

# Fields a merge write may touch
PROFILE_FIELDS = ("bio", "avatar_url", "birthday", "phone_number")


class ProfileDAO(BaseDAO[Profile]):
    """Data Access Object for Profile."""

    def __init__(self, session: AsyncSession):
        super().__init__(Profile, session)

    async def get_by_user_id(self, user_id: int) -> Optional[Profile]:
        result = await self.session.execute(
            select(Profile).where(Profile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: int) -> Profile:
        profile = await self.get_by_user_id(user_id)
        if profile is None:
            profile = await self.create(user_id=user_id)
        return profile

    async def merge(self, user_id: int, data: Dict[str, Any]) -> Profile:
        """
        Merge-write: only the given known fields change, the rest of the
        document is left as stored.
        """
        profile = await self.get_or_create(user_id)
        for field, value in data.items():
            if field in PROFILE_FIELDS:
                setattr(profile, field, value)
        await self.session.flush()
        await self.session.refresh(profile)
        return profile
