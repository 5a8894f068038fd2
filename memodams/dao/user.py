"""
User Data Access Object.

WHY: UserDAO provides database operations for the User model, following
the DAO pattern for separation of concerns and testability.
"""

from typing import Any, Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.base import BaseDAO
from memodams.models.user import User
from memodams.core.exceptions import ResourceAlreadyExistsError


class UserDAO(BaseDAO[User]):
    """
    Data Access Object for User model.

    WHY: All account queries go through this DAO, so email normalisation
    and claim merging behave the same everywhere.
    """

    def __init__(self, model: type[User], session: AsyncSession):
        """Initialize UserDAO with model and session."""
        super().__init__(model, session)

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve user by email address.

        WHY: Case-insensitive comparison prevents duplicate accounts with
        different casing (user@example.com vs USER@EXAMPLE.COM).

        Args:
            email: User's email address

        Returns:
            User instance if found, None otherwise
        """
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_uid(self, uid: str) -> Optional[User]:
        """Retrieve user by opaque account uid (token subject)."""
        result = await self.session.execute(select(User).where(User.uid == uid))
        return result.scalar_one_or_none()

    async def email_exists(self, email: str) -> bool:
        """Check if email already exists in database."""
        result = await self.session.execute(
            select(User.id).where(func.lower(User.email) == email.strip().lower()).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def create_user(
        self,
        email: str,
        hashed_password: Optional[str],
        name: str,
        email_verified: bool = False,
    ) -> User:
        """
        Create a new account.

        Args:
            email: User's email address (stored lower-cased)
            hashed_password: Already hashed password (use hash_password()),
                or None for an account created through Google sign-in
            name: User's full name
            email_verified: Initial verification state

        Returns:
            Created User instance

        Raises:
            ResourceAlreadyExistsError: If email already exists
        """
        if await self.email_exists(email):
            raise ResourceAlreadyExistsError(
                message="User with this email already exists",
                resource_type="User",
            )

        return await self.create(
            email=email.strip().lower(),
            hashed_password=hashed_password,
            name=name,
            email_verified=email_verified,
            custom_claims={},
        )

    async def update_password(self, user_id: int, new_hashed_password: str) -> Optional[User]:
        """Replace the stored password hash."""
        return await self.update(user_id, hashed_password=new_hashed_password)

    async def mark_email_verified(self, user_id: int) -> Optional[User]:
        return await self.update(user_id, email_verified=True)

    async def merge_custom_claims(self, user: User, claims: Dict[str, Any]) -> User:
        """
        Merge claims into the account's custom claims.

        WHY: The JSON column must be reassigned (not mutated in place) for
        SQLAlchemy to detect the change.
        """
        merged = dict(user.custom_claims or {})
        merged.update(claims)
        user.custom_claims = merged
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def set_security_question(
        self,
        user: User,
        question: str,
        answer_hash: str,
    ) -> User:
        user.security_question = question
        user.security_answer_hash = answer_hash
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def list_users(self, skip: int = 0, limit: int = 100) -> List[User]:
        """Accounts ordered by creation for the admin listing."""
        result = await self.session.execute(
            select(User).order_by(User.created_at, User.id).offset(skip).limit(limit)
        )
        return list(result.scalars().all())
