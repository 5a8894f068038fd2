"""
Linked identity DAO tests.

WHY: A Google subject id must resolve to exactly one account, and an
account's links must be removable without touching anyone else's.
"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.oauth_account import OAuthAccountDAO
from memodams.models.oauth_account import OAuthProvider
from tests.factories import OAuthAccountFactory, UserFactory


class TestOAuthAccountDAO:
    async def test_lookup_by_subject(self, db_session: AsyncSession, test_user):
        dao = OAuthAccountDAO(db_session)
        await dao.create_oauth_account(
            user_id=test_user.id,
            provider=OAuthProvider.GOOGLE,
            provider_user_id="sub-1",
            email="someone@gmail.com",
        )

        found = await dao.get_by_provider_user_id(OAuthProvider.GOOGLE, "sub-1")

        assert found.user_id == test_user.id
        assert found.email == "someone@gmail.com"
        assert await dao.get_by_provider_user_id(OAuthProvider.GOOGLE, "sub-2") is None

    async def test_subject_linked_once(self, db_session: AsyncSession, test_user):
        other = await UserFactory.create(db_session, email="other@example.com")
        await OAuthAccountFactory.create(db_session, test_user, provider_user_id="sub-1")

        with pytest.raises(IntegrityError):
            await OAuthAccountDAO(db_session).create_oauth_account(
                user_id=other.id,
                provider=OAuthProvider.GOOGLE,
                provider_user_id="sub-1",
            )

    async def test_delete_only_touches_owner(self, db_session: AsyncSession, test_user):
        other = await UserFactory.create(db_session, email="other@example.com")
        await OAuthAccountFactory.create(db_session, test_user, provider_user_id="sub-1")
        await OAuthAccountFactory.create(db_session, other, provider_user_id="sub-2")
        dao = OAuthAccountDAO(db_session)

        assert await dao.delete_by_user_and_provider(test_user.id, OAuthProvider.GOOGLE) is True
        assert await dao.delete_by_user_and_provider(test_user.id, OAuthProvider.GOOGLE) is False

        assert await dao.get_by_user_and_provider(test_user.id, OAuthProvider.GOOGLE) is None
        assert len(await dao.get_by_user_id(other.id)) == 1
