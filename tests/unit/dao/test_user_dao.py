"""
Account DAO tests.

WHAT: Tests for UserDAO, ProfileDAO and MfaFactorDAO.

WHY: Email lookups must be case-insensitive so that one address maps to
one account, claim writes must merge rather than replace, and an account
must never end up with more than one pending enrollment.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import hash_password
from memodams.core.exceptions import ResourceAlreadyExistsError
from memodams.dao.mfa_factor import MfaFactorDAO
from memodams.dao.profile import ProfileDAO
from memodams.dao.user import UserDAO
from memodams.models.mfa_factor import FactorType
from memodams.models.user import User
from tests.factories import MfaFactorFactory, UserFactory


class TestUserDAO:
    async def test_get_by_email_case_insensitive(self, db_session: AsyncSession, test_user):
        dao = UserDAO(User, db_session)

        assert (await dao.get_by_email("  TestUser@Example.COM ")).id == test_user.id
        assert await dao.email_exists("TESTUSER@example.com")
        assert not await dao.email_exists("nobody@example.com")

    async def test_get_by_uid(self, db_session: AsyncSession, test_user):
        dao = UserDAO(User, db_session)

        assert (await dao.get_by_uid(test_user.uid)).id == test_user.id
        assert await dao.get_by_uid("no-such-uid") is None

    async def test_create_user_lowercases_email(self, db_session: AsyncSession):
        user = await UserDAO(User, db_session).create_user(
            email="New.Person@Example.com",
            hashed_password=hash_password("Password123!"),
            name="New Person",
        )

        assert user.email == "new.person@example.com"
        assert user.email_verified is False
        assert user.custom_claims == {}
        assert user.uid

    async def test_create_user_duplicate_email(self, db_session: AsyncSession, test_user):
        with pytest.raises(ResourceAlreadyExistsError):
            await UserDAO(User, db_session).create_user(
                email="TESTUSER@example.com",
                hashed_password="x",
                name="Dup",
            )

    async def test_mark_email_verified(self, db_session: AsyncSession, unverified_user):
        user = await UserDAO(User, db_session).mark_email_verified(unverified_user.id)

        assert user.email_verified is True

    async def test_merge_custom_claims_keeps_existing(self, db_session: AsyncSession):
        user = await UserFactory.create(
            db_session, email="claims@example.com", custom_claims={"tier": "gold"}
        )

        merged = await UserDAO(User, db_session).merge_custom_claims(user, {"admin": True})

        assert merged.custom_claims == {"tier": "gold", "admin": True}

    async def test_list_users_in_creation_order(self, db_session: AsyncSession, test_user, test_admin):
        users = await UserDAO(User, db_session).list_users()

        assert [u.id for u in users] == [test_user.id, test_admin.id]


class TestProfileDAO:
    async def test_get_or_create(self, db_session: AsyncSession, test_user):
        dao = ProfileDAO(db_session)

        first = await dao.get_or_create(test_user.id)
        second = await dao.get_or_create(test_user.id)

        assert first.id == second.id

    async def test_merge_only_touches_given_fields(self, db_session: AsyncSession, test_user):
        dao = ProfileDAO(db_session)
        await dao.merge(test_user.id, {"bio": "Hello", "phone_number": "+15555550100"})

        profile = await dao.merge(test_user.id, {"bio": "Updated", "unknown": "ignored"})

        assert profile.bio == "Updated"
        assert profile.phone_number == "+15555550100"
        assert not hasattr(profile, "unknown")


class TestMfaFactorDAO:
    async def test_primary_factor_ignores_pending(self, db_session: AsyncSession, test_user):
        await MfaFactorFactory.create_totp(db_session, test_user, confirmed=False)
        dao = MfaFactorDAO(db_session)

        assert await dao.get_primary_factor(test_user.id) is None
        assert not await dao.has_confirmed_factor(test_user.id)

    async def test_primary_factor_is_confirmed_one(self, db_session: AsyncSession, test_user):
        factor = await MfaFactorFactory.create_phone(db_session, test_user)

        primary = await MfaFactorDAO(db_session).get_primary_factor(test_user.id)

        assert primary.id == factor.id
        assert primary.factor_type == FactorType.PHONE

    async def test_create_pending_replaces_abandoned_enrollment(
        self, db_session: AsyncSession, test_user
    ):
        dao = MfaFactorDAO(db_session)
        first = await dao.create_pending(test_user.id, FactorType.TOTP, encrypted_secret="x")
        first_uid = first.factor_uid

        second = await dao.create_pending(
            test_user.id, FactorType.PHONE, phone_number="+15555550123", pending_code_hash="c" * 64
        )

        assert await dao.get_by_factor_uid(test_user.id, first_uid) is None
        assert second.pending_code_sent_at is not None

    async def test_confirm(self, db_session: AsyncSession, test_user):
        dao = MfaFactorDAO(db_session)
        pending = await dao.create_pending(
            test_user.id, FactorType.PHONE, phone_number="+15555550123", pending_code_hash="c" * 64
        )

        confirmed = await dao.confirm(pending)

        assert confirmed.enrolled_at is not None
        assert confirmed.pending_code_hash is None
        assert await dao.has_confirmed_factor(test_user.id)

    async def test_get_by_factor_uid_scoped_to_owner(
        self, db_session: AsyncSession, test_user, test_admin
    ):
        factor = await MfaFactorFactory.create_phone(db_session, test_user)
        dao = MfaFactorDAO(db_session)

        assert await dao.get_by_factor_uid(test_admin.id, factor.factor_uid) is None
        assert (await dao.get_by_factor_uid(test_user.id, factor.factor_uid)).id == factor.id

    async def test_remove(self, db_session: AsyncSession, test_user):
        factor, _ = await MfaFactorFactory.create_totp(db_session, test_user)
        dao = MfaFactorDAO(db_session)

        await dao.remove(factor)

        assert not await dao.has_confirmed_factor(test_user.id)
