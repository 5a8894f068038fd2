"""
Unit tests for VerificationTokenDAO.

WHAT: Tests the VerificationTokenDAO for managing email verification
and password reset tokens.

WHY: These tokens are what lets an account leave the verify-email page
and what lets a forgotten password be replaced, so the DAO must ensure:
1. Tokens are created with the right expiration
2. A new token revokes the previous one of the same type
3. Tokens are single use
4. Expired tokens are rejected and eventually cleaned up

HOW: Uses pytest with async SQLite database for isolated testing.
"""

import re

import pytest
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.dao.verification_token import VerificationTokenDAO
from memodams.models.verification_token import VerificationToken, TokenType
from memodams.core.exceptions import ResourceNotFoundError, ValidationError
from tests.factories import UserFactory


@pytest.fixture
async def user(db_session: AsyncSession):
    return await UserFactory.create(db_session, email="tokens@example.com")


class TestIssue:
    """Issuing tokens for emailed links."""

    async def test_issue(self, db_session: AsyncSession, user):
        token = await VerificationTokenDAO(db_session).issue(
            user.id,
            TokenType.EMAIL_VERIFICATION,
            ip_address="192.168.1.1",
        )

        assert token.id is not None
        assert len(token.token) == 43
        assert token.created_ip == "192.168.1.1"
        assert token.used_at is None

    async def test_password_reset_expires_within_an_hour(self, db_session: AsyncSession, user):
        token = await VerificationTokenDAO(db_session).issue(user.id, TokenType.PASSWORD_RESET)

        assert token.expires_at <= datetime.utcnow() + timedelta(hours=1, seconds=5)

    async def test_email_verification_expires_in_a_day(self, db_session: AsyncSession, user):
        token = await VerificationTokenDAO(db_session).issue(user.id, TokenType.EMAIL_VERIFICATION)

        assert token.expires_at > datetime.utcnow() + timedelta(hours=23)

    async def test_new_link_revokes_older_of_same_type(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        first = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)
        reset = await dao.issue(user.id, TokenType.PASSWORD_RESET)
        second = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)

        assert (await dao.get_by_token(first.token)).is_used
        assert not (await dao.get_by_token(reset.token)).is_used
        assert not (await dao.get_by_token(second.token)).is_used

    async def test_revoke_open_counts(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        await dao.issue(user.id, TokenType.PASSWORD_RESET)

        assert await dao.revoke_open(user.id, TokenType.PASSWORD_RESET) == 1
        assert await dao.revoke_open(user.id, TokenType.PASSWORD_RESET) == 0


class TestLookup:
    async def test_get_by_token(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)

        found = await dao.get_by_token(created.token)

        assert found.id == created.id

    async def test_type_filter(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)

        assert await dao.get_by_token(created.token, TokenType.EMAIL_VERIFICATION) is not None
        assert await dao.get_by_token(created.token, TokenType.PASSWORD_RESET) is None

    async def test_not_found(self, db_session: AsyncSession):
        assert await VerificationTokenDAO(db_session).get_by_token("missing") is None


class TestConsume:
    """Using a token from a link."""

    async def test_consume(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)

        consumed = await dao.consume(
            created.token,
            TokenType.EMAIL_VERIFICATION,
            ip_address="10.0.0.1",
        )

        assert consumed.id == created.id
        assert consumed.used_at is not None
        assert consumed.used_ip == "10.0.0.1"

    async def test_unknown_token(self, db_session: AsyncSession):
        with pytest.raises(ResourceNotFoundError):
            await VerificationTokenDAO(db_session).consume("missing", TokenType.PASSWORD_RESET)

    async def test_wrong_type(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)

        with pytest.raises(ResourceNotFoundError):
            await dao.consume(created.token, TokenType.PASSWORD_RESET)

    async def test_expired(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.PASSWORD_RESET)
        created.expires_at = datetime.utcnow() - timedelta(minutes=1)
        await db_session.flush()

        with pytest.raises(ValidationError) as exc_info:
            await dao.consume(created.token, TokenType.PASSWORD_RESET)

        assert "expired" in exc_info.value.message

    async def test_single_use(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        created = await dao.issue(user.id, TokenType.PASSWORD_RESET)
        await dao.consume(created.token, TokenType.PASSWORD_RESET)

        with pytest.raises(ValidationError):
            await dao.consume(created.token, TokenType.PASSWORD_RESET)


class TestPurge:
    async def test_purge_expired(self, db_session: AsyncSession, user):
        dao = VerificationTokenDAO(db_session)
        old = await dao.issue(user.id, TokenType.PASSWORD_RESET)
        old.expires_at = datetime.utcnow() - timedelta(days=10)
        fresh = await dao.issue(user.id, TokenType.EMAIL_VERIFICATION)
        await db_session.flush()
        old_token = old.token

        deleted = await dao.purge_expired(older_than_days=7)

        assert deleted == 1
        db_session.expunge_all()
        assert await dao.get_by_token(old_token) is None
        assert await dao.get_by_token(fresh.token) is not None


class TestVerificationTokenModel:
    """Tests for VerificationToken model helpers."""

    def test_generate_token_is_url_safe(self):
        assert re.match(r"^[A-Za-z0-9_-]+$", VerificationToken.generate_token())

    def test_generate_token_is_unique(self):
        tokens = {VerificationToken.generate_token() for _ in range(100)}
        assert len(tokens) == 100

    def test_is_expired_property(self):
        token = VerificationToken(expires_at=datetime.utcnow() - timedelta(seconds=1))
        assert token.is_expired
        assert not token.is_valid

    def test_is_used_property(self):
        token = VerificationToken(
            expires_at=datetime.utcnow() + timedelta(hours=1),
            used_at=datetime.utcnow(),
        )
        assert token.is_used
        assert not token.is_valid
