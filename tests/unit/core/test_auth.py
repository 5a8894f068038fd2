"""
Tests for hashing, one-time codes and session tokens.

WHY: Comprehensive auth testing ensures:
1. Passwords and security answers are stored as salted bcrypt hashes
2. SMS codes are never stored in plaintext and compare in constant time
3. Tokens carry the account claims and reject tampering or expiry
4. The logout blacklist prevents reuse of a token
"""

import pytest
from datetime import datetime, timedelta
from jose import jwt

from memodams.core.auth import (
    blacklist_token,
    create_access_token,
    generate_numeric_code,
    hash_one_time_code,
    hash_password,
    hash_security_answer,
    is_token_blacklisted,
    verify_one_time_code,
    verify_password,
    verify_security_answer,
    verify_token,
)
from memodams.core.config import settings
from memodams.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


class TestPasswordHashing:
    """Test password hashing and verification."""

    def test_hash_password_returns_different_from_plain(self):
        password = "SecurePassword123!"
        hashed = hash_password(password)

        assert hashed != password
        assert len(hashed) == 60

    def test_hash_password_generates_different_hashes(self):
        """Same password generates different hashes (salt)."""
        password = "SecurePassword123!"

        assert hash_password(password) != hash_password(password)

    def test_verify_password_correct(self):
        hashed = hash_password("SecurePassword123!")

        assert verify_password("SecurePassword123!", hashed) is True

    def test_verify_password_incorrect(self):
        hashed = hash_password("SecurePassword123!")

        assert verify_password("WrongPassword456!", hashed) is False


class TestSecurityAnswerHashing:
    """Security answers are hashed like passwords."""

    def test_answer_hash_verifies(self):
        answer_hash = hash_security_answer("fido")

        assert answer_hash != "fido"
        assert verify_security_answer("fido", answer_hash) is True

    def test_answer_hash_rejects_other_answer(self):
        answer_hash = hash_security_answer("fido")

        assert verify_security_answer("rex", answer_hash) is False


class TestOneTimeCodes:
    """Test SMS code generation and digests."""

    def test_generate_numeric_code_is_six_digits(self):
        for _ in range(50):
            code = generate_numeric_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_generate_numeric_code_custom_length(self):
        assert len(generate_numeric_code(8)) == 8

    def test_digest_is_not_the_code(self):
        digest = hash_one_time_code("123456")

        assert "123456" not in digest
        assert len(digest) == 64

    def test_verify_one_time_code(self):
        digest = hash_one_time_code("123456")

        assert verify_one_time_code("123456", digest) is True
        assert verify_one_time_code(" 123456 ", digest) is True
        assert verify_one_time_code("654321", digest) is False

    def test_verify_one_time_code_without_digest(self):
        assert verify_one_time_code("123456", None) is False


class TestTokenCreation:
    """Test JWT token creation."""

    def test_create_access_token_with_account_claims(self):
        data = {
            "sub": "uid-1",
            "user_id": 1,
            "email": "admin@example.com",
            "email_verified": True,
            "admin": True,
        }
        token = create_access_token(data)

        decoded = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        assert decoded["sub"] == "uid-1"
        assert decoded["user_id"] == 1
        assert decoded["admin"] is True
        assert decoded["email_verified"] is True

    def test_create_access_token_includes_standard_claims(self):
        decoded = verify_token(create_access_token({"user_id": 1}))

        assert "exp" in decoded
        assert "iat" in decoded
        assert "nbf" in decoded
        assert "jti" in decoded

    def test_tokens_issued_together_differ(self):
        """Two tokens for the same claims never collide in the blacklist."""
        data = {"sub": "uid-1", "user_id": 1}

        assert create_access_token(data) != create_access_token(data)

    def test_create_access_token_expiration_time(self):
        decoded = verify_token(create_access_token({"user_id": 1}))

        expected_exp = datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)
        actual_exp = datetime.utcfromtimestamp(decoded["exp"])

        assert abs((expected_exp - actual_exp).total_seconds()) < 10

    def test_create_access_token_custom_expiration(self):
        expires_delta = timedelta(minutes=30)
        decoded = verify_token(create_access_token({"user_id": 1}, expires_delta=expires_delta))

        expected_exp = datetime.utcnow() + expires_delta
        actual_exp = datetime.utcfromtimestamp(decoded["exp"])

        assert abs((expected_exp - actual_exp).total_seconds()) < 10


class TestTokenVerification:
    """Test JWT token verification."""

    def test_verify_token_expired(self):
        token = create_access_token({"user_id": 1}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(TokenExpiredError) as exc_info:
            verify_token(token)

        assert "expired" in str(exc_info.value).lower()

    def test_verify_token_invalid_signature(self):
        token = jwt.encode({"user_id": 1}, "wrong-secret", algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_verify_token_malformed(self):
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.valid.jwt.token")

    def test_verify_token_wrong_algorithm(self):
        token = jwt.encode({"user_id": 1}, settings.JWT_SECRET, algorithm="HS512")

        with pytest.raises(TokenInvalidError):
            verify_token(token)

    def test_tampered_admin_claim_is_rejected(self):
        """Flipping admin to true and re-signing with another key fails."""
        token = create_access_token({"sub": "uid-1", "user_id": 1, "admin": False})
        decoded = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_signature": False},
        )
        decoded["admin"] = True
        tampered = jwt.encode(decoded, "wrong-secret", algorithm="HS256")

        with pytest.raises(TokenInvalidError):
            verify_token(tampered)

    def test_token_does_not_contain_password(self):
        decoded = verify_token(create_access_token({"user_id": 1, "email": "user@example.com"}))

        assert "password" not in decoded
        assert "hashed_password" not in decoded


class TestTokenBlacklist:
    """Test token blacklist functionality."""

    async def test_blacklist_token(self, fake_redis):
        token = create_access_token({"user_id": 1})

        await blacklist_token(token, 1)

        assert await is_token_blacklisted(token) is True

    async def test_token_not_blacklisted_initially(self, fake_redis):
        assert await is_token_blacklisted("new-token-456") is False

    async def test_blacklist_entry_stores_user_id(self, fake_redis):
        await blacklist_token("opaque-token", 42, ttl_seconds=60)

        assert fake_redis.store["blacklist:token:opaque-token"] == "42"
