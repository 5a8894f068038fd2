"""
JWT authentication, password hashing and one-time code utilities.

WHY: This module provides secure authentication functionality:
1. Password and security-answer hashing with bcrypt (OWASP A07)
2. JWT session token generation and verification
3. Token blacklist for logout functionality
4. Salted digests for SMS one-time codes
"""

import hashlib
import hmac
import secrets
import time
from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from jose import jwt, JWTError
from passlib.context import CryptContext
import redis.asyncio as aioredis

from memodams.core.config import settings
from memodams.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


# Password hashing context
# WHY: bcrypt with default cost factor (12 rounds) provides strong protection
# against brute-force attacks while maintaining acceptable performance.
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Redis connection for token blacklist
_redis_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """
    Get Redis client for token blacklist.

    WHY: Lazy initialization ensures Redis is only connected when needed,
    and connection is reused across requests for performance.

    Returns:
        Redis client instance
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = await aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


# ============================================================================
# Password & Security Answer Hashing
# ============================================================================


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password (60 characters, includes salt and cost factor)
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    WHY: Constant-time comparison (built into passlib) prevents timing
    attacks that could leak information about the password.

    Args:
        plain_password: Password provided by user
        hashed_password: Hashed password from database

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def hash_security_answer(normalized_answer: str) -> str:
    """
    Hash an already-normalized security answer.

    WHY: Security answers are low-entropy secrets that users reuse across
    sites. Storing them like passwords means a database leak does not
    hand them to an attacker.

    Args:
        normalized_answer: Answer after trim + case folding

    Returns:
        bcrypt hash
    """
    return pwd_context.hash(normalized_answer)


def verify_security_answer(normalized_answer: str, answer_hash: str) -> bool:
    """Check a normalized answer against its stored bcrypt hash."""
    return pwd_context.verify(normalized_answer, answer_hash)


# ============================================================================
# One-Time Codes (SMS)
# ============================================================================


def generate_numeric_code(length: int = 6) -> str:
    """Generate a zero-padded numeric code from the OS entropy source."""
    return str(secrets.randbelow(10**length)).zfill(length)


def hash_one_time_code(code: str) -> str:
    """
    Digest a one-time code for storage.

    WHY: SMS codes live for minutes, so bcrypt would be overkill, but they
    must still never sit in the database in plaintext. The JWT secret acts
    as a pepper so a leaked table alone cannot be brute-forced offline.

    Args:
        code: Plain numeric code

    Returns:
        Hex SHA-256 digest
    """
    return hashlib.sha256(f"{code}:{settings.JWT_SECRET}".encode("utf-8")).hexdigest()


def verify_one_time_code(code: str, code_hash: Optional[str]) -> bool:
    """Constant-time comparison of a submitted code against its digest."""
    if not code_hash:
        return False
    return hmac.compare_digest(hash_one_time_code(code.strip()), code_hash)


# ============================================================================
# JWT Token Management
# ============================================================================


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT session token.

    WHY: JWT tokens are stateless. They carry the account's custom claims
    (admin) as they were at issuance, which is why a claim change only
    takes effect after the token is refreshed.

    Token includes:
    - Account data (sub, user_id, email, email_verified, admin)
    - exp: Expiration time (default: 24 hours)
    - iat: Issued at time
    - nbf: Not before time
    - jti: Random token id

    Args:
        data: Claims to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.utcnow(),
            "nbf": datetime.utcnow(),
            # Unique id so two tokens issued in the same second never collide
            # in the blacklist
            "jti": secrets.token_hex(16),
        }
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )


# ============================================================================
# Token Blacklist (Logout)
# ============================================================================


async def blacklist_token(
    token: str,
    user_id: int,
    ttl_seconds: Optional[int] = None,
) -> None:
    """
    Add a token to the blacklist (for logout).

    WHY: JWT tokens are stateless and can't be "deleted". Blacklisting
    prevents a token from being used even if it hasn't expired yet.

    Args:
        token: JWT token to blacklist
        user_id: User ID stored as the entry value
        ttl_seconds: Optional TTL (defaults to token expiration time)
    """
    redis = await get_redis()

    # No need to keep blacklist entries longer than token lifetime
    if ttl_seconds is None:
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM],
                options={"verify_signature": False, "verify_exp": False},
            )
            exp_timestamp = payload.get("exp")
            if exp_timestamp:
                ttl_seconds = max(
                    int(exp_timestamp - time.time()),
                    1,
                )
            else:
                ttl_seconds = settings.JWT_EXPIRATION_MINUTES * 60
        except JWTError:
            ttl_seconds = settings.JWT_EXPIRATION_MINUTES * 60

    await redis.setex(
        f"blacklist:token:{token}",
        ttl_seconds,
        str(user_id),
    )


async def is_token_blacklisted(token: str) -> bool:
    """
    Check if a token is blacklisted.

    Args:
        token: JWT token to check

    Returns:
        True if token is blacklisted, False otherwise
    """
    redis = await get_redis()
    exists = await redis.exists(f"blacklist:token:{token}")
    return exists > 0
