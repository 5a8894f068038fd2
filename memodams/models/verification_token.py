"""
Verification token model for email verification and password reset.

WHAT: Stores temporary tokens emailed to the account owner.

WHY: Token-based verification requires:
1. Time-limited tokens to prevent stale token attacks
2. One-time use to prevent token reuse attacks
3. Cryptographically secure token generation

HOW: Tokens are generated with secrets.token_urlsafe() and stored with an
expiration time (24h for email verification, 1h for password reset) and a
`used_at` timestamp that marks them as consumed.
"""

import enum
import secrets
from datetime import datetime, timedelta
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, DateTime, Index
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class TokenType(str, enum.Enum):
    """Types of verification tokens."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class VerificationToken(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Single-use token for verification operations.

    WHY: Marking tokens as used instead of deleting them keeps an audit
    trail and still prevents replay.
    """

    __tablename__ = "verification_tokens"

    token = Column(String(255), unique=True, index=True, nullable=False)
    token_type = Column(Enum(TokenType), nullable=False)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    # WHY: Helps spot reset requests and completions from unexpected places
    created_ip = Column(String(45), nullable=True)
    used_ip = Column(String(45), nullable=True)

    user = relationship("User")

    __table_args__ = (
        Index(
            "ix_verification_tokens_user_type_expires",
            "user_id",
            "token_type",
            "expires_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationToken(id={self.id}, type={self.token_type}, "
            f"user_id={self.user_id}, expires_at={self.expires_at})>"
        )

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    @property
    def is_valid(self) -> bool:
        """Not expired and not used."""
        return not self.is_expired and not self.is_used

    @classmethod
    def generate_token(cls) -> str:
        """URL-safe token with 256 bits of entropy (43 characters)."""
        return secrets.token_urlsafe(32)

    @classmethod
    def get_expiration(cls, token_type: TokenType) -> datetime:
        """
        Get expiration datetime for a token type.

        WHY: Password reset is security-sensitive and should be done
        quickly; a verification email may sit unread for a while.
        """
        if token_type == TokenType.PASSWORD_RESET:
            return datetime.utcnow() + timedelta(hours=1)
        return datetime.utcnow() + timedelta(hours=24)
