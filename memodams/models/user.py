"""
User (account) model.

WHY: An account is what the credential store authenticates. Besides the
password hash it carries the flags the step-up policy reads: whether the
email address is verified, the custom claims (admin) and the optional
security question used for new-device verification.
"""

import secrets
from sqlalchemy import Column, String, Boolean, JSON
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


def generate_uid() -> str:
    """Opaque account identifier used as the session token subject."""
    return secrets.token_urlsafe(21)


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Account managed by the credential store.

    WHY: `uid` is separate from the integer primary key so token subjects
    and admin grant targets never expose sequential database ids.
    """

    __tablename__ = "users"

    uid = Column(String(64), unique=True, index=True, nullable=False, default=generate_uid)

    # User identification
    name = Column(String(255), nullable=False)
    # Stored lower-cased; lookups lower-case the input
    email = Column(String(255), unique=True, index=True, nullable=False)

    # Authentication
    # NULL for accounts created through Google sign-in until a password is set
    hashed_password = Column(String(255), nullable=True)

    # Account status
    # WHY: is_active allows disabling an account without losing audit trail.
    # Disabled accounts fail sign-in with the same generic error as a bad password.
    is_active = Column(Boolean, default=True, nullable=False)

    # WHY: Unverified accounts are held on the verify-email page and cannot
    # reach any other authenticated route.
    email_verified = Column(Boolean, default=False, nullable=False)

    # Custom claims copied into session tokens at issuance, e.g. {"admin": true}
    custom_claims = Column(JSON, nullable=False, default=dict)

    # Security question for new-device verification.
    # The answer is stored as a bcrypt hash of its trimmed, case-folded form.
    security_question = Column(String(255), nullable=True)
    security_answer_hash = Column(String(255), nullable=True)

    # Relationships
    profile = relationship(
        "Profile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    mfa_factors = relationship(
        "MfaFactor",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    trusted_devices = relationship(
        "TrustedDevice",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    oauth_accounts = relationship(
        "OAuthAccount",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        """True only for the literal boolean claim."""
        return (self.custom_claims or {}).get("admin") is True

    @property
    def has_password(self) -> bool:
        return bool(self.hashed_password)

    @property
    def has_security_question(self) -> bool:
        return bool(self.security_question and self.security_answer_hash)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, uid={self.uid}, email={self.email})>"
