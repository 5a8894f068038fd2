"""
Second-factor enrollment model.

WHAT: An enrolled (or pending) second factor for an account: a TOTP
authenticator app or a phone number receiving SMS codes.

WHY: The step-up flow needs to know whether an account has a confirmed
factor and, if so, which hint to present. Pending rows hold the
enrollment secret until the user proves possession with a first code.

HOW:
- TOTP secrets are Fernet-encrypted at rest (EncryptionService).
- Phone enrollment stores a SHA-256 digest of the pending SMS code.
- `enrolled_at` is NULL until the factor is confirmed; only confirmed
  factors are used at sign-in.
"""

import enum
import secrets
from typing import Optional
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class FactorType(str, enum.Enum):
    """Supported second-factor kinds."""

    TOTP = "totp"
    PHONE = "phone"


def generate_factor_uid() -> str:
    return secrets.token_urlsafe(16)


class MfaFactor(Base, PrimaryKeyMixin, TimestampMixin):
    """A second factor belonging to one account."""

    __tablename__ = "mfa_factors"

    factor_uid = Column(
        String(64),
        unique=True,
        index=True,
        nullable=False,
        default=generate_factor_uid,
    )

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    factor_type = Column(Enum(FactorType), nullable=False)
    display_name = Column(String(255), nullable=True)

    # TOTP: Fernet token of the base32 secret
    encrypted_secret = Column(Text, nullable=True)

    # PHONE: E.164 number and the digest of the outstanding enrollment code
    phone_number = Column(String(32), nullable=True)
    pending_code_hash = Column(String(64), nullable=True)
    pending_code_sent_at = Column(DateTime, nullable=True)

    # TOTP: last accepted time-step; codes at or below it are refused
    last_totp_counter = Column(Integer, nullable=True)

    # NULL while enrollment is pending
    enrolled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="mfa_factors")

    @property
    def is_confirmed(self) -> bool:
        return self.enrolled_at is not None

    @property
    def masked_phone(self) -> Optional[str]:
        """Phone number with all but the last four digits hidden."""
        if not self.phone_number:
            return None
        digits = self.phone_number
        return "*" * max(len(digits) - 4, 0) + digits[-4:]

    def __repr__(self) -> str:
        return (
            f"<MfaFactor(id={self.id}, type={self.factor_type}, "
            f"user_id={self.user_id}, confirmed={self.is_confirmed})>"
        )
