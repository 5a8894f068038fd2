"""
Step-up challenge model.

WHAT: Server-side state of a sign-in that passed the password check but
still owes a second factor and/or a security-question answer.

WHY: The browser used to carry this state in session storage, which
could go stale or be tampered with. Keeping it here lets every step-up
page fetch a fresh view of it, and lets the server bound attempts and
expire abandoned sign-ins.

HOW:
- One row per pending sign-in, bound to the device that started it.
- `stage` advances AWAITING_FACTOR -> AWAITING_SECURITY_QUESTION.
- `consumed_at` is set on success, abort or lockout; consumed rows are
  never accepted again.
"""

import enum
import secrets
from datetime import datetime
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin


class ChallengeStage(str, enum.Enum):
    """Which proof the challenge is waiting for."""

    AWAITING_FACTOR = "awaiting_factor"
    AWAITING_SECURITY_QUESTION = "awaiting_security_question"


# sign_in_method for challenges opened by the email/password form
PASSWORD_SIGN_IN = "password"


def generate_challenge_id() -> str:
    return secrets.token_urlsafe(32)


class StepUpChallenge(Base, PrimaryKeyMixin, TimestampMixin):
    """A pending step-up sign-in."""

    __tablename__ = "step_up_challenges"

    challenge_id = Column(
        String(64),
        unique=True,
        index=True,
        nullable=False,
        default=generate_challenge_id,
    )

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    device_id = Column(String(64), nullable=False, index=True)

    stage = Column(Enum(ChallengeStage), nullable=False)

    # "password" or an identity provider name such as "google". Federated
    # sign-ins are never asked the security question.
    sign_in_method = Column(String(32), nullable=False, default=PASSWORD_SIGN_IN)

    # Factor the sign-in must be resolved with (hint captured at sign-in)
    factor_id = Column(
        Integer,
        ForeignKey("mfa_factors.id", ondelete="CASCADE"),
        nullable=True,
    )
    factor_satisfied_at = Column(DateTime, nullable=True)

    # SMS sign-in code
    sms_code_hash = Column(String(64), nullable=True)
    sms_sent_at = Column(DateTime, nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)

    user = relationship("User")
    factor = relationship("MfaFactor")

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    @property
    def is_live(self) -> bool:
        return not self.is_expired and not self.is_consumed

    def __repr__(self) -> str:
        return (
            f"<StepUpChallenge(id={self.id}, user_id={self.user_id}, "
            f"stage={self.stage}, attempts={self.attempts})>"
        )
