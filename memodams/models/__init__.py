"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from memodams.models.base import Base, TimestampMixin, PrimaryKeyMixin
from memodams.models.user import User
from memodams.models.profile import Profile
from memodams.models.mfa_factor import MfaFactor, FactorType
from memodams.models.step_up_challenge import StepUpChallenge, ChallengeStage
from memodams.models.trusted_device import TrustedDevice
from memodams.models.verification_token import VerificationToken, TokenType
from memodams.models.audit_log import AuditLog, AuditAction
from memodams.models.oauth_account import OAuthAccount, OAuthProvider

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "User",
    "Profile",
    "MfaFactor",
    "FactorType",
    "StepUpChallenge",
    "ChallengeStage",
    "TrustedDevice",
    "VerificationToken",
    "TokenType",
    "AuditLog",
    "AuditAction",
    "OAuthAccount",
    "OAuthProvider",
]
