"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from memodams.dao.base import BaseDAO
from memodams.dao.user import UserDAO
from memodams.dao.audit_log import AuditLogDAO
from memodams.dao.verification_token import VerificationTokenDAO
from memodams.dao.mfa_factor import MfaFactorDAO
from memodams.dao.step_up_challenge import StepUpChallengeDAO
from memodams.dao.trusted_device import TrustedDeviceDAO
from memodams.dao.profile import ProfileDAO
from memodams.dao.oauth_account import OAuthAccountDAO

__all__ = [
    "BaseDAO",
    "UserDAO",
    "AuditLogDAO",
    "VerificationTokenDAO",
    "MfaFactorDAO",
    "StepUpChallengeDAO",
    "TrustedDeviceDAO",
    "ProfileDAO",
    "OAuthAccountDAO",
]
