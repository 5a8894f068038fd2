"""
Credential store.

WHAT: Everything the sign-in gate asks of the identity platform: password
sign-in, token verification, custom claims, email verification, account
reload and second-factor enrollment and resolution.

WHY: The step-up service and the admin gate only talk to the
CredentialStore interface. The database implementation below is the
platform in this deployment; tests can swap in a different store without
touching the policy code.

HOW:
- Accounts, factors and claims live in the users / mfa_factors tables.
- TOTP codes are checked with pyotp against Fernet-decrypted secrets.
- SMS codes are random 6-digit numbers stored as salted digests.
- Database and Redis connectivity failures are raised as
  PlatformUnavailableError so callers show one generic failure.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pyotp
from pyotp.utils import strings_equal
from redis.exceptions import RedisError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import (
    generate_numeric_code,
    hash_one_time_code,
    is_token_blacklisted,
    pwd_context,
    verify_one_time_code,
    verify_password,
    verify_token,
)
from memodams.core.claims import Claims, decode_claims
from memodams.core.config import settings
from memodams.core.exceptions import (
    AuthenticationError,
    BusinessRuleViolation,
    InvalidCredentialError,
    InvalidSecondFactorCodeError,
    PlatformUnavailableError,
    ResourceNotFoundError,
    StaleChallengeSessionError,
    ValidationError,
)
from memodams.dao.mfa_factor import MfaFactorDAO
from memodams.dao.step_up_challenge import StepUpChallengeDAO
from memodams.dao.user import UserDAO
from memodams.dao.verification_token import VerificationTokenDAO
from memodams.middleware.request_context import get_request_context
from memodams.models.mfa_factor import FactorType, MfaFactor
from memodams.models.step_up_challenge import StepUpChallenge
from memodams.models.user import User
from memodams.models.verification_token import TokenType
from memodams.services.audit import AuditService
from memodams.services.email import EmailService, get_email_service
from memodams.services.encryption_service import EncryptionService, get_encryption_service
from memodams.services.sms import SmsService, get_sms_service
from memodams.services.step_up_policy import AccountFlags, SignInOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FactorHint:
    """What the client may know about an enrolled factor."""

    factor_uid: str
    factor_type: str
    display_name: Optional[str] = None
    phone_hint: Optional[str] = None

    @classmethod
    def from_factor(cls, factor: MfaFactor) -> "FactorHint":
        return cls(
            factor_uid=factor.factor_uid,
            factor_type=factor.factor_type.value,
            display_name=factor.display_name,
            phone_hint=factor.masked_phone,
        )


@dataclass
class SignInResult:
    """
    Outcome of a first factor (password or identity provider).

    Either a plain session or a "second factor required" result carrying
    the factor to resolve it with.
    """

    user: User
    outcome: SignInOutcome
    factor: Optional[MfaFactor] = None
    hints: List[FactorHint] = field(default_factory=list)

    @property
    def second_factor_required(self) -> bool:
        return self.outcome == SignInOutcome.SECOND_FACTOR_REQUIRED


@contextmanager
def platform_errors(operation: str) -> Iterator[None]:
    """Translate connectivity failures into PlatformUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError, RedisError) as e:
        logger.error(
            f"Credential store unavailable during {operation}: {type(e).__name__}",
            extra={"operation": operation},
        )
        raise PlatformUnavailableError(operation=operation)


class CredentialStore(ABC):
    """Operations the access gate needs from the identity platform."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        """Check the first factor."""

    @abstractmethod
    async def sign_in_with_identity(self, user: User) -> SignInResult:
        """First factor already proven by an identity provider."""

    @abstractmethod
    async def verify_id_token(self, token: str) -> Claims:
        """Verify a session token and decode its claims."""

    @abstractmethod
    async def set_custom_claims(self, account_uid: str, claims: Dict[str, Any]) -> User:
        """Merge custom claims into an account."""

    @abstractmethod
    async def send_verification_email(self, user: User) -> None:
        """Email a fresh verification link."""

    @abstractmethod
    async def reload(self, user: User) -> AccountFlags:
        """Re-read an account and return its current flags."""

    @abstractmethod
    async def enroll_factor(self, user: User, factor_uid: str, code: str) -> MfaFactor:
        """Confirm a pending factor with its first code."""

    @abstractmethod
    async def unenroll_factor(self, user: User, factor_uid: str) -> None:
        """Remove an enrolled factor."""

    @abstractmethod
    async def challenge_factor(self, challenge: StepUpChallenge) -> MfaFactor:
        """The factor hinted to a pending sign-in."""

    @abstractmethod
    async def send_sign_in_code(self, challenge: StepUpChallenge, factor: MfaFactor) -> None:
        """Deliver a sign-in code for factors that need one."""

    @abstractmethod
    async def resolve_second_factor(self, challenge: StepUpChallenge, code: str) -> User:
        """Verify a sign-in code against the challenge's factor."""


class DatabaseCredentialStore(CredentialStore):
    """
    Credential store backed by this service's own database.

    Example:
        store = DatabaseCredentialStore(db)
        result = await store.sign_in_with_password(email, password)
    """

    def __init__(
        self,
        session: AsyncSession,
        email_service: Optional[EmailService] = None,
        sms_service: Optional[SmsService] = None,
        encryption_service: Optional[EncryptionService] = None,
    ):
        self._session = session
        self.users = UserDAO(User, session)
        self.factors = MfaFactorDAO(session)
        self.challenges = StepUpChallengeDAO(session)
        self.audit = AuditService(session)
        self._email_service = email_service or get_email_service()
        self._sms_service = sms_service or get_sms_service()
        self._encryption = encryption_service or get_encryption_service()

    # =========================================================================
    # First factor
    # =========================================================================

    async def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        """
        Check email and password.

        WHY: Unknown email, inactive account and wrong password all raise
        the same InvalidCredentialError; the real reason is only audited.
        The failure audit is committed before raising because the request
        transaction is rolled back on error.

        Raises:
            InvalidCredentialError: On any first-factor failure
            PlatformUnavailableError: If the database is unreachable
        """
        with platform_errors("sign_in"):
            user = await self.users.get_by_email(email)

            if user is None:
                # Burn the same bcrypt time as a real check
                pwd_context.dummy_verify()
                raise await self._sign_in_failure(email, None, "User not found")

            if not user.has_password:
                pwd_context.dummy_verify()
                raise await self._sign_in_failure(email, user.id, "No password set")

            if not verify_password(password, user.hashed_password):
                raise await self._sign_in_failure(email, user.id, "Invalid password")

            if not user.is_active:
                raise await self._sign_in_failure(email, user.id, "Account inactive")

            factor = await self.factors.get_primary_factor(user.id)

        return self._first_factor_result(user, factor)

    async def sign_in_with_identity(self, user: User) -> SignInResult:
        """
        Continue a sign-in whose first factor was proven by Google.

        Raises:
            InvalidCredentialError: Account disabled
        """
        with platform_errors("sign_in"):
            if not user.is_active:
                raise await self._sign_in_failure(user.email, user.id, "Account inactive")

            factor = await self.factors.get_primary_factor(user.id)

        return self._first_factor_result(user, factor)

    @staticmethod
    def _first_factor_result(user: User, factor: Optional[MfaFactor]) -> SignInResult:
        if factor is None:
            return SignInResult(user=user, outcome=SignInOutcome.SUCCESS)

        return SignInResult(
            user=user,
            outcome=SignInOutcome.SECOND_FACTOR_REQUIRED,
            factor=factor,
            hints=[FactorHint.from_factor(factor)],
        )

    async def _sign_in_failure(
        self,
        email: str,
        user_id: Optional[int],
        reason: str,
    ) -> InvalidCredentialError:
        await self.audit.log_login_failure(
            attempted_email=email,
            user_id=user_id,
            reason=reason,
        )
        await self._session.commit()
        return InvalidCredentialError()

    # =========================================================================
    # Tokens and claims
    # =========================================================================

    async def verify_id_token(self, token: str) -> Claims:
        """
        Verify a session token.

        Raises:
            TokenExpiredError / TokenInvalidError: Bad token
            AuthenticationError: Token was revoked by logout
            PlatformUnavailableError: Blacklist store unreachable
        """
        payload = verify_token(token)

        with platform_errors("verify_id_token"):
            revoked = await is_token_blacklisted(token)
        if revoked:
            raise AuthenticationError(
                message="Token has been revoked",
                reason="logged_out",
            )

        return decode_claims(payload)

    async def get_account(self, account_uid: str) -> Optional[User]:
        with platform_errors("get_account"):
            return await self.users.get_by_uid(account_uid)

    async def set_custom_claims(self, account_uid: str, claims: Dict[str, Any]) -> User:
        """
        Merge claims into an account. Last writer wins.

        Raises:
            ResourceNotFoundError: Unknown account uid
        """
        with platform_errors("set_custom_claims"):
            user = await self.users.get_by_uid(account_uid)
            if user is None:
                raise ResourceNotFoundError(
                    message="Account not found",
                    resource_type="User",
                )
            return await self.users.merge_custom_claims(user, claims)

    # =========================================================================
    # Account state
    # =========================================================================

    async def send_verification_email(self, user: User) -> None:
        """Invalidate older links and email a new one."""
        ctx = get_request_context()
        with platform_errors("send_verification_email"):
            token = await VerificationTokenDAO(self._session).issue(
                user_id=user.id,
                token_type=TokenType.EMAIL_VERIFICATION,
                ip_address=ctx.ip_address if ctx else None,
            )

        await self._email_service.send_verification_email(
            to_email=user.email,
            user_name=user.name,
            verification_token=token.token,
        )
        await self.audit.log_email_verification_sent(user_id=user.id, email=user.email)

    async def reload(self, user: User) -> AccountFlags:
        """
        Fresh flags for the policy evaluator.

        WHY: The verify-email page re-checks by re-reading the account,
        never by trusting the flags in the session token.
        """
        with platform_errors("reload"):
            await self._session.refresh(user)
            factor = await self.factors.get_primary_factor(user.id)

        return AccountFlags(
            email_verified=bool(user.email_verified),
            has_second_factor=factor is not None,
            factor_type=factor.factor_type.value if factor else None,
            has_security_question=user.has_security_question,
            admin=user.is_admin,
        )

    def reauthenticate(self, user: User, password: str) -> None:
        """
        Re-check the password before a sensitive account change.

        Raises:
            ValidationError: Password does not match (the session stays valid)
        """
        if not (password and user.has_password and verify_password(password, user.hashed_password)):
            raise ValidationError(
                message="Current password is incorrect",
                field="password",
            )

    # =========================================================================
    # Second-factor enrollment
    # =========================================================================

    async def list_factors(self, user: User) -> List[MfaFactor]:
        with platform_errors("list_factors"):
            return await self.factors.get_confirmed_for_user(user.id)

    async def _ensure_no_confirmed_factor(self, user: User) -> None:
        # An account has zero or one second factor
        if await self.factors.has_confirmed_factor(user.id):
            raise BusinessRuleViolation(
                message="A second factor is already enrolled. Remove it before adding another.",
            )

    async def start_totp_enrollment(
        self,
        user: User,
        display_name: Optional[str] = None,
    ) -> Tuple[MfaFactor, str, str]:
        """
        Create a pending TOTP factor.

        Returns:
            (pending factor, base32 secret, otpauth:// provisioning URI)
        """
        await self._ensure_no_confirmed_factor(user)

        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(
            name=user.email,
            issuer_name=settings.TOTP_ISSUER,
        )

        with platform_errors("start_totp_enrollment"):
            factor = await self.factors.create_pending(
                user_id=user.id,
                factor_type=FactorType.TOTP,
                display_name=display_name or "Authenticator app",
                encrypted_secret=self._encryption.encrypt(secret),
            )

        return factor, secret, uri

    async def start_phone_enrollment(
        self,
        user: User,
        phone_number: str,
        display_name: Optional[str] = None,
    ) -> MfaFactor:
        """Create a pending phone factor and text it a confirmation code."""
        await self._ensure_no_confirmed_factor(user)

        code = generate_numeric_code()
        with platform_errors("start_phone_enrollment"):
            factor = await self.factors.create_pending(
                user_id=user.id,
                factor_type=FactorType.PHONE,
                display_name=display_name or "Phone",
                phone_number=phone_number,
                pending_code_hash=hash_one_time_code(code),
            )

        await self._sms_service.send_code(phone_number, code, purpose="enrollment")
        return factor

    async def enroll_factor(self, user: User, factor_uid: str, code: str) -> MfaFactor:
        """
        Confirm a pending factor.

        Raises:
            ResourceNotFoundError: No pending factor with this id
            InvalidSecondFactorCodeError: Code did not verify
        """
        with platform_errors("enroll_factor"):
            factor = await self.factors.get_by_factor_uid(user.id, factor_uid)
        if factor is None or factor.is_confirmed:
            raise ResourceNotFoundError(
                message="No pending enrollment found",
                resource_type="MfaFactor",
            )

        await self._ensure_no_confirmed_factor(user)

        if factor.factor_type == FactorType.TOTP:
            valid = self._verify_totp(factor, code)
        else:
            valid = self._code_is_fresh(factor.pending_code_sent_at) and verify_one_time_code(
                code, factor.pending_code_hash
            )

        if not valid:
            raise InvalidSecondFactorCodeError()

        with platform_errors("enroll_factor"):
            factor = await self.factors.confirm(factor)

        await self.audit.log_mfa_enrolled(
            user_id=user.id,
            factor_id=factor.id,
            factor_type=factor.factor_type.value,
        )
        await self._send_alert(user, "A second factor was added to your account")
        logger.info(
            "Second factor enrolled",
            extra={"user_id": user.id, "factor_type": factor.factor_type.value},
        )
        return factor

    async def unenroll_factor(self, user: User, factor_uid: str) -> None:
        """
        Remove a confirmed factor.

        Raises:
            ResourceNotFoundError: Factor does not belong to this account
        """
        with platform_errors("unenroll_factor"):
            factor = await self.factors.get_by_factor_uid(user.id, factor_uid)
            if factor is None or not factor.is_confirmed:
                raise ResourceNotFoundError(
                    message="Factor not found",
                    resource_type="MfaFactor",
                )
            factor_id = factor.id
            factor_type = factor.factor_type.value
            await self.factors.remove(factor)

        await self.audit.log_mfa_unenrolled(
            user_id=user.id,
            factor_id=factor_id,
            factor_type=factor_type,
        )
        await self._send_alert(user, "A second factor was removed from your account")

    # =========================================================================
    # Second-factor sign-in
    # =========================================================================

    async def challenge_factor(self, challenge: StepUpChallenge) -> MfaFactor:
        """
        The confirmed factor a challenge must be resolved with.

        Raises:
            StaleChallengeSessionError: The factor was removed since sign-in
        """
        with platform_errors("challenge_factor"):
            factor = (
                await self.factors.get_by_id(challenge.factor_id)
                if challenge.factor_id
                else None
            )
        if factor is None or not factor.is_confirmed or factor.user_id != challenge.user_id:
            raise StaleChallengeSessionError()
        return factor

    async def send_sign_in_code(self, challenge: StepUpChallenge, factor: MfaFactor) -> None:
        """Text a sign-in code to a phone factor and remember its digest."""
        code = generate_numeric_code()
        with platform_errors("send_sign_in_code"):
            await self.challenges.store_sms_code(challenge, hash_one_time_code(code))
        await self._sms_service.send_code(factor.phone_number, code)

    async def resolve_second_factor(self, challenge: StepUpChallenge, code: str) -> User:
        """
        Verify the sign-in code for a challenge.

        Raises:
            InvalidSecondFactorCodeError: Wrong, expired or never-sent code
            StaleChallengeSessionError: Factor or account is gone
        """
        factor = await self.challenge_factor(challenge)

        if factor.factor_type == FactorType.TOTP:
            valid = self._verify_totp(factor, code)
        else:
            valid = self._code_is_fresh(challenge.sms_sent_at) and verify_one_time_code(
                code, challenge.sms_code_hash
            )

        if not valid:
            raise InvalidSecondFactorCodeError()

        with platform_errors("resolve_second_factor"):
            user = await self.users.get_by_id(challenge.user_id)
        if user is None or not user.is_active:
            raise StaleChallengeSessionError()
        return user

    # =========================================================================
    # Helpers
    # =========================================================================

    def _verify_totp(self, factor: MfaFactor, code: str) -> bool:
        """
        Accept a TOTP code at most once.

        The matched time-step is stored on the factor, so an observed code
        and anything older are refused for the rest of the window.
        """
        code = (code or "").replace(" ", "").strip()
        if not code.isdigit():
            return False

        totp = pyotp.TOTP(self._encryption.decrypt(factor.encrypted_secret))
        current = int(time.time()) // totp.interval
        window = settings.TOTP_VALID_WINDOW
        floor = factor.last_totp_counter if factor.last_totp_counter is not None else -1

        for counter in range(max(current - window, floor + 1), current + window + 1):
            if strings_equal(totp.generate_otp(counter), code):
                factor.last_totp_counter = counter
                return True
        return False

    @staticmethod
    def _code_is_fresh(sent_at: Optional[datetime]) -> bool:
        if sent_at is None:
            return False
        return datetime.utcnow() - sent_at <= timedelta(seconds=settings.SMS_CODE_TTL_SECONDS)

    async def _send_alert(self, user: User, headline: str) -> None:
        ctx = get_request_context()
        await self._email_service.send_security_alert_email(
            to_email=user.email,
            user_name=user.name,
            headline=headline,
            ip_address=ctx.ip_address if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
        )
