"""
Step-up sign-in service.

WHAT: Runs the sign-in state machine against the stores: password or
Google first factor, second-factor code, security question on
unrecognised devices, and the "log out / start over" exit.

WHY: The decisions themselves live in step_up_policy as pure functions.
This service owns the side effects: opening and consuming challenges,
counting attempts, setting device flags, issuing the session token and
auditing each step.

HOW:
- A sign-in that owes a proof gets a StepUpChallenge bound to the device
  that started it. The client only holds the opaque challenge id and
  fetches a fresh ChallengeDTO on every step-up page load.
- Wrong codes and answers increment the challenge's attempt counter.
  Reaching STEP_UP_MAX_ATTEMPTS consumes the challenge.
- Writes that must survive a failed request (attempt counts, lockouts,
  failure audits) are committed before the error is raised, since the
  request transaction is rolled back on error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import create_access_token
from memodams.core.claims import build_token_claims
from memodams.core.config import settings
from memodams.core.exceptions import (
    InvalidSecondFactorCodeError,
    InvalidSecurityAnswerError,
    InvalidStateTransitionError,
    RateLimitExceeded,
    StaleChallengeSessionError,
    TooManyAttemptsError,
)
from memodams.dao.step_up_challenge import StepUpChallengeDAO
from memodams.dao.user import UserDAO
from memodams.models.mfa_factor import FactorType
from memodams.models.step_up_challenge import ChallengeStage, PASSWORD_SIGN_IN, StepUpChallenge
from memodams.models.user import User
from memodams.services.audit import AuditService
from memodams.services.credential_store import (
    CredentialStore,
    DatabaseCredentialStore,
    FactorHint,
    SignInResult,
)
from memodams.services.device_verification import DeviceVerificationStore
from memodams.services.email import get_email_service
from memodams.services.step_up_policy import (
    AuthState,
    Route,
    StepUpDecision,
    answers_match,
    evaluate_email_gate,
    evaluate_factor_satisfied,
    evaluate_federated_sign_in,
    evaluate_sign_in,
    factor_route,
)

logger = logging.getLogger(__name__)

# Bumped whenever ChallengeDTO changes shape
CHALLENGE_DTO_VERSION = 1


@dataclass
class ChallengeDTO:
    """
    Client view of a pending step-up.

    WHY: Step-up pages render from this, fetched fresh on each load,
    instead of from state serialized into the browser.
    """

    version: int
    challenge_id: str
    stage: str
    route: str
    expires_at: datetime
    attempts_remaining: int
    factor: Optional[FactorHint] = None
    security_question: Optional[str] = None
    sms_sent_at: Optional[datetime] = None


@dataclass
class SignInResponse:
    """Result of any step that can end a sign-in."""

    state: AuthState
    route: str
    device_id: str
    access_token: Optional[str] = None
    expires_in: Optional[int] = None
    challenge: Optional[ChallengeDTO] = None
    email_verified: Optional[bool] = None


_STAGE_FOR_STATE = {
    AuthState.AWAITING_FACTOR: ChallengeStage.AWAITING_FACTOR,
    AuthState.AWAITING_SECURITY_QUESTION: ChallengeStage.AWAITING_SECURITY_QUESTION,
}


class StepUpService:
    """
    Sign-in orchestration for one device.

    Example:
        service = StepUpService(db, device_id)
        response = await service.sign_in(email, password)
        if response.challenge:
            ...  # client navigates to response.route
    """

    def __init__(
        self,
        session: AsyncSession,
        device_id: str,
        store: Optional[CredentialStore] = None,
        user_agent: Optional[str] = None,
    ):
        self._session = session
        self.device_id = device_id
        self.user_agent = user_agent
        self.store = store or DatabaseCredentialStore(session)
        self.challenges = StepUpChallengeDAO(session)
        self.users = UserDAO(User, session)
        self.devices = DeviceVerificationStore(session, device_id)
        self.audit = AuditService(session)

    # =========================================================================
    # Entry
    # =========================================================================

    async def sign_in(self, email: str, password: str) -> SignInResponse:
        """
        First factor.

        Returns:
            SignInResponse with either a session token or a challenge

        Raises:
            InvalidCredentialError: Bad email/password
        """
        result = await self.store.sign_in_with_password(email, password)
        user = result.user

        flags = await self.store.reload(user)
        device_verified = False
        if flags.has_security_question:
            device_verified = await self.devices.is_device_verified(user.id)

        decision = evaluate_sign_in(result.outcome, flags, device_verified)

        if decision.requires_challenge:
            return await self._open_challenge(result, decision, PASSWORD_SIGN_IN)

        return await self._issue_session(user, method=PASSWORD_SIGN_IN)

    async def sign_in_federated(self, user: User, provider: str) -> SignInResponse:
        """
        Continue a sign-in whose first factor was proven by an identity
        provider.

        WHY: The provider vouches for the browser, so the security question
        is skipped here and after the second factor. An enrolled second
        factor is still owed.

        Args:
            user: Account the provider identity resolved to
            provider: Provider name, recorded on the challenge and the audit row

        Raises:
            InvalidCredentialError: Account disabled
        """
        result = await self.store.sign_in_with_identity(user)
        flags = await self.store.reload(user)
        decision = evaluate_federated_sign_in(result.outcome, flags)

        if decision.requires_challenge:
            return await self._open_challenge(result, decision, provider)

        return await self._issue_session(user, method=provider)

    # =========================================================================
    # Step-up pages
    # =========================================================================

    async def load_challenge(self, challenge_id: str) -> ChallengeDTO:
        """
        Fresh view of a pending challenge for a step-up page.

        Raises:
            StaleChallengeSessionError: Missing, expired, consumed or
                started from another device
        """
        challenge = await self._get_live_challenge(challenge_id)
        return await self._to_dto(challenge)

    async def send_sms_code(self, challenge_id: str) -> ChallengeDTO:
        """
        Text a sign-in code for a phone-factor challenge.

        Raises:
            InvalidStateTransitionError: Challenge is not waiting for a phone code
            RateLimitExceeded: A code was sent too recently
        """
        challenge = await self._get_live_challenge(challenge_id)
        self._require_stage(challenge, ChallengeStage.AWAITING_FACTOR)

        factor = await self.store.challenge_factor(challenge)
        if factor.factor_type != FactorType.PHONE:
            raise InvalidStateTransitionError(
                message="This sign-in is verified with an authenticator app",
            )

        if challenge.sms_sent_at is not None:
            elapsed = (datetime.utcnow() - challenge.sms_sent_at).total_seconds()
            if elapsed < settings.SMS_RESEND_COOLDOWN_SECONDS:
                raise RateLimitExceeded(
                    message="Please wait before requesting another code",
                    retry_after=int(settings.SMS_RESEND_COOLDOWN_SECONDS - elapsed) + 1,
                )

        await self.store.send_sign_in_code(challenge, factor)
        return await self._to_dto(challenge)

    async def submit_factor_code(self, challenge_id: str, code: str) -> SignInResponse:
        """
        AWAITING_FACTOR -> AWAITING_SECURITY_QUESTION or AUTHORIZED.

        Raises:
            InvalidSecondFactorCodeError: Wrong code, attempts remain
            TooManyAttemptsError: Wrong code, attempts used up
        """
        challenge = await self._get_live_challenge(challenge_id)
        self._require_stage(challenge, ChallengeStage.AWAITING_FACTOR)
        factor_type = (await self.store.challenge_factor(challenge)).factor_type.value

        try:
            user = await self.store.resolve_second_factor(challenge, code)
        except InvalidSecondFactorCodeError:
            remaining = await self._record_failure(challenge, factor_type)
            raise InvalidSecondFactorCodeError(attempts_remaining=remaining)

        await self.audit.log_second_factor(
            user_id=user.id,
            success=True,
            factor_type=factor_type,
            attempts=challenge.attempts + 1,
        )

        flags = await self.store.reload(user)
        federated = challenge.sign_in_method != PASSWORD_SIGN_IN
        device_verified = False
        if flags.has_security_question and not federated:
            device_verified = await self.devices.is_device_verified(user.id)
        decision = evaluate_factor_satisfied(flags, device_verified, federated=federated)

        if decision.state == AuthState.AWAITING_SECURITY_QUESTION:
            challenge = await self.challenges.advance_to_security_question(challenge)
            await self.audit.log_step_up_required(
                user_id=user.id,
                stage=challenge.stage.value,
                device_id=self.device_id,
            )
            return SignInResponse(
                state=decision.state,
                route=decision.route,
                device_id=self.device_id,
                challenge=await self._to_dto(challenge, user),
            )

        await self.challenges.consume(challenge)
        return await self._issue_session(user, method="second_factor")

    async def submit_security_answer(self, challenge_id: str, answer: str) -> SignInResponse:
        """
        AWAITING_SECURITY_QUESTION -> AUTHORIZED.

        On a match this device is remembered for the account, so the
        next sign-in here skips the question.

        Raises:
            InvalidSecurityAnswerError: Wrong answer, attempts remain
            TooManyAttemptsError: Wrong answer, attempts used up
        """
        challenge = await self._get_live_challenge(challenge_id)
        self._require_stage(challenge, ChallengeStage.AWAITING_SECURITY_QUESTION)

        user = await self.users.get_by_id(challenge.user_id)
        if user is None or not user.is_active:
            raise StaleChallengeSessionError()

        if not answers_match(answer, user.security_answer_hash):
            remaining = await self._record_failure(challenge)
            raise InvalidSecurityAnswerError(attempts_remaining=remaining)

        await self.devices.mark_device_verified(user.id, self.user_agent)
        await self.challenges.consume(challenge)

        await self.audit.log_security_question(
            user_id=user.id,
            success=True,
            attempts=challenge.attempts + 1,
        )
        await self.audit.log_device_trusted(user_id=user.id, device_id=self.device_id)
        await get_email_service().send_security_alert_email(
            to_email=user.email,
            user_name=user.name,
            headline="A new device was verified for your account",
            user_agent=self.user_agent,
        )

        return await self._issue_session(user, method="security_question")

    async def abort(self, challenge_id: Optional[str] = None) -> StepUpDecision:
        """
        "Log out / start over" from any step-up page.

        Drops the challenge (if it is ours) and every step-up state kept
        for this device, including its device verification flags. Stale or
        unknown challenge ids are fine: the exit always succeeds.
        """
        challenge = (
            await self.challenges.get_by_challenge_id(challenge_id)
            if challenge_id
            else None
        )
        if challenge is not None and challenge.device_id == self.device_id:
            await self.challenges.consume(challenge)
            await self.audit.log_step_up_aborted(
                user_id=challenge.user_id,
                device_id=self.device_id,
            )

        await self.challenges.consume_all_for_device(self.device_id)
        cleared = await self.devices.clear_all()
        if cleared:
            await self.audit.log_device_revoked(
                user_id=challenge.user_id if challenge is not None else None,
                device_id=self.device_id,
                count=cleared,
            )

        return StepUpDecision(state=AuthState.UNAUTHENTICATED, route=Route.LOGIN)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_live_challenge(self, challenge_id: str) -> StepUpChallenge:
        challenge = await self.challenges.get_by_challenge_id(challenge_id)

        if (
            challenge is None
            or not challenge.is_live
            or challenge.device_id != self.device_id
        ):
            logger.info(
                "Stale step-up challenge presented",
                extra={"device_id": self.device_id, "found": challenge is not None},
            )
            raise StaleChallengeSessionError()

        return challenge

    @staticmethod
    def _require_stage(challenge: StepUpChallenge, stage: ChallengeStage) -> None:
        if challenge.stage != stage:
            raise InvalidStateTransitionError(
                message="This step is not available for the current sign-in",
                stage=challenge.stage.value,
            )

    async def _record_failure(
        self,
        challenge: StepUpChallenge,
        factor_type: Optional[str] = None,
    ) -> int:
        """
        Count a wrong code or answer.

        Returns:
            Attempts remaining

        Raises:
            TooManyAttemptsError: When the last attempt was used
        """
        attempts = await self.challenges.record_failed_attempt(challenge)
        stage = challenge.stage.value

        if challenge.stage == ChallengeStage.AWAITING_FACTOR:
            await self.audit.log_second_factor(
                user_id=challenge.user_id,
                success=False,
                factor_type=factor_type,
                attempts=attempts,
            )
        else:
            await self.audit.log_security_question(
                user_id=challenge.user_id,
                success=False,
                attempts=attempts,
            )

        remaining = settings.STEP_UP_MAX_ATTEMPTS - attempts
        if remaining <= 0:
            await self.challenges.consume(challenge)
            await self.audit.log_step_up_locked(user_id=challenge.user_id, stage=stage)
            await self._session.commit()
            logger.warning(
                "Step-up challenge locked after too many attempts",
                extra={"user_id": challenge.user_id, "stage": stage},
            )
            raise TooManyAttemptsError()

        await self._session.commit()
        return remaining

    async def _open_challenge(
        self,
        result: SignInResult,
        decision: StepUpDecision,
        sign_in_method: str,
    ) -> SignInResponse:
        user = result.user
        challenge = await self.challenges.create_challenge(
            user_id=user.id,
            device_id=self.device_id,
            stage=_STAGE_FOR_STATE[decision.state],
            ttl_seconds=settings.STEP_UP_CHALLENGE_TTL_SECONDS,
            factor_id=result.factor.id if result.factor else None,
            sign_in_method=sign_in_method,
        )
        await self.audit.log_step_up_required(
            user_id=user.id,
            stage=challenge.stage.value,
            device_id=self.device_id,
        )
        logger.info(
            "Sign-in requires step-up",
            extra={"user_id": user.id, "stage": challenge.stage.value, "method": sign_in_method},
        )
        return SignInResponse(
            state=decision.state,
            route=decision.route,
            device_id=self.device_id,
            challenge=await self._to_dto(challenge, user),
        )

    async def _to_dto(
        self,
        challenge: StepUpChallenge,
        user: Optional[User] = None,
    ) -> ChallengeDTO:
        factor_hint = None
        question = None

        if challenge.stage == ChallengeStage.AWAITING_FACTOR:
            factor = await self.store.challenge_factor(challenge)
            factor_hint = FactorHint.from_factor(factor)
            route = factor_route(factor_hint.factor_type)
        else:
            if user is None:
                user = await self.users.get_by_id(challenge.user_id)
            if user is None or not user.has_security_question:
                raise StaleChallengeSessionError()
            question = user.security_question
            route = Route.VERIFY_SECURITY_QUESTION

        return ChallengeDTO(
            version=CHALLENGE_DTO_VERSION,
            challenge_id=challenge.challenge_id,
            stage=challenge.stage.value,
            route=route,
            expires_at=challenge.expires_at,
            attempts_remaining=max(settings.STEP_UP_MAX_ATTEMPTS - (challenge.attempts or 0), 0),
            factor=factor_hint,
            security_question=question,
            sms_sent_at=challenge.sms_sent_at,
        )

    async def _issue_session(self, user: User, method: str) -> SignInResponse:
        """Mint the session token and route by the email gate."""
        token = create_access_token(build_token_claims(user))

        await self.audit.log_login_success(
            user_id=user.id,
            extra_data={"method": method, "device_id": self.device_id},
        )
        logger.info("Sign-in completed", extra={"user_id": user.id, "method": method})

        route = evaluate_email_gate(bool(user.email_verified))
        return SignInResponse(
            state=AuthState.AUTHORIZED if route == Route.DASHBOARD else AuthState.AWAITING_EMAIL_VERIFICATION,
            route=route,
            device_id=self.device_id,
            access_token=token,
            expires_in=settings.JWT_EXPIRATION_MINUTES * 60,
            email_verified=bool(user.email_verified),
        )
