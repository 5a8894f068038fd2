"""
Step-up sign-in API endpoints.

WHY: Back the step-up pages (verify-mfa, verify-phone and
verify-security-question). Every page load fetches a fresh challenge
DTO; a missing, expired, consumed or foreign challenge always sends the
client back to /login with "Invalid session. Please log in again."

Security:
- Challenges are bound to the X-Device-Id that started them
- Wrong codes and answers are counted; the last allowed failure locks the
  challenge (TooManyAttemptsError)
- Rate limiting applied via RateLimitMiddleware
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.api.auth import to_sign_in_response
from memodams.core.deps import get_optional_user, require_device_id
from memodams.core.exceptions import StaleChallengeSessionError
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id
from memodams.models.user import User
from memodams.schemas.auth import SignInResponse
from memodams.schemas.step_up import (
    AbortResponse,
    ChallengeResponse,
    FactorCodeRequest,
    SecurityAnswerRequest,
    StepUpPageResponse,
)
from memodams.services.step_up_policy import (
    INVALID_SESSION_MESSAGE,
    Route,
    evaluate_step_up_page,
)
from memodams.services.step_up_service import StepUpService


router = APIRouter(prefix="/auth/step-up", tags=["step-up"])


def get_step_up_service(
    request: Request,
    device_id: str = Depends(require_device_id),
    db: AsyncSession = Depends(get_db),
) -> StepUpService:
    return StepUpService(db, device_id, user_agent=request.headers.get("user-agent"))


@router.get(
    "/{challenge_id}",
    response_model=StepUpPageResponse,
    status_code=status.HTTP_200_OK,
    summary="Load step-up page",
    description="Fresh challenge DTO for a step-up page, or where to go instead",
)
async def load_step_up_page(
    challenge_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
) -> StepUpPageResponse:
    """
    Page guard for the step-up pages.

    WHY: Reaching a step-up page is idempotent. A visitor with a pending
    challenge sees it; one who already holds a session is routed by its
    email verification state; anyone else is sent to /login.
    """
    device_id = get_device_id(request)
    dto = None
    expired = False

    if device_id is not None:
        try:
            dto = await StepUpService(db, device_id).load_challenge(challenge_id)
        except StaleChallengeSessionError:
            expired = True

    decision = evaluate_step_up_page(
        challenge_present=dto is not None,
        challenge_expired=expired,
        fully_authenticated=current_user is not None,
        email_verified=bool(current_user and current_user.email_verified),
    )

    if decision is None:
        return StepUpPageResponse(
            route=dto.route,
            challenge=ChallengeResponse.model_validate(dto),
        )

    return StepUpPageResponse(route=decision.route, message=decision.message)


@router.post(
    "/{challenge_id}/sms",
    response_model=ChallengeResponse,
    status_code=status.HTTP_200_OK,
    summary="Send SMS sign-in code",
    description="Text a sign-in code to the phone factor of this challenge",
)
async def send_sms_code(
    challenge_id: str,
    service: StepUpService = Depends(get_step_up_service),
) -> ChallengeResponse:
    """
    Raises:
        StaleChallengeSessionError (410): Challenge no longer valid
        InvalidStateTransitionError (409): Challenge is not waiting for a phone code
        RateLimitExceeded (429): Code requested again within the cooldown
    """
    dto = await service.send_sms_code(challenge_id)
    return ChallengeResponse.model_validate(dto)


@router.post(
    "/{challenge_id}/factor",
    response_model=SignInResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit second-factor code",
    description="Resolve the challenge with a TOTP or SMS code",
)
async def submit_factor_code(
    challenge_id: str,
    body: FactorCodeRequest,
    service: StepUpService = Depends(get_step_up_service),
) -> SignInResponse:
    """
    Verify the second factor.

    On success the sign-in either finishes or moves on to the security
    question when this device has not answered it yet.

    Raises:
        InvalidSecondFactorCodeError (400): Wrong code; details.attempts_remaining
        TooManyAttemptsError (429): Attempts used up; details.redirect_to=/login
    """
    result = await service.submit_factor_code(challenge_id, body.code)
    return to_sign_in_response(result)


@router.post(
    "/{challenge_id}/security-question",
    response_model=SignInResponse,
    status_code=status.HTTP_200_OK,
    summary="Answer security question",
    description="Resolve the challenge with the account's security answer",
)
async def submit_security_answer(
    challenge_id: str,
    body: SecurityAnswerRequest,
    service: StepUpService = Depends(get_step_up_service),
) -> SignInResponse:
    """
    Verify the security answer and remember this device.

    Raises:
        InvalidSecurityAnswerError (400): Wrong answer; details.attempts_remaining
        TooManyAttemptsError (429): Attempts used up; details.redirect_to=/login
    """
    result = await service.submit_security_answer(challenge_id, body.answer)
    return to_sign_in_response(result)


@router.post(
    "/{challenge_id}/abort",
    response_model=AbortResponse,
    status_code=status.HTTP_200_OK,
    summary="Log out / start over",
    description="Drop the pending sign-in and forget this device",
)
async def abort_step_up(
    challenge_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AbortResponse:
    """
    Exit from any step-up page.

    WHY: Always succeeds, even for a stale challenge or a request
    without a device id, so the user can never get stuck on a step-up
    page.
    """
    device_id = get_device_id(request)
    if device_id is not None:
        decision = await StepUpService(db, device_id).abort(challenge_id)
        return AbortResponse(route=decision.route)

    return AbortResponse(route=Route.LOGIN, message=INVALID_SESSION_MESSAGE)
