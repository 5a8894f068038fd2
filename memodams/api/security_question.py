"""
Security question API endpoints.

WHAT: Offer the question list, show whether a question is set, and set
or change it.

WHY: A set question makes every sign-in from an unrecognised device stop
at the security-question step. The answer is stored only as a bcrypt
hash of its trimmed, case-folded form.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import hash_security_answer
from memodams.core.deps import get_credential_store, get_current_user
from memodams.core.exceptions import ValidationError
from memodams.dao.user import UserDAO
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id
from memodams.models.user import User
from memodams.schemas.security_question import (
    SECURITY_QUESTIONS,
    SecurityQuestionOptionsResponse,
    SecurityQuestionStatusResponse,
    SetSecurityQuestionRequest,
)
from memodams.services.audit import AuditService
from memodams.services.credential_store import DatabaseCredentialStore
from memodams.services.device_verification import DeviceVerificationStore
from memodams.services.step_up_policy import normalize_answer


router = APIRouter(prefix="/security-question", tags=["security-question"])


@router.get(
    "/options",
    response_model=SecurityQuestionOptionsResponse,
    summary="List security questions",
)
async def list_options() -> SecurityQuestionOptionsResponse:
    return SecurityQuestionOptionsResponse(questions=list(SECURITY_QUESTIONS))


@router.get(
    "",
    response_model=SecurityQuestionStatusResponse,
    summary="Get security question",
)
async def get_security_question(
    current_user: User = Depends(get_current_user),
) -> SecurityQuestionStatusResponse:
    return SecurityQuestionStatusResponse(
        is_set=current_user.has_security_question,
        question=current_user.security_question,
    )


@router.put(
    "",
    response_model=SecurityQuestionStatusResponse,
    summary="Set or change security question",
)
async def set_security_question(
    data: SetSecurityQuestionRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
    db: AsyncSession = Depends(get_db),
) -> SecurityQuestionStatusResponse:
    """
    Store the question and the hashed answer.

    The device the question is set from counts as verified, so its next
    sign-in is not stopped by the question just chosen.

    Raises:
        ValidationError (400): Changing an existing question without the
            correct current password
    """
    replacing = current_user.has_security_question
    if replacing:
        if not data.password:
            raise ValidationError(
                message="Enter your current password to change the security question",
                field="password",
            )
        store.reauthenticate(current_user, data.password)

    user = await UserDAO(User, db).set_security_question(
        current_user,
        question=data.question,
        answer_hash=hash_security_answer(normalize_answer(data.answer)),
    )

    device_id = get_device_id(request)
    if device_id is not None:
        await DeviceVerificationStore(db, device_id).mark_device_verified(
            user.id,
            request.headers.get("user-agent"),
        )

    await AuditService(db).log_security_question_set(user_id=user.id, replaced=replacing)

    return SecurityQuestionStatusResponse(is_set=True, question=user.security_question)
