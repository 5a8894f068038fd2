"""
Second-factor enrollment API endpoints.

WHAT: Start, confirm, list and remove the account's second factor
(authenticator app or phone).

WHY: An account with a confirmed factor must resolve it at every
sign-in. Adding and removing a factor therefore sends a security alert
email, and removal needs the current password.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from memodams.core.deps import get_credential_store, get_current_user
from memodams.models.user import User
from memodams.schemas.mfa import (
    ConfirmFactorRequest,
    FactorListResponse,
    FactorResponse,
    PhoneEnrollmentResponse,
    PhoneEnrollRequest,
    TotpEnrollmentResponse,
    TotpEnrollRequest,
    UnenrollRequest,
    UnenrollResponse,
)
from memodams.services.credential_store import DatabaseCredentialStore


router = APIRouter(prefix="/mfa", tags=["mfa"])


@router.get(
    "/factors",
    response_model=FactorListResponse,
    summary="List second factors",
)
async def list_factors(
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> FactorListResponse:
    factors = await store.list_factors(current_user)
    return FactorListResponse(items=[FactorResponse.from_factor(f) for f in factors])


@router.post(
    "/totp",
    response_model=TotpEnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start authenticator app enrollment",
)
async def start_totp_enrollment(
    data: Optional[TotpEnrollRequest] = None,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> TotpEnrollmentResponse:
    """
    Create a pending TOTP factor and return its secret.

    Raises:
        BusinessRuleViolation (422): A factor is already enrolled
    """
    factor, secret, uri = await store.start_totp_enrollment(
        current_user,
        display_name=data.display_name if data else None,
    )
    return TotpEnrollmentResponse(
        factor_uid=factor.factor_uid,
        secret=secret,
        otpauth_uri=uri,
    )


@router.post(
    "/totp/{factor_uid}/confirm",
    response_model=FactorResponse,
    summary="Confirm authenticator app",
)
async def confirm_totp(
    factor_uid: str,
    data: ConfirmFactorRequest,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> FactorResponse:
    """
    Raises:
        ResourceNotFoundError (404): No pending enrollment with this id
        InvalidSecondFactorCodeError (400): Code did not verify
    """
    factor = await store.enroll_factor(current_user, factor_uid, data.code)
    return FactorResponse.from_factor(factor)


@router.post(
    "/phone",
    response_model=PhoneEnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start phone enrollment",
)
async def start_phone_enrollment(
    data: PhoneEnrollRequest,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> PhoneEnrollmentResponse:
    """
    Create a pending phone factor and text it a confirmation code.

    Raises:
        BusinessRuleViolation (422): A factor is already enrolled
        SmsServiceError (502): The code could not be sent
    """
    factor = await store.start_phone_enrollment(
        current_user,
        data.phone_number,
        display_name=data.display_name,
    )
    return PhoneEnrollmentResponse(
        factor_uid=factor.factor_uid,
        phone_hint=factor.masked_phone,
    )


@router.post(
    "/phone/{factor_uid}/confirm",
    response_model=FactorResponse,
    summary="Confirm phone",
)
async def confirm_phone(
    factor_uid: str,
    data: ConfirmFactorRequest,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> FactorResponse:
    factor = await store.enroll_factor(current_user, factor_uid, data.code)
    return FactorResponse.from_factor(factor)


@router.delete(
    "/factors/{factor_uid}",
    response_model=UnenrollResponse,
    summary="Remove second factor",
)
async def unenroll_factor(
    factor_uid: str,
    data: UnenrollRequest,
    current_user: User = Depends(get_current_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> UnenrollResponse:
    """
    Raises:
        ValidationError (400): Current password is incorrect
        ResourceNotFoundError (404): Factor does not belong to this account
    """
    store.reauthenticate(current_user, data.password)
    await store.unenroll_factor(current_user, factor_uid)
    return UnenrollResponse()
