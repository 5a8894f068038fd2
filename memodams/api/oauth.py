"""
Google sign-in API endpoints.

WHY: These endpoints run the OAuth 2.0 Authorization Code flow for a
browser client:
1. /auth/oauth/providers - Which provider buttons to show
2. /auth/oauth/google - Consent URL plus a state bound to this device
3. /auth/oauth/google/token - Code + state in, SignInResponse out
4. /auth/oauth/accounts - Linked identities, and unlinking them

The web client handles Google's redirect itself and posts the code to
the token endpoint, so the session token never travels in a URL.

SECURITY (OWASP A07):
- State is single use, short lived and tied to the X-Device-Id header
- The token endpoint is rate limited like /auth/login
- Link, unlink and sign-in outcomes are audit logged
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.api.auth import to_sign_in_response
from memodams.core.config import settings
from memodams.core.deps import get_current_user
from memodams.core.exceptions import OAuthStateError
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id
from memodams.models.oauth_account import OAuthProvider
from memodams.models.user import User
from memodams.schemas.auth import SignInResponse
from memodams.schemas.oauth import (
    LinkedAccountsResponse,
    OAuthAuthorizeResponse,
    OAuthProviderInfo,
    OAuthProvidersResponse,
    OAuthTokenRequest,
    UnlinkAccountResponse,
)
from memodams.services.oauth_service import PROVIDER_NAMES, OAuthService
from memodams.services.step_up_service import StepUpService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/oauth", tags=["oauth"])


@router.get(
    "/providers",
    response_model=OAuthProvidersResponse,
    summary="List available sign-in providers",
)
async def list_providers() -> OAuthProvidersResponse:
    """Only providers with a client id and secret configured are listed."""
    providers = []

    if settings.google_oauth_enabled:
        providers.append(
            OAuthProviderInfo(
                provider=OAuthProvider.GOOGLE.value,
                name=PROVIDER_NAMES[OAuthProvider.GOOGLE],
                authorize_url="/api/auth/oauth/google",
            )
        )

    return OAuthProvidersResponse(providers=providers)


@router.get(
    "/google",
    response_model=OAuthAuthorizeResponse,
    summary="Start Google sign-in",
    description="Returns the Google consent URL for this device",
)
async def google_authorize(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> OAuthAuthorizeResponse:
    """
    A device without an X-Device-Id gets one minted here, as at /auth/login.
    It must send that id when posting the code back.

    Raises:
        OAuthError (503): Google sign-in is not configured
    """
    device_id = get_device_id(request) or secrets.token_urlsafe(24)

    auth_url, state = await OAuthService(db).get_google_authorize_url(device_id)

    return OAuthAuthorizeResponse(
        authorization_url=auth_url,
        state=state,
        device_id=device_id,
    )


@router.post(
    "/google/token",
    response_model=SignInResponse,
    summary="Finish Google sign-in",
    description="Exchange Google's code for a session token or a step-up challenge",
)
async def google_token_exchange(
    data: OAuthTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SignInResponse:
    """
    Second half of a Google sign-in.

    WHY: The answer is the same SignInResponse as /auth/login. An account
    with an enrolled second factor gets a challenge for it; the security
    question is never asked for a Google sign-in.

    Raises:
        OAuthStateError (400): State unknown, reused, expired or from another device
        OAuthTokenError (401): Google refused the code
        OAuthAccountLinkError (409): Email taken and not verified by Google
        InvalidCredentialError (401): Account disabled
    """
    device_id = get_device_id(request)
    if device_id is None:
        raise OAuthStateError()

    user, is_new_user = await OAuthService(db).handle_google_callback(
        code=data.code,
        state=data.state,
        device_id=device_id,
    )
    logger.info(
        "Google identity resolved",
        extra={"user_id": user.id, "new_account": is_new_user},
    )

    service = StepUpService(
        db,
        device_id,
        user_agent=request.headers.get("user-agent"),
    )
    result = await service.sign_in_federated(user, provider=OAuthProvider.GOOGLE.value)
    return to_sign_in_response(result)


@router.get(
    "/accounts",
    response_model=LinkedAccountsResponse,
    summary="List linked sign-in providers",
)
async def list_linked_accounts(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> LinkedAccountsResponse:
    oauth_service = OAuthService(db)

    return LinkedAccountsResponse(
        accounts=await oauth_service.get_linked_accounts(current_user.id),
        can_unlink=await oauth_service.can_unlink_account(current_user),
    )


@router.post(
    "/accounts/{provider}/unlink",
    response_model=UnlinkAccountResponse,
    summary="Unlink a sign-in provider",
)
async def unlink_account(
    provider: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnlinkAccountResponse:
    """
    Raises:
        ValidationError (400): Unknown provider
        ResourceNotFoundError (404): Provider not linked
        OAuthAccountLinkError (409): It is the account's only way in
    """
    await OAuthService(db).unlink_account(current_user, provider)

    return UnlinkAccountResponse(
        message=f"{provider.title()} account unlinked successfully",
    )
