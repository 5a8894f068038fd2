"""
FastAPI dependencies for authentication and authorization.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, so every route applies the
same gates in the same order:

1. get_token_claims      - token is valid, unexpired, not logged out
2. get_session_user      - account still exists and is active
3. get_current_user      - email verified (everything except the
                           verify-email holding endpoints)
4. require_admin         - admin claim in the token
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.claims import Claims
from memodams.core.exceptions import (
    AuthenticationError,
    EmailNotVerifiedError,
    PermissionDeniedError,
    StaleChallengeSessionError,
    TokenExpiredError,
    TokenInvalidError,
)
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id
from memodams.models.user import User
from memodams.dao.user import UserDAO
from memodams.services.credential_store import DatabaseCredentialStore


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()


def get_credential_store(db: AsyncSession = Depends(get_db)) -> DatabaseCredentialStore:
    return DatabaseCredentialStore(db)


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> Claims:
    """
    Verify the bearer token and decode its claims.

    Raises:
        AuthenticationError: If token is invalid, expired or revoked
    """
    try:
        return await store.verify_id_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=e.message,
            status_code=e.status_code,
        )


async def get_session_user(
    claims: Claims = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Account behind a valid session, verified email or not.

    WHY: Only the verify-email holding endpoints (resend, re-check,
    logout) use this directly. User data in the token might be stale, so
    the account is always fetched.

    Raises:
        AuthenticationError: If the account is gone, was replaced or is inactive
    """
    user = await UserDAO(User, db).get_by_id(claims.user_id)

    if not user or user.uid != claims.sub:
        raise AuthenticationError(message="User not found")

    if not user.is_active:
        raise AuthenticationError(
            message="User account is inactive",
            user_id=user.id,
        )

    return user


async def get_current_user(
    user: User = Depends(get_session_user),
) -> User:
    """
    Get current authenticated user with a verified email.

    Usage:
        @app.get("/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}

    Raises:
        EmailNotVerifiedError: Account is held on the verify-email page
    """
    if not user.email_verified:
        raise EmailNotVerifiedError(user_id=user.id)
    return user


async def require_admin(
    claims: Claims = Depends(get_token_claims),
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require the admin claim on the session token.

    WHY: Admin is a token claim, so a fresh grant only works here after
    the token is refreshed (OWASP A01: Broken Access Control).

    Raises:
        PermissionDeniedError: If the token carries no admin claim
    """
    if claims.admin is not True:
        raise PermissionDeniedError(user_id=current_user.id)
    return current_user


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    return credentials.credentials


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
    store: DatabaseCredentialStore = Depends(get_credential_store),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    Get current user if authenticated, None otherwise.

    WHY: Step-up pages are reached without a session, but a visitor who
    already holds a session is routed to the dashboard, or to
    verify-email when the account is unverified.
    """
    if not credentials:
        return None

    try:
        claims = await store.verify_id_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError, AuthenticationError):
        # WHY: Silently fail for optional auth
        return None

    user = await UserDAO(User, db).get_by_id(claims.user_id)
    if user and user.is_active and user.uid == claims.sub:
        return user
    return None


def require_device_id(request: Request) -> str:
    """
    Device id for step-up endpoints.

    WHY: A challenge is bound to the device that started it; a request
    without a device id can never match one.

    Raises:
        StaleChallengeSessionError: If the X-Device-Id header is missing or malformed
    """
    device_id = get_device_id(request)
    if device_id is None:
        raise StaleChallengeSessionError()
    return device_id
