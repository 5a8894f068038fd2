"""
Authentication API endpoints.

WHY: These endpoints provide the account and sign-in flow:
1. Register - Create account, profile document and send verification email
2. Login - First factor; either a session token or a step-up challenge
3. Logout / Refresh / Me / Route - Session handling
4. Email verification and password reset

Security:
- All authentication events are audit logged (OWASP A09)
- Rate limiting applied via RateLimitMiddleware (login, register, reset)
- Passwords are compared using constant-time comparison (bcrypt)
- Generic error messages prevent user enumeration attacks
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import (
    blacklist_token,
    create_access_token,
    hash_password,
)
from memodams.core.claims import build_token_claims
from memodams.core.config import settings
from memodams.core.deps import (
    get_bearer_token,
    get_credential_store,
    get_current_user,
    get_session_user,
)
from memodams.core.exceptions import ResourceNotFoundError, ValidationError
from memodams.dao.profile import ProfileDAO
from memodams.dao.trusted_device import TrustedDeviceDAO
from memodams.dao.user import UserDAO
from memodams.dao.verification_token import VerificationTokenDAO
from memodams.db.session import get_db
from memodams.middleware.request_context import get_device_id, get_request_context
from memodams.models.user import User
from memodams.models.verification_token import TokenType
from memodams.schemas.auth import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    RouteResponse,
    SendVerificationEmailResponse,
    SignInResponse,
    TokenResponse,
    UserResponse,
    VerificationStatusResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from memodams.schemas.step_up import ChallengeResponse
from memodams.services.audit import AuditService
from memodams.services.credential_store import DatabaseCredentialStore
from memodams.services.email import get_email_service
from memodams.services.step_up_policy import AuthState, Route, evaluate_email_gate, route_for
from memodams.services.step_up_service import StepUpService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def to_sign_in_response(result) -> SignInResponse:
    """Service result -> API schema."""
    challenge = None
    if result.challenge is not None:
        challenge = ChallengeResponse.model_validate(result.challenge)

    return SignInResponse(
        state=result.state.value,
        route=result.route,
        device_id=result.device_id,
        access_token=result.access_token,
        expires_in=result.expires_in,
        email_verified=result.email_verified,
        challenge=challenge,
    )


@router.post(
    "/login",
    response_model=SignInResponse,
    status_code=status.HTTP_200_OK,
    summary="Login user",
    description="Authenticate with email and password; returns a token or a step-up challenge",
)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SignInResponse:
    """
    First factor of the sign-in.

    WHY: A correct password alone finishes the sign-in only when the
    account has no second factor and either no security question or a
    device that already answered it. Otherwise a challenge is opened and
    the client is routed to the matching step-up page.

    The device id comes from the X-Device-Id header. A device without
    one gets a freshly minted id in the response, which it must send on
    every later request.

    Raises:
        InvalidCredentialError (401): Unknown email, wrong password or
            disabled account (same message for all three)
    """
    device_id = get_device_id(request) or secrets.token_urlsafe(24)

    service = StepUpService(
        db,
        device_id,
        user_agent=request.headers.get("user-agent"),
    )
    result = await service.sign_in(credentials.email, credentials.password)
    return to_sign_in_response(result)


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register new user",
    description="Create a new account, its profile document and send the verification email",
)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> RegisterResponse:
    """
    Register a new user account.

    WHY: This endpoint handles user registration with several steps:
    1. Password confirmation validation
    2. Email uniqueness check and password hashing
    3. Profile document creation
    4. Verification email
    5. JWT token generation; the session is held on /verify-email until
       the link is opened

    Raises:
        ValidationError (400): Passwords do not match
        ResourceAlreadyExistsError (409): Email already registered
    """
    audit = AuditService(db)

    if data.password != data.password_confirm:
        raise ValidationError(
            message="Passwords do not match",
            field="password_confirm",
        )

    user_dao = UserDAO(User, db)
    user = await user_dao.create_user(
        email=data.email,
        hashed_password=hash_password(data.password),
        name=data.name,
    )

    await ProfileDAO(db).merge(user.id, {"phone_number": data.phone_number})

    await audit.log_account_created(
        user_id=user.id,
        extra_data={"email": user.email, "registration_method": "self_registration"},
    )

    await store.send_verification_email(user)

    # WHY: Auto-login after registration; the email gate still applies
    access_token = create_access_token(build_token_claims(user))
    await audit.log_login_success(user_id=user.id, extra_data={"method": "registration"})

    logger.info("Account registered", extra={"user_id": user.id})

    return RegisterResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.JWT_EXPIRATION_MINUTES * 60,
        route=evaluate_email_gate(bool(user.email_verified)),
        user=UserResponse.from_user(user),
    )


@router.post(
    "/logout",
    response_model=LogoutResponse,
    status_code=status.HTTP_200_OK,
    summary="Logout user",
    description="Blacklist current token to prevent further use",
)
async def logout(
    current_user: User = Depends(get_session_user),
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> LogoutResponse:
    """
    Logout user by blacklisting their token.

    WHY: JWT tokens are stateless and can't be "deleted". Blacklisting
    ensures the token can't be used even if it hasn't expired yet.
    Available from the verify-email holding page too, so it only needs a
    session, not a verified email.
    """
    await blacklist_token(token, current_user.id)

    audit = AuditService(db)
    await audit.log_logout(user_id=current_user.id)

    return LogoutResponse(message="Successfully logged out", route=Route.LOGIN)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Refresh access token",
    description="Re-issue the session token with the account's current claims",
)
async def refresh_token(
    current_user: User = Depends(get_session_user),
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """
    Exchange the current token for one carrying fresh claims.

    WHY: Claims such as admin are copied into the token when it is
    issued. A grant made after that becomes visible only here.
    """
    await db.refresh(current_user)
    access_token = create_access_token(build_token_claims(current_user))

    # The old token must not outlive the refresh
    await blacklist_token(token, current_user.id)
    await AuditService(db).log_token_refresh(user_id=current_user.id)

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.JWT_EXPIRATION_MINUTES * 60,
        admin=current_user.is_admin,
    )


@router.get(
    "/me",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get current user",
    description="Get information about the currently authenticated user",
)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """
    Get current user information.

    Requires a verified email: unverified accounts get
    EmailNotVerifiedError with redirect_to=/verify-email.

    Example:
        >>> # Request with Authorization: Bearer <token>
        >>> response = await client.get("/api/auth/me")
        >>> response.json()
        {"id": 1, "uid": "...", "email": "user@example.com", "admin": false, ...}
    """
    return UserResponse.from_user(current_user)


@router.get(
    "/route",
    response_model=RouteResponse,
    summary="Resolve landing page",
    description="Where the holder of this session belongs",
)
async def resolve_route(
    current_user: User = Depends(get_session_user),
) -> RouteResponse:
    verified = bool(current_user.email_verified)
    state = AuthState.AUTHORIZED if verified else AuthState.AWAITING_EMAIL_VERIFICATION
    return RouteResponse(state=state.value, route=route_for(state, verified))


# ============================================================================
# Email Verification
# ============================================================================


@router.post(
    "/send-verification-email",
    response_model=SendVerificationEmailResponse,
    status_code=status.HTTP_200_OK,
    summary="Send verification email",
    description="Send email verification link to the current user's email address",
)
async def send_verification_email(
    current_user: User = Depends(get_session_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> SendVerificationEmailResponse:
    """
    Resend the verification link.

    WHY: One of the few actions available on the verify-email holding
    page. Older links are invalidated when a new one is sent.
    """
    if current_user.email_verified:
        return SendVerificationEmailResponse(message="Email is already verified.")

    await store.send_verification_email(current_user)

    return SendVerificationEmailResponse(
        message="Verification email sent. Please check your inbox."
    )


@router.get(
    "/verification-status",
    response_model=VerificationStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Re-check email verification",
    description="Re-read the account and report where the session belongs",
)
async def verification_status(
    current_user: User = Depends(get_session_user),
    store: DatabaseCredentialStore = Depends(get_credential_store),
) -> VerificationStatusResponse:
    """
    Re-fetch the account and compare its verification flag.

    WHY: The link is usually opened in another tab or device, so the
    holding page polls this instead of trusting the flag in its token.
    """
    flags = await store.reload(current_user)
    return VerificationStatusResponse(
        email_verified=flags.email_verified,
        route=evaluate_email_gate(flags.email_verified),
    )


@router.post(
    "/verify-email",
    response_model=VerifyEmailResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify email address",
    description="Verify email address using the token from the emailed link",
)
async def verify_email(
    request: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
) -> VerifyEmailResponse:
    """
    Verify email address with the emailed token.

    WHY: No session is required; the link may be opened on any device.

    Raises:
        ResourceNotFoundError: If token not found
        ValidationError: If token expired or already used
    """
    token_dao = VerificationTokenDAO(db)
    user_dao = UserDAO(User, db)
    audit = AuditService(db)

    context = get_request_context()
    ip_address = context.ip_address if context else None

    verification_token = await token_dao.consume(
        token=request.token,
        expected_type=TokenType.EMAIL_VERIFICATION,
        ip_address=ip_address,
    )

    user = await user_dao.get_by_id(verification_token.user_id)
    if not user:
        raise ResourceNotFoundError(
            message="User not found",
            resource_type="User",
        )

    await user_dao.mark_email_verified(user.id)
    await audit.log_email_verified(user_id=user.id)

    return VerifyEmailResponse(
        message="Email verified successfully.",
        email_verified=True,
    )


# ============================================================================
# Password Reset
# ============================================================================


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    status_code=status.HTTP_200_OK,
    summary="Request password reset",
    description="Send password reset link to email address",
)
async def forgot_password(
    request: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> ForgotPasswordResponse:
    """
    Request password reset email.

    Security:
    - Always returns success to prevent user enumeration
    - Token expires after 1 hour
    - Previous tokens are invalidated
    - Rate limited to prevent abuse
    """
    user_dao = UserDAO(User, db)
    token_dao = VerificationTokenDAO(db)
    audit = AuditService(db)

    context = get_request_context()
    ip_address = context.ip_address if context else None

    generic_response = ForgotPasswordResponse(
        message="If an account exists with this email, you will receive a password reset link."
    )

    user = await user_dao.get_by_email(request.email)

    if not user or not user.is_active:
        # Recorded for monitoring, never revealed to the caller
        await audit.log_password_reset_request(
            email=request.email,
            user_id=user.id if user else None,
        )
        return generic_response

    token = await token_dao.issue(
        user_id=user.id,
        token_type=TokenType.PASSWORD_RESET,
        ip_address=ip_address,
    )

    await get_email_service().send_password_reset_email(
        to_email=user.email,
        user_name=user.name,
        reset_token=token.token,
    )

    await audit.log_password_reset_request(email=request.email, user_id=user.id)

    return generic_response


@router.post(
    "/reset-password",
    response_model=ResetPasswordResponse,
    status_code=status.HTTP_200_OK,
    summary="Reset password with token",
    description="Reset password using token from email",
)
async def reset_password(
    request: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> ResetPasswordResponse:
    """
    Reset password using token from email.

    WHY: Completes password reset flow:
    1. Validates token authenticity and expiration
    2. Updates password securely
    3. Forgets every trusted device, so the security question is asked
       again everywhere
    4. Notifies the user

    Raises:
        ValidationError: If passwords don't match, token expired or used
        ResourceNotFoundError: If token not found
    """
    if request.password != request.password_confirm:
        raise ValidationError(
            message="Passwords do not match",
            field="password_confirm",
        )

    token_dao = VerificationTokenDAO(db)
    user_dao = UserDAO(User, db)
    audit = AuditService(db)

    context = get_request_context()
    ip_address = context.ip_address if context else None

    verification_token = await token_dao.consume(
        token=request.token,
        expected_type=TokenType.PASSWORD_RESET,
        ip_address=ip_address,
    )

    user = await user_dao.get_by_id(verification_token.user_id)
    if not user:
        raise ResourceNotFoundError(
            message="User not found",
            resource_type="User",
        )

    await user_dao.update_password(user.id, hash_password(request.password))
    await audit.log_password_reset_complete(user_id=user.id)

    revoked = await TrustedDeviceDAO(db).revoke_all_for_user(user.id)
    if revoked:
        await audit.log_device_revoked(user_id=user.id, device_id="*", count=revoked)

    await get_email_service().send_password_changed_email(
        to_email=user.email,
        user_name=user.name,
        ip_address=ip_address,
    )

    return ResetPasswordResponse(
        message="Password reset successfully. You can now log in with your new password."
    )
