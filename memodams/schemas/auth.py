"""
Pydantic schemas for authentication endpoints.

WHY: Schemas define request/response contracts, providing:
1. Automatic validation of request data
2. API documentation (OpenAPI/Swagger)
3. Type safety
4. Clear separation between API and database models
"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from memodams.schemas.step_up import ChallengeResponse


class LoginRequest(BaseModel):
    """
    Login request schema.

    WHY: Only presence is checked for the password at sign-in; strength
    rules apply when a password is set, not when it is presented.
    """

    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., min_length=1, max_length=100, description="User's password")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "ada@example.com",
                "password": "SecurePassword123!",
            }
        }


class SignInResponse(BaseModel):
    """
    Result of a step that can finish a sign-in.

    WHY: The client always navigates to `route`. Exactly one of
    `access_token` (sign-in finished) or `challenge` (a proof is still
    owed) is set.
    """

    state: str = Field(..., description="Sign-in state after this step")
    route: str = Field(..., description="Page the client should show next")
    device_id: str = Field(..., description="Device id to send as X-Device-Id from now on")
    access_token: Optional[str] = Field(None, description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: Optional[int] = Field(None, description="Token lifetime in seconds")
    email_verified: Optional[bool] = Field(None, description="Email verification flag")
    challenge: Optional[ChallengeResponse] = Field(None, description="Pending step-up")

    class Config:
        json_schema_extra = {
            "example": {
                "state": "awaiting_security_question",
                "route": "/login/verify-security-question",
                "device_id": "d3b07384d113edec49eaa6238ad5ff00",
                "access_token": None,
                "token_type": "bearer",
                "expires_in": None,
                "email_verified": None,
                "challenge": {
                    "version": 1,
                    "challenge_id": "q0rYV1...",
                    "stage": "awaiting_security_question",
                    "route": "/login/verify-security-question",
                    "expires_at": "2025-10-12T10:40:00",
                    "attempts_remaining": 5,
                    "security_question": "What was your first pet's name?",
                },
            }
        }


class TokenResponse(BaseModel):
    """
    JWT token response schema.

    Returned by refresh, which re-reads the account's current claims.
    """

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type (always 'bearer' for JWT)")
    expires_in: int = Field(..., description="Token expiration time in seconds")
    admin: bool = Field(default=False, description="Admin claim in the new token")


class UserResponse(BaseModel):
    """
    User response schema.

    WHY: Returns account data without sensitive information (no password
    hash, no security answer).
    """

    id: int = Field(..., description="User ID")
    uid: str = Field(..., description="Opaque account id")
    email: str = Field(..., description="User's email address")
    name: str = Field(..., description="User's full name")
    is_active: bool = Field(..., description="Whether user account is active")
    email_verified: bool = Field(..., description="Whether the email address is verified")
    admin: bool = Field(default=False, description="Admin claim on the account")
    has_security_question: bool = Field(default=False)
    created_at: str = Field(..., description="Account creation timestamp")

    class Config:
        from_attributes = True

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            uid=user.uid,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            email_verified=user.email_verified,
            admin=user.is_admin,
            has_security_question=user.has_security_question,
            created_at=user.created_at.isoformat(),
        )


class LogoutResponse(BaseModel):
    """Logout response schema."""

    message: str = Field(default="Successfully logged out")
    route: str = Field(default="/login")


class RouteResponse(BaseModel):
    """Where the current session belongs."""

    state: str
    route: str


class RegisterRequest(BaseModel):
    """
    User registration request schema.

    WHY: Validates registration data:
    1. Email format validation
    2. Password strength requirements (min 8 chars)
    3. Password confirmation matching
    """

    email: EmailStr = Field(..., description="User's email address (must be unique)")
    password: str = Field(..., min_length=8, max_length=100, description="Password (min 8 characters)")
    password_confirm: str = Field(..., min_length=8, max_length=100, description="Password confirmation")
    name: str = Field(..., min_length=1, max_length=255, description="User's full name")
    phone_number: Optional[str] = Field(
        default=None,
        pattern=r"^\+[1-9]\d{6,14}$",
        description="Optional phone number in E.164 format, stored on the profile",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "email": "ada@example.com",
                "password": "SecurePassword123!",
                "password_confirm": "SecurePassword123!",
                "name": "Ada Lovelace",
            }
        }


class RegisterResponse(BaseModel):
    """
    User registration response schema.

    WHY: The new account is signed in straight away but routed to the
    verify-email page until the emailed link is opened.
    """

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Token expiration time in seconds")
    route: str = Field(..., description="Page the client should show next")
    user: UserResponse = Field(..., description="Registered user data")


# ============================================================================
# Email Verification Schemas
# ============================================================================


class SendVerificationEmailResponse(BaseModel):
    """Response for sending verification email."""

    message: str = Field(..., description="Status message")


class VerificationStatusResponse(BaseModel):
    """
    Re-check of the email verification flag.

    The holding page leaves only when `route` is no longer /verify-email.
    """

    email_verified: bool
    route: str


class VerifyEmailRequest(BaseModel):
    """Request to verify email with the token from the emailed link."""

    token: str = Field(..., min_length=1, description="Verification token from email link")


class VerifyEmailResponse(BaseModel):
    """Response for email verification."""

    message: str = Field(..., description="Status message")
    email_verified: bool = Field(..., description="Whether email is now verified")


# ============================================================================
# Password Reset Schemas
# ============================================================================


class ForgotPasswordRequest(BaseModel):
    """
    Request to initiate password reset.

    WHY: Generic response prevents user enumeration (don't reveal if email exists).
    """

    email: EmailStr = Field(..., description="Email address to send reset link to")


class ForgotPasswordResponse(BaseModel):
    """Response for password reset request."""

    message: str = Field(..., description="Status message (always generic to prevent enumeration)")


class ResetPasswordRequest(BaseModel):
    """Request to reset password with token."""

    token: str = Field(..., description="Password reset token from email")
    password: str = Field(..., min_length=8, max_length=100, description="New password")
    password_confirm: str = Field(..., min_length=8, max_length=100, description="New password confirmation")


class ResetPasswordResponse(BaseModel):
    """Response for password reset."""

    message: str = Field(..., description="Status message")
