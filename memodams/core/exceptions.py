"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages (OWASP A04)
5. Navigation hints (redirect_to) for the step-up login flow

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        WHY: Context parameters allow including debugging information
        (user_id, challenge_id, etc.) without leaking sensitive data like
        passwords, codes or security answers.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Filter out sensitive fields to prevent data leaks
        sensitive_fields = {
            "password",
            "token",
            "secret",
            "key",
            "api_key",
            "answer",
            "code",
            "claims",
        }
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions (OWASP A07)
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when user lacks permissions for an action.

    WHY: Distinguishing authorization (403) from authentication (401) helps
    frontends show appropriate messages ("You don't have permission" vs
    "Please log in").

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """
    Raised when JWT token has expired.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """
    Raised when JWT token is malformed or has invalid signature.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Token is invalid"


class InvalidCredentialError(AuthenticationError):
    """
    Raised when email/password sign-in fails.

    WHY: Unknown email, wrong password and disabled account all map to this
    one exception with one message, so responses never reveal which accounts
    exist. Recovered locally by re-prompting.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Invalid email or password"


class PermissionDeniedError(AuthorizationError):
    """
    Raised when an actor may not perform a privileged operation.

    WHY: Used by the admin grant gate. The message is fixed and never
    includes the actor's decoded claims.

    HTTP Status: 403 Forbidden
    """

    default_message = "Permission denied. You must be an admin to perform this action."


class EmailNotVerifiedError(AuthorizationError):
    """
    Raised when an account with an unverified email reaches an authenticated route.

    WHY: The verify-email holding page is the only place such an account
    may go, so the error carries redirect_to="/verify-email".

    HTTP Status: 403 Forbidden
    """

    default_message = "Please verify your email address to continue"

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("redirect_to", "/verify-email")
        super().__init__(message, **context)


# ============================================================================
# Step-Up Authentication Exceptions
# ============================================================================


class InvalidSecondFactorCodeError(AppException):
    """
    Raised when a TOTP or SMS code does not verify.

    WHY: The user stays on the same step with an inline error on the
    code field. Attempts are counted on the challenge.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid verification code. Please try again."

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("field", "code")
        super().__init__(message, **context)


class InvalidSecurityAnswerError(AppException):
    """
    Raised when a security-question answer does not match.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Incorrect answer. Please try again."

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("field", "answer")
        super().__init__(message, **context)


class StaleChallengeSessionError(AppException):
    """
    Raised when a step-up challenge is missing, expired, consumed or
    presented from a different device.

    WHY: This is not recoverable in place. The client must go back to
    the login page and show the message.

    HTTP Status: 410 Gone
    """

    status_code = 410
    default_message = "Invalid session. Please log in again."

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("redirect_to", "/login")
        super().__init__(message, **context)


class TooManyAttemptsError(AppException):
    """
    Raised when a step-up challenge has used up its attempts.

    WHY: The challenge is consumed when this is raised, so the user has to
    start over from the first factor.

    HTTP Status: 429 Too Many Requests
    """

    status_code = 429
    default_message = "Too many failed attempts. Please log in again."

    def __init__(self, message: Optional[str] = None, **context: Any):
        context.setdefault("redirect_to", "/login")
        super().__init__(message, **context)


# ============================================================================
# Validation & Input Exceptions (OWASP A03: Injection Prevention)
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ResourceAlreadyExistsError(AppException):
    """
    Raised when attempting to create a resource that already exists.

    WHY: 409 Conflict indicates the request can't be completed due to
    conflicting state (e.g., email already registered).

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Resource already exists"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: Business rules (e.g., "birthday can only be set once") are
    different from validation errors. 422 Unprocessable Entity indicates
    the request was well-formed but semantically incorrect.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an invalid state transition is attempted.

    WHY: The step-up flow is strictly sequential; for example a security
    answer cannot be submitted while the second factor is still pending.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions (OWASP A08: Software Integrity)
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class PlatformUnavailableError(ExternalServiceError):
    """
    Raised when the credential or document store cannot be reached.

    WHY: Surfaced as a generic failure; the operation is not retried
    automatically.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "The service is temporarily unavailable. Please try again."


class EmailServiceError(ExternalServiceError):
    """
    Raised when email sending fails.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Email service error"


class SmsServiceError(ExternalServiceError):
    """
    Raised when an SMS code cannot be delivered.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Could not send the verification code"


class OAuthError(ExternalServiceError):
    """
    Base exception for Google sign-in failures.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Google sign-in failed"


class OAuthProviderError(OAuthError):
    """
    Raised when Google's userinfo endpoint fails or returns unusable data.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Could not read your Google account"


class OAuthStateError(OAuthError):
    """
    Raised when the state parameter is unknown, reused, expired or was
    issued to another device.

    WHY: The state is what ties Google's redirect back to a sign-in this
    device started. Without it a third party could finish a sign-in in
    the victim's browser (login CSRF).

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid or expired sign-in request. Please try again."


class OAuthTokenError(OAuthError):
    """
    Raised when the authorization code cannot be exchanged.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Failed to exchange authorization code"


class OAuthAccountLinkError(AppException):
    """
    Raised when a Google identity cannot be attached to or removed from
    an account.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Google account could not be linked"


# ============================================================================
# Rate Limiting Exceptions (OWASP A05: Security Misconfiguration)
# ============================================================================


class RateLimitExceeded(AppException):
    """
    Raised when rate limit is exceeded.

    HTTP Status: 429 Too Many Requests
    """

    status_code = 429
    default_message = "Rate limit exceeded"


# ============================================================================
# Audit Log Exceptions (OWASP A09: Security Logging)
# ============================================================================


class AuditLogImmutableError(AppException):
    """
    Raised when attempting to update or delete an audit log.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Audit logs are immutable and cannot be modified"


# ============================================================================
# Encryption Exceptions (OWASP A02: Cryptographic Failures)
# ============================================================================


class EncryptionError(AppException):
    """
    Raised when encryption or decryption operations fail.

    WHY: Encryption failures should not expose sensitive information.
    Error messages must be generic to prevent information leakage
    about the encryption scheme or key status.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Encryption operation failed"
