"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize correctly without leaking sensitive data
2. HTTP status codes map correctly
3. Step-up errors carry the field or redirect the client needs
4. Exception handlers work as expected
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from memodams.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    BusinessRuleViolation,
    EmailNotVerifiedError,
    InvalidCredentialError,
    InvalidSecondFactorCodeError,
    InvalidSecurityAnswerError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    PlatformUnavailableError,
    RateLimitExceeded,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    SmsServiceError,
    StaleChallengeSessionError,
    TokenExpiredError,
    TokenInvalidError,
    TooManyAttemptsError,
    ValidationError,
)
from memodams.core.exception_handlers import app_exception_handler


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_message_and_status(self):
        exc = AppException(message="Custom error message", status_code=418)
        assert exc.message == "Custom error message"
        assert exc.status_code == 418

    def test_to_dict_basic(self):
        exc = AppException(message="Test error", user_id=123)
        result = exc.to_dict()

        assert result == {
            "error": "AppException",
            "message": "Test error",
            "status_code": 500,
            "details": {"user_id": 123},
        }

    def test_to_dict_filters_sensitive_data(self):
        """Passwords, codes and security answers never reach a response."""
        exc = AppException(
            message="Test error",
            user_id=123,
            password="secret123",
            token="abc123",
            code="123456",
            answer="fido",
            claims={"admin": True},
            regular_field="visible",
        )
        details = exc.to_dict()["details"]

        for field in ("password", "token", "code", "answer", "claims"):
            assert field not in details
        assert details["user_id"] == 123
        assert details["regular_field"] == "visible"

    def test_to_dict_no_context(self):
        assert AppException(message="Test error").to_dict()["details"] is None


class TestAuthenticationExceptions:
    """Test authentication-related exceptions."""

    def test_authentication_error_status_code(self):
        exc = AuthenticationError()
        assert exc.status_code == 401
        assert exc.message == "Authentication failed"

    def test_authorization_error_status_code(self):
        assert AuthorizationError().status_code == 403

    def test_token_errors_are_401(self):
        assert TokenExpiredError().status_code == 401
        assert TokenInvalidError().status_code == 401

    def test_invalid_credential_is_generic(self):
        """One message for unknown email and wrong password."""
        exc = InvalidCredentialError()
        assert exc.status_code == 401
        assert exc.message == "Invalid email or password"

    def test_permission_denied(self):
        exc = PermissionDeniedError()
        assert exc.status_code == 403
        assert "admin" in exc.message.lower()

    def test_email_not_verified_redirects(self):
        exc = EmailNotVerifiedError(user_id=1)
        assert exc.status_code == 403
        assert exc.to_dict()["details"]["redirect_to"] == "/verify-email"


class TestStepUpExceptions:
    """Step-up errors tell the client where to show or where to go."""

    def test_invalid_code_targets_code_field(self):
        exc = InvalidSecondFactorCodeError(attempts_remaining=3)
        details = exc.to_dict()["details"]

        assert exc.status_code == 400
        assert details["field"] == "code"
        assert details["attempts_remaining"] == 3

    def test_invalid_answer_targets_answer_field(self):
        exc = InvalidSecurityAnswerError()
        assert exc.status_code == 400
        assert exc.to_dict()["details"]["field"] == "answer"

    def test_stale_challenge_sends_to_login(self):
        exc = StaleChallengeSessionError()
        assert exc.status_code == 410
        assert exc.message == "Invalid session. Please log in again."
        assert exc.to_dict()["details"]["redirect_to"] == "/login"

    def test_too_many_attempts_sends_to_login(self):
        exc = TooManyAttemptsError()
        assert exc.status_code == 429
        assert exc.to_dict()["details"]["redirect_to"] == "/login"

    def test_invalid_state_transition_is_business_rule(self):
        exc = InvalidStateTransitionError()
        assert isinstance(exc, BusinessRuleViolation)
        assert exc.status_code == 409


class TestOtherExceptions:
    """Test validation, resource and external service exceptions."""

    def test_validation_error_with_field_context(self):
        exc = ValidationError(message="Email is invalid", field="email")
        assert exc.status_code == 400
        assert exc.to_dict()["details"]["field"] == "email"

    def test_resource_status_codes(self):
        assert ResourceNotFoundError().status_code == 404
        assert ResourceAlreadyExistsError().status_code == 409

    def test_business_rule_violation_status_code(self):
        assert BusinessRuleViolation().status_code == 422

    def test_platform_unavailable_status_code(self):
        assert PlatformUnavailableError().status_code == 503

    def test_sms_error_status_code(self):
        assert SmsServiceError().status_code == 502

    def test_rate_limit_exceeded_status_code(self):
        assert RateLimitExceeded().status_code == 429


class TestExceptionHandlerIntegration:
    """Test exception handler integration with FastAPI."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        app.add_exception_handler(AppException, app_exception_handler)

        @app.get("/auth-error")
        async def auth_error():
            raise AuthenticationError(message="Invalid credentials", user_id=123)

        @app.get("/sensitive-data")
        async def sensitive_data():
            raise AppException(
                message="Error with sensitive data",
                user_id=123,
                password="should-be-filtered",
            )

        @app.get("/cooldown")
        async def cooldown():
            raise RateLimitExceeded(message="Please wait", retry_after=12)

        return app

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_exception_handler_returns_json(self, client):
        response = client.get("/auth-error")

        assert response.status_code == 401
        assert response.headers["content-type"] == "application/json"

        data = response.json()
        assert data["error"] == "AuthenticationError"
        assert data["message"] == "Invalid credentials"
        assert data["status_code"] == 401
        assert data["details"]["user_id"] == 123

    def test_exception_handler_filters_sensitive_data(self, client):
        data = client.get("/sensitive-data").json()

        assert "password" not in data["details"]
        assert data["details"]["user_id"] == 123

    def test_retry_after_header(self, client):
        response = client.get("/cooldown")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"
