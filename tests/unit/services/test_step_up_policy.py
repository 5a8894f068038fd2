"""
Tests for the step-up policy evaluator.

WHY: The policy functions are pure, so every gate combination can be
checked exhaustively without a database.
"""

import pytest

from memodams.core.auth import hash_security_answer
from memodams.services.step_up_policy import (
    INVALID_SESSION_MESSAGE,
    AccountFlags,
    AuthState,
    Route,
    SignInOutcome,
    answers_match,
    evaluate_email_gate,
    evaluate_factor_satisfied,
    evaluate_federated_sign_in,
    evaluate_sign_in,
    evaluate_step_up_page,
    factor_route,
    normalize_answer,
    route_for,
)


class TestEvaluateSignIn:
    """First transition out of UNAUTHENTICATED."""

    def test_plain_verified_account_is_authorized(self):
        decision = evaluate_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=True),
            device_verified=False,
        )

        assert decision.state == AuthState.AUTHORIZED
        assert decision.route == Route.DASHBOARD
        assert decision.is_authorized
        assert not decision.requires_challenge

    def test_unverified_email_goes_to_verify_email(self):
        decision = evaluate_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=False),
            device_verified=False,
        )

        assert decision.state == AuthState.AWAITING_EMAIL_VERIFICATION
        assert decision.route == Route.VERIFY_EMAIL

    def test_totp_factor_required(self):
        decision = evaluate_sign_in(
            SignInOutcome.SECOND_FACTOR_REQUIRED,
            AccountFlags(email_verified=True, has_second_factor=True, factor_type="totp"),
            device_verified=True,
        )

        assert decision.state == AuthState.AWAITING_FACTOR
        assert decision.route == Route.VERIFY_MFA
        assert decision.requires_challenge

    def test_phone_factor_required(self):
        decision = evaluate_sign_in(
            SignInOutcome.SECOND_FACTOR_REQUIRED,
            AccountFlags(email_verified=True, has_second_factor=True, factor_type="phone"),
            device_verified=False,
        )

        assert decision.route == Route.VERIFY_PHONE

    def test_factor_precedes_security_question(self):
        decision = evaluate_sign_in(
            SignInOutcome.SECOND_FACTOR_REQUIRED,
            AccountFlags(
                email_verified=True,
                has_second_factor=True,
                factor_type="totp",
                has_security_question=True,
            ),
            device_verified=False,
        )

        assert decision.state == AuthState.AWAITING_FACTOR

    def test_question_on_unknown_device(self):
        decision = evaluate_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=True, has_security_question=True),
            device_verified=False,
        )

        assert decision.state == AuthState.AWAITING_SECURITY_QUESTION
        assert decision.route == Route.VERIFY_SECURITY_QUESTION

    def test_question_skipped_on_verified_device(self):
        decision = evaluate_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=True, has_security_question=True),
            device_verified=True,
        )

        assert decision.state == AuthState.AUTHORIZED

    def test_question_asked_before_email_gate(self):
        decision = evaluate_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=False, has_security_question=True),
            device_verified=False,
        )

        assert decision.state == AuthState.AWAITING_SECURITY_QUESTION


class TestEvaluateFactorSatisfied:
    def test_question_still_owed_on_unknown_device(self):
        decision = evaluate_factor_satisfied(
            AccountFlags(email_verified=True, has_second_factor=True, has_security_question=True),
            device_verified=False,
        )

        assert decision.state == AuthState.AWAITING_SECURITY_QUESTION

    def test_authorized_without_question(self):
        decision = evaluate_factor_satisfied(
            AccountFlags(email_verified=True, has_second_factor=True),
            device_verified=False,
        )

        assert decision.state == AuthState.AUTHORIZED

    def test_federated_sign_in_skips_question(self):
        decision = evaluate_factor_satisfied(
            AccountFlags(email_verified=True, has_second_factor=True, has_security_question=True),
            device_verified=False,
            federated=True,
        )

        assert decision.state == AuthState.AUTHORIZED


class TestEvaluateFederatedSignIn:
    def test_question_never_asked(self):
        decision = evaluate_federated_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=True, has_security_question=True),
        )

        assert decision.state == AuthState.AUTHORIZED
        assert decision.route == Route.DASHBOARD

    def test_second_factor_still_owed(self):
        decision = evaluate_federated_sign_in(
            SignInOutcome.SECOND_FACTOR_REQUIRED,
            AccountFlags(email_verified=True, has_second_factor=True, factor_type="phone"),
        )

        assert decision.state == AuthState.AWAITING_FACTOR
        assert decision.route == Route.VERIFY_PHONE

    def test_email_gate_still_applies(self):
        decision = evaluate_federated_sign_in(
            SignInOutcome.SUCCESS,
            AccountFlags(email_verified=False),
        )

        assert decision.state == AuthState.AWAITING_EMAIL_VERIFICATION
        assert decision.route == Route.VERIFY_EMAIL


class TestRouting:
    @pytest.mark.parametrize(
        "verified,route",
        [(True, Route.DASHBOARD), (False, Route.VERIFY_EMAIL)],
    )
    def test_email_gate(self, verified, route):
        assert evaluate_email_gate(verified) == route

    def test_factor_route(self):
        assert factor_route("phone") == Route.VERIFY_PHONE
        assert factor_route("totp") == Route.VERIFY_MFA
        assert factor_route(None) == Route.VERIFY_MFA

    @pytest.mark.parametrize(
        "state,verified,factor_type,expected",
        [
            (AuthState.UNAUTHENTICATED, True, None, Route.LOGIN),
            (AuthState.FIRST_FACTOR_OK, True, None, Route.LOGIN),
            (AuthState.AWAITING_FACTOR, True, "phone", Route.VERIFY_PHONE),
            (AuthState.AWAITING_FACTOR, True, "totp", Route.VERIFY_MFA),
            (AuthState.AWAITING_SECURITY_QUESTION, False, None, Route.VERIFY_SECURITY_QUESTION),
            (AuthState.AUTHORIZED, True, None, Route.DASHBOARD),
            (AuthState.AUTHORIZED, False, None, Route.VERIFY_EMAIL),
            (AuthState.AWAITING_EMAIL_VERIFICATION, False, None, Route.VERIFY_EMAIL),
        ],
    )
    def test_route_for(self, state, verified, factor_type, expected):
        assert route_for(state, verified, factor_type) == expected


class TestStepUpPageGuard:
    def test_live_challenge_renders(self):
        assert evaluate_step_up_page(challenge_present=True) is None

    def test_missing_challenge_sends_to_login(self):
        decision = evaluate_step_up_page(challenge_present=False)

        assert decision.route == Route.LOGIN
        assert decision.message == INVALID_SESSION_MESSAGE

    def test_expired_challenge_sends_to_login(self):
        decision = evaluate_step_up_page(challenge_present=True, challenge_expired=True)

        assert decision.route == Route.LOGIN

    def test_signed_in_visitor_goes_to_dashboard(self):
        decision = evaluate_step_up_page(challenge_present=False, fully_authenticated=True)

        assert decision.route == Route.DASHBOARD

    def test_unverified_visitor_goes_to_verify_email(self):
        decision = evaluate_step_up_page(
            challenge_present=False,
            fully_authenticated=True,
            email_verified=False,
        )

        assert decision.state == AuthState.AWAITING_EMAIL_VERIFICATION
        assert decision.route == Route.VERIFY_EMAIL


class TestSecurityAnswers:
    @pytest.mark.parametrize("given", ["Fido", "fido", " fido ", "FIDO\t"])
    def test_normalize_answer(self, given):
        assert normalize_answer(given) == "fido"

    def test_answers_match_after_normalization(self):
        stored = hash_security_answer(normalize_answer("Fido"))

        assert answers_match(" fido ", stored) is True
        assert answers_match("FIDO", stored) is True
        assert answers_match("rex", stored) is False

    def test_blank_answer_never_matches(self):
        stored = hash_security_answer("fido")

        assert answers_match("   ", stored) is False

    def test_no_stored_hash_never_matches(self):
        assert answers_match("fido", None) is False
