"""
Step-up policy evaluator.

WHAT: Pure decision functions for the sign-in state machine. Given the
outcome of the password check and the account's flags, they decide which
proof is owed next and which page the client belongs on.

WHY: Every gate the sign-in passes through (second factor, security
question on an unrecognised device, email verification) is a small
boolean rule. Keeping the rules free of I/O makes them easy to test
exhaustively and keeps the orchestration in StepUpService thin.

HOW:
    UNAUTHENTICATED --password ok--> FIRST_FACTOR_OK
    UNAUTHENTICATED --factor required--> AWAITING_FACTOR
    FIRST_FACTOR_OK --question set and device unknown--> AWAITING_SECURITY_QUESTION
    FIRST_FACTOR_OK --otherwise--> AUTHORIZED
    AWAITING_FACTOR --code ok--> (question rule again) --> AUTHORIZED
    AWAITING_SECURITY_QUESTION --answer ok--> AUTHORIZED
    federated sign-in: as above, minus every security-question edge
    AUTHORIZED --email not verified--> /verify-email
    any --abort--> UNAUTHENTICATED
"""

import enum
from dataclasses import dataclass
from typing import Optional

from memodams.core.auth import verify_security_answer


class AuthState(str, enum.Enum):
    """Where a sign-in currently stands."""

    UNAUTHENTICATED = "unauthenticated"
    FIRST_FACTOR_OK = "first_factor_ok"
    AWAITING_FACTOR = "awaiting_factor"
    AWAITING_SECURITY_QUESTION = "awaiting_security_question"
    AWAITING_EMAIL_VERIFICATION = "awaiting_email_verification"
    AUTHORIZED = "authorized"


class Route:
    """Client pages the gate can send a user to."""

    LOGIN = "/login"
    VERIFY_MFA = "/login/verify-mfa"
    VERIFY_PHONE = "/login/verify-phone"
    VERIFY_SECURITY_QUESTION = "/login/verify-security-question"
    VERIFY_EMAIL = "/verify-email"
    DASHBOARD = "/dashboard"


INVALID_SESSION_MESSAGE = "Invalid session. Please log in again."


class SignInOutcome(str, enum.Enum):
    """Result of the password check."""

    SUCCESS = "success"
    SECOND_FACTOR_REQUIRED = "second_factor_required"


@dataclass(frozen=True)
class AccountFlags:
    """
    The per-account facts the policy reads.

    Fetched fresh from the credential store on every decision.
    """

    email_verified: bool
    has_second_factor: bool = False
    factor_type: Optional[str] = None
    has_security_question: bool = False
    admin: bool = False


@dataclass(frozen=True)
class StepUpDecision:
    """Next state plus the page the client should show for it."""

    state: AuthState
    route: str
    message: Optional[str] = None

    @property
    def requires_challenge(self) -> bool:
        return self.state in (
            AuthState.AWAITING_FACTOR,
            AuthState.AWAITING_SECURITY_QUESTION,
        )

    @property
    def is_authorized(self) -> bool:
        return self.state == AuthState.AUTHORIZED


def factor_route(factor_type: Optional[str]) -> str:
    """Verification page for the enrolled factor kind."""
    if factor_type == "phone":
        return Route.VERIFY_PHONE
    return Route.VERIFY_MFA


def evaluate_email_gate(email_verified: bool) -> str:
    """Unverified accounts are held on the verify-email page."""
    if email_verified:
        return Route.DASHBOARD
    return Route.VERIFY_EMAIL


def route_for(
    state: AuthState,
    email_verified: bool,
    factor_type: Optional[str] = None,
) -> str:
    """
    Map a state to a client page.

    Args:
        state: Current sign-in state
        email_verified: Fresh account flag
        factor_type: Enrolled factor kind, used for AWAITING_FACTOR
    """
    if state == AuthState.AWAITING_FACTOR:
        return factor_route(factor_type)
    if state == AuthState.AWAITING_SECURITY_QUESTION:
        return Route.VERIFY_SECURITY_QUESTION
    if state in (AuthState.AUTHORIZED, AuthState.AWAITING_EMAIL_VERIFICATION):
        return evaluate_email_gate(email_verified)
    return Route.LOGIN


def _authorized(flags: AccountFlags) -> StepUpDecision:
    if not flags.email_verified:
        return StepUpDecision(
            state=AuthState.AWAITING_EMAIL_VERIFICATION,
            route=Route.VERIFY_EMAIL,
        )
    return StepUpDecision(state=AuthState.AUTHORIZED, route=Route.DASHBOARD)


def evaluate_first_factor(flags: AccountFlags, device_verified: bool) -> StepUpDecision:
    """
    Decide what a password-only sign-in still owes.

    The security question is asked only when one is set and this device
    has not answered it for the account before.
    """
    if flags.has_security_question and not device_verified:
        return StepUpDecision(
            state=AuthState.AWAITING_SECURITY_QUESTION,
            route=Route.VERIFY_SECURITY_QUESTION,
        )
    return _authorized(flags)


def evaluate_sign_in(
    outcome: SignInOutcome,
    flags: AccountFlags,
    device_verified: bool,
) -> StepUpDecision:
    """
    First transition out of UNAUTHENTICATED.

    Args:
        outcome: Whether the credential store wants a second factor
        flags: Fresh account flags
        device_verified: Device verification flag for (account, device)

    Returns:
        StepUpDecision for the next page
    """
    if outcome == SignInOutcome.SECOND_FACTOR_REQUIRED:
        return StepUpDecision(
            state=AuthState.AWAITING_FACTOR,
            route=factor_route(flags.factor_type),
        )
    return evaluate_first_factor(flags, device_verified)


def evaluate_federated_sign_in(outcome: SignInOutcome, flags: AccountFlags) -> StepUpDecision:
    """
    First transition for a sign-in proven by an identity provider.

    An enrolled second factor is still owed. The security question is
    not asked: the provider has already authenticated the browser.
    """
    if outcome == SignInOutcome.SECOND_FACTOR_REQUIRED:
        return StepUpDecision(
            state=AuthState.AWAITING_FACTOR,
            route=factor_route(flags.factor_type),
        )
    return _authorized(flags)


def evaluate_factor_satisfied(
    flags: AccountFlags,
    device_verified: bool,
    federated: bool = False,
) -> StepUpDecision:
    """
    Decision after a correct second-factor code.

    A second factor does not vouch for the device, so an unrecognised
    device still owes the security question, unless the sign-in
    started at an identity provider.
    """
    if federated:
        return _authorized(flags)
    return evaluate_first_factor(flags, device_verified)


def evaluate_step_up_page(
    challenge_present: bool,
    challenge_expired: bool = False,
    fully_authenticated: bool = False,
    email_verified: bool = True,
) -> Optional[StepUpDecision]:
    """
    Guard for a direct visit to a step-up page.

    A signed-in visitor is routed like any other session, so an
    unverified account lands on the verify-email page.

    Returns:
        None when the page may render its challenge, otherwise the
        redirect to apply
    """
    if challenge_present and not challenge_expired:
        return None
    if fully_authenticated and not challenge_present:
        state = AuthState.AUTHORIZED if email_verified else AuthState.AWAITING_EMAIL_VERIFICATION
        return StepUpDecision(state=state, route=route_for(state, email_verified))
    return StepUpDecision(
        state=AuthState.UNAUTHENTICATED,
        route=Route.LOGIN,
        message=INVALID_SESSION_MESSAGE,
    )


def normalize_answer(answer: str) -> str:
    """Trim and case-fold a security answer so "Fido " and "fido" compare equal."""
    return (answer or "").strip().casefold()


def answers_match(given: str, stored_hash: Optional[str]) -> bool:
    """Check a submitted answer against the stored hash of the normalized answer."""
    if not stored_hash:
        return False
    normalized = normalize_answer(given)
    if not normalized:
        return False
    return verify_security_answer(normalized, stored_hash)
