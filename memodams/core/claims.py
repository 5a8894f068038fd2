"""
Typed session-token claims.

WHAT: Narrow decoding of JWT payloads into a `Claims` record, and the
inverse mapping from an account to the claims written into a new token.

WHY: Authorization decisions used to read loosely typed dictionaries, where
`"true"`, `1` and `True` could all look truthy. Decoding once at the token
boundary means every consumer sees a real bool for `admin` and a
guaranteed subject.

HOW: `decode_claims` validates the fields it needs and raises
TokenInvalidError for anything structurally wrong. `admin` is only True for
the literal JSON boolean `true`.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, TYPE_CHECKING

from memodams.core.exceptions import TokenInvalidError

if TYPE_CHECKING:
    from memodams.models.user import User


@dataclass(frozen=True)
class Claims:
    """Decoded claims of a verified session token."""

    sub: str
    user_id: int
    email: Optional[str] = None
    email_verified: bool = False
    admin: bool = False
    issued_at: Optional[datetime] = None


def decode_claims(payload: Dict[str, Any]) -> Claims:
    """
    Decode a verified JWT payload into Claims.

    Args:
        payload: Output of verify_token()

    Returns:
        Claims record

    Raises:
        TokenInvalidError: If the subject or user id is missing or malformed
    """
    sub = payload.get("sub")
    user_id = payload.get("user_id")

    if not isinstance(sub, str) or not sub:
        raise TokenInvalidError(message="Invalid token: missing subject")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise TokenInvalidError(message="Invalid token: missing user_id")

    email = payload.get("email")
    iat = payload.get("iat")

    return Claims(
        sub=sub,
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        email_verified=payload.get("email_verified") is True,
        admin=payload.get("admin") is True,
        issued_at=datetime.utcfromtimestamp(iat) if isinstance(iat, (int, float)) else None,
    )


def build_token_claims(user: "User") -> Dict[str, Any]:
    """
    Claims to embed in a freshly issued token for this account.

    WHY: Custom claims are copied at issuance, so a grant made after this
    point only shows up once the token is refreshed or the user signs in
    again.
    """
    custom_claims = user.custom_claims or {}
    return {
        "sub": user.uid,
        "user_id": user.id,
        "email": user.email,
        "email_verified": bool(user.email_verified),
        "admin": custom_claims.get("admin") is True,
    }
