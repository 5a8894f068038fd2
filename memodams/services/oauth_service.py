"""
Google sign-in.

WHAT: The provider half of a federated sign-in: build the consent URL,
check the state Google echoes back, exchange the code, read the user's
Google profile and resolve it to an account. StepUpService takes over
from there, so a Google sign-in ends in the same SignInResponse as a
password one.

SECURITY (OWASP A07 - Identification and Authentication Failures):
- The state is Fernet-encrypted, single use, lives five minutes in Redis
  and is bound to the device that asked for the consent URL
- Identities are looked up by Google's subject id, never by email
- An existing account is only linked when Google says the address is
  verified; a password set on a never-verified account is dropped on link
- No Google tokens are stored: the access token is used once to read the
  profile and then discarded

HOW: httpx for both Google calls, following the Authorization Code flow.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.auth import get_redis
from memodams.core.config import settings
from memodams.core.exceptions import (
    EncryptionError,
    OAuthAccountLinkError,
    OAuthError,
    OAuthProviderError,
    OAuthStateError,
    OAuthTokenError,
    ResourceNotFoundError,
    ValidationError,
)
from memodams.dao.oauth_account import OAuthAccountDAO
from memodams.dao.profile import ProfileDAO
from memodams.dao.user import UserDAO
from memodams.models.oauth_account import OAuthAccount, OAuthProvider
from memodams.models.user import User
from memodams.schemas.oauth import LinkedOAuthAccount, OAuthStateData
from memodams.services.audit import AuditService
from memodams.services.credential_store import DatabaseCredentialStore
from memodams.services.encryption_service import EncryptionService

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_SECONDS = 300

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

# Identity only
GOOGLE_SCOPES = ["openid", "email", "profile"]

PROVIDER_NAMES = {
    OAuthProvider.GOOGLE: "Google",
}

# Matches profiles.avatar_url
MAX_AVATAR_URL_LENGTH = 1024


class OAuthService:
    """
    Google half of a federated sign-in.

    Example:
        oauth = OAuthService(db)
        url, state = await oauth.get_google_authorize_url(device_id)
        ...
        user, is_new = await oauth.handle_google_callback(code, state, device_id)
        response = await StepUpService(db, device_id).sign_in_federated(user, "google")
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.oauth_dao = OAuthAccountDAO(session)
        self.users = UserDAO(User, session)
        self.profiles = ProfileDAO(session)
        self.audit = AuditService(session)
        self.store = DatabaseCredentialStore(session)
        self._encryption = EncryptionService()

    # ========================================================================
    # Google OAuth Flow
    # ========================================================================

    async def get_google_authorize_url(self, device_id: str) -> Tuple[str, str]:
        """
        Build the consent URL for this device.

        Returns:
            Tuple of (authorization_url, state)

        Raises:
            OAuthError (503): Google sign-in is not configured
        """
        if not settings.google_oauth_enabled:
            raise OAuthError(
                message="Google sign-in is not configured",
                status_code=503,
            )

        state = await self._store_oauth_state(
            OAuthStateData(nonce=secrets.token_urlsafe(32), device_id=device_id)
        )

        params = {
            "client_id": settings.GOOGLE_OAUTH_CLIENT_ID,
            "redirect_uri": settings.GOOGLE_OAUTH_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "state": state,
            "prompt": "select_account",
        }

        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}", state

    async def handle_google_callback(
        self,
        code: str,
        state: str,
        device_id: str,
    ) -> Tuple[User, bool]:
        """
        Turn Google's code into an account.

        Returns:
            Tuple of (user, is_new_user)

        Raises:
            OAuthStateError: State unknown, reused, expired or from another device
            OAuthTokenError: Code exchange failed
            OAuthProviderError: Profile fetch failed or has no usable email
            OAuthAccountLinkError: Email belongs to an account Google cannot vouch for
        """
        await self._validate_oauth_state(state, device_id)

        tokens = await self._exchange_google_code(code)
        access_token = tokens.get("access_token")
        if not access_token:
            raise OAuthTokenError(message="Google returned no access token")

        user_info = await self._fetch_google_user_info(access_token)
        return await self._login_or_register_google(user_info)

    async def _exchange_google_code(self, code: str) -> Dict[str, Any]:
        """
        Raises:
            OAuthTokenError: Non-200 answer or network failure
        """
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": settings.GOOGLE_OAUTH_CLIENT_ID,
                        "client_secret": settings.GOOGLE_OAUTH_CLIENT_SECRET,
                        "code": code,
                        "grant_type": "authorization_code",
                        "redirect_uri": settings.GOOGLE_OAUTH_REDIRECT_URI,
                    },
                )

                if response.status_code != 200:
                    error_data = response.json() if response.content else {}
                    logger.warning(
                        "Google code exchange failed",
                        extra={"status": response.status_code, "error": error_data.get("error")},
                    )
                    raise OAuthTokenError(
                        message="Failed to exchange authorization code",
                        error=error_data.get("error_description", "Unknown error"),
                    )

                return response.json()

            except httpx.RequestError as e:
                raise OAuthTokenError(
                    message="Failed to connect to Google",
                    error=str(e),
                )

    async def _fetch_google_user_info(self, access_token: str) -> Dict[str, Any]:
        """
        Returns:
            Google's userinfo document (sub, email, email_verified, name, picture)

        Raises:
            OAuthProviderError: Non-200 answer or network failure
        """
        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )

                if response.status_code != 200:
                    raise OAuthProviderError(
                        message="Failed to fetch user info from Google",
                    )

                return response.json()

            except httpx.RequestError as e:
                raise OAuthProviderError(
                    message="Failed to connect to Google",
                    error=str(e),
                )

    async def _login_or_register_google(self, user_info: Dict[str, Any]) -> Tuple[User, bool]:
        """
        Resolve a Google profile to an account.

        1. Identity already linked -> that account
        2. Same email, Google-verified -> link to that account
        3. Same email, not verified by Google -> refuse
        4. Otherwise -> new password-less account
        """
        provider_user_id = user_info.get("sub")
        email = (user_info.get("email") or "").strip().lower()
        if not provider_user_id or not email:
            raise OAuthProviderError(message="Google did not return an email address")

        # userinfo sends a boolean; ID token claims have been seen as strings
        email_verified = user_info.get("email_verified") in (True, "true")

        oauth_account = await self.oauth_dao.get_by_provider_user_id(
            provider=OAuthProvider.GOOGLE,
            provider_user_id=provider_user_id,
        )
        if oauth_account:
            user = await self.users.get_by_id(oauth_account.user_id)
            if user is None:
                raise OAuthError(message="User account not found")
            return user, False

        existing_user = await self.users.get_by_email(email)
        if existing_user:
            if not email_verified:
                raise OAuthAccountLinkError(
                    message="An account with this email already exists. Sign in with your password.",
                )
            await self._link_to_existing(existing_user, user_info)
            return existing_user, False

        user = await self._create_oauth_user(user_info, email, email_verified)
        return user, True

    async def _link_to_existing(self, user: User, user_info: Dict[str, Any]) -> OAuthAccount:
        """
        Attach a Google identity to an account with the same address.

        WHY: Google has just proven control of the address. If the account
        never proved it, whoever registered it may not own it, so their
        password is dropped and the address is marked verified.
        """
        if not user.email_verified:
            logger.warning(
                "Dropping password of unverified account on Google link",
                extra={"user_id": user.id},
            )
            user.hashed_password = None
            user.email_verified = True
            await self.session.flush()
            await self.audit.log_email_verified(user.id)

        oauth_account = await self._create_oauth_account(user.id, user_info)
        await self.audit.log_oauth_account_linked(
            user_id=user.id,
            provider=OAuthProvider.GOOGLE.value,
        )
        logger.info("Google identity linked", extra={"user_id": user.id})
        return oauth_account

    async def _create_oauth_user(
        self,
        user_info: Dict[str, Any],
        email: str,
        email_verified: bool,
    ) -> User:
        """
        New account with no password, plus its profile document.

        An address Google has not verified goes through the usual
        verification email.
        """
        name = user_info.get("name") or email.split("@")[0]
        user = await self.users.create_user(
            email=email,
            hashed_password=None,
            name=name,
            email_verified=email_verified,
        )

        picture = user_info.get("picture")
        if picture and len(picture) > MAX_AVATAR_URL_LENGTH:
            picture = None
        await self.profiles.merge(user.id, {"avatar_url": picture})

        await self._create_oauth_account(user.id, user_info)
        await self.audit.log_account_created(
            user_id=user.id,
            extra_data={"email": user.email, "registration_method": "oauth_google"},
        )
        await self.audit.log_oauth_account_linked(
            user_id=user.id,
            provider=OAuthProvider.GOOGLE.value,
            new_account=True,
        )

        if not email_verified:
            await self.store.send_verification_email(user)

        logger.info("Account created through Google sign-in", extra={"user_id": user.id})
        return user

    async def _create_oauth_account(self, user_id: int, user_info: Dict[str, Any]) -> OAuthAccount:
        return await self.oauth_dao.create_oauth_account(
            user_id=user_id,
            provider=OAuthProvider.GOOGLE,
            provider_user_id=user_info["sub"],
            email=user_info.get("email"),
            name=user_info.get("name"),
            picture_url=user_info.get("picture"),
        )

    # ========================================================================
    # Account Management
    # ========================================================================

    async def get_linked_accounts(self, user_id: int) -> List[LinkedOAuthAccount]:
        accounts = await self.oauth_dao.get_by_user_id(user_id)

        return [
            LinkedOAuthAccount(
                provider=account.provider.value,
                provider_name=PROVIDER_NAMES.get(account.provider, account.provider.value.title()),
                email=account.email,
                name=account.name,
                picture_url=account.picture_url,
                linked_at=account.created_at,
            )
            for account in accounts
        ]

    async def can_unlink_account(self, user: User) -> bool:
        """
        An identity may go only if another way in remains: a password or
        a second linked provider.
        """
        if user.has_password:
            return True
        return len(await self.oauth_dao.get_by_user_id(user.id)) > 1

    async def unlink_account(self, user: User, provider: str) -> None:
        """
        Raises:
            ValidationError: Unknown provider
            ResourceNotFoundError: Provider not linked
            OAuthAccountLinkError: It is the account's only way in
        """
        try:
            oauth_provider = OAuthProvider(provider)
        except ValueError:
            raise ValidationError(message=f"Unknown provider: {provider}", field="provider")

        account = await self.oauth_dao.get_by_user_and_provider(user.id, oauth_provider)
        if account is None:
            raise ResourceNotFoundError(
                message=f"{PROVIDER_NAMES[oauth_provider]} account is not linked",
                resource_type="OAuthAccount",
            )

        if not await self.can_unlink_account(user):
            raise OAuthAccountLinkError(
                message="Cannot unlink your only sign-in method. Please set a password first.",
            )

        await self.oauth_dao.delete_by_user_and_provider(user.id, oauth_provider)
        await self.audit.log_oauth_account_unlinked(user_id=user.id, provider=oauth_provider.value)

    # ========================================================================
    # State
    # ========================================================================

    async def _store_oauth_state(self, state_data: OAuthStateData) -> str:
        """Encrypt the state and remember it in Redis for its lifetime."""
        encrypted_state = self._encryption.encrypt(state_data.model_dump_json())

        redis = await get_redis()
        await redis.setex(f"oauth:state:{encrypted_state}", OAUTH_STATE_TTL_SECONDS, "1")

        return encrypted_state

    async def _validate_oauth_state(self, state: str, device_id: str) -> OAuthStateData:
        """
        Accept a state once, from the device it was issued to.

        Raises:
            OAuthStateError: Unknown, already used, expired, undecryptable
                or issued to another device
        """
        redis = await get_redis()
        key = f"oauth:state:{state}"

        if not await redis.exists(key):
            raise OAuthStateError()

        # Single use, whatever the outcome below
        await redis.delete(key)

        try:
            state_data = OAuthStateData.model_validate_json(self._encryption.decrypt(state))
        except (EncryptionError, PydanticValidationError):
            raise OAuthStateError()

        if datetime.utcnow() - state_data.created_at > timedelta(seconds=OAUTH_STATE_TTL_SECONDS):
            raise OAuthStateError(message="Sign-in request has expired. Please try again.")

        if not secrets.compare_digest(state_data.device_id, device_id or ""):
            logger.warning("OAuth state presented from another device")
            raise OAuthStateError()

        return state_data
