"""
Integration tests for authentication API.

WHY: Integration tests verify that multiple components work together correctly,
testing the full request-response cycle including database operations:
password check, step-up decision, token issue, the email gate and the
logout blacklist.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.factories import DEVICE_ID, TEST_PASSWORD, UserFactory, auth_headers


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD, device_id=DEVICE_ID):
    headers = {"X-Device-Id": device_id} if device_id else {}
    return await client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers=headers,
    )


class TestLogin:
    """Password sign-in for accounts that owe no further proof."""

    async def test_login_flow_success(self, client: AsyncClient, test_user):
        """
        An account without factor or question signs straight in.

        WHY: Verifies that login works end-to-end with database,
        password hashing, JWT generation, and HTTP response.
        """
        response = await login(client, "testuser@example.com")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "authorized"
        assert data["route"] == "/dashboard"
        assert data["access_token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 86400
        assert data["device_id"] == DEVICE_ID
        assert data["challenge"] is None

    async def test_login_email_is_case_insensitive(self, client: AsyncClient, test_user):
        response = await login(client, "TestUser@Example.com")

        assert response.status_code == 200
        assert response.json()["state"] == "authorized"

    async def test_login_mints_device_id_when_missing(self, client: AsyncClient, test_user):
        response = await login(client, "testuser@example.com", device_id=None)

        assert response.status_code == 200
        device_id = response.json()["device_id"]
        assert len(device_id) >= 8

    async def test_login_ignores_malformed_device_id(self, client: AsyncClient, test_user):
        response = await login(client, "testuser@example.com", device_id="bad id!")

        assert response.json()["device_id"] != "bad id!"

    async def test_unverified_account_routed_to_verify_email(
        self, client: AsyncClient, unverified_user
    ):
        """The session is issued but held on the verify-email page."""
        response = await login(client, "unverified@example.com")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "awaiting_email_verification"
        assert data["route"] == "/verify-email"
        assert data["access_token"]
        assert data["email_verified"] is False

    async def test_invalid_password(self, client: AsyncClient, test_user):
        response = await login(client, "testuser@example.com", password="WrongPassword123!")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    async def test_unknown_email_gets_same_error(self, client: AsyncClient):
        """No user enumeration: unknown email and bad password look alike."""
        response = await login(client, "nobody@example.com")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    async def test_inactive_user_cannot_login(self, client: AsyncClient, db_session: AsyncSession):
        await UserFactory.create(
            db_session,
            email="inactive@example.com",
            password=TEST_PASSWORD,
            is_active=False,
        )

        response = await login(client, "inactive@example.com")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    async def test_missing_password_is_validation_error(self, client: AsyncClient):
        response = await client.post("/api/auth/login", json={"email": "a@example.com"})

        assert response.status_code == 400
        assert "errors" in response.json()["details"]


class TestSession:
    """Session endpoints: me, route, logout and refresh."""

    async def test_get_current_user(self, client: AsyncClient, test_user, user_headers):
        response = await client.get("/api/auth/me", headers=user_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "testuser@example.com"
        assert data["uid"] == test_user.uid
        assert data["admin"] is False
        assert "hashed_password" not in data

    async def test_get_current_user_without_token(self, client: AsyncClient):
        response = await client.get("/api/auth/me")

        assert response.status_code in (401, 403)

    async def test_get_current_user_with_garbage_token(self, client: AsyncClient):
        response = await client.get(
            "/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    async def test_unverified_user_blocked_with_redirect(self, client: AsyncClient, unverified_user):
        response = await client.get("/api/auth/me", headers=auth_headers(unverified_user))

        assert response.status_code == 403
        assert response.json()["details"]["redirect_to"] == "/verify-email"

    async def test_route_for_verified_and_unverified(
        self, client: AsyncClient, user_headers, unverified_user
    ):
        verified = await client.get("/api/auth/route", headers=user_headers)
        held = await client.get("/api/auth/route", headers=auth_headers(unverified_user))

        assert verified.json() == {"state": "authorized", "route": "/dashboard"}
        assert held.json() == {
            "state": "awaiting_email_verification",
            "route": "/verify-email",
        }

    async def test_logout_invalidates_token(self, client: AsyncClient, user_headers):
        response = await client.post("/api/auth/logout", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["route"] == "/login"

        me = await client.get("/api/auth/me", headers=user_headers)
        assert me.status_code == 401

    async def test_unverified_user_can_logout(self, client: AsyncClient, unverified_user):
        response = await client.post("/api/auth/logout", headers=auth_headers(unverified_user))

        assert response.status_code == 200

    async def test_refresh_issues_new_token_and_revokes_old(
        self, client: AsyncClient, user_headers
    ):
        response = await client.post("/api/auth/refresh", headers=user_headers)

        assert response.status_code == 200
        new_token = response.json()["access_token"]
        assert response.json()["admin"] is False

        old = await client.get("/api/auth/me", headers=user_headers)
        new = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {new_token}"})
        assert old.status_code == 401
        assert new.status_code == 200

    async def test_token_for_deactivated_account_rejected(
        self, client: AsyncClient, db_session: AsyncSession, test_user, user_headers
    ):
        test_user.is_active = False
        await db_session.commit()

        response = await client.get("/api/auth/me", headers=user_headers)

        assert response.status_code == 401

    async def test_redis_outage_is_service_unavailable(
        self, client: AsyncClient, user_headers, monkeypatch
    ):
        """A blacklist that cannot be checked fails closed."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from memodams.core import auth as auth_module

        class BrokenRedis:
            async def exists(self, key):
                raise RedisConnectionError("redis down")

        monkeypatch.setattr(auth_module, "_redis_client", BrokenRedis())

        response = await client.get("/api/auth/me", headers=user_headers)

        assert response.status_code == 503


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
