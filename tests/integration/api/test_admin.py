"""
Integration tests for admin endpoints.

WHAT: Admin grants, the account list and the audit log viewer.

WHY: Only an admin, or the configured bootstrap address, may promote
another account. A refused grant must leave the target unchanged and
still be recorded. Grants reach the target's session only after a token
refresh.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from memodams.core.config import settings
from memodams.dao.audit_log import AuditLogDAO
from memodams.dao.user import UserDAO
from memodams.models.audit_log import AuditAction
from memodams.models.user import User
from tests.factories import UserFactory, auth_headers


@pytest.fixture
async def target(db_session: AsyncSession):
    return await UserFactory.create(db_session, email="target@example.com", name="Target")


async def reload(db_session: AsyncSession, user: User) -> User:
    await db_session.refresh(user)
    return user


class TestGrantAdmin:
    async def test_admin_grants_admin(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers, target
    ):
        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["target_uid"] == target.uid
        assert data["target_email"] == "target@example.com"
        assert data["granted_via"] == "admin_claim"
        assert data["already_admin"] is False
        assert data["effective_after_token_refresh"] is True
        assert (await reload(db_session, target)).is_admin is True

    async def test_non_admin_is_denied(
        self, client: AsyncClient, db_session: AsyncSession, test_user, user_headers, target
    ):
        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=user_headers,
        )

        assert response.status_code == 403
        assert (await reload(db_session, target)).is_admin is False
        denials = await AuditLogDAO(db_session).list_entries(action=AuditAction.ADMIN_GRANT_DENIED)
        assert len(denials) == 1
        assert denials[0].actor_user_id == test_user.id

    async def test_bootstrap_email_may_grant(
        self, client: AsyncClient, db_session: AsyncSession, monkeypatch, test_user, target
    ):
        monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_EMAIL", "TestUser@Example.com")

        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=auth_headers(test_user),
        )

        assert response.status_code == 200
        assert response.json()["granted_via"] == "bootstrap_email"
        assert (await reload(db_session, target)).is_admin is True

    async def test_bootstrap_may_promote_itself(
        self, client: AsyncClient, db_session: AsyncSession, monkeypatch, test_user
    ):
        monkeypatch.setattr(settings, "BOOTSTRAP_ADMIN_EMAIL", "testuser@example.com")

        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": test_user.uid},
            headers=auth_headers(test_user),
        )

        assert response.status_code == 200
        assert (await reload(db_session, test_user)).is_admin is True

    async def test_already_admin(self, client: AsyncClient, admin_headers, test_admin):
        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": test_admin.uid},
            headers=admin_headers,
        )

        assert response.json()["already_admin"] is True

    async def test_unknown_target(self, client: AsyncClient, admin_headers):
        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": "no-such-account"},
            headers=admin_headers,
        )

        assert response.status_code == 404

    async def test_grant_is_audited(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers, test_admin, target
    ):
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        grants = await AuditLogDAO(db_session).list_entries(action=AuditAction.ADMIN_GRANTED)
        assert len(grants) == 1
        assert grants[0].actor_user_id == test_admin.id
        assert grants[0].resource_id == target.id

    async def test_unverified_caller_held_on_verify_email(
        self, client: AsyncClient, unverified_user, target
    ):
        response = await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=auth_headers(unverified_user),
        )

        assert response.status_code == 403
        assert response.json()["details"]["redirect_to"] == "/verify-email"


class TestGrantVisibility:
    async def test_grant_visible_after_token_refresh(
        self, client: AsyncClient, admin_headers, target
    ):
        stale = auth_headers(target)
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        before = await client.get("/api/admin/users", headers=stale)
        assert before.status_code == 403

        refreshed = await client.post("/api/auth/refresh", headers=stale)
        assert refreshed.json()["admin"] is True
        fresh = {"Authorization": f"Bearer {refreshed.json()['access_token']}"}

        after = await client.get("/api/admin/users", headers=fresh)
        assert after.status_code == 200


class TestListUsers:
    async def test_admin_lists_users(self, client: AsyncClient, admin_headers, test_user):
        response = await client.get("/api/admin/users", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        emails = {item["email"] for item in data["items"]}
        assert emails == {"testadmin@example.com", "testuser@example.com"}

    async def test_pagination(self, client: AsyncClient, admin_headers, test_user):
        response = await client.get("/api/admin/users?skip=0&limit=1", headers=admin_headers)

        assert len(response.json()["items"]) == 1
        assert response.json()["limit"] == 1

    async def test_non_admin_forbidden(self, client: AsyncClient, user_headers):
        response = await client.get("/api/admin/users", headers=user_headers)

        assert response.status_code == 403


class TestAuditLogs:
    async def test_filter_by_action(
        self, client: AsyncClient, admin_headers, target
    ):
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        response = await client.get(
            "/api/admin/audit-logs?action=ADMIN_GRANTED",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert [item["action"] for item in response.json()["items"]] == ["ADMIN_GRANTED"]
        assert response.json()["total"] == 1

    async def test_filter_by_user(self, client: AsyncClient, admin_headers, test_admin, target):
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        response = await client.get(
            f"/api/admin/audit-logs?user_id={test_admin.id}",
            headers=admin_headers,
        )

        assert all(item["actor_user_id"] == test_admin.id for item in response.json()["items"])
        assert len(response.json()["items"]) >= 1

    async def test_unfiltered_lists_all_events(
        self, client: AsyncClient, admin_headers, test_admin, target
    ):
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )
        await client.post("/api/auth/logout", headers=auth_headers(target))

        response = await client.get("/api/admin/audit-logs", headers=admin_headers)

        assert response.status_code == 200
        actions = [item["action"] for item in response.json()["items"]]
        assert "ADMIN_GRANTED" in actions
        assert "LOGOUT" in actions
        assert response.json()["total"] == len(actions)

    async def test_filters_combine(
        self, client: AsyncClient, admin_headers, test_admin, target
    ):
        await client.post(
            "/api/admin/grant-admin",
            json={"target_uid": target.uid},
            headers=admin_headers,
        )

        mine = await client.get(
            f"/api/admin/audit-logs?user_id={test_admin.id}&action=ADMIN_GRANTED",
            headers=admin_headers,
        )
        theirs = await client.get(
            f"/api/admin/audit-logs?user_id={target.id}&action=ADMIN_GRANTED",
            headers=admin_headers,
        )

        assert mine.json()["total"] == 1
        assert mine.json()["items"][0]["actor_user_id"] == test_admin.id
        assert theirs.json()["total"] == 0

    async def test_unknown_action(self, client: AsyncClient, admin_headers):
        response = await client.get(
            "/api/admin/audit-logs?action=NOT_AN_ACTION",
            headers=admin_headers,
        )

        assert response.status_code == 400

    async def test_non_admin_forbidden(self, client: AsyncClient, user_headers):
        response = await client.get("/api/admin/audit-logs?action=LOGIN_SUCCESS", headers=user_headers)

        assert response.status_code == 403
