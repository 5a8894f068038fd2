"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Settings are read at import time, so the environment must be in place
# before anything from memodams is imported.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient

from memodams.main import app
from memodams.models.base import Base
from memodams.db.session import get_db
from memodams.core import auth as auth_module
from memodams.middleware import rate_limiter as rate_limiter_module
from memodams.services import email as email_module
from memodams.services import encryption_service as encryption_module
from memodams.services import sms as sms_module
from tests.factories import TEST_PASSWORD, UserFactory, auth_headers


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeRedis:
    """
    In-memory stand-in for the Redis client.

    Only the commands the token blacklist and the OAuth state use are
    implemented. Expiry is not simulated.
    """

    def __init__(self):
        self.store: Dict[str, str] = {}

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        return True

    async def exists(self, key: str) -> int:
        return 1 if key in self.store else 0

    async def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    StaticPool keeps the single in-memory database alive across
    connections.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient allows testing FastAPI endpoints without running
    a real server. Requests share the test's session so tests can seed
    and inspect rows directly.

    Yields:
        AsyncClient: HTTP client for making test requests
    """
    from httpx import ASGITransport

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    """A verified account with no second factor and no security question."""
    return await UserFactory.create(
        db_session,
        email="testuser@example.com",
        password=TEST_PASSWORD,
        name="Test User",
        email_verified=True,
    )


@pytest_asyncio.fixture
async def unverified_user(db_session: AsyncSession):
    """An account still held on the verify-email page."""
    return await UserFactory.create(
        db_session,
        email="unverified@example.com",
        password=TEST_PASSWORD,
        name="Unverified User",
        email_verified=False,
    )


@pytest_asyncio.fixture
async def test_admin(db_session: AsyncSession):
    """A verified account carrying the admin claim."""
    return await UserFactory.create(
        db_session,
        email="testadmin@example.com",
        password="AdminPassword123!",
        name="Test Admin",
        email_verified=True,
        custom_claims={"admin": True},
    )


@pytest.fixture
def user_headers(test_user) -> Dict[str, str]:
    return auth_headers(test_user)


@pytest.fixture
def admin_headers(test_admin) -> Dict[str, str]:
    return auth_headers(test_admin)


@pytest.fixture(autouse=True)
def fake_redis():
    """
    Replace the shared Redis client with an in-memory fake.

    WHY: Every authenticated request checks the logout blacklist, and a
    failed Redis connection surfaces as a 503. Google sign-in keeps its
    state in the same client.
    """
    redis = FakeRedis()
    auth_module._redis_client = redis
    yield redis
    auth_module._redis_client = None


@pytest.fixture(autouse=True)
def disable_rate_limiting(monkeypatch):
    """
    Disable rate limiting for all tests.

    WHY: Integration tests run many sign-ins rapidly and would hit the
    limits. Rate limiting is tested separately in unit tests with mocked
    Redis.
    """
    from unittest.mock import AsyncMock, MagicMock

    mock_result = MagicMock()
    mock_result.allowed = True
    mock_result.remaining = 100
    mock_result.reset_after = 60
    mock_result.limit = 100

    mock_limiter = MagicMock()
    mock_limiter.check_rate_limit = AsyncMock(return_value=mock_result)

    async def mock_get_rate_limiter():
        return mock_limiter

    monkeypatch.setattr(
        rate_limiter_module,
        "get_rate_limiter",
        mock_get_rate_limiter,
    )
    rate_limiter_module._rate_limiter = None

    yield

    rate_limiter_module._rate_limiter = None


@pytest.fixture(autouse=True)
def use_mock_providers(monkeypatch):
    """
    Use the mock email and SMS providers for all tests.

    WHY: Tests must not send real email or text messages. The mock
    providers record what was sent so tests can read links and codes.
    """
    from memodams.core import config

    monkeypatch.setattr(config.settings, "RESEND_API_KEY", None)
    monkeypatch.setattr(config.settings, "TWILIO_ACCOUNT_SID", None)
    monkeypatch.setattr(config.settings, "TWILIO_AUTH_TOKEN", None)
    monkeypatch.setattr(config.settings, "TWILIO_FROM", None)
    monkeypatch.setattr(config.settings, "BOOTSTRAP_ADMIN_EMAIL", None)

    email_module._email_service = None
    sms_module._sms_service = None
    encryption_module._encryption_service = None
    email_module.MockEmailProvider.clear_sent_emails()
    sms_module.MockSmsProvider.clear_sent_messages()

    yield

    email_module._email_service = None
    sms_module._sms_service = None
    encryption_module._encryption_service = None
    email_module.MockEmailProvider.clear_sent_emails()
    sms_module.MockSmsProvider.clear_sent_messages()
