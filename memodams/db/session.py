"""
Database engine and per-request sessions.

WHAT: One async engine for the process and a `get_db` dependency that
commits when the request handler returns and rolls back when it raises.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from memodams.core.config import settings


# Pool sizing applies to PostgreSQL only; aiosqlite manages its own.
_engine_kwargs = {"echo": settings.DEBUG, "pool_pre_ping": True}
if not settings.async_database_url.startswith("sqlite"):
    _engine_kwargs.update(pool_size=10, max_overflow=20)

engine = create_async_engine(settings.async_database_url, **_engine_kwargs)

# Rows stay readable after commit so handlers can build responses from them.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    WHY: A step-up verification that raises after counting a failed
    attempt must still persist that count, so services commit explicitly
    before raising where needed; everything else commits here.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
