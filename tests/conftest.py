"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test runs inside an outer transaction that rolls back afterwards.
- The database comes from TEST_DATABASE_URL; by default a local SQLite file
  through aiosqlite, so no server is needed.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("NKWAPAY_API_KEY", "test-api-key")
os.environ.setdefault("NKWAPAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("BACKGROUND_JOBS_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402

from paperhub.billing.rate_limit import InMemoryRateLimitStore  # noqa: E402
from paperhub.database import Base, get_db  # noqa: E402
from paperhub.main import app  # noqa: E402
from paperhub.models.user import User  # noqa: E402
from tests.helpers import create_user, headers_for  # noqa: E402

_test_db_url = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///./paperhub_test.db")


def _make_engine():
    engine = create_async_engine(_test_db_url, echo=False)

    if engine.dialect.name == "sqlite":
        # pysqlite's own transaction handling breaks SAVEPOINT; take it over.
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


# ---------------------------------------------------------------------------
# Session-scoped: create / drop all tables once per test session
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_engine():
    """Create a session-scoped engine tied to the session event loop."""
    engine = _make_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def setup_test_db(test_engine):
    """Create all tables at the start of the session and drop them at the end."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# Per-test: transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session(test_engine, setup_test_db) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back.

    ``commit()`` inside code under test releases a savepoint instead of
    committing the outer transaction.
    """
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(
            bind=connection,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.rate_limit_store = InMemoryRateLimitStore()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: users and auth headers
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A student with no payments or subscriptions."""
    return await create_user(db_session)


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    return headers_for(test_user)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, role="admin")


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return headers_for(admin_user)
