"""PostgreSQL fixtures for integration tests.

One testcontainers PostgreSQL per session. The engine and session
factories come from twinsync.storage, so tests run on the same pool and
session options as the service. Two flavours of session:

- ``integration_session``: everything is rolled back at the end, even
  after ``commit()``.
- ``session_factory``: real commits on emptied tables, for commit hooks
  and the sync engine, which open their own sessions.
"""

from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
import pytest_asyncio
from pydantic import SecretStr
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import twinsync.storage.entities  # noqa: F401 - register tables on Base.metadata
from twinsync.realtime import ChangeBroadcaster
from twinsync.settings import Settings
from twinsync.storage import close_db, create_engine, create_session_factory, init_db
from twinsync.storage.models import Base

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    TESTCONTAINERS_AVAILABLE = False
    PostgresContainer = None  # type: ignore


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    if not TESTCONTAINERS_AVAILABLE:
        pytest.skip("testcontainers not installed")

    try:
        with PostgresContainer(
            image="postgres:16-alpine",
            username="test",
            password="test",
            dbname="twinsync_test",
        ) as postgres:
            yield postgres
    except Exception as e:
        pytest.skip(f"Docker not available: {e}")


@pytest.fixture(scope="session")
def integration_settings(postgres_container: Any) -> Settings:
    """Settings pointing at the container (asyncpg driver)."""
    url = postgres_container.get_connection_url()
    url = url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
    url = url.replace("postgresql://", "postgresql+asyncpg://")
    return Settings(
        environment="development",
        debug=False,
        database_url=url,
        credential_secret=SecretStr("integration-secret"),
        scheduler_enabled=False,
    )


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def integration_engine(integration_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Service-configured engine with every table created."""
    engine = create_engine(integration_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(loop_scope="session")
async def integration_session(integration_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Session inside an outer transaction that is always rolled back.

    ``session.commit()`` only releases a savepoint, which is reopened
    right away, so map_one's own savepoints still nest correctly.
    """
    async with integration_engine.connect() as conn:
        outer = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)
        await session.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def _reopen_savepoint(sync_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                sync_session.begin_nested()

        yield session

        await session.close()
        await outer.rollback()


async def _empty_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest_asyncio.fixture(loop_scope="session")
async def session_factory(integration_engine: AsyncEngine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Factory for sessions that really commit; tables are emptied around the test."""
    await _empty_tables(integration_engine)
    yield create_session_factory(integration_engine)
    await _empty_tables(integration_engine)


@pytest_asyncio.fixture(loop_scope="session")
async def change_broadcaster() -> AsyncGenerator[ChangeBroadcaster, None]:
    """Broadcaster wired to every session the way the app lifespan does it."""
    broadcaster = ChangeBroadcaster(buffer_size=100, queue_size=100)
    await init_db(broadcaster, check_connection=False)
    yield broadcaster
    await close_db()


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: Integration tests requiring real services")
    config.addinivalue_line("markers", "requires_postgres: Tests requiring PostgreSQL container")
