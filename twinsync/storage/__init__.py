"""Database engine, sessions and the realtime commit wiring.

The process holds one async engine, built from Settings on first use.
Every session it hands out is a plain AsyncSession; once init_db() has
been given a broadcaster, commits on any session in the process publish
their changes to tracked tables (see twinsync.realtime.hooks).
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from twinsync.realtime.broadcaster import ChangeBroadcaster
from twinsync.realtime.hooks import install_commit_hooks, uninstall_commit_hooks
from twinsync.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(settings: Settings) -> AsyncEngine:
    """Build an engine with the pool limits from settings."""
    return create_async_engine(
        str(settings.database_url),
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.debug,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions that keep loaded attributes after commit.

    Sync results and API responses read rows after the commit that
    wrote them, so nothing may expire on commit.
    """
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """The process-wide engine, created on first call."""
    global _engine
    if _engine is None:
        _engine = create_engine(settings or get_settings())
    return _engine


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine(settings))
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session and close it on exit. Callers commit explicitly.

    Usage:
        async with get_session() as session:
            config = await ConnectionConfigStore(session).load(owner_id)
    """
    async with get_session_factory()() as session:
        yield session


async def init_db(
    broadcaster: ChangeBroadcaster | None = None,
    *,
    check_connection: bool = True,
) -> None:
    """Prepare the database layer for this process.

    Args:
        broadcaster: When given, committed changes to tracked tables are
            published to it from every session.
        check_connection: Run ``SELECT 1`` so a bad DATABASE_URL fails
            at startup instead of on the first request.
    """
    if check_connection:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    if broadcaster is not None:
        install_commit_hooks(broadcaster)
        logger.debug("Commit hooks installed for realtime fan-out")


async def close_db() -> None:
    """Detach the commit hooks and dispose the engine."""
    global _engine, _session_factory

    uninstall_commit_hooks()
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()


__all__ = [
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
]
