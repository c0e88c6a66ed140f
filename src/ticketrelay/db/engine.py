"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

PostgreSQL (asyncpg) is the production store. SQLite (aiosqlite) works for
local runs and tests; SQLite ignores foreign keys unless asked, so
build_engine() turns them on for every new connection. Chat messages for
a ticket that doesn't exist must fail at write time on both backends.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ticketrelay.config import settings


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine for `url`.

    Pool sizing only applies to server databases without an explicit
    poolclass; SQLite gets the dialect's default pool plus the
    foreign-key pragma.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, **kwargs)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    if "poolclass" not in kwargs:
        kwargs.setdefault("pool_size", 5)
        kwargs.setdefault("max_overflow", 15)
    return create_async_engine(url, echo=echo, **kwargs)


engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory — each request gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for long-lived handlers.

    Learn: A WebSocket lives for minutes or hours. Holding one session for
    that long pins a pooled connection, so the event channel opens a
    short session per inbound event from this factory instead.
    """
    return async_session_factory
