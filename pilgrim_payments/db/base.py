"""Declarative base plus the process-wide async engine and session factory.

Production runs on PostgreSQL via asyncpg. SQLite (aiosqlite) is supported for
local runs and tests; concurrent payment attempts then contend on the database
file, so connections wait on locks instead of failing immediately.
"""

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pilgrim_payments.core.config import get_settings

logger = structlog.get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 15000


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_locking(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()


def build_engine(url: str, **engine_kwargs) -> AsyncEngine:
    """Create an engine tuned for the payments workload on the given backend."""
    engine_kwargs.setdefault("echo", get_settings().debug)
    if url.startswith("postgresql"):
        engine_kwargs.setdefault("pool_pre_ping", True)

    engine = create_async_engine(url, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_locking(engine)
    return engine


async def init_db(url: str | None = None, create_tables: bool = True, **engine_kwargs) -> None:
    """Initialize the shared engine and session factory.

    With ``create_tables`` the payment tables are created when missing.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    _engine = build_engine(url or get_settings().database_url, **engine_kwargs)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if create_tables:
        # Models register themselves on Base.metadata at import
        import pilgrim_payments.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    logger.info("db_initialized", dialect=_engine.dialect.name)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def ping_db() -> bool:
    if _session_factory is None:
        return False
    try:
        async with _session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("database_ping_failed", error=str(exc))
        return False
    return True
