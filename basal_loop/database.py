"""Storage engine for the pump history ledger and the pulse log.

The engine is created on first use so it binds to the running event
loop. SQLite via aiosqlite is the default for a controller that talks to
a single pump; pointing DATABASE_URL at ``postgresql+asyncpg://`` works
without code changes.
"""

from typing import Any, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from basal_loop.config import settings
from basal_loop.logging_config import get_logger
from basal_loop.models.base import Base

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _engine_options(database_url: str, testing: bool) -> dict[str, Any]:
    # Pooled connections outlive the per-test event loop
    if testing:
        return {"poolclass": NullPool}
    if _is_sqlite(database_url):
        return {}
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


def _enable_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def build_engine(database_url: str, testing: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite connections are switched to WAL.

    WAL lets IoB reads proceed while the ledger is writing.
    """
    engine = create_async_engine(database_url, **_engine_options(database_url, testing))
    if _is_sqlite(database_url):
        event.listen(engine.sync_engine, "connect", _enable_wal)
    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, testing=settings.testing)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session maker bound to the application engine."""
    global _session_maker
    if _session_maker is None:
        _session_maker = build_session_maker(get_engine())
    return _session_maker


async def init_database(engine: AsyncEngine | None = None) -> None:
    """Create the ledger tables if they do not exist yet.

    Args:
        engine: Engine to initialise (defaults to the application engine)
    """
    # Registers the tables on Base.metadata
    import basal_loop.models  # noqa: F401

    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_connection() -> bool:
    """Run ``SELECT 1``; False if the store cannot be reached."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed", error=str(exc))
        return False
    return True


async def close_database() -> None:
    """Dispose of the engine; the next use creates a fresh one."""
    global _engine, _session_maker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None
