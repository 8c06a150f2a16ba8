"""Database configuration and connection management."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from therapy_scheduler.config import settings
from therapy_scheduler.core.exceptions import (
    PersistenceException,
    ServiceUnavailableException,
)

# Driver messages that mean "lock or statement timeout, try again"
_RETRYABLE_ERROR_MARKERS = (
    "database is locked",
    "lock timeout",
    "canceling statement due to statement timeout",
    "could not obtain lock",
    "deadlock detected",
)

# PostgreSQL names the violated index; SQLite lists its columns
_SLOT_CONFLICT_MARKERS = (
    "uq_therapy_sessions_therapist_slot",
    "unique constraint failed: therapy_sessions.therapist_id, therapy_sessions.scheduled_at",
)


def async_database_url(database_url: str) -> str:
    """Convert a sync PostgreSQL URL to its asyncpg form."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def build_engine(database_url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine with bounded lock waits.

    On PostgreSQL the lock and statement timeouts are set per connection. On
    SQLite every transaction is opened with BEGIN IMMEDIATE so concurrent
    writers queue on the busy timeout instead of interleaving.

    Args:
        database_url: Database URL (sync or async form)
        overrides: Extra keyword arguments for create_async_engine

    Returns:
        Configured async engine
    """
    url = async_database_url(database_url)

    if url.startswith("sqlite"):
        options: dict[str, Any] = {
            "echo": settings.debug,
            "connect_args": {"timeout": settings.db_lock_timeout_ms / 1000},
        }
        options.update(overrides)
        sqlite_engine = create_async_engine(url, **options)

        @event.listens_for(sqlite_engine.sync_engine, "connect")
        def _sqlite_connect(dbapi_connection: Any, connection_record: Any) -> None:
            # Hand transaction control to the "begin" hook below
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(sqlite_engine.sync_engine, "begin")
        def _sqlite_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return sqlite_engine

    options = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 3600,
        "connect_args": {
            "server_settings": {
                "application_name": settings.app_name,
                "lock_timeout": str(settings.db_lock_timeout_ms),
                "statement_timeout": str(settings.db_statement_timeout_ms),
            },
        },
    }
    options.update(overrides)
    return create_async_engine(url, **options)


# Create async engine with connection pooling
engine: AsyncEngine = build_engine(settings.database_url)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def is_retryable_error(exc: DBAPIError) -> bool:
    """Check whether a driver error is a lock or statement timeout."""
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _RETRYABLE_ERROR_MARKERS)


def is_slot_conflict(exc: IntegrityError) -> bool:
    """Check whether an integrity error came from the one-session-per-slot index."""
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _SLOT_CONFLICT_MARKERS)


def translate_database_error(exc: DBAPIError) -> Exception:
    """Map a driver error to the retryable or fatal application error."""
    if is_retryable_error(exc):
        return ServiceUnavailableException()
    return PersistenceException()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run one unit of work: commit on success, roll back on any error.

    IntegrityError is re-raised untouched so callers can map unique-index
    violations to business errors. Other driver errors are translated.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise
    except DBAPIError as exc:
        await db.rollback()
        raise translate_database_error(exc) from exc
    except Exception:
        await db.rollback()
        raise


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
