"""Database connection and session management."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from price_sync.config import get_settings
from price_sync.errors import ConflictError, PriceSyncError, TransientIOError


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


settings = get_settings()

# SQLite needs special handling for concurrency
connect_args = {}
if "sqlite" in settings.database_url:
    connect_args = {
        "timeout": 30,  # Wait up to 30 seconds for lock
        "check_same_thread": False,
    }

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    connect_args=connect_args,
)


@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable WAL mode, lock timeout and foreign keys for SQLite."""
    if "sqlite" in settings.database_url:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")  # 30 second timeout
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Lock and serialization failures that are safe to retry
_CONFLICT_MARKERS = (
    "could not serialize",
    "deadlock detected",
    "database is locked",
    "lock not available",
)


def translate_store_error(error: DBAPIError) -> PriceSyncError | None:
    """Map a driver error onto the error taxonomy.

    Returns None for errors that indicate a bug rather than contention or an
    outage; those propagate unchanged.
    """
    if isinstance(error, IntegrityError):
        return ConflictError(f"Conflicting write: {error.orig}")

    message = str(error.orig).lower()
    if any(marker in message for marker in _CONFLICT_MARKERS):
        return ConflictError(f"Concurrent write contention: {error.orig}")

    if isinstance(error, (OperationalError, InterfaceError)):
        return TransientIOError(f"Store unavailable: {error.orig}")

    return None


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """One transaction outside a request: commit on success, roll back on error."""
    factory = session_factory or async_session_maker
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except DBAPIError as e:
            await session.rollback()
            translated = translate_store_error(e)
            if translated is None:
                raise
            raise translated from e
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for flows that manage their own short transactions."""
    return async_session_maker
