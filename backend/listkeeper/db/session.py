"""Database session management."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated, Any, TypeVar

import structlog
from fastapi import Depends
from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from listkeeper.config import Settings, get_settings
from listkeeper.exceptions import ConflictError

logger = structlog.get_logger()

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
_CONTENTION_SQLSTATES = {"40001", "40P01"}


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """Enforce foreign keys and open every transaction with BEGIN IMMEDIATE.

    pysqlite/aiosqlite defer BEGIN until the first write; taking the write
    lock up front serializes writers on the whole transaction instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Hand transaction control to SQLAlchemy's "begin" event below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured store."""
    if settings.is_sqlite:
        engine = create_async_engine(
            settings.database_url,
            connect_args={"timeout": settings.database_busy_timeout},
            echo=settings.debug,
        )
        _install_sqlite_hooks(engine)
        return engine

    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_busy_timeout,
        pool_pre_ping=True,
        isolation_level="SERIALIZABLE",
        connect_args={"timeout": settings.database_busy_timeout},
        echo=settings.debug,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to `engine`."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def is_contention_error(exc: BaseException) -> bool:
    """Whether `exc` is the store refusing work because of a concurrent writer."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONTENTION_SQLSTATES:
        return True
    message = str(orig).lower()
    return "database is locked" in message or "database is busy" in message


async def run_transaction(
    db: AsyncSession,
    operation: str,
    work: Callable[[], Awaitable[T]],
    attempts: int = 2,
) -> T:
    """Run `work` and commit it as one transaction.

    Any failure rolls the whole transaction back. Store contention is retried
    (re-running `work` from scratch) up to `attempts` times in total, then
    surfaces as ConflictError; every other error propagates untouched.
    """
    for attempt in range(1, attempts + 1):
        try:
            value = await work()
            await db.commit()
            return value
        except DBAPIError as exc:
            await db.rollback()
            if not is_contention_error(exc):
                raise
            if attempt == attempts:
                logger.warning("store_contention", operation=operation, attempts=attempt)
                raise ConflictError(operation) from exc
            logger.info("store_contention_retry", operation=operation, attempt=attempt)
        except Exception:
            await db.rollback()
            raise
    raise ConflictError(operation)


settings = get_settings()

# Create async engine
engine = build_engine(settings)

# Create session factory
async_session_factory = build_session_factory(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create the schema if missing and verify connectivity."""
    from listkeeper.models import Base

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("SELECT 1"))
    logger.info("database_ready", url=target.url.render_as_string(hide_password=True))


async def close_db() -> None:
    """Close database connection pool."""
    await engine.dispose()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Type alias for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db_session)]
