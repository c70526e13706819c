"""
PawMatch Backend — Database Session Management
================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
How:   Creates an async engine with connection pooling, provides a session
       dependency that commits on success and rolls back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created at module import; sessions are created per-request.

Transactions:
    One request = one session = one transaction. Services only flush; the
    commit in get_db_session makes a whole operation (e.g. the opening
    message's flag flip plus its message insert, or a cascade delete)
    land together or not at all.

SQLite:
    Tests run on aiosqlite. The pysqlite driver defers BEGIN and breaks
    SAVEPOINT, so build_engine() installs the documented workaround
    (emit BEGIN ourselves) and skips the pool sizing arguments.
"""

from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pawmatch.config import settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy instead of pysqlite
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    PostgreSQL gets the pooled configuration from settings; SQLite gets
    the savepoint workaround and the driver's default pool.
    """
    if _is_sqlite(url):
        sqlite_engine = create_async_engine(url, echo=settings.log_level == "DEBUG")
        _enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine

    return create_async_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,
        echo=settings.log_level == "DEBUG",
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: response models read attributes after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Tables flagged with info={"external": True} belong to collaborators
    (animals, shelters, users) and are skipped by Alembic autogenerate.
    """
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global handlers
        5. Always: closes the session (returns connection to pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine() -> None:
    """Closes all pooled connections; called from the app lifespan on shutdown."""
    await engine.dispose()
