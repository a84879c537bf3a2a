"""
Database engine, session factory and declarative base.

The engine is process-wide: created at import, disposed by the app lifespan
(or by the worker) at shutdown. Request handlers receive sessions through
the get_db dependency and never touch the engine directly.
"""
import logging
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from gigengine.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def enable_sqlite_write_locking(engine: AsyncEngine) -> AsyncEngine:
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two sessions can both read
    a gig and then race for the write lock, which SQLite resolves by failing
    one of them with "database is locked". Taking the write lock up front
    serializes read-modify-write units instead, the same guarantee the
    conditional UPDATEs get from row locks on PostgreSQL.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying SQLite write locking for file databases."""
    engine = create_async_engine(database_url, echo=settings.debug, **kwargs)
    if database_url.startswith("sqlite") and ":memory:" not in database_url:
        enable_sqlite_write_locking(engine)
    return engine


engine = build_engine(settings.database_url)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session.

    Any exception escaping the handler rolls the session back, so a failed
    mutation never leaves a half-written aggregate behind.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
