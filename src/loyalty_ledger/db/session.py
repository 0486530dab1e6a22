"""Async engine and session wiring."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from loyalty_ledger.core.settings import settings


def enable_sqlite_write_serialization(engine: AsyncEngine) -> None:
    """Open every SQLite transaction with ``BEGIN IMMEDIATE``.

    SQLite has no row locks, so ``SELECT ... FOR UPDATE`` is not rendered. Taking
    the database write lock when the transaction starts makes a second writer
    wait until the first commits, so its balance read always sees the committed
    ledger.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine, applying SQLite locking hooks when needed."""

    database_url = url or settings.database_url
    kwargs.setdefault("echo", settings.database_echo)
    engine = create_async_engine(database_url, future=True, **kwargs)
    if make_url(database_url).get_backend_name() == "sqlite":
        enable_sqlite_write_serialization(engine)
    return engine


engine = build_engine()
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""

    async with async_session() as session:
        yield session
