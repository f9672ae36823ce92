"""Async SQLAlchemy engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def _enable_sqlite_pragmas(engine: AsyncEngine) -> None:
    """Enforce foreign keys and hand transaction control to SQLAlchemy.

    pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emitting BEGIN
    ourselves keeps nested transactions working.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return
        kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": False}
        if not self.is_sqlite:
            kwargs.update(
                pool_size=20,
                max_overflow=10,
                connect_args={"statement_cache_size": 0},
            )
        self._engine = create_async_engine(self.url, **kwargs)
        if self.is_sqlite:
            _enable_sqlite_pragmas(self._engine)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def dispose(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._engine

    def session(self) -> AsyncSession:
        """Open a new session. Use as an async context manager."""
        if self._session_factory is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._session_factory()


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
