"""
Manifestation — Async Database Engine & SQL Primitives

Everything above this module talks to the local SQLite file through two
primitives only (each accepts a raw SQL string or a SQLAlchemy Core
statement):

- ``execute(statement, params)`` for DDL / DML that returns nothing, and
- ``select(query, params)`` returning a list of plain ``dict`` rows.

``Database`` implements them on an async SQLAlchemy engine (aiosqlite
driver).  ``Database.transaction()`` exposes the same two primitives bound to
a single connection so multi-statement writes commit or roll back together.

``get_db()`` lazily creates the shared ``Database`` and runs the schema
migrations exactly once before handing it out, so no other code can observe
an unmigrated schema.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Protocol, Union

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine.interfaces import DBAPIConnection
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.base import Executable

from manifestation.config import get_settings

logger = structlog.get_logger(__name__)

Statement = Union[str, Executable]
Params = Optional[Mapping[str, Any]]


class SqlExecutor(Protocol):
    """Minimal SQL interface consumed by the migration runner and services."""

    async def execute(self, statement: Statement, params: Params = None) -> None: ...

    async def select(self, query: Statement, params: Params = None) -> list[dict]: ...


def _as_clause(statement: Statement) -> Executable:
    return text(statement) if isinstance(statement, str) else statement


class _ConnectionExecutor:
    """``SqlExecutor`` bound to one open connection (used inside transactions)."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def execute(self, statement: Statement, params: Params = None) -> None:
        await self._conn.execute(_as_clause(statement), dict(params or {}))

    async def select(self, query: Statement, params: Params = None) -> list[dict]:
        result = await self._conn.execute(_as_clause(query), dict(params or {}))
        return [dict(row) for row in result.mappings().all()]


class Database:
    """``SqlExecutor`` backed by an ``AsyncEngine``.

    Each ``execute`` runs in its own short transaction (auto-commit
    semantics); ``select`` uses a plain connection.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def execute(self, statement: Statement, params: Params = None) -> None:
        async with self.engine.begin() as conn:
            await _ConnectionExecutor(conn).execute(statement, params)

    async def select(self, query: Statement, params: Params = None) -> list[dict]:
        async with self.engine.connect() as conn:
            return await _ConnectionExecutor(conn).select(query, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlExecutor]:
        """Yield an executor whose statements commit together.

        Any exception raised inside the block rolls the transaction back and
        propagates::

            async with db.transaction() as tx:
                await tx.execute("INSERT ...", {...})
                await tx.execute("INSERT ...", {...})
        """
        async with self.engine.begin() as conn:
            yield _ConnectionExecutor(conn)

    async def dispose(self) -> None:
        await self.engine.dispose()


# ------------------------------------------------------------------ #
# Engine construction
# ------------------------------------------------------------------ #

def _normalise_url(url: str) -> str:
    # Transparently upgrade a plain ``sqlite://`` scheme to the async driver.
    if url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine for ``url`` (defaults to ``DATABASE_URL``)."""
    settings = get_settings()
    engine = create_async_engine(
        _normalise_url(url or settings.DATABASE_URL),
        echo=(settings.LOG_LEVEL == "DEBUG"),
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_conn: DBAPIConnection, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    logger.info("database_engine_created", url=str(engine.url))
    return engine


# ------------------------------------------------------------------ #
# Shared, lazily-migrated database
# ------------------------------------------------------------------ #

_db: Optional[Database] = None
_db_lock: Optional[asyncio.Lock] = None


async def get_db() -> Database:
    """Return the shared ``Database``, migrating the schema on first use.

    A migration failure is fatal: the engine is disposed, nothing is cached
    and the underlying exception propagates to the caller.
    """
    global _db, _db_lock
    if _db is not None:
        return _db
    if _db_lock is None:
        _db_lock = asyncio.Lock()

    async with _db_lock:
        if _db is None:
            from manifestation.services.migration_service import run_migrations

            db = Database(build_engine())
            try:
                await run_migrations(db)
            except Exception:
                await db.dispose()
                raise
            _db = db
    return _db


async def close_db() -> None:
    """Dispose the shared engine so the next ``get_db()`` starts fresh."""
    global _db, _db_lock
    if _db is not None:
        await _db.dispose()
        logger.info("database_engine_disposed")
    _db = None
    _db_lock = None
