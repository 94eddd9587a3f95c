"""SQLite data source using stdlib ``sqlite3`` + ``asyncio.to_thread``.

All blocking I/O is delegated to a worker thread via
:func:`asyncio.to_thread` so the event loop is never blocked.  Statements on
the shared connection are serialised with a lock because worker threads may
overlap.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from collections.abc import Sequence
from typing import Any, Callable, TypeVar

import structlog

from pathfinder_audit.core.exceptions import StorageError
from pathfinder_audit.data.base import DataSource, Params, QueryResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _result(cursor: sqlite3.Cursor, started: float) -> QueryResult:
    columns = [desc[0] for desc in cursor.description] if cursor.description else []
    rows = cursor.fetchall() if cursor.description else []
    elapsed = (time.monotonic() - started) * 1000
    return QueryResult(
        columns=columns,
        rows=[list(row) for row in rows],
        row_count=len(rows) if cursor.description else max(cursor.rowcount, 0),
        execution_time_ms=round(elapsed, 2),
    )


class SQLiteDataSource(DataSource):
    """SQLite data source with async wrappers around :mod:`sqlite3`.

    Args:
        database: Path to the SQLite database file, or ``":memory:"``
            for an in-memory database.
    """

    def __init__(self, database: str = ":memory:") -> None:
        self._database = database
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Open the SQLite connection in a worker thread."""

        def _connect() -> sqlite3.Connection:
            conn = sqlite3.connect(self._database, check_same_thread=False)
            conn.execute("PRAGMA foreign_keys = ON")
            return conn

        self._conn = await asyncio.to_thread(_connect)
        logger.info("sqlite.connected", database=self._database)

    async def close(self) -> None:
        """Close the SQLite connection in a worker thread."""
        if self._conn is not None:
            await asyncio.to_thread(self._conn.close)
            self._conn = None
            logger.info("sqlite.closed", database=self._database)

    # -- execution ----------------------------------------------------------

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        if self._conn is None:
            raise StorageError("Not connected", code="STORAGE_NOT_CONNECTED")
        conn = self._conn  # capture for closure

        def _locked() -> T:
            with self._lock:
                try:
                    return fn(conn)
                except sqlite3.Error as exc:
                    conn.rollback()
                    raise StorageError(str(exc), code="STORAGE_SQLITE") from exc

        return await asyncio.to_thread(_locked)

    async def execute(self, query: str, params: Params = None) -> QueryResult:
        """Execute *query* with optional *params*.

        Raises:
            StorageError: If not connected or the statement fails.
        """

        def _exec(conn: sqlite3.Connection) -> QueryResult:
            t0 = time.monotonic()
            cursor = conn.execute(query, params or ())
            result = _result(cursor, t0)
            conn.commit()
            return result

        return await self._run(_exec)

    async def execute_many(
        self, query: str, param_sets: Sequence[Params]
    ) -> QueryResult:
        def _exec(conn: sqlite3.Connection) -> QueryResult:
            t0 = time.monotonic()
            cursor = conn.executemany(query, [p or () for p in param_sets])
            result = _result(cursor, t0)
            conn.commit()
            return result

        return await self._run(_exec)

    async def transaction(
        self, statements: Sequence[tuple[str, Params]]
    ) -> list[QueryResult]:
        def _exec(conn: sqlite3.Connection) -> list[QueryResult]:
            results: list[QueryResult] = []
            for query, params in statements:
                t0 = time.monotonic()
                results.append(_result(conn.execute(query, params or ()), t0))
            conn.commit()
            return results

        return await self._run(_exec)

    async def executescript(self, script: str) -> None:
        """Run a multi-statement DDL script (schema creation)."""

        def _exec(conn: sqlite3.Connection) -> None:
            conn.executescript(script)
            conn.commit()

        await self._run(_exec)

    async def list_tables(self) -> list[str]:
        """Return sorted list of user tables in the database."""
        result = await self.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        return [row[0] for row in result.rows]
