"""Data source abstraction layer.

Provides :class:`DataSource` (abstract base) and :class:`QueryResult`.  The
audit store talks to the relational database only through this interface,
so tests and alternative drivers can swap the backend freely.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Union

from pydantic import BaseModel, Field

Params = Union[Sequence[Any], Mapping[str, Any], None]
"""Positional (``?``) or named (``:name``) bind parameters."""


class QueryResult(BaseModel):
    """Result of a statement execution.

    Attributes:
        columns: Column names from the result set.
        rows: List of rows, each row is a list of values.
        row_count: Rows returned, or rows affected for DML statements.
        execution_time_ms: Wall-clock execution time in milliseconds.
    """

    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0

    def as_dicts(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


class DataSource(ABC):
    """Abstract base for relational data sources.

    Subclasses implement connection lifecycle, single statements, batched
    statements and multi-statement transactions.  All driver errors surface
    as :class:`~pathfinder_audit.core.exceptions.StorageError`.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection / connection pool."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection / connection pool."""

    @abstractmethod
    async def execute(self, query: str, params: Params = None) -> QueryResult:
        """Execute *query* with optional *params* and commit."""

    @abstractmethod
    async def execute_many(
        self, query: str, param_sets: Sequence[Params]
    ) -> QueryResult:
        """Execute *query* once per parameter set inside one transaction."""

    @abstractmethod
    async def transaction(
        self, statements: Sequence[tuple[str, Params]]
    ) -> list[QueryResult]:
        """Run *statements* atomically; nothing is committed if one fails."""

    # -- convenience helpers ------------------------------------------------

    async def fetch_one(self, query: str, params: Params = None) -> dict[str, Any] | None:
        """Execute *query* and return the first row as a dict, or ``None``."""
        result = await self.execute(query, params)
        if not result.rows:
            return None
        return dict(zip(result.columns, result.rows[0]))

    async def fetch_all(self, query: str, params: Params = None) -> list[dict[str, Any]]:
        """Execute *query* and return all rows as a list of dicts."""
        result = await self.execute(query, params)
        return result.as_dicts()

    # -- async context manager ----------------------------------------------

    async def __aenter__(self) -> DataSource:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
