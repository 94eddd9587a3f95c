"""Relational data-source abstraction used by the audit store."""

from pathfinder_audit.data.base import DataSource, Params, QueryResult
from pathfinder_audit.data.sqlite_source import SQLiteDataSource

__all__ = ["DataSource", "Params", "QueryResult", "SQLiteDataSource"]
