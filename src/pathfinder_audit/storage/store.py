"""Durable audit storage on top of a relational :class:`DataSource`.

All SQL the pipeline issues lives here.  Timestamps are stored as fixed-width
UTC ISO-8601 text (see :func:`~pathfinder_audit.audit.serialization.format_timestamp`)
so range comparisons work as plain string comparisons.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog

from pathfinder_audit.audit.models import AuditEvent, CriticalEventRecord, RetentionPolicy
from pathfinder_audit.audit.query import AUDIT_TABLE
from pathfinder_audit.audit.serialization import format_timestamp
from pathfinder_audit.data.base import DataSource, Params

logger = structlog.get_logger(__name__)

ARCHIVE_TABLE = "audit_log_archive"
SEARCH_INDEX_TABLE = "audit_search_index"
CRITICAL_TABLE = "audit_critical_events"
POLICY_TABLE = "audit_retention_policies"

AUDIT_COLUMNS: tuple[str, ...] = (
    "id", "event_id", "event_timestamp", "processing_timestamp",
    "event_type", "event_category", "event_severity", "event_name",
    "event_description", "actor_type", "actor_id", "actor_username",
    "actor_roles", "target_type", "target_id", "target_name", "target_table",
    "action", "action_result", "error_code", "error_message",
    "old_values", "new_values", "changed_fields", "custom_data",
    "data_sensitivity", "request_id", "correlation_id", "session_id",
    "ip_address", "user_agent", "application_name", "application_version",
    "http_method", "http_path", "http_status_code", "response_time_ms",
    "risk_score", "compliance_frameworks", "event_hash", "previous_hash",
)  # fmt: skip

# SQLite's historical bound-variable limit.
_MAX_VARIABLES = 999

_AUDIT_COLUMN_DDL = """
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL,
    event_timestamp TEXT NOT NULL,
    processing_timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    event_category TEXT NOT NULL,
    event_severity TEXT NOT NULL,
    event_name TEXT NOT NULL,
    event_description TEXT,
    actor_type TEXT,
    actor_id TEXT,
    actor_username TEXT,
    actor_roles TEXT,
    target_type TEXT,
    target_id TEXT,
    target_name TEXT,
    target_table TEXT,
    action TEXT NOT NULL,
    action_result TEXT NOT NULL,
    error_code TEXT,
    error_message TEXT,
    old_values TEXT,
    new_values TEXT,
    changed_fields TEXT,
    custom_data TEXT,
    data_sensitivity TEXT,
    request_id TEXT,
    correlation_id TEXT,
    session_id TEXT,
    ip_address TEXT,
    user_agent TEXT,
    application_name TEXT,
    application_version TEXT,
    http_method TEXT,
    http_path TEXT,
    http_status_code INTEGER,
    response_time_ms INTEGER,
    risk_score INTEGER NOT NULL DEFAULT 0,
    compliance_frameworks TEXT,
    event_hash TEXT,
    previous_hash TEXT,
    legal_hold INTEGER NOT NULL DEFAULT 0
"""

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {AUDIT_TABLE} ({_AUDIT_COLUMN_DDL});
CREATE INDEX IF NOT EXISTS ix_audit_log_ts ON {AUDIT_TABLE} (event_timestamp);
CREATE INDEX IF NOT EXISTS ix_audit_log_actor ON {AUDIT_TABLE} (actor_id, event_type, action_result);

CREATE TABLE IF NOT EXISTS {ARCHIVE_TABLE} ({_AUDIT_COLUMN_DDL},
    archived_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS {SEARCH_INDEX_TABLE} (
    audit_log_id TEXT NOT NULL,
    search_text TEXT,
    event_date TEXT NOT NULL,
    event_hour INTEGER NOT NULL,
    actor_id_idx TEXT,
    target_id_idx TEXT,
    ip_address_idx TEXT
);

CREATE TABLE IF NOT EXISTS {CRITICAL_TABLE} (
    id TEXT PRIMARY KEY,
    audit_log_id TEXT NOT NULL,
    threat_type TEXT NOT NULL,
    threat_level TEXT NOT NULL,
    detection_rule TEXT NOT NULL,
    detection_score INTEGER NOT NULL,
    confidence_level INTEGER NOT NULL,
    indicators TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS {POLICY_TABLE} (
    id TEXT PRIMARY KEY,
    event_type TEXT,
    archive_after_days INTEGER,
    delete_after_days INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    priority INTEGER NOT NULL DEFAULT 100
);
"""  # noqa: S608

_TYPE_MATCH = "(:event_type IS NULL OR event_type = :event_type)"


def _search_index_row(event: AuditEvent) -> dict[str, Any]:
    parts = (event.event_name, event.event_description, event.actor_username, event.target_name)
    return {
        "audit_log_id": event.id,
        "search_text": " ".join(p for p in parts if p),
        "event_date": event.event_timestamp.date().isoformat(),
        "event_hour": event.event_timestamp.hour,
        "actor_id_idx": event.actor_id,
        "target_id_idx": event.target_id,
        "ip_address_idx": event.ip_address,
    }


def _policy_type(policy: RetentionPolicy) -> str | None:
    return None if policy.matches_all_types else policy.event_type


class AuditStore:
    """Reads and writes audit tables through a :class:`DataSource`.

    Also serves as the risk scorer's
    :class:`~pathfinder_audit.audit.risk.FailureHistory`.
    """

    def __init__(self, source: DataSource, *, max_batch_size: int = 100) -> None:
        self._source = source
        self.max_batch_size = max_batch_size

    @property
    def max_batch_size(self) -> int:
        """Rows per INSERT statement, capped by SQLite's bound-variable limit."""
        return self._rows_per_insert

    @max_batch_size.setter
    def max_batch_size(self, value: int) -> None:
        rows_per_statement = _MAX_VARIABLES // len(AUDIT_COLUMNS)
        self._rows_per_insert = max(1, min(value, rows_per_statement))

    @property
    def source(self) -> DataSource:
        return self._source

    async def create_schema(self) -> None:
        """Create all audit tables if they do not exist (SQLite dialect)."""
        executescript = getattr(self._source, "executescript", None)
        if executescript is not None:
            await executescript(SCHEMA)
            return
        statements = [s.strip() for s in SCHEMA.split(";") if s.strip()]
        await self._source.transaction([(s, None) for s in statements])

    # -- writes -------------------------------------------------------------

    def _insert_statements(self, events: Sequence[AuditEvent]) -> list[tuple[str, Params]]:
        statements: list[tuple[str, Params]] = []
        columns = ", ".join(AUDIT_COLUMNS)
        for start in range(0, len(events), self._rows_per_insert):
            chunk = events[start : start + self._rows_per_insert]
            bindings: dict[str, Any] = {}
            groups: list[str] = []
            for i, event in enumerate(chunk):
                row = event.to_row()
                names = []
                for j, column in enumerate(AUDIT_COLUMNS):
                    key = f"r{i}_{j}"
                    bindings[key] = row[column]
                    names.append(f":{key}")
                groups.append(f"({', '.join(names)})")
            sql = f"INSERT INTO {AUDIT_TABLE} ({columns}) VALUES {', '.join(groups)}"  # noqa: S608
            statements.append((sql, bindings))
        return statements

    async def write_batch(self, events: Sequence[AuditEvent]) -> int:
        """Insert *events* and their search-index rows in one transaction.

        Returns:
            Number of audit rows written.

        Raises:
            StorageError: The batch was rolled back; nothing was written.
        """
        if not events:
            return 0
        statements = self._insert_statements(events)
        index_sql = (
            f"INSERT INTO {SEARCH_INDEX_TABLE} "  # noqa: S608
            "(audit_log_id, search_text, event_date, event_hour, "
            "actor_id_idx, target_id_idx, ip_address_idx) VALUES "
            "(:audit_log_id, :search_text, :event_date, :event_hour, "
            ":actor_id_idx, :target_id_idx, :ip_address_idx)"
        )
        statements.extend((index_sql, _search_index_row(e)) for e in events)
        await self._source.transaction(statements)
        logger.debug("audit_store.batch_written", count=len(events))
        return len(events)

    async def insert_critical_event(self, record: CriticalEventRecord) -> None:
        row = record.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        await self._source.execute(
            f"INSERT INTO {CRITICAL_TABLE} ({columns}) VALUES ({placeholders})",  # noqa: S608
            row,
        )

    async def set_legal_hold(self, event_ids: Sequence[str], hold: bool = True) -> int:
        if not event_ids:
            return 0
        result = await self._source.execute_many(
            f"UPDATE {AUDIT_TABLE} SET legal_hold = :hold WHERE id = :id",  # noqa: S608
            [{"hold": int(hold), "id": event_id} for event_id in event_ids],
        )
        return result.row_count

    # -- reads --------------------------------------------------------------

    async def count_recent_failures(
        self, actor_id: str | None, ip_address: str | None, since: datetime
    ) -> int:
        row = await self._source.fetch_one(
            f"SELECT COUNT(*) AS failure_count FROM {AUDIT_TABLE} "  # noqa: S608
            "WHERE event_type = 'authentication' AND action_result = 'failure' "
            "AND event_timestamp > :since "
            "AND (actor_id = :actor_id OR ip_address = :ip_address)",
            {"since": format_timestamp(since), "actor_id": actor_id, "ip_address": ip_address},
        )
        return int(row["failure_count"]) if row else 0

    async def fetch(self, sql: str, bindings: Params = None) -> list[dict[str, Any]]:
        return await self._source.fetch_all(sql, bindings)

    async def events_between(
        self, start: datetime, end: datetime, framework: str | None = None
    ) -> list[dict[str, Any]]:
        """Events in ``[start, end]``, newest first, optionally tagged with *framework*."""
        sql = (
            f"SELECT * FROM {AUDIT_TABLE} "  # noqa: S608
            "WHERE event_timestamp BETWEEN :start AND :end"
        )
        bindings: dict[str, Any] = {
            "start": format_timestamp(start),
            "end": format_timestamp(end),
        }
        if framework is not None:
            sql += " AND compliance_frameworks LIKE :framework"
            bindings["framework"] = f'%"{framework}"%'
        sql += " ORDER BY event_timestamp DESC"
        return await self._source.fetch_all(sql, bindings)

    async def chain_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Live events oldest first, in the order they were chained."""
        sql = f"SELECT * FROM {AUDIT_TABLE} ORDER BY rowid ASC"  # noqa: S608
        bindings: dict[str, Any] = {}
        if limit:
            sql += " LIMIT :limit"
            bindings["limit"] = limit
        return await self._source.fetch_all(sql, bindings)

    async def critical_events(self, audit_log_id: str | None = None) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {CRITICAL_TABLE}"  # noqa: S608
        bindings: dict[str, Any] = {}
        if audit_log_id is not None:
            sql += " WHERE audit_log_id = :audit_log_id"
            bindings["audit_log_id"] = audit_log_id
        return await self._source.fetch_all(sql + " ORDER BY created_at", bindings)

    # -- retention ----------------------------------------------------------

    async def save_retention_policy(self, policy: RetentionPolicy) -> None:
        await self._source.execute(
            f"INSERT OR REPLACE INTO {POLICY_TABLE} "  # noqa: S608
            "(id, event_type, archive_after_days, delete_after_days, is_active, priority) "
            "VALUES (:id, :event_type, :archive_after_days, :delete_after_days, "
            ":is_active, :priority)",
            {
                "id": policy.id,
                "event_type": policy.event_type,
                "archive_after_days": policy.archive_after_days,
                "delete_after_days": policy.delete_after_days,
                "is_active": int(policy.is_active),
                "priority": policy.priority,
            },
        )

    async def retention_policies(self, active_only: bool = True) -> list[RetentionPolicy]:
        sql = f"SELECT * FROM {POLICY_TABLE}"  # noqa: S608
        if active_only:
            sql += " WHERE is_active = 1"
        rows = await self._source.fetch_all(sql + " ORDER BY priority, id")
        return [RetentionPolicy.model_validate(row) for row in rows]

    async def archive_events(
        self, policy: RetentionPolicy, cutoff: datetime, archived_at: datetime
    ) -> int:
        """Move live rows older than *cutoff* into the archive table."""
        columns = ", ".join(AUDIT_COLUMNS) + ", legal_hold"
        where = f"event_timestamp < :cutoff AND {_TYPE_MATCH} AND legal_hold = 0"
        bindings = {"cutoff": format_timestamp(cutoff), "event_type": _policy_type(policy)}
        copy_sql = (
            f"INSERT INTO {ARCHIVE_TABLE} ({columns}, archived_at) "  # noqa: S608
            f"SELECT {columns}, :archived_at FROM {AUDIT_TABLE} WHERE {where}"
        )
        delete_sql = f"DELETE FROM {AUDIT_TABLE} WHERE {where}"  # noqa: S608
        results = await self._source.transaction(
            [
                (copy_sql, {**bindings, "archived_at": format_timestamp(archived_at)}),
                (delete_sql, bindings),
            ]
        )
        return results[1].row_count

    async def purge_events(self, policy: RetentionPolicy, cutoff: datetime) -> int:
        """Hard-delete archived and live rows older than *cutoff*."""
        where = f"event_timestamp < :cutoff AND {_TYPE_MATCH} AND legal_hold = 0"
        bindings = {"cutoff": format_timestamp(cutoff), "event_type": _policy_type(policy)}
        results = await self._source.transaction(
            [
                (f"DELETE FROM {ARCHIVE_TABLE} WHERE {where}", bindings),  # noqa: S608
                (f"DELETE FROM {AUDIT_TABLE} WHERE {where}", bindings),  # noqa: S608
            ]
        )
        return sum(r.row_count for r in results)

    async def count(self, table: str = AUDIT_TABLE) -> int:
        row = await self._source.fetch_one(f"SELECT COUNT(*) AS n FROM {table}")  # noqa: S608
        return int(row["n"]) if row else 0
