"""Translate audit filters into a parameterised SELECT."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pathfinder_audit.audit.serialization import format_timestamp

AUDIT_TABLE = "audit_log"


class AuditQueryFilters(BaseModel):
    """Optional, AND-combined filters for audit retrieval.

    Accepts both snake_case names and the camelCase names used by the admin
    API (``startDate``, ``eventType``, ``minRiskScore`` ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    event_type: str | None = Field(default=None, alias="eventType")
    event_category: str | None = Field(default=None, alias="eventCategory")
    actor_id: str | None = Field(default=None, alias="actorId")
    target_id: str | None = Field(default=None, alias="targetId")
    min_risk_score: int | None = Field(default=None, ge=0, le=100, alias="minRiskScore")
    action_result: str | None = Field(default=None, alias="actionResult")
    limit: int | None = Field(default=None, ge=0)
    """``None`` or ``0`` means unbounded."""


# (filter attribute, column, operator)
_CLAUSES: tuple[tuple[str, str, str], ...] = (
    ("start_date", "event_timestamp", ">="),
    ("end_date", "event_timestamp", "<="),
    ("event_type", "event_type", "="),
    ("event_category", "event_category", "="),
    ("actor_id", "actor_id", "="),
    ("target_id", "target_id", "="),
    ("min_risk_score", "risk_score", ">="),
    ("action_result", "action_result", "="),
)


def build_audit_query(
    filters: AuditQueryFilters | Mapping[str, Any] | None = None,
    *,
    table: str = AUDIT_TABLE,
) -> tuple[str, dict[str, Any]]:
    """Return ``(sql, bindings)`` selecting matching rows, newest first.

    Bindings use named ``:param`` placeholders.  Datetimes are bound as UTC
    ISO-8601 text, the format rows are stored in.
    """
    if filters is None:
        parsed = AuditQueryFilters()
    elif isinstance(filters, AuditQueryFilters):
        parsed = filters
    else:
        parsed = AuditQueryFilters.model_validate(dict(filters))

    clauses: list[str] = []
    bindings: dict[str, Any] = {}
    for attr, column, op in _CLAUSES:
        value = getattr(parsed, attr)
        if value is None:
            continue
        if isinstance(value, datetime):
            value = format_timestamp(value)
        clauses.append(f"{column} {op} :{attr}")
        bindings[attr] = value

    sql = f"SELECT * FROM {table}"  # noqa: S608
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY event_timestamp DESC"
    if parsed.limit:
        sql += " LIMIT :limit"
        bindings["limit"] = parsed.limit
    return sql, bindings
