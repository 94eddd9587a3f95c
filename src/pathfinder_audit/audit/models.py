"""Audit event data models.

:class:`RawAuditEvent` is the boundary shape accepted by ``AuditService.log``:
six required classification fields plus optional context and payload
fields.  Enrichment turns it into an :class:`AuditEvent`, the immutable
record that is hashed, scored, buffered and finally written to storage.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pathfinder_audit.audit.serialization import dumps, format_timestamp


class EventSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, EventSeverity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, EventSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, EventSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, EventSeverity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER = [
    EventSeverity.DEBUG,
    EventSeverity.INFO,
    EventSeverity.WARN,
    EventSeverity.CRITICAL,
]


class DataSensitivity(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class ComplianceTag(str, Enum):
    HIPAA = "HIPAA"
    GDPR = "GDPR"
    SOC2 = "SOC2"


REQUIRED_FIELDS: tuple[str, ...] = (
    "event_type",
    "event_category",
    "event_severity",
    "event_name",
    "action",
    "action_result",
)

PAYLOAD_FIELDS: tuple[str, ...] = ("old_values", "new_values", "changed_fields", "custom_data")


class RawAuditEvent(BaseModel):
    """Caller-supplied event fields, validated at the ``log()`` boundary."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    event_type: str = Field(min_length=1)
    event_category: str = Field(min_length=1)
    event_severity: EventSeverity
    event_name: str = Field(min_length=1)
    action: str = Field(min_length=1)
    action_result: str = Field(min_length=1)

    event_description: str | None = None
    event_timestamp: datetime | None = None

    actor_type: str | None = None
    actor_id: str | None = None
    actor_username: str | None = None
    actor_roles: list[str] = Field(default_factory=list)

    target_type: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    target_table: str | None = None

    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    session_id: str | None = None
    http_method: str | None = None
    http_path: str | None = None
    http_status_code: int | None = None
    response_time_ms: int | None = None

    error_code: str | None = None
    error_message: str | None = None

    old_values: Any = None
    new_values: Any = None
    changed_fields: Any = None
    custom_data: Any = None

    @field_validator("actor_roles", mode="before")
    @classmethod
    def _roles_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            # Already-serialised role lists arrive from older callers.
            try:
                parsed = json.loads(value)
            except ValueError:
                return [value]
            return parsed if isinstance(parsed, list) else [str(parsed)]
        if isinstance(value, (set, frozenset, tuple)):
            return sorted(str(v) for v in value)
        return value

    @field_validator("actor_id", "target_id", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class AuditEvent(RawAuditEvent):
    """An enriched, immutable audit record.

    Created by :class:`~pathfinder_audit.audit.enrichment.EventEnricher`;
    ``risk_score``, ``event_hash`` and ``previous_hash`` are filled in by the
    service before the event is buffered.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_id: str
    event_timestamp: datetime
    processing_timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    actor_type: str = "system"

    application_name: str | None = None
    application_version: str | None = None

    data_sensitivity: DataSensitivity = DataSensitivity.INTERNAL
    compliance_tags: tuple[ComplianceTag, ...] = ()
    risk_score: int = Field(default=0, ge=0, le=100)

    event_hash: str | None = None
    previous_hash: str | None = None

    @property
    def is_failure(self) -> bool:
        return self.action_result == "failure"

    def to_row(self) -> dict[str, Any]:
        """Flatten the event into column/value pairs for the ``audit_log`` table."""
        row: dict[str, Any] = {
            "id": self.id,
            "event_id": self.event_id,
            "event_timestamp": format_timestamp(self.event_timestamp),
            "processing_timestamp": format_timestamp(self.processing_timestamp),
            "event_type": self.event_type,
            "event_category": self.event_category,
            "event_severity": self.event_severity.value,
            "event_name": self.event_name,
            "event_description": self.event_description,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "actor_username": self.actor_username,
            "actor_roles": dumps(self.actor_roles),
            "target_type": self.target_type,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "target_table": self.target_table,
            "action": self.action,
            "action_result": self.action_result,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "data_sensitivity": self.data_sensitivity.value,
            "request_id": self.request_id,
            "correlation_id": self.correlation_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "application_name": self.application_name,
            "application_version": self.application_version,
            "http_method": self.http_method,
            "http_path": self.http_path,
            "http_status_code": self.http_status_code,
            "response_time_ms": self.response_time_ms,
            "risk_score": self.risk_score,
            "compliance_frameworks": dumps([t.value for t in self.compliance_tags]),
            "event_hash": self.event_hash,
            "previous_hash": self.previous_hash,
        }
        for name in PAYLOAD_FIELDS:
            value = getattr(self, name)
            row[name] = None if value is None else dumps(value)
        return row


class CriticalEventRecord(BaseModel):
    """Evidence row written for every event classified as critical."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    audit_log_id: str
    threat_type: str
    threat_level: str
    detection_rule: str
    detection_score: int = Field(ge=0, le=100)
    confidence_level: int = Field(ge=0, le=100)
    indicators: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "audit_log_id": self.audit_log_id,
            "threat_type": self.threat_type,
            "threat_level": self.threat_level,
            "detection_rule": self.detection_rule,
            "detection_score": self.detection_score,
            "confidence_level": self.confidence_level,
            "indicators": dumps(self.indicators),
            "created_at": format_timestamp(self.created_at),
        }


class RetentionPolicy(BaseModel):
    """How long events of one type stay live before archival and purge.

    ``event_type`` of ``None`` or ``"*"`` applies the policy to every type.
    ``None`` for either day count disables that phase of the policy.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    event_type: str | None = None
    archive_after_days: int | None = Field(default=None, ge=0)
    delete_after_days: int | None = Field(default=None, ge=0)
    is_active: bool = True
    priority: int = 100

    @property
    def matches_all_types(self) -> bool:
        return self.event_type in (None, "", "*")
