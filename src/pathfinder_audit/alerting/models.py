"""Security alert model published for every critical audit event."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from pathfinder_audit.audit.models import AuditEvent, CriticalEventRecord


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LEVEL_TO_SEVERITY = {
    "critical": AlertSeverity.CRITICAL,
    "high": AlertSeverity.CRITICAL,
    "medium": AlertSeverity.WARNING,
    "low": AlertSeverity.INFO,
}


class SecurityAlert(BaseModel):
    """Notification describing one critical audit event."""

    alert_id: str = Field(default_factory=lambda: uuid4().hex[:16])
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    severity: AlertSeverity = AlertSeverity.CRITICAL
    audit_log_id: str
    event_id: str | None = None
    threat_type: str
    threat_level: str
    detection_rule: str | None = None
    summary: str
    actor: str | None = None
    ip_address: str | None = None
    action: str | None = None
    target: str | None = None
    risk_score: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: AuditEvent, record: CriticalEventRecord) -> SecurityAlert:
        actor = event.actor_username or event.actor_id
        target = event.target_name or event.target_id or event.target_table
        summary = (
            f"{record.threat_type}: {event.event_name} "
            f"(actor={actor or 'unknown'}, action={event.action}, "
            f"target={target or 'n/a'}, risk={event.risk_score})"
        )
        return cls(
            severity=_LEVEL_TO_SEVERITY.get(record.threat_level, AlertSeverity.WARNING),
            audit_log_id=event.id,
            event_id=event.event_id,
            threat_type=record.threat_type,
            threat_level=record.threat_level,
            detection_rule=record.detection_rule,
            summary=summary,
            actor=actor,
            ip_address=event.ip_address,
            action=event.action,
            target=target,
            risk_score=event.risk_score,
            metadata={"confidence_level": record.confidence_level},
        )
