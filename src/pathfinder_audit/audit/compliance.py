"""Framework-oriented compliance reporting over stored audit events."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from pathfinder_audit.audit.integrity import verify_event_integrity

if TYPE_CHECKING:
    from pathfinder_audit.storage.store import AuditStore

logger = structlog.get_logger(__name__)

Row = dict[str, Any]
Check = Callable[[Sequence[Row]], bool]

HIGH_RISK_SCORE = 70
AUTH_FAILURE_ALERT_COUNT = 5
FAILURE_RATE_THRESHOLD = 0.1
CORE_EVENT_TYPES = ("authentication", "authorization", "data_access", "data_modification")

FRAMEWORK_REQUIREMENTS: dict[str, list[tuple[str, Check]]] = {
    "HIPAA": [
        ("audit_controls", lambda events: len(events) > 0),
        ("access_tracking", lambda events: any(e.get("event_type") == "data_access" for e in events)),
        ("integrity_verification", lambda events: all(verify_event_integrity(e) for e in events)),
    ],
    "GDPR": [
        ("processing_records", lambda events: any(e.get("event_type") == "data_modification" for e in events)),
        ("deletion_capability", lambda events: any(e.get("action") == "delete" for e in events)),
        ("access_logs", lambda events: any(e.get("event_type") == "data_access" for e in events)),
    ],
    "SOC2": [
        ("logical_access", lambda events: any(e.get("event_type") == "authentication" for e in events)),
        ("change_management", lambda events: any(e.get("event_type") == "configuration" for e in events)),
        ("incident_response", lambda events: any(e.get("event_severity") == "critical" for e in events)),
    ],
}  # fmt: skip


class ReportPeriod(BaseModel):
    start: datetime
    end: datetime


class ReportSummary(BaseModel):
    total_events: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_result: dict[str, int] = Field(default_factory=dict)


class ComplianceReport(BaseModel):
    framework: str
    period: ReportPeriod
    generated_at: datetime
    summary: ReportSummary
    critical_events: list[Row] = Field(default_factory=list)
    failed_actions: list[Row] = Field(default_factory=list)
    high_risk_events: list[Row] = Field(default_factory=list)
    compliance_status: dict[str, str] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)


def _group_by(events: Sequence[Row], field: str) -> dict[str, int]:
    return dict(Counter(str(e.get(field) or "unknown") for e in events))


def assess_compliance(events: Sequence[Row], framework: str) -> dict[str, str]:
    """Checklist for *framework*; an unknown framework yields ``{}``."""
    return {
        name: "compliant" if check(events) else "non-compliant"
        for name, check in FRAMEWORK_REQUIREMENTS.get(framework.upper(), [])
    }


def generate_recommendations(events: Sequence[Row]) -> list[str]:
    """One recommendation per risk pattern found in *events*."""
    if not events:
        return []
    recommendations: list[str] = []

    seen_types = {e.get("event_type") for e in events}
    for event_type in CORE_EVENT_TYPES:
        if event_type not in seen_types:
            recommendations.append(f"Ensure {event_type} events are being logged")

    auth_failures = sum(
        1
        for e in events
        if e.get("event_type") == "authentication" and e.get("action_result") == "failure"
    )
    if auth_failures >= AUTH_FAILURE_ALERT_COUNT:
        recommendations.append(
            f"{auth_failures} failed authentication attempts detected - "
            "review account lockout and brute-force protections"
        )

    failures = sum(1 for e in events if e.get("action_result") == "failure")
    if failures / len(events) > FAILURE_RATE_THRESHOLD:
        recommendations.append("High failure rate detected - review security controls")

    critical = sum(1 for e in events if e.get("event_severity") == "critical")
    if critical:
        recommendations.append(f"{critical} critical events require investigation")

    unverified = sum(1 for e in events if not verify_event_integrity(e))
    if unverified:
        recommendations.append(
            f"{unverified} events failed integrity verification - investigate possible tampering"
        )
    return recommendations


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ComplianceReporter:
    """Builds :class:`ComplianceReport` objects from the audit store.

    Known frameworks (HIPAA, GDPR, SOC2) report on events tagged with that
    framework; any other name reports on every event in the period with an
    empty checklist.
    """

    def __init__(self, store: AuditStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    async def load_events(self, framework: str, start: datetime, end: datetime) -> list[Row]:
        tag = framework.upper() if framework.upper() in FRAMEWORK_REQUIREMENTS else None
        return await self._store.events_between(start, end, framework=tag)

    async def generate_compliance_report(
        self, framework: str, start: datetime, end: datetime
    ) -> ComplianceReport:
        events = await self.load_events(framework, start, end)
        report = ComplianceReport(
            framework=framework,
            period=ReportPeriod(start=start, end=end),
            generated_at=self._clock(),
            summary=ReportSummary(
                total_events=len(events),
                by_type=_group_by(events, "event_type"),
                by_severity=_group_by(events, "event_severity"),
                by_result=_group_by(events, "action_result"),
            ),
            critical_events=[e for e in events if e.get("event_severity") == "critical"],
            failed_actions=[e for e in events if e.get("action_result") == "failure"],
            high_risk_events=[e for e in events if (e.get("risk_score") or 0) >= HIGH_RISK_SCORE],
            compliance_status=assess_compliance(events, framework),
            recommendations=generate_recommendations(events),
        )
        logger.info(
            "compliance.report_generated",
            framework=framework,
            total_events=len(events),
            recommendations=len(report.recommendations),
        )
        return report
