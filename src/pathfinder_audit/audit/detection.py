"""Critical-event detection rules.

Each :class:`DetectionRule` inspects a scored :class:`AuditEvent` and returns
the threat type it recognised, or ``None``.  :class:`CriticalEventDetector`
evaluates its rules in order; the first match classifies the event as
critical and names the threat recorded in the
:class:`~pathfinder_audit.audit.models.CriticalEventRecord`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pathfinder_audit.audit.models import AuditEvent, CriticalEventRecord, EventSeverity
from pathfinder_audit.audit.risk import record_count

AUTH_FAILURE_RISK_THRESHOLD = 60
HIGH_RISK_THRESHOLD = 80
MASS_EXPORT_RECORDS = 10000


class DetectionRule(ABC):
    """Base class for critical-event rules."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Detection rule identifier stored with the critical record."""
        ...

    @property
    @abstractmethod
    def threat_type(self) -> str: ...

    @abstractmethod
    def matches(self, event: AuditEvent) -> bool:
        """Return ``True`` when *event* meets this rule."""
        ...


class AuthFailureRule(DetectionRule):
    """Authentication failure whose risk score indicates repeated attempts."""

    def __init__(self, threshold: int = AUTH_FAILURE_RISK_THRESHOLD) -> None:
        self._threshold = threshold

    @property
    def name(self) -> str:
        return "AUTH_FAILURE_THRESHOLD"

    @property
    def threat_type(self) -> str:
        return "brute_force_attempt"

    def matches(self, event: AuditEvent) -> bool:
        return (
            event.event_type == "authentication"
            and event.is_failure
            and event.risk_score >= self._threshold
        )


class AdminAuthorizationFailureRule(DetectionRule):
    """Authorization failure against an administrative resource."""

    @property
    def name(self) -> str:
        return "AUTHZ_VIOLATION"

    @property
    def threat_type(self) -> str:
        return "privilege_escalation_attempt"

    def matches(self, event: AuditEvent) -> bool:
        if not (event.event_type == "authorization" and event.is_failure):
            return False
        targets = (event.target_name or "", event.http_path or "", event.target_type or "")
        return event.action == "admin_access" or any("admin" in t.lower() for t in targets)


class UserDeletionRule(DetectionRule):
    def __init__(self, identity_tables: tuple[str, ...] = ("pf_users",)) -> None:
        self._identity_tables = identity_tables

    @property
    def name(self) -> str:
        return "SENSITIVE_DATA_DELETION"

    @property
    def threat_type(self) -> str:
        return "user_deletion"

    def matches(self, event: AuditEvent) -> bool:
        table = event.target_table or ""
        return event.action == "delete" and any(t in table for t in self._identity_tables)


class CriticalSeverityRule(DetectionRule):
    @property
    def name(self) -> str:
        return "CRITICAL_SEVERITY"

    @property
    def threat_type(self) -> str:
        return "critical_security_event"

    def matches(self, event: AuditEvent) -> bool:
        return event.event_severity is EventSeverity.CRITICAL


class HighRiskRule(DetectionRule):
    def __init__(self, threshold: int = HIGH_RISK_THRESHOLD) -> None:
        self._threshold = threshold

    @property
    def name(self) -> str:
        return "RISK_SCORE_THRESHOLD"

    @property
    def threat_type(self) -> str:
        return "high_risk_activity"

    def matches(self, event: AuditEvent) -> bool:
        return event.risk_score >= self._threshold


class MassExportRule(DetectionRule):
    @property
    def name(self) -> str:
        return "MASS_DATA_EXPORT"

    @property
    def threat_type(self) -> str:
        return "data_exfiltration_attempt"

    def matches(self, event: AuditEvent) -> bool:
        return event.action == "export" and record_count(event) > MASS_EXPORT_RECORDS


def default_rules(identity_tables: tuple[str, ...] = ("pf_users",)) -> list[DetectionRule]:
    return [
        AuthFailureRule(),
        AdminAuthorizationFailureRule(),
        UserDeletionRule(identity_tables),
        CriticalSeverityRule(),
        HighRiskRule(),
        MassExportRule(),
    ]


def assess_threat_level(event: AuditEvent) -> str:
    if event.risk_score >= 90:
        return "critical"
    if event.risk_score >= 70 or event.event_severity is EventSeverity.CRITICAL:
        return "high"
    if event.risk_score >= 50 or event.event_severity is EventSeverity.WARN:
        return "medium"
    return "low"


def confidence_level(event: AuditEvent) -> int:
    confidence = 50
    if event.event_type == "authentication" and event.is_failure:
        confidence += 20
    if event.risk_score >= HIGH_RISK_THRESHOLD:
        confidence += 20
    if event.event_severity is EventSeverity.CRITICAL:
        confidence += 10
    return min(confidence, 100)


class CriticalEventDetector:
    """Evaluates detection rules in order; any match makes the event critical."""

    def __init__(self, rules: list[DetectionRule] | None = None) -> None:
        self._rules: list[DetectionRule] = list(rules) if rules is not None else default_rules()

    def add_rule(self, rule: DetectionRule) -> CriticalEventDetector:
        """Append a rule after the built-in ones.  Returns ``self`` for chaining."""
        self._rules.append(rule)
        return self

    @property
    def rules(self) -> list[DetectionRule]:
        return list(self._rules)

    def first_match(self, event: AuditEvent) -> DetectionRule | None:
        for rule in self._rules:
            if rule.matches(event):
                return rule
        return None

    def is_critical(self, event: AuditEvent) -> bool:
        return self.first_match(event) is not None

    def build_record(self, event: AuditEvent) -> CriticalEventRecord | None:
        """Return the evidence record for *event*, or ``None`` if it is not critical."""
        rule = self.first_match(event)
        if rule is None:
            return None
        return CriticalEventRecord(
            audit_log_id=event.id,
            threat_type=rule.threat_type,
            threat_level=assess_threat_level(event),
            detection_rule=rule.name,
            detection_score=event.risk_score,
            confidence_level=confidence_level(event),
            indicators={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "action": event.action,
                "action_result": event.action_result,
                "actor_id": event.actor_id,
                "ip_address": event.ip_address,
                "target_table": event.target_table,
                "target_id": event.target_id,
            },
        )
