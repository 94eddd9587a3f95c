"""Tamper-evident audit pipeline."""
from __future__ import annotations

from pathfinder_audit.audit.compliance import ComplianceReport, ComplianceReporter
from pathfinder_audit.audit.detection import CriticalEventDetector, DetectionRule, default_rules
from pathfinder_audit.audit.enrichment import EventEnricher
from pathfinder_audit.audit.fallback import FallbackLog
from pathfinder_audit.audit.integrity import (
    ChainVerification,
    IntegrityChain,
    compute_event_hash,
    verify_chain,
    verify_event_integrity,
)
from pathfinder_audit.audit.models import (
    AuditEvent,
    ComplianceTag,
    CriticalEventRecord,
    DataSensitivity,
    EventSeverity,
    RawAuditEvent,
    RetentionPolicy,
)
from pathfinder_audit.audit.query import AuditQueryFilters, build_audit_query
from pathfinder_audit.audit.retention import PolicyOutcome, RetentionManager, RetentionRun
from pathfinder_audit.audit.risk import RiskScorer
from pathfinder_audit.audit.service import AuditService, ServiceStats

__all__ = [
    "AuditEvent",
    "AuditQueryFilters",
    "AuditService",
    "ChainVerification",
    "ComplianceReport",
    "ComplianceReporter",
    "ComplianceTag",
    "CriticalEventDetector",
    "CriticalEventRecord",
    "DataSensitivity",
    "DetectionRule",
    "EventEnricher",
    "EventSeverity",
    "FallbackLog",
    "IntegrityChain",
    "PolicyOutcome",
    "RawAuditEvent",
    "RetentionManager",
    "RetentionPolicy",
    "RetentionRun",
    "RiskScorer",
    "ServiceStats",
    "build_audit_query",
    "compute_event_hash",
    "default_rules",
    "verify_chain",
    "verify_event_integrity",
]
