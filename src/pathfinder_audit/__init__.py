"""Pathfinder audit: tamper-evident audit and security-event pipeline."""

from pathfinder_audit.__version__ import __version__
from pathfinder_audit.alerting import AlertDispatcher, AlertSink, LogAlertSink, SecurityAlert
from pathfinder_audit.audit import (
    AuditEvent,
    AuditQueryFilters,
    AuditService,
    ComplianceReport,
    CriticalEventDetector,
    EventSeverity,
    RawAuditEvent,
    RetentionPolicy,
    build_audit_query,
    verify_chain,
)
from pathfinder_audit.core.config import AuditConfig
from pathfinder_audit.core.context import RequestContext, request_context
from pathfinder_audit.core.exceptions import (
    AuditError,
    AuditValidationError,
    ConfigurationError,
    RetentionError,
    SerializationError,
    StorageError,
)
from pathfinder_audit.data import DataSource, SQLiteDataSource
from pathfinder_audit.storage import AuditStore
from pathfinder_audit.utils.logging import configure_logging

__all__ = [
    "AlertDispatcher",
    "AlertSink",
    "AuditConfig",
    "AuditError",
    "AuditEvent",
    "AuditQueryFilters",
    "AuditService",
    "AuditStore",
    "AuditValidationError",
    "ComplianceReport",
    "ConfigurationError",
    "CriticalEventDetector",
    "DataSource",
    "EventSeverity",
    "LogAlertSink",
    "RawAuditEvent",
    "RequestContext",
    "RetentionError",
    "RetentionPolicy",
    "SQLiteDataSource",
    "SecurityAlert",
    "SerializationError",
    "StorageError",
    "__version__",
    "build_audit_query",
    "configure_logging",
    "request_context",
    "verify_chain",
]
