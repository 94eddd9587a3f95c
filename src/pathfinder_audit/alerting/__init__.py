"""Security alert delivery for critical audit events."""
from __future__ import annotations

from pathfinder_audit.alerting.manager import AlertDispatcher, AlertListener
from pathfinder_audit.alerting.models import AlertSeverity, SecurityAlert
from pathfinder_audit.alerting.sinks import (
    AlertSink,
    LogAlertSink,
    PagerDutyAlertSink,
    SlackAlertSink,
    WebhookAlertSink,
)

__all__ = [
    "AlertDispatcher",
    "AlertListener",
    "AlertSeverity",
    "AlertSink",
    "LogAlertSink",
    "PagerDutyAlertSink",
    "SecurityAlert",
    "SlackAlertSink",
    "WebhookAlertSink",
]
