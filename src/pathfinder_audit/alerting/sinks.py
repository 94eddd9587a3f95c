"""Alert sinks for delivering security alerts to various destinations."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from pathfinder_audit.alerting.models import SecurityAlert

logger = structlog.get_logger(__name__)


class AlertSink(ABC):
    """Base class for alert delivery sinks."""

    @abstractmethod
    async def send(self, alert: SecurityAlert) -> bool:
        """Send an alert. Return ``True`` on success, ``False`` on failure."""
        ...


class LogAlertSink(AlertSink):
    """Logs alerts via structlog. Always available, no external dependencies."""

    async def send(self, alert: SecurityAlert) -> bool:
        logger.warning(
            "security_alert",
            alert_id=alert.alert_id,
            severity=alert.severity.value,
            threat_type=alert.threat_type,
            threat_level=alert.threat_level,
            summary=alert.summary,
            actor=alert.actor,
            ip_address=alert.ip_address,
            risk_score=alert.risk_score,
        )
        return True


def webhook_payload(alert: SecurityAlert, source: str = "pathfinder-audit") -> dict[str, Any]:
    """Envelope posted by :class:`WebhookAlertSink`, grouped by concern."""
    return {
        "type": "audit.security_alert",
        "source": source,
        "alert_id": alert.alert_id,
        "timestamp": alert.timestamp.isoformat(),
        "severity": alert.severity.value,
        "audit_log_id": alert.audit_log_id,
        "event_id": alert.event_id,
        "threat": {
            "type": alert.threat_type,
            "level": alert.threat_level,
            "rule": alert.detection_rule,
            "risk_score": alert.risk_score,
        },
        "subject": {
            "actor": alert.actor,
            "ip_address": alert.ip_address,
            "action": alert.action,
            "target": alert.target,
        },
        "summary": alert.summary,
        "metadata": alert.metadata,
    }


class WebhookAlertSink(AlertSink):
    """POSTs a JSON alert envelope to an arbitrary HTTP endpoint (SIEM, chat-ops bridge)."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        source: str = "pathfinder-audit",
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._source = source

    async def send(self, alert: SecurityAlert) -> bool:
        payload = webhook_payload(alert, self._source)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self._url,
                    json=payload,
                    headers=self._headers,
                    timeout=10.0,
                )
                return resp.status_code < 400  # noqa: PLR2004
        except Exception as exc:  # noqa: BLE001
            logger.error("webhook_sink_error", url=self._url, error=str(exc))
            return False


class SlackAlertSink(AlertSink):
    """Sends alerts to Slack via an incoming webhook URL."""

    def __init__(self, webhook_url: str) -> None:
        self._webhook_url = webhook_url

    async def send(self, alert: SecurityAlert) -> bool:
        severity_emoji: dict[str, str] = {
            "info": ":information_source:",
            "warning": ":warning:",
            "critical": ":rotating_light:",
        }
        emoji = severity_emoji.get(alert.severity.value, ":bell:")
        text = (
            f"{emoji} *[{alert.threat_level.upper()}] {alert.threat_type}*\n"
            f"{alert.summary}"
        )
        if alert.ip_address:
            text += f"\nSource IP: `{alert.ip_address}`"

        payload: dict[str, Any] = {"text": text}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._webhook_url, json=payload, timeout=10.0)
                return resp.status_code < 400  # noqa: PLR2004
        except Exception as exc:  # noqa: BLE001
            logger.error("slack_sink_error", error=str(exc))
            return False


class PagerDutyAlertSink(AlertSink):
    """Sends alerts to PagerDuty Events API v2."""

    EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"

    def __init__(self, routing_key: str, source: str = "pathfinder-audit") -> None:
        self._routing_key = routing_key
        self._source = source

    async def send(self, alert: SecurityAlert) -> bool:
        payload: dict[str, Any] = {
            "routing_key": self._routing_key,
            "event_action": "trigger",
            "payload": {
                "summary": alert.summary,
                "severity": alert.severity.value,
                "source": self._source,
                "custom_details": alert.model_dump(mode="json"),
            },
            "dedup_key": f"pathfinder-{alert.threat_type}-{alert.audit_log_id}",
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.EVENTS_URL, json=payload, timeout=10.0)
                return resp.status_code < 400  # noqa: PLR2004
        except Exception as exc:  # noqa: BLE001
            logger.error("pagerduty_sink_error", error=str(exc))
            return False
