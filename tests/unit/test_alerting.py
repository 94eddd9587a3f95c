"""Tests for alerting/: security alerts, sinks, and the dispatcher."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from pathfinder_audit.alerting.manager import AlertDispatcher
from pathfinder_audit.alerting.models import AlertSeverity, SecurityAlert
from pathfinder_audit.alerting.sinks import (
    AlertSink,
    LogAlertSink,
    PagerDutyAlertSink,
    SlackAlertSink,
    WebhookAlertSink,
    webhook_payload,
)
from pathfinder_audit.audit.detection import CriticalEventDetector
from pathfinder_audit.audit.enrichment import EventEnricher


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_alert(
    severity: AlertSeverity = AlertSeverity.WARNING,
    threat_type: str = "brute_force_attempt",
    actor: str | None = "u-1",
) -> SecurityAlert:
    return SecurityAlert(
        severity=severity,
        audit_log_id="log-1",
        threat_type=threat_type,
        threat_level="high",
        summary="brute_force_attempt: User Login (actor=u-1)",
        actor=actor,
        ip_address="203.0.113.7",
    )


def _mock_http(monkeypatch: pytest.MonkeyPatch, status_code: int = 200) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status_code = status_code

    mock_client_instance = AsyncMock()
    mock_client_instance.post = AsyncMock(return_value=mock_response)
    mock_client_instance.__aenter__ = AsyncMock(return_value=mock_client_instance)
    mock_client_instance.__aexit__ = AsyncMock(return_value=None)

    monkeypatch.setattr(httpx, "AsyncClient", lambda: mock_client_instance)
    return mock_client_instance


class RecordingSink(AlertSink):
    """Sink that records all alerts for testing."""

    def __init__(self) -> None:
        self.alerts: list[SecurityAlert] = []

    async def send(self, alert: SecurityAlert) -> bool:
        self.alerts.append(alert)
        return True


class BrokenSink(AlertSink):
    """Sink that always raises."""

    async def send(self, alert: SecurityAlert) -> bool:
        raise RuntimeError("sink exploded")


# ---------------------------------------------------------------------------
# SecurityAlert
# ---------------------------------------------------------------------------


def test_alert_from_event(make_event) -> None:
    event = EventEnricher().enrich(
        make_event(
            event_name="User Deleted",
            action="delete",
            target_table="pf_users",
            target_id="u-77",
            actor_username="alice",
        )
    )
    event = event.model_copy(update={"risk_score": 35})
    record = CriticalEventDetector().build_record(event)
    assert record is not None

    alert = SecurityAlert.from_event(event, record)

    assert alert.audit_log_id == event.id
    assert alert.event_id == event.event_id
    assert alert.threat_type == "user_deletion"
    assert alert.severity is AlertSeverity.INFO
    assert alert.actor == "alice"
    assert alert.target == "u-77"
    assert alert.risk_score == 35
    assert alert.summary == (
        "user_deletion: User Deleted (actor=alice, action=delete, target=u-77, risk=35)"
    )
    assert alert.metadata == {"confidence_level": record.confidence_level}


def test_alert_severity_follows_threat_level(make_event) -> None:
    event = EventEnricher().enrich(make_event(event_severity="critical"))
    record = CriticalEventDetector().build_record(event)
    assert record is not None
    assert record.threat_level == "high"
    assert SecurityAlert.from_event(event, record).severity is AlertSeverity.CRITICAL


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


async def test_log_sink() -> None:
    assert await LogAlertSink().send(_make_alert()) is True


async def test_webhook_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_http(monkeypatch)

    sink = WebhookAlertSink(url="https://example.com/alerts", headers={"X-Key": "123"})
    result = await sink.send(_make_alert())

    assert result is True
    client.post.assert_called_once()
    call_kwargs = client.post.call_args
    assert call_kwargs.args[0] == "https://example.com/alerts"
    assert call_kwargs.kwargs["headers"] == {"X-Key": "123"}
    payload = call_kwargs.kwargs["json"]
    assert payload["type"] == "audit.security_alert"
    assert payload["source"] == "pathfinder-audit"
    assert payload["audit_log_id"] == "log-1"
    assert payload["severity"] == "warning"
    assert payload["threat"] == {
        "type": "brute_force_attempt",
        "level": "high",
        "rule": None,
        "risk_score": 0,
    }
    assert payload["subject"]["actor"] == "u-1"
    assert payload["subject"]["ip_address"] == "203.0.113.7"


def test_webhook_payload_carries_alert_identity() -> None:
    alert = _make_alert()
    payload = webhook_payload(alert, source="pathfinder-api")
    assert payload["alert_id"] == alert.alert_id
    assert payload["timestamp"] == alert.timestamp.isoformat()
    assert payload["source"] == "pathfinder-api"
    assert payload["summary"] == alert.summary


async def test_webhook_sink_error_status(monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_http(monkeypatch, status_code=500)
    sink = WebhookAlertSink(url="https://example.com/alerts")
    assert await sink.send(_make_alert()) is False


async def test_webhook_sink_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_http(monkeypatch)
    client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
    sink = WebhookAlertSink(url="https://example.com/alerts")
    assert await sink.send(_make_alert()) is False


async def test_slack_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_http(monkeypatch)

    sink = SlackAlertSink(webhook_url="https://hooks.slack.com/services/T/B/X")
    result = await sink.send(_make_alert(severity=AlertSeverity.CRITICAL))

    assert result is True
    payload = client.post.call_args.kwargs["json"]
    assert payload["text"].startswith(":rotating_light: *[HIGH] brute_force_attempt*")
    assert "Source IP: `203.0.113.7`" in payload["text"]


async def test_pagerduty_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _mock_http(monkeypatch, status_code=202)

    sink = PagerDutyAlertSink(routing_key="test-routing-key")
    result = await sink.send(_make_alert(severity=AlertSeverity.CRITICAL))

    assert result is True
    call_kwargs = client.post.call_args
    assert call_kwargs.args[0] == PagerDutyAlertSink.EVENTS_URL
    payload = call_kwargs.kwargs["json"]
    assert payload["routing_key"] == "test-routing-key"
    assert payload["payload"]["severity"] == "critical"
    assert payload["payload"]["source"] == "pathfinder-audit"
    assert payload["dedup_key"] == "pathfinder-brute_force_attempt-log-1"


# ---------------------------------------------------------------------------
# AlertDispatcher
# ---------------------------------------------------------------------------


async def test_publish_only_enqueues() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink)

    assert dispatcher.publish(_make_alert()) is True
    assert dispatcher.pending == 1
    assert sink.alerts == []

    await dispatcher.drain()
    assert dispatcher.pending == 0
    assert len(sink.alerts) == 1


async def test_full_queue_drops_alert() -> None:
    dispatcher = AlertDispatcher(maxsize=1)
    assert dispatcher.publish(_make_alert()) is True
    assert dispatcher.publish(_make_alert()) is False
    assert dispatcher.dropped == 1
    assert dispatcher.pending == 1


async def test_dispatches_to_all_sinks() -> None:
    sink1, sink2 = RecordingSink(), RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink1).add_sink(sink2)
    await dispatcher.deliver(_make_alert())
    assert len(sink1.alerts) == 1
    assert len(sink2.alerts) == 1


async def test_broken_sink_does_not_block_others() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(BrokenSink()).add_sink(sink)
    await dispatcher.deliver(_make_alert())
    assert len(sink.alerts) == 1


async def test_subscribe_and_unsubscribe() -> None:
    received: list[str] = []

    async def on_alert(alert: SecurityAlert) -> None:
        received.append(alert.threat_type)

    dispatcher = AlertDispatcher()
    unsubscribe = dispatcher.subscribe(on_alert)
    sync_seen: list[SecurityAlert] = []
    dispatcher.subscribe(sync_seen.append)

    await dispatcher.deliver(_make_alert())
    unsubscribe()
    unsubscribe()
    await dispatcher.deliver(_make_alert())

    assert received == ["brute_force_attempt"]
    assert len(sync_seen) == 2


async def test_failing_listener_is_isolated() -> None:
    def explode(alert: SecurityAlert) -> None:
        raise ValueError("listener failed")

    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink)
    dispatcher.subscribe(explode)
    await dispatcher.deliver(_make_alert())
    assert len(sink.alerts) == 1


async def test_cooldown_suppresses_repeats() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink).set_cooldown(9999)

    await dispatcher.deliver(_make_alert())
    await dispatcher.deliver(_make_alert())
    await dispatcher.deliver(_make_alert(actor="u-2"))
    await dispatcher.deliver(_make_alert(threat_type="user_deletion"))

    assert [(a.threat_type, a.actor) for a in sink.alerts] == [
        ("brute_force_attempt", "u-1"),
        ("brute_force_attempt", "u-2"),
        ("user_deletion", "u-1"),
    ]


async def test_no_cooldown_by_default() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink)
    await dispatcher.deliver(_make_alert())
    await dispatcher.deliver(_make_alert())
    assert len(sink.alerts) == 2


async def test_worker_delivers_in_background() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink)
    dispatcher.start()
    assert dispatcher.running
    try:
        dispatcher.publish(_make_alert())
        await asyncio.wait_for(dispatcher.drain(), timeout=1.0)
        assert len(sink.alerts) == 1
    finally:
        await dispatcher.stop()
    assert not dispatcher.running


async def test_stop_delivers_pending_alerts() -> None:
    sink = RecordingSink()
    dispatcher = AlertDispatcher().add_sink(sink)
    dispatcher.publish(_make_alert())
    dispatcher.publish(_make_alert())
    await dispatcher.stop()
    assert len(sink.alerts) == 2
