"""Additive 0-100 risk scoring for enriched audit events."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog

from pathfinder_audit.audit.models import AuditEvent, DataSensitivity
from pathfinder_audit.core.config import AuditConfig

logger = structlog.get_logger(__name__)

ADMIN_ROLES = frozenset({"admin", "site_admin", "super_admin"})

AUTH_FAILURE_POINTS = 20
AUTHZ_FAILURE_POINTS = 30
RESTRICTED_DATA_POINTS = 25
DELETE_POINTS = 10
ADMIN_ROLE_POINTS = 15
OFF_HOURS_POINTS = 10
LARGE_EXPORT_POINTS = 25
LARGE_EXPORT_RECORDS = 1000
POINTS_PER_RECENT_FAILURE = 10
MAX_HISTORY_POINTS = 50


class FailureHistory(Protocol):
    """Lookup of recent authentication failures, implemented by the audit store."""

    async def count_recent_failures(
        self, actor_id: str | None, ip_address: str | None, since: datetime
    ) -> int: ...


def record_count(event: AuditEvent) -> int:
    """Number of records an export touched, from ``custom_data.record_count``."""
    data = event.custom_data
    if not isinstance(data, dict):
        return 0
    raw = data.get("record_count", data.get("recordCount", 0))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


class RiskScorer:
    """Scores events from their own attributes plus recent failure history.

    A failing history lookup is logged and the history component skipped;
    it never propagates to the caller.
    """

    def __init__(
        self,
        config: AuditConfig | None = None,
        history: FailureHistory | None = None,
    ) -> None:
        self._config = config or AuditConfig()
        self._history = history

    def is_off_hours(self, timestamp: datetime) -> bool:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        hour = timestamp.astimezone(self._config.zone).hour
        return self._config.off_hours_start <= hour < self._config.off_hours_end

    def base_score(self, event: AuditEvent) -> int:
        """Score from the event alone, without consulting history."""
        score = 0
        if event.event_type == "authentication" and event.is_failure:
            score += AUTH_FAILURE_POINTS
        if event.event_type == "authorization" and event.is_failure:
            score += AUTHZ_FAILURE_POINTS
        if event.data_sensitivity is DataSensitivity.RESTRICTED:
            score += RESTRICTED_DATA_POINTS
        if event.action == "delete":
            score += DELETE_POINTS
        if ADMIN_ROLES.intersection(event.actor_roles):
            score += ADMIN_ROLE_POINTS
        if self.is_off_hours(event.event_timestamp):
            score += OFF_HOURS_POINTS
        if event.action == "export" and record_count(event) > LARGE_EXPORT_RECORDS:
            score += LARGE_EXPORT_POINTS
        return score

    async def history_score(self, event: AuditEvent) -> int:
        if self._history is None:
            return 0
        if not (event.event_type == "authentication" and event.is_failure):
            return 0
        if not (event.actor_id or event.ip_address):
            return 0
        since = event.event_timestamp - timedelta(
            minutes=self._config.failure_window_minutes
        )
        try:
            failures = await self._history.count_recent_failures(
                event.actor_id, event.ip_address, since
            )
        except Exception:
            logger.warning(
                "risk.history_lookup_failed",
                actor_id=event.actor_id,
                exc_info=True,
            )
            return 0
        return min(max(failures, 0) * POINTS_PER_RECENT_FAILURE, MAX_HISTORY_POINTS)

    async def score(self, event: AuditEvent) -> int:
        total = self.base_score(event) + await self.history_score(event)
        return max(0, min(total, 100))
