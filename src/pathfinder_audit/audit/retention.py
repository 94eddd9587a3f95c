"""Archival and purge of audit rows according to retention policies."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from pathfinder_audit.audit.models import RetentionPolicy
from pathfinder_audit.core.exceptions import RetentionError

if TYPE_CHECKING:
    from pathfinder_audit.storage.store import AuditStore

logger = structlog.get_logger(__name__)


class PolicyOutcome(BaseModel):
    policy_id: str
    event_type: str | None = None
    archived: int = 0
    purged: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RetentionRun(BaseModel):
    started_at: datetime
    outcomes: list[PolicyOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[PolicyOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def archived(self) -> int:
        return sum(o.archived for o in self.outcomes)

    @property
    def purged(self) -> int:
        return sum(o.purged for o in self.outcomes)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionManager:
    """Applies every active retention policy independently.

    Invoked by an external scheduler; it never schedules itself.  A policy
    that fails is recorded in the returned :class:`RetentionRun` and logged,
    and the remaining policies still run.
    """

    def __init__(self, store: AuditStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    async def apply_policy(self, policy: RetentionPolicy, now: datetime) -> PolicyOutcome:
        outcome = PolicyOutcome(policy_id=policy.id, event_type=policy.event_type)
        if policy.archive_after_days is not None:
            cutoff = now - timedelta(days=policy.archive_after_days)
            outcome.archived = await self._store.archive_events(policy, cutoff, now)
        if policy.delete_after_days is not None:
            cutoff = now - timedelta(days=policy.delete_after_days)
            outcome.purged = await self._store.purge_events(policy, cutoff)
        return outcome

    async def apply_retention_policies(
        self, policies: Sequence[RetentionPolicy] | None = None
    ) -> RetentionRun:
        """Archive then purge per policy.

        Args:
            policies: Explicit policies to apply; loaded from the store when
                omitted.

        Raises:
            RetentionError: The policy list itself could not be loaded.
        """
        now = self._clock()
        if policies is None:
            try:
                policies = await self._store.retention_policies(active_only=True)
            except Exception as exc:
                raise RetentionError(
                    f"Could not load retention policies: {exc}", code="RETENTION_LOAD"
                ) from exc

        run = RetentionRun(started_at=now)
        for policy in policies:
            if not policy.is_active:
                continue
            try:
                outcome = await self.apply_policy(policy, now)
            except Exception as exc:
                logger.exception(
                    "retention.policy_failed",
                    policy_id=policy.id,
                    event_type=policy.event_type,
                )
                outcome = PolicyOutcome(
                    policy_id=policy.id, event_type=policy.event_type, error=str(exc)
                )
            else:
                logger.info(
                    "retention.policy_applied",
                    policy_id=policy.id,
                    event_type=policy.event_type,
                    archived=outcome.archived,
                    purged=outcome.purged,
                )
            run.outcomes.append(outcome)
        return run
