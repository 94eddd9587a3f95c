"""The audit pipeline: validate, enrich, score, chain, buffer and flush.

Typical wiring::

    source = SQLiteDataSource("audit.db")
    await source.connect()
    store = AuditStore(source)
    await store.create_schema()

    async with AuditService(store, AuditConfig.from_env()) as audit:
        event_id = await audit.log({
            "event_type": "authentication",
            "event_category": "security",
            "event_severity": "info",
            "event_name": "User Login",
            "action": "login",
            "action_result": "success",
            "actor_id": "u-42",
        })
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from pathfinder_audit.alerting.manager import AlertDispatcher
from pathfinder_audit.alerting.models import SecurityAlert
from pathfinder_audit.alerting.sinks import LogAlertSink
from pathfinder_audit.audit.compliance import ComplianceReport, ComplianceReporter
from pathfinder_audit.audit.detection import CriticalEventDetector, default_rules
from pathfinder_audit.audit.enrichment import EventEnricher
from pathfinder_audit.audit.fallback import FallbackLog
from pathfinder_audit.audit.integrity import (
    ChainVerification,
    IntegrityChain,
    verify_chain,
    verify_event_integrity,
)
from pathfinder_audit.audit.models import AuditEvent, CriticalEventRecord, RawAuditEvent
from pathfinder_audit.audit.query import AuditQueryFilters, build_audit_query
from pathfinder_audit.audit.retention import RetentionManager, RetentionRun
from pathfinder_audit.audit.risk import RiskScorer
from pathfinder_audit.core.config import AuditConfig
from pathfinder_audit.core.exceptions import AuditError

if TYPE_CHECKING:
    from pathfinder_audit.storage.store import AuditStore

logger = structlog.get_logger(__name__)


class ServiceStats(BaseModel):
    """Counters exposed for health checks and tests."""

    logged: int = 0
    flushes: int = 0
    events_written: int = 0
    flush_failures: int = 0
    fallback_failures: int = 0
    critical_events: int = 0


class AuditService:
    """Tamper-evident, buffered audit logger.

    ``log()`` returns as soon as the event is buffered, except when the
    buffer has reached ``buffer_size`` or the event is critical: then the
    flush is awaited before returning.  A datastore failure during a flush
    keeps the events buffered for the next attempt and copies them to the
    fallback log; it is never raised to ``log()`` callers.

    The hash chain pointer and the buffer belong to this instance only, so
    independent services never share a chain.
    """

    def __init__(
        self,
        store: AuditStore,
        config: AuditConfig | None = None,
        *,
        dispatcher: AlertDispatcher | None = None,
        detector: CriticalEventDetector | None = None,
        fallback: FallbackLog | None = None,
    ) -> None:
        self._config = config or AuditConfig()
        self._store = store
        store.max_batch_size = self._config.max_batch_size
        self._enricher = EventEnricher(self._config)
        self._scorer = RiskScorer(self._config, history=store)
        self._detector = detector or CriticalEventDetector(
            default_rules(self._config.identity_tables)
        )
        self._chain = IntegrityChain()
        self._dispatcher = dispatcher or AlertDispatcher(self._config.alert_queue_size).add_sink(
            LogAlertSink()
        )
        self._fallback = fallback or FallbackLog(self._config.fallback_log_path)
        self.retention = RetentionManager(store)
        self.reporter = ComplianceReporter(store)

        self._buffer: list[AuditEvent] = []
        self._buffer_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task[None] | None = None
        self._stopped = False
        self.stats = ServiceStats()

    # -- accessors ----------------------------------------------------------

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def store(self) -> AuditStore:
        return self._store

    @property
    def alerts(self) -> AlertDispatcher:
        return self._dispatcher

    @property
    def detector(self) -> CriticalEventDetector:
        return self._detector

    @property
    def chain(self) -> IntegrityChain:
        return self._chain

    @property
    def buffered(self) -> list[AuditEvent]:
        """Snapshot of events not yet written to the datastore."""
        return list(self._buffer)

    @property
    def running(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    # -- ingestion ----------------------------------------------------------

    async def log(self, event: RawAuditEvent | Mapping[str, Any]) -> str:
        """Record *event* and return its generated ``id``.

        Raises:
            AuditValidationError: A required field is missing or empty, or a
                field has the wrong type.  Nothing is buffered.
            SerializationError: A payload field cannot be serialised.
            AuditError: The service has been shut down.
        """
        if self._stopped:
            raise AuditError("Audit service is shut down", code="AUDIT_STOPPED")

        enriched = self._enricher.enrich(event)
        score = await self._scorer.score(enriched)
        scored = enriched.model_copy(update={"risk_score": score})
        record = self._detector.build_record(scored)

        # No awaits between linking and appending: buffer order is chain order.
        async with self._buffer_lock:
            linked = self._chain.link(scored)
            self._buffer.append(linked)
            buffer_full = len(self._buffer) >= self._config.buffer_size
        self.stats.logged += 1

        if record is not None or buffer_full:
            await self.flush()
        if record is not None:
            await self._handle_critical(linked, record)
        return linked.id

    async def _handle_critical(self, event: AuditEvent, record: CriticalEventRecord) -> None:
        self.stats.critical_events += 1
        try:
            await self._store.insert_critical_event(record)
        except Exception as exc:
            logger.exception(
                "audit.critical_record_failed", audit_log_id=event.id, threat=record.threat_type
            )
            entry = {**event.model_dump(mode="json"), "critical_event_error": str(exc)}
            await self._fallback.write([entry], exc)

        alert = SecurityAlert.from_event(event, record)
        self._dispatcher.publish(alert)
        logger.warning(
            "audit.critical_event",
            audit_log_id=event.id,
            threat_type=record.threat_type,
            threat_level=record.threat_level,
            risk_score=event.risk_score,
        )

    # -- flushing -----------------------------------------------------------

    async def flush(self) -> int:
        """Write everything currently buffered in one batch.

        Only one flush writes at a time; a concurrent call waits and then
        flushes whatever is still buffered.  Events appended while a write is
        in flight stay buffered for the next flush.

        Returns:
            Number of events written (``0`` on failure or empty buffer).
        """
        async with self._flush_lock:
            async with self._buffer_lock:
                batch = list(self._buffer)
            if not batch:
                return 0

            self.stats.flushes += 1
            try:
                await self._store.write_batch(batch)
            except Exception as exc:
                self.stats.flush_failures += 1
                logger.error(
                    "audit.flush_failed", count=len(batch), error=str(exc), exc_info=True
                )
                # Every failed attempt is recorded with its own error.
                if await self._fallback.write(batch, exc) < len(batch):
                    self.stats.fallback_failures += 1
                return 0

            async with self._buffer_lock:
                # Failed batches never leave the head of the buffer, so the
                # flushed events are exactly the first len(batch) entries.
                del self._buffer[: len(batch)]
            self.stats.events_written += len(batch)
            logger.debug("audit.flushed", count=len(batch))
            return len(batch)

    async def _flush_periodically(self) -> None:
        interval = self._config.flush_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("audit.periodic_flush_error")

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic flusher and the alert worker."""
        if self._stopped:
            raise AuditError("Audit service is shut down", code="AUDIT_STOPPED")
        if self.running:
            return
        self._dispatcher.start()
        self._flush_task = asyncio.create_task(
            self._flush_periodically(), name="audit-periodic-flush"
        )
        logger.info(
            "audit.started",
            buffer_size=self._config.buffer_size,
            flush_interval=self._config.flush_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Stop the timer, flush what is left, and wait for that flush."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        await self.flush()
        self._stopped = True
        await self._dispatcher.stop()
        if self._buffer:
            logger.warning(
                "audit.shutdown_unflushed",
                count=len(self._buffer),
                fallback=str(self._fallback.path),
            )
        logger.info("audit.stopped", written=self.stats.events_written)

    async def __aenter__(self) -> AuditService:
        await self.start()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.shutdown()

    # -- retrieval ----------------------------------------------------------

    async def query(
        self,
        filters: AuditQueryFilters | Mapping[str, Any] | None = None,
        *,
        verify_integrity: bool = False,
    ) -> list[dict[str, Any]]:
        sql, bindings = build_audit_query(filters)
        rows = await self._store.fetch(sql, bindings)
        if verify_integrity:
            for row in rows:
                row["integrity_valid"] = verify_event_integrity(row)
        return rows

    async def verify_chain(self, limit: int | None = None) -> ChainVerification:
        """Verify digests and linkage of stored events in chain order."""
        return verify_chain(await self._store.chain_events(limit))

    # -- maintenance --------------------------------------------------------

    async def apply_retention_policies(self) -> RetentionRun:
        run = await self.retention.apply_retention_policies()
        failed = run.failed
        await self.log(
            {
                "event_type": "system",
                "event_category": "maintenance",
                "event_severity": "warn" if failed else "info",
                "event_name": "Audit Retention Run",
                "action": "archive",
                "action_result": "failure" if failed else "success",
                "custom_data": {
                    "archived": run.archived,
                    "purged": run.purged,
                    "failed_policies": [o.policy_id for o in failed],
                },
            }
        )
        return run

    async def generate_compliance_report(
        self, framework: str, start: datetime, end: datetime
    ) -> ComplianceReport:
        report = await self.reporter.generate_compliance_report(framework, start, end)
        await self.log(
            {
                "event_type": "compliance",
                "event_category": "reporting",
                "event_severity": "info",
                "event_name": "Compliance Report Generated",
                "event_description": (
                    f"Generated {framework} compliance report for period "
                    f"{start.isoformat()} to {end.isoformat()}"
                ),
                "action": "generate_report",
                "action_result": "success",
                "target_type": "report",
                "custom_data": {
                    "framework": framework,
                    "event_count": report.summary.total_events,
                },
            }
        )
        return report

    async def set_legal_hold(self, event_ids: Sequence[str], hold: bool = True) -> int:
        return await self._store.set_legal_hold(event_ids, hold)
