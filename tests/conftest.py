"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from pathfinder_audit.audit.fallback import FallbackLog
from pathfinder_audit.audit.models import AuditEvent
from pathfinder_audit.audit.service import AuditService
from pathfinder_audit.core.config import AuditConfig
from pathfinder_audit.core.exceptions import StorageError
from pathfinder_audit.data.sqlite_source import SQLiteDataSource
from pathfinder_audit.storage.store import AuditStore

# Tuesday midday UTC: inside business hours for the default off-hours window.
NOON = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)

EventFactory = Callable[..., dict[str, Any]]


# ---------------------------------------------------------------------------
# Store doubles
# ---------------------------------------------------------------------------


class RecordingStore(AuditStore):
    """Real SQLite store that remembers every batch handed to it."""

    def __init__(self, source: SQLiteDataSource, *, delay: float = 0.0) -> None:
        super().__init__(source)
        self.batches: list[list[AuditEvent]] = []
        self._delay = delay

    async def write_batch(self, events: Sequence[AuditEvent]) -> int:
        self.batches.append(list(events))
        if self._delay:
            await asyncio.sleep(self._delay)
        return await super().write_batch(events)


class FailingStore(AuditStore):
    """Store whose batch and critical-record writes always fail."""

    def __init__(self, source: SQLiteDataSource) -> None:
        super().__init__(source)
        self.attempts = 0

    async def write_batch(self, events: Sequence[AuditEvent]) -> int:
        self.attempts += 1
        raise StorageError("database is unavailable", code="STORAGE_DOWN")

    async def insert_critical_event(self, record: Any) -> None:
        raise StorageError("database is unavailable", code="STORAGE_DOWN")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_event() -> EventFactory:
    """Factory for valid raw events; keyword overrides replace defaults."""

    def _make(**overrides: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "event_type": "data_access",
            "event_category": "data",
            "event_severity": "info",
            "event_name": "Profile Viewed",
            "action": "read",
            "action_result": "success",
            "actor_id": "u-1",
            "event_timestamp": NOON,
        }
        event.update(overrides)
        return event

    return _make


@pytest.fixture
async def sqlite_source() -> AsyncGenerator[SQLiteDataSource, None]:
    source = SQLiteDataSource(":memory:")
    await source.connect()
    yield source
    await source.close()


@pytest.fixture
async def store(sqlite_source: SQLiteDataSource) -> AuditStore:
    audit_store = AuditStore(sqlite_source)
    await audit_store.create_schema()
    return audit_store


@pytest.fixture
async def recording_store(sqlite_source: SQLiteDataSource) -> RecordingStore:
    audit_store = RecordingStore(sqlite_source)
    await audit_store.create_schema()
    return audit_store


@pytest.fixture
async def failing_store(sqlite_source: SQLiteDataSource) -> FailingStore:
    audit_store = FailingStore(sqlite_source)
    await audit_store.create_schema()
    return audit_store


@pytest.fixture
def fallback_path(tmp_path: Path) -> Path:
    return tmp_path / "audit-fallback.log"


@pytest.fixture
def config(fallback_path: Path) -> AuditConfig:
    return AuditConfig(fallback_log_path=fallback_path, app_version="1.2.3")


@pytest.fixture
def fallback(fallback_path: Path) -> FallbackLog:
    return FallbackLog(fallback_path)


@pytest.fixture
def service(store: AuditStore, config: AuditConfig) -> AuditService:
    return AuditService(store, config)
