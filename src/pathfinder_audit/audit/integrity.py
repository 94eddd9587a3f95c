"""SHA-256 hash chain linking every audit event to its predecessor."""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from pathfinder_audit.audit.models import AuditEvent
from pathfinder_audit.audit.serialization import format_timestamp


def _canonical_timestamp(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def _field(event: AuditEvent | Mapping[str, Any], name: str) -> Any:
    if isinstance(event, Mapping):
        return event.get(name)
    return getattr(event, name)


def compute_event_hash(
    event: AuditEvent | Mapping[str, Any], previous_hash: str | None
) -> str:
    """Digest the canonical subset of *event* together with *previous_hash*.

    Works on both live :class:`AuditEvent` objects and rows read back from
    storage, which carry the timestamp as ISO text.
    """
    canonical = {
        "timestamp": _canonical_timestamp(_field(event, "event_timestamp")),
        "type": _field(event, "event_type"),
        "actor": _field(event, "actor_id") or _field(event, "actor_username"),
        "action": _field(event, "action"),
        "target": _field(event, "target_id"),
        "result": _field(event, "action_result"),
        "previous": previous_hash,
    }
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_event_integrity(event: AuditEvent | Mapping[str, Any]) -> bool:
    """Recompute the digest of a stored event and compare it to ``event_hash``.

    The first event of a chain (``previous_hash`` is ``None``) can only be
    checked for self-consistency.
    """
    stored = _field(event, "event_hash")
    if not stored:
        return False
    return compute_event_hash(event, _field(event, "previous_hash")) == stored


class ChainVerification(BaseModel):
    """Outcome of :func:`verify_chain`."""

    valid: bool
    checked: int
    tampered: list[str] = []
    """Ids of events whose own digest does not match."""
    broken_links: list[str] = []
    """Ids of events whose ``previous_hash`` is not the preceding ``event_hash``."""


def verify_chain(events: Iterable[AuditEvent | Mapping[str, Any]]) -> ChainVerification:
    """Verify digests and linkage of *events* given oldest first."""
    tampered: list[str] = []
    broken: list[str] = []
    prior: str | None = None
    checked = 0
    for index, event in enumerate(events):
        checked += 1
        event_id = str(_field(event, "id"))
        if not verify_event_integrity(event):
            tampered.append(event_id)
        if index > 0 and _field(event, "previous_hash") != prior:
            broken.append(event_id)
        prior = _field(event, "event_hash")
    return ChainVerification(
        valid=not tampered and not broken,
        checked=checked,
        tampered=tampered,
        broken_links=broken,
    )


class IntegrityChain:
    """Holds the hash of the last event linked by one service instance.

    ``link()`` reads ``last_hash``, computes the new digest and stores it as
    one atomic step, so no two events can observe the same predecessor.
    """

    def __init__(self, last_hash: str | None = None) -> None:
        self._last_hash = last_hash
        self._lock = threading.Lock()

    @property
    def last_hash(self) -> str | None:
        return self._last_hash

    def compute_and_link(self, event: AuditEvent) -> tuple[str, str | None]:
        """Return ``(event_hash, previous_hash)`` and advance the chain."""
        with self._lock:
            previous = self._last_hash
            event_hash = compute_event_hash(event, previous)
            self._last_hash = event_hash
            return event_hash, previous

    def link(self, event: AuditEvent) -> AuditEvent:
        """Return a copy of *event* carrying its chain hashes."""
        event_hash, previous = self.compute_and_link(event)
        return event.model_copy(
            update={"event_hash": event_hash, "previous_hash": previous}
        )
