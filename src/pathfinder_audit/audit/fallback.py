"""Append-only JSONL fallback log used when the datastore rejects a write."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from pathfinder_audit.audit.models import AuditEvent

logger = structlog.get_logger(__name__)


class FallbackLog:
    """Writes one JSON line per event, tagged with the triggering error.

    Uses :func:`asyncio.to_thread` so file I/O does not block the event
    loop.  A failure to write the fallback itself is logged and swallowed:
    there is nowhere further to fall back to.

    Args:
        path: Filesystem path for the JSONL fallback log.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _serialize(self, event: AuditEvent | dict[str, Any], error: BaseException | str | None) -> str:
        data = event.model_dump(mode="json") if isinstance(event, AuditEvent) else event
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": data,
            "error": str(error) if error is not None else None,
        }
        if isinstance(error, BaseException):
            entry["error_type"] = type(error).__name__
        return json.dumps(entry, default=str, sort_keys=True)

    def _write_sync(self, lines: list[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line + "\n")

    async def write(
        self,
        events: Sequence[AuditEvent | dict[str, Any]],
        error: BaseException | str | None,
    ) -> int:
        """Append *events*; returns how many lines were written."""
        lines = [self._serialize(event, error) for event in events]
        if not lines:
            return 0
        try:
            await asyncio.to_thread(self._write_sync, lines)
        except OSError:
            logger.exception("audit_fallback.write_failed", path=str(self._path), count=len(lines))
            return 0
        logger.warning(
            "audit_fallback.written", path=str(self._path), count=len(lines), error=str(error)
        )
        return len(lines)

    def read(self) -> list[dict[str, Any]]:
        """Return all fallback entries (oldest first) for replay or inspection."""
        if not self._path.exists():
            return []
        entries: list[dict[str, Any]] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for raw_line in fh:
                raw_line = raw_line.strip()
                if raw_line:
                    entries.append(json.loads(raw_line))
        return entries
