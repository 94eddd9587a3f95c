"""Cycle-safe, depth-bounded serialisation for audit payloads.

``old_values``, ``new_values``, ``changed_fields`` and ``custom_data`` are
arbitrary caller structures.  They are normalised once, at the ``log()``
boundary, into plain JSON-compatible values so nothing further down the
pipeline can fail on them.  A reference cycle is rejected rather than
pruned.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from pathfinder_audit.core.exceptions import SerializationError

MAX_DEPTH = 32


def to_json_safe(value: Any, *, max_depth: int = MAX_DEPTH, path: str = "$") -> Any:
    """Return a JSON-compatible copy of *value*.

    Raises:
        SerializationError: On a reference cycle, nesting deeper than
            *max_depth*, or a value with no JSON representation.
    """
    return _convert(value, path, max_depth, set())


def _convert(value: Any, path: str, depth_left: int, ancestors: set[int]) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise SerializationError(f"non-finite number at {path}", path=path)
        return value
    if isinstance(value, Enum):
        return _convert(value.value, path, depth_left, ancestors)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, BaseModel):
        return _convert(value.model_dump(mode="json"), path, depth_left, ancestors)

    if not isinstance(value, (Mapping, list, tuple, set, frozenset)):
        raise SerializationError(
            f"cannot serialise {type(value).__name__} at {path}", path=path
        )

    if depth_left <= 0:
        raise SerializationError(f"payload nested too deeply at {path}", path=path)
    marker = id(value)
    if marker in ancestors:
        raise SerializationError(f"reference cycle at {path}", path=path)

    ancestors.add(marker)
    try:
        if isinstance(value, Mapping):
            out: dict[str, Any] = {}
            for key, item in value.items():
                if not isinstance(key, (str, int, float, bool)) and key is not None:
                    raise SerializationError(
                        f"unsupported key type {type(key).__name__} at {path}",
                        path=path,
                    )
                child = f"{path}.{key}"
                out[str(key)] = _convert(item, child, depth_left - 1, ancestors)
            return out
        items = [
            _convert(item, f"{path}[{i}]", depth_left - 1, ancestors)
            for i, item in enumerate(value)
        ]
        if isinstance(value, (set, frozenset)):
            try:
                items.sort()
            except TypeError:
                items.sort(key=repr)
        return items
    finally:
        ancestors.discard(marker)


def as_utc(value: datetime) -> datetime:
    """Normalise *value* to an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 text; sorts chronologically as a string."""
    return as_utc(value).isoformat(timespec="microseconds")


def dumps(value: Any) -> str:
    """Serialise an already JSON-safe value to compact, key-sorted text."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
