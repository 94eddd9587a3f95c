"""Boundary validation and enrichment of raw audit events."""

from __future__ import annotations

import secrets
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from pathfinder_audit.audit.models import (
    PAYLOAD_FIELDS,
    REQUIRED_FIELDS,
    AuditEvent,
    ComplianceTag,
    DataSensitivity,
    RawAuditEvent,
)
from pathfinder_audit.audit.serialization import as_utc, to_json_safe
from pathfinder_audit.core.config import AuditConfig
from pathfinder_audit.core.context import get_request_context
from pathfinder_audit.core.exceptions import AuditValidationError

logger = structlog.get_logger(__name__)

_HEALTH_EVENT_TYPES = frozenset({"data_access", "data_modification"})
_SOC2_EVENT_TYPES = frozenset({"authentication", "authorization", "system"})
_CONTEXT_FIELDS = ("request_id", "correlation_id", "session_id", "ip_address", "user_agent")


def _matches(table: str | None, candidates: tuple[str, ...]) -> bool:
    return bool(table) and any(name in table for name in candidates)  # type: ignore[operator]


def new_event_id() -> str:
    """Human-readable correlation tag, e.g. ``EVT_1718000000000_9f2c1a0b``."""
    return f"EVT_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class EventEnricher:
    """Validates raw events and derives identifiers, sensitivity and tags.

    Pure with respect to storage: nothing here touches the datastore.
    """

    def __init__(self, config: AuditConfig | None = None) -> None:
        self._config = config or AuditConfig()

    # -- validation ---------------------------------------------------------

    def validate(self, raw: RawAuditEvent | Mapping[str, Any]) -> RawAuditEvent:
        """Check the six required fields and coerce *raw* into a :class:`RawAuditEvent`.

        Raises:
            AuditValidationError: Naming the first missing or empty required
                field, or the first field pydantic rejected.
        """
        if isinstance(raw, RawAuditEvent):
            values: Mapping[str, Any] = dict(raw)
        elif isinstance(raw, Mapping):
            values = raw
        else:
            raise AuditValidationError(
                f"audit event must be a mapping, got {type(raw).__name__}"
            )
        for field in REQUIRED_FIELDS:
            value = values.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise AuditValidationError(
                    f"Missing required audit field: {field}", field=field
                )
        if isinstance(raw, RawAuditEvent):
            return raw
        try:
            return RawAuditEvent.model_validate(dict(raw))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or None
            raise AuditValidationError(
                f"Invalid audit field {field}: {first['msg']}", field=field
            ) from exc

    # -- classification -----------------------------------------------------

    def classify_sensitivity(self, event: RawAuditEvent) -> DataSensitivity:
        cfg = self._config
        if _matches(event.target_table, cfg.restricted_tables):
            return DataSensitivity.RESTRICTED
        if _matches(event.target_table, cfg.confidential_tables):
            return DataSensitivity.CONFIDENTIAL
        if event.event_type in ("authentication", "authorization"):
            return DataSensitivity.CONFIDENTIAL
        return DataSensitivity.INTERNAL

    def compliance_tags(
        self, event: RawAuditEvent, sensitivity: DataSensitivity
    ) -> tuple[ComplianceTag, ...]:
        cfg = self._config
        tags: list[ComplianceTag] = []

        sensitive = sensitivity in (DataSensitivity.CONFIDENTIAL, DataSensitivity.RESTRICTED)
        if (sensitive and _matches(event.target_table, cfg.health_tables)) or (
            event.event_type in _HEALTH_EVENT_TYPES
        ):
            tags.append(ComplianceTag.HIPAA)

        identity_delete = event.action == "delete" and _matches(
            event.target_table, cfg.identity_tables
        )
        if identity_delete or event.action == "export":
            tags.append(ComplianceTag.GDPR)

        if event.event_type in _SOC2_EVENT_TYPES:
            tags.append(ComplianceTag.SOC2)

        return tuple(tags)

    # -- enrichment ---------------------------------------------------------

    def enrich(self, raw: RawAuditEvent | Mapping[str, Any]) -> AuditEvent:
        """Validate *raw* and return the enriched, not yet scored or hashed event.

        Raises:
            AuditValidationError: See :meth:`validate`.
            SerializationError: A payload field holds a reference cycle, is
                nested too deeply, or contains an unserialisable value.
        """
        event = self.validate(raw)

        data = event.model_dump(exclude=set(PAYLOAD_FIELDS))
        for name in PAYLOAD_FIELDS:
            value = getattr(event, name)
            data[name] = None if value is None else to_json_safe(value, path=name)

        ctx = get_request_context()
        if ctx is not None:
            for name in _CONTEXT_FIELDS:
                if data.get(name) is None:
                    data[name] = getattr(ctx, name)

        now = datetime.now(timezone.utc)
        data["event_timestamp"] = as_utc(event.event_timestamp or now)
        data["processing_timestamp"] = now
        data["event_id"] = new_event_id()
        data["actor_type"] = event.actor_type or "system"
        data["application_name"] = self._config.app_name
        data["application_version"] = self._config.app_version

        sensitivity = self.classify_sensitivity(event)
        data["data_sensitivity"] = sensitivity
        data["compliance_tags"] = self.compliance_tags(event, sensitivity)

        enriched = AuditEvent.model_validate(data)
        logger.debug(
            "audit.enriched",
            event_id=enriched.event_id,
            event_type=enriched.event_type,
            sensitivity=sensitivity.value,
        )
        return enriched
