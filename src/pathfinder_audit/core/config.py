from __future__ import annotations

import os
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from pathfinder_audit.core.exceptions import ConfigurationError
from pathfinder_audit.utils.logging import configure_logging

_ENV_PREFIX = "PATHFINDER_AUDIT_"


class AuditConfig(BaseModel):
    """Runtime configuration for :class:`~pathfinder_audit.audit.service.AuditService`."""

    flush_interval_seconds: float = Field(default=5.0, gt=0)
    buffer_size: int = Field(default=1000, ge=1)
    max_batch_size: int = Field(default=100, ge=1)
    """Largest number of rows sent in a single INSERT statement."""
    fallback_log_path: Path = Path("/var/log/pathfinder/audit-fallback.log")
    app_name: str = "pathfinder"
    app_version: str | None = None

    timezone: str = "UTC"
    """Zone used to decide whether an event happened outside business hours."""
    off_hours_start: int = Field(default=0, ge=0, le=23)
    off_hours_end: int = Field(default=6, ge=0, le=24)
    failure_window_minutes: int = Field(default=15, ge=1)

    alert_queue_size: int = Field(default=1000, ge=1)

    restricted_tables: tuple[str, ...] = (
        "pf_users",
        "pf_user_sessions",
        "pf_encryption_keys",
    )
    confidential_tables: tuple[str, ...] = (
        "experiences_detailed",
        "career_progression",
    )
    identity_tables: tuple[str, ...] = ("pf_users",)
    """Tables that hold user identity records (GDPR, user-deletion rules)."""
    health_tables: tuple[str, ...] = ("experiences", "career")
    """Table name fragments whose confidential rows feed HIPAA reporting."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value.upper() == "UTC":
            return "UTC"
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _off_hours_window(self) -> AuditConfig:
        if self.off_hours_start >= self.off_hours_end:
            raise ValueError("off_hours_start must be before off_hours_end")
        return self

    @property
    def zone(self) -> tzinfo:
        if self.timezone == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)

    def apply_logging(self, json: bool = True) -> None:
        """Configure structlog and the root logger at :attr:`log_level`."""
        configure_logging(self.log_level, json=json)

    @classmethod
    def from_env(cls) -> AuditConfig:
        """Create an :class:`AuditConfig` from ``PATHFINDER_AUDIT_*`` environment variables.

        Reads the following env vars (all optional):

        * ``PATHFINDER_AUDIT_FLUSH_INTERVAL`` -> ``flush_interval_seconds``
        * ``PATHFINDER_AUDIT_BUFFER_SIZE`` -> ``buffer_size``
        * ``PATHFINDER_AUDIT_MAX_BATCH_SIZE`` -> ``max_batch_size``
        * ``PATHFINDER_AUDIT_FALLBACK_LOG`` -> ``fallback_log_path``
        * ``PATHFINDER_AUDIT_APP_NAME`` / ``PATHFINDER_AUDIT_APP_VERSION``
        * ``PATHFINDER_AUDIT_TIMEZONE`` -> ``timezone``
        * ``PATHFINDER_AUDIT_LOG_LEVEL`` -> ``log_level``

        Any variable that is not set or is empty is left at its default value.

        Raises:
            ConfigurationError: If a variable is present but cannot be parsed.
        """
        env_map = {
            "FLUSH_INTERVAL": "flush_interval_seconds",
            "BUFFER_SIZE": "buffer_size",
            "MAX_BATCH_SIZE": "max_batch_size",
            "FALLBACK_LOG": "fallback_log_path",
            "APP_NAME": "app_name",
            "APP_VERSION": "app_version",
            "TIMEZONE": "timezone",
            "LOG_LEVEL": "log_level",
        }
        kwargs: dict[str, Any] = {}
        for suffix, field_name in env_map.items():
            value = os.environ.get(_ENV_PREFIX + suffix)
            if value:
                kwargs[field_name] = value

        if "log_level" in kwargs:
            kwargs["log_level"] = kwargs["log_level"].upper()

        try:
            return cls(**kwargs)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid audit configuration: {exc}", code="AUDIT_CONFIG"
            ) from exc
