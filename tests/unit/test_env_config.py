"""Tests for AuditConfig validation and AuditConfig.from_env()."""
from __future__ import annotations

from datetime import timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from pathfinder_audit.core.config import AuditConfig
from pathfinder_audit.core.exceptions import ConfigurationError

_VARS = (
    "FLUSH_INTERVAL",
    "BUFFER_SIZE",
    "MAX_BATCH_SIZE",
    "FALLBACK_LOG",
    "APP_NAME",
    "APP_VERSION",
    "TIMEZONE",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for suffix in _VARS:
        monkeypatch.delenv(f"PATHFINDER_AUDIT_{suffix}", raising=False)


# ---------------------------------------------------------------------------
# Defaults and validation
# ---------------------------------------------------------------------------


def test_defaults() -> None:
    config = AuditConfig()
    assert config.flush_interval_seconds == 5.0
    assert config.buffer_size == 1000
    assert config.off_hours_start == 0
    assert config.off_hours_end == 6
    assert config.zone is timezone.utc
    assert config.identity_tables == ("pf_users",)


def test_named_timezone() -> None:
    config = AuditConfig(timezone="America/New_York")
    assert str(config.zone) == "America/New_York"


def test_unknown_timezone_rejected() -> None:
    with pytest.raises(ValidationError, match="unknown timezone"):
        AuditConfig(timezone="Mars/Olympus_Mons")


def test_inverted_off_hours_rejected() -> None:
    with pytest.raises(ValidationError, match="off_hours_start"):
        AuditConfig(off_hours_start=22, off_hours_end=6)


def test_non_positive_sizes_rejected() -> None:
    with pytest.raises(ValidationError):
        AuditConfig(buffer_size=0)
    with pytest.raises(ValidationError):
        AuditConfig(flush_interval_seconds=0)


# ---------------------------------------------------------------------------
# from_env()
# ---------------------------------------------------------------------------


def test_from_env_without_variables_uses_defaults() -> None:
    assert AuditConfig.from_env() == AuditConfig()


def test_from_env_reads_all_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PATHFINDER_AUDIT_FLUSH_INTERVAL", "2.5")
    monkeypatch.setenv("PATHFINDER_AUDIT_BUFFER_SIZE", "250")
    monkeypatch.setenv("PATHFINDER_AUDIT_FALLBACK_LOG", str(tmp_path / "fallback.log"))
    monkeypatch.setenv("PATHFINDER_AUDIT_APP_NAME", "pathfinder-api")
    monkeypatch.setenv("PATHFINDER_AUDIT_APP_VERSION", "2.0.1")
    monkeypatch.setenv("PATHFINDER_AUDIT_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("PATHFINDER_AUDIT_LOG_LEVEL", "debug")
    monkeypatch.setenv("PATHFINDER_AUDIT_MAX_BATCH_SIZE", "25")

    config = AuditConfig.from_env()

    assert config.flush_interval_seconds == 2.5
    assert config.buffer_size == 250
    assert config.fallback_log_path == tmp_path / "fallback.log"
    assert config.app_name == "pathfinder-api"
    assert config.app_version == "2.0.1"
    assert config.timezone == "Europe/Berlin"
    assert config.log_level == "DEBUG"
    assert config.max_batch_size == 25


def test_from_env_ignores_empty_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATHFINDER_AUDIT_BUFFER_SIZE", "")
    assert AuditConfig.from_env().buffer_size == 1000


def test_from_env_invalid_number(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATHFINDER_AUDIT_BUFFER_SIZE", "lots")
    with pytest.raises(ConfigurationError) as exc_info:
        AuditConfig.from_env()
    assert exc_info.value.code == "AUDIT_CONFIG"


def test_from_env_invalid_timezone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATHFINDER_AUDIT_TIMEZONE", "Nowhere/Special")
    with pytest.raises(ConfigurationError, match="unknown timezone"):
        AuditConfig.from_env()
