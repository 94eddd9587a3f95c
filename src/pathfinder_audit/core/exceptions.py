from __future__ import annotations

from typing import Any


class AuditError(Exception):
    """Base exception for all audit pipeline errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"AUDIT_001"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class ConfigurationError(AuditError): ...


class StorageError(AuditError): ...


class RetentionError(AuditError): ...


# ---------------------------------------------------------------------------
# Input errors raised by log()
# ---------------------------------------------------------------------------


class AuditValidationError(AuditError):
    """An event failed boundary validation.

    ``field`` names the first offending field so callers can report it
    without parsing the message.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="AUDIT_VALIDATION", details={"field": field})
        self.field = field


class SerializationError(AuditError):
    """A payload could not be serialised (reference cycle, depth, or type).

    ``path`` is the dotted location of the offending value inside the payload.
    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message, code="AUDIT_SERIALIZATION", details={"path": path})
        self.path = path
