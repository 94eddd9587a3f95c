from pathfinder_audit.storage.store import AuditStore

__all__ = ["AuditStore"]
