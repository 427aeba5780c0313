"""Append-only audit log correlated to process/record ids."""

from atti_backend.audit.models import AuditEntry, AuditEvent, AuditFilter
from atti_backend.audit.recorder import AuditRecorder, EventType
from atti_backend.audit.store import AuditStore, InMemoryAuditStore, SqliteAuditStore

__all__ = [
    "AuditEntry",
    "AuditEvent",
    "AuditFilter",
    "AuditRecorder",
    "AuditStore",
    "EventType",
    "InMemoryAuditStore",
    "SqliteAuditStore",
]
