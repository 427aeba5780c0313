"""Append-only storage of audit events."""

from __future__ import annotations

import sqlite3
import threading
from typing import Protocol

from atti_backend.audit.models import AuditEvent, AuditFilter, NewAuditEvent
from atti_backend.storage.sqlite import SqliteStore
from atti_backend.utils.time import from_storage, to_storage


class AuditStore(Protocol):
    """Exclusive owner of audit storage. There is no update or delete."""

    def append(self, event: NewAuditEvent) -> AuditEvent: ...

    def query(self, filters: AuditFilter) -> list[AuditEvent]: ...


def _matches(event: AuditEvent, filters: AuditFilter) -> bool:
    if filters.process_instance_id is not None:
        if event.process_instance_id != filters.process_instance_id:
            return False
    if filters.user_id is not None and event.user_id != filters.user_id:
        return False
    if filters.date_from is not None and event.timestamp < filters.date_from:
        return False
    if filters.date_to is not None and event.timestamp > filters.date_to:
        return False
    return True


class InMemoryAuditStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []

    def append(self, event: NewAuditEvent) -> AuditEvent:
        with self._lock:
            stored = AuditEvent(
                id=len(self._events) + 1,
                process_instance_id=event.process_instance_id,
                event_type=event.event_type,
                user_id=event.user_id,
                timestamp=event.timestamp,
                details=event.details,
            )
            self._events.append(stored)
            return stored

    def query(self, filters: AuditFilter) -> list[AuditEvent]:
        with self._lock:
            selected = [e for e in self._events if _matches(e, filters)]
        return sorted(selected, key=lambda e: (e.timestamp, e.id), reverse=True)


class SqliteAuditStore:
    def __init__(self, db: SqliteStore) -> None:
        self._db = db

    def append(self, event: NewAuditEvent) -> AuditEvent:
        with self._db.transaction():
            cursor = self._db.execute(
                """
                INSERT INTO audit_log (
                    process_instance_id, event_type, user_id, timestamp, details
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.process_instance_id,
                    event.event_type,
                    event.user_id,
                    to_storage(event.timestamp),
                    event.details,
                ),
            )
            row = self._db.fetch_one("SELECT * FROM audit_log WHERE id = ?", (cursor.lastrowid,))
        if row is None:
            raise RuntimeError(f"Audit event {cursor.lastrowid} vanished after insert")
        return self._from_row(row)

    def query(self, filters: AuditFilter) -> list[AuditEvent]:
        clauses: list[str] = []
        params: list[str] = []
        if filters.process_instance_id is not None:
            clauses.append("process_instance_id = ?")
            params.append(filters.process_instance_id)
        if filters.user_id is not None:
            clauses.append("user_id = ?")
            params.append(filters.user_id)
        if filters.date_from is not None:
            clauses.append("timestamp >= ?")
            params.append(to_storage(filters.date_from))
        if filters.date_to is not None:
            clauses.append("timestamp <= ?")
            params.append(to_storage(filters.date_to))

        query = "SELECT * FROM audit_log"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY timestamp DESC, id DESC"
        return [self._from_row(row) for row in self._db.fetch_all(query, params)]

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AuditEvent:
        timestamp = from_storage(row["timestamp"])
        if timestamp is None:
            raise RuntimeError(f"Audit event {row['id']} has no timestamp")
        return AuditEvent(
            id=int(row["id"]),
            process_instance_id=row["process_instance_id"],
            event_type=row["event_type"],
            user_id=row["user_id"],
            timestamp=timestamp,
            details=row["details"],
        )
