"""Audit recorder: server-stamped, append-only event log."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Mapping

from atti_backend.audit.models import AuditEntry, AuditEvent, AuditFilter, NewAuditEvent
from atti_backend.audit.store import AuditStore
from atti_backend.auth.context import Caller
from atti_backend.errors import InvalidRequestError
from atti_backend.utils.serialization import json_default
from atti_backend.utils.time import utc_now

logger = logging.getLogger(__name__)


class EventType:
    """Event labels emitted by this service. The set is open."""

    ATTO_CREATO = "ATTO_CREATO"
    STATO_AGGIORNATO = "STATO_AGGIORNATO"
    ATTO_PUBBLICATO = "ATTO_PUBBLICATO"


class AuditRecorder:
    def __init__(self, store: AuditStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def append(self, entry: AuditEntry, caller: Caller) -> AuditEvent:
        """Store an event; the timestamp is always taken from the server clock."""
        user_id = entry.user_id or caller.user_id
        event = self._store.append(
            NewAuditEvent(
                process_instance_id=entry.process_instance_id,
                event_type=entry.event_type,
                user_id=user_id,
                timestamp=self._clock(),
                details=entry.details,
            )
        )
        logger.debug("Audit event %s #%d recorded for %s", event.event_type, event.id, user_id)
        return event

    def record(
        self,
        event_type: str,
        caller: Caller,
        *,
        process_instance_id: str | None = None,
        details: Mapping[str, object] | None = None,
    ) -> AuditEvent:
        return self.append(
            AuditEntry(
                event_type=event_type,
                process_instance_id=process_instance_id,
                details=json.dumps(details, default=json_default) if details else None,
            ),
            caller,
        )

    def query(self, filters: AuditFilter) -> list[AuditEvent]:
        if (
            filters.date_from is not None
            and filters.date_to is not None
            and filters.date_from > filters.date_to
        ):
            raise InvalidRequestError("'from' must not be after 'to'")
        return self._store.query(filters)
