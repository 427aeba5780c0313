"""Creation and status transitions of determinazioni."""

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Callable, Literal

from atti_backend.auth.context import Caller
from atti_backend.determinazioni.models import (
    Determinazione,
    DeterminazioneDraft,
    NewDeterminazione,
    Stato,
)
from atti_backend.determinazioni.numbering import NumberingPolicy
from atti_backend.determinazioni.store import DeterminazioneStore
from atti_backend.errors import InvalidRequestError, InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

TransitionMode = Literal["strict", "permissive"]

_FORWARD_EDGES: dict[Stato, frozenset[Stato]] = {
    Stato.DRAFT: frozenset({Stato.UNDER_REVIEW}),
    Stato.UNDER_REVIEW: frozenset({Stato.FINANCIAL_CLEARANCE}),
    Stato.FINANCIAL_CLEARANCE: frozenset({Stato.SIGNED}),
    Stato.SIGNED: frozenset({Stato.PUBLISHED}),
}


class TransitionPolicy:
    """Decides which status changes are legal.

    strict: the forward chain BOZZA -> ISTRUTTORIA -> VISTO_CONTABILE ->
    FIRMATA -> PUBBLICATA, plus RIFIUTATA from any non-terminal state.
    permissive: any known status from any state.
    """

    def __init__(self, mode: TransitionMode = "strict") -> None:
        self.mode = mode

    def allowed_targets(self, current: Stato) -> frozenset[Stato]:
        if self.mode == "permissive":
            return frozenset(Stato)
        if current.is_terminal:
            return frozenset()
        return _FORWARD_EDGES.get(current, frozenset()) | {Stato.REJECTED}

    def check(self, current: Stato, target: Stato) -> None:
        if target not in self.allowed_targets(current):
            raise InvalidTransitionError(
                f"Transition {current.value} -> {target.value} is not allowed"
            )


def parse_stato(value: str) -> Stato:
    try:
        return Stato(value.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(s.value for s in Stato)
        raise InvalidRequestError(f"Unknown stato '{value}'. Allowed: {allowed}") from exc


class LifecycleService:
    """Orchestrates the store and the numbering policy.

    Each operation runs in a single store transaction. Audit events are not
    written here; callers append them to the audit recorder.
    """

    def __init__(
        self,
        store: DeterminazioneStore,
        numbering: NumberingPolicy,
        *,
        tz: tzinfo = timezone.utc,
        transitions: TransitionPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._numbering = numbering
        self._tz = tz
        self._transitions = transitions or TransitionPolicy()
        self._clock = clock or (lambda: datetime.now(tz=self._tz))

    @property
    def transitions(self) -> TransitionPolicy:
        return self._transitions

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    def create(self, draft: DeterminazioneDraft, caller: Caller) -> Determinazione:
        now = self._now()
        with self._store.transaction():
            assigned = self._numbering.assign(now.year)
            record = self._store.insert(
                NewDeterminazione(
                    numero=assigned.numero,
                    anno=assigned.anno,
                    sequenza=assigned.sequenza,
                    oggetto=draft.oggetto,
                    importo=draft.importo,
                    centro_spesa=draft.centro_spesa,
                    dirigente=draft.dirigente or caller.user_id,
                    livello_dirigente=draft.livello_dirigente,
                    stato=Stato.DRAFT,
                    data_creazione=now,
                    process_instance_id=draft.process_instance_id,
                )
            )
        logger.info(
            "Determinazione %s created (id=%d) by %s", record.numero, record.id, caller.user_id
        )
        return record

    def find_all(self) -> list[Determinazione]:
        return self._store.list_all()

    def find_by_id(self, record_id: int) -> Determinazione | None:
        return self._store.get(record_id)

    def get(self, record_id: int) -> Determinazione:
        record = self._store.get(record_id)
        if record is None:
            raise NotFoundError(f"Determinazione {record_id} not found")
        return record

    def update_status(
        self,
        record_id: int,
        new_stato: Stato | str,
        caller: Caller,
    ) -> Determinazione:
        return self.transition(record_id, new_stato, caller)[1]

    def transition(
        self,
        record_id: int,
        new_stato: Stato | str,
        caller: Caller,
    ) -> tuple[Stato, Determinazione]:
        """Like :meth:`update_status` but also returns the status it left."""
        target = new_stato if isinstance(new_stato, Stato) else parse_stato(new_stato)
        with self._store.transaction():
            current = self.get(record_id)
            self._transitions.check(current.stato, target)
            published_at = self._now() if target is Stato.PUBLISHED else None
            updated = self._store.update_status(record_id, target, published_at)
            if updated is None:
                raise NotFoundError(f"Determinazione {record_id} not found")
        logger.info(
            "Determinazione %s: %s -> %s by %s",
            updated.numero,
            current.stato.value,
            target.value,
            caller.user_id,
        )
        return current.stato, updated
