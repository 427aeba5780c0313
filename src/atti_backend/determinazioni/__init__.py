"""Determinazioni dirigenziali: records, numbering and lifecycle."""

from atti_backend.determinazioni.lifecycle import LifecycleService, TransitionPolicy
from atti_backend.determinazioni.models import (
    Determinazione,
    DeterminazioneDraft,
    LivelloDirigente,
    Stato,
)
from atti_backend.determinazioni.numbering import NumberingPolicy, format_numero
from atti_backend.determinazioni.store import (
    DeterminazioneStore,
    InMemoryDeterminazioneStore,
    SqliteDeterminazioneStore,
)

__all__ = [
    "Determinazione",
    "DeterminazioneDraft",
    "DeterminazioneStore",
    "InMemoryDeterminazioneStore",
    "LifecycleService",
    "LivelloDirigente",
    "NumberingPolicy",
    "SqliteDeterminazioneStore",
    "Stato",
    "TransitionPolicy",
    "format_numero",
]
