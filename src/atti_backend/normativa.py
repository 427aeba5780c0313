"""Regulatory references for drafting determinazioni.

A fixed list: no retrieval or ranking is performed.
"""

from __future__ import annotations

RIFERIMENTI_NORMATIVI: tuple[str, ...] = (
    "D.Lgs. 267/2000 (TUEL) - Art. 107: Funzioni e responsabilità della dirigenza",
    "D.Lgs. 267/2000 (TUEL) - Art. 151: Principi in materia di contabilità",
    "D.Lgs. 267/2000 (TUEL) - Art. 183: Impegno di spesa",
    "L. 241/1990 - Procedimento amministrativo e diritto di accesso",
    "D.Lgs. 33/2013 - Trasparenza e pubblicazione atti",
)


def cerca_normativa(query: str | None = None) -> list[str]:
    """Return the references relevant to ``query``.

    Every reference applies to every determinazione, so the query does not
    narrow the result.
    """
    return list(RIFERIMENTI_NORMATIVI)


def richiede_pubblicazione() -> bool:
    """Every determinazione dirigenziale must be published at the albo pretorio."""
    return True
