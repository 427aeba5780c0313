"""Yearly sequential numbering of determinazioni (DET-YYYY-NNN)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

NUMERO_PREFIX = "DET"


class SequenceSource(Protocol):
    def next_sequence(self, year: int) -> int:
        """Atomically reserve and return the next sequence for ``year``."""
        ...


@dataclass(frozen=True)
class AssignedNumber:
    numero: str
    anno: int
    sequenza: int


def format_numero(year: int, sequence: int) -> str:
    if not 1 <= year <= 9999:
        raise ValueError(f"year out of range: {year}")
    if sequence < 1:
        raise ValueError(f"sequence must be positive: {sequence}")
    return f"{NUMERO_PREFIX}-{year:04d}-{sequence:03d}"


class NumberingPolicy:
    """Derives the human-readable number from an atomic per-year counter.

    The year is passed on every call (taken from the record's own creation
    timestamp), so the first record of a new year starts again at 001.
    """

    def __init__(self, sequences: SequenceSource) -> None:
        self._sequences = sequences

    def assign(self, creation_year: int) -> AssignedNumber:
        sequence = self._sequences.next_sequence(creation_year)
        return AssignedNumber(
            numero=format_numero(creation_year, sequence),
            anno=creation_year,
            sequenza=sequence,
        )

    def assign_number(self, creation_year: int) -> str:
        return self.assign(creation_year).numero
