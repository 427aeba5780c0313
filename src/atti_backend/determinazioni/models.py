"""Data models for determinazioni and their request payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stato(str, Enum):
    """Lifecycle status. Values are the wire/storage names."""

    DRAFT = "BOZZA"
    UNDER_REVIEW = "ISTRUTTORIA"
    FINANCIAL_CLEARANCE = "VISTO_CONTABILE"
    SIGNED = "FIRMATA"
    PUBLISHED = "PUBBLICATA"
    REJECTED = "RIFIUTATA"

    @property
    def is_terminal(self) -> bool:
        return self in (Stato.PUBLISHED, Stato.REJECTED)


class LivelloDirigente(str, Enum):
    """Manager tier, bounds spending authority."""

    D1 = "D1"
    D2 = "D2"
    D3 = "D3"


@dataclass(frozen=True)
class NewDeterminazione:
    """A record ready to be inserted; identity is assigned by the store."""

    numero: str
    anno: int
    sequenza: int
    oggetto: str
    importo: Decimal | None
    centro_spesa: str | None
    dirigente: str | None
    livello_dirigente: LivelloDirigente | None
    stato: Stato
    data_creazione: datetime
    process_instance_id: str | None


@dataclass(frozen=True)
class Determinazione:
    id: int
    numero: str
    oggetto: str
    importo: Decimal | None
    centro_spesa: str | None
    dirigente: str | None
    livello_dirigente: LivelloDirigente | None
    stato: Stato
    data_creazione: datetime
    data_pubblicazione: datetime | None
    process_instance_id: str | None

    def to_dict(self) -> dict[str, object]:
        """Public representation, camelCase as exposed by the REST API."""
        return {
            "id": self.id,
            "numero": self.numero,
            "oggetto": self.oggetto,
            "importo": self.importo,
            "centroSpesa": self.centro_spesa,
            "dirigente": self.dirigente,
            "livelloDirigente": self.livello_dirigente,
            "stato": self.stato,
            "dataCreazione": self.data_creazione,
            "dataPubblicazione": self.data_pubblicazione,
            "processInstanceId": self.process_instance_id,
        }


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class DeterminazioneDraft(BaseModel):
    """Fields a caller may supply when creating a determinazione.

    Server-owned fields (id, numero, stato, dates) are ignored if sent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    oggetto: str = Field(min_length=1, max_length=2000)
    importo: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    centro_spesa: str | None = Field(default=None, alias="centroSpesa", max_length=200)
    dirigente: str | None = Field(default=None, max_length=200)
    livello_dirigente: LivelloDirigente | None = Field(default=None, alias="livelloDirigente")
    process_instance_id: str | None = Field(
        default=None, alias="processInstanceId", max_length=200
    )

    @field_validator(
        "centro_spesa", "dirigente", "livello_dirigente", "process_instance_id", mode="before"
    )
    @classmethod
    def _empty_as_missing(cls, value: object) -> object:
        return _blank_to_none(value)
