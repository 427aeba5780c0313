"""Persistence of determinazioni records."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Iterator, Protocol

from atti_backend.determinazioni.models import (
    Determinazione,
    LivelloDirigente,
    NewDeterminazione,
    Stato,
)
from atti_backend.determinazioni.numbering import NUMERO_PREFIX
from atti_backend.errors import NumberingConflictError
from atti_backend.storage.sqlite import SqliteStore
from atti_backend.utils.time import from_storage, to_storage

logger = logging.getLogger(__name__)

# Highest sequence already used in a year, by column or by the numero suffix.
_HIGHEST_STORED_SQL = """MAX(
    (SELECT COALESCE(MAX(sequenza), 0) FROM determinazioni WHERE anno = ?),
    (SELECT COALESCE(MAX(CAST(substr(numero, ?) AS INTEGER)), 0)
     FROM determinazioni WHERE numero LIKE ?)
)"""


class DeterminazioneStore(Protocol):
    """Exclusive owner of determinazione storage."""

    def transaction(self) -> AbstractContextManager[None]: ...

    def next_sequence(self, year: int) -> int: ...

    def insert(self, record: NewDeterminazione) -> Determinazione: ...

    def get(self, record_id: int) -> Determinazione | None: ...

    def list_all(self) -> list[Determinazione]: ...

    def update_status(
        self,
        record_id: int,
        stato: Stato,
        data_pubblicazione: datetime | None,
    ) -> Determinazione | None: ...


class InMemoryDeterminazioneStore:
    """Dict-backed store for tests and single-process experiments."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[int, Determinazione] = {}
        self._counters: dict[int, int] = {}
        self._highest: dict[int, int] = {}
        self._numbers: set[str] = set()
        self._next_id = 1

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = (
                dict(self._records),
                dict(self._counters),
                dict(self._highest),
                set(self._numbers),
                self._next_id,
            )
            try:
                yield
            except BaseException:
                (
                    self._records,
                    self._counters,
                    self._highest,
                    self._numbers,
                    self._next_id,
                ) = snapshot
                raise

    def next_sequence(self, year: int) -> int:
        with self._lock:
            value = max(self._counters.get(year, 0), self._highest.get(year, 0)) + 1
            self._counters[year] = value
            return value

    def insert(self, record: NewDeterminazione) -> Determinazione:
        with self._lock:
            if record.numero in self._numbers:
                raise NumberingConflictError(f"Numero already assigned: {record.numero}")
            stored = Determinazione(
                id=self._next_id,
                numero=record.numero,
                oggetto=record.oggetto,
                importo=record.importo,
                centro_spesa=record.centro_spesa,
                dirigente=record.dirigente,
                livello_dirigente=record.livello_dirigente,
                stato=record.stato,
                data_creazione=record.data_creazione,
                data_pubblicazione=None,
                process_instance_id=record.process_instance_id,
            )
            self._records[stored.id] = stored
            self._numbers.add(stored.numero)
            self._highest[record.anno] = max(self._highest.get(record.anno, 0), record.sequenza)
            self._next_id += 1
            return stored

    def get(self, record_id: int) -> Determinazione | None:
        with self._lock:
            return self._records.get(record_id)

    def list_all(self) -> list[Determinazione]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: (r.data_creazione, r.id), reverse=True)

    def update_status(
        self,
        record_id: int,
        stato: Stato,
        data_pubblicazione: datetime | None,
    ) -> Determinazione | None:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            updated = replace(current, stato=stato, data_pubblicazione=data_pubblicazione)
            self._records[record_id] = updated
            return updated


class SqliteDeterminazioneStore:
    """Determinazioni table on top of the shared SQLite connection."""

    def __init__(self, db: SqliteStore, tz: tzinfo) -> None:
        self._db = db
        self._tz = tz

    def transaction(self) -> AbstractContextManager[None]:
        return self._db.transaction()

    def next_sequence(self, year: int) -> int:
        prefix = f"{NUMERO_PREFIX}-{year:04d}-"
        highest = (year, len(prefix) + 1, prefix + "%")
        with self._db.transaction():
            # The counter never trails the stored rows, so rows written without
            # it (imports, manual repairs) are skipped rather than reissued.
            self._db.execute(
                f"""
                INSERT INTO numerazione (anno, ultimo)
                SELECT ?, {_HIGHEST_STORED_SQL} WHERE 1
                ON CONFLICT(anno) DO NOTHING
                """,
                (year, *highest),
            )
            self._db.execute(
                f"""
                UPDATE numerazione
                SET ultimo = MAX(ultimo, {_HIGHEST_STORED_SQL}) + 1
                WHERE anno = ?
                """,
                (*highest, year),
            )
            row = self._db.fetch_one("SELECT ultimo FROM numerazione WHERE anno = ?", (year,))
        if row is None:
            raise RuntimeError(f"Numbering counter missing for year {year}")
        return int(row["ultimo"])

    def insert(self, record: NewDeterminazione) -> Determinazione:
        try:
            cursor = self._db.execute(
                """
                INSERT INTO determinazioni (
                    numero, anno, sequenza, oggetto, importo, centro_spesa, dirigente,
                    livello_dirigente, stato, data_creazione, data_pubblicazione,
                    process_instance_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    record.numero,
                    record.anno,
                    record.sequenza,
                    record.oggetto,
                    str(record.importo) if record.importo is not None else None,
                    record.centro_spesa,
                    record.dirigente,
                    record.livello_dirigente.value if record.livello_dirigente else None,
                    record.stato.value,
                    to_storage(record.data_creazione),
                    record.process_instance_id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            logger.error("Numbering conflict on %s: %s", record.numero, exc)
            raise NumberingConflictError(
                f"Numero already assigned: {record.numero}"
            ) from exc
        stored = self.get(int(cursor.lastrowid))
        if stored is None:
            raise RuntimeError(f"Inserted determinazione {record.numero} not found")
        return stored

    def get(self, record_id: int) -> Determinazione | None:
        row = self._db.fetch_one("SELECT * FROM determinazioni WHERE id = ?", (record_id,))
        if row is None:
            return None
        return self._from_row(row)

    def list_all(self) -> list[Determinazione]:
        rows = self._db.fetch_all(
            "SELECT * FROM determinazioni ORDER BY data_creazione DESC, id DESC"
        )
        return [self._from_row(row) for row in rows]

    def update_status(
        self,
        record_id: int,
        stato: Stato,
        data_pubblicazione: datetime | None,
    ) -> Determinazione | None:
        cursor = self._db.execute(
            "UPDATE determinazioni SET stato = ?, data_pubblicazione = ? WHERE id = ?",
            (
                stato.value,
                to_storage(data_pubblicazione) if data_pubblicazione else None,
                record_id,
            ),
        )
        if cursor.rowcount == 0:
            return None
        return self.get(record_id)

    def _from_row(self, row: sqlite3.Row) -> Determinazione:
        data_creazione = from_storage(row["data_creazione"], self._tz)
        if data_creazione is None:
            raise RuntimeError(f"Determinazione {row['id']} has no data_creazione")
        return Determinazione(
            id=int(row["id"]),
            numero=row["numero"],
            oggetto=row["oggetto"],
            importo=Decimal(row["importo"]) if row["importo"] is not None else None,
            centro_spesa=row["centro_spesa"],
            dirigente=row["dirigente"],
            livello_dirigente=(
                LivelloDirigente(row["livello_dirigente"]) if row["livello_dirigente"] else None
            ),
            stato=Stato(row["stato"]),
            data_creazione=data_creazione,
            data_pubblicazione=from_storage(row["data_pubblicazione"], self._tz),
            process_instance_id=row["process_instance_id"],
        )
