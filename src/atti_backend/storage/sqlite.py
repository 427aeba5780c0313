"""SQLite access layer shared by the determinazioni and audit stores."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Sequence

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class SqliteStore:
    """Single connection guarded by a re-entrant lock.

    The connection runs in autocommit mode; multi-statement writes go through
    ``transaction()``, which opens ``BEGIN IMMEDIATE`` so the write lock is
    taken up front and concurrent writers (threads or processes) queue on it.
    """

    def __init__(self, path: str, wal: bool = True, busy_timeout: float = 5.0) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            path,
            check_same_thread=False,
            isolation_level=None,
            timeout=busy_timeout,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._closed = False
        if wal and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS determinazioni (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                numero TEXT NOT NULL UNIQUE,
                anno INTEGER NOT NULL,
                sequenza INTEGER NOT NULL,
                oggetto TEXT NOT NULL,
                importo TEXT,
                centro_spesa TEXT,
                dirigente TEXT,
                livello_dirigente TEXT,
                stato TEXT NOT NULL,
                data_creazione TEXT NOT NULL,
                data_pubblicazione TEXT,
                process_instance_id TEXT,
                UNIQUE (anno, sequenza)
            );

            CREATE TABLE IF NOT EXISTS numerazione (
                anno INTEGER PRIMARY KEY,
                ultimo INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                process_instance_id TEXT,
                event_type TEXT NOT NULL,
                user_id TEXT,
                timestamp TEXT NOT NULL,
                details TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_audit_log_process ON audit_log(process_instance_id);
            CREATE INDEX IF NOT EXISTS idx_audit_log_user ON audit_log(user_id);
            CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements atomically.

        Nested use joins the outer transaction.
        """
        with self._lock:
            if self._in_transaction:
                yield
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def execute(self, query: str, params: _SqlParams = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(query, params)

    def fetch_one(self, query: str, params: _SqlParams = ()) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(self, query: str, params: _SqlParams = ()) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True
