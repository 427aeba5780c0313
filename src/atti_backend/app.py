"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from zoneinfo import ZoneInfo

from atti_backend.audit import AuditRecorder, SqliteAuditStore
from atti_backend.config import Settings, load_settings
from atti_backend.determinazioni import (
    LifecycleService,
    NumberingPolicy,
    SqliteDeterminazioneStore,
    TransitionPolicy,
)
from atti_backend.storage import SqliteStore


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once at startup; request handlers reach it through
    ``request.app.state.context``.
    """

    settings: Settings
    tz: ZoneInfo
    db: SqliteStore | None
    lifecycle: LifecycleService
    audit: AuditRecorder

    def close(self) -> None:
        if self.db is not None:
            self.db.close()


def build_app_context(settings: Settings) -> AppContext:
    """Wire the SQLite-backed services described by ``settings``."""
    tz = ZoneInfo(settings.lifecycle.office_timezone)
    db = SqliteStore(
        settings.storage.sqlite_path,
        wal=settings.storage.sqlite_wal,
        busy_timeout=settings.storage.busy_timeout_seconds,
    )
    store = SqliteDeterminazioneStore(db, tz)
    lifecycle = LifecycleService(
        store,
        NumberingPolicy(store),
        tz=tz,
        transitions=TransitionPolicy(settings.lifecycle.transition_policy),
    )
    return AppContext(
        settings=settings,
        tz=tz,
        db=db,
        lifecycle=lifecycle,
        audit=AuditRecorder(SqliteAuditStore(db)),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Return the process-wide context built from :func:`load_settings`."""
    return build_app_context(load_settings())
