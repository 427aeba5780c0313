"""Entrypoint for the determinazioni REST backend."""

from __future__ import annotations

import sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

from atti_backend import __version__
from atti_backend.config import load_settings
from atti_backend.logging_utils import configure_logging, get_logger


def run_entrypoint() -> None:
    """Serve the HTTP application with uvicorn."""
    settings = load_settings()
    configure_logging(settings.logging)
    logger = get_logger(__name__)

    from atti_backend.transport.http_server import create_http_app

    try:
        import uvicorn
    except ImportError as exc:
        raise RuntimeError("uvicorn is required to serve the HTTP API") from exc

    logger.info("Initializing determinazioni backend v%s", __version__)
    logger.info("SQLite database: %s", settings.storage.sqlite_path)
    app = create_http_app()
    # Plain REST API; no websocket endpoints.
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
