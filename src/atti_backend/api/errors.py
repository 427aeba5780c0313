"""Exception handlers mapping domain errors to JSON responses."""

from __future__ import annotations

import logging

from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import Response

from atti_backend.api.common import error_response
from atti_backend.errors import AttiError

logger = logging.getLogger(__name__)


async def handle_atti_error(request: Request, exc: AttiError) -> Response:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    payload = exc.to_payload()
    return error_response(
        exc.status_code,
        str(payload.pop("error")),
        str(payload.pop("message")),
        **payload,
    )


async def handle_http_exception(request: Request, exc: HTTPException) -> Response:
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
    return error_response(exc.status_code, code, str(exc.detail))


async def handle_unexpected(request: Request, exc: Exception) -> Response:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_error", "Internal server error")


EXCEPTION_HANDLERS = {
    AttiError: handle_atti_error,
    HTTPException: handle_http_exception,
    Exception: handle_unexpected,
}
