"""Request access logging with sensitive value masking."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from atti_backend.middleware.security import get_client_ip
from atti_backend.utils.masking import redact_sensitive_fields

logger = logging.getLogger(__name__)

# Control characters are replaced to prevent log injection.
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def sanitize_log_value(value: str) -> str:
    return _CONTROL_CHAR_RE.sub("_", value)


def masked_query(request: Request) -> str:
    params = redact_sensitive_fields(dict(request.query_params))
    return "&".join(f"{k}={v}" for k, v in params.items())


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Logs REQUEST_START / REQUEST_END with request id, caller and duration."""

    EXEMPT_PATHS = frozenset({"/health", "/ready"})

    def __init__(
        self,
        app: Callable,
        enabled: bool = True,
        trust_forwarded_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.enabled = enabled
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        request_id = sanitize_log_value(request.headers.get("x-request-id", str(uuid.uuid4())))
        start_time = time.time()
        safe_path = sanitize_log_value(request.url.path)
        safe_ip = sanitize_log_value(
            get_client_ip(request, trust_forwarded_headers=self._trust_forwarded_headers)
        )

        logger.info(
            "REQUEST_START request_id=%s method=%s path=%s query=%s client_ip=%s",
            request_id,
            request.method,
            safe_path,
            sanitize_log_value(masked_query(request)),
            safe_ip,
        )

        status_code = 500
        failed = False
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception:
            failed = True
            raise
        finally:
            duration_ms = int((time.time() - start_time) * 1000)
            caller = getattr(request.state, "caller", None)
            safe_user_id = sanitize_log_value(caller.user_id if caller else "anonymous")
            log = logger.error if failed else logger.info
            log(
                "REQUEST_END request_id=%s user_id=%s method=%s path=%s status=%s duration_ms=%d",
                request_id,
                safe_user_id,
                request.method,
                safe_path,
                status_code,
                duration_ms,
            )
