"""Starlette HTTP server assembly with bearer-token authentication."""

from __future__ import annotations

import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from atti_backend import __version__
from atti_backend.api import API_ROUTES, EXCEPTION_HANDLERS
from atti_backend.app import AppContext, get_app_context
from atti_backend.auth.validators import TokenValidationError, TokenValidator, create_validator
from atti_backend.middleware import (
    AccessLogMiddleware,
    PreAuthSecurityMiddleware,
    UserRateLimitMiddleware,
)
from atti_backend.middleware.security import SECURITY_EXEMPT_PATHS, SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def create_http_app(
    context: AppContext | None = None,
    validator: TokenValidator | None = None,
) -> Starlette:
    """Create the REST application.

    ``context`` and ``validator`` default to the ones built from the process
    settings; tests inject their own.
    """
    owns_context = context is None
    ctx = context if context is not None else get_app_context()
    settings = ctx.settings
    token_validator = validator if validator is not None else create_validator(settings.auth)
    rate_limiter = SlidingWindowRateLimiter()
    trust_forwarded = settings.server.http_trust_forwarded_headers

    # Order: PreAuthSecurity -> BearerAuth -> UserRateLimit -> AccessLog
    # 1. Body size and per-IP limits apply before any token work.
    # 2. Auth validates the token and sets request.state.caller.
    # 3. Per-user limits and the access log need the caller.
    middleware: list[Middleware] = [
        Middleware(
            PreAuthSecurityMiddleware,
            max_body_size_bytes=settings.auth.max_body_size_kb * 1024,
            rate_limit_per_ip=settings.auth.rate_limit_per_ip,
            rate_limiter=rate_limiter,
            trust_forwarded_headers=trust_forwarded,
        ),
        Middleware(
            BearerAuthMiddleware,
            validator=token_validator,
        ),
        Middleware(
            UserRateLimitMiddleware,
            rate_limit_per_user=settings.auth.rate_limit_per_user,
            rate_limiter=rate_limiter,
        ),
        Middleware(
            AccessLogMiddleware,
            enabled=settings.auth.access_log_enabled,
            trust_forwarded_headers=trust_forwarded,
        ),
    ]

    # CORS must be outermost so preflight requests are answered before auth.
    if settings.server.http_enable_cors and settings.server.http_allowed_origins:
        from starlette.middleware.cors import CORSMiddleware

        middleware.insert(
            0,
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.server.http_allowed_origins),
                allow_methods=["GET", "POST", "PUT", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
            ),
        )

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "version": __version__})

    async def ready_handler(request: Request) -> Response:
        return JSONResponse({"status": "ready"})

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/ready", endpoint=ready_handler, methods=["GET"]),
        *API_ROUTES,
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(
            "Starting determinazioni backend v%s (auth=%s, transitions=%s, tz=%s)",
            __version__,
            settings.auth.provider,
            settings.lifecycle.transition_policy,
            settings.lifecycle.office_timezone,
        )
        try:
            yield
        finally:
            logger.info("Stopping determinazioni backend...")
            if owns_context:
                ctx.close()

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers=EXCEPTION_HANDLERS,
        lifespan=lifespan,
    )
    app.state.context = ctx
    return app


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer token authentication middleware.

    Validates the JWT from the Authorization header and stores the resulting
    :class:`~atti_backend.auth.context.Caller` on ``request.state.caller``.
    """

    EXEMPT_PATHS = SECURITY_EXEMPT_PATHS

    def __init__(
        self,
        app: Any,
        validator: TokenValidator,
        realm: str = "atti",
        exempt_paths: tuple[str, ...] = (),
    ) -> None:
        super().__init__(app)
        self.validator = validator
        self.realm = realm
        self.exempt_paths = self.EXEMPT_PATHS | set(exempt_paths)

    def _build_authenticate_header(self, error: str | None = None) -> str:
        parts = [f'realm="{self.realm}"']
        if error:
            parts.append(f'error="{error}"')
        return f"Bearer {', '.join(parts)}"

    def _unauthorized(self, code: str, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"error": code, "message": message},
            headers={"WWW-Authenticate": self._build_authenticate_header("invalid_token")},
        )

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        if request.method == "OPTIONS" or request.url.path in self.exempt_paths:
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.lower().startswith("bearer "):
            return self._unauthorized(
                "missing_token", "Authorization header with Bearer token required"
            )

        token = auth_header[7:].strip()
        try:
            caller = await self.validator.validate(token)
        except TokenValidationError as e:
            logger.warning("Token validation failed: %s (%s)", e, e.code)
            return self._unauthorized(e.code, str(e))
        except Exception:
            logger.exception("Unexpected error during token validation")
            return JSONResponse(
                status_code=500,
                content={"error": "internal_error", "message": "Token validation failed"},
            )

        request_id = request.headers.get("x-request-id")
        if request_id:
            caller = dataclasses.replace(caller, request_id=request_id[:128])
        request.state.caller = caller
        return await call_next(request)
