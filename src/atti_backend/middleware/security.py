"""Security middleware for rate limiting and body size limits."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

SECURITY_EXEMPT_PATHS = frozenset({"/health", "/ready"})


class BodySizeLimitExceeded(Exception):
    """Raised when request body exceeds size limit."""


@dataclass
class RateLimitBucket:
    """Sliding window rate limit bucket."""

    timestamps: list[float] = field(default_factory=list)

    def cleanup(self, now: float, window_seconds: float) -> None:
        cutoff = now - window_seconds
        self.timestamps = [t for t in self.timestamps if t > cutoff]

    def add_request(self, now: float) -> None:
        self.timestamps.append(now)

    def count(self) -> int:
        return len(self.timestamps)


class SlidingWindowRateLimiter:
    """Sliding window rate limiter.

    Process-local: with several uvicorn workers the effective limit is
    multiplied by the worker count.
    """

    _CLEANUP_INTERVAL: float = 60.0
    _BUCKET_MAX_AGE: float = 300.0

    def __init__(self, window_seconds: float = 60.0) -> None:
        self._buckets: dict[str, RateLimitBucket] = defaultdict(RateLimitBucket)
        self._window_seconds = window_seconds
        self._lock = asyncio.Lock()
        self._last_cleanup: float = 0.0

    async def allow(self, key: str, limit: int) -> bool:
        async with self._lock:
            now = time.time()

            if now - self._last_cleanup > self._CLEANUP_INTERVAL:
                self._cleanup_old_buckets_unlocked(now)
                self._last_cleanup = now

            bucket = self._buckets[key]
            bucket.cleanup(now, self._window_seconds)

            if bucket.count() >= limit:
                return False

            bucket.add_request(now)
            return True

    def _cleanup_old_buckets_unlocked(self, now: float) -> None:
        """Remove buckets with no recent activity. Must be called under lock."""
        cutoff = now - self._BUCKET_MAX_AGE
        keys_to_remove = [
            key
            for key, bucket in self._buckets.items()
            if not bucket.timestamps or max(bucket.timestamps) < cutoff
        ]
        for key in keys_to_remove:
            del self._buckets[key]


def _sanitize_ip(value: str) -> str:
    return "".join(c for c in value if 0x20 <= ord(c) < 0x7F)


def get_client_ip(request: Request, trust_forwarded_headers: bool = False) -> str:
    """Get client IP with optional trusted proxy header support."""
    if trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return _sanitize_ip(forwarded_for.split(",")[0].strip())

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return _sanitize_ip(real_ip.strip())

    if request.client:
        return request.client.host

    return "unknown"


def _request_too_large_response(max_body_size_bytes: int) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={
            "error": "request_too_large",
            "message": f"Request body exceeds {max_body_size_bytes} bytes",
        },
    )


def _rate_limited_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "rate_limit_exceeded", "message": message},
        headers={"Retry-After": "60"},
    )


class PreAuthSecurityMiddleware(BaseHTTPMiddleware):
    """
    Runs before authentication.

    - request body size limit (Content-Length fast path, then streamed)
    - IP-based rate limiting
    """

    EXEMPT_PATHS = SECURITY_EXEMPT_PATHS

    def __init__(
        self,
        app: Callable,
        max_body_size_bytes: int,
        rate_limit_per_ip: int,
        rate_limiter: SlidingWindowRateLimiter,
        trust_forwarded_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.max_body_size_bytes = max_body_size_bytes
        self.rate_limit_per_ip = rate_limit_per_ip
        self.rate_limiter = rate_limiter
        self._trust_forwarded_headers = trust_forwarded_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > self.max_body_size_bytes:
                    logger.warning(
                        "Request body too large: %s > %d",
                        content_length,
                        self.max_body_size_bytes,
                    )
                    return _request_too_large_response(self.max_body_size_bytes)
            except ValueError:
                logger.warning("Invalid Content-Length header: %r", content_length)

        if request.method in ("POST", "PUT", "PATCH"):
            try:
                await self._check_body_size_streaming(request, self.max_body_size_bytes)
            except BodySizeLimitExceeded:
                logger.warning("Request body exceeded limit during streaming")
                return _request_too_large_response(self.max_body_size_bytes)

        client_ip = get_client_ip(request, trust_forwarded_headers=self._trust_forwarded_headers)
        if not await self.rate_limiter.allow(f"ip:{client_ip}", self.rate_limit_per_ip):
            logger.warning("Rate limit exceeded for IP: %s", client_ip)
            return _rate_limited_response("Too many requests from this IP")

        return await call_next(request)

    async def _check_body_size_streaming(self, request: Request, max_size: int) -> int:
        buf = bytearray()
        async for chunk in request.stream():
            buf.extend(chunk)
            if len(buf) > max_size:
                raise BodySizeLimitExceeded(f"Body exceeded {max_size} bytes")
        # Cache the body so downstream handlers can read it
        request._body = bytes(buf)
        return len(buf)


class UserRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-caller rate limit; needs ``request.state.caller`` from the auth middleware."""

    EXEMPT_PATHS = SECURITY_EXEMPT_PATHS

    def __init__(
        self,
        app: Callable,
        rate_limit_per_user: int,
        rate_limiter: SlidingWindowRateLimiter,
    ) -> None:
        super().__init__(app)
        self.rate_limit_per_user = rate_limit_per_user
        self.rate_limiter = rate_limiter

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        caller = getattr(request.state, "caller", None)
        if caller is not None:
            if not await self.rate_limiter.allow(
                f"user:{caller.user_id}", self.rate_limit_per_user
            ):
                logger.warning("Rate limit exceeded for user: %s", caller.user_id)
                return _rate_limited_response("Too many requests from this user")

        return await call_next(request)
