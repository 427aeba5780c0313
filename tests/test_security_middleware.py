"""Tests for Security Middleware."""

from __future__ import annotations

from contextlib import closing
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from atti_backend.middleware.security import (
    PreAuthSecurityMiddleware,
    RateLimitBucket,
    SlidingWindowRateLimiter,
    UserRateLimitMiddleware,
    get_client_ip,
)


async def _echo(request: Request) -> JSONResponse:
    body = await request.body()
    return JSONResponse({"size": len(body)})


def _pre_auth_app(
    max_body_size_bytes: int = 10 * 1024,
    rate_limit_per_ip: int = 100,
) -> Starlette:
    return Starlette(
        routes=[
            Route("/determinazioni", _echo, methods=["GET", "POST"]),
            Route("/health", _echo, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                PreAuthSecurityMiddleware,
                max_body_size_bytes=max_body_size_bytes,
                rate_limit_per_ip=rate_limit_per_ip,
                rate_limiter=SlidingWindowRateLimiter(),
            )
        ],
    )


class TestSlidingWindowRateLimiter:
    """Tests for SlidingWindowRateLimiter."""

    @pytest.mark.asyncio
    async def test_allows_within_limit(self) -> None:
        limiter = SlidingWindowRateLimiter()

        for _ in range(5):
            assert await limiter.allow("test-key", 10) is True

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self) -> None:
        limiter = SlidingWindowRateLimiter()

        for _ in range(5):
            assert await limiter.allow("test-key", 5) is True

        assert await limiter.allow("test-key", 5) is False

    @pytest.mark.asyncio
    async def test_separate_keys(self) -> None:
        limiter = SlidingWindowRateLimiter()

        for _ in range(3):
            await limiter.allow("key1", 3)

        assert await limiter.allow("key1", 3) is False
        assert await limiter.allow("key2", 3) is True

    def test_cleanup_old_buckets_removes_idle_keys(self) -> None:
        limiter = SlidingWindowRateLimiter()
        now = 1000.0
        limiter._buckets["old"].timestamps = [1.0]
        limiter._buckets["empty"].timestamps = []
        limiter._buckets["new"].timestamps = [990.0]

        limiter._cleanup_old_buckets_unlocked(now)

        assert "old" not in limiter._buckets
        assert "empty" not in limiter._buckets
        assert "new" in limiter._buckets

    def test_rate_limit_bucket_cleanup_removes_expired_timestamps(self) -> None:
        bucket = RateLimitBucket()
        bucket.timestamps.extend([1.0, 100.0])

        bucket.cleanup(now=61.0, window_seconds=60.0)

        assert bucket.timestamps == [100.0]


class TestGetClientIp:
    """Tests for get_client_ip function."""

    def test_x_forwarded_for(self) -> None:
        request = MagicMock(spec=Request)
        request.headers = {"x-forwarded-for": "1.2.3.4, 5.6.7.8"}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request, trust_forwarded_headers=True) == "1.2.3.4"

    def test_forwarded_headers_ignored_unless_trusted(self) -> None:
        request = MagicMock(spec=Request)
        request.headers = {"x-forwarded-for": "1.2.3.4"}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request) == "10.0.0.1"

    def test_x_real_ip(self) -> None:
        request = MagicMock(spec=Request)
        request.headers = {"x-real-ip": "1.2.3.4"}
        request.client = MagicMock(host="10.0.0.1")

        assert get_client_ip(request, trust_forwarded_headers=True) == "1.2.3.4"

    def test_unknown_when_no_client(self) -> None:
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = None

        assert get_client_ip(request) == "unknown"


class TestPreAuthSecurityMiddleware:
    """Tests for PreAuthSecurityMiddleware."""

    def test_exempt_paths_bypass_security(self) -> None:
        with closing(TestClient(_pre_auth_app(rate_limit_per_ip=1))) as client:
            for _ in range(5):
                assert client.get("/health").status_code == 200

    def test_ip_rate_limit(self) -> None:
        with closing(TestClient(_pre_auth_app(rate_limit_per_ip=2))) as client:
            assert client.get("/determinazioni").status_code == 200
            assert client.get("/determinazioni").status_code == 200

            response = client.get("/determinazioni")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limit_exceeded"
        assert response.headers["Retry-After"] == "60"

    def test_declared_content_length_over_limit(self) -> None:
        with closing(TestClient(_pre_auth_app(max_body_size_bytes=1024))) as client:
            response = client.post(
                "/determinazioni",
                content="x" * 100,
                headers={"Content-Length": str(2 * 1024 * 1024)},
            )

        assert response.status_code == 413
        assert response.json()["error"] == "request_too_large"

    def test_content_length_mismatch_does_not_bypass_limit(self) -> None:
        with closing(TestClient(_pre_auth_app(max_body_size_bytes=100))) as client:
            response = client.post(
                "/determinazioni",
                content="x" * 200,
                headers={"Content-Length": "1"},
            )

        assert response.status_code == 413

    def test_body_is_still_readable_downstream(self) -> None:
        with closing(TestClient(_pre_auth_app(max_body_size_bytes=100))) as client:
            response = client.post("/determinazioni", content="x" * 30)

        assert response.status_code == 200
        assert response.json() == {"size": 30}


class TestUserRateLimitMiddleware:
    def _app(self, limit: int) -> Starlette:
        class _FakeAuth(BaseHTTPMiddleware):
            async def dispatch(self, request, call_next):
                user = request.headers.get("x-user")
                if user:
                    request.state.caller = SimpleNamespace(user_id=user)
                return await call_next(request)

        return Starlette(
            routes=[Route("/determinazioni", _echo, methods=["GET"])],
            middleware=[
                Middleware(_FakeAuth),
                Middleware(
                    UserRateLimitMiddleware,
                    rate_limit_per_user=limit,
                    rate_limiter=SlidingWindowRateLimiter(),
                ),
            ],
        )

    def test_limits_each_caller_separately(self) -> None:
        with closing(TestClient(self._app(limit=1))) as client:
            assert client.get("/determinazioni", headers={"x-user": "a"}).status_code == 200
            assert client.get("/determinazioni", headers={"x-user": "a"}).status_code == 429
            assert client.get("/determinazioni", headers={"x-user": "b"}).status_code == 200

    def test_anonymous_requests_pass_through(self) -> None:
        with closing(TestClient(self._app(limit=1))) as client:
            for _ in range(3):
                assert client.get("/determinazioni").status_code == 200
