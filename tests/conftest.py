from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Iterable
from typing import Any, Callable

import jwt
import pytest
from starlette.testclient import TestClient

from atti_backend.app import AppContext, build_app_context
from atti_backend.config import AuthSettings, Settings, StorageSettings
from atti_backend.transport.http_server import create_http_app

TEST_SECRET = "test-shared-secret-for-hs256-tokens-0123456789"

TokenFactory = Callable[..., str]


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(provider="shared-secret", shared_secret=TEST_SECRET)


@pytest.fixture
def settings(tmp_path, auth_settings: AuthSettings) -> Settings:
    return Settings(
        storage=StorageSettings(sqlite_path=str(tmp_path / "atti.sqlite")),
        auth=auth_settings,
    )


@pytest.fixture
def app_context(settings: Settings) -> AppContext:
    ctx = build_app_context(settings)
    yield ctx
    ctx.close()


@pytest.fixture
def client(app_context: AppContext) -> TestClient:
    with TestClient(create_http_app(context=app_context)) as test_client:
        yield test_client


@pytest.fixture
def issue_token() -> TokenFactory:
    """Build HS256 tokens shaped like Keycloak access tokens."""

    def _issue(
        user: str = "mario.rossi",
        roles: Iterable[str] = ("istruttore",),
        *,
        secret: str = TEST_SECRET,
        expires_in: int = 300,
        **extra: Any,
    ) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "sub": f"sub-{user}",
            "preferred_username": user,
            "email": f"{user}@comune.example.it",
            "realm_access": {"roles": list(roles)},
            "iat": now,
            "exp": now + expires_in,
        }
        claims.update(extra)
        return jwt.encode(claims, secret, algorithm="HS256")

    return _issue


@pytest.fixture
def auth_header(issue_token: TokenFactory) -> Callable[..., dict[str, str]]:
    def _header(user: str = "mario.rossi", roles: Iterable[str] = ("istruttore",)) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user, roles)}"}

    return _header
