"""Configuration management for the determinazioni backend."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/atti.sqlite")
    sqlite_wal: bool = Field(default=True)
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="How long a writer waits for another process holding the write lock.",
    )


class LifecycleSettings(BaseModel):
    transition_policy: Literal["strict", "permissive"] = Field(
        default="strict",
        description=(
            "strict: only the documented edges are allowed. "
            "permissive: any known status from any state (external workflow engine drives it)."
        ),
    )
    office_timezone: str = Field(
        default="Europe/Rome",
        description="Timezone used for creation timestamps and the numbering year.",
    )

    @field_validator("office_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


class AuthSettings(BaseModel):
    """Bearer token authentication settings.

    - oidc: JWT signed by the identity provider (Keycloak realm), keys from JWKS
    - shared-secret: HS256 JWT signed with AUTH_SHARED_SECRET (development, tests)
    """

    provider: Literal["oidc", "shared-secret"] = Field(default="oidc")
    issuer: str | None = Field(default=None)
    audience: tuple[str, ...] = Field(default=())
    jwks_uri: str | None = Field(default=None)
    allowed_algorithms: tuple[str, ...] = Field(default=("RS256", "ES256"))
    clock_skew_seconds: int = Field(default=30, ge=0, le=600)
    shared_secret: str | None = Field(default=None, repr=False)
    user_id_claim: str = Field(default="preferred_username")
    roles_claim: str = Field(
        default="realm_access.roles",
        description="Dotted path of the claim holding the caller's roles.",
    )
    jwks_ttl_seconds: int = Field(default=3600, ge=60)
    jwks_failure_backoff_seconds: int = Field(default=60, ge=0)
    rate_limit_per_user: int = Field(default=100, ge=1)
    rate_limit_per_ip: int = Field(default=1000, ge=1)
    max_body_size_kb: int = Field(default=256, ge=1)
    access_log_enabled: bool = Field(default=True)

    @model_validator(mode="after")
    def _check_provider_requirements(self) -> "AuthSettings":
        if self.provider == "oidc" and not self.issuer:
            raise ValueError("AUTH_ISSUER is required for AUTH_PROVIDER=oidc")
        if self.provider == "shared-secret":
            if not self.shared_secret or len(self.shared_secret) < 32:
                raise ValueError(
                    "AUTH_SHARED_SECRET of at least 32 characters is required "
                    "for AUTH_PROVIDER=shared-secret"
                )
        return self


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1024, le=65535)
    http_allowed_origins: tuple[str, ...] = Field(default=())
    http_enable_cors: bool = Field(default=False)
    http_trust_forwarded_headers: bool = Field(default=False)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    auth: AuthSettings


ENV_KEYS = {
    "host": "ATTI_HOST",
    "port": "ATTI_PORT",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "transition_policy": "LIFECYCLE_TRANSITION_POLICY",
    "office_timezone": "OFFICE_TIMEZONE",
    "auth_provider": "AUTH_PROVIDER",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    algorithms = _split_csv_preserve_case(os.getenv("AUTH_ALLOWED_ALGORITHMS"))

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "http_allowed_origins": tuple(
                _split_csv_preserve_case(os.getenv("HTTP_ALLOWED_ORIGINS"))
            ),
            "http_enable_cors": _env_bool("HTTP_ENABLE_CORS", ServerSettings().http_enable_cors),
            "http_trust_forwarded_headers": _env_bool(
                "HTTP_TRUST_FORWARDED_HEADERS",
                ServerSettings().http_trust_forwarded_headers,
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool("SQLITE_WAL", StorageSettings().sqlite_wal),
            "busy_timeout_seconds": _env_float(
                "SQLITE_BUSY_TIMEOUT_SECONDS",
                StorageSettings().busy_timeout_seconds,
            ),
        },
        "lifecycle": {
            "transition_policy": os.getenv(
                ENV_KEYS["transition_policy"], LifecycleSettings().transition_policy
            ),
            "office_timezone": os.getenv(
                ENV_KEYS["office_timezone"], LifecycleSettings().office_timezone
            ),
        },
        "auth": {
            "provider": os.getenv(ENV_KEYS["auth_provider"], "oidc"),
            "issuer": os.getenv("AUTH_ISSUER", "").strip() or None,
            "audience": tuple(_split_csv_preserve_case(os.getenv("AUTH_AUDIENCE"))),
            "jwks_uri": os.getenv("AUTH_JWKS_URI", "").strip() or None,
            "allowed_algorithms": tuple(algorithms) if algorithms else ("RS256", "ES256"),
            "clock_skew_seconds": _env_int("AUTH_CLOCK_SKEW_SECONDS", 30),
            "shared_secret": os.getenv("AUTH_SHARED_SECRET") or None,
            "user_id_claim": os.getenv("AUTH_USER_ID_CLAIM", "preferred_username"),
            "roles_claim": os.getenv("AUTH_ROLES_CLAIM", "realm_access.roles"),
            "jwks_ttl_seconds": _env_int("AUTH_JWKS_TTL_SECONDS", 3600),
            "jwks_failure_backoff_seconds": _env_int("AUTH_JWKS_FAILURE_BACKOFF_SECONDS", 60),
            "rate_limit_per_user": _env_int("AUTH_RATE_LIMIT_PER_USER", 100),
            "rate_limit_per_ip": _env_int("AUTH_RATE_LIMIT_PER_IP", 1000),
            "max_body_size_kb": _env_int("AUTH_MAX_BODY_SIZE_KB", 256),
            "access_log_enabled": _env_bool("AUTH_ACCESS_LOG_ENABLED", True),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
