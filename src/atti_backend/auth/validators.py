"""Bearer token validators producing a :class:`Caller`."""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import jwt

from atti_backend.auth.context import Caller
from atti_backend.config import AuthSettings

logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Token validation failure with error code."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class TokenValidator(Protocol):
    async def validate(self, token: str) -> Caller: ...


def is_jwt_format(token: str) -> bool:
    """Check if token is in JWT format (3 dot-separated base64 parts)."""
    if not token:
        return False

    parts = token.split(".")
    if len(parts) != 3:
        return False

    for part in parts[:2]:
        if not part:
            return False
        try:
            remainder = len(part) % 4
            if remainder:
                part += "=" * (4 - remainder)
            base64.urlsafe_b64decode(part)
        except Exception:
            return False

    return True


def _claim_at_path(claims: Mapping[str, Any], path: str) -> Any:
    current: Any = claims
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def extract_roles(claims: Mapping[str, Any], roles_claim: str) -> frozenset[str]:
    """Read roles from a dotted claim path (``realm_access.roles`` for Keycloak).

    Accepts a list or a space/comma separated string.
    """
    raw = _claim_at_path(claims, roles_claim)
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        values = raw.replace(",", " ").split()
    elif isinstance(raw, (list, tuple)):
        values = [str(item) for item in raw]
    else:
        return frozenset()
    return frozenset(v.strip().lower() for v in values if v.strip())


def claims_to_caller(
    claims: Mapping[str, Any],
    *,
    user_id_claim: str,
    roles_claim: str,
    issuer: str,
) -> Caller:
    user_id = claims.get(user_id_claim) or claims.get("sub")
    if not user_id:
        raise TokenValidationError("Could not determine user_id", "missing_claim")

    exp = claims.get("exp")
    expiry = None
    if isinstance(exp, (int, float)):
        expiry = datetime.fromtimestamp(exp, tz=timezone.utc)

    return Caller(
        user_id=str(user_id),
        email=claims.get("email"),
        roles=extract_roles(claims, roles_claim),
        issuer=issuer,
        token_expiry=expiry,
        raw_claims=dict(claims),
    )


def _audience_matches(claims: Mapping[str, Any], allowed: frozenset[str]) -> bool:
    """aud or azp must name one of the allowed audiences (Keycloak sets azp)."""
    if not allowed:
        return True
    azp = claims.get("azp")
    if isinstance(azp, str) and azp in allowed:
        return True
    aud = claims.get("aud")
    if isinstance(aud, str):
        return aud in allowed
    if isinstance(aud, list):
        return bool({value for value in aud if isinstance(value, str)} & allowed)
    return False


def _decode(
    token: str,
    key: Any,
    *,
    algorithms: list[str],
    issuer: str | None,
    leeway: int,
) -> dict[str, Any]:
    options: dict[str, Any] = {
        "require": ["sub", "exp"],
        "verify_exp": True,
        "verify_nbf": True,
        "verify_iat": False,
        "verify_aud": False,  # checked by _audience_matches (azp aware)
    }
    try:
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            issuer=issuer,
            leeway=leeway,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenValidationError("Token expired", "token_expired") from e
    except jwt.InvalidIssuerError as e:
        raise TokenValidationError("Invalid issuer", "invalid_issuer") from e
    except jwt.ImmatureSignatureError as e:
        raise TokenValidationError("Token not yet valid (nbf)", "token_immature") from e
    except jwt.InvalidTokenError as e:
        raise TokenValidationError(f"Invalid token: {e}", "invalid_token") from e


def _read_header(token: str) -> dict[str, Any]:
    if not is_jwt_format(token):
        raise TokenValidationError("Token is not in JWT format", "invalid_token")
    try:
        header = jwt.get_unverified_header(token)
    except jwt.exceptions.DecodeError as e:
        raise TokenValidationError(f"Invalid token header: {e}", "invalid_token") from e
    if str(header.get("alg", "")).lower() == "none":
        raise TokenValidationError("Algorithm 'none' is not allowed", "invalid_algorithm")
    return header


class JWKSClient:
    """JWKS client with caching and backoff."""

    def __init__(
        self,
        jwks_uri: str,
        *,
        ttl_seconds: int = 3600,
        failure_backoff_seconds: int = 60,
        max_retries: int = 3,
    ) -> None:
        self.jwks_uri = jwks_uri
        self.ttl_seconds = ttl_seconds
        self.failure_backoff_seconds = failure_backoff_seconds
        self.max_retries = max_retries
        self._jwks_data: dict[str, Any] | None = None
        self._last_fetch: datetime | None = None
        self._last_failure: datetime | None = None
        self._lock = asyncio.Lock()

    async def get_signing_key(self, kid: str | None) -> Any:
        """Get signing key by kid, refreshing JWKS if needed."""
        async with self._lock:
            if self._should_refresh():
                await self._refresh_jwks()

        if self._jwks_data is None:
            raise TokenValidationError("JWKS not available", "jwks_error")

        keys = self._jwks_data.get("keys", [])
        if not keys:
            raise TokenValidationError("No keys in JWKS", "jwks_error")

        if kid:
            for key in keys:
                if key.get("kid") == kid:
                    return self._jwk_to_key(key)
            # Unknown kid: the IdP may have rotated its keys.
            async with self._lock:
                await self._refresh_jwks(force=True)
            for key in (self._jwks_data or {}).get("keys", []):
                if key.get("kid") == kid:
                    return self._jwk_to_key(key)
            raise TokenValidationError("Signing key not found", "key_not_found")

        return self._jwk_to_key(keys[0])

    @staticmethod
    def _jwk_to_key(jwk: dict[str, Any]) -> Any:
        kty = jwk.get("kty", "").upper()
        if kty == "RSA":
            return jwt.algorithms.RSAAlgorithm.from_jwk(jwk)
        if kty == "EC":
            return jwt.algorithms.ECAlgorithm.from_jwk(jwk)
        raise TokenValidationError(
            f"Unsupported key type: {kty}. Supported: RSA, EC",
            "unsupported_key_type",
        )

    def _should_refresh(self) -> bool:
        if self._jwks_data is None or self._last_fetch is None:
            return True
        age = (datetime.now(timezone.utc) - self._last_fetch).total_seconds()
        return age >= self.ttl_seconds

    def _can_retry(self) -> bool:
        if self._last_failure is None:
            return True
        elapsed = (datetime.now(timezone.utc) - self._last_failure).total_seconds()
        return elapsed >= self.failure_backoff_seconds

    async def _refresh_jwks(self, force: bool = False) -> None:
        if not force and not self._can_retry():
            logger.debug("JWKS refresh skipped (backoff)")
            return

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(self.jwks_uri, timeout=10.0)
                    resp.raise_for_status()
                    self._jwks_data = resp.json()
                    self._last_fetch = datetime.now(timezone.utc)
                    self._last_failure = None
                    logger.info("JWKS refreshed from %s", self.jwks_uri)
                    return
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("JWKS fetch attempt %d failed: %s", attempt + 1, e)
                if attempt == self.max_retries - 1:
                    self._last_failure = datetime.now(timezone.utc)
                    if self._jwks_data is None:
                        raise TokenValidationError(f"JWKS fetch failed: {e}", "jwks_error") from e
                else:
                    await asyncio.sleep(min(2**attempt, 30))


class OIDCValidator:
    """
    Validator for tokens issued by the OIDC identity provider (Keycloak realm).

    - rejects opaque tokens and alg=none
    - enforces issuer, allowed algorithms and aud/azp
    - verifies signature and exp/nbf with configurable leeway
    """

    def __init__(self, settings: AuthSettings, jwks_client: JWKSClient | None = None) -> None:
        if not settings.issuer:
            raise ValueError("issuer is required for OIDC validation")
        self.issuer = settings.issuer.rstrip("/")
        self.audience = frozenset(settings.audience)
        self.algorithms = list(settings.allowed_algorithms)
        self.leeway = settings.clock_skew_seconds
        self.user_id_claim = settings.user_id_claim
        self.roles_claim = settings.roles_claim
        jwks_uri = settings.jwks_uri or f"{self.issuer}/protocol/openid-connect/certs"
        self._jwks = jwks_client or JWKSClient(
            jwks_uri,
            ttl_seconds=settings.jwks_ttl_seconds,
            failure_backoff_seconds=settings.jwks_failure_backoff_seconds,
        )

    async def validate(self, token: str) -> Caller:
        header = _read_header(token)
        alg = header.get("alg", "")
        if alg not in self.algorithms:
            raise TokenValidationError(f"Algorithm '{alg}' not allowed", "invalid_algorithm")

        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.exceptions.DecodeError as e:
            raise TokenValidationError(f"Invalid token payload: {e}", "invalid_token") from e

        if str(unverified.get("iss", "")).rstrip("/") != self.issuer:
            # Generic message: do not reveal the expected issuer.
            raise TokenValidationError("Token validation failed", "invalid_token")
        if not _audience_matches(unverified, self.audience):
            raise TokenValidationError("Invalid audience", "invalid_audience")

        key = await self._jwks.get_signing_key(header.get("kid"))
        claims = _decode(
            token,
            key,
            algorithms=self.algorithms,
            issuer=unverified["iss"],
            leeway=self.leeway,
        )
        return claims_to_caller(
            claims,
            user_id_claim=self.user_id_claim,
            roles_claim=self.roles_claim,
            issuer=self.issuer,
        )


class SharedSecretValidator:
    """HS256 tokens signed with a shared secret. Meant for development and tests."""

    ALGORITHMS = ["HS256"]

    def __init__(self, settings: AuthSettings) -> None:
        if not settings.shared_secret:
            raise ValueError("shared_secret is required")
        self._secret = settings.shared_secret
        self.issuer = settings.issuer.rstrip("/") if settings.issuer else None
        self.audience = frozenset(settings.audience)
        self.leeway = settings.clock_skew_seconds
        self.user_id_claim = settings.user_id_claim
        self.roles_claim = settings.roles_claim

    async def validate(self, token: str) -> Caller:
        header = _read_header(token)
        if header.get("alg") not in self.ALGORITHMS:
            raise TokenValidationError(
                f"Algorithm '{header.get('alg')}' not allowed", "invalid_algorithm"
            )
        claims = _decode(
            token,
            self._secret,
            algorithms=self.ALGORITHMS,
            issuer=self.issuer,
            leeway=self.leeway,
        )
        if not _audience_matches(claims, self.audience):
            raise TokenValidationError("Invalid audience", "invalid_audience")
        return claims_to_caller(
            claims,
            user_id_claim=self.user_id_claim,
            roles_claim=self.roles_claim,
            issuer=self.issuer or "shared-secret",
        )


def create_validator(settings: AuthSettings) -> TokenValidator:
    if settings.provider == "shared-secret":
        return SharedSecretValidator(settings)
    return OIDCValidator(settings)
