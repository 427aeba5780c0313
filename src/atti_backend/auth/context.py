"""Authenticated caller identity, passed explicitly into service operations."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any


class Role(str, Enum):
    """Application roles granted by the identity provider."""

    PREPARER = "istruttore"
    MANAGER = "dirigente"
    ACCOUNTANT = "ragioniere"
    ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    """
    Immutable identity of the authenticated caller.

    Roles are kept as raw strings so roles unknown to this service (other
    realm roles) do not break authentication.
    """

    user_id: str
    email: str | None = None
    roles: frozenset[str] = frozenset()
    issuer: str = ""
    token_expiry: datetime | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw_claims: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(r.lower() for r in self.roles))
        object.__setattr__(self, "raw_claims", MappingProxyType(dict(self.raw_claims)))

    def __repr__(self) -> str:
        return (
            f"Caller(user_id={self.user_id!r}, email={self.email!r}, "
            f"roles={sorted(self.roles)!r}, issuer={self.issuer!r}, "
            f"request_id={self.request_id!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()

    def has_role(self, role: Role | str) -> bool:
        value = role.value if isinstance(role, Role) else role
        return value.lower() in self.roles

    def has_any_role(self, roles: Iterable[Role | str]) -> bool:
        return any(self.has_role(role) for role in roles)
