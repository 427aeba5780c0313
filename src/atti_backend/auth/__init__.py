"""Authentication and caller identity."""

from atti_backend.auth.context import Caller, Role

__all__ = ["Caller", "Role"]
