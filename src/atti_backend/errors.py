"""Domain error hierarchy shared by services and the HTTP layer."""

from __future__ import annotations


class AttiError(Exception):
    """Base error carrying the HTTP status and error code it maps to."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.code, "message": self.message}
        if self.retryable:
            payload["retryable"] = True
        return payload


class InvalidRequestError(AttiError):
    """Missing, blank or malformed input."""

    status_code = 400
    code = "invalid_request"


class NotFoundError(AttiError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(AttiError):
    """Status change not allowed by the configured transition policy."""

    status_code = 409
    code = "invalid_transition"


class NumberingConflictError(AttiError):
    """A sequence number collided with an existing record.

    The counter is atomic, so this only happens when rows were written
    outside the service (imports, manual fixes). The counter skips past
    such rows on the next attempt, so a retry gets a fresh number.
    """

    status_code = 409
    code = "numbering_conflict"
    retryable = True
