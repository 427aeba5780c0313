"""Data models for audit events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class AuditEvent:
    id: int
    process_instance_id: str | None
    event_type: str
    user_id: str | None
    timestamp: datetime
    details: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "processInstanceId": self.process_instance_id,
            "eventType": self.event_type,
            "userId": self.user_id,
            "timestamp": self.timestamp,
            "details": self.details,
        }


@dataclass(frozen=True)
class NewAuditEvent:
    process_instance_id: str | None
    event_type: str
    user_id: str | None
    timestamp: datetime
    details: str | None


@dataclass(frozen=True)
class AuditFilter:
    """Query filters; every supplied filter must match (AND)."""

    process_instance_id: str | None = None
    user_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditEntry(BaseModel):
    """Payload accepted by ``POST /audit``.

    A ``timestamp`` sent by the client is ignored: the recorder assigns it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    event_type: str = Field(alias="eventType", min_length=1, max_length=100)
    process_instance_id: str | None = Field(
        default=None, alias="processInstanceId", max_length=200
    )
    user_id: str | None = Field(default=None, alias="userId", max_length=200)
    details: str | None = Field(default=None, max_length=100_000)
