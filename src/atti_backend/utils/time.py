"""Time helpers."""

from __future__ import annotations

from datetime import date, datetime, time, timezone, tzinfo


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_storage(value: datetime) -> str:
    """Serialize an aware datetime so stored strings sort chronologically."""
    if value.tzinfo is None:
        raise ValueError("naive datetimes cannot be stored")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage(value: str | None, tz: tzinfo | None = None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed.astimezone(tz) if tz is not None else parsed


def parse_datetime_param(value: str, tz: tzinfo, *, end_of_day: bool = False) -> datetime:
    """Parse a query-string date or datetime.

    A bare date expands to the start of that day, or to its last microsecond
    when ``end_of_day`` is set. Naive values are read in ``tz``.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty date")
    if len(text) == 10:
        day = date.fromisoformat(text)
        moment = time.max if end_of_day else time.min
        return datetime.combine(day, moment, tzinfo=tz)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed
