"""JSON serialization utilities."""

from __future__ import annotations

import datetime
import decimal
import enum


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        # Preserve numeric type: convert to int if no decimal part, else float.
        # For values that would lose precision as float, use string.
        if obj == obj.to_integral_value():
            return int(obj)
        f = float(obj)
        if decimal.Decimal(str(f)) != obj:
            return str(obj)
        return f
    if isinstance(obj, enum.Enum):
        return obj.value
    return str(obj)
