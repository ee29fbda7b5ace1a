"""
Timestamp helpers.

Every timestamp inside the engine is a timezone-aware UTC ``datetime`` so that
cutoff comparisons never mix naive and aware values.  ``to_timestamp()`` is the
single normalisation point used when tables and cutoff frames are bound.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional


def to_timestamp(value: Any) -> Optional[datetime]:
    """Normalise ``value`` to a UTC-aware ``datetime``, or ``None`` if missing.

    Accepted inputs:
      - ``datetime``: naive values are assumed to be UTC; aware values are
        converted to UTC.
      - ``date``: midnight UTC of that day.
      - ``int`` / ``float``: seconds since the Unix epoch.
      - ``str``: ISO-8601; a trailing ``Z`` is accepted.  Blank strings are
        treated as missing.

    Raises:
        ValueError: If the value cannot be interpreted as a point in time.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot interpret boolean {value!r} as a timestamp.")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_timestamp(datetime.fromisoformat(text))
    raise ValueError(f"Cannot interpret {type(value).__name__} {value!r} as a timestamp.")


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(tz=timezone.utc)
