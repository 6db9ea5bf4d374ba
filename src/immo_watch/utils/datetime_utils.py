from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from dateutil import parser

# Numeric timestamps above this are epoch milliseconds (JavaScript Date.now()).
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Read a stored listing timestamp.

    Accepts ISO-8601 strings (with or without ``Z``), other date strings
    dateutil understands, and epoch seconds or milliseconds. Returns None
    for anything else so the caller can drop the entry.
    """
    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    for parse in (parser.isoparse, parser.parse):
        try:
            return to_utc(parse(text))
        except (ValueError, TypeError, OverflowError):
            continue
    return None


def format_datetime(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%d %H:%M:%S UTC")
