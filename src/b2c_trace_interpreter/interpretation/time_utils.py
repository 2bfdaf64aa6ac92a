"""Timestamp parsing with UTC enforcement.

Telemetry timestamps are ISO-8601 strings, commonly with a `Z` suffix and up
to seven fractional digits. All parsed datetimes are timezone-aware UTC;
naive input is assumed to already be UTC.

Public Functions:
    parse_timestamp: Parse ISO-8601 text into an aware datetime (or None)
    to_epoch_ms: Convert an aware datetime to integer epoch milliseconds
    elapsed_ms: Whole milliseconds between two datetimes
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

__all__ = ["EPOCH", "parse_timestamp", "to_epoch_ms", "elapsed_ms"]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r"\1", text)
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    delta = dt - EPOCH
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000


def elapsed_ms(start: datetime, end: datetime) -> int:
    return to_epoch_ms(end) - to_epoch_ms(start)
