"""Epoch-millisecond helpers; every instant in the game is stored this way."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

MILLIS_PER_SECOND = 1000


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def seconds_to_ms(seconds: float) -> int:
    return int(round(seconds * MILLIS_PER_SECOND))


def to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / MILLIS_PER_SECOND, tz=timezone.utc)


def coerce_epoch_ms(value: Any) -> int:
    """Normalize an external timestamp into epoch milliseconds.

    Accepts integers already in milliseconds, integers or floats in seconds
    (anything below 10^11 is treated as seconds), datetimes and ISO-8601
    strings. Raises ``ValueError`` for anything else.
    """

    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if abs(value) < 100_000_000_000:
            return int(round(value * MILLIS_PER_SECOND))
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(round(value.timestamp() * MILLIS_PER_SECOND))
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.lstrip("-").isdigit():
            return coerce_epoch_ms(int(candidate))
        try:
            parsed = date_parser.isoparse(candidate)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"not a timestamp: {value!r}") from exc
        return coerce_epoch_ms(parsed)
    raise ValueError(f"not a timestamp: {value!r}")
