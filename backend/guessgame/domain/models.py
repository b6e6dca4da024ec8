"""Typed domain representations shared by the engine, queue and notifier."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .timeutils import coerce_epoch_ms


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"direction must be 'up' or 'down', got {value!r}")


class ResolutionSource(str, Enum):
    HISTORICAL = "historical"
    LIVE = "live"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    REQUEUED = "requeued"
    ALREADY_RESOLVED = "already_resolved"


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a price: {value!r}")
    try:
        # str() first so floats keep their printed value rather than binary noise
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a price: {value!r}") from exc


@dataclass(slots=True, frozen=True)
class PriceObservation:
    instrument: str
    price: Decimal
    timestamp: int
    source: str
    expires_at: int


@dataclass(slots=True, frozen=True)
class ResolutionTask:
    """Queue payload pointing at one pending guess."""

    user_id: str
    guess_id: str
    instrument: str
    direction: Direction
    start_price: Decimal
    start_time: int
    retry_count: int = 0

    def next_attempt(self) -> "ResolutionTask":
        return replace(self, retry_count=self.retry_count + 1)

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "guessId": self.guess_id,
            "instrument": self.instrument,
            "direction": self.direction.value,
            "startPrice": str(self.start_price),
            "startTime": self.start_time,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ResolutionTask":
        try:
            return cls(
                user_id=str(payload["userId"]),
                guess_id=str(payload["guessId"]),
                instrument=str(payload["instrument"]),
                direction=Direction.parse(payload["direction"]),
                start_price=to_decimal(payload["startPrice"]),
                start_time=coerce_epoch_ms(payload["startTime"]),
                retry_count=int(payload.get("retryCount") or 0),
            )
        except KeyError as exc:
            raise ValueError(f"resolution task missing field {exc.args[0]!r}") from exc


@dataclass(slots=True, frozen=True)
class ResolutionOutcome:
    status: ResolutionStatus
    guess_id: str
    retry_count: int
    end_price: Decimal | None = None
    correct: bool | None = None
    score_change: int | None = None
    source: ResolutionSource | None = None


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """Event republished to subscribers after a committed mutation."""

    type: str
    key: str
    payload: dict[str, Any]


GUESS_RESOLVED = "GuessResolved"
PRICE_UPDATED = "PriceUpdated"
