"""Shared repository input types and change-record images."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from guessgame.models import Guess, PriceObservationRecord


@dataclass(slots=True)
class GuessInput:
    guess_id: str
    user_id: str
    instrument: str
    direction: str
    start_price: Decimal
    start_time: int


@dataclass(slots=True)
class GuessResolutionInput:
    guess_id: str
    end_price: Decimal
    correct: bool
    score_change: int
    resolved_at: int
    resolution_source: str
    retry_count: int


def _price_text(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value.normalize(), "f")


def guess_image(guess: Guess) -> dict[str, Any]:
    """Snapshot a guess row the way subscribers receive it."""

    return {
        "guessId": guess.guess_id,
        "userId": guess.user_id,
        "instrument": guess.instrument,
        "direction": guess.direction,
        "startPrice": _price_text(guess.start_price),
        "startTime": guess.start_time,
        "resolved": bool(guess.resolved),
        "endPrice": _price_text(guess.end_price),
        "correct": guess.correct,
        "scoreChange": guess.score_change,
        "resolvedAt": guess.resolved_at,
    }


def price_image(record: PriceObservationRecord) -> dict[str, Any]:
    return {
        "instrument": record.instrument,
        "price": _price_text(record.price),
        "timestamp": record.timestamp,
        "source": record.source,
    }


__all__ = ["GuessInput", "GuessResolutionInput", "guess_image", "price_image"]
