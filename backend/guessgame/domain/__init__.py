"""Domain types for guesses, prices and resolution tasks."""

from .models import (
    GUESS_RESOLVED,
    PRICE_UPDATED,
    ChangeEvent,
    Direction,
    PriceObservation,
    ResolutionOutcome,
    ResolutionSource,
    ResolutionStatus,
    ResolutionTask,
    to_decimal,
)
from .scoring import score_guess

__all__ = [
    "GUESS_RESOLVED",
    "PRICE_UPDATED",
    "ChangeEvent",
    "Direction",
    "PriceObservation",
    "ResolutionOutcome",
    "ResolutionSource",
    "ResolutionStatus",
    "ResolutionTask",
    "score_guess",
    "to_decimal",
]
