from __future__ import annotations

from decimal import Decimal

from .models import Direction


def score_guess(direction: Direction, start_price: Decimal, end_price: Decimal) -> tuple[bool, int]:
    """Return ``(correct, score_change)`` for a directional guess.

    An unchanged price is scored as a loss whatever the direction: the guess
    is a directional bet and a flat market did not move the way it was called.
    """

    if end_price > start_price:
        correct = direction is Direction.UP
    elif end_price < start_price:
        correct = direction is Direction.DOWN
    else:
        correct = False
    return correct, 1 if correct else -1
