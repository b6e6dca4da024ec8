from __future__ import annotations

from decimal import Decimal

import pytest

from guessgame.domain import Direction, score_guess


@pytest.mark.parametrize(
    ("direction", "end_price", "expected"),
    [
        (Direction.UP, "46000", (True, 1)),
        (Direction.UP, "44000", (False, -1)),
        (Direction.DOWN, "44000", (True, 1)),
        (Direction.DOWN, "46000", (False, -1)),
    ],
)
def test_score_guess_directional_outcomes(direction, end_price, expected):
    """Scoring follows the direction of the move relative to the start price."""
    assert score_guess(direction, Decimal("45000"), Decimal(end_price)) == expected


@pytest.mark.parametrize("direction", [Direction.UP, Direction.DOWN])
def test_flat_market_is_always_a_loss(direction):
    assert score_guess(direction, Decimal("100"), Decimal("100.00")) == (False, -1)


def test_direction_parse_is_case_insensitive():
    assert Direction.parse(" UP ") is Direction.UP
    assert Direction.parse("down") is Direction.DOWN
    with pytest.raises(ValueError):
        Direction.parse("sideways")
    with pytest.raises(ValueError):
        Direction.parse(None)
