from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from guessgame.domain import Direction, ResolutionTask
from guessgame.domain.timeutils import coerce_epoch_ms


def test_resolution_task_reads_queue_payload_with_defaults():
    """A first-attempt payload carries no retry count and may use seconds."""
    task = ResolutionTask.from_payload(
        {
            "userId": "user-123",
            "guessId": "guess-456",
            "instrument": "BTCUSD",
            "direction": "UP",
            "startPrice": 45000.5,
            "startTime": 1_700_000_000,
        }
    )

    assert task.direction is Direction.UP
    assert task.start_price == Decimal("45000.5")
    assert task.start_time == 1_700_000_000_000
    assert task.retry_count == 0


def test_next_attempt_only_bumps_retry_count():
    task = ResolutionTask(
        user_id="u",
        guess_id="g",
        instrument="BTCUSD",
        direction=Direction.DOWN,
        start_price=Decimal("100"),
        start_time=1,
        retry_count=2,
    )

    retry = task.next_attempt()

    assert retry.retry_count == 3
    assert retry.guess_id == task.guess_id
    assert task.retry_count == 2
    assert retry.to_payload()["retryCount"] == 3


def test_resolution_task_rejects_missing_fields():
    with pytest.raises(ValueError, match="guessId"):
        ResolutionTask.from_payload({"userId": "u"})


def test_coerce_epoch_ms_normalizes_boundary_formats():
    expected = 1_700_000_000_000
    assert coerce_epoch_ms(expected) == expected
    assert coerce_epoch_ms(1_700_000_000) == expected
    assert coerce_epoch_ms(str(expected)) == expected
    assert coerce_epoch_ms(datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)) == expected
    assert coerce_epoch_ms("2023-11-14T22:13:20Z") == expected
    with pytest.raises(ValueError):
        coerce_epoch_ms("yesterday-ish")
    with pytest.raises(ValueError):
        coerce_epoch_ms(True)
