from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from guessgame.core.config import Settings
from guessgame.db import Database, session_scope
from guessgame.domain import ResolutionTask
from guessgame.repositories import UserRepository
from guessgame.services.guess_service import GuessLifecycleEngine
from guessgame.services.price_cache import PriceCache
from guessgame.services.scheduler import ResolutionScheduler

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> int:
        self.now += int(seconds * 1000)
        return self.now


class StubPriceSource:
    name = "stub"

    def __init__(self, price: Decimal | str = "45000") -> None:
        self.price = Decimal(price)
        self.calls: list[str] = []
        self.error: Exception | None = None

    def get_spot_price(self, instrument: str) -> Decimal:
        self.calls.append(instrument)
        if self.error is not None:
            raise self.error
        return self.price


class RecordingQueue:
    """Delay queue double that only remembers what was enqueued."""

    def __init__(self) -> None:
        self.enqueued: list[tuple[ResolutionTask, float]] = []
        self.error: Exception | None = None

    def enqueue(self, task: ResolutionTask, delay_seconds: float) -> str:
        if self.error is not None:
            raise self.error
        self.enqueued.append((task, delay_seconds))
        return f"message-{len(self.enqueued)}"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'guessgame.db'}",
        event_fanout_url=None,
    )


@pytest.fixture
def database(test_settings):
    db = Database.from_settings(test_settings)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def price_source() -> StubPriceSource:
    return StubPriceSource()


@pytest.fixture
def price_cache(database, price_source, test_settings, clock) -> PriceCache:
    return PriceCache(database.session_factory, price_source, test_settings, clock=clock)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def engine(database, price_cache, queue, test_settings, clock) -> GuessLifecycleEngine:
    return GuessLifecycleEngine(
        database.session_factory, price_cache, queue, test_settings, clock=clock
    )


@pytest.fixture
def scheduler(database, test_settings, clock) -> ResolutionScheduler:
    return ResolutionScheduler(database.session_factory, test_settings, clock=clock)


@pytest.fixture
def make_user(database):
    def _make_user(user_id: str = "user-123", email: str = "player@example.com"):
        with session_scope(database.session_factory) as session:
            UserRepository(session).create_user(user_id, email)
        return user_id

    return _make_user


@pytest.fixture
def read_score(database):
    def _read_score(user_id: str) -> int:
        with session_scope(database.session_factory) as session:
            return UserRepository(session).get_user(user_id).score

    return _read_score
