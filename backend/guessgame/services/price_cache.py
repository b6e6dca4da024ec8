"""Price cache backed by the observation ledger."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

from loguru import logger

from guessgame.core.config import Settings
from guessgame.db import SessionFactory, session_scope
from guessgame.domain import PriceObservation
from guessgame.domain.timeutils import now_ms, seconds_to_ms
from guessgame.models import PriceObservationRecord
from guessgame.repositories import PriceRepository
from pricefeed import SpotPriceSource

MILLIS_PER_DAY = 24 * 60 * 60 * 1000


def _to_observation(record: PriceObservationRecord) -> PriceObservation:
    return PriceObservation(
        instrument=record.instrument,
        price=Decimal(record.price),
        timestamp=record.timestamp,
        source=record.source,
        expires_at=record.expires_at,
    )


class PriceCache:
    """Serve recent prices from the ledger and fall back to the upstream source.

    Every upstream fetch is recorded, so the ledger doubles as a history that
    pending resolutions can search before calling upstream themselves.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        price_source: SpotPriceSource,
        settings: Settings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._session_factory = session_factory
        self._price_source = price_source
        self._ttl_ms = seconds_to_ms(settings.price_cache_ttl_seconds)
        self._retention_ms = settings.price_retention_days * MILLIS_PER_DAY
        self._clock = clock

    def record_price(
        self, instrument: str, price: Decimal, source: str | None = None
    ) -> PriceObservation | None:
        timestamp = self._clock()
        try:
            with session_scope(self._session_factory) as session:
                record = PriceRepository(session).add_observation(
                    instrument=instrument,
                    price=price,
                    timestamp=timestamp,
                    source=source or self._price_source.name,
                    expires_at=timestamp + self._retention_ms,
                )
                observation = _to_observation(record)
        except Exception:  # noqa: BLE001 - cache writes never block retrieval
            logger.exception("Cache write failed for {} at {}", instrument, timestamp)
            return None
        return observation

    def get_fresh_price(self, instrument: str) -> PriceObservation | None:
        try:
            with session_scope(self._session_factory) as session:
                record = PriceRepository(session).latest(instrument)
                observation = _to_observation(record) if record else None
        except Exception:  # noqa: BLE001 - a failed read is treated as a miss
            logger.exception("Cache read failed for {}", instrument)
            return None

        if observation is None:
            return None
        age = self._clock() - observation.timestamp
        if age < self._ttl_ms:
            logger.debug("Cache hit for {}: {} (age {}ms)", instrument, observation.price, age)
            return observation
        return None

    def get_current_price(self, instrument: str) -> Decimal:
        cached = self.get_fresh_price(instrument)
        if cached is not None:
            return cached.price

        logger.info("Cache miss for {}; fetching from {}", instrument, self._price_source.name)
        price = self._price_source.get_spot_price(instrument)
        self.record_price(instrument, price)
        return price

    def find_different_price_after(
        self, instrument: str, min_timestamp: int, reference_price: Decimal
    ) -> Decimal | None:
        with session_scope(self._session_factory) as session:
            record = PriceRepository(session).first_different_after(
                instrument, min_timestamp=min_timestamp, reference_price=reference_price
            )
            return Decimal(record.price) if record else None

    def latest_price(self, instrument: str) -> PriceObservation | None:
        with session_scope(self._session_factory) as session:
            record = PriceRepository(session).latest(instrument)
            return _to_observation(record) if record else None

    def purge_expired(self) -> int:
        with session_scope(self._session_factory) as session:
            removed = PriceRepository(session).purge_expired(self._clock())
        if removed:
            logger.info("Purged {} expired price observations", removed)
        return removed
