"""Append-only price observation ledger."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import asc, delete, desc, select
from sqlalchemy.orm import Session

from guessgame.models import ChangeKind, EntityType, PriceObservationRecord

from .change_repository import ChangeRepository
from .types import price_image


class PriceRepository:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._changes = ChangeRepository(session)

    def add_observation(
        self,
        *,
        instrument: str,
        price: Decimal,
        timestamp: int,
        source: str,
        expires_at: int,
    ) -> PriceObservationRecord:
        record = PriceObservationRecord(
            instrument=instrument,
            price=price,
            timestamp=timestamp,
            source=source,
            expires_at=expires_at,
        )
        self._session.add(record)
        self._session.flush()
        self._changes.record_change(
            entity_type=EntityType.PRICE,
            event_name=ChangeKind.INSERT,
            entity_key=f"{instrument}#{timestamp}",
            new_image=price_image(record),
        )
        return record

    def latest(self, instrument: str) -> PriceObservationRecord | None:
        query = (
            select(PriceObservationRecord)
            .where(PriceObservationRecord.instrument == instrument)
            .order_by(desc(PriceObservationRecord.timestamp), desc(PriceObservationRecord.observation_id))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def first_different_after(
        self, instrument: str, *, min_timestamp: int, reference_price: Decimal
    ) -> PriceObservationRecord | None:
        query = (
            select(PriceObservationRecord)
            .where(
                PriceObservationRecord.instrument == instrument,
                PriceObservationRecord.timestamp > min_timestamp,
                PriceObservationRecord.price != reference_price,
            )
            .order_by(asc(PriceObservationRecord.timestamp), asc(PriceObservationRecord.observation_id))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def purge_expired(self, now: int) -> int:
        result = self._session.execute(
            delete(PriceObservationRecord)
            .where(PriceObservationRecord.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
