"""Storage primitives for the resolution delay queue."""

from __future__ import annotations

from typing import Any

from sqlalchemy import asc, delete, desc, func, select, update
from sqlalchemy.orm import Session

from guessgame.models import ResolutionTaskRecord


class TaskQueueRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def insert(
        self, *, message_id: str, payload: dict[str, Any], enqueued_at: int, available_at: int
    ) -> ResolutionTaskRecord:
        record = ResolutionTaskRecord(
            message_id=message_id,
            payload=payload,
            enqueued_at=enqueued_at,
            available_at=available_at,
            receive_count=0,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def claim(
        self,
        record: ResolutionTaskRecord,
        *,
        now: int,
        visibility_ms: int,
    ) -> bool:
        """Hide ``record`` for ``visibility_ms`` if nobody claimed it first."""

        result = self._session.execute(
            update(ResolutionTaskRecord)
            .where(
                ResolutionTaskRecord.message_id == record.message_id,
                ResolutionTaskRecord.available_at == record.available_at,
                ResolutionTaskRecord.receive_count == record.receive_count,
                ResolutionTaskRecord.dead_lettered_at.is_(None),
            )
            .values(
                receive_count=ResolutionTaskRecord.receive_count + 1,
                available_at=now + visibility_ms,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def dead_letter(self, message_id: str, *, now: int, reason: str | None = None) -> bool:
        values: dict[str, Any] = {"dead_lettered_at": now}
        if reason:
            values["last_error"] = reason[:2000]
        result = self._session.execute(
            update(ResolutionTaskRecord)
            .where(
                ResolutionTaskRecord.message_id == message_id,
                ResolutionTaskRecord.dead_lettered_at.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, message_id: str) -> bool:
        result = self._session.execute(
            delete(ResolutionTaskRecord)
            .where(ResolutionTaskRecord.message_id == message_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_error(self, message_id: str, error: str) -> None:
        self._session.execute(
            update(ResolutionTaskRecord)
            .where(ResolutionTaskRecord.message_id == message_id)
            .values(last_error=error[:2000])
            .execution_options(synchronize_session=False)
        )

    def redrive(self, message_id: str, *, now: int) -> bool:
        result = self._session.execute(
            update(ResolutionTaskRecord)
            .where(
                ResolutionTaskRecord.message_id == message_id,
                ResolutionTaskRecord.dead_lettered_at.is_not(None),
            )
            .values(dead_lettered_at=None, receive_count=0, available_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def purge_enqueued_before(self, cutoff: int) -> int:
        result = self._session.execute(
            delete(ResolutionTaskRecord)
            .where(ResolutionTaskRecord.enqueued_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def get(self, message_id: str) -> ResolutionTaskRecord | None:
        return self._session.get(ResolutionTaskRecord, message_id)

    def next_ready(self, now: int) -> ResolutionTaskRecord | None:
        query = (
            select(ResolutionTaskRecord)
            .where(
                ResolutionTaskRecord.dead_lettered_at.is_(None),
                ResolutionTaskRecord.available_at <= now,
            )
            .order_by(asc(ResolutionTaskRecord.available_at), asc(ResolutionTaskRecord.message_id))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def list_dead_letters(self, *, limit: int) -> list[ResolutionTaskRecord]:
        query = (
            select(ResolutionTaskRecord)
            .where(ResolutionTaskRecord.dead_lettered_at.is_not(None))
            .order_by(desc(ResolutionTaskRecord.dead_lettered_at))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    def count_pending(self) -> int:
        query = select(func.count()).select_from(ResolutionTaskRecord).where(
            ResolutionTaskRecord.dead_lettered_at.is_(None)
        )
        return int(self._session.execute(query).scalar_one())
