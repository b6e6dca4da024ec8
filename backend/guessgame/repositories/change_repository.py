"""Change-data-capture log written alongside guess and price mutations."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from guessgame.domain.timeutils import now_ms
from guessgame.models import ChangeKind, ChangeRecord, EntityType


class ChangeRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def record_change(
        self,
        *,
        entity_type: EntityType,
        event_name: ChangeKind,
        entity_key: str,
        new_image: dict[str, Any] | None,
    ) -> ChangeRecord:
        record = ChangeRecord(
            entity_type=entity_type.value,
            event_name=event_name.value,
            entity_key=entity_key,
            new_image=new_image,
            created_at=now_ms(),
        )
        self._session.add(record)
        return record

    def fetch_pending(self, *, limit: int, max_attempts: int) -> list[ChangeRecord]:
        query = (
            select(ChangeRecord)
            .where(ChangeRecord.processed_at.is_(None), ChangeRecord.attempts < max_attempts)
            .order_by(ChangeRecord.change_id.asc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    def mark_processed(self, change_ids: Iterable[int], *, processed_at: int | None = None) -> int:
        ids = list(change_ids)
        if not ids:
            return 0
        result = self._session.execute(
            update(ChangeRecord)
            .where(ChangeRecord.change_id.in_(ids))
            .values(processed_at=processed_at or now_ms())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def mark_failed(self, change_id: int, error: str) -> None:
        self._session.execute(
            update(ChangeRecord)
            .where(ChangeRecord.change_id == change_id)
            .values(attempts=ChangeRecord.attempts + 1, last_error=error[:2000])
            .execution_options(synchronize_session=False)
        )
