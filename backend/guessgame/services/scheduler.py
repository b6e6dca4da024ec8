"""Delay queue that delivers resolution tasks no earlier than their due time.

Delivery is at-least-once. A claimed task is hidden for the visibility
timeout; if the handler raises, the task simply reappears once that timeout
lapses. A task that has already been received ``queue_max_receive_count``
times is moved to the dead-letter path instead of being delivered again.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger

from guessgame.core.config import Settings
from guessgame.db import SessionFactory, session_scope
from guessgame.domain import ResolutionTask
from guessgame.domain.timeutils import now_ms, seconds_to_ms
from guessgame.repositories import TaskQueueRepository

MILLIS_PER_DAY = 24 * 60 * 60 * 1000

TaskHandler = Callable[[ResolutionTask], Any]


class DelayQueue(Protocol):
    def enqueue(self, task: ResolutionTask, delay_seconds: float) -> str: ...


@dataclass(slots=True, frozen=True)
class QueueMessage:
    message_id: str
    task: ResolutionTask
    receive_count: int


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    message: QueueMessage
    acknowledged: bool
    result: Any = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class DeadLetter:
    message_id: str
    payload: dict[str, Any]
    receive_count: int
    enqueued_at: int
    dead_lettered_at: int
    last_error: str | None


class ResolutionScheduler:
    def __init__(
        self,
        session_factory: SessionFactory,
        settings: Settings,
        *,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._session_factory = session_factory
        self._visibility_ms = seconds_to_ms(settings.queue_visibility_timeout_seconds)
        self._max_receive_count = settings.queue_max_receive_count
        self._retention_ms = settings.queue_retention_days * MILLIS_PER_DAY
        self._clock = clock
        self._id_factory = id_factory
        self._handler: TaskHandler | None = None

    # ------------------------------------------------------------------
    # Producer side

    def enqueue(self, task: ResolutionTask, delay_seconds: float) -> str:
        now = self._clock()
        message_id = self._id_factory()
        with session_scope(self._session_factory) as session:
            TaskQueueRepository(session).insert(
                message_id=message_id,
                payload=task.to_payload(),
                enqueued_at=now,
                available_at=now + seconds_to_ms(delay_seconds),
            )
        logger.info(
            "Queued resolution of guess {} in {}s (retry {})",
            task.guess_id,
            delay_seconds,
            task.retry_count,
        )
        return message_id

    # ------------------------------------------------------------------
    # Consumer side

    def on_deliver(self, handler: TaskHandler) -> None:
        self._handler = handler

    def receive(self) -> QueueMessage | None:
        """Claim the next due task, dead-lettering any that exhausted their receives."""

        while True:
            now = self._clock()
            with session_scope(self._session_factory) as session:
                repo = TaskQueueRepository(session)
                record = repo.next_ready(now)
                if record is None:
                    return None

                if record.receive_count >= self._max_receive_count:
                    repo.dead_letter(
                        record.message_id,
                        now=now,
                        reason=record.last_error or "max receive count exceeded",
                    )
                    logger.error(
                        "Task {} dead-lettered after {} receives: {}",
                        record.message_id,
                        record.receive_count,
                        record.last_error,
                    )
                    continue

                if not repo.claim(record, now=now, visibility_ms=self._visibility_ms):
                    continue

                message_id = record.message_id
                payload = dict(record.payload)
                receive_count = record.receive_count + 1

            try:
                task = ResolutionTask.from_payload(payload)
            except ValueError as exc:
                self._dead_letter(message_id, f"malformed payload: {exc}")
                continue

            return QueueMessage(message_id=message_id, task=task, receive_count=receive_count)

    def ack(self, message_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return TaskQueueRepository(session).delete(message_id)

    def release(self, message_id: str, error: str) -> None:
        with session_scope(self._session_factory) as session:
            TaskQueueRepository(session).record_error(message_id, error)

    def poll_once(self) -> DeliveryResult | None:
        """Deliver at most one due task to the registered handler."""

        if self._handler is None:
            raise RuntimeError("no delivery handler registered")

        message = self.receive()
        if message is None:
            return None

        try:
            result = self._handler(message.task)
        except Exception as exc:  # noqa: BLE001 - redelivered after the visibility timeout
            error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "Resolution of guess {} failed (message {}, receive {}/{})",
                message.task.guess_id,
                message.message_id,
                message.receive_count,
                self._max_receive_count,
            )
            self.release(message.message_id, error)
            return DeliveryResult(message=message, acknowledged=False, error=error)

        self.ack(message.message_id)
        return DeliveryResult(message=message, acknowledged=True, result=result)

    # ------------------------------------------------------------------
    # Operator tools

    def dead_letters(self, limit: int = 50) -> list[DeadLetter]:
        with session_scope(self._session_factory) as session:
            records = TaskQueueRepository(session).list_dead_letters(limit=limit)
            return [
                DeadLetter(
                    message_id=record.message_id,
                    payload=dict(record.payload),
                    receive_count=record.receive_count,
                    enqueued_at=record.enqueued_at,
                    dead_lettered_at=record.dead_lettered_at,
                    last_error=record.last_error,
                )
                for record in records
            ]

    def redrive(self, message_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            moved = TaskQueueRepository(session).redrive(message_id, now=self._clock())
        if moved:
            logger.info("Redrove dead-lettered task {}", message_id)
        return moved

    def pending_count(self) -> int:
        with session_scope(self._session_factory) as session:
            return TaskQueueRepository(session).count_pending()

    def purge_expired(self) -> int:
        cutoff = self._clock() - self._retention_ms
        with session_scope(self._session_factory) as session:
            removed = TaskQueueRepository(session).purge_enqueued_before(cutoff)
        if removed:
            logger.warning("Purged {} resolution tasks past retention", removed)
        return removed

    def _dead_letter(self, message_id: str, reason: str) -> None:
        with session_scope(self._session_factory) as session:
            TaskQueueRepository(session).dead_letter(message_id, now=self._clock(), reason=reason)
        logger.error("Task {} dead-lettered: {}", message_id, reason)
