"""Republish committed guess and price mutations to the event fan-out."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from loguru import logger

from guessgame.core.config import Settings
from guessgame.domain import GUESS_RESOLVED, PRICE_UPDATED, ChangeEvent
from guessgame.domain.timeutils import coerce_epoch_ms
from guessgame.models import ChangeKind, ChangeRecord, EntityType

UPDATE_GUESS_STATUS_MUTATION = """
  mutation UpdateGuessStatus($userId: ID!, $guess: GuessInput!) {
    updateGuessStatus(userId: $userId, guess: $guess) {
      guessId
      userId
      direction
      startPrice
      startTime
      resolved
      endPrice
      correct
      scoreChange
      resolvedAt
    }
  }
"""

UPDATE_PRICE_MUTATION = """
  mutation UpdatePrice($instrument: String!, $price: Float!, $timestamp: AWSTimestamp!) {
    updatePrice(instrument: $instrument, price: $price, timestamp: $timestamp) {
      instrument
      price
      timestamp
    }
  }
"""


@dataclass(slots=True, frozen=True)
class ChangeRecordView:
    change_id: int
    entity_type: str
    event_name: str
    entity_key: str
    new_image: Any

    @classmethod
    def from_record(cls, record: ChangeRecord) -> "ChangeRecordView":
        return cls(
            change_id=record.change_id,
            entity_type=record.entity_type,
            event_name=record.event_name,
            entity_key=record.entity_key,
            new_image=dict(record.new_image) if isinstance(record.new_image, dict) else record.new_image,
        )


@dataclass(slots=True)
class NotificationSummary:
    published: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def handled(self) -> list[int]:
        return [*self.published, *self.skipped]

    def to_dict(self) -> dict[str, Any]:
        return {
            "published": len(self.published),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }


class EventPublisher(Protocol):
    def publish(self, event: ChangeEvent) -> None: ...


class LoggingEventPublisher:
    """Publisher used when no fan-out endpoint is configured."""

    def publish(self, event: ChangeEvent) -> None:
        logger.info("Event {} {}: {}", event.type, event.key, event.payload)


class GraphQLEventPublisher:
    """Push events to subscribers through GraphQL mutations on the fan-out API."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self.url = url
        self.client = httpx.Client(timeout=timeout, headers=headers, transport=transport)

    def publish(self, event: ChangeEvent) -> None:
        if event.type == GUESS_RESOLVED:
            query = UPDATE_GUESS_STATUS_MUTATION
            variables = {"userId": event.payload["userId"], "guess": event.payload}
        elif event.type == PRICE_UPDATED:
            query = UPDATE_PRICE_MUTATION
            variables = {
                "instrument": event.payload["instrument"],
                "price": event.payload["price"],
                "timestamp": event.payload["timestamp"],
            }
        else:
            raise ValueError(f"unknown event type {event.type!r}")

        response = self.client.post(self.url, json={"query": query, "variables": variables})
        response.raise_for_status()
        result = response.json()
        if result.get("errors"):
            raise RuntimeError(f"Fan-out GraphQL errors: {result['errors']}")
        logger.debug("Fan-out accepted {} for {}", event.type, event.key)

    def close(self) -> None:
        self.client.close()


def build_publisher(settings: Settings) -> EventPublisher:
    if settings.event_fanout_url:
        return GraphQLEventPublisher(
            url=str(settings.event_fanout_url), api_key=settings.event_fanout_api_key
        )
    logger.warning("No event fan-out URL configured; events will only be logged")
    return LoggingEventPublisher()


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _guess_payload(image: dict[str, Any]) -> dict[str, Any]:
    for required in ("guessId", "userId", "direction", "startPrice", "startTime"):
        if image.get(required) in (None, ""):
            raise ValueError(f"guess image missing {required}")
    return {
        "guessId": str(image["guessId"]),
        "userId": str(image["userId"]),
        "instrument": image.get("instrument"),
        "direction": str(image["direction"]),
        "startPrice": float(image["startPrice"]),
        "startTime": coerce_epoch_ms(image["startTime"]),
        "resolved": True,
        "endPrice": _optional_float(image.get("endPrice")),
        "correct": image.get("correct"),
        "scoreChange": image.get("scoreChange"),
        "resolvedAt": coerce_epoch_ms(image["resolvedAt"]) if image.get("resolvedAt") else None,
    }


def _price_payload(image: dict[str, Any]) -> dict[str, Any]:
    for required in ("instrument", "price", "timestamp"):
        if image.get(required) in (None, ""):
            raise ValueError(f"price image missing {required}")
    return {
        "instrument": str(image["instrument"]),
        "price": float(image["price"]),
        "timestamp": coerce_epoch_ms(image["timestamp"]),
    }


class ChangeNotifier:
    """Turn change records into events, isolating failures per record."""

    def __init__(self, publisher: EventPublisher) -> None:
        self.publisher = publisher

    def build_event(self, record: ChangeRecordView) -> ChangeEvent | None:
        """Return the event for ``record``, ``None`` if it is not one subscribers see.

        Raises ``ValueError`` when the record claims to be relevant but its
        image cannot be read.
        """

        image = record.new_image
        if image is None or image == {}:
            return None
        if not isinstance(image, dict):
            raise ValueError(f"new image is {type(image).__name__}, not an object")

        if record.entity_type == EntityType.GUESS.value:
            if record.event_name != ChangeKind.MODIFY.value or not image.get("resolved"):
                return None
            payload = _guess_payload(image)
            return ChangeEvent(type=GUESS_RESOLVED, key=payload["guessId"], payload=payload)

        if record.entity_type == EntityType.PRICE.value:
            if record.event_name != ChangeKind.INSERT.value:
                return None
            payload = _price_payload(image)
            return ChangeEvent(
                type=PRICE_UPDATED,
                key=f"{payload['instrument']}#{payload['timestamp']}",
                payload=payload,
            )

        return None

    def process_batch(self, records: Iterable[ChangeRecordView]) -> NotificationSummary:
        summary = NotificationSummary()
        for record in records:
            try:
                event = self.build_event(record)
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping malformed change record {}: {}", record.change_id, exc)
                summary.skipped.append(record.change_id)
                continue

            if event is None:
                summary.skipped.append(record.change_id)
                continue

            try:
                self.publisher.publish(event)
            except Exception as exc:  # noqa: BLE001 - one bad record must not block the batch
                logger.exception("Failed to publish {} for change {}", event.type, record.change_id)
                summary.failed[record.change_id] = f"{type(exc).__name__}: {exc}"
                continue

            logger.info("Published {} {}", event.type, event.key)
            summary.published.append(record.change_id)
        return summary
