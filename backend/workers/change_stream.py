"""Drain the change log into the event fan-out."""

from __future__ import annotations

import argparse
import time
from collections.abc import Callable

from loguru import logger

from guessgame.core.config import Settings, get_settings
from guessgame.core.logging_config import configure_logging
from guessgame.db import SessionFactory, session_scope
from guessgame.repositories import ChangeRepository
from guessgame.services.container import GameServices, build_services
from guessgame.services.notifier import ChangeNotifier, ChangeRecordView, NotificationSummary


class ChangeStreamProcessor:
    """Feed pending change records to the notifier in commit order.

    Records the notifier published or skipped are marked processed. Records
    whose publish failed stay pending with one more attempt counted, until
    ``change_stream_max_attempts`` is reached and they are left for operators.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        notifier: ChangeNotifier,
        *,
        batch_size: int,
        max_attempts: int,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._batch_size = batch_size
        self._max_attempts = max_attempts

    def run_batch(self) -> NotificationSummary:
        with session_scope(self._session_factory) as session:
            records = ChangeRepository(session).fetch_pending(
                limit=self._batch_size, max_attempts=self._max_attempts
            )
            views = [ChangeRecordView.from_record(record) for record in records]

        if not views:
            return NotificationSummary()

        summary = self._notifier.process_batch(views)

        with session_scope(self._session_factory) as session:
            repo = ChangeRepository(session)
            repo.mark_processed(summary.handled)
            for change_id, error in summary.failed.items():
                repo.mark_failed(change_id, error)

        logger.info("Change batch processed: {}", summary.to_dict())
        return summary

    def run(
        self,
        *,
        once: bool = False,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> NotificationSummary:
        total = NotificationSummary()
        while True:
            summary = self.run_batch()
            total.published.extend(summary.published)
            total.skipped.extend(summary.skipped)
            total.failed.update(summary.failed)
            if summary.handled:
                continue
            if once:
                break
            sleep(poll_interval)
        return total


def run_change_stream(
    settings: Settings,
    *,
    once: bool = False,
    batch_size: int | None = None,
    services_factory: Callable[[Settings], GameServices] = build_services,
) -> NotificationSummary:
    services = services_factory(settings)
    try:
        services.database.create_all()
        processor = ChangeStreamProcessor(
            services.database.session_factory,
            services.notifier,
            batch_size=batch_size or settings.change_stream_batch_size,
            max_attempts=settings.change_stream_max_attempts,
        )
        return processor.run(once=once, poll_interval=settings.worker_poll_interval_seconds)
    finally:
        services.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Publish guess resolutions and price updates to subscribers"
    )
    parser.add_argument("--once", action="store_true", help="Drain pending changes and exit")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Change records handled per batch (defaults to settings)",
    )
    return parser.parse_args()


def main() -> NotificationSummary:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)
    return run_change_stream(settings, once=args.once, batch_size=args.batch_size)


if __name__ == "__main__":
    main()
