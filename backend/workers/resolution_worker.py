"""Long-running consumer that resolves guesses as their tasks come due."""

from __future__ import annotations

import argparse
import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from guessgame.core.config import Settings, get_settings
from guessgame.core.logging_config import configure_logging
from guessgame.domain import ResolutionOutcome, ResolutionStatus
from guessgame.services.container import GameServices, build_services
from guessgame.services.scheduler import ResolutionScheduler


@dataclass(slots=True)
class WorkerSummary:
    deliveries: int = 0
    resolved: int = 0
    requeued: int = 0
    already_resolved: int = 0
    failed: int = 0
    poll_errors: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deliveries": self.deliveries,
            "resolved": self.resolved,
            "requeued": self.requeued,
            "already_resolved": self.already_resolved,
            "failed": self.failed,
            "poll_errors": self.poll_errors,
            "failures": self.failures,
        }


class ResolutionWorker:
    """Pull one task at a time from the scheduler and hand it to the engine."""

    def __init__(
        self,
        scheduler: ResolutionScheduler,
        *,
        poll_interval: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._scheduler = scheduler
        self._poll_interval = poll_interval
        self._sleep = sleep

    def run(self, *, once: bool = False, max_deliveries: int | None = None) -> WorkerSummary:
        summary = WorkerSummary()
        logger.info(
            "Resolution worker started: once={}, max_deliveries={}, poll_interval={}s",
            once,
            max_deliveries,
            self._poll_interval,
        )
        while max_deliveries is None or summary.deliveries < max_deliveries:
            try:
                delivery = self._scheduler.poll_once()
            except Exception:  # noqa: BLE001 - the queue store may recover; keep polling
                summary.poll_errors += 1
                logger.exception("Polling the resolution queue failed")
                if once:
                    break
                self._sleep(self._poll_interval)
                continue

            if delivery is None:
                if once:
                    break
                self._sleep(self._poll_interval)
                continue

            summary.deliveries += 1
            if not delivery.acknowledged:
                summary.failed += 1
                summary.failures.append(
                    {
                        "guess_id": delivery.message.task.guess_id,
                        "message_id": delivery.message.message_id,
                        "receive_count": delivery.message.receive_count,
                        "error": delivery.error,
                    }
                )
                continue

            outcome: ResolutionOutcome = delivery.result
            if outcome.status is ResolutionStatus.RESOLVED:
                summary.resolved += 1
            elif outcome.status is ResolutionStatus.REQUEUED:
                summary.requeued += 1
            else:
                summary.already_resolved += 1

        logger.info(
            "Resolution worker finished: deliveries={}, resolved={}, requeued={}, failed={}",
            summary.deliveries,
            summary.resolved,
            summary.requeued,
            summary.failed,
        )
        return summary


def run_worker(
    settings: Settings,
    *,
    once: bool = False,
    max_deliveries: int | None = None,
    poll_interval: float | None = None,
    services_factory: Callable[[Settings], GameServices] = build_services,
) -> WorkerSummary:
    services = services_factory(settings)
    try:
        services.database.create_all()
        services.scheduler.purge_expired()
        worker = ResolutionWorker(
            services.scheduler,
            poll_interval=poll_interval or settings.worker_poll_interval_seconds,
        )
        return worker.run(once=once, max_deliveries=max_deliveries)
    finally:
        services.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve guesses as their resolution tasks come due")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain currently due tasks and exit instead of polling forever",
    )
    parser.add_argument(
        "--max-deliveries",
        type=int,
        default=None,
        help="Stop after this many deliveries",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds to sleep when no task is due (defaults to settings)",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def main() -> WorkerSummary:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)
    summary = run_worker(
        settings,
        once=args.once,
        max_deliveries=args.max_deliveries,
        poll_interval=args.poll_interval,
    )
    if args.summary_path:
        args.summary_path.parent.mkdir(parents=True, exist_ok=True)
        args.summary_path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
        logger.info("Worker summary written to {}", args.summary_path)
    return summary


if __name__ == "__main__":
    main()
