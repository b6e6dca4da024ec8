"""Operator tool for the resolution dead-letter path and retention purges."""

from __future__ import annotations

import argparse
import json
from collections.abc import Callable, Sequence
from dataclasses import asdict

from loguru import logger

from guessgame.core.config import Settings, get_settings
from guessgame.core.logging_config import configure_logging
from guessgame.services.container import GameServices, build_services


def list_dead_letters(services: GameServices, *, limit: int) -> list[dict]:
    entries = [asdict(entry) for entry in services.scheduler.dead_letters(limit)]
    logger.info("{} dead-lettered resolution tasks", len(entries))
    return entries


def redrive(services: GameServices, message_ids: Sequence[str]) -> dict[str, bool]:
    results = {message_id: services.scheduler.redrive(message_id) for message_id in message_ids}
    missing = [message_id for message_id, moved in results.items() if not moved]
    if missing:
        logger.warning("Not in the dead-letter path: {}", ", ".join(missing))
    return results


def purge(services: GameServices) -> dict[str, int]:
    return {
        "resolution_tasks": services.scheduler.purge_expired(),
        "price_observations": services.price_cache.purge_expired(),
    }


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and redrive dead-lettered resolution tasks")
    commands = parser.add_subparsers(dest="command", required=True)

    list_parser = commands.add_parser("list", help="Show dead-lettered tasks, newest first")
    list_parser.add_argument("--limit", type=int, default=50)

    redrive_parser = commands.add_parser("redrive", help="Return tasks to the live queue")
    redrive_parser.add_argument("message_ids", nargs="+")

    commands.add_parser("purge", help="Delete tasks and price observations past retention")
    return parser.parse_args(argv)


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    services_factory: Callable[[Settings], GameServices] = build_services,
) -> object:
    args = _parse_args(argv)
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    services = services_factory(settings)
    try:
        services.database.create_all()
        if args.command == "list":
            result: object = list_dead_letters(services, limit=args.limit)
        elif args.command == "redrive":
            result = redrive(services, args.message_ids)
        else:
            result = purge(services)
    finally:
        services.close()

    print(json.dumps(result, default=str, indent=2))
    return result


if __name__ == "__main__":
    main()
