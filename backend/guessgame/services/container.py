"""Process-wide wiring of the game's collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from guessgame.core.config import Settings, get_settings
from guessgame.db import Database, get_database
from pricefeed import CoinGeckoClient, SpotPriceSource

from .guess_service import GuessLifecycleEngine
from .notifier import ChangeNotifier, EventPublisher, build_publisher
from .price_cache import PriceCache
from .scheduler import ResolutionScheduler
from .user_service import UserService


@dataclass(slots=True)
class GameServices:
    settings: Settings
    database: Database
    price_source: SpotPriceSource
    price_cache: PriceCache
    scheduler: ResolutionScheduler
    engine: GuessLifecycleEngine
    users: UserService
    notifier: ChangeNotifier

    def close(self) -> None:
        for handle in (self.price_source, self.notifier.publisher):
            close = getattr(handle, "close", None)
            if close is not None:
                close()
        self.database.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    database: Database | None = None,
    price_source: SpotPriceSource | None = None,
    publisher: EventPublisher | None = None,
) -> GameServices:
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    price_source = price_source or CoinGeckoClient(settings=settings)
    session_factory = database.session_factory

    price_cache = PriceCache(session_factory, price_source, settings)
    scheduler = ResolutionScheduler(session_factory, settings)
    engine = GuessLifecycleEngine(session_factory, price_cache, scheduler, settings)
    scheduler.on_deliver(engine.resolve)

    return GameServices(
        settings=settings,
        database=database,
        price_source=price_source,
        price_cache=price_cache,
        scheduler=scheduler,
        engine=engine,
        users=UserService(session_factory),
        notifier=ChangeNotifier(publisher or build_publisher(settings)),
    )


@lru_cache
def get_services() -> GameServices:
    return build_services(get_settings(), database=get_database())
