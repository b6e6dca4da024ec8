"""Guess lifecycle: placement, delayed resolution and scoring.

A guess moves ``Created -> Pending(retry_count) -> Resolved``. Placement
persists the guess and schedules the first resolution attempt after the
resolution delay. Each attempt either resolves the guess or, when the price
has not moved yet, schedules the next attempt with ``retry_count + 1`` after
a flat retry delay. Once retries are exhausted the current price is final
even if unchanged.

Infrastructure failures inside :meth:`GuessLifecycleEngine.resolve` are not
caught here; they reach the scheduler, which redelivers and eventually
dead-letters the task.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from uuid import uuid4

from loguru import logger

from guessgame import schemas
from guessgame.core.config import Settings
from guessgame.db import SessionFactory, session_scope
from guessgame.domain import (
    Direction,
    ResolutionOutcome,
    ResolutionSource,
    ResolutionStatus,
    ResolutionTask,
    score_guess,
)
from guessgame.domain.timeutils import now_ms, seconds_to_ms
from guessgame.errors import Conflict, InvalidInput, NotFound, Unauthorized
from guessgame.repositories import GuessInput, GuessRepository, GuessResolutionInput, UserRepository

from .price_cache import PriceCache
from .scheduler import DelayQueue


def _require_identity(user_id: str | None) -> str:
    if user_id is None or not str(user_id).strip():
        raise Unauthorized("Unauthorized: no user identity supplied")
    return str(user_id).strip()


class GuessLifecycleEngine:
    def __init__(
        self,
        session_factory: SessionFactory,
        price_cache: PriceCache,
        scheduler: DelayQueue,
        settings: Settings,
        *,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._session_factory = session_factory
        self._price_cache = price_cache
        self._scheduler = scheduler
        self._settings = settings
        self._clock = clock
        self._id_factory = id_factory

    @property
    def resolution_delay_seconds(self) -> int:
        return self._settings.guess_resolution_delay_seconds

    @property
    def retry_delay_seconds(self) -> int:
        return self._settings.guess_retry_delay_seconds

    @property
    def max_retries(self) -> int:
        return self._settings.guess_max_retries

    # ------------------------------------------------------------------
    # Place

    def place_guess(
        self, user_id: str | None, direction: str | Direction, instrument: str | None = None
    ) -> schemas.Guess:
        user_id = _require_identity(user_id)
        try:
            parsed_direction = Direction.parse(direction)
        except ValueError as exc:
            raise InvalidInput('Invalid direction. Must be "up" or "down"') from exc
        symbol = self._resolve_instrument(instrument)

        with session_scope(self._session_factory) as session:
            if UserRepository(session).get_user(user_id) is None:
                logger.error("User not found in database: {}", user_id)
                raise NotFound("User profile not found. Please contact support.")
            if GuessRepository(session).get_active_guess(user_id) is not None:
                raise Conflict(
                    "You already have an active guess. Wait for it to resolve before making another guess."
                )

        start_price = self._price_cache.get_current_price(symbol)
        logger.info("Current {} price: {}", symbol, start_price)

        with session_scope(self._session_factory) as session:
            guess = GuessRepository(session).create_guess(
                GuessInput(
                    guess_id=self._id_factory(),
                    user_id=user_id,
                    instrument=symbol,
                    direction=parsed_direction.value,
                    start_price=start_price,
                    start_time=self._clock(),
                )
            )
            created = schemas.Guess.model_validate(guess)

        task = ResolutionTask(
            user_id=user_id,
            guess_id=created.guess_id,
            instrument=symbol,
            direction=parsed_direction,
            start_price=start_price,
            start_time=created.start_time,
        )
        try:
            self._scheduler.enqueue(task, self.resolution_delay_seconds)
        except Exception:
            # An unscheduled guess would block the user forever; undo it.
            with session_scope(self._session_factory) as session:
                GuessRepository(session).discard_unresolved(created.guess_id)
            raise

        logger.info("Guess {} created for user {}", created.guess_id, user_id)
        return created

    def _resolve_instrument(self, instrument: str | None) -> str:
        symbol = (instrument or self._settings.default_instrument).strip().upper()
        if self._settings.instrument_source(symbol) is None:
            raise InvalidInput(f"Unsupported instrument {symbol!r}")
        return symbol

    # ------------------------------------------------------------------
    # Resolve

    def resolve(self, task: ResolutionTask) -> ResolutionOutcome:
        logger.info(
            "Resolving guess {} for user {} (retry {}/{})",
            task.guess_id,
            task.user_id,
            task.retry_count,
            self.max_retries,
        )

        with session_scope(self._session_factory) as session:
            guess = GuessRepository(session).get_guess(task.guess_id)
            already_done = guess is None or guess.resolved
        if already_done:
            logger.info("Guess {} already resolved or missing; ignoring redelivery", task.guess_id)
            return ResolutionOutcome(
                status=ResolutionStatus.ALREADY_RESOLVED,
                guess_id=task.guess_id,
                retry_count=task.retry_count,
            )

        min_timestamp = task.start_time + seconds_to_ms(self.resolution_delay_seconds)
        end_price = self._price_cache.find_different_price_after(
            task.instrument, min_timestamp, task.start_price
        )

        if end_price is not None:
            source = ResolutionSource.HISTORICAL
            logger.info("Found different historical price {} for guess {}", end_price, task.guess_id)
        else:
            current_price = self._price_cache.get_current_price(task.instrument)
            if current_price == task.start_price and task.retry_count < self.max_retries:
                retry = task.next_attempt()
                self._scheduler.enqueue(retry, self.retry_delay_seconds)
                logger.info(
                    "Price unchanged ({}), requeued guess {} (retry {}/{})",
                    current_price,
                    task.guess_id,
                    retry.retry_count,
                    self.max_retries,
                )
                return ResolutionOutcome(
                    status=ResolutionStatus.REQUEUED,
                    guess_id=task.guess_id,
                    retry_count=retry.retry_count,
                )
            source = ResolutionSource.LIVE
            end_price = current_price

        return self._apply_score(task, end_price, source)

    def _apply_score(
        self, task: ResolutionTask, end_price: Decimal, source: ResolutionSource
    ) -> ResolutionOutcome:
        correct, score_change = score_guess(task.direction, task.start_price, end_price)
        if end_price == task.start_price:
            logger.info("Price unchanged after all retries; guess {} marked incorrect", task.guess_id)

        with session_scope(self._session_factory) as session:
            resolved = GuessRepository(session).resolve_guess(
                GuessResolutionInput(
                    guess_id=task.guess_id,
                    end_price=end_price,
                    correct=correct,
                    score_change=score_change,
                    resolved_at=self._clock(),
                    resolution_source=source.value,
                    retry_count=task.retry_count,
                )
            )

        if resolved is None:
            logger.info("Guess {} was resolved concurrently; score untouched", task.guess_id)
            return ResolutionOutcome(
                status=ResolutionStatus.ALREADY_RESOLVED,
                guess_id=task.guess_id,
                retry_count=task.retry_count,
            )

        logger.info(
            "Guess {} {}: {} from {} to {} ({:+d})",
            task.guess_id,
            "correct" if correct else "incorrect",
            task.direction.value.upper(),
            task.start_price,
            end_price,
            score_change,
        )
        return ResolutionOutcome(
            status=ResolutionStatus.RESOLVED,
            guess_id=task.guess_id,
            retry_count=task.retry_count,
            end_price=end_price,
            correct=correct,
            score_change=score_change,
            source=source,
        )

    # ------------------------------------------------------------------
    # Reads

    def get_user(self, user_id: str | None) -> schemas.UserProfile | None:
        user_id = _require_identity(user_id)
        with session_scope(self._session_factory) as session:
            user = UserRepository(session).get_user(user_id)
            if user is None:
                logger.info("User not found: {}", user_id)
                return None
            active = GuessRepository(session).get_active_guess(user_id)
            profile = schemas.UserProfile.model_validate(user)
            if active is not None:
                profile = profile.model_copy(
                    update={"active_guess": schemas.Guess.model_validate(active)}
                )
            return profile

    def get_active_guess(self, user_id: str | None) -> schemas.Guess | None:
        user_id = _require_identity(user_id)
        with session_scope(self._session_factory) as session:
            guess = GuessRepository(session).get_active_guess(user_id)
            return schemas.Guess.model_validate(guess) if guess else None

    def get_guess_history(self, user_id: str | None, limit: int | None = None) -> list[schemas.Guess]:
        user_id = _require_identity(user_id)
        if limit is None:
            limit = self._settings.history_default_limit
        if limit < 1 or limit > self._settings.history_max_limit:
            raise InvalidInput(
                f"limit must be between 1 and {self._settings.history_max_limit}"
            )
        with session_scope(self._session_factory) as session:
            history = GuessRepository(session).get_history(user_id, limit=limit)
            logger.info("Retrieved {} guesses for user {}", len(history), user_id)
            return [schemas.Guess.model_validate(guess) for guess in history]
