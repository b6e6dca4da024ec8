"""Guess persistence: the active-guess invariant and idempotent resolution."""

from __future__ import annotations

from sqlalchemy import delete, desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guessgame.errors import Conflict
from guessgame.models import ChangeKind, EntityType, Guess

from .change_repository import ChangeRepository
from .types import GuessInput, GuessResolutionInput, guess_image
from .user_repository import UserRepository


class GuessRepository:
    """Encapsulate guess reads and the two conditional writes that mutate them."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._users = UserRepository(session)
        self._changes = ChangeRepository(session)

    # ------------------------------------------------------------------
    # Mutations

    def create_guess(self, payload: GuessInput) -> Guess:
        """Insert an unresolved guess.

        The partial unique index on unresolved guesses rejects a second active
        guess for the same user, so concurrent placements cannot both succeed.
        """

        guess = Guess(
            guess_id=payload.guess_id,
            user_id=payload.user_id,
            instrument=payload.instrument,
            direction=payload.direction,
            start_price=payload.start_price,
            start_time=payload.start_time,
            resolved=False,
        )
        self._session.add(guess)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise Conflict(
                "You already have an active guess. Wait for it to resolve before making another guess."
            ) from exc
        return guess

    def resolve_guess(self, payload: GuessResolutionInput) -> Guess | None:
        """Mark a guess resolved and apply its score change in one transaction.

        Returns the resolved guess, or ``None`` when it was already resolved
        (or never existed) so a redelivered task changes nothing.
        """

        result = self._session.execute(
            update(Guess)
            .where(Guess.guess_id == payload.guess_id, Guess.resolved.is_(False))
            .values(
                resolved=True,
                end_price=payload.end_price,
                correct=payload.correct,
                score_change=payload.score_change,
                resolved_at=payload.resolved_at,
                resolution_source=payload.resolution_source,
                retry_count=payload.retry_count,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        guess = self._session.get(Guess, payload.guess_id, populate_existing=True)
        self._users.increment_score(guess.user_id, payload.score_change)
        self._changes.record_change(
            entity_type=EntityType.GUESS,
            event_name=ChangeKind.MODIFY,
            entity_key=guess.guess_id,
            new_image=guess_image(guess),
        )
        return guess

    def discard_unresolved(self, guess_id: str) -> bool:
        result = self._session.execute(
            delete(Guess)
            .where(Guess.guess_id == guess_id, Guess.resolved.is_(False))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Queries

    def get_guess(self, guess_id: str) -> Guess | None:
        return self._session.get(Guess, guess_id)

    def get_active_guess(self, user_id: str) -> Guess | None:
        query = (
            select(Guess)
            .where(Guess.user_id == user_id, Guess.resolved.is_(False))
            .order_by(desc(Guess.start_time))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def get_history(self, user_id: str, *, limit: int) -> list[Guess]:
        query = (
            select(Guess)
            .where(Guess.user_id == user_id, Guess.resolved.is_(True))
            .order_by(desc(Guess.start_time), desc(Guess.guess_id))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())
