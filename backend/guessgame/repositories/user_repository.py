"""User profile persistence."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import update
from sqlalchemy.orm import Session

from guessgame.domain.timeutils import now_ms
from guessgame.models import User


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_user(self, user_id: str) -> User | None:
        return self._session.get(User, user_id)

    def create_user(self, user_id: str, email: str) -> User:
        """Create the profile once; a repeated confirmation returns the existing row."""

        existing = self._session.get(User, user_id)
        if existing is not None:
            return existing

        now = now_ms()
        user = User(user_id=user_id, email=email, score=0, created_at=now, updated_at=now)
        self._session.add(user)
        self._session.flush()
        return user

    def increment_score(self, user_id: str, delta: int) -> bool:
        result = self._session.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(score=User.score + delta, updated_at=now_ms())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            logger.warning("Score change {} dropped: user {} has no profile", delta, user_id)
            return False
        return True
