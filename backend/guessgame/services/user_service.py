from __future__ import annotations

from loguru import logger

from guessgame.db import SessionFactory, session_scope
from guessgame.repositories import UserRepository


class UserService:
    """Create profiles when the identity provider confirms a user."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def confirm_user(self, user_id: str | None, email: str | None) -> bool:
        """Create the profile for a newly confirmed identity.

        Never raises: a failure here must not block confirmation, and the
        identity provider retries the hook on its own schedule. Returns whether
        a profile exists afterwards.
        """

        if not user_id:
            logger.error("Confirmation without a user id; ignoring")
            return False
        if not email:
            logger.error("No email found in attributes for {}; profile not created", user_id)
            return False

        try:
            with session_scope(self._session_factory) as session:
                UserRepository(session).create_user(user_id, email)
        except Exception:  # noqa: BLE001 - confirmation must succeed regardless
            logger.exception("Error creating user profile for {}", user_id)
            return False

        logger.info("User profile ready for {} ({})", user_id, email)
        return True
