"""Error taxonomy surfaced by the guess game core."""

from __future__ import annotations


class GuessGameError(Exception):
    """Base class for errors returned to callers as an operation result."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(GuessGameError):
    status_code = 401
    code = "unauthorized"


class InvalidInput(GuessGameError):
    status_code = 422
    code = "invalid_input"


class NotFound(GuessGameError):
    status_code = 404
    code = "not_found"


class Conflict(GuessGameError):
    status_code = 409
    code = "conflict"


class UpstreamUnavailable(GuessGameError):
    """The price source or the store failed transiently."""

    status_code = 503
    code = "upstream_unavailable"


__all__ = [
    "GuessGameError",
    "Unauthorized",
    "InvalidInput",
    "NotFound",
    "Conflict",
    "UpstreamUnavailable",
]
