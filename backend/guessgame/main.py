from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from . import schemas
from .core.config import Settings, get_settings
from .db import init_db
from .errors import GuessGameError, NotFound, Unauthorized
from .services.container import get_services
from .services.guess_service import GuessLifecycleEngine
from .services.price_cache import PriceCache
from .services.user_service import UserService

app = FastAPI(title="Guess Game API", version="0.1.0", debug=get_settings().debug)


@app.on_event("startup")
def on_startup() -> None:
    """Create tables when the API boots."""

    init_db()


@app.exception_handler(GuessGameError)
def handle_game_error(_request: Request, exc: GuessGameError) -> JSONResponse:
    body = schemas.ErrorResponse(code=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def _current_user_id(
    x_user_id: Annotated[
        str | None,
        Header(description="Subject issued by the identity provider"),
    ] = None,
) -> str | None:
    """Identity is established upstream; the core only reads the forwarded subject."""

    return x_user_id


def _verify_hook_secret(
    x_hook_secret: Annotated[str | None, Header(description="Shared secret of the identity provider")] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.confirmation_hook_secret
    if expected is None:
        return
    if x_hook_secret is None or not secrets.compare_digest(x_hook_secret, expected):
        raise Unauthorized("Unauthorized: invalid confirmation hook secret")


def _guess_engine() -> GuessLifecycleEngine:
    return get_services().engine


def _price_cache() -> PriceCache:
    return get_services().price_cache


def _user_service() -> UserService:
    return get_services().users


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/me", response_model=schemas.UserProfile, tags=["users"])
def get_me(
    user_id: str | None = Depends(_current_user_id),
    engine: GuessLifecycleEngine = Depends(_guess_engine),
):
    """Return the caller's profile, score and active guess."""

    profile = engine.get_user(user_id)
    if profile is None:
        raise NotFound("User profile not found")
    return profile


@app.post("/users/confirm", response_model=schemas.ConfirmationResult, tags=["users"])
def confirm_user(
    payload: schemas.UserConfirmation,
    service: UserService = Depends(_user_service),
    _authorized: None = Depends(_verify_hook_secret),
):
    """Identity-provider hook run once a sign-up is confirmed; never fails the caller.

    Anyone who can reach this route can create a profile for any ``user_id``.
    Set ``confirmation_hook_secret`` or serve it only on the provider's private
    network.
    """

    created = service.confirm_user(payload.user_id, payload.email)
    return schemas.ConfirmationResult(user_id=payload.user_id, created=created)


@app.get("/guesses/active", response_model=schemas.Guess | None, tags=["guesses"])
def get_active_guess(
    user_id: str | None = Depends(_current_user_id),
    engine: GuessLifecycleEngine = Depends(_guess_engine),
):
    """Return the caller's unresolved guess, or null."""

    return engine.get_active_guess(user_id)


@app.get("/guesses/history", response_model=schemas.GuessHistory, tags=["guesses"])
def get_guess_history(
    user_id: str | None = Depends(_current_user_id),
    limit: Annotated[int | None, Query(description="Maximum guesses to return")] = None,
    engine: GuessLifecycleEngine = Depends(_guess_engine),
):
    """Resolved guesses, most recent first."""

    items = engine.get_guess_history(user_id, limit)
    return schemas.GuessHistory(total=len(items), items=items)


@app.post("/guesses", response_model=schemas.Guess, status_code=201, tags=["guesses"])
def place_guess(
    payload: schemas.GuessCreate,
    user_id: str | None = Depends(_current_user_id),
    engine: GuessLifecycleEngine = Depends(_guess_engine),
):
    """Place a guess on the next price move; resolution happens asynchronously."""

    return engine.place_guess(user_id, payload.direction, payload.instrument)


@app.get("/prices/{instrument}", response_model=schemas.PriceQuote, tags=["prices"])
def get_price(instrument: str, cache: PriceCache = Depends(_price_cache)):
    """Most recent recorded price for an instrument."""

    observation = cache.latest_price(instrument.strip().upper())
    if observation is None:
        raise NotFound(f"No price recorded for {instrument}")
    return schemas.PriceQuote(
        instrument=observation.instrument,
        price=observation.price,
        timestamp=observation.timestamp,
        source=observation.source,
    )
