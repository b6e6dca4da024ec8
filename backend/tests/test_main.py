from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from guessgame import schemas
from guessgame.core.config import Settings, get_settings
from guessgame.domain import PriceObservation
from guessgame.errors import Conflict, InvalidInput, Unauthorized, UpstreamUnavailable
from guessgame.main import _guess_engine, _price_cache, _user_service, app

from conftest import START_MS


def _guess(**overrides) -> schemas.Guess:
    payload = {
        "guess_id": "guess-1",
        "user_id": "user-123",
        "instrument": "BTCUSD",
        "direction": "up",
        "start_price": Decimal("45000"),
        "start_time": START_MS,
        "resolved": False,
    }
    payload.update(overrides)
    return schemas.Guess.model_validate(payload)


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def engine_mock():
    mock_engine = MagicMock()
    app.dependency_overrides[_guess_engine] = lambda: mock_engine
    return mock_engine


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_place_guess_returns_created_guess(client, engine_mock):
    """Verify POST /guesses forwards the caller identity and direction."""
    engine_mock.place_guess.return_value = _guess()

    response = client.post("/guesses", json={"direction": "up"}, headers={"X-User-Id": "user-123"})

    assert response.status_code == 201
    body = response.json()
    assert body["guess_id"] == "guess-1"
    assert body["start_price"] == 45000.0
    assert body["resolved"] is False
    engine_mock.place_guess.assert_called_once_with("user-123", "up", None)


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (Unauthorized("Unauthorized: no user identity supplied"), 401, "unauthorized"),
        (InvalidInput('Invalid direction. Must be "up" or "down"'), 422, "invalid_input"),
        (Conflict("You already have an active guess."), 409, "conflict"),
        (UpstreamUnavailable("CoinGecko request failed"), 503, "upstream_unavailable"),
    ],
)
def test_place_guess_maps_errors_to_status_codes(client, engine_mock, error, status_code, code):
    """Verify game errors surface as JSON error bodies with matching status codes."""
    engine_mock.place_guess.side_effect = error

    response = client.post("/guesses", json={"direction": "up"})

    assert response.status_code == status_code
    assert response.json() == {"code": code, "detail": error.message}


def test_get_me_returns_profile_with_active_guess(client, engine_mock):
    """Verify /me returns the score and the active guess."""
    engine_mock.get_user.return_value = schemas.UserProfile(
        user_id="user-123",
        email="player@example.com",
        score=3,
        created_at=START_MS,
        updated_at=START_MS,
        active_guess=_guess(),
    )

    response = client.get("/me", headers={"X-User-Id": "user-123"})

    assert response.status_code == 200
    assert response.json()["score"] == 3
    assert response.json()["active_guess"]["guess_id"] == "guess-1"


def test_get_me_missing_profile_is_404(client, engine_mock):
    engine_mock.get_user.return_value = None

    response = client.get("/me", headers={"X-User-Id": "ghost"})

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_active_guess_may_be_null(client, engine_mock):
    engine_mock.get_active_guess.return_value = None

    response = client.get("/guesses/active", headers={"X-User-Id": "user-123"})

    assert response.status_code == 200
    assert response.json() is None


def test_history_wraps_items_and_passes_limit(client, engine_mock):
    """Verify /guesses/history returns resolved guesses with a total."""
    resolved = _guess(resolved=True, end_price=Decimal("46000"), correct=True, score_change=1)
    engine_mock.get_guess_history.return_value = [resolved]

    response = client.get("/guesses/history?limit=5", headers={"X-User-Id": "user-123"})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["end_price"] == 46000.0
    engine_mock.get_guess_history.assert_called_once_with("user-123", 5)


def test_confirm_user_reports_creation(client):
    service = MagicMock()
    service.confirm_user.return_value = True
    app.dependency_overrides[_user_service] = lambda: service

    response = client.post("/users/confirm", json={"user_id": "user-123", "email": "player@example.com"})

    assert response.status_code == 200
    assert response.json() == {"user_id": "user-123", "created": True}
    service.confirm_user.assert_called_once_with("user-123", "player@example.com")


def test_get_price_serves_latest_observation(client):
    cache = MagicMock()
    cache.latest_price.return_value = PriceObservation(
        instrument="BTCUSD",
        price=Decimal("45000.25"),
        timestamp=START_MS,
        source="coingecko",
        expires_at=START_MS + 1,
    )
    app.dependency_overrides[_price_cache] = lambda: cache

    response = client.get("/prices/btcusd")

    assert response.status_code == 200
    assert response.json() == {
        "instrument": "BTCUSD",
        "price": 45000.25,
        "timestamp": START_MS,
        "source": "coingecko",
    }
    cache.latest_price.assert_called_once_with("BTCUSD")


def test_get_price_without_observation_is_404(client):
    cache = MagicMock()
    cache.latest_price.return_value = None
    app.dependency_overrides[_price_cache] = lambda: cache

    response = client.get("/prices/BTCUSD")

    assert response.status_code == 404


@pytest.mark.parametrize(("header", "status_code"), [(None, 401), ("wrong", 401), ("s3cret", 200)])
def test_confirm_user_checks_hook_secret_when_configured(client, header, status_code):
    """Verify the confirmation hook rejects callers without the shared secret."""
    service = MagicMock()
    service.confirm_user.return_value = True
    app.dependency_overrides[_user_service] = lambda: service
    app.dependency_overrides[get_settings] = lambda: Settings(
        _env_file=None, confirmation_hook_secret="s3cret"
    )
    headers = {"X-Hook-Secret": header} if header else {}

    response = client.post(
        "/users/confirm",
        json={"user_id": "user-123", "email": "player@example.com"},
        headers=headers,
    )

    assert response.status_code == status_code
    if status_code == 401:
        assert response.json()["code"] == "unauthorized"
        service.confirm_user.assert_not_called()
