from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from guessgame.errors import InvalidInput, UpstreamUnavailable
from pricefeed import CoinGeckoClient


def _client(test_settings, handler) -> CoinGeckoClient:
    return CoinGeckoClient(settings=test_settings, transport=httpx.MockTransport(handler))


def test_get_spot_price_requests_simple_price(test_settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"bitcoin": {"usd": 45123.45}})

    with _client(test_settings, handler) as client:
        price = client.get_spot_price("btcusd")

    assert price == Decimal("45123.45")
    request = seen[0]
    assert request.url.path.endswith("/simple/price")
    assert request.url.params["ids"] == "bitcoin"
    assert request.url.params["vs_currencies"] == "usd"


def test_unknown_instrument_is_rejected_without_a_request(test_settings):
    def handler(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with _client(test_settings, handler) as client:
        with pytest.raises(InvalidInput):
            client.get_spot_price("DOGEUSD")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429, json={"status": {"error_code": 429}}),
        httpx.Response(200, json={"bitcoin": {}}),
        httpx.Response(200, json={"bitcoin": {"usd": "n/a"}}),
        httpx.Response(200, content=b"<html>maintenance</html>"),
    ],
)
def test_upstream_problems_become_upstream_unavailable(test_settings, response):
    with _client(test_settings, lambda _request: response) as client:
        with pytest.raises(UpstreamUnavailable):
            client.get_spot_price("BTCUSD")


def test_transport_error_becomes_upstream_unavailable(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(test_settings, handler) as client:
        with pytest.raises(UpstreamUnavailable, match="connection refused"):
            client.get_spot_price("BTCUSD")


@pytest.mark.network
def test_live_coingecko_price(test_settings):
    with CoinGeckoClient(settings=test_settings) as client:
        price = client.get_spot_price("BTCUSD")
    assert price > 0
