from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol

import httpx
from loguru import logger

from guessgame.core.config import Settings, get_settings
from guessgame.domain import to_decimal
from guessgame.errors import InvalidInput, UpstreamUnavailable


class SpotPriceSource(Protocol):
    name: str

    def get_spot_price(self, instrument: str) -> Decimal: ...


class CoinGeckoClient:
    """Thin wrapper around the CoinGecko ``simple/price`` endpoint."""

    name = "coingecko"
    price_path = "/simple/price"

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.base_url = (base_url or str(self.settings.price_source_base_url)).rstrip("/")
        self.timeout = timeout or self.settings.price_source_timeout_seconds
        self.client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def _build_params(self, instrument: str) -> dict[str, Any]:
        source = self.settings.instrument_source(instrument)
        if source is None:
            raise InvalidInput(f"Unsupported instrument {instrument!r}")
        return {"ids": source.coin_id, "vs_currencies": source.vs_currency, "precision": 2}

    def get_spot_price(self, instrument: str) -> Decimal:
        params = self._build_params(instrument)
        logger.info("CoinGecko GET {} params={}", self.price_path, params)
        try:
            response = self.client.get(self.price_path, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"CoinGecko request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable("CoinGecko returned a non-JSON body") from exc

        return self._extract_price(payload, params["ids"], params["vs_currencies"])

    @staticmethod
    def _extract_price(payload: Any, coin_id: str, currency: str) -> Decimal:
        quote = payload.get(coin_id) if isinstance(payload, dict) else None
        value = quote.get(currency) if isinstance(quote, dict) else None
        if value is None:
            raise UpstreamUnavailable(f"CoinGecko response has no {coin_id}/{currency} price")
        try:
            return to_decimal(value)
        except ValueError as exc:
            raise UpstreamUnavailable(f"CoinGecko returned an unreadable price {value!r}") from exc

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "CoinGeckoClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
