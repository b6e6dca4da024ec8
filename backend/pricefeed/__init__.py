"""Upstream spot price sources."""

from .client import CoinGeckoClient, SpotPriceSource

__all__ = ["CoinGeckoClient", "SpotPriceSource"]
