from __future__ import annotations

from decimal import Decimal

import pytest

from guessgame.db import session_scope
from guessgame.errors import UpstreamUnavailable
from guessgame.models import ChangeRecord
from guessgame.services.price_cache import PriceCache


def test_get_current_price_fetches_once_then_serves_cache(price_cache, price_source, clock):
    assert price_cache.get_current_price("BTCUSD") == Decimal("45000")
    clock.advance(4)
    price_source.price = Decimal("99999")

    assert price_cache.get_current_price("BTCUSD") == Decimal("45000")
    assert price_source.calls == ["BTCUSD"]


def test_stale_observation_triggers_upstream_fetch(price_cache, price_source, clock):
    price_cache.get_current_price("BTCUSD")
    clock.advance(5)
    price_source.price = Decimal("45100")

    assert price_cache.get_fresh_price("BTCUSD") is None
    assert price_cache.get_current_price("BTCUSD") == Decimal("45100")
    assert len(price_source.calls) == 2


def test_record_price_stamps_expiry_and_change_record(price_cache, database, clock):
    observation = price_cache.record_price("BTCUSD", Decimal("45000.25"))

    assert observation.timestamp == clock.now
    assert observation.expires_at == clock.now + 7 * 24 * 60 * 60 * 1000
    assert observation.source == "stub"
    with session_scope(database.session_factory) as session:
        change = session.query(ChangeRecord).one()
        assert change.entity_type == "PRICE"
        assert change.event_name == "INSERT"
        assert change.new_image["price"] == "45000.25"


def test_find_different_price_after_skips_equal_and_early_observations(price_cache, clock):
    start = clock.now
    price_cache.record_price("BTCUSD", Decimal("46000"))  # at start, not strictly after
    clock.advance(1)
    price_cache.record_price("BTCUSD", Decimal("45000"))  # equal to reference
    clock.advance(1)
    price_cache.record_price("ETHUSD", Decimal("2000"))  # other instrument
    clock.advance(1)
    price_cache.record_price("BTCUSD", Decimal("44000"))
    clock.advance(1)
    price_cache.record_price("BTCUSD", Decimal("47000"))

    found = price_cache.find_different_price_after("BTCUSD", start, Decimal("45000"))

    assert found == Decimal("44000")
    assert price_cache.find_different_price_after("BTCUSD", clock.now, Decimal("45000")) is None


def test_cache_write_failure_is_swallowed(price_source, test_settings, clock):
    def broken_session():
        raise RuntimeError("store unavailable")

    cache = PriceCache(broken_session, price_source, test_settings, clock=clock)

    assert cache.record_price("BTCUSD", Decimal("1")) is None
    # Reads fail too, so retrieval falls through to upstream and still succeeds.
    assert cache.get_current_price("BTCUSD") == Decimal("45000")
    assert price_source.calls == ["BTCUSD"]


def test_upstream_failure_propagates(price_cache, price_source):
    price_source.error = UpstreamUnavailable("CoinGecko request failed")

    with pytest.raises(UpstreamUnavailable):
        price_cache.get_current_price("BTCUSD")


def test_purge_expired_removes_old_observations(price_cache, clock):
    price_cache.record_price("BTCUSD", Decimal("1"))
    clock.advance(3 * 24 * 60 * 60)
    price_cache.record_price("BTCUSD", Decimal("2"))
    clock.advance(5 * 24 * 60 * 60)

    assert price_cache.purge_expired() == 1
    assert price_cache.latest_price("BTCUSD").price == Decimal("2")
