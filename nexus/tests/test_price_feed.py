import random

import pytest
import requests

import nexus.market.price_feed as feed_mod
from nexus.core.errors import UnknownSymbol
from nexus.market.price_feed import PAIR_CONFIGS, PairConfig, SimulatedPriceFeed


class _Resp:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload


def _feed(**kw):
    return SimulatedPriceFeed(
        {"AAA/USD": PairConfig(10.0, 0.05, 4), "BBB/USD": PairConfig(200.0, 1.0, 2)},
        rng=random.Random(1),
        **kw,
    )


def test_default_universe_covers_fx_commodities_and_crypto():
    feed = SimulatedPriceFeed(rng=random.Random(0))
    assert len(feed.symbols) == len(PAIR_CONFIGS) >= 20
    for sym in ("EUR/USD", "USD/JPY", "XAU/USD", "BTC/USD"):
        assert feed.get_price(sym) == PAIR_CONFIGS[sym].price


def test_tick_advances_every_symbol_before_callbacks():
    feed = _feed()
    seen = []

    def cb(snap):
        # all symbols already moved when the first callback runs
        seen.append(dict(snap.prices))
        assert feed.history("AAA/USD")[-1] == snap.price("AAA/USD")
        assert feed.history("BBB/USD")[-1] == snap.price("BBB/USD")

    feed.on_tick(cb)
    snap = feed.tick()

    assert snap.seq == 1
    assert seen == [dict(snap.prices)]
    assert len(feed.history("AAA/USD")) == 1
    assert len(feed.history("BBB/USD")) == 1


def test_snapshot_is_read_only():
    snap = _feed().tick()
    with pytest.raises(TypeError):
        snap.prices["AAA/USD"] = 1.0


def test_history_is_capped():
    feed = _feed(history_length=5)
    for _ in range(12):
        feed.tick()
    assert len(feed.history("AAA/USD")) == 5
    assert feed.history("AAA/USD", limit=2) == feed.history("AAA/USD")[-2:]


def test_seed_history_ends_at_current_price():
    feed = _feed()
    feed.seed_history(50)
    hist = feed.history("BBB/USD")
    assert len(hist) == 50
    assert hist[-1] == feed.get_price("BBB/USD")


def test_prices_stay_positive():
    feed = SimulatedPriceFeed({"TINY/USD": PairConfig(0.0001, 0.01, 5)}, rng=random.Random(3))
    for _ in range(200):
        assert feed.tick().price("TINY/USD") > 0


def test_unknown_symbol():
    feed = _feed()
    with pytest.raises(UnknownSymbol):
        feed.get_price("ZZZ/USD")
    with pytest.raises(UnknownSymbol):
        feed.history("ZZZ/USD")
    with pytest.raises(UnknownSymbol):
        feed.tick().price("ZZZ/USD")


def test_set_price_validates():
    feed = _feed()
    with pytest.raises(ValueError):
        feed.set_price("AAA/USD", 0)
    feed.set_price("aaa/usd", 11.5)
    assert feed.get_price("AAA/USD") == 11.5


def test_live_sync_applies_rates(monkeypatch):
    feed = SimulatedPriceFeed(rng=random.Random(0))

    def fake_get(url, timeout=10.0):
        if "forex" in url:
            return _Resp({"rates": {"EUR": 0.9, "JPY": 150.0, "GBP": 0.8}})
        return _Resp({"data": [{"id": "bitcoin", "priceUsd": "65000.5"}]})

    monkeypatch.setattr(feed_mod.requests, "get", fake_get)

    updated = feed.sync_live_prices("https://forex.test", "https://crypto.test")

    assert feed.get_price("EUR/USD") == pytest.approx(1 / 0.9)
    assert feed.get_price("USD/JPY") == pytest.approx(150.0)
    assert feed.get_price("EUR/JPY") == pytest.approx(150.0 / 0.9)
    assert feed.get_price("EUR/GBP") == pytest.approx(0.8 / 0.9)
    assert feed.get_price("BTC/USD") == pytest.approx(65000.5)
    # EUR/USD, GBP/USD, USD/JPY, 3 crosses, BTC
    assert updated == 7


def test_live_sync_failure_keeps_simulated_prices(monkeypatch):
    feed = SimulatedPriceFeed(rng=random.Random(0))
    before = dict(feed.snapshot().prices)

    def boom(url, timeout=10.0):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(feed_mod.requests, "get", boom)

    assert feed.sync_live_prices("https://forex.test", "https://crypto.test") == 0
    assert dict(feed.snapshot().prices) == before
