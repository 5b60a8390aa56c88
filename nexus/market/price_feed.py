# nexus/market/price_feed.py
from __future__ import annotations

import logging
import random
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Deque, Dict, List, Mapping, Optional

import requests

from nexus.core.config import settings
from nexus.core.errors import UnknownSymbol

log = logging.getLogger("nexus.market")


@dataclass(frozen=True)
class PairConfig:
    price: float
    volatility: float
    decimals: int


# Approximate market values used as starting points / fallbacks
PAIR_CONFIGS: Dict[str, PairConfig] = {
    # Majors
    "EUR/USD": PairConfig(1.0820, 0.00015, 5),
    "GBP/USD": PairConfig(1.2950, 0.0002, 5),
    "USD/JPY": PairConfig(153.40, 0.04, 3),
    "AUD/USD": PairConfig(0.6580, 0.0002, 5),
    "NZD/USD": PairConfig(0.5980, 0.0002, 5),
    "USD/CAD": PairConfig(1.3910, 0.0002, 5),
    "USD/CHF": PairConfig(0.8650, 0.0002, 5),
    # Commodities
    "XAU/USD": PairConfig(2745.50, 1.5, 2),
    "WTI/USD": PairConfig(71.50, 0.4, 2),
    "BRENT/USD": PairConfig(75.20, 0.4, 2),
    # Crypto
    "BTC/USD": PairConfig(72150.00, 35.0, 2),
    "ETH/USD": PairConfig(2650.00, 8.0, 2),
    "SOL/USD": PairConfig(175.50, 0.5, 2),
    # Crosses
    "GBP/JPY": PairConfig(198.80, 0.06, 3),
    "EUR/JPY": PairConfig(166.10, 0.05, 3),
    "EUR/GBP": PairConfig(0.8350, 0.00015, 5),
    # Exotics
    "USD/SGD": PairConfig(1.3230, 0.0002, 5),
    "USD/ZAR": PairConfig(17.6500, 0.005, 4),
    "USD/MXN": PairConfig(20.1500, 0.005, 4),
    "USD/SEK": PairConfig(10.6500, 0.002, 4),
    "USD/NOK": PairConfig(10.9500, 0.002, 4),
}

# USD-based rate -> pair quoted as USD/XXX
_USD_BASE = {
    "JPY": "USD/JPY",
    "CAD": "USD/CAD",
    "CHF": "USD/CHF",
    "SGD": "USD/SGD",
    "ZAR": "USD/ZAR",
    "SEK": "USD/SEK",
    "NOK": "USD/NOK",
    "MXN": "USD/MXN",
}
# USD-based rate -> pair quoted as XXX/USD (inverted)
_USD_QUOTE = {
    "EUR": "EUR/USD",
    "GBP": "GBP/USD",
    "AUD": "AUD/USD",
    "NZD": "NZD/USD",
}
_CRYPTO_IDS = {"bitcoin": "BTC/USD", "ethereum": "ETH/USD", "solana": "SOL/USD"}

_MIN_PRICE = 0.00001


@dataclass(frozen=True)
class PriceSnapshot:
    """Prices of every symbol after one tick. Read-only."""

    seq: int
    taken_at: datetime
    prices: Mapping[str, float]

    def price(self, symbol: str) -> float:
        px = self.prices.get((symbol or "").upper())
        if px is None:
            raise UnknownSymbol(f"no price for {symbol!r}", {"symbol": symbol})
        return px


TickCallback = Callable[[PriceSnapshot], object]


class SimulatedPriceFeed:
    """
    Random walk with decaying momentum for every configured pair.

    tick() advances ALL symbols before any on_tick callback runs, so
    positions on symbols other than the chart symbol still see fresh prices.
    """

    def __init__(
        self,
        configs: Optional[Mapping[str, PairConfig]] = None,
        *,
        history_length: int = 60,
        rng: Optional[random.Random] = None,
    ):
        self.configs: Dict[str, PairConfig] = {
            k.upper(): v for k, v in (configs or PAIR_CONFIGS).items()
        }
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._prices: Dict[str, float] = {k: c.price for k, c in self.configs.items()}
        self._momentum: Dict[str, float] = {k: 0.0 for k in self.configs}
        self._history: Dict[str, Deque[float]] = {
            k: deque(maxlen=history_length) for k in self.configs
        }
        self._callbacks: List[TickCallback] = []
        self._seq = 0

    # ---------------- READ ----------------

    @property
    def symbols(self) -> List[str]:
        return list(self.configs)

    def get_price(self, symbol: str) -> float:
        sym = (symbol or "").upper()
        with self._lock:
            if sym not in self._prices:
                raise UnknownSymbol(f"unknown symbol {symbol!r}", {"symbol": symbol})
            return self._prices[sym]

    def history(self, symbol: str, limit: Optional[int] = None) -> List[float]:
        sym = (symbol or "").upper()
        with self._lock:
            if sym not in self._history:
                raise UnknownSymbol(f"unknown symbol {symbol!r}", {"symbol": symbol})
            data = list(self._history[sym])
        if limit is not None:
            data = data[-limit:]
        return data

    def snapshot(self) -> PriceSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> PriceSnapshot:
        return PriceSnapshot(
            seq=self._seq,
            taken_at=datetime.now(timezone.utc),
            prices=MappingProxyType(dict(self._prices)),
        )

    # ---------------- WRITE ----------------

    def on_tick(self, callback: TickCallback) -> None:
        self._callbacks.append(callback)

    def set_price(self, symbol: str, price: float) -> None:
        """Override one price (live sync, replays). Takes effect from the next snapshot."""
        sym = (symbol or "").upper()
        if price is None or price <= 0:
            raise ValueError("price must be > 0")
        with self._lock:
            if sym not in self._prices:
                raise UnknownSymbol(f"unknown symbol {symbol!r}", {"symbol": symbol})
            self._prices[sym] = float(price)

    def seed_history(self, points: int = 50) -> None:
        """Back-fill `points` prices per symbol walking backward from the current price."""
        with self._lock:
            for sym, cfg in self.configs.items():
                price = self._prices[sym]
                backfill: List[float] = []
                for _ in range(points):
                    backfill.append(price)
                    price -= (self._rng.random() - 0.5) * cfg.volatility
                    if price < _MIN_PRICE:
                        price = cfg.price
                backfill.reverse()
                self._history[sym].clear()
                self._history[sym].extend(backfill)

    def tick(self) -> PriceSnapshot:
        with self._lock:
            for sym, cfg in self.configs.items():
                trend = (self._rng.random() - 0.5) * cfg.volatility * 0.5
                self._momentum[sym] = self._momentum[sym] * 0.9 + trend
                noise = (self._rng.random() - 0.5) * cfg.volatility * 0.5

                px = self._prices[sym] + self._momentum[sym] + noise
                if px < _MIN_PRICE:
                    px = cfg.price
                self._prices[sym] = px
                self._history[sym].append(px)

            self._seq += 1
            snap = self._snapshot_locked()

        for cb in list(self._callbacks):
            cb(snap)
        return snap

    # ---------------- LIVE SYNC ----------------

    def sync_live_prices(
        self,
        forex_url: Optional[str] = None,
        crypto_url: Optional[str] = None,
        timeout: float = 10.0,
    ) -> int:
        """
        Pull reference rates over HTTP and overwrite simulated prices.
        Failures keep the simulated values. Returns how many symbols were updated.
        """
        updated = 0

        try:
            r = requests.get(forex_url or settings.FOREX_RATES_URL, timeout=timeout)
            r.raise_for_status()
            rates = (r.json() or {}).get("rates") or {}
            updated += self._apply_forex(rates)
        except (requests.RequestException, ValueError) as e:
            log.warning("forex rate sync failed, using simulated prices: %s", e)

        try:
            r = requests.get(crypto_url or settings.CRYPTO_PRICES_URL, timeout=timeout)
            r.raise_for_status()
            assets = (r.json() or {}).get("data") or []
            for asset in assets:
                sym = _CRYPTO_IDS.get(str(asset.get("id")))
                if sym and sym in self._prices:
                    self.set_price(sym, float(asset["priceUsd"]))
                    updated += 1
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            log.warning("crypto price sync failed, using simulated prices: %s", e)

        log.info("live price sync updated %d symbols", updated)
        return updated

    def _apply_forex(self, rates: Mapping[str, float]) -> int:
        updated = 0
        for ccy, sym in _USD_BASE.items():
            if rates.get(ccy) and sym in self._prices:
                self.set_price(sym, float(rates[ccy]))
                updated += 1
        for ccy, sym in _USD_QUOTE.items():
            if rates.get(ccy) and sym in self._prices:
                self.set_price(sym, 1.0 / float(rates[ccy]))
                updated += 1

        eur, gbp, jpy = rates.get("EUR"), rates.get("GBP"), rates.get("JPY")
        crosses = {
            "EUR/JPY": (jpy / eur) if eur and jpy else None,
            "GBP/JPY": (jpy / gbp) if gbp and jpy else None,
            "EUR/GBP": (gbp / eur) if eur and gbp else None,
        }
        for sym, px in crosses.items():
            if px and sym in self._prices:
                self.set_price(sym, float(px))
                updated += 1
        return updated
