"""Close-only technical indicators fed into the oracle prompt.

Every function takes a list of closing prices, oldest first, and raises
ValueError("not_enough_data") when the window is longer than the series.
"""
from __future__ import annotations

import math
from typing import List, Tuple


def _window(values: List[float], n: int) -> List[float]:
    if n <= 0 or len(values) < n:
        raise ValueError("not_enough_data")
    return values[-n:]


def _moves(closes: List[float], period: int) -> List[float]:
    tail = _window(closes, period + 1)
    return [b - a for a, b in zip(tail, tail[1:])]


def sma(values: List[float], period: int) -> float:
    return math.fsum(_window(values, period)) / period


def ema(values: List[float], period: int) -> float:
    _window(values, period)
    alpha = 2.0 / (period + 1)
    # seeded from the SMA of the oldest full window
    out = math.fsum(values[:period]) / period
    for price in values[period:]:
        out += alpha * (price - out)
    return out


def rsi(closes: List[float], period: int = 14) -> float:
    moves = _moves(closes, period)
    up = math.fsum(m for m in moves if m > 0)
    down = -math.fsum(m for m in moves if m < 0)
    if down == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + up / down)


def atr(closes: List[float], period: int = 14) -> float:
    # no high/low on ticks: true range collapses to the close-to-close move
    return math.fsum(abs(m) for m in _moves(closes, period)) / period


def bollinger(closes: List[float], period: int = 20, mult: float = 2.0) -> Tuple[float, float, float]:
    """(lower, middle, upper) using the population standard deviation."""
    window = _window(closes, period)
    mid = math.fsum(window) / period
    band = mult * math.sqrt(math.fsum((c - mid) ** 2 for c in window) / period)
    return mid - band, mid, mid + band
