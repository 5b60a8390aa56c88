# nexus/policy/auto_entry.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from nexus.core.errors import StaleSignal
from nexus.runner.models import Direction, Recommendation, Signal, direction_for


class Action(str, Enum):
    HOLD = "HOLD"
    OPEN_LONG = "OPEN_LONG"
    OPEN_SHORT = "OPEN_SHORT"


class GateState(str, Enum):
    IDLE = "IDLE"
    AWAITING_SIGNAL = "AWAITING_SIGNAL"


@dataclass
class EntryInputs:
    # oracle output
    signal: Signal

    # engine state
    open_positions_for_symbol: int
    reference_price: float

    # gate settings (passed in so decide() stays pure)
    auto_trade: bool
    confidence_threshold: float
    freshness_seconds: float
    max_positions_per_symbol: int
    fallback_stop_loss_pct: float  # percent, 1.0 == 1%
    fallback_take_profit_pct: float

    # context
    now: datetime


@dataclass(frozen=True)
class OpenRequest:
    symbol: str
    direction: Direction
    stop_loss: Optional[float]
    take_profit: Optional[float]
    source: str = "AUTO"


@dataclass
class EntryDecision:
    action: Action
    reason: str
    request: Optional[OpenRequest] = None


def ensure_fresh(signal: Signal, now: datetime, freshness_seconds: float) -> float:
    """Returns the signal age in seconds; raises StaleSignal past the window."""
    age = (now - signal.generated_at).total_seconds()
    if age > freshness_seconds:
        raise StaleSignal(
            "signal older than freshness window",
            {"age_seconds": age, "freshness_seconds": freshness_seconds},
        )
    return age


def _stop_level(direction: Direction, ref: float, suggested: Optional[float], pct: float) -> float:
    if direction == Direction.LONG:
        if suggested is not None and 0 < suggested < ref:
            return suggested
        return ref * (1.0 - pct / 100.0)
    if suggested is not None and suggested > ref:
        return suggested
    return ref * (1.0 + pct / 100.0)


def _target_level(direction: Direction, ref: float, suggested: Optional[float], pct: float) -> float:
    if direction == Direction.LONG:
        if suggested is not None and suggested > ref:
            return suggested
        return ref * (1.0 + pct / 100.0)
    if suggested is not None and 0 < suggested < ref:
        return suggested
    return ref * (1.0 - pct / 100.0)


def decide(inp: EntryInputs) -> EntryDecision:
    """
    Pure entry policy. No I/O.
    - HOLD / auto-trade off -> HOLD
    - confidence at or below threshold -> HOLD
    - stale signal -> HOLD (dropped silently)
    - per-symbol cap reached -> HOLD
    Otherwise one OpenRequest with the oracle's levels, or percentage
    fallbacks for a missing or wrong-side level.
    """
    sig = inp.signal

    if sig.recommendation == Recommendation.HOLD:
        return EntryDecision(Action.HOLD, "signal=HOLD")

    if not inp.auto_trade:
        return EntryDecision(Action.HOLD, "auto_trade_disabled")

    if sig.confidence <= inp.confidence_threshold:
        return EntryDecision(Action.HOLD, "confidence_below_threshold")

    try:
        ensure_fresh(sig, inp.now, inp.freshness_seconds)
    except StaleSignal:
        return EntryDecision(Action.HOLD, "stale_signal")

    if inp.open_positions_for_symbol >= inp.max_positions_per_symbol:
        return EntryDecision(Action.HOLD, "max_positions_reached")

    if inp.reference_price is None or inp.reference_price <= 0:
        return EntryDecision(Action.HOLD, "invalid_reference_price")

    direction = direction_for(sig.recommendation)
    if direction is None:
        return EntryDecision(Action.HOLD, "no_rule_matched")

    request = OpenRequest(
        symbol=sig.symbol,
        direction=direction,
        stop_loss=_stop_level(
            direction, inp.reference_price, sig.suggested_stop_loss, inp.fallback_stop_loss_pct
        ),
        take_profit=_target_level(
            direction, inp.reference_price, sig.suggested_take_profit, inp.fallback_take_profit_pct
        ),
    )
    if direction == Direction.LONG:
        return EntryDecision(Action.OPEN_LONG, "open_long", request)
    return EntryDecision(Action.OPEN_SHORT, "open_short", request)


class AutoEntryGate:
    """
    Two-state in-flight guard for oracle requests.

    IDLE -> AWAITING_SIGNAL via try_begin(); back to IDLE via finish().
    try_begin() fails while a request is outstanding, so overlapping timer
    fires never launch a second oracle call.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = GateState.IDLE

    @property
    def state(self) -> GateState:
        return self._state

    def try_begin(self) -> bool:
        with self._lock:
            if self._state != GateState.IDLE:
                return False
            self._state = GateState.AWAITING_SIGNAL
            return True

    def finish(self) -> None:
        with self._lock:
            self._state = GateState.IDLE
