# nexus/execution/trailing.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from nexus.runner.models import Direction, Position


def _move_pct(entry: float, price: float, direction: Direction) -> float:
    """
    Returns profit move as a decimal:
      LONG:  + when price > entry
      SHORT: + when price < entry
    """
    if not entry or entry <= 0:
        return 0.0
    if direction == Direction.LONG:
        return (price - entry) / entry
    return (entry - price) / entry


def _more_favorable(direction: Direction, candidate: float, current: Optional[float]) -> bool:
    """True if `candidate` is a strictly tighter stop than `current`."""
    if current is None:
        return True
    if direction == Direction.LONG:
        return candidate > current
    return candidate < current


@dataclass
class StopUpdate:
    changed: bool
    old_stop: Optional[float]
    new_stop: Optional[float]
    reason: str  # "BREAK_EVEN" | "TRAIL" | "NONE"
    move_pct: float


def apply_trailing_stop(
    position: Position,
    price: float,
    *,
    break_even_pct: float = 0.005,
    trail_trigger_pct: float = 0.015,
    trail_gap_pct: float = 0.005,
) -> StopUpdate:
    """
    Tighten (never loosen) the stop of an OPEN position at live `price`.

      - profit > break_even_pct  -> stop to entry, unless already at least as good
      - profit > trail_trigger_pct -> candidate at trail_gap_pct * entry behind
        price, adopted only when strictly tighter
    Running extrema are updated on every call.
    """
    direction = position.direction
    entry = position.entry_price

    if position.highest_price_seen is None or price > position.highest_price_seen:
        position.highest_price_seen = price
    if position.lowest_price_seen is None or price < position.lowest_price_seen:
        position.lowest_price_seen = price

    old_stop = position.stop_loss
    new_stop = old_stop
    reason = "NONE"
    move = _move_pct(entry, price, direction)

    # Break-even
    if move > break_even_pct and _more_favorable(direction, entry, new_stop):
        new_stop = entry
        reason = "BREAK_EVEN"

    # Trail by an entry-relative gap behind price
    if move > trail_trigger_pct:
        gap = entry * trail_gap_pct
        candidate = price - gap if direction == Direction.LONG else price + gap
        if _more_favorable(direction, candidate, new_stop):
            new_stop = candidate
            reason = "TRAIL"

    changed = new_stop is not None and new_stop != old_stop
    if changed:
        position.stop_loss = new_stop
        position.is_trailing = True

    return StopUpdate(
        changed=changed,
        old_stop=old_stop,
        new_stop=position.stop_loss,
        reason=reason if changed else "NONE",
        move_pct=move,
    )
