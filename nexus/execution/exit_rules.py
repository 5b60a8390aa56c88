from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from nexus.runner.models import Direction, Position


@dataclass
class ClosureResult:
    position_id: str
    reason: str  # "STOP_LOSS" | "TAKE_PROFIT"
    close_price: float
    realized_profit: float
    margin: float


def exit_trigger(
    direction: Direction,
    price: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
) -> Tuple[bool, str]:
    """
    Returns (exit_now, reason). Stop-loss is checked first, so a tick that
    gaps through both levels exits as STOP_LOSS.
    """
    if direction == Direction.LONG:
        if stop_loss is not None and price <= stop_loss:
            return (True, "STOP_LOSS")
        if take_profit is not None and price >= take_profit:
            return (True, "TAKE_PROFIT")
        return (False, "HOLD")

    if stop_loss is not None and price >= stop_loss:
        return (True, "STOP_LOSS")
    if take_profit is not None and price <= take_profit:
        return (True, "TAKE_PROFIT")
    return (False, "HOLD")


def realized_profit(direction: Direction, entry: float, price: float, qty: float) -> float:
    if direction == Direction.LONG:
        return (price - entry) * qty
    return (entry - price) * qty


def evaluate_closure(position: Position, price: float, now: datetime) -> Optional[ClosureResult]:
    """
    Close `position` at `price` if a trigger fires. Must run after the
    trailing stop for the same tick. The caller releases margin + profit.
    """
    if not position.is_open:
        return None

    exit_now, reason = exit_trigger(
        position.direction, price, position.stop_loss, position.take_profit
    )
    if not exit_now:
        return None

    profit = realized_profit(
        position.direction, position.entry_price, price, position.quantity
    )
    position.mark_closed(price=price, profit=profit, when=now, reason=reason)

    return ClosureResult(
        position_id=position.id,
        reason=reason,
        close_price=price,
        realized_profit=profit,
        margin=position.margin,
    )


def validate_levels(
    direction: Direction,
    entry_price: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
) -> None:
    """
    Validate SL/TP sides when present.
    LONG: stop_loss < entry_price < take_profit
    SHORT: take_profit < entry_price < stop_loss
    Raises ValueError if invalid.
    """
    if direction == Direction.LONG:
        if stop_loss is not None and not stop_loss < entry_price:
            raise ValueError("Invalid SL for LONG")
        if take_profit is not None and not entry_price < take_profit:
            raise ValueError("Invalid TP for LONG")
        return

    if stop_loss is not None and not entry_price < stop_loss:
        raise ValueError("Invalid SL for SHORT")
    if take_profit is not None and not take_profit < entry_price:
        raise ValueError("Invalid TP for SHORT")
