# nexus/risk/sizing.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict

from nexus.core.errors import SizingFailed


def _d(x: Any) -> Decimal:
    return Decimal(str(x))


def _floor_to_decimals(x: Decimal, decimals: int) -> Decimal:
    step = Decimal(1).scaleb(-int(decimals))
    return x.quantize(step, rounding=ROUND_DOWN)


@dataclass
class SizeResult:
    qty: float
    margin: float
    reason: str
    details: Dict[str, Any]


def size_position(
    *,
    balance: float,
    risk_fraction: float,
    entry_price: float,
    decimals: int = 6,
) -> SizeResult:
    """
    Risk-fraction sizing:
      - budget   = balance * risk_fraction
      - qty      = budget / entry_price, floored to `decimals` places
      - margin   = qty * entry_price (what the ledger reserves)

    Raises SizingFailed when any input is non-positive or the rounded qty is 0.
    Pure: no wallet is touched here.
    """
    details: Dict[str, Any] = {
        "balance": float(balance),
        "risk_fraction": float(risk_fraction),
        "entry_price": float(entry_price),
        "decimals": int(decimals),
    }

    if entry_price is None or entry_price <= 0:
        raise SizingFailed("invalid_price", details)
    if balance is None or balance <= 0:
        raise SizingFailed("balance_too_low", details)
    if risk_fraction is None or not (0 < risk_fraction <= 1):
        raise SizingFailed("invalid_risk_fraction", details)

    px = _d(entry_price)
    budget = _d(balance) * _d(risk_fraction)
    raw_qty = budget / px
    qty_dec = _floor_to_decimals(raw_qty, decimals)

    details.update({"budget": float(budget), "raw_qty": str(raw_qty), "qty_rounded": str(qty_dec)})

    if qty_dec <= 0:
        raise SizingFailed("qty_rounds_to_zero", details)

    margin = float(qty_dec) * float(entry_price)
    details["margin"] = margin

    return SizeResult(qty=float(qty_dec), margin=margin, reason="ok", details=details)
