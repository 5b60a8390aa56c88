from __future__ import annotations

from typing import Any, Dict, Iterable

from nexus.runner.models import Position


def summarize(positions: Iterable[Position]) -> Dict[str, Any]:
    """Trade statistics over every position the engine has seen."""
    total = 0
    open_count = 0
    wins = 0
    losses = 0
    realized = 0.0
    open_margin = 0.0

    for p in positions:
        total += 1
        if p.is_open:
            open_count += 1
            open_margin += p.margin
            continue

        profit = p.realized_profit or 0.0
        realized += profit
        if profit > 0:
            wins += 1
        elif profit < 0:
            losses += 1

    closed = total - open_count
    return {
        "total": total,
        "open": open_count,
        "closed": closed,
        "wins": wins,
        "losses": losses,
        # break-even closes count toward closed but neither bucket
        "win_rate": (wins / closed) if closed else 0.0,
        "realized_pnl": realized,
        "open_margin": open_margin,
    }
