# nexus/runner/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Recommendation(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class RiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AccountTier(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class Sensitivity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


def direction_for(recommendation: Recommendation) -> Optional[Direction]:
    if recommendation == Recommendation.BUY:
        return Direction.LONG
    if recommendation == Recommendation.SELL:
        return Direction.SHORT
    return None


@dataclass(frozen=True)
class Signal:
    """Oracle output for one symbol at one point in time. Never mutated."""

    symbol: str
    recommendation: Recommendation
    confidence: float  # 0-100
    generated_at: datetime
    suggested_stop_loss: Optional[float] = None
    suggested_take_profit: Optional[float] = None
    reasoning: str = ""
    patterns: tuple = ()
    market_structure: str = "Neutral"

    @classmethod
    def hold(cls, symbol: str, generated_at: datetime, reasoning: str = "") -> "Signal":
        return cls(
            symbol=symbol,
            recommendation=Recommendation.HOLD,
            confidence=0.0,
            generated_at=generated_at,
            reasoning=reasoning,
            market_structure="Unknown",
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "recommendation": self.recommendation.value,
            "confidence": self.confidence,
            "suggested_stop_loss": self.suggested_stop_loss,
            "suggested_take_profit": self.suggested_take_profit,
            "generated_at": self.generated_at.isoformat(),
            "reasoning": self.reasoning,
            "patterns": list(self.patterns),
            "market_structure": self.market_structure,
        }


@dataclass
class RiskConfig:
    risk_tier: RiskTier = RiskTier.MEDIUM
    account_tier: AccountTier = AccountTier.FREE
    sensitivity: Sensitivity = Sensitivity.MEDIUM
    auto_trade: bool = False


@dataclass
class Position:
    id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    wallet_id: str
    margin: float
    opened_at: datetime
    source: str = "MANUAL"  # "MANUAL" | "AUTO"
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    is_trailing: bool = False
    highest_price_seen: Optional[float] = None
    lowest_price_seen: Optional[float] = None
    status: PositionStatus = PositionStatus.OPEN
    realized_profit: Optional[float] = None
    close_price: Optional[float] = None
    close_time: Optional[datetime] = None
    close_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if self.highest_price_seen is None:
            self.highest_price_seen = self.entry_price
        if self.lowest_price_seen is None:
            self.lowest_price_seen = self.entry_price

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def mark_closed(
        self, price: float, profit: float, when: datetime, reason: str
    ) -> None:
        # OPEN -> CLOSED exactly once
        if self.status != PositionStatus.OPEN:
            raise ValueError(f"position {self.id} is already closed")
        self.status = PositionStatus.CLOSED
        self.close_price = float(price)
        self.realized_profit = float(profit)
        self.close_time = when
        self.close_reason = reason

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "wallet_id": self.wallet_id,
            "margin": self.margin,
            "opened_at": self.opened_at.isoformat(),
            "source": self.source,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "is_trailing": self.is_trailing,
            "highest_price_seen": self.highest_price_seen,
            "lowest_price_seen": self.lowest_price_seen,
            "status": self.status.value,
            "realized_profit": self.realized_profit,
            "close_price": self.close_price,
            "close_time": self.close_time.isoformat() if self.close_time else None,
            "close_reason": self.close_reason,
        }


@dataclass
class TickReport:
    seq: int
    evaluated: int = 0
    trailed: List[str] = field(default_factory=list)
    closed: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    skipped: bool = False
