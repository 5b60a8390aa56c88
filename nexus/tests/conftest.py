import random
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from nexus.core.config import Settings
from nexus.market.price_feed import PairConfig, SimulatedPriceFeed
from nexus.persistence.audit import Audit
from nexus.persistence.db import DB
from nexus.runner.engine import PositionEngine
from nexus.runner.models import Recommendation, RiskConfig, Signal
from nexus.wallet.ledger import WalletLedger


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """
    Keep tests offline and deterministic.
    """
    monkeypatch.setenv("ACTIVE_WALLET", "DEMO")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("LIVE_PRICE_SYNC", "false")
    monkeypatch.setenv("AUTO_TRADE", "false")
    monkeypatch.setenv("TRADE_SYMBOLS", "TEST/USD")


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeOracle:
    """Returns a scripted signal and counts calls."""

    def __init__(self, clock, recommendation=Recommendation.BUY, confidence=90.0, **levels):
        self.clock = clock
        self.recommendation = recommendation
        self.confidence = confidence
        self.levels = levels
        self.calls = []

    def request_signal(self, price_history, wallet_balance, risk_tier, symbol, sensitivity):
        self.calls.append(
            {
                "points": len(price_history),
                "wallet_balance": wallet_balance,
                "risk_tier": risk_tier,
                "symbol": symbol,
                "sensitivity": sensitivity,
            }
        )
        return Signal(
            symbol=symbol,
            recommendation=self.recommendation,
            confidence=self.confidence,
            generated_at=self.clock(),
            suggested_stop_loss=self.levels.get("stop_loss"),
            suggested_take_profit=self.levels.get("take_profit"),
        )


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        DB_PATH=str(tmp_path / "engine.db"),
        AUDIT_JSONL_PATH=str(tmp_path / "audit.jsonl"),
        DEMO_BALANCE=10000.0,
        LIVE_BALANCE=500.0,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def feed():
    f = SimulatedPriceFeed(
        {
            "TEST/USD": PairConfig(100.0, 0.2, 5),
            "ALT/USD": PairConfig(50.0, 0.1, 5),
        },
        history_length=60,
        rng=random.Random(7),
    )
    # back-fill only; current prices stay at the base values
    f.seed_history(20)
    return f


@pytest.fixture
def audit(cfg):
    return Audit(DB(cfg.DB_PATH), cfg.AUDIT_JSONL_PATH)


@pytest.fixture
def make_engine(cfg, feed, audit, clock):
    def _make(balance: float = 10000.0, risk: Optional[RiskConfig] = None, live: float = 0.0):
        ledger = WalletLedger({"DEMO": balance, "LIVE": live})
        return PositionEngine(
            feed,
            ledger,
            risk=risk or RiskConfig(),
            audit=audit,
            cfg=cfg,
            clock=clock,
            active_wallet="DEMO",
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def make_oracle(clock):
    def _make(recommendation=Recommendation.BUY, confidence=90.0, **levels):
        return FakeOracle(clock, recommendation, confidence, **levels)

    return _make
