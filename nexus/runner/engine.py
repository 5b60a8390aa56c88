# nexus/runner/engine.py
from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Union

from nexus.core.config import Settings, settings
from nexus.core.errors import EngineError, OracleUnavailable, PolicyViolation
from nexus.execution.exit_rules import evaluate_closure, validate_levels
from nexus.execution.trailing import apply_trailing_stop
from nexus.market.price_feed import PriceSnapshot, SimulatedPriceFeed
from nexus.oracle.base import SignalOracle
from nexus.persistence.audit import Audit, cycle_scope, safe_event
from nexus.policy.auto_entry import Action, AutoEntryGate, EntryInputs, decide
from nexus.risk.sizing import size_position
from nexus.risk.tiers import (
    confidence_threshold,
    max_positions_per_symbol,
    risk_config_from_settings,
    risk_fraction_for,
    validate_risk_config,
)
from nexus.runner.models import (
    Direction,
    Position,
    Recommendation,
    RiskConfig,
    Signal,
    TickReport,
)
from nexus.wallet.ledger import WalletLedger

log = logging.getLogger("nexus.engine")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_signal(signal: object, symbol: str) -> None:
    """Reject oracle output the entry gate cannot evaluate."""
    if not isinstance(signal, Signal):
        raise OracleUnavailable("malformed_signal", {"got": type(signal).__name__})
    if not isinstance(signal.recommendation, Recommendation):
        raise OracleUnavailable("malformed_signal", {"recommendation": repr(signal.recommendation)})
    if isinstance(signal.confidence, bool) or not isinstance(signal.confidence, (int, float)):
        raise OracleUnavailable("malformed_signal", {"confidence": repr(signal.confidence)})
    ts = signal.generated_at
    if not isinstance(ts, datetime) or ts.tzinfo is None or ts.utcoffset() is None:
        raise OracleUnavailable("naive_or_missing_timestamp", {"generated_at": repr(ts)})
    if signal.symbol.upper() != symbol:
        raise OracleUnavailable("symbol_mismatch", {"expected": symbol, "got": signal.symbol})


class PositionEngine:
    """
    Owns the position set and drives it through OPEN -> CLOSED.

    Every mutation of positions or wallets happens under self._lock:
    manual opens from HTTP handlers, signal-driven opens and the per-tick
    pass all serialize on it. A second, non-blocking cycle lock makes an
    overlapping tick skip instead of queueing.
    """

    def __init__(
        self,
        feed: SimulatedPriceFeed,
        ledger: WalletLedger,
        risk: Optional[RiskConfig] = None,
        audit: Optional[Audit] = None,
        cfg: Settings = settings,
        clock: Optional[Clock] = None,
        active_wallet: Optional[str] = None,
    ):
        self.feed = feed
        self.ledger = ledger
        self.cfg = cfg
        self.audit = audit
        self.clock: Clock = clock or _utc_now

        self.risk = risk or risk_config_from_settings(cfg)
        validate_risk_config(self.risk)

        self.active_wallet = (active_wallet or cfg.ACTIVE_WALLET).upper()

        self.positions: Dict[str, Position] = {}
        self.latest_signal: Dict[str, Signal] = {}
        self.gate = AutoEntryGate()

        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self.last_tick_seq: Optional[int] = None

    @contextmanager
    def cycle_guard(self) -> Iterator[bool]:
        """Yields False when another tick pass is still running."""
        acquired = self._cycle_lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._cycle_lock.release()

    # ---------------- READ ----------------

    def get(self, position_id: str) -> Optional[Position]:
        with self._lock:
            return self.positions.get(position_id)

    def open_positions(self, symbol: Optional[str] = None) -> List[Position]:
        sym = symbol.upper() if symbol else None
        with self._lock:
            return [
                p
                for p in self.positions.values()
                if p.is_open and (sym is None or p.symbol == sym)
            ]

    def closed_positions(self) -> List[Position]:
        with self._lock:
            return [p for p in self.positions.values() if not p.is_open]

    def all_positions(self) -> List[Position]:
        with self._lock:
            return list(self.positions.values())

    def locked_margin(self, wallet_id: str) -> float:
        wid = wallet_id.upper()
        with self._lock:
            return sum(p.margin for p in self.positions.values() if p.is_open and p.wallet_id == wid)

    # ---------------- CONFIG ----------------

    def update_risk_config(self, risk: RiskConfig) -> RiskConfig:
        validate_risk_config(risk)
        with self._lock:
            self.risk = risk
        safe_event(
            self.audit,
            "RISK_CONFIG",
            action="UPDATED",
            details={
                "risk_tier": risk.risk_tier.value,
                "account_tier": risk.account_tier.value,
                "sensitivity": risk.sensitivity.value,
                "auto_trade": risk.auto_trade,
            },
        )
        return risk

    # ---------------- OPEN ----------------

    def open_position(
        self,
        symbol: str,
        direction: Union[Direction, str],
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        wallet_id: Optional[str] = None,
        source: str = "MANUAL",
    ) -> Position:
        """
        Size, reserve margin and create an OPEN position at the current price.
        Raises UnknownSymbol, UnknownWallet, SizingFailed, InsufficientFunds
        or PolicyViolation (stop/target on the wrong side of the entry).
        """
        sym = (symbol or "").upper()
        with self._lock:
            try:
                entry_price = self.feed.get_price(sym)
                return self._open_locked(
                    sym,
                    Direction(direction),
                    entry_price,
                    stop_loss,
                    take_profit,
                    wallet_id,
                    source,
                )
            except EngineError as e:
                safe_event(
                    self.audit,
                    "OPEN_REJECTED",
                    symbol=sym,
                    action=e.reason,
                    details={"error": str(e), "source": source, **e.details},
                )
                raise

    def _open_locked(
        self,
        symbol: str,
        direction: Direction,
        entry_price: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
        wallet_id: Optional[str],
        source: str,
    ) -> Position:
        wid = (wallet_id or self.active_wallet).upper()

        try:
            validate_levels(direction, entry_price, stop_loss, take_profit)
        except ValueError as e:
            raise PolicyViolation(
                str(e),
                {"entry_price": entry_price, "stop_loss": stop_loss, "take_profit": take_profit},
            )

        balance = self.ledger.balance(wid)
        size = size_position(
            balance=balance,
            risk_fraction=risk_fraction_for(self.risk.risk_tier, self.cfg),
            entry_price=entry_price,
            decimals=self.cfg.QTY_DECIMALS,
        )

        # reservation and creation happen under the same engine lock
        new_balance = self.ledger.reserve_margin(wid, size.margin)

        pos = Position(
            id=str(uuid.uuid4()),
            symbol=symbol,
            direction=direction,
            entry_price=entry_price,
            quantity=size.qty,
            wallet_id=wid,
            margin=size.margin,
            opened_at=self.clock(),
            source=source,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self.positions[pos.id] = pos

        log.info(
            "opened %s %s %s qty=%s @ %s (wallet %s -> %.2f)",
            pos.id[:8],
            direction.value,
            symbol,
            pos.quantity,
            entry_price,
            wid,
            new_balance,
        )
        safe_event(
            self.audit,
            "POSITION_OPENED",
            symbol=symbol,
            action=direction.value,
            details={**pos.as_dict(), "wallet_balance": new_balance},
        )
        return pos

    # ---------------- TICK ----------------

    def process_tick(self, snapshot: PriceSnapshot) -> TickReport:
        """
        One pass over every OPEN position: trailing stop first, then closure,
        then margin + profit back to the funding wallet. Never raises.
        """
        report = TickReport(seq=snapshot.seq)

        with self.cycle_guard() as acquired:
            if not acquired:
                report.skipped = True
                safe_event(
                    self.audit,
                    "TICK_SKIPPED",
                    action="CYCLE_ALREADY_RUNNING",
                    details={"seq": snapshot.seq},
                )
                return report

            with cycle_scope(), self._lock:
                now = self.clock()
                for pos in [p for p in self.positions.values() if p.is_open]:
                    price = snapshot.prices.get(pos.symbol)
                    if price is None:
                        continue
                    report.evaluated += 1
                    try:
                        self._step_position(pos, price, now, report)
                    except Exception as e:
                        # one bad position never blocks the rest of the pass
                        log.exception("tick %s failed for position %s", snapshot.seq, pos.id)
                        report.errors.append({"position_id": pos.id, "error": repr(e)})
                        safe_event(
                            self.audit,
                            "TICK_ERROR",
                            symbol=pos.symbol,
                            action="POSITION_STEP_FAILED",
                            details={"position_id": pos.id, "error": repr(e)},
                        )
                self.last_tick_seq = snapshot.seq

        return report

    def _step_position(
        self, pos: Position, price: float, now: datetime, report: TickReport
    ) -> None:
        update = apply_trailing_stop(
            pos,
            price,
            break_even_pct=self.cfg.BREAK_EVEN_TRIGGER_PCT,
            trail_trigger_pct=self.cfg.TRAIL_TRIGGER_PCT,
            trail_gap_pct=self.cfg.TRAIL_GAP_PCT,
        )
        if update.changed:
            report.trailed.append(pos.id)
            safe_event(
                self.audit,
                "STOP_TIGHTENED",
                symbol=pos.symbol,
                action=update.reason,
                details={
                    "position_id": pos.id,
                    "price": price,
                    "old_stop": update.old_stop,
                    "new_stop": update.new_stop,
                    "move_pct": update.move_pct,
                },
            )

        closure = evaluate_closure(pos, price, now)
        if closure is None:
            return

        new_balance = self.ledger.release_margin(
            pos.wallet_id, closure.margin, closure.realized_profit
        )
        report.closed.append(pos.id)

        log.info(
            "closed %s %s %s @ %s reason=%s profit=%.6f (wallet %s -> %.2f)",
            pos.id[:8],
            pos.direction.value,
            pos.symbol,
            price,
            closure.reason,
            closure.realized_profit,
            pos.wallet_id,
            new_balance,
        )
        safe_event(
            self.audit,
            "POSITION_CLOSED",
            symbol=pos.symbol,
            action=closure.reason,
            details={**pos.as_dict(), "wallet_balance": new_balance},
        )

    # ---------------- SIGNALS ----------------

    def apply_signal(self, signal: Signal) -> Optional[Position]:
        """Run the entry gate on `signal`; opens at most one position."""
        sym = signal.symbol.upper()

        with self._lock:
            self.latest_signal[sym] = signal
            try:
                reference_price = self.feed.get_price(sym)
            except EngineError as e:
                safe_event(
                    self.audit,
                    "ENTRY_DECISION",
                    symbol=sym,
                    action=Action.HOLD.value,
                    details={"reason": e.reason},
                )
                return None

            decision = decide(
                EntryInputs(
                    signal=signal,
                    open_positions_for_symbol=len(self.open_positions(sym)),
                    reference_price=reference_price,
                    auto_trade=self.risk.auto_trade,
                    confidence_threshold=confidence_threshold(self.risk.sensitivity, self.cfg),
                    freshness_seconds=self.cfg.SIGNAL_FRESHNESS_SECONDS,
                    max_positions_per_symbol=max_positions_per_symbol(
                        self.risk.account_tier, self.cfg
                    ),
                    fallback_stop_loss_pct=self.cfg.FALLBACK_STOP_LOSS_PCT,
                    fallback_take_profit_pct=self.cfg.FALLBACK_TAKE_PROFIT_PCT,
                    now=self.clock(),
                )
            )

            safe_event(
                self.audit,
                "ENTRY_DECISION",
                symbol=sym,
                action=decision.action.value,
                details={
                    "reason": decision.reason,
                    "recommendation": signal.recommendation.value,
                    "confidence": signal.confidence,
                },
            )

            if decision.request is None:
                return None

            req = decision.request
            try:
                return self._open_locked(
                    sym,
                    req.direction,
                    reference_price,
                    req.stop_loss,
                    req.take_profit,
                    None,
                    req.source,
                )
            except EngineError as e:
                log.warning("auto entry on %s rejected: %s", sym, e)
                safe_event(
                    self.audit,
                    "OPEN_REJECTED",
                    symbol=sym,
                    action=e.reason,
                    details={"error": str(e), "source": req.source, **e.details},
                )
                return None

    async def run_analysis(self, oracle: SignalOracle, symbol: str) -> Optional[Signal]:
        """
        One oracle round-trip for `symbol`. Returns None when a request is
        already in flight or history is too short. Any oracle failure is
        applied as HOLD with confidence 0.
        """
        sym = symbol.upper()
        if not self.gate.try_begin():
            safe_event(self.audit, "ANALYSIS_SKIPPED", symbol=sym, action="BUSY")
            return None

        try:
            history = self.feed.history(sym)
            if len(history) < self.cfg.MIN_HISTORY_POINTS:
                safe_event(
                    self.audit,
                    "ANALYSIS_SKIPPED",
                    symbol=sym,
                    action="NOT_ENOUGH_HISTORY",
                    details={"points": len(history)},
                )
                return None

            balance = self.ledger.balance(self.active_wallet)
            try:
                signal = await asyncio.to_thread(
                    oracle.request_signal,
                    history,
                    balance,
                    self.risk.risk_tier.value,
                    sym,
                    self.risk.sensitivity.value,
                )
                _check_signal(signal, sym)
            except Exception as e:
                # oracle errors of any kind degrade to HOLD
                log.warning("oracle unavailable for %s: %s", sym, e)
                safe_event(
                    self.audit,
                    "ORACLE_UNAVAILABLE",
                    symbol=sym,
                    action="HOLD",
                    details={"error": repr(e)},
                )
                signal = Signal.hold(sym, self.clock(), reasoning=f"oracle unavailable: {e}")

            self.apply_signal(signal)
            return signal
        finally:
            self.gate.finish()
