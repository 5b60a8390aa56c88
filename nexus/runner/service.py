# nexus/runner/service.py
from __future__ import annotations

import asyncio
import logging
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from nexus.core.config import Settings, settings
from nexus.oracle.base import SignalOracle
from nexus.persistence.audit import Audit, get_run_id, safe_event, set_run_id
from nexus.runner.engine import PositionEngine

log = logging.getLogger("nexus.runner")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunnerServiceState:
    running: bool = False
    run_id: Optional[str] = None
    tick_interval_seconds: float = 1.5
    analysis_interval_seconds: float = 20.0
    started_at: Optional[str] = None
    last_tick_at: Optional[str] = None
    last_analysis_at: Optional[str] = None
    cycle_count: int = 0
    analysis_count: int = 0
    last_error: Optional[str] = None


class EngineService:
    """
    Two asyncio timers around one PositionEngine:
      - tick loop: advance the feed every TICK_INTERVAL_SECONDS; the engine is
        registered as the feed's on_tick callback
      - analysis loop: ask the oracle about each symbol every 20 s (FREE)
        or 10 s (PRO)
    A crash in either loop halts the service and records a FATAL event.
    """

    def __init__(
        self,
        engine: PositionEngine,
        oracle: Optional[SignalOracle] = None,
        audit: Optional[Audit] = None,
        cfg: Settings = settings,
        symbols: Optional[List[str]] = None,
    ):
        self.engine = engine
        self.feed = engine.feed
        self.oracle = oracle
        self.audit = audit
        self.cfg = cfg
        self.symbols = [s.upper() for s in (symbols or cfg.TRADE_SYMBOLS)]
        self.state = RunnerServiceState(tick_interval_seconds=cfg.TICK_INTERVAL_SECONDS)

        self._tick_task: Optional[asyncio.Task] = None
        self._analysis_task: Optional[asyncio.Task] = None

        self.feed.on_tick(self.engine.process_tick)

    # ---------------- LIFECYCLE ----------------

    async def start(self) -> Dict[str, Any]:
        if self.state.running:
            return {"status": "already_running", **self.status()}

        run_id = str(uuid.uuid4())
        set_run_id(run_id)

        analysis_interval = self.cfg.analysis_interval(self.engine.risk.account_tier.value)
        if self.audit is not None:
            self.audit.start_run(
                run_id=run_id,
                wallet=self.engine.active_wallet,
                tick_interval_seconds=self.cfg.TICK_INTERVAL_SECONDS,
                analysis_interval_seconds=analysis_interval,
            )

        self.state = RunnerServiceState(
            running=True,
            run_id=run_id,
            tick_interval_seconds=self.cfg.TICK_INTERVAL_SECONDS,
            analysis_interval_seconds=analysis_interval,
            started_at=_utc_now_iso(),
        )

        self._tick_task = asyncio.create_task(self._tick_loop())
        if self.oracle is not None:
            self._analysis_task = asyncio.create_task(self._analysis_loop())

        log.info("runner started run_id=%s symbols=%s", run_id, self.symbols)
        return {"status": "started", **self.status()}

    async def stop(self) -> Dict[str, Any]:
        if not self.state.running and self._tick_task is None:
            return {"status": "not_running", **self.status()}

        self.state.running = False
        for task in (self._tick_task, self._analysis_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    # expected when we cancel the background loop
                    pass

        self._tick_task = None
        self._analysis_task = None

        if self.audit is not None and self.state.run_id:
            self.audit.stop_run(self.state.run_id)

        log.info("runner stopped run_id=%s", self.state.run_id)
        return {"status": "stopped", **self.status()}

    def status(self) -> Dict[str, Any]:
        s = self.state
        return {
            "running": s.running,
            "run_id": s.run_id,
            "tick_interval_seconds": s.tick_interval_seconds,
            "analysis_interval_seconds": s.analysis_interval_seconds,
            "started_at": s.started_at,
            "last_tick_at": s.last_tick_at,
            "last_analysis_at": s.last_analysis_at,
            "cycle_count": s.cycle_count,
            "analysis_count": s.analysis_count,
            "last_error": s.last_error,
            "symbols": list(self.symbols),
            "gate_state": self.engine.gate.state.value,
        }

    # ---------------- LOOPS ----------------

    async def _tick_loop(self) -> None:
        while self.state.running:
            try:
                snap = self.feed.tick()
                self.state.cycle_count += 1
                self.state.last_tick_at = _utc_now_iso()
                self.state.last_error = None
                log.debug("tick %s", snap.seq)
            except Exception:
                self._halt("TICK_LOOP_HALTED", traceback.format_exc())
                break

            await asyncio.sleep(self.state.tick_interval_seconds)

    async def _analysis_loop(self) -> None:
        # first pass fires immediately, then on the tier cadence
        while self.state.running:
            try:
                await self.analyze_once()
            except Exception:
                self._halt("ANALYSIS_LOOP_HALTED", traceback.format_exc())
                break

            interval = self.cfg.analysis_interval(self.engine.risk.account_tier.value)
            self.state.analysis_interval_seconds = interval
            await asyncio.sleep(interval)

    async def analyze_once(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run one analysis per symbol (or just `symbol`). Returns the signals seen."""
        if self.oracle is None:
            return []

        targets = [symbol.upper()] if symbol else self.symbols
        out: List[Dict[str, Any]] = []
        for sym in targets:
            signal = await self.engine.run_analysis(self.oracle, sym)
            if signal is not None:
                out.append(signal.as_dict())

        self.state.analysis_count += 1
        self.state.last_analysis_at = _utc_now_iso()
        return out

    def _halt(self, action: str, err: str) -> None:
        log.error("runner halted (%s): %s", action, err)
        self.state.last_error = err
        self.state.running = False
        safe_event(
            self.audit,
            "FATAL",
            run_id=self.state.run_id or get_run_id(),
            action=action,
            details={"error": err},
        )
