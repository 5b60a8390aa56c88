# nexus/persistence/audit.py
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from nexus.persistence.db import DB, utc_now_iso

log = logging.getLogger("nexus.audit")

# run / cycle ids follow the current task or thread
_run_id_var: ContextVar[Optional[str]] = ContextVar("nexus_run_id", default=None)
_cycle_id_var: ContextVar[Optional[str]] = ContextVar("nexus_cycle_id", default=None)


def set_run_id(run_id: Optional[str]) -> None:
    _run_id_var.set(run_id)


def get_run_id() -> Optional[str]:
    return _run_id_var.get()


def get_cycle_id() -> Optional[str]:
    return _cycle_id_var.get()


@contextmanager
def cycle_scope() -> Iterator[str]:
    """Fresh cycle id for the duration of one tick pass."""
    token = _cycle_id_var.set(str(uuid.uuid4()))
    try:
        yield _cycle_id_var.get()
    finally:
        _cycle_id_var.reset(token)


_EVENT_COLUMNS = ("timestamp_utc", "run_id", "cycle_id", "symbol", "event_type", "action")


class Audit:
    """
    Append-only engine log. The `events` table is authoritative; every row is
    also appended to a JSONL file for `tail -f`. Never read back into state.
    """

    def __init__(self, db: DB, jsonl_path: str = "logs/engine_audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path)
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("audit mirror %s unavailable: %s", self.jsonl_path, e)

    # ---------------- RUNS ----------------

    def start_run(
        self,
        run_id: str,
        wallet: str,
        tick_interval_seconds: float,
        analysis_interval_seconds: float,
    ) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO runs(run_id, started_at, wallet, tick_interval_seconds, analysis_interval_seconds) "
                "VALUES (?,?,?,?,?)",
                (run_id, utc_now_iso(), wallet, tick_interval_seconds, analysis_interval_seconds),
            )
        self.event(
            "RUN_START",
            run_id=run_id,
            details={
                "wallet": wallet,
                "tick_interval_seconds": tick_interval_seconds,
                "analysis_interval_seconds": analysis_interval_seconds,
            },
        )

    def stop_run(self, run_id: str) -> None:
        with self.db.connect() as conn:
            conn.execute("UPDATE runs SET stopped_at = ? WHERE run_id = ?", (utc_now_iso(), run_id))
        self.event("RUN_STOP", run_id=run_id)

    # ---------------- EVENTS ----------------

    def event(
        self,
        event_type: str,
        run_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        row: Dict[str, Any] = {
            "timestamp_utc": utc_now_iso(),
            "run_id": run_id or get_run_id(),
            "cycle_id": cycle_id or get_cycle_id(),
            "symbol": symbol,
            "event_type": event_type,
            "action": action,
            "details": details or {},
        }

        with self.db.connect() as conn:
            conn.execute(
                f"INSERT INTO events({', '.join(_EVENT_COLUMNS)}, details_json) VALUES (?,?,?,?,?,?,?)",
                tuple(row[c] for c in _EVENT_COLUMNS) + (json.dumps(row["details"], default=str),),
            )

        self._mirror(row)

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent events, oldest first. `limit` is clamped to 1..500."""
        limit = max(1, min(int(limit), 500))
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT id, {', '.join(_EVENT_COLUMNS)}, details_json FROM events ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()

        out = []
        for r in reversed(rows):
            item = {k: r[k] for k in ("id",) + _EVENT_COLUMNS}
            item["details"] = json.loads(r["details_json"] or "{}")
            out.append(item)
        return out

    def _mirror(self, row: Dict[str, Any]) -> None:
        try:
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            log.warning("audit mirror write failed: %s", e)


def safe_event(audit: Optional[Audit], event_type: str, **kwargs: Any) -> None:
    """Audit write that logs instead of raising. No-op without an Audit."""
    if audit is None:
        return
    try:
        audit.event(event_type, **kwargs)
    except (sqlite3.Error, OSError, TypeError, ValueError) as e:
        log.warning("audit event %s dropped: %s", event_type, e)
