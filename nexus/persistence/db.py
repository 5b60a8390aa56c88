from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# Audit trail only: positions and balances live in memory.
_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    stopped_at TEXT,
    wallet TEXT NOT NULL,
    tick_interval_seconds REAL NOT NULL,
    analysis_interval_seconds REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp_utc TEXT NOT NULL,
    run_id TEXT,
    cycle_id TEXT,
    symbol TEXT,
    event_type TEXT NOT NULL,
    action TEXT,
    details_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_run ON events(run_id);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_symbol ON events(symbol);
"""


class DB:
    """SQLite file holding the run + event log. Default path: data/engine.db"""

    def __init__(self, path: str = "data/engine.db"):
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # one short-lived connection per unit of work; callers may be on any thread
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()
