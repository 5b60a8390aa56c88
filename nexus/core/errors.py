from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base for every error the engine surfaces to its callers."""

    reason: str = "engine_error"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.reason)
        self.details: Dict[str, Any] = dict(details or {})


class SizingFailed(EngineError):
    reason = "sizing_failed"


class InsufficientFunds(EngineError):
    reason = "insufficient_funds"


class OracleUnavailable(EngineError):
    reason = "oracle_unavailable"


class StaleSignal(EngineError):
    reason = "stale_signal"


class UnknownSymbol(EngineError):
    reason = "unknown_symbol"


class UnknownWallet(EngineError):
    reason = "unknown_wallet"


class PolicyViolation(EngineError):
    reason = "policy_violation"
