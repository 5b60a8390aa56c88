# nexus/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("nexus.config")


def _symbols(raw: Any) -> List[str]:
    """TRADE_SYMBOLS from a list, a JSON array string or a comma separated string."""
    if raw is None:
        return []
    items: Any = raw
    if isinstance(raw, str):
        text = raw.strip()
        items = text.split(",")
        if text.startswith("["):
            try:
                items = json.loads(text)
            except ValueError:
                log.warning("TRADE_SYMBOLS is not valid JSON, parsing as CSV")
                items = text.strip("[]").split(",")
    cleaned = (str(item).strip().strip('"').upper() for item in items)
    return [sym for sym in cleaned if sym]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Wallets ---
    ACTIVE_WALLET: str = "DEMO"  # DEMO/LIVE
    DEMO_BALANCE: float = 10000.0
    LIVE_BALANCE: float = 0.0

    # --- Symbols / market ---
    TRADE_SYMBOLS: List[str] = Field(default_factory=list)
    DEFAULT_SYMBOL: str = "USD/JPY"
    TICK_INTERVAL_SECONDS: float = 1.5
    HISTORY_LENGTH: int = 60
    INITIAL_HISTORY_POINTS: int = 50
    LIVE_PRICE_SYNC: bool = False
    FOREX_RATES_URL: str = "https://open.er-api.com/v6/latest/USD"
    CRYPTO_PRICES_URL: str = "https://api.coincap.io/v2/assets?ids=bitcoin,ethereum,solana"

    # --- Analysis cadence ---
    ANALYSIS_INTERVAL_SECONDS: float = 20.0
    PRO_ANALYSIS_INTERVAL_SECONDS: float = 10.0
    MIN_HISTORY_POINTS: int = 10

    # --- Risk profile ---
    RISK_TIER: str = "MEDIUM"  # LOW/MEDIUM/HIGH
    ACCOUNT_TIER: str = "FREE"  # FREE/PRO
    SENSITIVITY: str = "MEDIUM"  # LOW/MEDIUM/HIGH
    AUTO_TRADE: bool = False

    RISK_FRACTION_LOW: float = 0.01
    RISK_FRACTION_MEDIUM: float = 0.05
    RISK_FRACTION_HIGH: float = 0.10
    QTY_DECIMALS: int = 6

    # --- Auto-entry gate ---
    CONFIDENCE_THRESHOLD: float = 85.0
    HIGH_SENSITIVITY_THRESHOLD: float = 80.0
    SIGNAL_FRESHNESS_SECONDS: float = 15.0
    FREE_MAX_POSITIONS_PER_SYMBOL: int = 3
    PRO_MAX_POSITIONS_PER_SYMBOL: int = 10

    # percent values (1.0 means 1%), used when a signal carries no usable level
    FALLBACK_STOP_LOSS_PCT: float = 1.0
    FALLBACK_TAKE_PROFIT_PCT: float = 1.5

    # --- Trailing stop (fractions of entry price) ---
    BREAK_EVEN_TRIGGER_PCT: float = 0.005
    TRAIL_TRIGGER_PCT: float = 0.015
    TRAIL_GAP_PCT: float = 0.005

    # --- Oracle ---
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    ORACLE_TIMEOUT_SECONDS: float = 20.0
    ORACLE_MAX_RETRIES: int = 3

    # --- Audit ---
    DB_PATH: str = "data/engine.db"
    AUDIT_JSONL_PATH: str = "logs/engine_audit.jsonl"

    @field_validator("TRADE_SYMBOLS", mode="before")
    @classmethod
    def parse_trade_symbols(cls, v: Any) -> List[str]:
        return _symbols(v)

    def model_post_init(self, __context: Any) -> None:
        # Normalize enums given in any case
        self.ACTIVE_WALLET = (self.ACTIVE_WALLET or "DEMO").upper().strip()
        self.RISK_TIER = (self.RISK_TIER or "MEDIUM").upper().strip()
        self.ACCOUNT_TIER = (self.ACCOUNT_TIER or "FREE").upper().strip()
        self.SENSITIVITY = (self.SENSITIVITY or "MEDIUM").upper().strip()
        self.DEFAULT_SYMBOL = (self.DEFAULT_SYMBOL or "USD/JPY").upper().strip()

        # Default TRADE_SYMBOLS to the chart symbol if empty
        if not self.TRADE_SYMBOLS:
            self.TRADE_SYMBOLS = [self.DEFAULT_SYMBOL]

    def analysis_interval(self, account_tier: str | None = None) -> float:
        tier = (account_tier or self.ACCOUNT_TIER).upper()
        if tier == "PRO":
            return float(self.PRO_ANALYSIS_INTERVAL_SECONDS)
        return float(self.ANALYSIS_INTERVAL_SECONDS)

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.ACTIVE_WALLET not in {"DEMO", "LIVE"}:
            errors.append("ACTIVE_WALLET must be 'DEMO' or 'LIVE'.")
        if self.RISK_TIER not in {"LOW", "MEDIUM", "HIGH"}:
            errors.append("RISK_TIER must be LOW, MEDIUM or HIGH.")
        if self.ACCOUNT_TIER not in {"FREE", "PRO"}:
            errors.append("ACCOUNT_TIER must be FREE or PRO.")
        if self.SENSITIVITY not in {"LOW", "MEDIUM", "HIGH"}:
            errors.append("SENSITIVITY must be LOW, MEDIUM or HIGH.")

        if self.RISK_TIER == "HIGH" and self.ACCOUNT_TIER != "PRO":
            errors.append("RISK_TIER=HIGH is reserved for ACCOUNT_TIER=PRO.")

        # Balances
        if self.DEMO_BALANCE < 0 or self.LIVE_BALANCE < 0:
            errors.append("Wallet balances must be >= 0.")
        active_balance = (
            self.DEMO_BALANCE if self.ACTIVE_WALLET == "DEMO" else self.LIVE_BALANCE
        )
        if active_balance == 0:
            warnings.append(
                f"{self.ACTIVE_WALLET} wallet balance is 0. Every open will be rejected."
            )

        # Risk fractions live in (0, 1]
        for name in ("RISK_FRACTION_LOW", "RISK_FRACTION_MEDIUM", "RISK_FRACTION_HIGH"):
            val = float(getattr(self, name))
            if not (0.0 < val <= 1.0):
                errors.append(f"{name} must be in (0, 1].")

        if self.QTY_DECIMALS < 0:
            errors.append("QTY_DECIMALS must be >= 0.")

        # Timers
        if self.TICK_INTERVAL_SECONDS <= 0:
            errors.append("TICK_INTERVAL_SECONDS must be > 0.")
        if self.ANALYSIS_INTERVAL_SECONDS <= 0 or self.PRO_ANALYSIS_INTERVAL_SECONDS <= 0:
            errors.append("Analysis intervals must be > 0.")
        if self.HISTORY_LENGTH < self.MIN_HISTORY_POINTS:
            errors.append("HISTORY_LENGTH must be >= MIN_HISTORY_POINTS.")

        # Gate
        if not (0 <= self.CONFIDENCE_THRESHOLD <= 100):
            errors.append("CONFIDENCE_THRESHOLD must be within 0..100.")
        if self.HIGH_SENSITIVITY_THRESHOLD > self.CONFIDENCE_THRESHOLD:
            warnings.append(
                "HIGH_SENSITIVITY_THRESHOLD is stricter than CONFIDENCE_THRESHOLD; check if this is intended."
            )
        if self.SIGNAL_FRESHNESS_SECONDS <= 0:
            errors.append("SIGNAL_FRESHNESS_SECONDS must be > 0.")
        if self.FREE_MAX_POSITIONS_PER_SYMBOL < 1 or self.PRO_MAX_POSITIONS_PER_SYMBOL < 1:
            errors.append("Per-symbol position caps must be >= 1.")
        if self.FALLBACK_STOP_LOSS_PCT <= 0:
            errors.append("FALLBACK_STOP_LOSS_PCT must be > 0.")
        if self.FALLBACK_TAKE_PROFIT_PCT <= 0:
            errors.append("FALLBACK_TAKE_PROFIT_PCT must be > 0.")

        # Trailing
        if self.BREAK_EVEN_TRIGGER_PCT <= 0 or self.TRAIL_TRIGGER_PCT <= 0:
            errors.append("Trailing triggers must be > 0.")
        if self.TRAIL_GAP_PCT <= 0:
            errors.append("TRAIL_GAP_PCT must be > 0.")
        if self.TRAIL_GAP_PCT >= self.TRAIL_TRIGGER_PCT:
            warnings.append(
                "TRAIL_GAP_PCT >= TRAIL_TRIGGER_PCT: the trailing candidate never beats break-even."
            )

        # Oracle
        if not self.GEMINI_API_KEY:
            warnings.append(
                "GEMINI_API_KEY is empty. Every analysis will resolve to HOLD."
            )
        if self.AUTO_TRADE and self.ACTIVE_WALLET == "LIVE":
            warnings.append(
                "AUTO_TRADE with ACTIVE_WALLET=LIVE trades the LIVE simulated balance."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
