# nexus/oracle/gemini.py
from __future__ import annotations

import json
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from nexus.core.config import settings
from nexus.core.errors import OracleUnavailable
from nexus.oracle import indicators
from nexus.runner.models import Recommendation, Signal

log = logging.getLogger("nexus.oracle")

_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "recommendation": {"type": "STRING", "enum": ["BUY", "SELL", "HOLD"]},
        "confidence": {"type": "NUMBER"},
        "reasoning": {"type": "STRING"},
        "stopLoss": {"type": "NUMBER"},
        "takeProfit": {"type": "NUMBER"},
        "patterns": {"type": "ARRAY", "items": {"type": "STRING"}},
        "marketStructure": {"type": "STRING"},
    },
    "required": ["recommendation", "confidence", "reasoning", "stopLoss", "takeProfit"],
}


class OraclePayload(BaseModel):
    """Shape of the JSON the model is asked to return."""

    recommendation: Recommendation
    confidence: float = Field(ge=0, le=100)
    reasoning: str = ""
    stopLoss: Optional[float] = None
    takeProfit: Optional[float] = None
    patterns: List[str] = Field(default_factory=list)
    marketStructure: str = "Neutral"

    @field_validator("recommendation", mode="before")
    @classmethod
    def upper_recommendation(cls, v: Any) -> Any:
        return str(v).strip().upper() if v is not None else v

    @field_validator("stopLoss", "takeProfit")
    @classmethod
    def non_positive_is_missing(cls, v: Optional[float]) -> Optional[float]:
        if v is None or v <= 0:
            return None
        return v


def _fmt(fn, *args) -> str:
    try:
        val = fn(*args)
    except ValueError:
        return "N/A"
    if isinstance(val, tuple):
        return ", ".join(f"{x:.5f}" for x in val)
    return f"{val:.5f}"


def build_prompt(
    price_history: List[float],
    wallet_balance: float,
    risk_tier: str,
    symbol: str,
    sensitivity: str,
) -> str:
    recent = price_history[-50:]
    current = recent[-1]

    technicals = "\n".join(
        [
            f"Price: {current}",
            f"RSI (14): {_fmt(indicators.rsi, recent, 14)}",
            f"SMA (7): {_fmt(indicators.sma, recent, 7)}",
            f"SMA (20): {_fmt(indicators.sma, recent, 20)}",
            f"EMA (12): {_fmt(indicators.ema, recent, 12)}",
            f"EMA (26): {_fmt(indicators.ema, recent, 26)}",
            f"Bollinger (lower, mid, upper): {_fmt(indicators.bollinger, recent)}",
            f"ATR (14): {_fmt(indicators.atr, recent, 14)}",
        ]
    )

    return f"""
You are an expert FX and crypto trading analyst.
Analyze the following market data for {symbol}.

User settings:
- Balance: {wallet_balance}
- Risk level: {risk_tier}
- Signal sensitivity: {sensitivity}

Technical indicators:
{technicals}

Recent price history (last 10 ticks): {json.dumps(recent[-10:])}

Tasks:
1. Identify candlestick patterns and market structure (bullish, bearish, ranging).
2. Recommend BUY, SELL or HOLD with a confidence between 0 and 100.
3. Give a tight stop loss (ATR or recent support/resistance) and a take profit
   at least 1.5x the risk.

Sensitivity HIGH favours early reversals; LOW waits for strong confirmation.
Return JSON only, matching the response schema.
""".strip()


class GeminiOracle:
    """
    Signal oracle backed by the Gemini generateContent REST endpoint.
    Raises OracleUnavailable on missing key, transport failure after retries,
    or malformed output.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.5,
    ):
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = float(timeout or settings.ORACLE_TIMEOUT_SECONDS)
        self.max_retries = settings.ORACLE_MAX_RETRIES if max_retries is None else int(max_retries)
        self.retry_delay = retry_delay

    def _request(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

        last_err: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                r = requests.post(url, json=body, headers=headers, timeout=self.timeout)

                # Rate limit / server errors are retried
                if r.status_code == 429 or r.status_code >= 500:
                    last_err = RuntimeError(f"HTTP {r.status_code}")
                    if attempt < self.max_retries:
                        log.warning(
                            "Gemini HTTP %s, retrying (%d attempts left)",
                            r.status_code,
                            self.max_retries - attempt,
                        )
                        time.sleep(self.retry_delay + random.uniform(0, 0.2))
                    continue

                r.raise_for_status()
                return r.json()

            except (requests.Timeout, requests.ConnectionError) as e:
                last_err = e
                if attempt < self.max_retries:
                    time.sleep(self.retry_delay)
                continue
            except (requests.RequestException, ValueError) as e:
                last_err = e
                break

        raise OracleUnavailable(f"Gemini request failed: {last_err}")

    def request_signal(
        self,
        price_history: List[float],
        wallet_balance: float,
        risk_tier: str,
        symbol: str,
        sensitivity: str = "MEDIUM",
    ) -> Signal:
        if not self.api_key:
            raise OracleUnavailable("api_key_missing")
        if not price_history:
            raise OracleUnavailable("empty_price_history")

        prompt = build_prompt(price_history, wallet_balance, risk_tier, symbol, sensitivity)
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": _RESPONSE_SCHEMA,
            },
        }

        data = self._request(body)
        payload = parse_response(data)

        return Signal(
            symbol=symbol,
            recommendation=payload.recommendation,
            confidence=payload.confidence,
            generated_at=datetime.now(timezone.utc),
            suggested_stop_loss=payload.stopLoss,
            suggested_take_profit=payload.takeProfit,
            reasoning=payload.reasoning,
            patterns=tuple(payload.patterns),
            market_structure=payload.marketStructure,
        )


def parse_response(data: Dict[str, Any]) -> OraclePayload:
    """Extract and validate the model's JSON text. Raises OracleUnavailable."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise OracleUnavailable("no_response_text", {"response": data})

    try:
        return OraclePayload.model_validate(json.loads(text))
    except (ValueError, ValidationError) as e:
        raise OracleUnavailable(f"malformed_oracle_output: {e}", {"text": text[:500]})
