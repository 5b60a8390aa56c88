import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException

from nexus.core.config import Settings, settings
from nexus.core.errors import (
    EngineError,
    InsufficientFunds,
    PolicyViolation,
    SizingFailed,
    UnknownSymbol,
    UnknownWallet,
)
from nexus.market.price_feed import SimulatedPriceFeed
from nexus.oracle.gemini import GeminiOracle
from nexus.persistence.audit import Audit
from nexus.persistence.db import DB
from nexus.reporting.summary import summarize
from nexus.runner.engine import PositionEngine
from nexus.runner.models import AccountTier, Direction, RiskConfig, RiskTier, Sensitivity
from nexus.runner.service import EngineService
from nexus.wallet.ledger import WalletLedger

log = logging.getLogger("nexus.api")

app = FastAPI(title="Nexus Position Risk Engine")
service_instance: Optional[EngineService] = None

SENSITIVE_KEYS = {"GEMINI_API_KEY"}

_SIDES = {"BUY": Direction.LONG, "LONG": Direction.LONG, "SELL": Direction.SHORT, "SHORT": Direction.SHORT}


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    try:
        warnings = settings.validate_runtime()
    except ValueError as e:
        # crash the service rather than running with a bad config
        log.error("%s", e)
        raise
    for w in warnings:
        log.warning("[CONFIG WARNING] %s", w)


@app.on_event("shutdown")
async def _shutdown_runner():
    if service_instance is not None and service_instance.state.running:
        await service_instance.stop()


def build_service(cfg: Settings = settings) -> EngineService:
    feed = SimulatedPriceFeed(history_length=cfg.HISTORY_LENGTH)
    feed.seed_history(cfg.INITIAL_HISTORY_POINTS)
    if cfg.LIVE_PRICE_SYNC:
        feed.sync_live_prices(cfg.FOREX_RATES_URL, cfg.CRYPTO_PRICES_URL)

    ledger = WalletLedger({"DEMO": cfg.DEMO_BALANCE, "LIVE": cfg.LIVE_BALANCE})
    audit = Audit(DB(cfg.DB_PATH), cfg.AUDIT_JSONL_PATH)
    engine = PositionEngine(feed, ledger, audit=audit, cfg=cfg)
    oracle = GeminiOracle(
        api_key=cfg.GEMINI_API_KEY,
        model=cfg.GEMINI_MODEL,
        base_url=cfg.GEMINI_BASE_URL,
        timeout=cfg.ORACLE_TIMEOUT_SECONDS,
        max_retries=cfg.ORACLE_MAX_RETRIES,
    )
    return EngineService(engine, oracle=oracle, audit=audit, cfg=cfg)


def get_service() -> EngineService:
    global service_instance
    if service_instance is None:
        service_instance = build_service()
    return service_instance


def _http_error(e: EngineError) -> HTTPException:
    if isinstance(e, (InsufficientFunds, SizingFailed)):
        status = 409
    elif isinstance(e, (UnknownSymbol, UnknownWallet)):
        status = 404
    elif isinstance(e, PolicyViolation):
        status = 400
    else:
        status = 503
    return HTTPException(
        status_code=status,
        detail={"error": e.reason, "message": str(e), "details": e.details},
    )


def _parse_enum(enum_cls, value: Optional[str], field: str):
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {field}: {value!r}")


# ---------------- INFO ----------------


@app.get("/health")
async def health():
    svc = get_service()
    risk = svc.engine.risk
    return {
        "status": "ok",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "active_wallet": svc.engine.active_wallet,
        "runner_running": svc.state.running,
        "symbols": svc.symbols[:20],
        "risk": {
            "risk_tier": risk.risk_tier.value,
            "account_tier": risk.account_tier.value,
            "sensitivity": risk.sensitivity.value,
            "auto_trade": risk.auto_trade,
        },
        "oracle_key_loaded": bool(settings.GEMINI_API_KEY),
    }


@app.get("/debug/config")
def debug_config():
    data = settings.model_dump()
    for k in list(data.keys()):
        if k in SENSITIVE_KEYS:
            data[k] = "***"
    return {"config": data}


@app.get("/wallets")
def wallets():
    svc = get_service()
    balances = svc.engine.ledger.snapshot()
    return {
        "active_wallet": svc.engine.active_wallet,
        "wallets": [
            {
                "wallet_id": wid,
                "balance": bal,
                "locked_margin": svc.engine.locked_margin(wid),
            }
            for wid, bal in balances.items()
        ],
    }


@app.get("/prices")
def prices(symbol: Optional[str] = None, history: int = 0):
    feed = get_service().feed
    if symbol:
        try:
            out: Dict[str, Any] = {"symbol": symbol.upper(), "price": feed.get_price(symbol)}
            if history > 0:
                out["history"] = feed.history(symbol, limit=history)
        except UnknownSymbol as e:
            raise _http_error(e)
        return out

    snap = feed.snapshot()
    return {"seq": snap.seq, "taken_at": snap.taken_at.isoformat(), "prices": dict(snap.prices)}


# ---------------- POSITIONS ----------------


@app.get("/positions")
def positions(status: Optional[str] = None, symbol: Optional[str] = None):
    engine = get_service().engine
    status = (status or "").upper()
    if status == "OPEN":
        rows = engine.open_positions(symbol)
    elif status == "CLOSED":
        rows = engine.closed_positions()
    elif status == "":
        rows = engine.all_positions()
    else:
        raise HTTPException(status_code=400, detail="status must be OPEN or CLOSED")

    if symbol:
        rows = [p for p in rows if p.symbol == symbol.upper()]
    return {"count": len(rows), "positions": [p.as_dict() for p in rows]}


@app.get("/positions/{position_id}")
def position_detail(position_id: str):
    pos = get_service().engine.get(position_id)
    if pos is None:
        raise HTTPException(status_code=404, detail=f"unknown position {position_id}")
    return pos.as_dict()


@app.post("/trade/open")
def trade_open(
    symbol: str,
    side: str = "BUY",
    stop_loss: Optional[float] = None,
    take_profit: Optional[float] = None,
    wallet: Optional[str] = None,
):
    """
    Manual open at the current simulated price.
    Sized from the wallet balance and the current risk tier.
    """
    direction = _SIDES.get(side.upper())
    if direction is None:
        raise HTTPException(status_code=400, detail="side must be BUY or SELL")

    engine = get_service().engine
    try:
        pos = engine.open_position(
            symbol,
            direction,
            stop_loss=stop_loss,
            take_profit=take_profit,
            wallet_id=wallet,
        )
    except EngineError as e:
        raise _http_error(e)

    return {
        "status": "opened",
        "position": pos.as_dict(),
        "wallet_balance": engine.ledger.balance(pos.wallet_id),
    }


# ---------------- RISK CONFIG ----------------


@app.get("/config/risk")
def get_risk_config():
    risk = get_service().engine.risk
    return {
        "risk_tier": risk.risk_tier.value,
        "account_tier": risk.account_tier.value,
        "sensitivity": risk.sensitivity.value,
        "auto_trade": risk.auto_trade,
    }


@app.post("/config/risk")
def set_risk_config(
    risk_tier: Optional[str] = None,
    account_tier: Optional[str] = None,
    sensitivity: Optional[str] = None,
    auto_trade: Optional[bool] = None,
):
    engine = get_service().engine
    current = engine.risk
    new = RiskConfig(
        risk_tier=_parse_enum(RiskTier, risk_tier, "risk_tier") or current.risk_tier,
        account_tier=_parse_enum(AccountTier, account_tier, "account_tier") or current.account_tier,
        sensitivity=_parse_enum(Sensitivity, sensitivity, "sensitivity") or current.sensitivity,
        auto_trade=current.auto_trade if auto_trade is None else auto_trade,
    )
    try:
        engine.update_risk_config(new)
    except PolicyViolation as e:
        raise _http_error(e)
    return get_risk_config()


# ---------------- RUNNER ----------------


@app.post("/runner/start")
async def runner_start():
    return await get_service().start()


@app.post("/runner/stop")
async def runner_stop():
    return await get_service().stop()


@app.get("/runner/status")
def runner_status():
    return get_service().status()


# ---------------- ANALYSIS ----------------


@app.post("/analysis/once")
async def analysis_once(symbol: Optional[str] = None):
    svc = get_service()
    if symbol and symbol.upper() not in svc.feed.symbols:
        raise HTTPException(status_code=404, detail=f"unknown symbol {symbol!r}")
    signals = await svc.analyze_once(symbol)
    return {"count": len(signals), "signals": signals, "gate_state": svc.engine.gate.state.value}


@app.get("/analysis/latest")
def analysis_latest(symbol: Optional[str] = None):
    engine = get_service().engine
    if symbol:
        sig = engine.latest_signal.get(symbol.upper())
        if sig is None:
            raise HTTPException(status_code=404, detail=f"no signal for {symbol!r}")
        return sig.as_dict()
    return {sym: sig.as_dict() for sym, sig in engine.latest_signal.items()}


# ---------------- STATS / LOGS ----------------


@app.get("/stats")
def stats():
    svc = get_service()
    return {
        **summarize(svc.engine.all_positions()),
        "wallets": svc.engine.ledger.snapshot(),
    }


@app.get("/logs/events/tail")
def logs_events_tail(limit: int = 50):
    svc = get_service()
    if svc.audit is None:
        return {"count": 0, "events": []}
    data = svc.audit.tail(limit)
    return {"count": len(data), "events": data}
