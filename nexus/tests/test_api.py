import pytest
from fastapi.testclient import TestClient

import nexus.main as main_mod
from nexus.runner.models import Recommendation


@pytest.fixture
def client(cfg, monkeypatch):
    cfg.TRADE_SYMBOLS = ["EUR/USD"]
    svc = main_mod.build_service(cfg)
    monkeypatch.setattr(main_mod, "service_instance", svc)
    return TestClient(main_mod.app)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["active_wallet"] == "DEMO"
    assert body["runner_running"] is False


def test_wallets(client):
    body = client.get("/wallets").json()
    balances = {w["wallet_id"]: w["balance"] for w in body["wallets"]}
    assert balances == {"DEMO": 10000.0, "LIVE": 500.0}


def test_prices(client):
    body = client.get("/prices").json()
    assert "EUR/USD" in body["prices"]

    one = client.get("/prices", params={"symbol": "eur/usd", "history": 5}).json()
    assert one["symbol"] == "EUR/USD"
    assert len(one["history"]) == 5

    assert client.get("/prices", params={"symbol": "NOPE/USD"}).status_code == 404


def test_open_and_list_positions(client):
    r = client.post("/trade/open", params={"symbol": "EUR/USD", "side": "BUY"})
    assert r.status_code == 200
    pos = r.json()["position"]
    assert pos["direction"] == "LONG"
    assert pos["status"] == "OPEN"
    assert r.json()["wallet_balance"] == pytest.approx(10000.0 - pos["margin"])

    listing = client.get("/positions", params={"status": "open"}).json()
    assert listing["count"] == 1

    detail = client.get(f"/positions/{pos['id']}")
    assert detail.status_code == 200
    assert detail.json()["id"] == pos["id"]

    assert client.get("/positions/does-not-exist").status_code == 404
    assert client.get("/positions", params={"status": "weird"}).status_code == 400


def test_open_errors_map_to_http_codes(client):
    assert client.post("/trade/open", params={"symbol": "NOPE/USD"}).status_code == 404
    assert client.post("/trade/open", params={"symbol": "EUR/USD", "side": "UP"}).status_code == 400
    assert client.post("/trade/open", params={"symbol": "EUR/USD", "wallet": "PAPER"}).status_code == 404

    # stop above entry on a long
    r = client.post("/trade/open", params={"symbol": "EUR/USD", "side": "BUY", "stop_loss": 5.0})
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "policy_violation"


def test_open_with_empty_wallet_is_conflict(client):
    main_mod.get_service().engine.ledger.reserve_margin("LIVE", 500.0)
    r = client.post("/trade/open", params={"symbol": "EUR/USD", "wallet": "LIVE"})
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "sizing_failed"


def test_risk_config_update(client):
    r = client.post("/config/risk", params={"risk_tier": "HIGH"})
    assert r.status_code == 400

    r = client.post("/config/risk", params={"risk_tier": "HIGH", "account_tier": "PRO", "auto_trade": True})
    assert r.status_code == 200
    assert r.json() == {
        "risk_tier": "HIGH",
        "account_tier": "PRO",
        "sensitivity": "MEDIUM",
        "auto_trade": True,
    }

    assert client.post("/config/risk", params={"sensitivity": "EXTREME"}).status_code == 400


def test_analysis_once_and_latest(client, make_oracle):
    svc = main_mod.get_service()
    svc.oracle = make_oracle(recommendation=Recommendation.HOLD, confidence=40.0)
    # the fake oracle stamps signals with the engine's clock
    svc.oracle.clock = svc.engine.clock

    r = client.post("/analysis/once")
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["signals"][0]["recommendation"] == "HOLD"
    assert body["gate_state"] == "IDLE"

    latest = client.get("/analysis/latest", params={"symbol": "EUR/USD"}).json()
    assert latest["confidence"] == 40.0
    assert client.get("/analysis/latest", params={"symbol": "GBP/USD"}).status_code == 404
    assert client.post("/analysis/once", params={"symbol": "NOPE/USD"}).status_code == 404


def test_stats_and_event_tail(client):
    client.post("/trade/open", params={"symbol": "EUR/USD", "side": "SELL"})

    stats = client.get("/stats").json()
    assert stats["total"] == 1
    assert stats["open"] == 1
    assert stats["open_margin"] > 0

    events = client.get("/logs/events/tail", params={"limit": 10}).json()
    assert any(e["event_type"] == "POSITION_OPENED" for e in events["events"])


def test_runner_status_when_idle(client):
    body = client.get("/runner/status").json()
    assert body["running"] is False
    assert body["cycle_count"] == 0
    assert client.post("/runner/stop").json()["status"] == "not_running"
