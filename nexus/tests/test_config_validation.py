import pytest

from nexus.core.config import Settings
from nexus.risk.tiers import confidence_threshold, max_positions_per_symbol, risk_config_from_settings
from nexus.runner.models import AccountTier, RiskTier, Sensitivity


def test_defaults_are_valid():
    s = Settings(GEMINI_API_KEY="x")
    assert s.validate_runtime() == []
    assert s.TRADE_SYMBOLS == ["TEST/USD"]


def test_high_risk_requires_pro():
    s = Settings(RISK_TIER="high", ACCOUNT_TIER="free")
    with pytest.raises(ValueError) as ei:
        s.validate_runtime()
    assert "RISK_TIER=HIGH" in str(ei.value)


def test_invalid_wallet_name():
    s = Settings(ACTIVE_WALLET="paper")
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_risk_fraction_bounds():
    s = Settings(RISK_FRACTION_MEDIUM=1.5)
    with pytest.raises(ValueError):
        s.validate_runtime()


def test_missing_api_key_is_a_warning():
    warnings = Settings(GEMINI_API_KEY="").validate_runtime()
    assert any("GEMINI_API_KEY" in w for w in warnings)


def test_zero_balance_is_a_warning():
    warnings = Settings(GEMINI_API_KEY="x", DEMO_BALANCE=0).validate_runtime()
    assert any("balance is 0" in w for w in warnings)


def test_symbols_parse_csv_and_json():
    assert Settings(TRADE_SYMBOLS="eur/usd, btc/usd").TRADE_SYMBOLS == ["EUR/USD", "BTC/USD"]
    assert Settings(TRADE_SYMBOLS='["xau/usd"]').TRADE_SYMBOLS == ["XAU/USD"]


def test_empty_symbols_default_to_chart_symbol(monkeypatch):
    monkeypatch.delenv("TRADE_SYMBOLS")
    s = Settings(DEFAULT_SYMBOL="gbp/jpy")
    assert s.TRADE_SYMBOLS == ["GBP/JPY"]


def test_analysis_interval_follows_tier():
    s = Settings()
    assert s.analysis_interval("FREE") == 20.0
    assert s.analysis_interval("pro") == 10.0


def test_tier_tables_from_settings():
    s = Settings(RISK_TIER="low", ACCOUNT_TIER="pro", SENSITIVITY="high", AUTO_TRADE=True)
    risk = risk_config_from_settings(s)
    assert risk.risk_tier == RiskTier.LOW
    assert risk.account_tier == AccountTier.PRO
    assert risk.auto_trade is True
    assert max_positions_per_symbol(AccountTier.PRO, s) == 10
    assert max_positions_per_symbol(AccountTier.FREE, s) == 3
    assert confidence_threshold(Sensitivity.HIGH, s) == 80.0
    assert confidence_threshold(Sensitivity.MEDIUM, s) == 85.0
