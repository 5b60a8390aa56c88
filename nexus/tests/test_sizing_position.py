import pytest

from nexus.core.errors import SizingFailed
from nexus.risk.sizing import size_position
from nexus.risk.tiers import risk_fraction_for
from nexus.runner.models import RiskTier


def test_size_ok_rounds_down_to_six_decimals():
    # 10000 * 5% = 500 budget at 153.4 => raw qty 3.2594524...
    res = size_position(balance=10000, risk_fraction=0.05, entry_price=153.4)
    assert res.reason == "ok"
    assert res.qty == pytest.approx(3.259452)
    # never reserve more than the budget
    assert res.margin <= 500.0
    assert res.margin == pytest.approx(3.259452 * 153.4)


def test_exact_division_keeps_qty():
    res = size_position(balance=4000, risk_fraction=0.05, entry_price=100)
    assert res.qty == 2.0
    assert res.margin == 200.0


def test_invalid_price_raises():
    with pytest.raises(SizingFailed) as ei:
        size_position(balance=1000, risk_fraction=0.05, entry_price=0)
    assert str(ei.value) == "invalid_price"


def test_zero_balance_raises():
    with pytest.raises(SizingFailed) as ei:
        size_position(balance=0, risk_fraction=0.05, entry_price=100)
    assert str(ei.value) == "balance_too_low"


def test_risk_fraction_out_of_range_raises():
    with pytest.raises(SizingFailed):
        size_position(balance=1000, risk_fraction=0, entry_price=100)
    with pytest.raises(SizingFailed):
        size_position(balance=1000, risk_fraction=1.5, entry_price=100)


def test_qty_that_rounds_to_zero_raises():
    # 1 * 1% at 72150 => 1.4e-7 units, below 6 decimals
    with pytest.raises(SizingFailed) as ei:
        size_position(balance=1, risk_fraction=0.01, entry_price=72150)
    assert str(ei.value) == "qty_rounds_to_zero"


def test_risk_tier_fractions(cfg):
    assert risk_fraction_for(RiskTier.LOW, cfg) == 0.01
    assert risk_fraction_for(RiskTier.MEDIUM, cfg) == 0.05
    assert risk_fraction_for(RiskTier.HIGH, cfg) == 0.10
