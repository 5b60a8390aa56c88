import pytest

from nexus.oracle import indicators


def test_sma_uses_trailing_window():
    assert indicators.sma([1.0, 2.0, 3.0, 4.0], 2) == 3.5


def test_ema_of_constant_series_is_constant():
    assert indicators.ema([5.0] * 30, 12) == pytest.approx(5.0)


def test_rsi_extremes():
    rising = [float(i) for i in range(20)]
    assert indicators.rsi(rising, 14) == 100.0

    falling = list(reversed(rising))
    assert indicators.rsi(falling, 14) == pytest.approx(0.0)


def test_rsi_balanced_moves_is_fifty():
    closes = [100.0, 101.0] * 8
    assert indicators.rsi(closes, 14) == pytest.approx(50.0)


def test_atr_is_mean_absolute_move():
    closes = [10.0, 11.0, 9.0, 10.0]
    assert indicators.atr(closes, 3) == pytest.approx((1 + 2 + 1) / 3)


def test_bollinger_bands_are_symmetric():
    closes = [1.0, 2.0, 3.0, 4.0, 5.0]
    lower, mid, upper = indicators.bollinger(closes, period=5, mult=2.0)
    assert mid == 3.0
    assert mid - lower == pytest.approx(upper - mid)
    assert upper - mid == pytest.approx(2.0 * (2.0 ** 0.5))


@pytest.mark.parametrize("fn,args", [
    (indicators.sma, ([1.0, 2.0], 3)),
    (indicators.ema, ([1.0], 2)),
    (indicators.rsi, ([1.0] * 14, 14)),
    (indicators.atr, ([1.0] * 5, 5)),
    (indicators.bollinger, ([1.0] * 3, 20)),
])
def test_short_series_raise(fn, args):
    with pytest.raises(ValueError, match="not_enough_data"):
        fn(*args)
