import math

import pytest

from nodeflow.indicators.technical import (
    IndicatorKind,
    atr,
    bollinger,
    calc_max_drawdown,
    compute_indicator,
    ema,
    rolling_high,
    rolling_low,
    rsi,
    sma,
)
from nodeflow.integrations.price_data import PriceBar


def test_sma_progressive_window():
    assert sma([1, 2, 3, 4, 5], 3) == [1, 1.5, 2, 3, 4]


def test_compute_indicator_accepts_price_bars():
    bars = [PriceBar(time=i, price=float(p)) for i, p in enumerate([1, 2, 3, 4, 5])]
    assert compute_indicator(bars, 'sma', 3) == [1, 1.5, 2, 3, 4]


def test_rolling_high_excludes_current_bar():
    series = rolling_high([10, 11, 12, 9, 13], 2)
    assert series == [None, None, 11, 12, 12]


def test_rolling_low_excludes_current_bar():
    series = rolling_low([10, 11, 12, 9, 13], 2)
    assert series == [None, None, 10, 11, 9]


def test_ema_seeded_with_sma():
    series = ema([1, 2, 3, 4, 5], 3)
    assert series[:2] == [None, None]
    assert series[2] == pytest.approx(2.0)
    # multiplier 0.5: 2 + (4 - 2) * 0.5 = 3, 3 + (5 - 3) * 0.5 = 4
    assert series[3] == pytest.approx(3.0)
    assert series[4] == pytest.approx(4.0)


def test_ema_short_series_is_all_none():
    assert ema([1, 2], 5) == [None, None]


def test_rsi_uptrend_is_100():
    series = rsi([float(v) for v in range(10, 30)], 14)
    assert series[13] is None
    assert series[14] == 100.0
    assert series[-1] == 100.0


def test_rsi_period_capped_by_window():
    series = rsi([10, 11, 10, 11, 10], 2)
    assert series[:2] == [None, None]
    # last two changes: +1, -1 -> equal gains and losses
    assert series[2] == pytest.approx(50.0)
    assert all(0 <= v <= 100 for v in series[2:])


def test_rsi_downtrend_is_0():
    series = rsi([20, 19, 18, 17], 3)
    assert series[3] == pytest.approx(0.0)


def test_bollinger_bands_surround_sma():
    values = [100, 101, 99, 102, 100, 103]
    upper = bollinger(values, 5, upper=True)
    lower = bollinger(values, 5, upper=False)
    mid = sma(values, 5)
    for u, m, lo in zip(upper, mid, lower):
        assert lo <= m <= u
        assert u - m == pytest.approx(m - lo)
    # a single bar has zero deviation
    assert upper[0] == lower[0] == 100


def test_atr_close_proxy():
    series = atr([10, 12, 11, 15], 2)
    assert series[0] is None
    assert series[1] == pytest.approx(2.0)
    assert series[2] == pytest.approx(1.5)
    assert series[3] == pytest.approx(2.5)


def test_atr_uses_high_low_when_present():
    bars = [
        PriceBar(time=1, price=10, high=11, low=9),
        PriceBar(time=2, price=12, high=13, low=10),
    ]
    series = compute_indicator(bars, IndicatorKind.ATR, 14)
    # max(13 - 10, |13 - 10|, |10 - 10|) = 3
    assert series == [None, pytest.approx(3.0)]


def test_every_indicator_has_input_length():
    values = [float(v) for v in [5, 7, 6, 8, 9, 7, 10, 12, 11]]
    for kind in IndicatorKind:
        series = compute_indicator(values, kind, 3)
        assert len(series) == len(values), kind
        assert all(v is None or math.isfinite(v) for v in series)


def test_indicator_aliases():
    assert IndicatorKind.parse('30d_high') == IndicatorKind.ROLLING_HIGH
    assert IndicatorKind.parse('BB-Lower') == IndicatorKind.BOLLINGER_LOWER
    assert IndicatorKind.parse('macd') is None


def test_compute_indicator_rejects_bad_input():
    with pytest.raises(ValueError):
        compute_indicator([1, 2, 3], 'macd', 3)
    with pytest.raises(ValueError):
        compute_indicator([1, 2, 3], 'sma', 0)
    with pytest.raises(ValueError):
        compute_indicator([1, 2, 3], 'sma', 'abc')


def test_indicators_are_prefix_stable():
    """Values at bar i only depend on bars <= i."""
    values = [float(v) for v in [3, 5, 4, 8, 6, 9, 7, 11, 10, 12]]
    for kind in IndicatorKind:
        full = compute_indicator(values, kind, 4)
        for n in range(1, len(values)):
            assert compute_indicator(values[:n], kind, 4) == full[:n], kind


def test_max_drawdown():
    assert calc_max_drawdown([1.0, 1.2, 0.9, 1.5, 1.2]) == pytest.approx(0.25)
    assert calc_max_drawdown([1.0, 1.1, 1.2]) == 0.0
    assert calc_max_drawdown([]) == 0.0
