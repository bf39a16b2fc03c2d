import copy
import math
import statistics

import pytest

from conftest import make_bars
from mychart.indicator_store import DEFAULT_INDICATORS
from mychart.models import Bar
from mychart.indicators import (
    DOWN_VOLUME_COLOR,
    UP_VOLUME_COLOR,
    bollinger_bands,
    compute_enabled,
    ichimoku,
    rsi,
    sma,
    volume_histogram,
)


def test_sma_starts_at_first_full_window():
    bars = make_bars([1, 2, 3, 4, 5])
    out = sma(bars, 3)
    assert [p.time for p in out] == [bars[2].time, bars[3].time, bars[4].time]
    assert [p.value for p in out] == pytest.approx([2.0, 3.0, 4.0])


def test_sma_fractional_period_is_floored():
    bars = make_bars([2, 4, 6])
    assert [p.value for p in sma(bars, 2.7)] == pytest.approx([3.0, 5.0])


@pytest.mark.parametrize("period", [0, -3, None, float("nan"), float("inf"), "x", True])
def test_sma_invalid_period_gives_empty_series(period):
    assert sma(make_bars([1, 2, 3]), period) == []


def test_sma_short_input():
    assert sma(make_bars([1, 2]), 3) == []
    assert sma([], 3) == []


def test_rsi_wilder_smoothing():
    bars = make_bars([10, 11, 10, 11])
    out = rsi(bars, 2)
    assert [p.time for p in out] == [bars[2].time, bars[3].time]
    assert out[0].value == pytest.approx(50.0)
    assert out[1].value == pytest.approx(75.0)


def test_rsi_without_losses_is_100():
    out = rsi(make_bars([1, 2, 3, 4, 5, 6]), 3)
    assert len(out) == 3
    assert all(p.value == 100.0 for p in out)


def test_rsi_falling_series_is_0():
    out = rsi(make_bars(range(100, 0, -1)), 14)
    assert len(out) == 99 - 13
    assert all(p.value == 0.0 for p in out)


def test_rsi_converges_to_0_once_prices_keep_falling():
    closes = [100 + i for i in range(15)] + [114 - i for i in range(1, 200)]
    values = [p.value for p in rsi(make_bars(closes), 14)]
    assert all(math.isfinite(v) for v in values)
    falling = values[1:]
    assert all(later < earlier for earlier, later in zip(falling, falling[1:]))
    assert values[-1] < 0.01


def test_rsi_stays_in_range():
    closes = [100 + math.sin(i / 3) * 5 + (i % 7) for i in range(80)]
    out = rsi(make_bars(closes), 14)
    assert len(out) == 80 - 14
    assert all(0.0 <= p.value <= 100.0 for p in out)


def test_rsi_needs_period_plus_one_bars():
    assert rsi(make_bars([1, 2, 3]), 3) == []


def test_bollinger_population_deviation():
    bands = bollinger_bands(make_bars([1, 2, 3]), 3, 1)
    deviation = math.sqrt(2 / 3)
    assert bands.middle[0].value == pytest.approx(2.0)
    assert bands.upper[0].value == pytest.approx(2.0 + deviation)
    assert bands.lower[0].value == pytest.approx(2.0 - deviation)


def test_bollinger_width_is_twice_k_sigma():
    closes = [1, 3, 2, 8, 5, 13, 4, 9]
    bands = bollinger_bands(make_bars(closes), 4, 2.5)
    assert len(bands.upper) == 5
    for i, (upper, lower) in enumerate(zip(bands.upper, bands.lower)):
        window = closes[i : i + 4]
        assert upper.value - lower.value == pytest.approx(2 * 2.5 * statistics.pstdev(window))
        assert upper.value - lower.value > 0


def test_bollinger_flat_series_collapses():
    bands = bollinger_bands(make_bars([5] * 25), 20, 2)
    assert len(bands.middle) == 6
    for upper, middle, lower in zip(bands.upper, bands.middle, bands.lower):
        assert upper.value == middle.value == lower.value == 5


@pytest.mark.parametrize("std_dev", [0, -1, "abc", float("nan")])
def test_bollinger_rejects_non_positive_multiplier(std_dev):
    assert bollinger_bands(make_bars(range(30)), 20, std_dev).middle == []


def test_ichimoku_displacement_alignment():
    closes = list(range(10, 20))
    bars = make_bars(closes)
    cloud = ichimoku(bars, 2, 3, 4, 2)

    assert len(cloud.tenkan_sen) == 9
    assert len(cloud.kijun_sen) == 8
    assert len(cloud.senkou_span_a) == 6
    assert len(cloud.senkou_span_b) == 5
    assert len(cloud.chikou_span) == 8

    # Tenkan over two bars: highest high (c_i + 1) and lowest low (c_{i-1} - 1).
    assert cloud.tenkan_sen[0].value == pytest.approx((closes[1] + closes[0]) / 2)
    assert cloud.senkou_span_a[0].time == bars[4].time
    assert cloud.senkou_span_b[0].time == bars[5].time
    assert cloud.chikou_span[0].time == bars[0].time
    assert cloud.chikou_span[0].value == closes[2]
    assert cloud.senkou_span_a[-1].time == bars[-1].time


def test_ichimoku_exactly_senkou_b_bars():
    cloud = ichimoku(make_bars(range(52)), 9, 26, 52, 26)
    assert cloud.senkou_span_b == []
    assert len(cloud.tenkan_sen) == 44
    assert len(cloud.kijun_sen) == 27
    assert len(cloud.senkou_span_a) == 1
    assert len(cloud.chikou_span) == 26

    small = ichimoku(make_bars(range(4)), 2, 3, 4, 1)
    assert small.senkou_span_b == []
    assert [len(small.tenkan_sen), len(small.kijun_sen), len(small.senkou_span_a), len(small.chikou_span)] == [3, 2, 1, 3]


def test_ichimoku_too_few_bars():
    cloud = ichimoku(make_bars(range(10)), 9, 26, 52, 26)
    assert cloud.to_dict() == {
        "tenkanSen": [],
        "kijunSen": [],
        "senkouSpanA": [],
        "senkouSpanB": [],
        "chikouSpan": [],
    }


def test_volume_histogram_colors_and_missing_volume():
    bars = [Bar(time=1, open=1, high=2, low=0, close=2, volume=10.0), Bar(time=2, open=3, high=4, low=1, close=2)]
    out = volume_histogram(bars)
    assert out[0].value == 10.0 and out[0].color == UP_VOLUME_COLOR
    assert out[1].value == 0.0 and out[1].color == DOWN_VOLUME_COLOR


def test_compute_enabled_default_families():
    config = copy.deepcopy(DEFAULT_INDICATORS)
    result = compute_enabled(make_bars(range(1, 200)), config)
    assert set(result) == {"ma", "rsi", "bollinger", "volume"}
    assert set(result["ma"]) == {"5", "20", "60", "120"}
    assert result["rsi"]["overbought"] == 70.0
    assert len(result["ma"]["5"]) == 199 - 4


def test_compute_enabled_respects_toggles():
    config = copy.deepcopy(DEFAULT_INDICATORS)
    config["ma"]["enabled"] = False
    config["ichimoku"]["enabled"] = True
    result = compute_enabled(make_bars(range(1, 100)), config)
    assert "ma" not in result
    assert set(result["ichimoku"]) == {"tenkanSen", "kijunSen", "senkouSpanA", "senkouSpanB", "chikouSpan"}
