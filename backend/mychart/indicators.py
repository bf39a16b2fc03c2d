"""Technical indicator computation.

Every function is pure: it reads a time-ordered sequence of bars and
returns new line series. Invalid parameters or too-short input yield empty
series instead of raising, so callers can skip drawing absent data.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .models import Bar, LinePoint

UP_VOLUME_COLOR = "rgba(0, 200, 83, 0.6)"
DOWN_VOLUME_COLOR = "rgba(255, 23, 68, 0.6)"


@dataclass
class BollingerBands:
    upper: List[LinePoint] = field(default_factory=list)
    middle: List[LinePoint] = field(default_factory=list)
    lower: List[LinePoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upper": [p.to_dict() for p in self.upper],
            "middle": [p.to_dict() for p in self.middle],
            "lower": [p.to_dict() for p in self.lower],
        }


@dataclass
class IchimokuCloud:
    tenkan_sen: List[LinePoint] = field(default_factory=list)
    kijun_sen: List[LinePoint] = field(default_factory=list)
    senkou_span_a: List[LinePoint] = field(default_factory=list)
    senkou_span_b: List[LinePoint] = field(default_factory=list)
    chikou_span: List[LinePoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenkanSen": [p.to_dict() for p in self.tenkan_sen],
            "kijunSen": [p.to_dict() for p in self.kijun_sen],
            "senkouSpanA": [p.to_dict() for p in self.senkou_span_a],
            "senkouSpanB": [p.to_dict() for p in self.senkou_span_b],
            "chikouSpan": [p.to_dict() for p in self.chikou_span],
        }


@dataclass(frozen=True)
class VolumeBar:
    time: int
    value: float
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "value": self.value, "color": self.color}


def _period(value: Any) -> Optional[int]:
    """Coerce a window length to a positive int, or ``None`` if unusable."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    period = int(math.floor(number))
    return period if period > 0 else None


def sma(bars: Sequence[Bar], period: Any) -> List[LinePoint]:
    """Simple moving average of close, from the first full window on."""
    p = _period(period)
    if p is None or not bars:
        return []

    out: List[LinePoint] = []
    total = 0.0
    for i, bar in enumerate(bars):
        total += bar.close
        if i >= p:
            total -= bars[i - p].close
        if i >= p - 1:
            out.append(LinePoint(time=bar.time, value=total / p))
    return out


def rsi(bars: Sequence[Bar], period: Any = 14) -> List[LinePoint]:
    """Relative Strength Index with Wilder smoothing.

    The first value sits on bar ``period``. A zero average loss gives 100.
    """
    p = _period(period)
    if p is None or len(bars) < p + 1:
        return []

    gains: List[float] = []
    losses: List[float] = []
    for prev, cur in zip(bars, bars[1:]):
        change = cur.close - prev.close
        gains.append(change if change > 0 else 0.0)
        losses.append(-change if change < 0 else 0.0)

    avg_gain = sum(gains[:p]) / p
    avg_loss = sum(losses[:p]) / p

    out: List[LinePoint] = []
    for i in range(p, len(bars)):
        if i > p:
            avg_gain = (avg_gain * (p - 1) + gains[i - 1]) / p
            avg_loss = (avg_loss * (p - 1) + losses[i - 1]) / p

        if avg_loss == 0:
            value = 100.0
        else:
            rs = avg_gain / avg_loss
            value = 100.0 - 100.0 / (1.0 + rs)
        out.append(LinePoint(time=bars[i].time, value=value))
    return out


def bollinger_bands(bars: Sequence[Bar], period: Any = 20, std_dev: Any = 2.0) -> BollingerBands:
    """Bollinger Bands using the population standard deviation of close."""
    p = _period(period)
    try:
        k = float(std_dev)
    except (TypeError, ValueError):
        return BollingerBands()
    if p is None or not math.isfinite(k) or k <= 0 or len(bars) < p:
        return BollingerBands()

    closes = [bar.close for bar in bars]
    bands = BollingerBands()
    for i in range(p - 1, len(bars)):
        window = closes[i - p + 1 : i + 1]
        mean = sum(window) / p
        variance = sum((c - mean) ** 2 for c in window) / p
        deviation = math.sqrt(variance)
        time = bars[i].time
        bands.upper.append(LinePoint(time, mean + k * deviation))
        bands.middle.append(LinePoint(time, mean))
        bands.lower.append(LinePoint(time, mean - k * deviation))
    return bands


def _high_low_avg(bars: Sequence[Bar], start: int, end: int) -> float:
    high = -math.inf
    low = math.inf
    for bar in bars[start : end + 1]:
        if bar.high > high:
            high = bar.high
        if bar.low < low:
            low = bar.low
    return (high + low) / 2


def ichimoku(
    bars: Sequence[Bar],
    tenkan_period: Any = 9,
    kijun_period: Any = 26,
    senkou_b_period: Any = 52,
    displacement: Any = 26,
) -> IchimokuCloud:
    """Ichimoku Cloud.

    Senkou spans are computed at bar ``i`` but stamped with the time of bar
    ``i + displacement``; the Chikou span takes bar ``i``'s close and stamps
    it with bar ``i - displacement``. No timestamps past the last bar are
    invented, so the leading spans stop ``displacement`` bars early.
    """
    tenkan = _period(tenkan_period)
    kijun = _period(kijun_period)
    senkou_b = _period(senkou_b_period)
    shift = _period(displacement)
    if None in (tenkan, kijun, senkou_b, shift) or len(bars) < senkou_b:
        return IchimokuCloud()

    cloud = IchimokuCloud()
    n = len(bars)
    # Span A needs both the tenkan and the kijun value at the same bar.
    span_a_start = max(tenkan, kijun) - 1
    for i in range(n):
        time = bars[i].time
        tenkan_value = _high_low_avg(bars, i - tenkan + 1, i) if i >= tenkan - 1 else None
        kijun_value = _high_low_avg(bars, i - kijun + 1, i) if i >= kijun - 1 else None

        if tenkan_value is not None:
            cloud.tenkan_sen.append(LinePoint(time, tenkan_value))
        if kijun_value is not None:
            cloud.kijun_sen.append(LinePoint(time, kijun_value))

        if i + shift < n:
            ahead = bars[i + shift].time
            if i >= span_a_start:
                cloud.senkou_span_a.append(LinePoint(ahead, (tenkan_value + kijun_value) / 2))
            if i >= senkou_b - 1:
                cloud.senkou_span_b.append(LinePoint(ahead, _high_low_avg(bars, i - senkou_b + 1, i)))

        if i >= shift:
            cloud.chikou_span.append(LinePoint(bars[i - shift].time, bars[i].close))
    return cloud


def volume_histogram(bars: Sequence[Bar]) -> List[VolumeBar]:
    """Per-bar volume colored by candle direction; missing volume counts as 0."""
    return [
        VolumeBar(
            time=bar.time,
            value=bar.volume if bar.volume is not None else 0.0,
            color=UP_VOLUME_COLOR if bar.close >= bar.open else DOWN_VOLUME_COLOR,
        )
        for bar in bars
    ]


def compute_enabled(bars: Sequence[Bar], config: Dict[str, Any]) -> Dict[str, Any]:
    """Compute every enabled indicator family from an indicator config snapshot."""
    result: Dict[str, Any] = {}
    ma = config["ma"]
    if ma["enabled"]:
        result["ma"] = {str(p): [pt.to_dict() for pt in sma(bars, p)] for p in ma["periods"]}
    rsi_cfg = config["rsi"]
    if rsi_cfg["enabled"]:
        result["rsi"] = {
            "values": [pt.to_dict() for pt in rsi(bars, rsi_cfg["period"])],
            "overbought": rsi_cfg["overbought"],
            "oversold": rsi_cfg["oversold"],
        }
    bb = config["bollinger"]
    if bb["enabled"]:
        result["bollinger"] = bollinger_bands(bars, bb["period"], bb["stdDev"]).to_dict()
    ich = config["ichimoku"]
    if ich["enabled"]:
        result["ichimoku"] = ichimoku(
            bars,
            ich["tenkanPeriod"],
            ich["kijunPeriod"],
            ich["senkouBPeriod"],
            ich["displacement"],
        ).to_dict()
    if config["volume"]["enabled"]:
        result["volume"] = [v.to_dict() for v in volume_histogram(bars)]
    return result
