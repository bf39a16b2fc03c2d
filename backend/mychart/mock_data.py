"""Deterministic stand-ins for the market data provider."""
from __future__ import annotations

import random
import time
import zlib
from dataclasses import dataclass
from typing import List, Optional

from .config import TIMEFRAME_SECONDS
from .models import Bar


@dataclass(frozen=True)
class Instrument:
    code: str
    name: str
    market: str


@dataclass(frozen=True)
class Quote:
    code: str
    price: float
    change: Optional[float] = None
    change_rate: Optional[float] = None
    name: Optional[str] = None


MOCK_INSTRUMENTS: List[Instrument] = [
    Instrument(code="005930", name="삼성전자", market="KOSPI"),
    Instrument(code="000660", name="SK하이닉스", market="KOSPI"),
    Instrument(code="035420", name="NAVER", market="KOSPI"),
    Instrument(code="035720", name="카카오", market="KOSPI"),
    Instrument(code="051910", name="LG화학", market="KOSPI"),
    Instrument(code="068270", name="셀트리온", market="KOSPI"),
    Instrument(code="005380", name="현대차", market="KOSPI"),
    Instrument(code="373220", name="LG에너지솔루션", market="KOSPI"),
    Instrument(code="207940", name="삼성바이오로직스", market="KOSPI"),
    Instrument(code="251270", name="넷마블", market="KOSPI"),
]


def _rng(seed: str) -> random.Random:
    return random.Random(zlib.crc32(seed.encode("utf-8")))


def mock_search(query: str, limit: int = 20) -> List[Instrument]:
    q = query.strip().lower()
    if not q:
        return []
    matches = [i for i in MOCK_INSTRUMENTS if q in i.code or q in i.name.lower()]
    return matches[:limit]


def mock_candles(
    symbol: str,
    timeframe: str,
    count: int = 240,
    seed_price: float = 100.0,
    now: Optional[int] = None,
) -> List[Bar]:
    """Random walk of ``count`` bars ending at ``now``, seeded by symbol and timeframe."""
    step = TIMEFRAME_SECONDS.get(timeframe, TIMEFRAME_SECONDS["1D"])
    now_ts = int(time.time()) if now is None else now
    start = (now_ts // step) * step - step * count
    volatility = {"1m": 0.8, "5m": 1.2, "15m": 1.6}.get(timeframe, 2.2)
    rng = _rng(f"{symbol}:{timeframe}")

    price = seed_price
    bars: List[Bar] = []
    for i in range(count):
        drift = (rng.random() - 0.5) * 0.2
        move = (rng.random() - 0.5) * volatility + drift
        open_ = price
        close = max(1.0, open_ + move)
        high = max(open_, close) + rng.random() * volatility * 0.6
        low = min(open_, close) - rng.random() * volatility * 0.6
        bars.append(
            Bar(
                time=start + step * i,
                open=round(open_, 2),
                high=round(high, 2),
                low=round(low, 2),
                close=round(close, 2),
                volume=float(rng.randint(1_000, 100_000)),
            )
        )
        price = close
    return bars


def mock_quote(symbol: str) -> Quote:
    rng = _rng(symbol)
    price = 70_000 + round((rng.random() - 0.5) * 800)
    change = round((rng.random() - 0.5) * 500)
    change_rate = round(change / (price - change) * 100, 2)
    return Quote(code=symbol, price=float(price), change=float(change), change_rate=change_rate)
