from __future__ import annotations

import logging
import math
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from .config import MAX_LOOKBACK_DAYS, MIN_LOOKBACK_DAYS, UPSTREAM_INTERVALS, timeframe_seconds
from .exceptions import NetworkError, UpstreamError
from .mock_data import Quote
from .models import Bar

_CHART_API = "https://query1.finance.yahoo.com"
_DAY = 24 * 60 * 60
_DOMESTIC_CODE = re.compile(r"^\d{6}$")
_DOMESTIC_SYMBOL = re.compile(r"^\d{6}\.KS$", re.IGNORECASE)

logger = logging.getLogger(__name__)


def normalize_symbol(code: str) -> str:
    """Domestic six-digit codes map to ``.KS``; overseas tickers pass through."""
    trimmed = code.strip()
    if _DOMESTIC_CODE.match(trimmed):
        return f"{trimmed}.KS"
    if _DOMESTIC_SYMBOL.match(trimmed):
        return trimmed.upper()
    return trimmed


def lookback_window(timeframe: str, count: int, now_ts: int) -> int:
    """Start timestamp covering ~2x ``count`` bars within the provider's limits."""
    requested = max(1, math.ceil(count * timeframe_seconds(timeframe) * 2))
    lookback = max(requested, MIN_LOOKBACK_DAYS.get(timeframe, 0) * _DAY)
    period1 = now_ts - lookback
    max_days = MAX_LOOKBACK_DAYS.get(timeframe)
    if max_days is not None:
        period1 = max(period1, now_ts - max_days * _DAY)
    return period1


async def _request_chart(symbol: str, params: Dict[str, object], timeout: float) -> Dict[str, Any]:
    try:
        async with httpx.AsyncClient(base_url=_CHART_API, timeout=timeout) as client:
            response = await client.get(f"/v8/finance/chart/{symbol}", params=params)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as exc:
        raise UpstreamError(f"Chart request for {symbol} failed: HTTP {exc.response.status_code}") from exc
    except httpx.TransportError as exc:
        raise NetworkError(f"Chart request for {symbol} failed: {exc}") from exc
    except ValueError as exc:
        raise UpstreamError(f"Chart response for {symbol} is not JSON") from exc

    try:
        result = payload["chart"]["result"]
    except (KeyError, TypeError) as exc:
        raise UpstreamError(f"Unexpected chart payload for {symbol}") from exc
    if not result:
        error = (payload.get("chart") or {}).get("error") or {}
        raise UpstreamError(error.get("description") or f"No chart data for {symbol}")
    return result[0]


def _finite(value: Any) -> Optional[float]:
    if value is None:
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def parse_chart(result: Dict[str, Any]) -> List[Bar]:
    timestamps = result.get("timestamp") or []
    quotes = (result.get("indicators") or {}).get("quote") or []
    if not quotes or not timestamps:
        return []
    quote = quotes[0]

    def column(name: str) -> List[Any]:
        values = quote.get(name) or []
        return values + [None] * (len(timestamps) - len(values))

    bars: Dict[int, Bar] = {}
    for ts, o, h, l, c, v in zip(
        timestamps, column("open"), column("high"), column("low"), column("close"), column("volume")
    ):
        open_, high, low, close = _finite(o), _finite(h), _finite(l), _finite(c)
        if open_ is None or high is None or low is None or close is None:
            continue
        bars[int(ts)] = Bar(time=int(ts), open=open_, high=high, low=low, close=close, volume=_finite(v))
    return [bars[ts] for ts in sorted(bars)]


async def fetch_candles(symbol: str, timeframe: str, count: int, timeout: float = 10.0) -> List[Bar]:
    upstream_symbol = normalize_symbol(symbol)
    if not upstream_symbol:
        return []
    now_ts = int(time.time())
    params: Dict[str, object] = {
        "period1": lookback_window(timeframe, count, now_ts),
        "period2": now_ts,
        "interval": UPSTREAM_INTERVALS[timeframe],
        "includePrePost": "false",
    }
    result = await _request_chart(upstream_symbol, params, timeout)
    bars = parse_chart(result)
    logger.info("Fetched %d %s bars for %s", len(bars), timeframe, upstream_symbol)
    return bars[-count:]


async def fetch_quote(symbol: str, timeout: float = 10.0) -> Quote:
    upstream_symbol = normalize_symbol(symbol)
    result = await _request_chart(upstream_symbol, {"range": "1d", "interval": "1d"}, timeout)
    meta = result.get("meta") or {}
    price = _finite(meta.get("regularMarketPrice"))
    if price is None:
        raise UpstreamError(f"No market price for {upstream_symbol}")
    previous = _finite(meta.get("chartPreviousClose") or meta.get("previousClose"))
    change = price - previous if previous is not None else None
    change_rate = change / previous * 100 if change is not None and previous else None
    return Quote(
        code=symbol,
        price=price,
        change=change,
        change_rate=change_rate,
        name=meta.get("shortName") or meta.get("longName"),
    )
