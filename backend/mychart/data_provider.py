"""Candle, quote and search capability consumed by the charting core."""
from __future__ import annotations

import logging
from typing import List, Optional

from . import yahoo_client
from .config import MAX_COUNT, Settings, validate_timeframe
from .exceptions import ChartError
from .mock_data import Instrument, Quote, mock_candles, mock_quote, mock_search
from .models import Bar

logger = logging.getLogger(__name__)

class MarketDataProvider:
    """Routes requests to the upstream provider, or to mocks in mock mode."""

    def __init__(self, data_source: str = "yahoo", http_timeout: float = 10.0) -> None:
        self.data_source = data_source
        self.http_timeout = http_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketDataProvider":
        return cls(data_source=settings.data_source, http_timeout=settings.http_timeout)

    @property
    def is_mock(self) -> bool:
        return self.data_source == "mock"

    async def fetch_candles(self, symbol: str, timeframe: str, count: int) -> List[Bar]:
        """May return fewer than ``count`` bars; raises NetworkError/UpstreamError."""
        validate_timeframe(timeframe)
        if count < 1 or count > MAX_COUNT:
            raise ValueError(f"count must be between 1 and {MAX_COUNT}")
        if self.is_mock:
            return mock_candles(symbol, timeframe, count)
        return await yahoo_client.fetch_candles(symbol, timeframe, count, timeout=self.http_timeout)

    async def fetch_quote(self, symbol: str) -> Quote:
        if self.is_mock:
            return mock_quote(symbol)
        try:
            return await yahoo_client.fetch_quote(symbol, timeout=self.http_timeout)
        except ChartError as exc:
            logger.warning("Quote for %s unavailable: %s", symbol, exc.message)
            return Quote(code=symbol, price=0.0)

    def search(self, query: str, limit: Optional[int] = 20) -> List[Instrument]:
        # Master-file download is not wired up; the fixed domestic list serves every mode.
        return mock_search(query, limit or 20)
