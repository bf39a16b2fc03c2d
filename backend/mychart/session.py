"""One live chart connection: candle query, drawing input and render sync."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Tuple

from .candle_query import CandleQuery, QueryState
from .config import DEFAULT_COUNT, DEFAULT_TIMEFRAME, validate_timeframe
from .data_provider import MarketDataProvider
from .drawing_controller import DrawingController, PointerEvent
from .drawing_store import DrawingStore
from .indicator_store import IndicatorConfigStore
from .indicators import compute_enabled
from .models import Bar, Drawing
from .render import CommandSurface, DrawingRenderer, IndicatorRenderer

logger = logging.getLogger(__name__)


class ChartSession:
    """Queues outgoing messages; the socket handler drains them with ``next_message``."""

    def __init__(
        self,
        provider: MarketDataProvider,
        drawing_store: DrawingStore,
        indicator_store: IndicatorConfigStore,
    ) -> None:
        self.drawing_store = drawing_store
        self.indicator_store = indicator_store
        self.controller = DrawingController(drawing_store)
        self.surface = CommandSurface()
        self.drawing_renderer = DrawingRenderer(self.surface)
        self.indicator_renderer = IndicatorRenderer(self.surface)
        self.query = CandleQuery(provider.fetch_candles)
        self._outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._unsubscribers = [
            self.query.subscribe(self._on_query),
            drawing_store.subscribe(self._on_drawings),
            indicator_store.subscribe(self._on_indicators),
        ]

    @property
    def symbol(self) -> str:
        return self.controller.symbol

    async def next_message(self) -> Dict[str, Any]:
        return await self._outbox.get()

    def open(self, symbol: str, timeframe: str = DEFAULT_TIMEFRAME, count: int = DEFAULT_COUNT) -> "asyncio.Task[None]":
        validate_timeframe(timeframe)
        self.controller.set_symbol(symbol)
        self.controller.set_timeframe(timeframe)
        self.drawing_renderer.sync(self.drawing_store.get_drawings(symbol))
        self._flush()
        return self.query.set_params(symbol, timeframe, count)

    async def handle_message(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "open":
            self.open(
                message["symbol"],
                message.get("timeframe", DEFAULT_TIMEFRAME),
                int(message.get("count", DEFAULT_COUNT)),
            )
        elif kind == "tool":
            if message.get("toggle"):
                self.controller.toggle_tool(message["tool"])
            else:
                self.controller.select_tool(message.get("tool"))
        elif kind == "click":
            text = message.get("text")
            event = PointerEvent(time=message.get("time"), price=message.get("price"))
            self.controller.handle_click(event, prompt=lambda _: text)
        elif kind == "key":
            self.controller.handle_key(message["key"], in_text_input=bool(message.get("inTextInput")))
        else:
            raise ValueError(f"Unknown message type: {kind}")
        self._emit({"type": "state", **self.controller.interaction.to_dict()})

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.query.close()
        self.drawing_renderer.teardown()
        self.indicator_renderer.teardown()
        self.surface.drain()

    def _on_query(self, state: QueryState[Tuple[Bar, ...]]) -> None:
        if state.loading:
            return
        if state.error is not None:
            self._emit({"type": "error", "message": state.error})
            return
        if state.data is None or state.params is None:
            return
        symbol, timeframe, _ = state.params
        bars = state.data
        config = self.indicator_store.snapshot()
        self._emit(
            {
                "type": "candles",
                "symbol": symbol,
                "timeframe": timeframe,
                "bars": [bar.to_dict() for bar in bars],
                "indicators": compute_enabled(bars, config),
            }
        )
        self.indicator_renderer.sync(bars, config)
        self._flush()

    def _on_drawings(self, symbol: str, drawings: Tuple[Drawing, ...]) -> None:
        if symbol != self.symbol:
            return
        self.controller.interaction.forget(self.drawing_renderer.rendered_ids - {d.id for d in drawings})
        self.drawing_renderer.sync(drawings)
        self._flush()

    def _on_indicators(self, config: Dict[str, Dict[str, Any]]) -> None:
        self.indicator_renderer.sync(self.query.bars, config)
        self._flush()

    def _flush(self) -> None:
        commands = self.surface.drain()
        if commands:
            self._emit({"type": "render", "commands": commands})

    def _emit(self, message: Dict[str, Any]) -> None:
        self._outbox.put_nowait(message)
