import pytest

from conftest import base_fields
from mychart.data_provider import MarketDataProvider
from mychart.drawing_store import DrawingStore
from mychart.indicator_store import IndicatorConfigStore
from mychart.models import HorizontalLine, Point
from mychart.session import ChartSession

SYMBOL = "005930"


async def drain(session):
    messages = []
    while not session._outbox.empty():
        messages.append(await session.next_message())
    return messages


@pytest.fixture
def stores():
    return DrawingStore(), IndicatorConfigStore()


@pytest.mark.asyncio
async def test_open_publishes_candles_then_indicator_render(stores):
    drawing_store, indicator_store = stores
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)

    await session.open(SYMBOL, "1D", 80)
    messages = await drain(session)

    kinds = [m["type"] for m in messages]
    assert kinds == ["candles", "render"]
    assert messages[0]["symbol"] == SYMBOL
    assert len(messages[0]["bars"]) == 80
    series = {c["id"] for c in messages[1]["commands"] if c["op"] == "setSeries"}
    assert {"ma:5", "rsi", "volume", "ichimoku:tenkan"} <= series
    await session.close()


@pytest.mark.asyncio
async def test_drawing_clicks_render_for_current_symbol_only(stores):
    drawing_store, indicator_store = stores
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)
    await session.open(SYMBOL, "1D", 10)
    await drain(session)

    await session.handle_message({"type": "tool", "tool": "horizontal-line"})
    await session.handle_message({"type": "click", "time": 1, "price": 50.0})
    messages = await drain(session)

    render = next(m for m in messages if m["type"] == "render")
    assert [c["op"] for c in render["commands"]] == ["createPriceLine"]
    assert messages[-1] == {"type": "state", "activeTool": None, "selectedId": None, "tempPoints": []}

    # Another chart's drawings do not reach this session.
    other = drawing_store.get_drawings(SYMBOL)[0]
    drawing_store.add("000660", other)
    assert await drain(session) == []
    await session.close()


@pytest.mark.asyncio
async def test_indicator_toggle_updates_visibility(stores):
    drawing_store, indicator_store = stores
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)
    await session.open(SYMBOL, "1D", 80)
    await drain(session)

    indicator_store.toggle("ichimoku")
    (render,) = await drain(session)
    visible = {c["id"]: c["visible"] for c in render["commands"] if c["op"] == "setVisible"}
    assert visible["ichimoku:kijun"] is True
    await session.close()


@pytest.mark.asyncio
async def test_text_click_and_escape(stores):
    drawing_store, indicator_store = stores
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)
    await session.open(SYMBOL, "1D", 10)

    await session.handle_message({"type": "tool", "tool": "text"})
    await session.handle_message({"type": "click", "time": 5, "price": 1.0, "text": "note"})
    assert drawing_store.get_drawings(SYMBOL)[0].text == "note"

    await session.handle_message({"type": "tool", "tool": "trend-line", "toggle": True})
    await session.handle_message({"type": "click", "time": 5, "price": 1.0})
    await session.handle_message({"type": "key", "key": "Escape"})
    assert session.controller.interaction.temp_points == ()
    assert session.controller.interaction.active_tool is None
    await session.close()


@pytest.mark.asyncio
async def test_unknown_message_and_close(stores):
    drawing_store, indicator_store = stores
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)
    with pytest.raises(ValueError):
        await session.handle_message({"type": "zoom"})
    with pytest.raises(ValueError):
        session.open(SYMBOL, "3D")

    await session.close()
    drawing_store.add(SYMBOL, HorizontalLine(price=1.0, **base_fields("h")))
    assert await drain(session) == []


@pytest.mark.asyncio
async def test_sessions_do_not_share_in_progress_drawings(stores):
    drawing_store, indicator_store = stores
    provider = MarketDataProvider("mock")
    first = ChartSession(provider, drawing_store, indicator_store)
    second = ChartSession(provider, drawing_store, indicator_store)
    await first.open(SYMBOL, "1D", 10)
    await second.open("AAPL", "1D", 10)

    await first.handle_message({"type": "tool", "tool": "trend-line"})
    await first.handle_message({"type": "click", "time": 10, "price": 1.0})
    await second.handle_message({"type": "click", "time": 20, "price": 500.0})
    await second.open("000660", "1D", 10)

    assert drawing_store.get_drawings("AAPL") == ()
    assert first.controller.interaction.temp_points == (Point(10, 1.0),)
    assert second.controller.interaction.active_tool is None

    await first.handle_message({"type": "click", "time": 20, "price": 2.0})
    (line,) = drawing_store.get_drawings(SYMBOL)
    assert line.end_point == Point(20, 2.0)
    await first.close()
    await second.close()


@pytest.mark.asyncio
async def test_selection_dropped_when_drawing_removed_elsewhere(stores):
    drawing_store, indicator_store = stores
    drawing_store.add(SYMBOL, HorizontalLine(price=100.0, **base_fields("h")))
    session = ChartSession(MarketDataProvider("mock"), drawing_store, indicator_store)
    await session.open(SYMBOL, "1D", 10)

    await session.handle_message({"type": "click", "time": 5, "price": 100.0})
    assert session.controller.interaction.selected_id == "h"

    drawing_store.delete(SYMBOL, "h")
    assert session.controller.interaction.selected_id is None
    await session.close()
