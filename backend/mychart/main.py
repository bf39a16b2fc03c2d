import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .config import DEFAULT_COUNT, DEFAULT_TIMEFRAME, MAX_COUNT, TIMEFRAMES, Settings, load_settings
from .data_provider import MarketDataProvider
from .drawing_controller import DrawingController, PointerEvent
from .drawing_store import DrawingStore
from .events_bus import EventsBus
from .exceptions import ChartError
from .indicator_store import FAMILIES, IndicatorConfigStore
from .indicators import compute_enabled
from .kv_storage import KeyValueStore, open_storage
from .models import Drawing, drawing_from_dict, new_drawing_id, now_millis
from .schemas import (
    INDICATOR_PATCHES,
    Candle,
    CandleResponse,
    ClickPayload,
    IndicatorResponse,
    InstrumentResponse,
    InteractionState,
    KeyPayload,
    QuoteResponse,
    ToolPayload,
)
from .session import ChartSession

logger = logging.getLogger("mychart.api")

router = APIRouter()


def get_provider(request: Request) -> MarketDataProvider:
    return request.app.state.provider


def get_drawing_store(request: Request) -> DrawingStore:
    return request.app.state.drawing_store


def get_indicator_store(request: Request) -> IndicatorConfigStore:
    return request.app.state.indicator_store


def get_controller(request: Request) -> DrawingController:
    return request.app.state.controller


def _drawings_payload(symbol: str, drawings) -> Dict[str, Any]:
    return {"type": "drawings", "symbol": symbol, "drawings": [d.to_dict() for d in drawings]}


def _normalize_timeframe(timeframe: Optional[str]) -> str:
    value = timeframe or DEFAULT_TIMEFRAME
    if value not in TIMEFRAMES:
        raise HTTPException(status_code=400, detail=f"Unsupported timeframe: {value}")
    return value


async def _load_bars(provider: MarketDataProvider, symbol: str, timeframe: str, count: int):
    try:
        return await provider.fetch_candles(symbol, timeframe, count)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ChartError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc


@router.get("/health")
def health() -> dict:
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@router.get("/api/search", response_model=List[InstrumentResponse])
def search_instruments(
    q: str = Query("", description="Code or name fragment"),
    limit: int = Query(20, ge=1, le=100),
    provider: MarketDataProvider = Depends(get_provider),
) -> List[InstrumentResponse]:
    return [InstrumentResponse(code=i.code, name=i.name, market=i.market) for i in provider.search(q, limit)]


@router.get("/api/candles", response_model=CandleResponse)
async def get_candles(
    symbol: str = Query(..., min_length=1, description="Instrument code"),
    timeframe: Optional[str] = Query(None, description="Candle timeframe e.g. 1D"),
    count: int = Query(DEFAULT_COUNT, ge=1, le=MAX_COUNT),
    provider: MarketDataProvider = Depends(get_provider),
) -> CandleResponse:
    timeframe = _normalize_timeframe(timeframe)
    bars = await _load_bars(provider, symbol, timeframe, count)
    return CandleResponse(
        symbol=symbol,
        timeframe=timeframe,
        candles=[Candle(**bar.to_dict()) for bar in bars],
    )


@router.get("/api/quote", response_model=QuoteResponse)
async def get_quote(
    symbol: str = Query(..., min_length=1),
    provider: MarketDataProvider = Depends(get_provider),
) -> QuoteResponse:
    quote = await provider.fetch_quote(symbol)
    return QuoteResponse(
        code=quote.code,
        price=quote.price,
        change=quote.change,
        change_rate=quote.change_rate,
        name=quote.name,
    )


@router.get("/api/indicators", response_model=IndicatorResponse)
async def get_indicators(
    symbol: str = Query(..., min_length=1),
    timeframe: Optional[str] = Query(None),
    count: int = Query(DEFAULT_COUNT, ge=1, le=MAX_COUNT),
    provider: MarketDataProvider = Depends(get_provider),
    indicator_store: IndicatorConfigStore = Depends(get_indicator_store),
) -> IndicatorResponse:
    timeframe = _normalize_timeframe(timeframe)
    bars = await _load_bars(provider, symbol, timeframe, count)
    indicators = compute_enabled(bars, indicator_store.snapshot())
    return IndicatorResponse(symbol=symbol, timeframe=timeframe, indicators=indicators)


@router.get("/api/indicators/config")
def get_indicator_config(indicator_store: IndicatorConfigStore = Depends(get_indicator_store)) -> dict:
    return indicator_store.snapshot()


@router.patch("/api/indicators/config/{family}")
async def update_indicator_config(
    family: str,
    payload: Dict[str, Any] = Body(...),
    indicator_store: IndicatorConfigStore = Depends(get_indicator_store),
) -> dict:
    patch_model = INDICATOR_PATCHES.get(family)
    if patch_model is None:
        raise HTTPException(status_code=404, detail=f"Unknown indicator family: {family}")
    try:
        changes = patch_model.model_validate(payload).model_dump(by_alias=True, exclude_none=True)
        return indicator_store.set(family, changes)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/api/indicators/config/{family}/toggle")
async def toggle_indicator(
    family: str,
    indicator_store: IndicatorConfigStore = Depends(get_indicator_store),
) -> dict:
    if family not in FAMILIES:
        raise HTTPException(status_code=404, detail=f"Unknown indicator family: {family}")
    return {"family": family, "enabled": indicator_store.toggle(family)}


@router.get("/api/drawing-style")
def get_default_style(drawing_store: DrawingStore = Depends(get_drawing_store)) -> dict:
    return drawing_store.default_style.to_dict()


@router.patch("/api/drawing-style")
async def update_default_style(
    payload: Dict[str, Any] = Body(...),
    drawing_store: DrawingStore = Depends(get_drawing_store),
) -> dict:
    try:
        return drawing_store.set_default_style(payload).to_dict()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/api/drawings/{symbol}")
def list_drawings(symbol: str, drawing_store: DrawingStore = Depends(get_drawing_store)) -> List[dict]:
    """Get all drawings for a symbol."""
    return [d.to_dict() for d in drawing_store.get_drawings(symbol)]


@router.post("/api/drawings/{symbol}")
async def create_drawing(
    symbol: str,
    payload: Dict[str, Any] = Body(...),
    drawing_store: DrawingStore = Depends(get_drawing_store),
) -> dict:
    """Save a new drawing."""
    now = now_millis()
    data = {
        "id": new_drawing_id(),
        "style": drawing_store.default_style.to_dict(),
        "visible": True,
        "locked": False,
        "createdAt": now,
        "updatedAt": now,
    }
    data.update({key: value for key, value in payload.items() if value is not None})
    try:
        drawing = drawing_from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if drawing_store.find(symbol, drawing.id) is not None:
        raise HTTPException(status_code=409, detail=f"Drawing already exists: {drawing.id}")
    return drawing_store.add(symbol, drawing).to_dict()


@router.patch("/api/drawings/{symbol}/{drawing_id}")
async def update_drawing(
    symbol: str,
    drawing_id: str,
    payload: Dict[str, Any] = Body(...),
    drawing_store: DrawingStore = Depends(get_drawing_store),
) -> dict:
    try:
        updated = drawing_store.update(symbol, drawing_id, payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if updated is None:
        raise HTTPException(status_code=404, detail="Drawing not found")
    return updated.to_dict()


@router.delete("/api/drawings/{symbol}/{drawing_id}")
async def remove_drawing(
    symbol: str,
    drawing_id: str,
    drawing_store: DrawingStore = Depends(get_drawing_store),
    controller: DrawingController = Depends(get_controller),
) -> dict:
    """Delete a drawing by ID."""
    if not drawing_store.delete(symbol, drawing_id):
        raise HTTPException(status_code=404, detail="Drawing not found")
    controller.interaction.forget([drawing_id])
    return {"success": True, "id": drawing_id}


@router.delete("/api/drawings/{symbol}")
async def clear_drawings(
    symbol: str,
    drawing_store: DrawingStore = Depends(get_drawing_store),
    controller: DrawingController = Depends(get_controller),
) -> dict:
    """Delete all drawings for a symbol."""
    deleted = drawing_store.clear(symbol)
    controller.interaction.clear_selection()
    return {"success": True, "deleted": deleted}


@router.get("/api/interaction", response_model=InteractionState)
def get_interaction(controller: DrawingController = Depends(get_controller)) -> InteractionState:
    return InteractionState(**controller.interaction.to_dict())


@router.post("/api/interaction/tool", response_model=InteractionState)
async def set_tool(
    payload: ToolPayload,
    controller: DrawingController = Depends(get_controller),
) -> InteractionState:
    try:
        if payload.toggle and payload.tool is not None:
            controller.toggle_tool(payload.tool)
        else:
            controller.select_tool(payload.tool)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unsupported tool: {payload.tool}") from exc
    return InteractionState(**controller.interaction.to_dict())


@router.post("/api/interaction/click", response_model=InteractionState)
async def click(
    payload: ClickPayload,
    controller: DrawingController = Depends(get_controller),
) -> InteractionState:
    controller.set_symbol(payload.symbol)
    if payload.timeframe is not None:
        try:
            controller.set_timeframe(payload.timeframe)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    drawing: Optional[Drawing] = controller.handle_click(
        PointerEvent(time=payload.time, price=payload.price),
        prompt=lambda _: payload.text,
    )
    state = controller.interaction.to_dict()
    state["drawing"] = drawing.to_dict() if drawing else None
    return InteractionState(**state)


@router.post("/api/interaction/key", response_model=InteractionState)
async def press_key(
    payload: KeyPayload,
    controller: DrawingController = Depends(get_controller),
) -> InteractionState:
    controller.set_symbol(payload.symbol)
    controller.handle_key(payload.key, in_text_input=payload.in_text_input)
    return InteractionState(**controller.interaction.to_dict())


@router.websocket("/ws/drawings")
async def drawing_events(websocket: WebSocket, symbol: str) -> None:
    app = websocket.app
    events: EventsBus = app.state.events
    drawing_store: DrawingStore = app.state.drawing_store

    if not symbol.strip():
        await websocket.close(code=4400, reason="symbol is required")
        return

    await websocket.accept()
    queue = await events.subscribe(symbol)
    try:
        await websocket.send_json(_drawings_payload(symbol, drawing_store.get_drawings(symbol)))
        while True:
            payload = await queue.get()
            await websocket.send_json(payload)
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Drawing stream for %s failed", symbol)
        await websocket.close(code=1011, reason="Internal server error")
    finally:
        await events.unsubscribe(symbol, queue)


@router.websocket("/ws/chart")
async def chart_socket(websocket: WebSocket) -> None:
    app = websocket.app
    session = ChartSession(app.state.provider, app.state.drawing_store, app.state.indicator_store)
    await websocket.accept()

    async def pump() -> None:
        while True:
            await websocket.send_json(await session.next_message())

    sender = asyncio.create_task(pump(), name="chart-socket-sender")
    try:
        while True:
            message = await websocket.receive_json()
            try:
                await session.handle_message(message)
            except (KeyError, ValueError) as exc:
                await websocket.send_json({"type": "error", "message": str(exc)})
    except WebSocketDisconnect:
        logger.info("Chart socket closed for %s", session.symbol or "-")
    except Exception:
        logger.exception("Chart socket for %s failed", session.symbol or "-")
        await websocket.close(code=1011, reason="Internal server error")
    finally:
        sender.cancel()
        await session.close()


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStore] = None,
    provider: Optional[MarketDataProvider] = None,
) -> FastAPI:
    """Build the API. Run with ``uvicorn mychart.main:create_app --factory``."""
    settings = settings or load_settings()
    if storage is None:
        storage = open_storage(settings)

    app = FastAPI(title="MyChart API", version="0.1.0")
    app.state.provider = provider or MarketDataProvider.from_settings(settings)
    app.state.drawing_store = DrawingStore(storage)
    app.state.indicator_store = IndicatorConfigStore(storage)
    app.state.controller = DrawingController(app.state.drawing_store)
    app.state.events = EventsBus()

    events: EventsBus = app.state.events
    app.state.drawing_store.subscribe(
        lambda symbol, drawings: events.dispatch(symbol, _drawings_payload(symbol, drawings))
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _register_events_loop() -> None:
        events.set_event_loop(asyncio.get_running_loop())

    app.include_router(router)
    return app
