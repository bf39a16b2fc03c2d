"""Turns chart clicks and key presses into drawings.

With a drawing tool active, each click adds a point; once the tool has all
the points it needs, the drawing is built, added to the store and the tool
is released. With no tool (or the select tool) a click selects the nearest
drawing instead.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

from .config import DEFAULT_FIB_LEVELS, DEFAULT_FONT_SIZE, DEFAULT_TIMEFRAME, HIT_THRESHOLD, timeframe_seconds
from .drawing_store import DrawingStore
from .geometry import channel_width, nearest_drawing, normalize_rectangle
from .models import (
    TOOL_POINTS,
    Drawing,
    DrawingTool,
    FibRetracement,
    HorizontalLine,
    ParallelChannel,
    Point,
    Ray,
    Rectangle,
    TextNote,
    TrendLine,
    Triangle,
    VerticalLine,
    new_drawing_id,
    now_millis,
)

logger = logging.getLogger(__name__)

Prompt = Callable[[str], Optional[str]]

SHORTCUTS: Dict[str, DrawingTool] = {
    "V": DrawingTool.SELECT,
    "H": DrawingTool.HORIZONTAL_LINE,
    "T": DrawingTool.TREND_LINE,
    "F": DrawingTool.FIB_RETRACEMENT,
    "R": DrawingTool.RECTANGLE,
}
DELETE_KEYS = {"Delete", "Backspace"}
ESCAPE_KEY = "Escape"

IDLE = "idle"
AWAITING_POINT = "awaiting-point"


@dataclass(frozen=True)
class PointerEvent:
    """A click already converted to chart coordinates; either may be off-chart."""
    time: Optional[int]
    price: Optional[float]


class Interaction:
    """Tool, selection and in-progress points of one chart connection.

    Never persisted. Picking a tool drops the selection and any pending
    points; selecting a drawing switches to the select tool.
    """

    def __init__(self) -> None:
        self.active_tool: Optional[DrawingTool] = None
        self.selected_id: Optional[str] = None
        self.temp_points: Tuple[Point, ...] = ()

    def set_active_tool(self, tool: Optional[DrawingTool]) -> None:
        self.active_tool = tool
        self.selected_id = None
        self.temp_points = ()

    def select(self, drawing_id: Optional[str]) -> None:
        self.selected_id = drawing_id
        self.active_tool = DrawingTool.SELECT if drawing_id else None

    def add_temp_point(self, point: Point) -> Tuple[Point, ...]:
        self.temp_points = self.temp_points + (point,)
        return self.temp_points

    def clear_temp_points(self) -> None:
        self.temp_points = ()

    def clear_selection(self) -> None:
        self.selected_id = None

    def forget(self, drawing_ids: Iterable[str]) -> None:
        """Drop the selection if it points at one of the removed drawings."""
        if self.selected_id is not None and self.selected_id in set(drawing_ids):
            self.selected_id = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeTool": self.active_tool.value if self.active_tool else None,
            "selectedId": self.selected_id,
            "tempPoints": [p.to_dict() for p in self.temp_points],
        }


class DrawingController:
    def __init__(
        self,
        store: DrawingStore,
        symbol: str = "",
        prompt: Optional[Prompt] = None,
        clock: Callable[[], int] = now_millis,
        id_factory: Callable[[], str] = new_drawing_id,
        threshold: float = HIT_THRESHOLD,
        timeframe: str = DEFAULT_TIMEFRAME,
        interaction: Optional[Interaction] = None,
    ) -> None:
        self.store = store
        self.interaction = interaction if interaction is not None else Interaction()
        self._symbol = symbol
        self._prompt = prompt
        self._clock = clock
        self._id_factory = id_factory
        self.threshold = threshold
        self.time_tolerance = timeframe_seconds(timeframe)

    @property
    def symbol(self) -> str:
        return self._symbol

    def set_symbol(self, symbol: str) -> None:
        """Switch charts. In-progress points are dropped; the selection is kept."""
        if symbol != self._symbol:
            self._symbol = symbol
            self.interaction.clear_temp_points()

    def set_timeframe(self, timeframe: str) -> None:
        """Hit-testing forgives clicks up to one bar outside a drawing's span."""
        self.time_tolerance = timeframe_seconds(timeframe)

    @property
    def state(self) -> str:
        tool = self.interaction.active_tool
        if tool is None or tool is DrawingTool.SELECT:
            return IDLE
        return AWAITING_POINT

    def select_tool(self, tool: Union[DrawingTool, str, None]) -> None:
        self.interaction.set_active_tool(DrawingTool(tool) if tool is not None else None)

    def toggle_tool(self, tool: Union[DrawingTool, str]) -> None:
        """Toolbar behavior: picking the active tool again releases it."""
        tool = DrawingTool(tool)
        self.select_tool(None if self.interaction.active_tool is tool else tool)

    def cancel(self) -> None:
        self.interaction.set_active_tool(None)

    # ----------------------------------------------------------------- clicks

    def handle_click(self, event: PointerEvent, prompt: Optional[Prompt] = None) -> Optional[Drawing]:
        """Feed one click; returns the drawing if this click completed one."""
        tool = self.interaction.active_tool
        if tool is None or tool is DrawingTool.SELECT:
            self._select_at(event)
            return None

        point = self._point_for(tool, event)
        if point is None:
            logger.debug("Ignoring off-chart click for %s", tool.value)
            return None

        points = self.interaction.add_temp_point(point)
        if len(points) < TOOL_POINTS[tool]:
            return None

        drawing = self._build(tool, points, prompt or self._prompt)
        self.interaction.set_active_tool(None)
        if drawing is None:
            logger.info("Abandoned %s placement", tool.value)
            return None
        return self.store.add(self._symbol, drawing)

    def hit_test(self, event: PointerEvent) -> Optional[Drawing]:
        if event.time is None or event.price is None:
            return None
        click = Point(time=event.time, price=event.price)
        return nearest_drawing(self.store.get_drawings(self._symbol), click, self.threshold, self.time_tolerance)

    def _select_at(self, event: PointerEvent) -> None:
        hit = self.hit_test(event)
        self.interaction.select(hit.id if hit else None)

    @staticmethod
    def _point_for(tool: DrawingTool, event: PointerEvent) -> Optional[Point]:
        if event.price is None and tool is not DrawingTool.VERTICAL_LINE:
            return None
        if event.time is None and tool is not DrawingTool.HORIZONTAL_LINE:
            return None
        return Point(time=event.time or 0, price=event.price or 0.0)

    def _build(self, tool: DrawingTool, points: Sequence[Point], prompt: Optional[Prompt]) -> Optional[Drawing]:
        now = self._clock()
        base = dict(
            id=self._id_factory(),
            style=self.store.default_style,
            visible=True,
            locked=False,
            created_at=now,
            updated_at=now,
        )

        if tool is DrawingTool.HORIZONTAL_LINE:
            return HorizontalLine(price=points[0].price, **base)
        if tool is DrawingTool.VERTICAL_LINE:
            return VerticalLine(time=points[0].time, **base)
        if tool is DrawingTool.TREND_LINE:
            return TrendLine(start_point=points[0], end_point=points[1], **base)
        if tool is DrawingTool.RAY:
            return Ray(start_point=points[0], end_point=points[1], **base)
        if tool is DrawingTool.FIB_RETRACEMENT:
            return FibRetracement(
                start_point=points[0], end_point=points[1], levels=DEFAULT_FIB_LEVELS, **base
            )
        if tool is DrawingTool.RECTANGLE:
            top_left, bottom_right = normalize_rectangle(points[0], points[1])
            return Rectangle(top_left=top_left, bottom_right=bottom_right, **base)
        if tool is DrawingTool.TRIANGLE:
            return Triangle(point1=points[0], point2=points[1], point3=points[2], **base)
        if tool is DrawingTool.PARALLEL_CHANNEL:
            return ParallelChannel(
                line1_start=points[0],
                line1_end=points[1],
                channel_width=channel_width(points[0], points[1], points[2]),
                **base,
            )
        if tool is DrawingTool.TEXT:
            text = prompt("Text") if prompt is not None else None
            if not text or not text.strip():
                return None
            return TextNote(position=points[0], text=text, font_size=DEFAULT_FONT_SIZE, **base)
        raise ValueError(f"Tool does not create drawings: {tool.value}")

    # ------------------------------------------------------------------- keys

    def handle_key(self, key: str, in_text_input: bool = False) -> bool:
        """Apply a global shortcut; returns whether the key was consumed."""
        if in_text_input:
            return False
        if key in DELETE_KEYS:
            selected = self.interaction.selected_id
            if selected is None or not self.store.delete(self._symbol, selected):
                return False
            self.interaction.forget([selected])
            return True
        if key == ESCAPE_KEY:
            self.cancel()
            return True
        if len(key) == 1 and key.upper() in SHORTCUTS:
            self.select_tool(SHORTCUTS[key.upper()])
            return True
        return False
