"""Projection of drawings and indicators onto a chart rendering surface.

The surface owns the real chart. ``DrawingRenderer`` keeps one entry per
drawing id with the primitives it last created and, on every sync, diffs
that map against the current drawing list: new ids are created, changed
ones are rebuilt and vanished or hidden ones are removed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence, Set, Tuple, Union

from .config import EXTENSION_HORIZON, FIB_LEVEL_COLORS
from .geometry import channel_offset, extend_point, fib_level_prices
from .indicators import bollinger_bands, ichimoku, rsi, sma, volume_histogram
from .models import (
    Bar,
    Drawing,
    FibRetracement,
    HorizontalLine,
    LinePoint,
    LineStyle,
    ParallelChannel,
    Point,
    Ray,
    Rectangle,
    TextNote,
    TrendLine,
    Triangle,
    VerticalLine,
)

logger = logging.getLogger(__name__)


class RenderSurface(Protocol):
    def set_series(self, line_id: str, points: Sequence[LinePoint], options: Dict[str, Any]) -> None:
        ...

    def remove_series(self, line_id: str) -> None:
        ...

    def set_visible(self, line_id: str, visible: bool) -> None:
        ...

    def set_markers(self, markers: Sequence["Marker"]) -> None:
        ...

    def create_price_line(self, line: "PriceLine") -> Any:
        ...

    def remove_price_line(self, handle: Any) -> None:
        ...


@dataclass(frozen=True)
class PriceLine:
    price: float
    color: str
    line_width: int
    line_style: LineStyle
    title: str = ""


@dataclass(frozen=True)
class Segment:
    points: Tuple[LinePoint, ...]
    color: str
    line_width: int
    line_style: LineStyle


@dataclass(frozen=True)
class Marker:
    time: int
    color: str
    text: str
    owner: str  # drawing id
    position: str = "aboveBar"
    shape: str = "arrowDown"


Primitive = Union[PriceLine, Segment, Marker]


class CommandSurface:
    """A surface that queues JSON-ready commands for a remote chart.

    The browser applies the commands to its own chart and sends clicks back
    already converted to time and price.
    """

    def __init__(self) -> None:
        self._commands: List[Dict[str, Any]] = []
        self._next_handle = 0

    def set_series(self, line_id: str, points: Sequence[LinePoint], options: Dict[str, Any]) -> None:
        self._commands.append(
            {"op": "setSeries", "id": line_id, "points": [p.to_dict() for p in points], "options": options}
        )

    def remove_series(self, line_id: str) -> None:
        self._commands.append({"op": "removeSeries", "id": line_id})

    def set_visible(self, line_id: str, visible: bool) -> None:
        self._commands.append({"op": "setVisible", "id": line_id, "visible": visible})

    def set_markers(self, markers: Sequence[Marker]) -> None:
        self._commands.append(
            {
                "op": "setMarkers",
                "markers": [
                    {
                        "id": m.owner,
                        "time": m.time,
                        "color": m.color,
                        "text": m.text,
                        "position": m.position,
                        "shape": m.shape,
                    }
                    for m in markers
                ],
            }
        )

    def create_price_line(self, line: PriceLine) -> int:
        self._next_handle += 1
        self._commands.append(
            {
                "op": "createPriceLine",
                "handle": self._next_handle,
                "price": line.price,
                "color": line.color,
                "lineWidth": line.line_width,
                "lineStyle": line.line_style.value,
                "title": line.title,
            }
        )
        return self._next_handle

    def remove_price_line(self, handle: int) -> None:
        self._commands.append({"op": "removePriceLine", "handle": handle})

    def drain(self) -> List[Dict[str, Any]]:
        commands, self._commands = self._commands, []
        return commands


def _segment(drawing: Drawing, start: Point, end: Point) -> Segment:
    pts = sorted((LinePoint(start.time, start.price), LinePoint(end.time, end.price)), key=lambda p: p.time)
    return Segment(
        points=tuple(pts),
        color=drawing.style.color,
        line_width=drawing.style.line_width,
        line_style=drawing.style.line_style,
    )


def project(drawing: Drawing) -> List[Primitive]:
    """The surface primitives that draw ``drawing``."""
    style = drawing.style
    if isinstance(drawing, HorizontalLine):
        return [PriceLine(drawing.price, style.color, style.line_width, style.line_style)]
    if isinstance(drawing, VerticalLine):
        # No native vertical line; a marker at the bar stands in for it.
        return [Marker(time=drawing.time, color=style.color, text="│", owner=drawing.id)]
    if isinstance(drawing, TrendLine):
        start, end = drawing.start_point, drawing.end_point
        if drawing.extend_left:
            start = extend_point(drawing.start_point, drawing.end_point, EXTENSION_HORIZON, forward=False)
        if drawing.extend_right:
            end = extend_point(drawing.start_point, drawing.end_point, EXTENSION_HORIZON)
        return [_segment(drawing, start, end)]
    if isinstance(drawing, Ray):
        far = extend_point(drawing.start_point, drawing.end_point, EXTENSION_HORIZON)
        return [_segment(drawing, drawing.start_point, far)]
    if isinstance(drawing, FibRetracement):
        return [
            PriceLine(
                price=price,
                color=FIB_LEVEL_COLORS.get(level, style.color),
                line_width=1,
                line_style=LineStyle.DOTTED,
                title=f"{level * 100:.1f}%",
            )
            for level, price in fib_level_prices(drawing)
        ]
    if isinstance(drawing, ParallelChannel):
        other_start, other_end = channel_offset(drawing.line1_start, drawing.line1_end, drawing.channel_width)
        return [
            _segment(drawing, drawing.line1_start, drawing.line1_end),
            _segment(drawing, other_start, other_end),
        ]
    if isinstance(drawing, Rectangle):
        top_left, bottom_right = drawing.top_left, drawing.bottom_right
        return [
            _segment(drawing, top_left, Point(bottom_right.time, top_left.price)),
            _segment(drawing, Point(top_left.time, bottom_right.price), bottom_right),
        ]
    if isinstance(drawing, Triangle):
        a, b, c = drawing.point1, drawing.point2, drawing.point3
        return [_segment(drawing, a, b), _segment(drawing, b, c), _segment(drawing, c, a)]
    if isinstance(drawing, TextNote):
        return [
            Marker(
                time=drawing.position.time,
                color=style.color,
                text=drawing.text,
                owner=drawing.id,
                position="inBar",
                shape="square",
            )
        ]
    raise TypeError(f"Unhandled drawing type: {type(drawing).__name__}")


def _segment_options(segment: Segment) -> Dict[str, Any]:
    return {
        "color": segment.color,
        "lineWidth": segment.line_width,
        "lineStyle": segment.line_style.value,
        "priceLineVisible": False,
        "lastValueVisible": False,
    }


class DrawingRenderer:
    """Reconciles drawings against the render handles created for them."""

    def __init__(self, surface: RenderSurface) -> None:
        self.surface = surface
        # drawing id -> (primitives, handles); a handle is a series id or a price line.
        self._rendered: Dict[str, Tuple[List[Primitive], List[Any]]] = {}
        self._markers: Tuple[Marker, ...] = ()

    @property
    def rendered_ids(self) -> Set[str]:
        return set(self._rendered)

    def sync(self, drawings: Sequence[Drawing]) -> None:
        desired = {d.id: project(d) for d in drawings if d.visible}

        removed = [drawing_id for drawing_id in self._rendered if drawing_id not in desired]
        for drawing_id in removed:
            self._remove(drawing_id)
        if removed:
            logger.debug("Removed render handles for %s", removed)

        for drawing_id, primitives in desired.items():
            previous = self._rendered.get(drawing_id)
            if previous is not None and previous[0] == primitives:
                continue
            if previous is not None:
                self._remove(drawing_id)
            self._rendered[drawing_id] = (primitives, self._create(drawing_id, primitives))

        markers = tuple(
            p for primitives, _ in self._rendered.values() for p in primitives if isinstance(p, Marker)
        )
        if markers != self._markers:
            self.surface.set_markers(sorted(markers, key=lambda m: m.time))
            self._markers = markers

    def teardown(self) -> None:
        for drawing_id in list(self._rendered):
            self._remove(drawing_id)
        if self._markers:
            self.surface.set_markers([])
            self._markers = ()

    def _create(self, drawing_id: str, primitives: List[Primitive]) -> List[Any]:
        handles: List[Any] = []
        for index, primitive in enumerate(primitives):
            if isinstance(primitive, PriceLine):
                handles.append(self.surface.create_price_line(primitive))
            elif isinstance(primitive, Segment):
                line_id = f"{drawing_id}:{index}"
                self.surface.set_series(line_id, primitive.points, _segment_options(primitive))
                handles.append(line_id)
            else:
                # Markers are pushed as one list after the diff.
                handles.append(None)
        return handles

    def _remove(self, drawing_id: str) -> None:
        primitives, handles = self._rendered.pop(drawing_id)
        for primitive, handle in zip(primitives, handles):
            if isinstance(primitive, PriceLine):
                self.surface.remove_price_line(handle)
            elif isinstance(primitive, Segment):
                self.surface.remove_series(handle)


def indicator_lines(bars: Sequence[Bar], config: Dict[str, Dict[str, Any]]) -> Dict[str, List[LinePoint]]:
    """Every indicator line for ``config``, keyed by a stable line id."""
    lines: Dict[str, List[LinePoint]] = {}
    for period in config["ma"]["periods"]:
        lines[f"ma:{period}"] = sma(bars, period)
    lines["rsi"] = rsi(bars, config["rsi"]["period"])
    bb = bollinger_bands(bars, config["bollinger"]["period"], config["bollinger"]["stdDev"])
    lines["bollinger:upper"] = bb.upper
    lines["bollinger:middle"] = bb.middle
    lines["bollinger:lower"] = bb.lower
    ich_cfg = config["ichimoku"]
    cloud = ichimoku(
        bars,
        ich_cfg["tenkanPeriod"],
        ich_cfg["kijunPeriod"],
        ich_cfg["senkouBPeriod"],
        ich_cfg["displacement"],
    )
    lines["ichimoku:tenkan"] = cloud.tenkan_sen
    lines["ichimoku:kijun"] = cloud.kijun_sen
    lines["ichimoku:senkouA"] = cloud.senkou_span_a
    lines["ichimoku:senkouB"] = cloud.senkou_span_b
    lines["ichimoku:chikou"] = cloud.chikou_span
    lines["volume"] = [LinePoint(v.time, v.value) for v in volume_histogram(bars)]
    return lines


class IndicatorRenderer:
    """Pushes indicator lines to the surface and toggles their visibility."""

    def __init__(self, surface: RenderSurface) -> None:
        self.surface = surface
        self._line_ids: Set[str] = set()

    def sync(self, bars: Sequence[Bar], config: Dict[str, Dict[str, Any]]) -> None:
        lines = indicator_lines(bars, config)
        for stale in self._line_ids - set(lines):
            self.surface.remove_series(stale)
        for line_id, points in lines.items():
            family = line_id.split(":", 1)[0]
            self.surface.set_series(line_id, points, {"family": family})
            self.surface.set_visible(line_id, bool(config[family]["enabled"]))
        self._line_ids = set(lines)

    def teardown(self) -> None:
        for line_id in self._line_ids:
            self.surface.remove_series(line_id)
        self._line_ids = set()
