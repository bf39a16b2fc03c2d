"""Data models for candles, indicator lines and chart drawings."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type


@dataclass(frozen=True)
class Bar:
    """One OHLCV candle. OHLC consistency is not validated."""
    time: int  # unix seconds
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }
        if self.volume is not None:
            data["volume"] = self.volume
        return data


@dataclass(frozen=True)
class LinePoint:
    """A single value of a derived line series."""
    time: int
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "value": self.value}


@dataclass(frozen=True)
class Point:
    """A click-anchored chart coordinate."""
    time: int
    price: float

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "price": self.price}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Point":
        return Point(time=int(data["time"]), price=float(data["price"]))


class LineStyle(str, Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"


class DrawingTool(str, Enum):
    SELECT = "select"
    HORIZONTAL_LINE = "horizontal-line"
    VERTICAL_LINE = "vertical-line"
    TREND_LINE = "trend-line"
    RAY = "ray"
    FIB_RETRACEMENT = "fib-retracement"
    PARALLEL_CHANNEL = "parallel-channel"
    RECTANGLE = "rectangle"
    TRIANGLE = "triangle"
    TEXT = "text"


# Number of clicks each tool needs before a drawing is committed.
TOOL_POINTS: Dict[DrawingTool, int] = {
    DrawingTool.HORIZONTAL_LINE: 1,
    DrawingTool.VERTICAL_LINE: 1,
    DrawingTool.TREND_LINE: 2,
    DrawingTool.RAY: 2,
    DrawingTool.FIB_RETRACEMENT: 2,
    DrawingTool.RECTANGLE: 2,
    DrawingTool.TRIANGLE: 3,
    DrawingTool.PARALLEL_CHANNEL: 3,
    DrawingTool.TEXT: 1,
}


@dataclass(frozen=True)
class DrawingStyle:
    color: str = "#2962FF"
    line_width: int = 2
    line_style: LineStyle = LineStyle.SOLID
    fill_color: Optional[str] = "#2962FF"
    fill_opacity: Optional[float] = 0.1

    def __post_init__(self) -> None:
        if self.line_width < 1:
            raise ValueError("lineWidth must be >= 1")
        if self.fill_opacity is not None and not 0.0 <= self.fill_opacity <= 1.0:
            raise ValueError("fillOpacity must be within [0, 1]")
        if not isinstance(self.line_style, LineStyle):
            object.__setattr__(self, "line_style", LineStyle(self.line_style))

    def merge(self, changes: Mapping[str, Any]) -> "DrawingStyle":
        """Return a copy with camelCase or snake_case ``changes`` applied."""
        names = {f.name for f in fields(self)}
        kwargs = {}
        for key, value in changes.items():
            name = _snake(key)
            if name not in names:
                raise ValueError(f"Unknown style field: {key}")
            kwargs[name] = value
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "color": self.color,
            "lineWidth": self.line_width,
            "lineStyle": self.line_style.value,
        }
        if self.fill_color is not None:
            data["fillColor"] = self.fill_color
        if self.fill_opacity is not None:
            data["fillOpacity"] = self.fill_opacity
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "DrawingStyle":
        return DrawingStyle(
            color=str(data["color"]),
            line_width=int(data["lineWidth"]),
            line_style=LineStyle(data["lineStyle"]),
            fill_color=data.get("fillColor"),
            fill_opacity=data.get("fillOpacity"),
        )


def _snake(name: str) -> str:
    return "".join("_" + ch.lower() if ch.isupper() else ch for ch in name)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def now_millis() -> int:
    return int(time.time() * 1000)


def new_drawing_id() -> str:
    return f"drawing-{now_millis()}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Drawing:
    """Base of every chart annotation. Concrete kinds subclass it."""
    id: str
    style: DrawingStyle
    visible: bool
    locked: bool
    created_at: int  # unix millis
    updated_at: int  # unix millis

    tool: ClassVar[DrawingTool]
    point_fields: ClassVar[Tuple[str, ...]] = ()

    def with_changes(self, changes: Mapping[str, Any], updated_at: int) -> "Drawing":
        """Merge ``changes`` into a new drawing with a refreshed ``updated_at``."""
        names = {f.name for f in fields(self)}
        kwargs: Dict[str, Any] = {}
        for key, value in changes.items():
            name = _snake(key)
            if name not in names or name in {"id", "created_at", "updated_at"}:
                raise ValueError(f"Field cannot be updated: {key}")
            if name == "style":
                value = value if isinstance(value, DrawingStyle) else self.style.merge(value)
            elif name in self.point_fields and not isinstance(value, Point):
                value = Point.from_dict(value)
            elif name == "levels":
                value = tuple(float(level) for level in value)
            kwargs[name] = value
        kwargs["updated_at"] = updated_at
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.tool.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (Point, DrawingStyle)):
                value = value.to_dict()
            elif isinstance(value, tuple):
                value = list(value)
            data[_camel(f.name)] = value
        return data


@dataclass(frozen=True)
class HorizontalLine(Drawing):
    price: float
    tool: ClassVar[DrawingTool] = DrawingTool.HORIZONTAL_LINE


@dataclass(frozen=True)
class VerticalLine(Drawing):
    time: int
    tool: ClassVar[DrawingTool] = DrawingTool.VERTICAL_LINE


@dataclass(frozen=True)
class TrendLine(Drawing):
    start_point: Point
    end_point: Point
    extend_left: bool = False
    extend_right: bool = False
    tool: ClassVar[DrawingTool] = DrawingTool.TREND_LINE
    point_fields: ClassVar[Tuple[str, ...]] = ("start_point", "end_point")


@dataclass(frozen=True)
class Ray(Drawing):
    start_point: Point
    end_point: Point  # direction
    tool: ClassVar[DrawingTool] = DrawingTool.RAY
    point_fields: ClassVar[Tuple[str, ...]] = ("start_point", "end_point")


@dataclass(frozen=True)
class FibRetracement(Drawing):
    start_point: Point
    end_point: Point
    levels: Tuple[float, ...]
    tool: ClassVar[DrawingTool] = DrawingTool.FIB_RETRACEMENT
    point_fields: ClassVar[Tuple[str, ...]] = ("start_point", "end_point")


@dataclass(frozen=True)
class ParallelChannel(Drawing):
    line1_start: Point
    line1_end: Point
    channel_width: float  # absolute perpendicular distance
    tool: ClassVar[DrawingTool] = DrawingTool.PARALLEL_CHANNEL
    point_fields: ClassVar[Tuple[str, ...]] = ("line1_start", "line1_end")


@dataclass(frozen=True)
class Rectangle(Drawing):
    top_left: Point
    bottom_right: Point
    tool: ClassVar[DrawingTool] = DrawingTool.RECTANGLE
    point_fields: ClassVar[Tuple[str, ...]] = ("top_left", "bottom_right")


@dataclass(frozen=True)
class Triangle(Drawing):
    point1: Point
    point2: Point
    point3: Point
    tool: ClassVar[DrawingTool] = DrawingTool.TRIANGLE
    point_fields: ClassVar[Tuple[str, ...]] = ("point1", "point2", "point3")


@dataclass(frozen=True)
class TextNote(Drawing):
    position: Point
    text: str
    font_size: int
    tool: ClassVar[DrawingTool] = DrawingTool.TEXT
    point_fields: ClassVar[Tuple[str, ...]] = ("position",)


DRAWING_TYPES: Dict[DrawingTool, Type[Drawing]] = {
    cls.tool: cls
    for cls in (
        HorizontalLine,
        VerticalLine,
        TrendLine,
        Ray,
        FibRetracement,
        ParallelChannel,
        Rectangle,
        Triangle,
        TextNote,
    )
}


def drawing_from_dict(data: Mapping[str, Any]) -> Drawing:
    """Rebuild a drawing from its serialized (camelCase) form."""
    try:
        cls = DRAWING_TYPES[DrawingTool(data["type"])]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unsupported drawing type: {data.get('type')}") from exc

    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key not in data:
            # Optional trailing fields (extendLeft/extendRight) keep their defaults.
            continue
        value = data[key]
        if f.name == "style":
            value = DrawingStyle.from_dict(value)
        elif f.name in cls.point_fields:
            value = Point.from_dict(value)
        elif f.name == "levels":
            value = tuple(float(level) for level in value)
        kwargs[f.name] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"Malformed {cls.tool.value} drawing: {exc}") from exc

