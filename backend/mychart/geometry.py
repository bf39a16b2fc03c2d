"""Pure geometry used to build drawings and hit-test them.

Chart coordinates mix units (unix seconds on x, price on y). Hit distances
are measured vertically at the click's time and expressed as a fraction of
the price, which keeps them independent of the chart scale. Along the time
axis a click only has to land within the drawing's span, give or take a
tolerance in seconds (usually one bar).
"""
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import (
    Drawing,
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
)


def normalize_rectangle(first: Point, second: Point) -> Tuple[Point, Point]:
    """Return ``(top_left, bottom_right)`` for two opposite corners."""
    top_left = Point(time=min(first.time, second.time), price=max(first.price, second.price))
    bottom_right = Point(time=max(first.time, second.time), price=min(first.price, second.price))
    return top_left, bottom_right


def signed_distance_to_line(start: Point, end: Point, point: Point) -> float:
    """Perpendicular distance from ``point`` to the line through start/end.

    The sign tells which side of the line the point lies on. A degenerate
    line falls back to the price difference from ``start``.
    """
    dx = end.time - start.time
    dy = end.price - start.price
    length = math.hypot(dx, dy)
    if length == 0:
        return point.price - start.price
    cross = dx * (point.price - start.price) - dy * (point.time - start.time)
    return cross / length


def channel_width(start: Point, end: Point, third: Point) -> float:
    return abs(signed_distance_to_line(start, end, third))


def channel_offset(start: Point, end: Point, width: float) -> Tuple[Point, Point]:
    """The second channel line, ``width`` away along the line's left normal."""
    dx = end.time - start.time
    dy = end.price - start.price
    length = math.hypot(dx, dy)
    if length == 0:
        return Point(start.time, start.price + width), Point(end.time, end.price + width)
    nx, ny = -dy / length, dx / length
    shift_t = int(round(nx * width))
    shift_p = ny * width
    return (
        Point(start.time + shift_t, start.price + shift_p),
        Point(end.time + shift_t, end.price + shift_p),
    )


def fib_level_price(start: Point, end: Point, level: float) -> float:
    return start.price + (end.price - start.price) * level


def fib_level_prices(drawing: FibRetracement) -> List[Tuple[float, float]]:
    return [(level, fib_level_price(drawing.start_point, drawing.end_point, level)) for level in drawing.levels]


def extend_point(start: Point, end: Point, horizon: int, forward: bool = True) -> Point:
    """Project past ``end`` (or before ``start``) by ``horizon`` seconds along the slope."""
    dx = end.time - start.time
    dy = end.price - start.price
    anchor = end if forward else start
    direction = 1 if (dx >= 0) == forward else -1
    t = anchor.time + direction * horizon
    if dx == 0:
        return Point(t, anchor.price)
    return Point(t, anchor.price + dy / dx * (t - anchor.time))


def relative_distance(price: float, reference: float) -> float:
    """``|price - reference|`` as a fraction of the reference price."""
    scale = abs(reference) or abs(price)
    if scale == 0:
        return 0.0
    return abs(price - reference) / scale


def segment_distance(
    start: Point,
    end: Point,
    click: Point,
    lower: Optional[float] = 0.0,
    upper: Optional[float] = 1.0,
    time_tolerance: int = 0,
) -> Optional[float]:
    """Relative vertical distance from ``click`` to a segment.

    The click time is projected onto the segment parameter ``t`` (0 at
    start, 1 at end); ``None`` for ``lower``/``upper`` leaves that side
    unbounded, which turns the segment into a ray or a full line. A click
    more than ``time_tolerance`` seconds past a bounded end misses and
    yields ``None``.
    """
    dt = end.time - start.time
    dp = end.price - start.price
    if dt == 0:
        if abs(click.time - start.time) > time_tolerance:
            return None
        low, high = sorted((start.price, end.price))
        nearest = min(max(click.price, low), high)
        return relative_distance(click.price, nearest)

    slack = time_tolerance / abs(dt)
    t = (click.time - start.time) / dt
    if lower is not None:
        if t < lower - slack:
            return None
        t = max(lower, t)
    if upper is not None:
        if t > upper + slack:
            return None
        t = min(upper, t)
    return relative_distance(click.price, start.price + dp * t)



def _inside_triangle(a: Point, b: Point, c: Point, p: Point) -> bool:
    d1 = signed_distance_to_line(a, b, p)
    d2 = signed_distance_to_line(b, c, p)
    d3 = signed_distance_to_line(c, a, p)
    has_neg = d1 < 0 or d2 < 0 or d3 < 0
    has_pos = d1 > 0 or d2 > 0 or d3 > 0
    return not (has_neg and has_pos)


def _nearest(distances: Iterable[Optional[float]]) -> Optional[float]:
    values = [d for d in distances if d is not None]
    return min(values) if values else None


def hit_distance(drawing: Drawing, click: Point, time_tolerance: int = 0) -> Optional[float]:
    """Scale-free distance from ``click`` to ``drawing``.

    ``None`` means the click misses: the drawing has no price dimension, or
    the click lies more than ``time_tolerance`` seconds outside the time
    span the drawing covers. Horizontal lines and fib levels span the whole
    chart.
    """
    tol = time_tolerance
    if isinstance(drawing, HorizontalLine):
        return relative_distance(click.price, drawing.price)
    if isinstance(drawing, FibRetracement):
        return _nearest(relative_distance(click.price, price) for _, price in fib_level_prices(drawing))
    if isinstance(drawing, TrendLine):
        lower = None if drawing.extend_left else 0.0
        upper = None if drawing.extend_right else 1.0
        return segment_distance(drawing.start_point, drawing.end_point, click, lower, upper, tol)
    if isinstance(drawing, Ray):
        return segment_distance(drawing.start_point, drawing.end_point, click, 0.0, None, tol)
    if isinstance(drawing, ParallelChannel):
        second_start, second_end = channel_offset(drawing.line1_start, drawing.line1_end, drawing.channel_width)
        return _nearest(
            [
                segment_distance(drawing.line1_start, drawing.line1_end, click, time_tolerance=tol),
                segment_distance(second_start, second_end, click, time_tolerance=tol),
            ]
        )
    if isinstance(drawing, Rectangle):
        left, right = drawing.top_left.time, drawing.bottom_right.time
        if click.time < left - tol or click.time > right + tol:
            return None
        top, bottom = drawing.top_left.price, drawing.bottom_right.price
        if bottom <= click.price <= top:
            return 0.0
        return min(relative_distance(click.price, top), relative_distance(click.price, bottom))
    if isinstance(drawing, Triangle):
        a, b, c = drawing.point1, drawing.point2, drawing.point3
        if _inside_triangle(a, b, c, click):
            return 0.0
        return _nearest(
            [
                segment_distance(a, b, click, time_tolerance=tol),
                segment_distance(b, c, click, time_tolerance=tol),
                segment_distance(c, a, click, time_tolerance=tol),
            ]
        )
    if isinstance(drawing, TextNote):
        if abs(click.time - drawing.position.time) > tol:
            return None
        return relative_distance(click.price, drawing.position.price)
    if isinstance(drawing, VerticalLine):
        # No price dimension to compare against.
        return None
    raise TypeError(f"Unhandled drawing type: {type(drawing).__name__}")


def nearest_drawing(
    drawings: Sequence[Drawing], click: Point, threshold: float, time_tolerance: int = 0
) -> Optional[Drawing]:
    """The visible drawing closest to ``click`` strictly under ``threshold``."""
    best: Optional[Drawing] = None
    best_distance = threshold
    for drawing in drawings:
        if not drawing.visible:
            continue
        distance = hit_distance(drawing, click, time_tolerance)
        if distance is None or distance >= best_distance:
            continue
        best = drawing
        best_distance = distance
    return best
