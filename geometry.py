from __future__ import annotations
import math
from typing import List, Tuple

STD_NOTCH = 0.75

Point = Tuple[float, float]
# ("curve", (x1, y1, x2, y2, x3, y3)) or ("line", (x1, y1, x2, y2))
Segment = Tuple[str, Tuple[float, ...]]


def polar(cx: float, cy: float, r: float, t: float) -> Point:
    """Polar to Cartesian, ``t`` in radians."""
    return (r * math.cos(t)) + cx, (r * math.sin(t)) + cy


def angle(x1: float, y1: float, x2: float, y2: float) -> float:
    return math.atan2(y2 - y1, x2 - x1)


def rt(x1: float, y1: float, x2: float, y2: float) -> Tuple[float, float]:
    """Distance and angle of the line (x1, y1) -> (x2, y2)."""
    dx = x2 - x1
    dy = y2 - y1
    return math.sqrt((dx * dx) + (dy * dy)), math.atan2(dy, dx)


def vmap(value: float, low1: float, high1: float, low2: float, high2: float) -> float:
    return low2 + (high2 - low2) * (value - low1) / (high1 - low1)


def arrow_points(x1: float, y1: float, x2: float, y2: float, aw: float, ah: float) -> List[Point]:
    """Tip, upper barb, notch and lower barb of a straight arrow's head.

    The shaft is drawn to the notch, so the head tapers to the line's end.
    """
    r, t = rt(x1, y1, x2, y2)
    n = r - (aw * STD_NOTCH)
    nt = angle(x1, y1, x1 + n, y1 + (ah / 2))
    return [
        polar(x1, y1, r, t),
        polar(x1, y1, r - aw, t + nt),
        polar(x1, y1, n, t),
        polar(x1, y1, r - aw, t - nt),
    ]


def arrowhead(x: float, y: float, ah: float, aw: float, notch: float, direction: str) -> List[Point]:
    """Axis-aligned arrowhead whose point is (x, y); direction is one of l, r, u, d."""
    if direction == "r":
        return [(x, y), (x - aw, y + (ah / 2)), (x - (aw * notch), y), (x - aw, y - (ah / 2))]
    if direction == "l":
        return [(x, y), (x + aw, y + (ah / 2)), (x + (aw * notch), y), (x + aw, y - (ah / 2))]
    if direction == "u":
        return [(x, y), (x + (aw / 2), y - ah), (x, y - (ah * notch)), (x - (aw / 2), y - ah)]
    if direction == "d":
        return [(x, y), (x + (aw / 2), y + ah), (x, y + (ah * notch)), (x - (aw / 2), y + ah)]
    raise ValueError(f"unknown arrowhead direction {direction!r}")


def _side_brace(x: float, y: float, size: float, aw: float, ah: float, sign: float) -> List[Segment]:
    aw2 = aw / 2
    h2 = size / 2
    linelen = h2 - (ah / 2)
    xshift = x + sign * aw2
    tip = x + sign * aw
    return [
        ("curve", (x, y, xshift, y, xshift, y + ah)),
        ("curve", (x, y, xshift, y, xshift, y - ah)),
        ("curve", (xshift, y + linelen, xshift, y + h2, tip, y + h2)),
        ("curve", (xshift, y - linelen, xshift, y - h2, tip, y - h2)),
        ("line", (xshift, y + ah, xshift, y + linelen)),
        ("line", (xshift, y - ah, xshift, y - linelen)),
    ]


def _span_brace(x: float, y: float, size: float, aw: float, ah: float, sign: float) -> List[Segment]:
    linelen = (size / 2) - aw
    yshift = y + sign * ah
    yend = y + sign * (2 * ah)
    return [
        ("curve", (x, y, x, yshift, x + aw, yshift)),
        ("curve", (x, y, x, yshift, x - aw, yshift)),
        ("line", (x + aw, yshift, x + linelen, yshift)),
        ("line", (x - aw, yshift, x - linelen, yshift)),
        ("curve", (x + linelen, yshift, x + linelen + aw, yshift, x + linelen + aw, yend)),
        ("curve", (x - linelen, yshift, x - linelen - aw, yshift, x - linelen - aw, yend)),
    ]


def brace(kind: str, x: float, y: float, size: float, aw: float, ah: float) -> List[Segment]:
    """Segments of a brace; ``kind`` is lbrace, rbrace, ubrace or dbrace."""
    if kind == "lbrace":
        return _side_brace(x, y, size, aw, ah, 1.0)
    if kind == "rbrace":
        return _side_brace(x, y, size, aw, ah, -1.0)
    if kind == "ubrace":
        return _span_brace(x, y, size, aw, ah, -1.0)
    if kind == "dbrace":
        return _span_brace(x, y, size, aw, ah, 1.0)
    raise ValueError(f"unknown brace {kind!r}")
