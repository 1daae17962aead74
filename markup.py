"""Markup emitter: escaping, attribute quoting and the canonical number format."""

from __future__ import annotations
import math
import numpy as np
from typing import Callable, List, Optional, Sequence, Tuple

from lexer import is_quoted


XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
)

# name, quoted
FONT_COLOR_OP: Tuple[Tuple[str, bool], ...] = (
    ("font", False),
    ("color", False),
    ("opacity", True),
    ("link", False),
)
FONT_COLOR_OP_LP: Tuple[Tuple[str, bool], ...] = (
    ("font", False),
    ("color", False),
    ("opacity", True),
    ("lp", True),
    ("link", False),
    ("rotation", True),
)
STROKE: Tuple[Tuple[str, bool], ...] = (
    ("sp", True),
    ("color", False),
    ("opacity", True),
)
FILL: Tuple[Tuple[str, bool], ...] = (
    ("color", False),
    ("opacity", True),
)
IMAGE: Tuple[Tuple[str, bool], ...] = (
    ("scale", True),
    ("link", False),
)

CURVE_FORMAT = '<curve xp1="{:.2f}" yp1="{:.2f}" xp2="{:.2f}" yp2="{:.2f}" xp3="{:.2f}" yp3="{:.2f}" {}/>'
LINE_FORMAT = '<line xp1="{:.2f}" yp1="{:.2f}" xp2="{:.2f}" yp2="{:.2f}" {}/>'


def xml_escape(text: str) -> str:
    for raw, escaped in XML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


def unquote(text: str) -> str:
    if is_quoted(text):
        return text[1:-1]
    return text


def text_content(token: str) -> str:
    """Strip the literal's delimiters and escape it for element content."""
    return xml_escape(unquote(token))


def q(value: str) -> str:
    """Double-quote a value, escaping backslashes, quotes and control characters."""
    out: List[str] = ['"']
    for ch in value:
        if ch == "\\" or ch == '"':
            out.append("\\" + ch)
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def quoted_attrs(pairs: Sequence[Tuple[str, str]]) -> str:
    return " ".join(f"{name}={q(value)}" for name, value in pairs)


def clause(values: Sequence[str], schema: Sequence[Tuple[str, bool]]) -> str:
    """Build the optional trailing attribute clause from however many values are present.

    Quoted fields are rendered with ``q``; the others are passed through as
    written (colors and fonts keep their literal quotes). More values than the
    schema names yields an empty clause.
    """
    if len(values) > len(schema):
        return ""
    parts = []
    for value, (name, quoted) in zip(values, schema):
        parts.append(f"{name}={q(value) if quoted else value}")
    return " ".join(parts)


def join_attrs(*parts: str) -> str:
    return " ".join(part for part in parts if part)


def format_number(value: float) -> str:
    """Shortest round-trip text for ``value``.

    Positional notation unless the decimal exponent is below -4 or at least
    6, in which case ``d.ddde+XX`` is used.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    scientific = np.format_float_scientific(value, unique=True, trim="-", exp_digits=2)
    exponent = int(scientific.rsplit("e", 1)[1])
    if exponent < -4 or exponent >= 6:
        return scientific
    return np.format_float_positional(value, unique=True, trim="-")


class MarkupEmitter:
    def __init__(self, sink: Optional[Callable[[str], None]] = None) -> None:
        self.sink = sink or (lambda text: print(text, end=""))

    def write(self, markup: str) -> None:
        self.sink(markup + "\n")

    def raw(self, text: str) -> None:
        self.sink(text)

    def curve(self, coords: Sequence[float], attr: str) -> None:
        self.write(CURVE_FORMAT.format(*coords, attr))

    def line(self, coords: Sequence[float], attr: str) -> None:
        self.write(LINE_FORMAT.format(*coords, attr))
