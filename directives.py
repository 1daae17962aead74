from __future__ import annotations
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from lexer import DeckshRuntimeError
from extensions import DeckshExtensionError
from geometry import STD_NOTCH, arrow_points, arrowhead, brace
from markup import (
    FILL,
    FONT_COLOR_OP,
    FONT_COLOR_OP_LP,
    IMAGE,
    STROKE,
    clause,
    format_number,
    join_attrs,
    q,
    quoted_attrs,
    text_content,
    xml_escape,
)

if TYPE_CHECKING:
    from interpreter import Interpreter, LineSource, TokenRecord


DirectiveImpl = Callable[["Interpreter", List[str], "TokenRecord", Optional["LineSource"]], None]


@dataclass
class Directive:
    name: str
    min_tokens: int
    max_tokens: Optional[int]
    usage: str
    impl: DirectiveImpl

    def validate(self, tokens: List[str]) -> None:
        supplied = len(tokens)
        if supplied < self.min_tokens or (self.max_tokens is not None and supplied > self.max_tokens):
            raise DeckshRuntimeError(self.usage.format(name=tokens[0]), directive=self.name)


class Directives:
    """Registry of markup-emitting directives, keyed by their first token.

    Token counts include the directive name itself.
    """

    def __init__(self) -> None:
        self.table: Dict[str, Directive] = {}
        # Structural
        self._register(("deck",), 1, None, "deck", self._deck)
        self._register(("edeck", "eslide", "elist"), 1, None, "edeck, eslide, or elist", self._end_tag)
        self._register(("canvas",), 3, 3, "{name} width height", self._canvas)
        self._register(("slide",), 1, 3, "slide [bgcolor] [fgcolor]", self._slide)
        self._register(("include",), 2, 2, 'include "file"', self._include)
        self._register(("data",), 2, 2, 'data "file"...edata', self._data)
        self._register(("for",), 1, None, "for v = begin end [incr] ... efor", self._for)
        self._register(("efor", "edata"), 1, None, "{name}", self._block_end)
        self._register(("grid",), 7, None, '{name} "file" x y xint yint xlimit', self._grid)
        # Text
        self._register(("text", "ctext", "etext"), 5, None, '{name} "text" x y size [font] [color] [opacity] [link]', self._text)
        self._register(("textfile",), 5, None, '{name} "file" x y size [font] [color] [opacity] [lp] [link] [rotation]', self._textfile)
        self._register(("rtext",), 6, None, '{name} "text" x y angle size [font] [color] [opacity] [link]', self._rtext)
        self._register(("textblock",), 6, None, '{name} "text" x y width size [font] [color] [opacity] [link]', self._textblock)
        self._register(("textcode",), 6, 7, '{name} "file" x y width size [color]', self._textcode)
        self._register(("legend",), 7, None, 'legend "text" x y size font color', self._legend)
        # Images and lists
        self._register(("image",), 6, 8, '{name} "image-file" x y w h [scale] [link]', self._image)
        self._register(("cimage",), 7, 9, '{name} "image-file" "caption" x y w h [scale] [link]', self._cimage)
        self._register(("list", "blist", "nlist", "clist"), 4, None, "{name} x y size [font] [color] [opacity] [lp] [link]", self._list)
        self._register(("li",), 1, None, '{name} ["text"] [font] [color] [opacity] [link]', self._list_item)
        # Geometry
        self._register(("rect", "ellipse"), 5, 7, "{name} x y w h [color] [opacity]", self._shape)
        self._register(("square", "circle"), 4, 6, "{name} x y w [color] [opacity]", self._regular_shape)
        self._register(("polygon", "poly"), 3, 5, '{name} "xcoord" "ycoord" [color] [opacity]', self._polygon)
        self._register(("line",), 5, 8, "{name} x1 y1 x2 y2 [size] [color] [opacity]", self._line)
        self._register(("hline", "vline"), 4, 7, "{name} x y length [size] [color] [opacity]", self._axis_line)
        self._register(("arc",), 7, 10, "{name} cx cy w h a1 a2 [size] [color] [opacity]", self._arc)
        self._register(("curve",), 7, 10, "{name} x1 y1 x2 y2 x3 y3 [size] [color] [opacity]", self._curve)
        self._register(("arrow",), 5, None, "arrow x1 y1 x2 y2 [linewidth] [arrowidth] [arrowheight] [color] [opacity]", self._arrow)
        self._register(
            ("lcarrow", "rcarrow", "ucarrow", "dcarrow"),
            7,
            None,
            "{name} x1 y1 x2 y2 x3 y3 [linewidth] [arrowidth] [arrowheight] [color] [opacity]",
            self._curved_arrow,
        )
        self._register(("lbrace", "rbrace", "ubrace", "dbrace"), 6, None, "[l,r,u,d]brace x y size aw ah [linewidth] [color] [opacity]", self._brace)
        # External
        self._register(("chart", "dchart"), 1, None, "{name} [args]", self._chart)

    def _register(
        self,
        names: Sequence[str],
        min_tokens: int,
        max_tokens: Optional[int],
        usage: str,
        impl: DirectiveImpl,
    ) -> None:
        for name in names:
            self.table[name] = Directive(name=name, min_tokens=min_tokens, max_tokens=max_tokens, usage=usage, impl=impl)

    def register_extension_directive(
        self,
        *,
        names: Sequence[str],
        min_tokens: int,
        max_tokens: Optional[int],
        impl: DirectiveImpl,
        usage: str = "",
    ) -> None:
        for name in names:
            if name in self.table:
                raise DeckshExtensionError(f"Cannot override existing directive '{name}'")
        self._register(names, min_tokens, max_tokens, usage or "{name}", impl)

    def lookup(self, name: str) -> Optional[Directive]:
        return self.table.get(name)

    def invoke(self, interpreter: "Interpreter", record: "TokenRecord", lines: Optional["LineSource"]) -> bool:
        directive = self.table.get(record.tokens[0])
        if directive is None:
            return False
        directive.validate(record.tokens)
        directive.impl(interpreter, list(record.tokens), record, lines)
        return True

    # ---- structural ----

    def _deck(self, interp: "Interpreter", _: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        interp.emitter.write("<deck>")

    def _end_tag(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        interp.emitter.write(f"</{args[0][1:]}>")

    def _canvas(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        width = interp.store.get(args[1])
        height = interp.store.get(args[2])
        interp.emitter.write(f"<canvas width={q(width)} height={q(height)}/>")

    def _slide(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        if len(args) == 1:
            interp.emitter.write("<slide>")
        elif len(args) == 2:
            interp.emitter.write(f"<slide bg={args[1]}>")
        else:
            interp.emitter.write(f"<slide bg={args[1]} fg={args[2]}>")

    def _include(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        interp.include(interp.filename_arg(args[1]))

    def _data(self, interp: "Interpreter", _: List[str], record: "TokenRecord", lines: Optional["LineSource"]) -> None:
        interp.load_data(record, lines)

    def _for(self, interp: "Interpreter", _: List[str], record: "TokenRecord", lines: Optional["LineSource"]) -> None:
        interp.run_loop(record, lines)

    def _block_end(self, *_: object) -> None:
        # stray terminator outside of a block
        return None

    def _grid(self, interp: "Interpreter", args: List[str], record: "TokenRecord", ___: Optional["LineSource"]) -> None:
        from interpreter import TokenRecord

        x, y, xint, yint, limit = (interp.number(token, resolve=True) for token in args[2:7])
        name = interp.filename_arg(args[1])
        xp, yp = x, y
        for text in interp.read_lines(name):
            if xp > limit:
                xp = x
                yp -= yint
            if not text:
                continue
            item = interp.tokenize_record(text, record.line, record.file)
            if item is not None and len(item.tokens) >= 3:
                tokens = [_placed(token, xp, yp) for token in item.tokens]
                interp.execute(TokenRecord(tokens, record.line, " ".join(tokens), record.file))
            xp += xint

    # ---- text ----

    def _text(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        align = {"text": "", "ctext": 'align="c" ', "etext": 'align="e" '}[args[0]]
        pos = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("sp", args[4])])
        fco = clause(args[5:], FONT_COLOR_OP)
        interp.emitter.write(f"<text {align}{pos} {fco}>{text_content(args[1])}</text>")

    def _textfile(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        pos = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("sp", args[4])])
        fco = clause(args[5:], FONT_COLOR_OP_LP)
        interp.emitter.write(f"<text file={args[1]} {pos} {fco}/>")

    def _rtext(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        try:
            rotation = interp.number(args[4])
        except DeckshRuntimeError:
            rotation = None
        if rotation is None or rotation > 360:
            raise DeckshRuntimeError(f"{args[4]} is not a valid rotation angle", directive="rtext")
        pos = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("rotation", args[4]), ("sp", args[5])])
        fco = clause(args[6:], FONT_COLOR_OP)
        interp.emitter.write(f"<text {pos} {fco}>{text_content(args[1])}</text>")

    def _textblock(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        pos = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("wp", args[4]), ("sp", args[5])])
        fco = clause(args[6:], FONT_COLOR_OP)
        interp.emitter.write(f'<text type="block" {pos} {fco}>{text_content(args[1])}</text>')

    def _textcode(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        pos = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("wp", args[4]), ("sp", args[5])])
        color = f" color={args[6]}" if len(args) == 7 else ""
        interp.emitter.write(f'<text type="code" file={args[1]} {pos}{color}/>')

    def _legend(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        tx = interp.number(args[2])
        cy = interp.number(args[3])
        pos = quoted_attrs([("xp", format_number(tx + 2)), ("yp", args[3]), ("sp", args[4])])
        fco = clause(args[5:], FONT_COLOR_OP)
        interp.emitter.write(f"<text {pos} {fco}>{text_content(args[1])}</text>")
        dot = quoted_attrs([("xp", args[2]), ("yp", format_number(cy + 0.5)), ("wp", args[4])])
        interp.emitter.write(f'<ellipse {dot} hr="100" color={args[6]}/>')

    # ---- images and lists ----

    def _image(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        dims = quoted_attrs([("xp", args[2]), ("yp", args[3]), ("width", args[4]), ("height", args[5])])
        interp.emitter.write(f"<image {join_attrs(f'name={args[1]}', dims, clause(args[6:], IMAGE))}/>")

    def _cimage(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        caption = xml_escape(args[2])
        dims = quoted_attrs([("xp", args[3]), ("yp", args[4]), ("width", args[5]), ("height", args[6])])
        head = f"name={args[1]} caption={caption}"
        interp.emitter.write(f"<image {join_attrs(head, dims, clause(args[7:], IMAGE))}/>")

    def _list(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        kind = {"list": "", "blist": 'type="bullet" ', "nlist": 'type="number" ', "clist": 'align="center" '}[args[0]]
        pos = quoted_attrs([("xp", args[1]), ("yp", args[2]), ("sp", args[3])])
        fco = clause(args[4:], FONT_COLOR_OP_LP) if len(args) > 4 else ""
        interp.emitter.write(f"<list {kind}{pos} {fco}>")

    def _list_item(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        if len(args) == 1:
            interp.emitter.write("<li/>")
        elif len(args) == 2:
            interp.emitter.write(f"<li>{text_content(args[1])}</li>")
        else:
            interp.emitter.write(f"<li {clause(args[2:], FONT_COLOR_OP)}>{text_content(args[1])}</li>")

    # ---- geometry ----

    def _shape(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        dim = quoted_attrs([("xp", args[1]), ("yp", args[2]), ("wp", args[3]), ("hp", args[4])])
        interp.emitter.write(f"<{args[0]} {join_attrs(dim, clause(args[5:], FILL))}/>")

    def _regular_shape(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        tag = "rect" if args[0] == "square" else "ellipse"
        dim = quoted_attrs([("xp", args[1]), ("yp", args[2]), ("wp", args[3])]) + ' hr="100"'
        interp.emitter.write(f"<{tag} {join_attrs(dim, clause(args[4:], FILL))}/>")

    def _polygon(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        coords = f"xc={args[1]} yc={args[2]}"
        interp.emitter.write(f"<polygon {join_attrs(coords, clause(args[3:], FILL))}/>")

    def _line(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        lc = quoted_attrs([("xp1", args[1]), ("yp1", args[2]), ("xp2", args[3]), ("yp2", args[4])])
        interp.emitter.write(f"<line {join_attrs(lc, clause(args[5:], STROKE))}/>")

    def _axis_line(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        length = interp.number(args[3])
        if args[0] == "hline":
            end = format_number(interp.number(args[1]) + length)
            lc = quoted_attrs([("xp1", args[1]), ("yp1", args[2]), ("xp2", end), ("yp2", args[2])])
        else:
            end = format_number(interp.number(args[2]) + length)
            lc = quoted_attrs([("xp1", args[1]), ("yp1", args[2]), ("xp2", args[1]), ("yp2", end)])
        interp.emitter.write(f"<line {join_attrs(lc, clause(args[4:], STROKE))}/>")

    def _arc(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        names = ("xp", "yp", "wp", "hp", "a1", "a2")
        ac = quoted_attrs(list(zip(names, args[1:7])))
        interp.emitter.write(f"<arc {join_attrs(ac, clause(args[7:], STROKE))}/>")

    def _curve(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        names = ("xp1", "yp1", "xp2", "yp2", "xp3", "yp3")
        ac = quoted_attrs(list(zip(names, args[1:7])))
        interp.emitter.write(f"<curve {join_attrs(ac, clause(args[7:], STROKE))}/>")

    def _arrow(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        n = len(args)
        x1, y1, x2, y2 = (interp.number(token) for token in args[1:5])
        lw = args[5] if n >= 6 else "0.2"
        aw = interp.number(args[6]) if n >= 7 else 3.0
        ah = interp.number(args[7]) if n >= 8 else 3.0
        color = args[8] if n >= 9 else '"gray"'
        opacity = args[9] if n == 10 else "100"
        head = arrow_points(x1, y1, x2, y2, aw, ah)
        notch_x, notch_y = head[2]
        lc = quoted_attrs(
            [("xp1", args[1]), ("yp1", args[2]), ("xp2", format_number(notch_x)), ("yp2", format_number(notch_y)), ("sp", lw)]
        )
        interp.emitter.write(f"<line {lc} color={color} opacity={q(opacity)}/>")
        _polygon_head(interp, head, color, opacity)

    def _curved_arrow(self, interp: "Interpreter", args: List[str], record: "TokenRecord", lines: Optional["LineSource"]) -> None:
        n = len(args)
        # the curve's end point is the point of the arrow
        x = interp.number(args[5])
        y = interp.number(args[6])
        aw = interp.number(args[8]) if n >= 9 else 3.0
        ah = interp.number(args[9]) if n >= 10 else 3.0
        color = args[10] if n >= 11 else '"gray"'
        opacity = args[11] if n == 12 else "100"
        lw = args[7] if n >= 8 else "0.2"
        head = arrowhead(x, y, ah, aw, STD_NOTCH, args[0][0])
        notch_x, notch_y = head[2]
        curve = ["curve"] + args[1:5] + [format_number(notch_x), format_number(notch_y), lw, color, opacity]
        self._curve(interp, curve, record, lines)
        _polygon_head(interp, head, color, opacity)

    def _brace(self, interp: "Interpreter", args: List[str], __: "TokenRecord", ___: Optional["LineSource"]) -> None:
        x, y, size, aw, ah = (interp.number(token) for token in args[1:6])
        attr = ""
        if len(args) >= 7:
            interp.number(args[6])
            attr += f'sp="{args[6]}"'
        if len(args) >= 8:
            attr += f" color={args[7]}"
        if len(args) >= 9:
            interp.number(args[8])
            attr += f' opacity="{args[8]}"'
        for kind, coords in brace(args[0], x, y, size, aw, ah):
            if kind == "curve":
                interp.emitter.curve(coords, attr)
            else:
                interp.emitter.line(coords, attr)

    # ---- external ----

    def _chart(self, interp: "Interpreter", _: List[str], record: "TokenRecord", ___: Optional["LineSource"]) -> None:
        fields = record.source.split()
        for i in range(1, len(fields)):
            value = interp.store.get(fields[i])
            if len(value) > 2 and value[0] == '"' and value[-1] == '"':
                value = value[1:-1]
            fields[i] = value
        # substituted values may themselves hold several arguments
        command_line = " ".join(fields)
        argv = command_line.split()
        runner = interp.services.process_runner
        name = argv[0]
        if os.path.basename(name) == name:
            path = runner.which(name)
            if path is None:
                raise DeckshRuntimeError(f"{name} - executable file not found in $PATH", directive="chart")
            argv[0] = path
        try:
            result = runner.run(argv)
        except (OSError, UnicodeError) as exc:
            raise DeckshRuntimeError(f"[{command_line}] - {exc}", directive="chart")
        interp.io_log.append({"event": "CHART", "argv": argv, "code": result.returncode})
        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit status {result.returncode}"
            raise DeckshRuntimeError(f"[{command_line}] - {detail}", directive="chart")
        interp.emitter.raw(result.stdout + "\n")


def _placed(token: str, x: float, y: float) -> str:
    if token == "x":
        return format_number(x)
    if token == "y":
        return format_number(y)
    return token


def _polygon_head(interp: "Interpreter", head: List[tuple], color: str, opacity: str) -> None:
    xs = " ".join(format_number(px) for px, _ in head)
    ys = " ".join(format_number(py) for _, py in head)
    interp.emitter.write(f'<polygon xc="{xs}" yc="{ys}" color={color} opacity={q(opacity)}/>')
