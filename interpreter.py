from __future__ import annotations
import json
import math
import os
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from lexer import DeckshError, DeckshParseError, DeckshRuntimeError, DeckshStreamError, is_quoted, scan_line
from extensions import RuntimeServices, build_default_services
from directives import Directives
from geometry import polar, vmap
from markup import MarkupEmitter, format_number, unquote


LOOP_NUMERIC = "numeric"
LOOP_LIST = "inline-list"
LOOP_FILE = "file"

LOOP_END = "efor"
DATA_END = "edata"

ARITHMETIC_OPERATORS: Dict[str, Callable[[float, float], float]] = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": lambda a, b: a / b,
}


def parse_number(text: str) -> float:
    """Strict float parse: no surrounding blanks and no digit separators."""
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"invalid number {text!r}")
    return float(text)


@dataclass
class VariableStore:
    """Flat identifier -> text mapping; a missing name reads back as itself."""

    values: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str:
        return self.values.get(name, name)

    def set(self, name: str, value: str) -> None:
        self.values[name] = value

    def has(self, name: str) -> bool:
        return name in self.values

    def snapshot(self) -> Dict[str, str]:
        def _render(value: str) -> str:
            if len(value) > 80:
                return value[:77] + "..."
            return value

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class TokenRecord:
    tokens: List[str]
    line: int
    source: str
    file: Optional[str] = None

    def replace(self, name: str, value: str) -> "TokenRecord":
        tokens = [value if token == name else token for token in self.tokens]
        return TokenRecord(tokens, self.line, " ".join(tokens), self.file)


@dataclass
class LoopDescriptor:
    variable: str
    kind: str
    values: Iterable[str]
    body: List[TokenRecord]

    def iterations(self) -> Iterator[List[TokenRecord]]:
        for value in self.values:
            yield [record.replace(self.variable, value) for record in self.body]


@dataclass(frozen=True)
class ErrorRecord:
    line: int
    message: str
    file: Optional[str] = None

    def __str__(self) -> str:
        prefix = f"{self.file}: " if self.file else ""
        return f"{prefix}line {self.line}: {self.message}"


@dataclass
class CompileResult:
    records: List[ErrorRecord]

    @property
    def succeeded(self) -> bool:
        return not self.records

    @property
    def last_error(self) -> Optional[ErrorRecord]:
        return self.records[-1] if self.records else None


class LineSource:
    """Numbered lines of one script, shared by the main loop and block readers."""

    def __init__(self, lines: Iterable[str], filename: Optional[str] = None) -> None:
        self._lines = iter(lines)
        self.filename = filename
        self.line = 0

    def __iter__(self) -> "LineSource":
        return self

    def __next__(self) -> Tuple[int, str]:
        try:
            raw = next(self._lines)
        except (OSError, UnicodeDecodeError) as exc:
            raise DeckshStreamError(
                f"{self.filename or '<stdin>'}: read failed after line {self.line}: {exc}"
            ) from exc
        self.line += 1
        return self.line, raw.rstrip("\r\n")


def classify_loop(tokens: List[str]) -> Optional[str]:
    """Kind of ``for v = ...`` loop, or None when the header has no valid shape."""
    n = len(tokens)
    if n < 4 or tokens[2] != "=":
        return None
    if tokens[3] == "[" and tokens[-1] == "]":
        return LOOP_LIST
    if n == 4 and tokens[3].startswith('"') and is_quoted(tokens[3]) and len(tokens[3]) > 2:
        return LOOP_FILE
    if n == 5 or n == 6:
        return LOOP_NUMERIC
    return None


class Assignments:
    """Assignment forms, selected by the directive's token count."""

    def __init__(self, rng: np.random.Generator) -> None:
        self.rng = rng
        self.forms: Dict[int, Callable[[VariableStore, List[str]], str]] = {
            3: self._simple,
            5: self._binary,
            7: self._polar,
            8: self._vmap,
        }

    @staticmethod
    def is_compound(tokens: List[str]) -> bool:
        return len(tokens) >= 4 and tokens[1] in ARITHMETIC_OPERATORS and tokens[2] == "="

    def assign(self, store: VariableStore, tokens: List[str]) -> None:
        form = self.forms.get(len(tokens))
        if form is None:
            raise DeckshRuntimeError(f"{' '.join(tokens)} is an illegal assignment", directive="assign")
        store.set(tokens[0], form(store, tokens))

    def compound(self, store: VariableStore, tokens: List[str]) -> None:
        current = self._operand(store, tokens[0])
        try:
            operand = parse_number(tokens[3])
        except ValueError:
            raise DeckshRuntimeError(f"{tokens[3]} is not a number", directive="assign")
        store.set(tokens[0], self._apply(tokens[1], current, operand))

    def _operand(self, store: VariableStore, token: str) -> float:
        try:
            return parse_number(store.get(token))
        except ValueError:
            raise DeckshRuntimeError(f"{token} is not a number", directive="assign")

    def _apply(self, op: str, left: float, right: float) -> str:
        if op == "/" and right == 0:
            raise DeckshRuntimeError(
                f"you cannot divide by zero ({format_number(left)} / {format_number(right)})",
                directive="assign",
            )
        return format_number(ARITHMETIC_OPERATORS[op](left, right))

    def _simple(self, _: VariableStore, tokens: List[str]) -> str:
        return tokens[2]

    def _binary(self, store: VariableStore, tokens: List[str]) -> str:
        if tokens[2] == "random":
            return self._random(store, tokens)
        op = tokens[3]
        if op not in ARITHMETIC_OPERATORS:
            raise DeckshRuntimeError("use: id = id operation number", directive="assign")
        left = self._operand(store, tokens[2])
        right = self._operand(store, tokens[4])
        return self._apply(op, left, right)

    def _random(self, store: VariableStore, tokens: List[str]) -> str:
        low = self._operand(store, tokens[3])
        high = self._operand(store, tokens[4])
        return format_number(vmap(float(self.rng.random()), 0, 1, low, high))

    def _polar(self, store: VariableStore, tokens: List[str]) -> str:
        if tokens[2] not in ("polarx", "polary"):
            raise DeckshRuntimeError("use: x = polar[x|y] cx cy r theta", directive="assign")
        cx, cy, r, theta = (self._operand(store, token) for token in tokens[3:7])
        x, y = polar(cx, cy, r, theta * (math.pi / 180))
        return format_number(x if tokens[2] == "polarx" else y)

    def _vmap(self, store: VariableStore, tokens: List[str]) -> str:
        if tokens[2] != "vmap":
            raise DeckshRuntimeError("use: v = vmap data min1 max1 min2 max2", directive="assign")
        data, min1, max1, min2, max2 = (self._operand(store, token) for token in tokens[3:8])
        if max1 == min1:
            raise DeckshRuntimeError(
                f"you cannot divide by zero (empty range {format_number(min1)} to {format_number(max1)})",
                directive="assign",
            )
        return format_number(vmap(data, min1, max1, min2, max2))


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    file: Optional[str]
    line: int
    directive: str
    tokens: List[str]
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(
        self,
        *,
        file: Optional[str],
        line: int,
        tokens: List[str],
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            file=file,
            line=line,
            directive=tokens[0],
            tokens=list(tokens),
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry


class Interpreter:
    def __init__(
        self,
        *,
        filename: Optional[str] = None,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry = self.services.hook_registry
        self.emitter = MarkupEmitter(output_sink)
        self.store = VariableStore()
        self.assignments = Assignments(np.random.default_rng(seed))
        self.directives = Directives()

        # Attach extension-provided directives. These cannot override
        # existing directive names.
        for names, min_tokens, max_tokens, impl, usage in self.services.directives:
            self.directives.register_extension_directive(
                names=names,
                min_tokens=min_tokens,
                max_tokens=max_tokens,
                impl=impl,
                usage=usage,
            )

        self.logger = StateLogger(verbose=verbose)
        self.records: List[ErrorRecord] = []
        self.io_log: List[Dict[str, Any]] = []
        self._include_stack: List[str] = []

    def compile(self, lines: Iterable[str], filename: Optional[str] = None) -> CompileResult:
        """Compile a whole script, collecting directive failures.

        Only a failure to read the script itself (``DeckshStreamError``) is
        raised; everything else ends up in the returned result.
        """
        if filename is not None:
            self.filename = filename
        self._emit_event("program_start", self)
        try:
            self.process(lines, self.filename)
        except DeckshError:
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions so callers can report
            # them with the line that was being compiled.
            last = self.logger.entries[-1] if self.logger.entries else None
            raise DeckshRuntimeError(
                f"Internal compiler error: {exc}",
                line=last.line if last else None,
                directive=last.directive if last else None,
            ) from exc
        result = CompileResult(list(self.records))
        self._emit_event("program_end", self, result)
        return result

    def compile_text(self, source: str, filename: Optional[str] = None) -> CompileResult:
        return self.compile(source.splitlines(), filename)

    def process(self, lines: Iterable[str], filename: Optional[str] = None) -> None:
        source = LineSource(lines, filename)
        for lineno, text in source:
            record = self.tokenize_record(text, lineno, filename)
            if record is None:
                continue
            self.execute(record, source)

    def tokenize(self, text: str, filename: Optional[str] = None, line: int = 1) -> List[str]:
        tokens = scan_line(text, filename or "<stdin>", line)
        for i in range(1, len(tokens)):
            tokens[i] = self.store.get(tokens[i])
        return tokens

    def tokenize_record(self, text: str, line: int, filename: Optional[str]) -> Optional[TokenRecord]:
        """Tokenize one physical line; None for comments, blank lines and scan failures."""
        if text.startswith("#"):
            return None
        try:
            tokens = self.tokenize(text, filename, line)
        except DeckshParseError as error:
            self._collect(ErrorRecord(line, str(error), filename), error)
            return None
        if not tokens:
            return None
        return TokenRecord(tokens, line, text, filename)

    def execute(self, record: TokenRecord, lines: Optional[LineSource] = None) -> None:
        try:
            self.dispatch(record, lines)
        except DeckshRuntimeError as error:
            if error.line is None:
                error.line = record.line
            self._collect(ErrorRecord(record.line, error.message, record.file), error)

    def dispatch(self, record: TokenRecord, lines: Optional[LineSource] = None) -> None:
        tokens = record.tokens
        self._log_step(record)
        self._emit_event("before_directive", self, record)
        if not self.directives.invoke(self, record, lines):
            if len(tokens) > 1 and tokens[1] == "=":
                self.assignments.assign(self.store, tokens)
            elif Assignments.is_compound(tokens):
                self.assignments.compound(self.store, tokens)
            # anything else is passed over silently
        self._emit_event("after_directive", self, record)

    # ---- helpers used by directives ----

    def number(self, token: str, *, resolve: bool = False) -> float:
        text = self.store.get(token) if resolve else token
        try:
            return parse_number(text)
        except ValueError:
            raise DeckshRuntimeError(f"{token} is not a number")

    def filename_arg(self, token: str) -> str:
        if len(token) < 3 or not is_quoted(token):
            raise DeckshRuntimeError(f"{token} is not a valid filename")
        return token[1:-1]

    def read_lines(self, name: str) -> List[str]:
        try:
            with self.services.file_opener.open_text(name) as handle:
                return [raw.rstrip("\r\n") for raw in handle]
        except (OSError, UnicodeDecodeError) as exc:
            raise DeckshRuntimeError(f"cannot read {name}: {exc}")

    def include(self, name: str) -> None:
        key = os.path.abspath(name)
        if key in self._include_stack:
            raise DeckshRuntimeError(f"include cycle: {name} is already being included")
        try:
            handle = self.services.file_opener.open_text(name)
        except OSError as exc:
            raise DeckshRuntimeError(f"cannot include {name}: {exc}")
        self._include_stack.append(key)
        try:
            with handle:
                self.process(handle, name)
        except DeckshStreamError as exc:
            raise DeckshRuntimeError(str(exc))
        finally:
            self._include_stack.pop()

    def load_data(self, record: TokenRecord, lines: Optional[LineSource]) -> None:
        """Copy the block up to ``edata`` into the named file as tab-separated pairs."""
        if lines is None:
            return
        name = self.filename_arg(record.tokens[1])
        try:
            handle = self.services.file_opener.create_text(name)
        except OSError as exc:
            raise DeckshRuntimeError(f"{' '.join(record.tokens)} ({exc})")
        with handle:
            for _lineno, text in lines:
                if text.strip() == DATA_END:
                    break
                fields = text.split()
                if len(fields) != 2:
                    continue
                handle.write(f"{fields[0]}\t{fields[1]}\n")

    # ---- loops ----

    def run_loop(self, record: TokenRecord, lines: Optional[LineSource]) -> None:
        # A loop header replayed from inside another loop body has no lines
        # to read; it is passed over like an unknown directive.
        if lines is None:
            return
        tokens = record.tokens
        body = self._buffer_body(lines)
        kind = classify_loop(tokens)
        if kind == LOOP_NUMERIC:
            values = self._numeric_values(tokens)
        elif kind == LOOP_LIST:
            values = [f'"{unquote(element)}"' for element in tokens[4:-1]]
        elif kind == LOOP_FILE:
            name = tokens[3][1:-1]
            values = [f'"{text}"' for text in self.read_lines(name) if text]
        else:
            raise DeckshRuntimeError(f"incorrect for loop: {' '.join(tokens)}", directive="for")
        loop = LoopDescriptor(variable=tokens[1], kind=kind, values=values, body=body)
        for records in loop.iterations():
            for body_record in records:
                self.execute(body_record)

    def _buffer_body(self, lines: LineSource) -> List[TokenRecord]:
        # Body lines are substituted now, against the store as it is at loop
        # entry. The first terminator ends the body; there is no nesting depth.
        body: List[TokenRecord] = []
        for lineno, text in lines:
            record = self.tokenize_record(text, lineno, lines.filename)
            if record is None:
                continue
            if record.tokens[0] == LOOP_END:
                break
            body.append(record)
        return body

    def _numeric_values(self, tokens: List[str]) -> Iterator[str]:
        begin = self.number(tokens[3])
        end = self.number(tokens[4])
        incr = self.number(tokens[5]) if len(tokens) > 5 else 1.0
        if incr <= 0:
            raise DeckshRuntimeError(f"for loop increment must be positive, got {tokens[5]}", directive="for")

        def values() -> Iterator[str]:
            k = 0
            v = begin
            while v <= end:
                yield format_number(v)
                k += 1
                v = begin + k * incr

        return values()

    # ---- bookkeeping ----

    def _collect(self, record: ErrorRecord, error: DeckshError) -> None:
        self.records.append(record)
        self._emit_event("on_error", self, error)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except DeckshError:
            raise
        except Exception as exc:
            last = self.logger.entries[-1] if self.logger.entries else None
            raise DeckshRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                line=last.line if last else None,
                directive="ext",
            )

    def _log_step(self, record: TokenRecord) -> None:
        env_snapshot = self.store.snapshot() if self.verbose else None
        self.logger.record(file=record.file, line=record.line, tokens=record.tokens, env_snapshot=env_snapshot)


class TraceFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def format_text(self, verbose: bool) -> str:
        lines = ["Directive trace (oldest first):"]
        for entry in self.interpreter.logger.entries:
            where = f"{entry.file}, " if entry.file else ""
            lines.append(f"  [{entry.state_id}] {where}line {entry.line}: {' '.join(entry.tokens)}")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Store snapshot: {snapshot}")
        for record in self.interpreter.records:
            lines.append(f"Error: {record}")
        return "\n".join(lines)

    def to_json(self) -> str:
        steps: List[Dict[str, Any]] = []
        for entry in self.interpreter.logger.entries:
            step: Dict[str, Any] = {
                "step_index": entry.step_index,
                "state_id": entry.state_id,
                "line": entry.line,
                "directive": entry.directive,
                "tokens": entry.tokens,
            }
            if entry.file:
                step["file"] = entry.file
            if entry.env_snapshot is not None:
                step["env_snapshot"] = entry.env_snapshot
            steps.append(step)
        data = {
            "steps": steps,
            "io": self.interpreter.io_log,
            "errors": [
                {"file": r.file, "line": r.line, "message": r.message} for r in self.interpreter.records
            ],
        }
        return json.dumps(data, indent=2)
