from __future__ import annotations

import hashlib
import importlib.util
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple

from lexer import DeckshError


EXTENSION_API_VERSION = 1

STREAM_ERRORS = "surrogateescape"


class DeckshExtensionError(DeckshError):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# ---- Collaborators ----

@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


class ProcessRunner:
    """Runs external programs directly, without a shell, and captures their output.

    There is no timeout: a program that never exits blocks the compilation.
    """

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(self, argv: Sequence[str]) -> ProcessResult:
        completed = subprocess.run(list(argv), capture_output=True)
        # output is passed on byte for byte, undecodable bytes included
        return ProcessResult(
            completed.returncode,
            (completed.stdout or b"").decode("utf-8", errors=STREAM_ERRORS),
            (completed.stderr or b"").decode("utf-8", errors=STREAM_ERRORS),
        )


class FileOpener:
    """Opens scripts and the files named by include, data, grid and for directives.

    Bytes that are not valid UTF-8 survive a read and a later write unchanged.
    """

    def open_text(self, path: str) -> TextIO:
        return open(path, "r", encoding="utf-8", errors=STREAM_ERRORS)

    def create_text(self, path: str) -> TextIO:
        return open(path, "w", encoding="utf-8", errors=STREAM_ERRORS, newline="")


# ---- Hooks ----

@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # directives are registered into interpreter.directives at attach time
    directives: List[Tuple[Tuple[str, ...], int, Optional[int], Callable[..., Any], str]] = field(default_factory=list)
    process_runner: ProcessRunner = field(default_factory=ProcessRunner)
    file_opener: FileOpener = field(default_factory=FileOpener)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- directives ----
    def register_directive(
        self,
        names: Sequence[str],
        min_tokens: int,
        max_tokens: Optional[int],
        impl: Callable[..., Any],
        *,
        usage: str = "",
    ) -> None:
        if isinstance(names, str):
            names = (names,)
        if not names or not all(names):
            raise DeckshExtensionError("Directive name must be non-empty")
        self._services.directives.append(
            (tuple(names), int(min_tokens), None if max_tokens is None else int(max_tokens), impl, usage)
        )

    def directive(self, *names: str, min_tokens: int = 1, max_tokens: Optional[int] = None, usage: str = ""):
        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register_directive(names, min_tokens, max_tokens, fn, usage=usage)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"decksh_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise DeckshExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise DeckshExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def build_default_services(
    *,
    process_runner: Optional[ProcessRunner] = None,
    file_opener: Optional[FileOpener] = None,
) -> RuntimeServices:
    services = RuntimeServices()
    if process_runner is not None:
        services.process_runner = process_runner
    if file_opener is not None:
        services.file_opener = file_opener
    return services


def load_runtime_services(paths: Sequence[str], **collaborators: Any) -> RuntimeServices:
    services = build_default_services(**collaborators)
    for path in [os.path.abspath(p) for p in paths]:
        module = load_extension_module(path)
        api_version = getattr(module, "DECKSH_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise DeckshExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "decksh_register", None)
        if register is None or not callable(register):
            raise DeckshExtensionError(f"Extension {path} must define callable decksh_register(ext)")
        ext_name = getattr(module, "DECKSH_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        register(ext)
    return services
