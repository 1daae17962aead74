"""Shared fixtures: an in-memory file opener, a scripted process runner and a compile helper."""

import io
from typing import Dict, List, Optional, Sequence

import pytest

from extensions import FileOpener, ProcessResult, ProcessRunner, build_default_services
from interpreter import Interpreter


class MemoryFile(io.StringIO):
    def __init__(self, files: Dict[str, str], path: str) -> None:
        super().__init__()
        self._files = files
        self._path = path

    def close(self) -> None:
        if not self.closed:
            self._files[self._path] = self.getvalue()
        super().close()


class FakeFileOpener(FileOpener):
    """Dict-backed file opener; missing names raise FileNotFoundError."""

    def __init__(self, files: Optional[Dict[str, str]] = None) -> None:
        self.files: Dict[str, str] = dict(files or {})

    def open_text(self, path: str):
        if path not in self.files:
            raise FileNotFoundError(2, "No such file or directory", path)
        return io.StringIO(self.files[path])

    def create_text(self, path: str):
        if path.startswith("/readonly/"):
            raise PermissionError(13, "Permission denied", path)
        return MemoryFile(self.files, path)


class FakeProcessRunner(ProcessRunner):
    """Records invocations and replies with canned results."""

    def __init__(self) -> None:
        self.programs: Dict[str, ProcessResult] = {}
        self.calls: List[List[str]] = []

    def which(self, name: str) -> Optional[str]:
        path = f"/usr/bin/{name}"
        return path if path in self.programs else None

    def run(self, argv: Sequence[str]) -> ProcessResult:
        self.calls.append(list(argv))
        result = self.programs.get(argv[0])
        if result is None:
            raise FileNotFoundError(2, "No such file or directory", argv[0])
        return result


class Compiled:
    def __init__(self, interpreter: Interpreter, result, output: List[str]) -> None:
        self.interpreter = interpreter
        self.result = result
        self.text = "".join(output)

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines()

    @property
    def errors(self) -> List[str]:
        return [record.message for record in self.result.records]


@pytest.fixture
def files():
    return FakeFileOpener()


@pytest.fixture
def runner():
    return FakeProcessRunner()


@pytest.fixture
def compile_deck(files, runner):
    """Compile a script held in a string, returning output and collected errors."""

    def _compile(source: str, *, seed: Optional[int] = 1, verbose: bool = False, filename: str = "test.dsh") -> Compiled:
        output: List[str] = []
        services = build_default_services(process_runner=runner, file_opener=files)
        interpreter = Interpreter(services=services, output_sink=output.append, seed=seed, verbose=verbose)
        result = interpreter.compile_text(source, filename)
        return Compiled(interpreter, result, output)

    return _compile
