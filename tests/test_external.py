"""Directives that touch files or other programs: include, data, grid and chart."""

import subprocess

from extensions import ProcessResult, ProcessRunner


class TestInclude:
    def test_included_lines_are_compiled(self, compile_deck, files):
        files.files["part.dsh"] = "w = 3\nrect 1 2 w 4\n"
        compiled = compile_deck('include "part.dsh"\nsquare 0 0 w\n')
        assert compiled.lines == [
            '<rect xp="1" yp="2" wp="3" hp="4"/>',
            '<rect xp="0" yp="0" wp="3" hr="100"/>',
        ]

    def test_errors_name_the_included_file(self, compile_deck, files):
        files.files["bad.dsh"] = "deck\ncanvas 1\n"
        compiled = compile_deck('include "bad.dsh"\n')
        record = compiled.result.last_error
        assert (record.file, record.line, record.message) == ("bad.dsh", 2, "canvas width height")
        assert len(compiled.result.records) == 1

    def test_missing_file(self, compile_deck):
        compiled = compile_deck('include "nope.dsh"\n')
        assert compiled.errors[0].startswith("cannot include nope.dsh")

    def test_name_must_be_quoted(self, compile_deck):
        assert compile_deck("include part\n").errors == ["part is not a valid filename"]

    def test_cycle_is_reported(self, compile_deck, files):
        files.files["a.dsh"] = 'include "b.dsh"\n'
        files.files["b.dsh"] = 'include "a.dsh"\n'
        compiled = compile_deck('include "a.dsh"\n')
        assert compiled.errors == ["include cycle: a.dsh is already being included"]
        assert compiled.result.records[0].file == "b.dsh"


class TestData:
    def test_block_is_written_as_tab_separated(self, compile_deck, files):
        compiled = compile_deck('data "sales.d"\nJan 10\nFeb 20 extra\nMar 30\nedata\ncanvas 1 2\n')
        assert files.files["sales.d"] == "Jan\t10\nMar\t30\n"
        assert compiled.lines == ['<canvas width="1" height="2"/>']
        assert compiled.result.succeeded

    def test_create_failure(self, compile_deck):
        compiled = compile_deck('data "/readonly/x.d"\nA 1\nedata\n')
        assert len(compiled.errors) == 1
        assert compiled.errors[0].startswith('data "/readonly/x.d" (')


class TestGrid:
    def test_items_are_placed_and_wrapped(self, compile_deck, files):
        files.files["items.txt"] = "circle x y 2\ncircle x y 2\n\ncircle x y 2\nno\n"
        compiled = compile_deck('grid "items.txt" 10 80 20 10 30\n')
        assert compiled.lines == [
            '<ellipse xp="10" yp="80" wp="2" hr="100"/>',
            '<ellipse xp="30" yp="80" wp="2" hr="100"/>',
            '<ellipse xp="10" yp="70" wp="2" hr="100"/>',
        ]
        assert compiled.result.succeeded

    def test_item_errors_are_collected(self, compile_deck, files):
        files.files["items.txt"] = "canvas x y 3\nsquare x y 1\n"
        compiled = compile_deck('grid "items.txt" 0 0 5 5 100\n')
        assert compiled.errors == ["canvas width height"]
        assert compiled.lines == ['<rect xp="5" yp="0" wp="1" hr="100"/>']

    def test_non_numeric_field(self, compile_deck, files):
        files.files["items.txt"] = "square x y 1\n"
        compiled = compile_deck('grid "items.txt" 0 0 step 5 100\n')
        assert compiled.errors == ["step is not a number"]

    def test_cursor_uses_shortest_number_text(self, compile_deck, files):
        files.files["items.txt"] = "square x y 1\n"
        compiled = compile_deck('grid "items.txt" 1234567 0.5 1 1 9999999\n')
        assert compiled.lines == ['<rect xp="1.234567e+06" yp="0.5" wp="1" hr="100"/>']


class TestChart:
    def test_output_is_inlined(self, compile_deck, runner):
        runner.programs["/usr/bin/dchart"] = ProcessResult(0, '<rect xp="1"/>', "")
        compiled = compile_deck('f = "sales.d"\ndchart -bar f\n')
        assert runner.calls == [["/usr/bin/dchart", "-bar", "sales.d"]]
        assert compiled.text == '<rect xp="1"/>\n'
        assert compiled.interpreter.io_log[0]["event"] == "CHART"

    def test_missing_program(self, compile_deck):
        compiled = compile_deck("chart -bar\n")
        assert compiled.errors == ["chart - executable file not found in $PATH"]

    def test_failing_program(self, compile_deck, runner):
        runner.programs["/usr/bin/dchart"] = ProcessResult(1, "", "bad flag\n")
        compiled = compile_deck("dchart -zz\n")
        assert compiled.errors == ["[dchart -zz] - bad flag"]
        assert compiled.text == ""

    def test_output_keeps_undecodable_bytes_and_line_endings(self, compile_deck, runner):
        runner.programs["/usr/bin/dchart"] = ProcessResult(0, "caf\udce9\r\n", "")
        compiled = compile_deck("dchart\ncanvas 1 2\n")
        assert compiled.text == 'caf\udce9\r\n\n<canvas width="1" height="2"/>\n'
        assert compiled.result.succeeded

    def test_decode_failure_is_collected(self, compile_deck, runner, monkeypatch):
        runner.programs["/usr/bin/dchart"] = ProcessResult(0, "", "")

        def undecodable(argv):
            raise UnicodeDecodeError("utf-8", b"caf\xe9", 3, 4, "invalid continuation byte")

        monkeypatch.setattr(runner, "run", undecodable)
        compiled = compile_deck("dchart\ncanvas 1 2\n")
        assert len(compiled.errors) == 1
        assert compiled.errors[0].startswith("[dchart] - 'utf-8' codec can't decode")
        assert compiled.lines == ['<canvas width="1" height="2"/>']


class TestProcessRunner:
    def test_output_is_captured_as_bytes(self, monkeypatch):
        captured = {}

        def fake_run(argv, **kwargs):
            captured.update(kwargs)
            return subprocess.CompletedProcess(argv, 0, b"caf\xe9\r\n", b"warn\xff")

        monkeypatch.setattr("extensions.subprocess.run", fake_run)
        result = ProcessRunner().run(["dchart", "-bar"])
        assert "text" not in captured
        assert result.stdout.encode("utf-8", "surrogateescape") == b"caf\xe9\r\n"
        assert result.stderr.encode("utf-8", "surrogateescape") == b"warn\xff"
