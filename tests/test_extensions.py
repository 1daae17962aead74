"""Extension loading, extension directives and hooks."""

import textwrap

import pytest

from extensions import DeckshExtensionError, ExtensionAPI, build_default_services, load_runtime_services
from interpreter import Interpreter


STAMP_EXTENSION = textwrap.dedent(
    '''
    DECKSH_EXTENSION_NAME = "stamp"


    def decksh_register(ext):
        ext.metadata(name="stamp", version="1.2.0")

        @ext.directive("stamp", min_tokens=2, max_tokens=2, usage="{name} \\"text\\"")
        def stamp(interp, args, record, lines):
            interp.emitter.write("<!-- %s -->" % args[1][1:-1])
    '''
)


def compile_with(services, source):
    output = []
    interpreter = Interpreter(services=services, output_sink=output.append)
    result = interpreter.compile_text(source, "ext.dsh")
    return "".join(output), result


class TestLoading:
    def test_directive_from_file(self, tmp_path):
        path = tmp_path / "stamp_ext.py"
        path.write_text(STAMP_EXTENSION, encoding="utf-8")
        services = load_runtime_services([str(path)])
        assert services.metadata[0].name == "stamp"
        text, result = compile_with(services, 'stamp "draft"\n')
        assert text == "<!-- draft -->\n"
        assert result.succeeded

    def test_extension_directive_arity(self, tmp_path):
        path = tmp_path / "stamp_ext.py"
        path.write_text(STAMP_EXTENSION, encoding="utf-8")
        _, result = compile_with(load_runtime_services([str(path)]), "stamp\n")
        assert result.last_error.message == 'stamp "text"'

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeckshExtensionError, match="Extension not found"):
            load_runtime_services([str(tmp_path / "nope.py")])

    def test_register_function_required(self, tmp_path):
        path = tmp_path / "empty_ext.py"
        path.write_text("VALUE = 1\n", encoding="utf-8")
        with pytest.raises(DeckshExtensionError, match="decksh_register"):
            load_runtime_services([str(path)])

    def test_api_version_mismatch(self, tmp_path):
        path = tmp_path / "future_ext.py"
        path.write_text("DECKSH_EXTENSION_API_VERSION = 99\n\ndef decksh_register(ext):\n    pass\n", encoding="utf-8")
        with pytest.raises(DeckshExtensionError, match="requires API 99"):
            load_runtime_services([str(path)])


class TestRegistration:
    def test_builtin_cannot_be_overridden(self):
        services = build_default_services()
        ExtensionAPI(services=services, ext_name="bad").register_directive("rect", 1, None, lambda *a: None)
        with pytest.raises(DeckshExtensionError, match="Cannot override existing directive 'rect'"):
            Interpreter(services=services)

    def test_empty_name_rejected(self):
        api = ExtensionAPI(services=build_default_services(), ext_name="bad")
        with pytest.raises(DeckshExtensionError):
            api.register_directive("", 1, None, lambda *a: None)


class TestHooks:
    def test_events_fire_in_order(self):
        services = build_default_services()
        api = ExtensionAPI(services=services, ext_name="probe")
        seen = []
        api.on_event("program_start", lambda interp: seen.append("start"))
        api.on_event("before_directive", lambda interp, record: seen.append("before " + record.tokens[0]))
        api.on_event("after_directive", lambda interp, record: seen.append("after " + record.tokens[0]))
        api.on_event("on_error", lambda interp, error: seen.append("error " + error.message))
        api.on_event("program_end", lambda interp, result: seen.append("end %d" % len(result.records)))
        compile_with(services, "deck\ncanvas 1\n")
        assert seen == [
            "start",
            "before deck",
            "after deck",
            "before canvas",
            "error canvas width height",
            "end 1",
        ]

    def test_priority_orders_handlers(self):
        services = build_default_services()
        api = ExtensionAPI(services=services, ext_name="probe")
        seen = []

        @api.on_event("program_start", priority=1)
        def low(interp):
            seen.append("low")

        @api.on_event("program_start", priority=10)
        def high(interp):
            seen.append("high")

        compile_with(services, "")
        assert seen == ["high", "low"]

    def test_failing_hook_is_reported(self):
        services = build_default_services()
        api = ExtensionAPI(services=services, ext_name="probe")

        def explode(interp, record):
            raise ValueError("boom")

        api.on_event("after_directive", explode)
        _, result = compile_with(services, "deck\n")
        assert result.last_error.message == "Extension hook 'after_directive' failed: boom"
