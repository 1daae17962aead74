import argparse
import sys
from typing import List, Optional

from lexer import DeckshError, DeckshStreamError
from extensions import DeckshExtensionError, load_runtime_services
from interpreter import Interpreter, TraceFormatter


EXIT_OK = 0
EXIT_INPUT = 1
EXIT_OUTPUT = 2
EXIT_COMPILE = 3


def _tolerate_undecodable(stream) -> None:
    # scripts and chart output may carry bytes that are not valid UTF-8
    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(errors="surrogateescape")


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="decksh: compile the deck shorthand into deck markup")
    parser.add_argument("file", nargs="?", help="Script to compile (standard input when omitted)")
    parser.add_argument("-o", dest="output", default=None, help="Write markup to this file instead of standard output")
    parser.add_argument("--ext", action="append", default=[], help="Load an extension module (repeatable)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the random assignment form")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record store snapshots in the trace")
    parser.add_argument("--trace", action="store_true", help="Print the directive trace to stderr")
    parser.add_argument("--trace-json", action="store_true", help="Print the directive trace as JSON to stderr")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.ext)
    except DeckshExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return EXIT_INPUT

    filename = args.file
    if filename is None:
        source = sys.stdin
        _tolerate_undecodable(source)
    else:
        try:
            source = services.file_opener.open_text(filename)
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return EXIT_INPUT

    with source:
        if args.output is None:
            dest = sys.stdout
            _tolerate_undecodable(dest)
        else:
            try:
                dest = services.file_opener.create_text(args.output)
            except OSError as exc:
                print(f"Failed to create {args.output}: {exc}", file=sys.stderr)
                return EXIT_OUTPUT

        interpreter = Interpreter(
            filename=filename,
            verbose=args.verbose,
            services=services,
            output_sink=dest.write,
            seed=args.seed,
        )
        try:
            result = interpreter.compile(source, filename)
        except DeckshStreamError as exc:
            # failures collected before the read broke are still reported
            for record in interpreter.records:
                print(record, file=sys.stderr)
            print(f"StreamError: {exc}", file=sys.stderr)
            return EXIT_COMPILE
        except DeckshError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return EXIT_COMPILE
        finally:
            if dest is not sys.stdout:
                dest.close()
            else:
                dest.flush()

    if args.trace or args.trace_json:
        formatter = TraceFormatter(interpreter)
        if args.trace:
            print(formatter.format_text(verbose=args.verbose), file=sys.stderr)
        if args.trace_json:
            print(formatter.to_json(), file=sys.stderr)

    for record in result.records:
        print(record, file=sys.stderr)
    return EXIT_OK if result.succeeded else EXIT_COMPILE


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
