#!/usr/bin/env python
import sys
import argparse
from pathlib import Path

from loguru import logger

from gentlang import Runtime
from gentlang.errors import GentError


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _configure_tracing() -> None:
    from opentelemetry import trace
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
    trace.set_tracer_provider(provider)


def _find_program(target: str) -> Path:
    potential_paths = [Path(target), Path(f"{target}.gnt"), Path("examples") / target, Path("examples") / f"{target}.gnt"]
    for p in potential_paths:
        if p.exists() and p.is_file():
            return p
    print(f"Error: Could not find program file for '{target}'")
    print("Checked: " + ", ".join(str(p) for p in potential_paths))
    sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="gent", description="GENT - a language for AI agent workflows")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a .gnt program")
    run_parser.add_argument("file", help="Path of the program (e.g. hello or examples/hello.gnt)")
    run_parser.add_argument("--mock", action="store_true", help="Use the offline mock provider (no API calls)")
    run_parser.add_argument("--mock-response", metavar="TEXT", help="Fixed reply for the mock provider (implies --mock)")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Log provider calls, tool calls and retries")
    run_parser.add_argument("--trace", action="store_true", help="Print OpenTelemetry spans to stderr")

    check_parser = subparsers.add_parser("check", help="Parse and check a program without running it")
    check_parser.add_argument("file", help="Path of the program")
    check_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    _configure_logging(args.verbose)
    program_file = _find_program(args.file)
    try:
        if args.command == "check":
            Runtime(echo=False).load(program_file)
            print(f"{program_file}: OK")
            return 0
        if args.trace:
            _configure_tracing()
        mock = args.mock or args.mock_response is not None
        rt = Runtime(mock=mock, mock_response=args.mock_response)
        rt.load(program_file)
        rt.run()
    except GentError as e:
        print(f"[{e.kind}] {e}", file=sys.stderr)
        sys.exit(1)
    return 0


if __name__ == "__main__":
    main()
