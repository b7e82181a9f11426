"""RSL entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import RSLExtensionError, load_runtime_services
from interpreter import Interpreter, RSLRuntimeError, TracebackFormatter, format_error
from lexer import RSLError
from repl import run_repl


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rsl", description="RSL script interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument(
        "--ext",
        dest="extensions",
        action="append",
        default=[],
        metavar="PATH",
        help="Load an extension module (repeatable)",
    )
    parser.add_argument("--cwd", dest="working_dir", default=None, metavar="DIR", help="Directory imports resolve against")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        services = load_runtime_services(args.extensions)
    except RSLExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services, working_dir=args.working_dir)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        verbose=args.verbose,
        services=services,
        working_dir=args.working_dir,
    )
    try:
        interpreter.run()
    except RSLRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    except RSLError as error:
        print(format_error(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
