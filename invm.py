"""InVM entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import Interpreter, LoadError, TracebackFormatter
from lexer import LexicalError, ParseError
from memory import InVMRuntimeError


SOURCE_EXTENSION = ".invm"


def strip_comments(text: str) -> str:
    """Drop everything from ';' to the end of each line, keeping the newlines."""
    return "\n".join(line.split(";", 1)[0] for line in text.split("\n"))


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="InVM stock market assembly interpreter")
    parser.add_argument("program", help=f"Source file path ending in {SOURCE_EXTENSION}, or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit machine snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the market simulation")
    parser.add_argument("--max-steps", type=int, default=None, help="Abort after this many executed instructions")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        if not filename.endswith(SOURCE_EXTENSION):
            print(f"Expected a {SOURCE_EXTENSION} file, got {filename}", file=sys.stderr)
            return 1
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        interpreter = Interpreter(
            source=strip_comments(source_text),
            filename=filename,
            verbose=args.verbose,
            seed=args.seed,
            max_steps=args.max_steps,
        )
    except (LexicalError, ParseError) as error:
        print(f"{error.__class__.__name__}: {error}", file=sys.stderr)
        return 1
    except LoadError as error:
        where = f" at {error.location.file}:{error.location.line}" if error.location else ""
        print(f"{error.__class__.__name__}: {error.message}{where}", file=sys.stderr)
        return 1

    try:
        interpreter.run()
    except InVMRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
