"""Interactive read-eval-print loop for RSL.

Input is buffered line by line; a blank line evaluates the buffered block
against one persistent top-level environment.
"""

from __future__ import annotations
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from extensions import RuntimeServices
from interpreter import (
    NULL,
    TYPE_NULL,
    Environment,
    Interpreter,
    RSLRuntimeError,
    TracebackFormatter,
    Value,
    format_error,
    format_value,
)
from lexer import RSLError

REPL_FILENAME = "<repl>"

BUFFERING = "BUFFERING"
READY_TO_EVALUATE = "READY_TO_EVALUATE"

PROMPT = ">>> "
CONTINUATION_PROMPT = "... "


@dataclass
class ReplResult:
    value: Value = NULL
    error: Optional[RSLError] = None
    # text passed to print() while the block ran
    output: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class ReplSession:
    def __init__(self, interpreter: Interpreter, filename: str = REPL_FILENAME) -> None:
        self.interpreter = interpreter
        self.filename = filename
        self.env: Environment = interpreter.new_top_level_env()
        interpreter.global_env = self.env
        self.state = BUFFERING
        self.buffer: List[str] = []

    @property
    def pending(self) -> bool:
        return bool(self.buffer)

    def feed(self, line: str) -> Optional[ReplResult]:
        if line.strip():
            self.buffer.append(line)
            return None
        if not self.buffer:
            return None
        self.state = READY_TO_EVALUATE
        source = "\n".join(self.buffer)
        self.buffer = []
        try:
            return self._evaluate(source)
        finally:
            self.state = BUFFERING

    def reset(self) -> None:
        self.buffer = []
        self.state = BUFFERING

    def _evaluate(self, source: str) -> ReplResult:
        io_log = self.interpreter.io_log
        start = len(io_log)
        result = ReplResult()
        try:
            result.value = self.interpreter.run_source(source, self.filename, env=self.env)
        except RSLError as error:
            result.error = error
        result.output = [entry["text"] for entry in io_log[start:] if entry.get("event") == "print"]
        return result


def format_result(result: ReplResult) -> str:
    if result.error is not None:
        return format_error(result.error)
    if result.value.type == TYPE_NULL:
        return ""
    return format_value(result.value, nested=True)


def run_repl(
    verbose: bool = False,
    services: Optional[RuntimeServices] = None,
    *,
    read_line: Callable[[str], str] = input,
    working_dir: Optional[str] = None,
) -> int:
    print("\x1b[38;2;153;221;255mRSL\033[0m REPL. Enter statements, blank line to run buffer.")  # "RSL" in light blue
    interpreter = Interpreter(filename=REPL_FILENAME, verbose=verbose, services=services, working_dir=working_dir)
    session = ReplSession(interpreter)

    while True:
        prompt = CONTINUATION_PROMPT if session.pending else PROMPT
        try:
            line = read_line(prompt)
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            print()
            session.reset()
            continue

        result = session.feed(line)
        if result is None:
            continue
        if isinstance(result.error, RSLRuntimeError):
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(result.error, verbose=interpreter.verbose), file=sys.stderr)
            continue
        text = format_result(result)
        if result.error is not None:
            print(text, file=sys.stderr)
        elif text:
            print(text)

    return 0
