"""RSL extension: file system and shell natives.

Paths are used as given; relative paths resolve against the process working
directory. No sandboxing is applied.
"""

from __future__ import annotations

import platform
import subprocess
from typing import Any, Dict, List

from extensions import ExtensionAPI
from interpreter import NULL, TYPE_STR, Interpreter, RSLRuntimeError, Value, expect, make_str

RSL_EXTENSION_NAME = "files"
RSL_EXTENSION_API_VERSION = 1


def _read_file(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    path = expect(args[0], TYPE_STR, "readFile", location)
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            data = handle.read()
    except OSError as exc:
        raise RSLRuntimeError(f"Failed to read '{path}': {exc.strerror or exc}", location=location, kind="io")
    return make_str(data)


def _write_file(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    path = expect(args[0], TYPE_STR, "writeFile", location)
    text = expect(args[1], TYPE_STR, "writeFile", location)
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(text)
    except OSError as exc:
        raise RSLRuntimeError(f"Failed to write '{path}': {exc.strerror or exc}", location=location, kind="io")
    return NULL


def _run_shell_command(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    # Returns captured stdout; a non-zero exit status is a runtime error.
    cmd = expect(args[0], TYPE_STR, "runShellCommand", location)
    run_kwargs: Dict[str, Any] = {"stdout": subprocess.PIPE, "stderr": subprocess.PIPE, "text": True, "shell": True}
    if platform.system().lower().startswith("win"):
        run_kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    try:
        completed = subprocess.run(cmd, **run_kwargs)
    except OSError as exc:
        raise RSLRuntimeError(f"runShellCommand failed: {exc}", location=location, kind="io")
    out = completed.stdout or ""
    err = completed.stderr or ""
    interpreter.io_log.append({"event": "shell", "cmd": cmd, "code": completed.returncode, "stdout": out, "stderr": err})
    if completed.returncode != 0:
        detail = err.strip() or out.strip()
        raise RSLRuntimeError(
            f"runShellCommand exited with status {completed.returncode}: {detail}",
            location=location,
            kind="io",
        )
    return make_str(out)


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="files", version="0.1.0")
    ext.register_native("readFile", 1, 1, _read_file, doc="readFile(path) -> STR")
    ext.register_native("writeFile", 2, 2, _write_file, doc="writeFile(path, text) -> null")
    ext.register_native("runShellCommand", 1, 1, _run_shell_command, doc="runShellCommand(cmd) -> STR stdout")
