"""RSL extension: string natives."""

from __future__ import annotations

from typing import Any, List

from extensions import ExtensionAPI
from interpreter import TYPE_STR, Interpreter, RSLRuntimeError, Value, expect, make_array, make_num, make_str

RSL_EXTENSION_NAME = "strings"
RSL_EXTENSION_API_VERSION = 1


def _split_lines(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    text = expect(args[0], TYPE_STR, "stringSplitLines", location)
    return make_array(make_str(line) for line in text.splitlines())


def _split(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    text = expect(args[0], TYPE_STR, "stringSplit", location)
    separator = expect(args[1], TYPE_STR, "stringSplit", location)
    if separator == "":
        raise RSLRuntimeError("stringSplit: separator must not be empty", location=location, kind="string")
    return make_array(make_str(part) for part in text.split(separator))


def _length(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_num(len(expect(args[0], TYPE_STR, "stringLen", location)))


def _trim(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_str(expect(args[0], TYPE_STR, "stringTrim", location).strip())


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="strings", version="0.1.0")
    ext.register_native("stringSplitLines", 1, 1, _split_lines, doc="stringSplitLines(text) -> ARR")
    ext.register_native("stringSplit", 2, 2, _split, doc="stringSplit(text, separator) -> ARR")
    ext.register_native("stringLen", 1, 1, _length, doc="stringLen(text) -> NUM")
    ext.register_native("stringTrim", 1, 1, _trim, doc="stringTrim(text) -> STR")
