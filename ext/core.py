"""RSL extension: printing, conversion and JSON natives."""

from __future__ import annotations

import json
from typing import Any, List, Optional

from extensions import ExtensionAPI
from interpreter import (
    NULL,
    TYPE_STR,
    Interpreter,
    RSLRuntimeError,
    Value,
    expect,
    format_value,
    from_python,
    make_str,
    to_python,
)

RSL_EXTENSION_NAME = "core"
RSL_EXTENSION_API_VERSION = 1


def _print(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    text = " ".join(format_value(arg) for arg in args)
    interpreter.output_sink(text)
    interpreter.io_log.append({"event": "print", "text": text})
    return NULL


def _input(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    prompt: Optional[str] = None
    if args:
        prompt = expect(args[0], TYPE_STR, "input", location)
        interpreter.output_sink(prompt)
    text = interpreter.input_provider()
    record = {"event": "input", "text": text}
    if prompt is not None:
        record["prompt"] = prompt
    interpreter.io_log.append(record)
    return make_str(text)


def _to_string(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_str(format_value(args[0]))


def _type_of(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_str(args[0].type)


def _to_json(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_str(json.dumps(to_python(args[0], location=location), ensure_ascii=False))


def _from_json(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    text = expect(args[0], TYPE_STR, "fromJson", location)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RSLRuntimeError(f"fromJson: invalid JSON ({exc.msg} at position {exc.pos})", location=location, kind="json")
    return from_python(data)


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="core", version="0.1.0")
    ext.register_native("print", 0, None, _print, doc="print(...values) -> null")
    ext.register_native("input", 0, 1, _input, doc="input([prompt]) -> STR")
    ext.register_native("toString", 1, 1, _to_string, doc="toString(value) -> STR")
    ext.register_native("typeOf", 1, 1, _type_of, doc="typeOf(value) -> STR type tag")
    ext.register_native("toJson", 1, 1, _to_json, doc="toJson(value) -> STR")
    ext.register_native("fromJson", 1, 1, _from_json, doc="fromJson(text) -> value")
