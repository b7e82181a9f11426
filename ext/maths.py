"""RSL extension: numeric natives."""

from __future__ import annotations

import math
from typing import Any, Callable, List

from extensions import ExtensionAPI
from interpreter import TYPE_NUM, Interpreter, Value, expect, make_num

RSL_EXTENSION_NAME = "maths"
RSL_EXTENSION_API_VERSION = 1


def _unary(name: str, op: Callable[[float], float]):
    def impl(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        return make_num(op(expect(args[0], TYPE_NUM, name, location)))

    return impl


def _round_half_away(number: float) -> float:
    # Half away from zero: 2.5 -> 3, -2.5 -> -3.
    return math.copysign(math.floor(abs(number) + 0.5), number)


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="maths", version="0.1.0")
    ext.register_native("floor", 1, 1, _unary("floor", math.floor), doc="floor(n) -> NUM")
    ext.register_native("ceil", 1, 1, _unary("ceil", math.ceil), doc="ceil(n) -> NUM")
    ext.register_native("round", 1, 1, _unary("round", _round_half_away), doc="round(n) -> NUM")
    ext.register_native("abs", 1, 1, _unary("abs", abs), doc="abs(n) -> NUM")
