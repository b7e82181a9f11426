"""RSL extension: array natives.

Arrays are shared by reference, so every mutating native here is visible
through all aliases of the array passed in.
"""

from __future__ import annotations

from typing import Any, List

from extensions import ExtensionAPI
from interpreter import NULL, TYPE_ARR, Interpreter, Value, expect, make_array, make_num

RSL_EXTENSION_NAME = "arrays"
RSL_EXTENSION_API_VERSION = 1


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="arrays", version="0.1.0")

    @ext.native(min_args=0)
    def create_array(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        return make_array(args)

    @ext.native(min_args=1, max_args=1)
    def array_len(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        return make_num(len(expect(args[0], TYPE_ARR, "arrayLen", location).items))

    @ext.native(min_args=2, max_args=2)
    def array_get(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        array = expect(args[0], TYPE_ARR, "arrayGet", location)
        return array.items[interpreter.array_index(array, args[1], location)]

    @ext.native(min_args=3, max_args=3)
    def array_set(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        array = expect(args[0], TYPE_ARR, "arraySet", location)
        position = interpreter.array_index(array, args[1], location, allow_end=True)
        if position == len(array.items):
            array.items.append(args[2])
        else:
            array.items[position] = args[2]
        return NULL

    @ext.native(min_args=2, max_args=2)
    def array_push_back(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        expect(args[0], TYPE_ARR, "arrayPushBack", location).items.append(args[1])
        return NULL

    @ext.native(min_args=2, max_args=2)
    def array_remove(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        array = expect(args[0], TYPE_ARR, "arrayRemove", location)
        return array.items.pop(interpreter.array_index(array, args[1], location))

    @ext.native(min_args=1, max_args=1)
    def array_pop_back(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
        array = expect(args[0], TYPE_ARR, "arrayPopBack", location)
        if not array.items:
            return NULL
        return array.items.pop()
