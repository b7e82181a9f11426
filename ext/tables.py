"""RSL extension: table natives."""

from __future__ import annotations

from typing import Any, List

from extensions import ExtensionAPI
from interpreter import NULL, TYPE_STR, TYPE_TBL, Interpreter, Value, expect, make_array, make_str, make_table

RSL_EXTENSION_NAME = "tables"
RSL_EXTENSION_API_VERSION = 1


def _create_table(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    return make_table()


def _table_set(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    table = expect(args[0], TYPE_TBL, "tableSet", location)
    key = expect(args[1], TYPE_STR, "tableSet", location)
    table.entries[key] = args[2]
    return NULL


def _table_get(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    table = expect(args[0], TYPE_TBL, "tableGet", location)
    key = expect(args[1], TYPE_STR, "tableGet", location)
    return table.entries.get(key, NULL)


def _table_keys(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    table = expect(args[0], TYPE_TBL, "tableKeys", location)
    return make_array(make_str(key) for key in sorted(table.entries))


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="tables", version="0.1.0")
    ext.register_native("createTable", 0, 0, _create_table, doc="createTable() -> TBL")
    ext.register_native("tableSet", 3, 3, _table_set, doc="tableSet(table, key, value) -> null")
    ext.register_native("tableGet", 2, 2, _table_get, doc="tableGet(table, key) -> value or null")
    ext.register_native("tableKeys", 1, 1, _table_keys, doc="tableKeys(table) -> ARR of sorted keys")
