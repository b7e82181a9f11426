from __future__ import annotations
import json
import math
import os
import sys
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Union

from lexer import Lexer, RSLError
from extensions import HookRegistry, RSLExtensionError, RuntimeServices, build_default_services
from parser import (
    ArrayLiteral,
    Assignment,
    BinaryOp,
    Block,
    BreakStatement,
    CallExpression,
    Expression,
    ExpressionStatement,
    FunctionLiteral,
    Identifier,
    IfStatement,
    ImportExpression,
    IndexAssignment,
    IndexExpression,
    Literal,
    LoopStatement,
    MemberAssignment,
    MemberExpression,
    Parser,
    Program,
    ReturnStatement,
    SourceLocation,
    Statement,
    TableLiteral,
    UnaryOp,
)


TYPE_NULL = "NULL"
TYPE_BOOL = "BOOL"
TYPE_NUM = "NUM"
TYPE_STR = "STR"
TYPE_ARR = "ARR"
TYPE_TBL = "TBL"
TYPE_FN = "FN"
TYPE_NATIVE = "NATIVE"

# Shared-storage kinds: assignment and argument passing alias the same object.
REFERENCE_TYPES = frozenset({TYPE_ARR, TYPE_TBL, TYPE_FN, TYPE_NATIVE})
CALLABLE_TYPES = frozenset({TYPE_FN, TYPE_NATIVE})


@dataclass(frozen=True)
class Value:
    type: str
    value: Any


@dataclass(eq=False)
class Array:
    items: List[Value] = field(default_factory=list)


@dataclass(eq=False)
class Table:
    entries: Dict[str, Value] = field(default_factory=dict)


NULL = Value(TYPE_NULL, None)
TRUE = Value(TYPE_BOOL, True)
FALSE = Value(TYPE_BOOL, False)


def make_bool(flag: bool) -> Value:
    return TRUE if flag else FALSE


def make_num(number: Union[int, float]) -> Value:
    return Value(TYPE_NUM, float(number))


def make_str(text: str) -> Value:
    return Value(TYPE_STR, str(text))


def make_array(items: Optional[Iterable[Value]] = None) -> Value:
    return Value(TYPE_ARR, Array(list(items) if items is not None else []))


def make_table(entries: Optional[Dict[str, Value]] = None) -> Value:
    return Value(TYPE_TBL, Table(dict(entries) if entries is not None else {}))


class RSLRuntimeError(RSLError):
    """Raised for runtime faults."""

    label = "RuntimeError"

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        kind: str = "runtime",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.kind = kind
        self.step_index: Optional[int] = None


class RSLTypeError(RSLRuntimeError):
    """Raised when an operand, condition or callee has the wrong kind."""

    label = "TypeError"

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message, location=location, kind="type")


class RSLImportError(RSLRuntimeError):
    """Raised when a module cannot be resolved, parsed or evaluated."""

    label = "ImportError"

    def __init__(self, message: str, *, path: str, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message, location=location, kind="import")
        self.path = path


def format_error(error: BaseException) -> str:
    label = getattr(error, "label", error.__class__.__name__)
    if isinstance(error, RSLRuntimeError):
        if error.location is not None:
            loc = error.location
            return f"{label}: {error.message} at {loc.file}:{loc.line}:{loc.column}"
        return f"{label}: {error.message}"
    return f"{label}: {error}"


def format_number(number: float) -> str:
    if math.isfinite(number) and number.is_integer() and abs(number) < 1e16:
        return str(int(number))
    return repr(number)


def format_value(value: Value, *, nested: bool = False, _seen: Optional[Set[int]] = None) -> str:
    kind = value.type
    if kind == TYPE_NULL:
        return "null"
    if kind == TYPE_BOOL:
        return "true" if value.value else "false"
    if kind == TYPE_NUM:
        return format_number(value.value)
    if kind == TYPE_STR:
        return json.dumps(value.value, ensure_ascii=False) if nested else value.value
    if kind == TYPE_FN:
        return f"<fn {value.value.name or 'anonymous'}>"
    if kind == TYPE_NATIVE:
        return f"<native {value.value.name}>"
    seen = set() if _seen is None else _seen
    marker = id(value.value)
    if marker in seen:
        return "[...]" if kind == TYPE_ARR else "{...}"
    seen.add(marker)
    try:
        if kind == TYPE_ARR:
            return "[" + ", ".join(format_value(item, nested=True, _seen=seen) for item in value.value.items) + "]"
        if kind == TYPE_TBL:
            parts = [f"{key}: {format_value(item, nested=True, _seen=seen)}" for key, item in value.value.entries.items()]
            return "{" + ", ".join(parts) + "}"
    finally:
        seen.discard(marker)
    return f"<{kind}>"


def to_python(value: Value, *, location: Optional[SourceLocation] = None, _seen: Optional[Set[int]] = None) -> Any:
    """Convert a script value into plain Python data (for JSON and hosts)."""
    kind = value.type
    if kind == TYPE_NULL:
        return None
    if kind in (TYPE_BOOL, TYPE_STR):
        return value.value
    if kind == TYPE_NUM:
        number = value.value
        if math.isfinite(number) and number.is_integer():
            return int(number)
        return number
    if kind in (TYPE_ARR, TYPE_TBL):
        seen = set() if _seen is None else _seen
        marker = id(value.value)
        if marker in seen:
            raise RSLRuntimeError("Cannot convert a self-referencing container", location=location, kind="convert")
        seen.add(marker)
        try:
            if kind == TYPE_ARR:
                return [to_python(item, location=location, _seen=seen) for item in value.value.items]
            return {key: to_python(item, location=location, _seen=seen) for key, item in value.value.entries.items()}
        finally:
            seen.discard(marker)
    raise RSLRuntimeError(f"Cannot convert {kind} value", location=location, kind="convert")


def from_python(obj: Any) -> Value:
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return NULL
    if isinstance(obj, bool):
        return make_bool(obj)
    if isinstance(obj, (int, float)):
        return make_num(obj)
    if isinstance(obj, str):
        return make_str(obj)
    if isinstance(obj, (list, tuple)):
        return make_array(from_python(item) for item in obj)
    if isinstance(obj, dict):
        return make_table({str(key): from_python(item) for key, item in obj.items()})
    raise RSLTypeError(f"Cannot convert Python {type(obj).__name__} to a script value")


COMPLETION_NORMAL = "normal"
COMPLETION_RETURN = "return"
COMPLETION_BREAK = "break"


@dataclass(frozen=True)
class Completion:
    kind: str
    value: Value = NULL
    location: Optional[SourceLocation] = None


@dataclass(eq=False)
class Environment:
    parent: Optional["Environment"] = None
    values: Dict[str, Value] = field(default_factory=dict)
    # Only a module's top-level frame owns an export table.
    exports: Optional[Table] = None
    # Sealed frames (the native registry) are never updated by plain assignment.
    sealed: bool = False
    # names this frame has exported; later plain assignments refresh the export table
    exported: Set[str] = field(default_factory=set)

    def _find_env(self, name: str) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def _export_owner(self) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if env.exports is not None:
                return env
            env = env.parent
        return None

    def get(self, name: str) -> Value:
        env = self._find_env(name)
        if env is not None:
            return env.values[name]
        return NULL

    def has(self, name: str) -> bool:
        return self._find_env(name) is not None

    def define(self, name: str, value: Value) -> None:
        self.values[name] = value

    def assign(self, name: str, value: Value, qualifier: Optional[str] = None) -> None:
        if qualifier == "local":
            self.values[name] = value
            return
        if qualifier == "export":
            self.values[name] = value
            self.exported.add(name)
            self._publish(name, value)
            return
        env = self._find_env(name)
        target = env if env is not None and not env.sealed else self
        target.values[name] = value
        if name in target.exported:
            target._publish(name, value)

    def _publish(self, name: str, value: Value) -> None:
        owner = self._export_owner()
        if owner is not None:
            owner.exports.entries[name] = value  # type: ignore[union-attr]

    def snapshot(self) -> Dict[str, str]:
        return {name: format_value(val, nested=True) for name, val in self.values.items()}


@dataclass(eq=False)
class Function:
    name: Optional[str]
    params: List[str]
    body: Block
    closure: Environment


@dataclass
class Module:
    path: str
    env: Environment
    exports: Table


@dataclass
class Frame:
    name: str
    env: Environment
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, Any]]
    record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, limit: int = 10000) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=limit)
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        data = {} if record is None else record
        data.setdefault("from_state_id", self.last_state_id)
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        data["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            record=data,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


# Python frames used by one script-level call with nested if/loop bodies.
PYTHON_FRAMES_PER_CALL = 16
RECURSION_HEADROOM = 200


NativeImpl = Callable[["Interpreter", List[Value], Optional[SourceLocation]], Optional[Value]]


@dataclass(eq=False)
class BuiltinFunction:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: NativeImpl

    def validate(self, supplied: int, location: Optional[SourceLocation]) -> None:
        if supplied < self.min_args:
            raise RSLRuntimeError(f"{self.name} expects at least {self.min_args} arguments", location=location, kind="arity")
        if self.max_args is not None and supplied > self.max_args:
            raise RSLRuntimeError(f"{self.name} expects at most {self.max_args} arguments", location=location, kind="arity")

    def invoke(self, interpreter: "Interpreter", args: List[Value], location: Optional[SourceLocation]) -> Value:
        self.validate(len(args), location)
        try:
            result = self.impl(interpreter, args, location)
        except RSLRuntimeError as error:
            if error.location is None:
                error.location = location
            raise
        except RSLError:
            raise
        except Exception as exc:
            raise RSLRuntimeError(f"{self.name} failed: {exc}", location=location, kind="native") from exc
        if result is None:
            return NULL
        if not isinstance(result, Value):
            raise RSLRuntimeError(f"{self.name} returned a non-script value", location=location, kind="native")
        return result


class Builtins:
    """Registry of host-supplied natives, keyed by script-visible name."""

    def __init__(self) -> None:
        self.table: Dict[str, BuiltinFunction] = {}

    def register(
        self,
        name: str,
        impl: NativeImpl,
        min_args: int = 0,
        max_args: Optional[int] = None,
        *,
        replace: bool = False,
    ) -> BuiltinFunction:
        if not name:
            raise RSLExtensionError("Native name must be non-empty")
        if name in self.table and not replace:
            raise RSLExtensionError(f"Cannot override existing native '{name}'")
        builtin = BuiltinFunction(name=name, min_args=min_args, max_args=max_args, impl=impl)
        self.table[name] = builtin
        return builtin


def native_name(python_name: str) -> str:
    """Map a snake_case Python name to the camelCase name scripts see."""
    head, *rest = python_name.strip("_").split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        working_dir: Optional[str] = None,
        module_sources: Optional[Dict[str, str]] = None,
        max_call_depth: int = 512,
        log_limit: int = 10000,
    ) -> None:
        self.source = source
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.services = services if services is not None else build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.input_provider = input_provider or (lambda: input())
        self.output_sink = output_sink or (lambda text: print(text))
        self.working_dir = os.path.abspath(working_dir) if working_dir is not None else os.getcwd()
        self.module_sources: Dict[str, str] = dict(module_sources or {})
        self.max_call_depth = max_call_depth

        self.builtins = Builtins()
        self.root_env = Environment(sealed=True)
        for name, min_args, max_args, impl, _doc in self.services.natives:
            builtin = self.builtins.register(name, impl, min_args, max_args)
            self.root_env.define(name, Value(TYPE_NATIVE, builtin))

        self.global_env = self.new_top_level_env()
        self.logger = StateLogger(verbose=verbose, limit=log_limit)
        self.logger.record(frame=None, location=None, statement="<seed>", record={"rule": "SEED"})
        self.io_log: List[Dict[str, Any]] = []
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        # Imported modules keyed by resolved path; a re-import returns the
        # cached export table without re-running the file.
        self.module_cache: Dict[str, Module] = {}
        self._loading: Set[str] = set()
        self._active = False
        self._saved_recursion_limit: Optional[int] = None

    # ---- host interface ----
    def register(
        self,
        name: str,
        callback: NativeImpl,
        min_args: int = 0,
        max_args: Optional[int] = None,
    ) -> None:
        builtin = self.builtins.register(name, callback, min_args, max_args, replace=True)
        self.root_env.define(name, Value(TYPE_NATIVE, builtin))

    def new_top_level_env(self) -> Environment:
        return Environment(parent=self.root_env, exports=Table())

    def parse(self, source: Optional[str] = None, filename: Optional[str] = None) -> Program:
        text = self.source if source is None else source
        name = self.filename if filename is None else filename
        tokens = Lexer(text, name).tokenize()
        return Parser(tokens, name, text.splitlines()).parse()

    def run(self) -> Value:
        return self.run_source(self.source, self.filename)

    def run_file(self, path: str) -> Value:
        filename = os.path.abspath(path)
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            raise RSLRuntimeError(f"Failed to read '{path}': {exc.strerror or exc}", kind="io") from exc
        self.source = text
        self.filename = filename
        return self.run_source(text, filename)

    def run_source(self, source: str, filename: str = "<string>", env: Optional[Environment] = None) -> Value:
        program = self.parse(source, filename)
        if env is None:
            env = self.new_top_level_env()
            self.global_env = env
        began = self._begin_entry()
        try:
            return self.execute_program(program, env)
        finally:
            if began:
                self._end_entry()

    def call_exported(self, target: Union[Environment, Table, Value], name: str, args: Iterable[Any] = ()) -> Value:
        if isinstance(target, Environment):
            callee = target.get(name)
        elif isinstance(target, Table):
            callee = target.entries.get(name, NULL)
        elif isinstance(target, Value) and target.type == TYPE_TBL:
            callee = target.value.entries.get(name, NULL)
        else:
            raise RSLTypeError("call_exported expects an environment or a table")
        if callee.type not in CALLABLE_TYPES:
            raise RSLTypeError(f"'{name}' is not a function (found {callee.type})")
        values = [from_python(arg) for arg in args]
        began = self._begin_entry()
        try:
            return self.call_value(callee, values, None)
        except RSLRuntimeError as error:
            self._emit_event("on_error", self, error)
            raise
        except RecursionError:
            raise RSLRuntimeError("Maximum recursion depth exceeded", kind="recursion")
        finally:
            if began:
                self._end_entry()

    def _begin_entry(self) -> bool:
        if self._active:
            return False
        self._active = True
        self.call_stack.clear()
        # traceback entries of frames left behind by an earlier failed run
        self.logger.frame_last_entry.clear()
        self._saved_recursion_limit = sys.getrecursionlimit()
        needed = self.max_call_depth * PYTHON_FRAMES_PER_CALL + RECURSION_HEADROOM
        if needed > self._saved_recursion_limit:
            sys.setrecursionlimit(needed)
        return True

    def _end_entry(self) -> None:
        self._active = False
        if self._saved_recursion_limit is not None:
            sys.setrecursionlimit(self._saved_recursion_limit)
            self._saved_recursion_limit = None

    # ---- execution ----
    def execute_program(self, program: Program, env: Environment, *, name: str = "<top-level>") -> Value:
        frame = self._new_frame(name, env, None)
        self.call_stack.append(frame)
        self._emit_event("program_start", self, program, env)
        try:
            completion = self.execute_block(program.statements, env)
            if completion.kind == COMPLETION_BREAK:
                raise RSLRuntimeError("break used outside of a loop", location=completion.location, kind="break")
        except RSLRuntimeError as error:
            self._emit_event("on_error", self, error)
            if error.step_index is None and self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except RSLError:
            raise
        except RecursionError:
            wrapped = RSLRuntimeError("Maximum recursion depth exceeded", location=self._last_location(), kind="recursion")
            self._emit_event("on_error", self, wrapped)
            raise wrapped
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Convert unexpected Python-level exceptions so callers (REPL/CLI)
            # can format them with script tracebacks.
            wrapped = RSLRuntimeError(f"Internal interpreter error: {exc}", location=self._last_location(), kind="internal")
            if self.logger.entries:
                wrapped.step_index = self.logger.entries[-1].step_index
            raise wrapped from exc
        self._emit_event("program_end", self, completion.value)
        self.call_stack.pop()
        self.logger.forget_frame(frame.frame_id)
        return completion.value

    def execute_block(self, statements: List[Statement], env: Environment) -> Completion:
        emit_event = self._emit_event
        execute = self.execute
        completion = Completion(COMPLETION_NORMAL)
        for statement in statements:
            emit_event("before_statement", self, statement, env)
            completion = execute(statement, env)
            emit_event("after_statement", self, statement, env)
            if completion.kind != COMPLETION_NORMAL:
                return completion
        return completion

    def execute(self, statement: Statement, env: Environment) -> Completion:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        if isinstance(statement, ExpressionStatement):
            return Completion(COMPLETION_NORMAL, self.evaluate(statement.expression, env))
        if isinstance(statement, Assignment):
            value = self.evaluate(statement.expression, env)
            env.assign(statement.target, value, statement.qualifier)
            return Completion(COMPLETION_NORMAL)
        if isinstance(statement, IfStatement):
            return self._execute_if(statement, env)
        if isinstance(statement, LoopStatement):
            return self._execute_loop(statement, env)
        if isinstance(statement, ReturnStatement):
            value = NULL if statement.expression is None else self.evaluate(statement.expression, env)
            return Completion(COMPLETION_RETURN, value, statement.location)
        if isinstance(statement, BreakStatement):
            return Completion(COMPLETION_BREAK, NULL, statement.location)
        if isinstance(statement, IndexAssignment):
            container = self.evaluate(statement.target, env)
            index = self.evaluate(statement.index, env)
            value = self.evaluate(statement.value, env)
            self._store_index(container, index, value, statement.location)
            return Completion(COMPLETION_NORMAL)
        if isinstance(statement, MemberAssignment):
            container = self.evaluate(statement.target, env)
            value = self.evaluate(statement.value, env)
            if container.type != TYPE_TBL:
                raise RSLTypeError(
                    f"Cannot set member '{statement.name}' on {container.type}", location=statement.location
                )
            container.value.entries[statement.name] = value
            return Completion(COMPLETION_NORMAL)
        raise RSLRuntimeError(f"Unsupported statement {statement.__class__.__name__}", location=statement.location, kind="internal")

    def _execute_if(self, statement: IfStatement, env: Environment) -> Completion:
        condition = self.evaluate(statement.condition, env)
        if condition.type != TYPE_BOOL:
            raise RSLTypeError(f"Condition must be BOOL, got {condition.type}", location=statement.condition.location)
        if condition.value:
            return self.execute_block(statement.then_block.statements, Environment(parent=env))
        if statement.else_block is not None:
            return self.execute_block(statement.else_block.statements, Environment(parent=env))
        return Completion(COMPLETION_NORMAL)

    def _execute_loop(self, statement: LoopStatement, env: Environment) -> Completion:
        body = statement.block.statements
        while True:
            completion = self.execute_block(body, Environment(parent=env))
            if completion.kind == COMPLETION_BREAK:
                return Completion(COMPLETION_NORMAL)
            if completion.kind == COMPLETION_RETURN:
                return completion

    def evaluate(self, expression: Expression, env: Environment) -> Value:
        if isinstance(expression, Literal):
            return Value(expression.literal_type, expression.value)
        if isinstance(expression, Identifier):
            return env.get(expression.name)
        if isinstance(expression, BinaryOp):
            return self._evaluate_binary(expression, env)
        if isinstance(expression, UnaryOp):
            return self._evaluate_unary(expression, env)
        if isinstance(expression, CallExpression):
            callee = self.evaluate(expression.callee, env)
            args = [self.evaluate(arg, env) for arg in expression.args]
            return self.call_value(callee, args, expression.location)
        if isinstance(expression, IndexExpression):
            base = self.evaluate(expression.base, env)
            index = self.evaluate(expression.index, env)
            return self._load_index(base, index, expression.location)
        if isinstance(expression, MemberExpression):
            base = self.evaluate(expression.base, env)
            if base.type != TYPE_TBL:
                raise RSLTypeError(f"Cannot read member '{expression.name}' of {base.type}", location=expression.location)
            return base.value.entries.get(expression.name, NULL)
        if isinstance(expression, ArrayLiteral):
            return make_array(self.evaluate(item, env) for item in expression.items)
        if isinstance(expression, TableLiteral):
            return make_table({key: self.evaluate(item, env) for key, item in expression.entries})
        if isinstance(expression, FunctionLiteral):
            function = Function(name=expression.name, params=list(expression.params), body=expression.body, closure=env)
            return Value(TYPE_FN, function)
        if isinstance(expression, ImportExpression):
            path = self.evaluate(expression.path, env)
            if path.type != TYPE_STR:
                raise RSLTypeError(f"import expects a STR path, got {path.type}", location=expression.location)
            self._log_step(rule="Import", location=expression.location, extra={"path": path.value})
            return Value(TYPE_TBL, self.load_module(path.value, location=expression.location))
        raise RSLRuntimeError(f"Unsupported expression {expression.__class__.__name__}", location=expression.location, kind="internal")

    # ---- operators ----
    def _evaluate_binary(self, expression: BinaryOp, env: Environment) -> Value:
        op = expression.operator
        location = expression.location
        if op in ("and", "or"):
            left = self._expect_bool(self.evaluate(expression.left, env), op, location)
            if op == "and" and not left:
                return FALSE
            if op == "or" and left:
                return TRUE
            return make_bool(self._expect_bool(self.evaluate(expression.right, env), op, location))

        left_val = self.evaluate(expression.left, env)
        right_val = self.evaluate(expression.right, env)
        if op == "==":
            return make_bool(values_equal(left_val, right_val))
        if op == "!=":
            return make_bool(not values_equal(left_val, right_val))
        if op == "+":
            if left_val.type == TYPE_NUM and right_val.type == TYPE_NUM:
                return Value(TYPE_NUM, left_val.value + right_val.value)
            if left_val.type == TYPE_STR and right_val.type == TYPE_STR:
                return Value(TYPE_STR, left_val.value + right_val.value)
            raise RSLTypeError(f"Cannot apply '+' to {left_val.type} and {right_val.type}", location=location)
        if op in ("<", "<=", ">", ">="):
            if left_val.type != right_val.type or left_val.type not in (TYPE_NUM, TYPE_STR):
                raise RSLTypeError(f"Cannot compare {left_val.type} and {right_val.type} with '{op}'", location=location)
            a, b = left_val.value, right_val.value
            if op == "<":
                return make_bool(a < b)
            if op == "<=":
                return make_bool(a <= b)
            if op == ">":
                return make_bool(a > b)
            return make_bool(a >= b)
        if left_val.type != TYPE_NUM or right_val.type != TYPE_NUM:
            raise RSLTypeError(f"Cannot apply '{op}' to {left_val.type} and {right_val.type}", location=location)
        x, y = left_val.value, right_val.value
        if op == "-":
            return Value(TYPE_NUM, x - y)
        if op == "*":
            return Value(TYPE_NUM, x * y)
        if y == 0:
            raise RSLRuntimeError("Division by zero", location=location, kind="arithmetic")
        if op == "/":
            return Value(TYPE_NUM, x / y)
        if op == "%":
            return Value(TYPE_NUM, math.fmod(x, y))
        raise RSLRuntimeError(f"Unknown operator '{op}'", location=location, kind="internal")

    def _evaluate_unary(self, expression: UnaryOp, env: Environment) -> Value:
        operand = self.evaluate(expression.operand, env)
        if expression.operator == "!":
            return make_bool(not self._expect_bool(operand, "!", expression.location))
        if operand.type != TYPE_NUM:
            raise RSLTypeError(f"Cannot negate {operand.type}", location=expression.location)
        return Value(TYPE_NUM, -operand.value)

    def _expect_bool(self, value: Value, op: str, location: Optional[SourceLocation]) -> bool:
        if value.type != TYPE_BOOL:
            raise RSLTypeError(f"'{op}' expects BOOL operands, got {value.type}", location=location)
        return bool(value.value)

    # ---- containers ----
    def array_index(self, array: Array, index: Value, location: Optional[SourceLocation], *, allow_end: bool = False) -> int:
        if index.type != TYPE_NUM:
            raise RSLTypeError(f"Array index must be NUM, got {index.type}", location=location)
        number = index.value
        limit = len(array.items) + (1 if allow_end else 0)
        if not (math.isfinite(number) and number.is_integer()) or not 0 <= number < limit:
            raise RSLRuntimeError(
                f"Array index {format_number(number)} out of range for length {len(array.items)}",
                location=location,
                kind="range",
            )
        return int(number)

    def _load_index(self, base: Value, index: Value, location: Optional[SourceLocation]) -> Value:
        if base.type == TYPE_ARR:
            return base.value.items[self.array_index(base.value, index, location)]
        if base.type == TYPE_TBL:
            if index.type != TYPE_STR:
                raise RSLTypeError(f"Table key must be STR, got {index.type}", location=location)
            return base.value.entries.get(index.value, NULL)
        if base.type == TYPE_STR:
            if index.type != TYPE_NUM:
                raise RSLTypeError(f"String index must be NUM, got {index.type}", location=location)
            text = base.value
            number = index.value
            if not (math.isfinite(number) and number.is_integer()) or not 0 <= number < len(text):
                raise RSLRuntimeError(
                    f"String index {format_number(number)} out of range for length {len(text)}",
                    location=location,
                    kind="range",
                )
            return Value(TYPE_STR, text[int(number)])
        raise RSLTypeError(f"Cannot index {base.type}", location=location)

    def _store_index(self, base: Value, index: Value, value: Value, location: Optional[SourceLocation]) -> None:
        if base.type == TYPE_ARR:
            items = base.value.items
            position = self.array_index(base.value, index, location, allow_end=True)
            if position == len(items):
                items.append(value)
            else:
                items[position] = value
            return
        if base.type == TYPE_TBL:
            if index.type != TYPE_STR:
                raise RSLTypeError(f"Table key must be STR, got {index.type}", location=location)
            base.value.entries[index.value] = value
            return
        raise RSLTypeError(f"Cannot assign into {base.type}", location=location)

    # ---- calls ----
    def call_value(self, callee: Value, args: List[Value], location: Optional[SourceLocation]) -> Value:
        if callee.type == TYPE_FN:
            return self._call_user_function(callee.value, args, location)
        if callee.type == TYPE_NATIVE:
            return self._call_native(callee.value, args, location)
        raise RSLTypeError(f"Cannot call value of type {callee.type}", location=location)

    def _call_user_function(self, function: Function, args: List[Value], call_location: Optional[SourceLocation]) -> Value:
        if len(self.call_stack) > self.max_call_depth:
            raise RSLRuntimeError("Maximum call depth exceeded", location=call_location, kind="recursion")
        env = Environment(parent=function.closure)
        for position, param in enumerate(function.params):
            env.define(param, args[position] if position < len(args) else NULL)
        name = function.name or "<anonymous>"
        self._emit_event("before_call", self, name, args, env, call_location)
        frame = self._new_frame(name, env, call_location)
        self.call_stack.append(frame)
        completion = self.execute_block(function.body.statements, env)
        if completion.kind == COMPLETION_BREAK:
            raise RSLRuntimeError("break used outside of a loop", location=completion.location, kind="break")
        self.call_stack.pop()
        self.logger.forget_frame(frame.frame_id)
        result = completion.value if completion.kind == COMPLETION_RETURN else NULL
        self._emit_event("after_call", self, name, result, env, call_location)
        return result

    def _call_native(self, builtin: BuiltinFunction, args: List[Value], location: Optional[SourceLocation]) -> Value:
        self._emit_event("before_call", self, builtin.name, args, None, location)
        result = builtin.invoke(self, args, location)
        self._log_step(rule=builtin.name, location=location, extra={"native": True})
        self._emit_event("after_call", self, builtin.name, result, None, location)
        return result

    # ---- modules ----
    def resolve_module_path(self, path: str) -> str:
        if path in self.module_sources:
            return path
        return os.path.abspath(os.path.join(self.working_dir, path))

    def load_module(self, path: str, *, location: Optional[SourceLocation] = None) -> Table:
        key = self.resolve_module_path(path)
        cached = self.module_cache.get(key)
        if cached is not None:
            return cached.exports
        if key in self._loading:
            raise RSLImportError(f"Circular import of '{path}'", path=path, location=location)

        if path in self.module_sources:
            source = self.module_sources[path]
        else:
            try:
                with open(key, "r", encoding="utf-8") as handle:
                    source = handle.read()
            except OSError as exc:
                raise RSLImportError(
                    f"Failed to import '{path}': {exc.strerror or exc}", path=path, location=location
                ) from exc

        env = self.new_top_level_env()
        self._loading.add(key)
        try:
            program = self.parse(source, key)
            self.execute_program(program, env, name=f"<module {path}>")
        except RSLError as exc:
            raise RSLImportError(f"Failed to import '{path}': {format_error(exc)}", path=path, location=location) from exc
        finally:
            self._loading.discard(key)
        module = Module(path=key, env=env, exports=env.exports)  # type: ignore[arg-type]
        self.module_cache[key] = module
        return module.exports

    # ---- bookkeeping ----
    def _last_location(self) -> Optional[SourceLocation]:
        if self.logger.entries:
            return self.logger.entries[-1].source_location
        return None

    def _new_frame(self, name: str, env: Environment, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, env=env, frame_id=frame_id, call_location=call_location)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except RSLError:
            raise
        except Exception as exc:
            raise RSLRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                location=self._last_location(),
                kind="extension",
            ) from exc

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = frame.env.snapshot() if (self.verbose and frame) else None
        statement = location.statement if location else None
        record = {"rule": rule}
        if extra:
            record.update(extra)
        self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            record=record,
        )


def values_equal(left: Value, right: Value) -> bool:
    if left.type != right.type:
        return False
    if left.type in REFERENCE_TYPES:
        return left.value is right.value
    return left.value == right.value


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    location=location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: RSLError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        lines.append(format_error(error))
        return "\n".join(lines)

    def to_json(self, error: RSLError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.record is not None:
                    entry["record"] = frame.state_entry.record
            frames_json.append(entry)
        data = {
            "error": {
                "type": getattr(error, "label", error.__class__.__name__),
                "kind": getattr(error, "kind", None),
                "message": getattr(error, "message", str(error)),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)


def expect(value: Value, kind: str, rule: str, location: Optional[SourceLocation] = None) -> Any:
    """Return the payload of ``value`` or fail when it is not of ``kind``."""
    if value.type != kind:
        raise RSLTypeError(f"{rule} expects {kind}, got {value.type}", location=location)
    return value.value
