import pytest

from extensions import RSLExtensionError
from interpreter import (
    NULL,
    TYPE_ARR,
    TYPE_NATIVE,
    RSLRuntimeError,
    make_array,
    make_num,
    native_name,
    to_python,
)


def test_host_native_receives_evaluated_arguments(make_interpreter):
    interp = make_interpreter()
    seen = []

    def record(interpreter, args, location):
        seen.append([arg.value for arg in args])
        return make_num(len(args))

    interp.register("record", record)
    value = interp.run_source("record(1 + 1, \"x\")")
    assert seen == [[2.0, "x"]]
    assert value.value == 2.0


def test_native_calling_back_into_script(make_interpreter):
    interp = make_interpreter()

    def apply_array(interpreter, args, location):
        items = args[0].value.items
        return make_array(interpreter.call_value(args[1], [item], location) for item in items)

    interp.register("applyArray", apply_array, 2, 2)
    value = interp.run_source("fn square(n) { return n * n }\napplyArray([9, 8, 7], square)")
    assert value.type == TYPE_ARR
    assert to_python(value) == [81, 64, 49]


def test_native_returning_none_yields_null(make_interpreter):
    interp = make_interpreter()
    interp.register("noop", lambda interpreter, args, location: None)
    assert interp.run_source("noop()") is NULL


def test_arity_is_checked(make_interpreter):
    interp = make_interpreter()
    interp.register("one", lambda interpreter, args, location: args[0], 1, 1)
    with pytest.raises(RSLRuntimeError) as info:
        interp.run_source("one(1, 2)")
    assert info.value.kind == "arity"


def test_python_exception_becomes_runtime_error(make_interpreter):
    interp = make_interpreter()

    def explode(interpreter, args, location):
        raise ValueError("boom")

    interp.register("explode", explode)
    with pytest.raises(RSLRuntimeError) as info:
        interp.run_source("x = 1\nexplode()")
    assert info.value.kind == "native"
    assert "boom" in info.value.message
    assert info.value.location.line == 2
    assert isinstance(info.value.__cause__, ValueError)


def test_natives_are_visible_values(make_interpreter):
    interp = make_interpreter()
    value = interp.run_source("p = print\np")
    assert value.type == TYPE_NATIVE


def test_shadowing_a_native_does_not_replace_it(make_interpreter, outputs):
    interp = make_interpreter()
    env = interp.new_top_level_env()
    interp.run_source("print = 1", env=env)
    assert env.get("print").value == 1.0
    assert interp.root_env.values["print"].type == TYPE_NATIVE
    interp.run_source('print("still here")')
    assert outputs == ["still here"]


def test_native_name_camel_cases():
    assert native_name("array_push_back") == "arrayPushBack"
    assert native_name("sample_native") == "sampleNative"
    assert native_name("print") == "print"


def test_duplicate_native_registration_is_rejected(make_interpreter):
    interp = make_interpreter()
    with pytest.raises(RSLExtensionError):
        interp.builtins.register("print", lambda interpreter, args, location: None)


def test_script_function_applies_host_native_over_array(make_interpreter):
    interp = make_interpreter()

    def square(interpreter, args, location):
        return make_num(args[0].value * args[0].value)

    interp.register("square", square, 1, 1)
    source = """
    fn applyArray(arr, f) {
        out = createArray()
        i = 0
        loop {
            if i == arrayLen(arr) { break }
            arrayPushBack(out, f(arrayGet(arr, i)))
            i = i + 1
        }
        return out
    }
    arr = createArray(9, 8, 7)
    applyArray(arr, square)
    """
    value = interp.run_source(source)
    assert to_python(value) == [81, 64, 49]
