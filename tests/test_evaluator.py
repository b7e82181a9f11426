import sys

import pytest

from interpreter import (
    NULL,
    TYPE_TBL,
    RSLRuntimeError,
    RSLTypeError,
    format_error,
    format_value,
)


def value_of(run, source):
    _interp, value = run(source)
    return value


def test_arithmetic_and_precedence(run):
    assert value_of(run, "1 + 2 * 3").value == 7.0
    assert value_of(run, "(1 + 2) * 3").value == 9.0
    assert value_of(run, "7 % 4").value == 3.0
    assert value_of(run, "-2 * 3").value == -6.0
    assert value_of(run, "10 / 4").value == 2.5


def test_string_concatenation_and_comparison(run):
    assert value_of(run, '"ab" + "cd"').value == "abcd"
    assert value_of(run, '"a" < "b"').value is True


def test_adding_string_and_table_is_type_error(run):
    with pytest.raises(RSLTypeError) as info:
        run('x = "a" + {}')
    assert info.value.kind == "type"
    assert info.value.location.line == 1


def test_division_by_zero(run):
    with pytest.raises(RSLRuntimeError) as info:
        run("x = 1 / 0")
    assert info.value.kind == "arithmetic"


def test_unset_identifier_is_null(run):
    assert value_of(run, "nothing") is NULL
    assert value_of(run, "nothing == null").value is True


def test_equality_across_kinds(run):
    assert value_of(run, "1 == 1").value is True
    assert value_of(run, '1 == "1"').value is False
    assert value_of(run, "a = [1]\nb = a\na == b").value is True
    assert value_of(run, "[1] == [1]").value is False


def test_if_requires_bool(run):
    with pytest.raises(RSLTypeError) as info:
        run("if 5 { x = 1 }")
    assert "BOOL" in info.value.message


def test_logical_operators_short_circuit(run):
    assert value_of(run, "false and undefinedCall()").value is False
    assert value_of(run, "true or undefinedCall()").value is True
    with pytest.raises(RSLTypeError):
        run("1 and true")


def test_else_if_selects_one_branch(run, outputs):
    source = """
    fn classify(n) {
        if n < 0 { return "neg" } else if n == 0 { return "zero" } else { return "pos" }
    }
    print(classify(-1), classify(0), classify(3))
    """
    run(source)
    assert outputs == ["neg zero pos"]


def test_loop_break_and_counter(run):
    source = """
    i = 0
    loop {
        if i == 5 { break }
        i = i + 1
    }
    i
    """
    assert value_of(run, source).value == 5.0


def test_return_propagates_through_loop(run):
    source = """
    fn find(items, wanted) {
        i = 0
        loop {
            if items[i] == wanted { return i }
            i = i + 1
        }
    }
    find([4, 5, 6], 6)
    """
    assert value_of(run, source).value == 2.0


def test_break_outside_loop_is_error(run):
    with pytest.raises(RSLRuntimeError) as info:
        run("break")
    assert info.value.kind == "break"


def test_function_without_return_yields_null(run):
    assert value_of(run, "fn f() { x = 1 }\nf()") is NULL


def test_missing_arguments_bind_null(run):
    assert value_of(run, "fn f(a, b) { return b }\nf(1)") is NULL


def test_closure_captures_environment(run):
    source = """
    fn counter() {
        local n = 0
        return fn () {
            n = n + 1
            return n
        }
    }
    c = counter()
    c()
    c()
    c()
    """
    assert value_of(run, source).value == 3.0


def test_closures_do_not_share_state(run, outputs):
    source = """
    fn counter() {
        local n = 0
        return fn () { n = n + 1 return n }
    }
    a = counter()
    b = counter()
    a()
    a()
    print(a(), b())
    """
    run(source)
    assert outputs == ["3 1"]


def test_arrays_and_tables_are_shared_by_reference(run, outputs):
    source = """
    fn grow(arr) { arr[2] = 9 }
    a = [1, 2]
    b = a
    b[0] = 100
    t = {name: "x"}
    u = t
    u.name = "y"
    grow(b)
    print(a, t.name)
    """
    run(source)
    assert outputs == ["[100, 2, 9] y"]


def test_scalars_are_copied(run):
    source = """
    fn bump(n) { n = n + 1 return n }
    x = 1
    y = bump(x)
    x
    """
    assert value_of(run, source).value == 1.0


def test_if_body_scope_does_not_leak_locals(run):
    assert value_of(run, "if true { local z = 1 }\nz") is NULL
    assert value_of(run, "x = 1\nif true { x = 2 }\nx").value == 2.0


def test_index_out_of_range(run):
    with pytest.raises(RSLRuntimeError) as info:
        run("a = [1]\na[3]")
    assert info.value.kind == "range"


def test_member_call_on_table(run):
    source = """
    obj = {greet: fn (name) { return "hi " + name }}
    obj.greet("bob")
    """
    assert value_of(run, source).value == "hi bob"


def test_calling_non_function_is_type_error(run):
    with pytest.raises(RSLTypeError, match="Cannot call"):
        run("x = 3\nx()")


def test_runaway_recursion_is_reported(run):
    with pytest.raises(RSLRuntimeError) as info:
        run("fn f() { return f() }\nf()")
    assert info.value.kind == "recursion"


def test_format_value_for_containers(run):
    value = value_of(run, 't = {a: [1, "s", null, true]}\nt')
    assert value.type == TYPE_TBL
    assert format_value(value) == '{a: [1, "s", null, true]}'


def test_format_error_includes_position(run):
    with pytest.raises(RSLTypeError) as info:
        run("x = 1\ny = -true")
    assert format_error(info.value) == "TypeError: Cannot negate BOOL at <string>:2:5"


def test_step_log_is_bounded(run):
    interp, _ = run("i = 0\nloop { if i == 200 { break } i = i + 1 }", log_limit=50)
    assert len(interp.logger.entries) == 50
    assert interp.logger.entries[-1].step_index > 50


def test_default_call_depth_allows_deep_recursion(run):
    source = "fn sum(n) { if n == 0 { return 0 } return n + sum(n - 1) }\nsum(400)"
    interp, value = run(source)
    assert interp.max_call_depth == 512
    assert value.value == 80200.0


def test_recursion_limit_is_restored_after_run(run):
    before = sys.getrecursionlimit()
    run("fn down(n) { if n == 0 { return 0 } return down(n - 1) }\ndown(300)")
    assert sys.getrecursionlimit() == before
    with pytest.raises(RSLRuntimeError):
        run("fn f() { return f() }\nf()")
    assert sys.getrecursionlimit() == before


def test_failed_run_does_not_leave_traceback_entries(make_interpreter):
    interp = make_interpreter()
    with pytest.raises(RSLTypeError):
        interp.run_source("fn f() { return 1 + true }\nf()")
    assert interp.logger.frame_last_entry
    interp.run_source("x = 1")
    assert interp.logger.frame_last_entry == {}
