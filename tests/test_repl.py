import pytest

from interpreter import RSLTypeError
from lexer import RSLParseError
from repl import BUFFERING, ReplSession, format_result, run_repl


@pytest.fixture
def session(make_interpreter):
    return ReplSession(make_interpreter())


def feed_block(session, *lines):
    for line in lines:
        assert session.feed(line) is None
    return session.feed("")


def test_blank_line_on_empty_buffer_does_nothing(session):
    assert session.feed("") is None
    assert session.feed("   ") is None
    assert not session.pending


def test_block_is_evaluated_on_blank_line(session, outputs):
    result = feed_block(session, "x = 2", 'print("x is", x)', "x * 21")
    assert result.ok
    assert result.value.value == 42.0
    assert result.output == ["x is 2"]
    assert outputs == ["x is 2"]
    assert format_result(result) == "42"
    assert session.state == BUFFERING


def test_bindings_persist_across_blocks(session):
    feed_block(session, "fn inc(n) {", "  return n + 1", "}")
    result = feed_block(session, "inc(inc(1))")
    assert result.value.value == 3.0


def test_error_keeps_earlier_bindings(session):
    result = feed_block(session, "kept = 1", "bad = 1 + true", "never = 2")
    assert isinstance(result.error, RSLTypeError)
    assert format_result(result).startswith("TypeError: ")
    assert ":2:" in format_result(result)
    after = feed_block(session, "[kept, never]")
    assert format_result(after) == "[1, null]"


def test_parse_error_discards_only_that_block(session):
    feed_block(session, "a = 1")
    result = feed_block(session, "if a {")
    assert isinstance(result.error, RSLParseError)
    assert format_result(result).startswith("ParseError: ")
    assert feed_block(session, "a").value.value == 1.0


def test_null_result_renders_nothing(session):
    assert format_result(feed_block(session, "y = 3")) == ""


def test_strings_render_quoted(session):
    assert format_result(feed_block(session, '"hi"')) == '"hi"'


def test_run_repl_drives_session(capsys):
    lines = iter(["x = 5", "", "x + 1", "", "x = {", ""])
    prompts = []

    def read_line(prompt):
        prompts.append(prompt)
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    assert run_repl(read_line=read_line) == 0
    captured = capsys.readouterr()
    assert "6" in captured.out.splitlines()
    assert "ParseError" in captured.err
    assert prompts[:2] == [">>> ", "... "]
