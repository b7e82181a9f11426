import pytest

from lexer import RSLLexError, tokenize


def kinds(text):
    return [token.type for token in tokenize(text)]


def test_assignment_tokens_and_comment_is_dropped():
    tokens = tokenize("x = 1.5 # trailing comment\ny")
    assert [t.type for t in tokens] == ["IDENT", "EQUALS", "NUMBER", "IDENT", "EOF"]
    assert tokens[2].value == "1.5"
    assert (tokens[3].line, tokens[3].column) == (2, 1)


def test_two_character_operators():
    assert kinds("a == b != c <= d >= e < f > g !h") == [
        "IDENT", "EQEQ", "IDENT", "NOTEQ", "IDENT", "LTE", "IDENT", "GTE",
        "IDENT", "LT", "IDENT", "GT", "IDENT", "BANG", "IDENT", "EOF",
    ]


def test_keywords_are_reserved():
    text = "fn if else loop break return local export import null true false and or"
    assert kinds(text)[:-1] == [
        "FN", "IF", "ELSE", "LOOP", "BREAK", "RETURN", "LOCAL", "EXPORT",
        "IMPORT", "NULL", "TRUE", "FALSE", "AND", "OR",
    ]
    assert kinds("fnord _loop x1")[:-1] == ["IDENT", "IDENT", "IDENT"]


def test_string_escapes():
    tokens = tokenize(r'"a\n\"b\"\t\\"')
    assert tokens[0].type == "STRING"
    assert tokens[0].value == 'a\n"b"\t\\'


def test_number_followed_by_member_access():
    assert kinds("1.foo") == ["NUMBER", "DOT", "IDENT", "EOF"]
    assert tokenize("12.25")[0].value == "12.25"


def test_unknown_escape_is_an_error():
    with pytest.raises(RSLLexError, match="Unknown escape"):
        tokenize(r'"bad \q"')


def test_unterminated_string_reports_opening_quote():
    with pytest.raises(RSLLexError) as info:
        tokenize('x = 1\ny = "open')
    assert "Unterminated string" in str(info.value)
    assert (info.value.line, info.value.column) == (2, 5)


def test_unexpected_character_position():
    with pytest.raises(RSLLexError) as info:
        tokenize("x = 1\n  @", filename="demo.rsl")
    assert (info.value.line, info.value.column) == (2, 3)
    assert str(info.value).endswith("at demo.rsl:2:3")
