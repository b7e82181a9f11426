from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional


class RSLError(Exception):
    """Base class for interpreter errors."""

    label = "Error"


class RSLLexError(RSLError):
    """Raised when the source text cannot be split into tokens."""

    label = "LexError"

    def __init__(self, message: str, *, filename: str, line: int, column: int) -> None:
        super().__init__(f"{message} at {filename}:{line}:{column}")
        self.message = message
        self.filename = filename
        self.line = line
        self.column = column


class RSLParseError(RSLError):
    """Raised when parsing fails."""

    label = "ParseError"

    def __init__(
        self,
        message: str,
        *,
        location: Optional[Any] = None,
        expected: Optional[str] = None,
        found: Optional[str] = None,
    ) -> None:
        where = f" at {location.file}:{location.line}:{location.column}" if location is not None else ""
        super().__init__(f"{message}{where}")
        self.message = message
        self.location = location
        self.expected = expected
        self.found = found


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "fn": "FN",
    "if": "IF",
    "else": "ELSE",
    "loop": "LOOP",
    "break": "BREAK",
    "return": "RETURN",
    "local": "LOCAL",
    "export": "EXPORT",
    "import": "IMPORT",
    "null": "NULL",
    "true": "TRUE",
    "false": "FALSE",
    "and": "AND",
    "or": "OR",
}

SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "%": "PERCENT",
    ";": "SEMICOLON",
    ",": "COMMA",
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "{": "LBRACE",
    "}": "RBRACE",
    ".": "DOT",
    ":": "COLON",
}

# Symbols that may be followed by '=' to form a two-character operator.
COMPARISONS = {
    "=": ("EQUALS", "EQEQ"),
    "!": ("BANG", "NOTEQ"),
    "<": ("LT", "LTE"),
    ">": ("GT", "GTE"),
}

DIGITS = "0123456789"

ESCAPES = {
    '"': '"',
    "\\": "\\",
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
}


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in " \t\r\n":
                _advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            if ch in COMPARISONS:
                tokens_append(self._consume_comparison())
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            if ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                tokens_append(self._consume_identifier())
                continue
            raise RSLLexError(f"Unexpected character '{ch}'", filename=self.filename, line=self.line, column=self.column)
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_comparison(self) -> Token:
        line, col = self.line, self.column
        ch = self._peek()
        single, double = COMPARISONS[ch]
        self._advance()
        if not self._eof and self._peek() == "=":
            self._advance()
            return Token(double, ch + "=", line, col)
        return Token(single, ch, line, col)

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        text = self.text
        start = self.index
        while not self._eof and self._peek() in DIGITS:
            self._advance()
        # A '.' only belongs to the number when a digit follows it; otherwise
        # it is left for member access.
        if (
            not self._eof
            and self._peek() == "."
            and self.index + 1 < len(text)
            and text[self.index + 1] in DIGITS
        ):
            self._advance()
            while not self._eof and self._peek() in DIGITS:
                self._advance()
        return Token("NUMBER", text[start:self.index], line, col)

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Token("STRING", "".join(chars), line, col)
            if ch == "\\":
                esc_line, esc_col = self.line, self.column
                self._advance()
                if self._eof:
                    break
                code = self._peek()
                if code not in ESCAPES:
                    raise RSLLexError(
                        f"Unknown escape sequence '\\{code}'", filename=self.filename, line=esc_line, column=esc_col
                    )
                chars.append(ESCAPES[code])
                self._advance()
                continue
            chars.append(ch)
            self._advance()
        raise RSLLexError("Unterminated string literal", filename=self.filename, line=line, column=col)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        text = self.text
        start = self.index
        while not self._eof and self._is_identifier_part(self._peek()):
            self._advance()
        value = text[start:self.index]
        token_type: str = KEYWORDS.get(value, "IDENT")
        return Token(token_type, value, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")

    def _is_identifier_part(self, ch: str) -> bool:
        return self._is_identifier_start(ch) or ("0" <= ch <= "9")

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def tokenize(text: str, filename: str = "<string>") -> List[Token]:
    return Lexer(text, filename).tokenize()
