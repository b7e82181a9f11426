from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from lexer import COMPARISONS, KEYWORDS, SYMBOLS, Lexer, RSLParseError, Token


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation


@dataclass
class Program(Node):
    statements: List["Statement"]


class Statement(Node):
    pass


@dataclass
class Block(Node):
    statements: List[Statement]


@dataclass
class Assignment(Statement):
    target: str
    expression: "Expression"
    qualifier: Optional[str]


@dataclass
class IndexAssignment(Statement):
    target: "Expression"
    index: "Expression"
    value: "Expression"


@dataclass
class MemberAssignment(Statement):
    target: "Expression"
    name: str
    value: "Expression"


@dataclass
class ExpressionStatement(Statement):
    expression: "Expression"


@dataclass
class IfStatement(Statement):
    condition: "Expression"
    then_block: Block
    else_block: Optional[Block]


@dataclass
class LoopStatement(Statement):
    block: Block


@dataclass
class BreakStatement(Statement):
    pass


@dataclass
class ReturnStatement(Statement):
    expression: Optional["Expression"]


class Expression(Node):
    pass


@dataclass
class Literal(Expression):
    value: Union[None, bool, float, str]
    literal_type: str


@dataclass
class Identifier(Expression):
    name: str


@dataclass
class BinaryOp(Expression):
    operator: str
    left: Expression
    right: Expression


@dataclass
class UnaryOp(Expression):
    operator: str
    operand: Expression


@dataclass
class CallExpression(Expression):
    callee: Expression
    args: List[Expression]


@dataclass
class IndexExpression(Expression):
    base: Expression
    index: Expression


@dataclass
class MemberExpression(Expression):
    base: Expression
    name: str


@dataclass
class ArrayLiteral(Expression):
    items: List[Expression]


@dataclass
class TableLiteral(Expression):
    entries: List[Tuple[str, Expression]]


@dataclass
class FunctionLiteral(Expression):
    name: Optional[str]
    params: List[str]
    body: Block


@dataclass
class ImportExpression(Expression):
    path: Expression


# Binary operator levels, lowest precedence first.
BINARY_LEVELS: List[dict] = [
    {"OR": "or"},
    {"AND": "and"},
    {"EQEQ": "==", "NOTEQ": "!="},
    {"LT": "<", "LTE": "<=", "GT": ">", "GTE": ">="},
    {"PLUS": "+", "MINUS": "-"},
    {"STAR": "*", "SLASH": "/", "PERCENT": "%"},
]

UNARY_OPERATORS = {"BANG": "!", "MINUS": "-"}

TOKEN_DESCRIPTIONS = {
    "EOF": "end of input",
    "IDENT": "identifier",
    "NUMBER": "number",
    "STRING": "string",
}


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> Program:
        statements: List[Statement] = self._parse_statements(stop_tokens={"EOF"})
        eof_token: Token = self._peek()
        return Program(location=self._location_from_token(eof_token), statements=statements)

    def _parse_statements(self, stop_tokens: Iterable[str]) -> List[Statement]:
        statements: List[Statement] = []
        while self._peek().type not in stop_tokens:
            if self._peek().type == "EOF":
                # An unclosed block runs into the end of input.
                self._consume("RBRACE")
            if self._match("SEMICOLON"):
                continue
            statements.append(self._parse_statement())
        return statements

    def _parse_statement(self) -> Statement:
        token = self._peek()
        if token.type == "FN" and self._peek_next().type in ("IDENT", "EXPORT"):
            return self._parse_function_declaration(None)
        if token.type in ("LOCAL", "EXPORT"):
            return self._parse_qualified()
        if token.type == "IF":
            return self._parse_if()
        if token.type == "LOOP":
            return self._parse_loop()
        if token.type == "BREAK":
            keyword = self._consume("BREAK")
            return BreakStatement(location=self._location_from_token(keyword))
        if token.type == "RETURN":
            return self._parse_return()
        expr: Expression = self._parse_expression()
        if self._peek().type == "EQUALS":
            return self._parse_assignment_to(expr)
        return ExpressionStatement(location=expr.location, expression=expr)

    def _parse_qualified(self) -> Statement:
        qualifier_token = self._consume(self._peek().type)
        qualifier = qualifier_token.value
        if self._peek().type == "FN":
            return self._parse_function_declaration(qualifier)
        if self._peek().type != "IDENT":
            found = self._peek()
            raise RSLParseError(
                f"'{qualifier}' must be followed by an assignment",
                location=self._location_from_token(found),
                expected="identifier",
                found=self._describe(found),
            )
        ident = self._consume("IDENT")
        self._consume("EQUALS")
        expr = self._parse_expression()
        return Assignment(location=self._location_from_token(ident), target=ident.value, expression=expr, qualifier=qualifier)

    def _parse_assignment_to(self, target: Expression) -> Statement:
        equals_token = self._consume("EQUALS")
        value = self._parse_expression()
        if isinstance(target, Identifier):
            return Assignment(location=target.location, target=target.name, expression=value, qualifier=None)
        if isinstance(target, IndexExpression):
            return IndexAssignment(location=target.location, target=target.base, index=target.index, value=value)
        if isinstance(target, MemberExpression):
            return MemberAssignment(location=target.location, target=target.base, name=target.name, value=value)
        raise RSLParseError(
            "Invalid assignment target",
            location=self._location_from_token(equals_token),
            expected="identifier, index or member target",
            found="=",
        )

    def _parse_function_declaration(self, qualifier: Optional[str]) -> Assignment:
        keyword = self._consume("FN")
        if self._match("EXPORT"):
            if qualifier == "local":
                raise RSLParseError(
                    "Function cannot be both local and export",
                    location=self._location_from_token(keyword),
                )
            qualifier = "export"
        name_token = self._consume("IDENT")
        params = self._parse_params()
        body: Block = self._parse_block()
        location: SourceLocation = self._location_from_token(keyword)
        literal = FunctionLiteral(location=location, name=name_token.value, params=params, body=body)
        return Assignment(location=location, target=name_token.value, expression=literal, qualifier=qualifier)

    def _parse_params(self) -> List[str]:
        self._consume("LPAREN")
        params: List[str] = []
        if self._peek().type != "RPAREN":
            while True:
                params.append(self._consume("IDENT").value)
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        return params

    def _parse_if(self) -> IfStatement:
        keyword = self._consume("IF")
        condition: Expression = self._parse_expression()
        then_block: Block = self._parse_block()
        else_block: Optional[Block] = None
        if self._peek().type == "ELSE":
            else_token = self._consume("ELSE")
            if self._peek().type == "IF":
                nested = self._parse_if()
                else_block = Block(location=self._location_from_token(else_token), statements=[nested])
            else:
                else_block = self._parse_block()
        return IfStatement(
            location=self._location_from_token(keyword),
            condition=condition,
            then_block=then_block,
            else_block=else_block,
        )

    def _parse_loop(self) -> LoopStatement:
        keyword = self._consume("LOOP")
        block: Block = self._parse_block()
        return LoopStatement(location=self._location_from_token(keyword), block=block)

    def _parse_return(self) -> ReturnStatement:
        keyword = self._consume("RETURN")
        expression: Optional[Expression] = None
        if self._peek().type not in ("RBRACE", "SEMICOLON", "EOF"):
            expression = self._parse_expression()
        return ReturnStatement(location=self._location_from_token(keyword), expression=expression)

    def _parse_block(self) -> Block:
        start = self._consume("LBRACE")
        statements: List[Statement] = self._parse_statements(stop_tokens={"RBRACE"})
        self._consume("RBRACE")
        return Block(location=self._location_from_token(start), statements=statements)

    def _parse_expression(self) -> Expression:
        return self._parse_binary(0)

    def _parse_binary(self, level: int) -> Expression:
        if level >= len(BINARY_LEVELS):
            return self._parse_unary()
        operators = BINARY_LEVELS[level]
        expr = self._parse_binary(level + 1)
        while self._peek().type in operators:
            op_token = self._consume(self._peek().type)
            right = self._parse_binary(level + 1)
            expr = BinaryOp(
                location=self._location_from_token(op_token),
                operator=operators[op_token.type],
                left=expr,
                right=right,
            )
        return expr

    def _parse_unary(self) -> Expression:
        token = self._peek()
        if token.type in UNARY_OPERATORS:
            self._consume(token.type)
            operand = self._parse_unary()
            return UnaryOp(location=self._location_from_token(token), operator=UNARY_OPERATORS[token.type], operand=operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> Expression:
        expr = self._parse_primary()
        while True:
            token = self._peek()
            if token.type == "LPAREN":
                args = self._parse_arguments()
                expr = CallExpression(location=self._location_from_token(token), callee=expr, args=args)
                continue
            if token.type == "LBRACKET":
                self._consume("LBRACKET")
                index = self._parse_expression()
                self._consume("RBRACKET")
                expr = IndexExpression(location=self._location_from_token(token), base=expr, index=index)
                continue
            if token.type == "DOT":
                self._consume("DOT")
                name = self._consume("IDENT")
                expr = MemberExpression(location=self._location_from_token(token), base=expr, name=name.value)
                continue
            return expr

    def _parse_arguments(self) -> List[Expression]:
        self._consume("LPAREN")
        args: List[Expression] = []
        if self._peek().type != "RPAREN":
            while True:
                args.append(self._parse_expression())
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        return args

    def _parse_primary(self) -> Expression:
        token = self._peek()
        location = self._location_from_token(token)
        if token.type == "NUMBER":
            self._consume("NUMBER")
            return Literal(location=location, value=float(token.value), literal_type="NUM")
        if token.type == "STRING":
            self._consume("STRING")
            return Literal(location=location, value=token.value, literal_type="STR")
        if token.type in ("TRUE", "FALSE"):
            self._consume(token.type)
            return Literal(location=location, value=token.type == "TRUE", literal_type="BOOL")
        if token.type == "NULL":
            self._consume("NULL")
            return Literal(location=location, value=None, literal_type="NULL")
        if token.type == "IDENT":
            self._consume("IDENT")
            return Identifier(location=location, name=token.value)
        if token.type == "LPAREN":
            self._consume("LPAREN")
            expr: Expression = self._parse_expression()
            self._consume("RPAREN")
            return expr
        if token.type == "LBRACKET":
            return self._parse_array_literal()
        if token.type == "LBRACE":
            return self._parse_table_literal()
        if token.type == "FN":
            return self._parse_function_literal()
        if token.type == "IMPORT":
            self._consume("IMPORT")
            self._consume("LPAREN")
            path = self._parse_expression()
            self._consume("RPAREN")
            return ImportExpression(location=location, path=path)
        raise RSLParseError(
            f"Unexpected {self._describe(token)} in expression",
            location=location,
            expected="expression",
            found=self._describe(token),
        )

    def _parse_array_literal(self) -> ArrayLiteral:
        lbracket = self._consume("LBRACKET")
        items: List[Expression] = []
        if self._peek().type != "RBRACKET":
            while True:
                items.append(self._parse_expression())
                if not self._match("COMMA"):
                    break
        self._consume("RBRACKET")
        return ArrayLiteral(location=self._location_from_token(lbracket), items=items)

    def _parse_table_literal(self) -> TableLiteral:
        lbrace = self._consume("LBRACE")
        entries: List[Tuple[str, Expression]] = []
        if self._peek().type != "RBRACE":
            while True:
                key_token = self._peek()
                if key_token.type not in ("IDENT", "STRING"):
                    raise RSLParseError(
                        "Expected table key",
                        location=self._location_from_token(key_token),
                        expected="identifier or string",
                        found=self._describe(key_token),
                    )
                self._consume(key_token.type)
                self._consume("COLON")
                entries.append((key_token.value, self._parse_expression()))
                if not self._match("COMMA"):
                    break
        self._consume("RBRACE")
        return TableLiteral(location=self._location_from_token(lbrace), entries=entries)

    def _parse_function_literal(self) -> FunctionLiteral:
        keyword = self._consume("FN")
        name: Optional[str] = None
        if self._peek().type == "IDENT":
            name = self._consume("IDENT").value
        params = self._parse_params()
        body = self._parse_block()
        return FunctionLiteral(location=self._location_from_token(keyword), name=name, params=params, body=body)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            expected = self._describe_type(token_type)
            found = self._describe(token)
            raise RSLParseError(
                f"Expected {expected} but found {found}",
                location=self._location_from_token(token),
                expected=expected,
                found=found,
            )
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[self.index + 1]

    def _describe_type(self, token_type: str) -> str:
        if token_type in TOKEN_DESCRIPTIONS:
            return TOKEN_DESCRIPTIONS[token_type]
        for text, kind in SYMBOLS.items():
            if kind == token_type:
                return f"'{text}'"
        for text, kinds in COMPARISONS.items():
            if token_type == kinds[0]:
                return f"'{text}'"
            if token_type == kinds[1]:
                return f"'{text}='"
        for text, kind in KEYWORDS.items():
            if kind == token_type:
                return f"'{text}'"
        return token_type

    def _describe(self, token: Token) -> str:
        if token.type == "EOF":
            return "end of input"
        if token.type == "STRING":
            return f"string \"{token.value}\""
        return f"'{token.value}'"

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse(text: str, filename: str = "<string>") -> Program:
    tokens = Lexer(text, filename).tokenize()
    return Parser(tokens, filename, text.splitlines()).parse()
