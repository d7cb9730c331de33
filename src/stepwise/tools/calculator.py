"""
Restricted arithmetic evaluator and the ``calculator`` tool.

Only numbers, ``+ - * /``, unary signs and parentheses are accepted.  The expression is tokenized
and evaluated by a small recursive-descent parser; nothing is ever handed to ``eval``.
"""

import re
from typing import (
    Any,
    Dict,
    List,
    Tuple,
    Union,
)

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

Number = Union[int, float]

MAX_EXPRESSION_LENGTH = 256
MAX_NESTING_DEPTH = 32

_TOKEN_RE = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(.))")


class CalculatorError(ValueError):
    """Raised for expressions outside the accepted grammar or that cannot be evaluated."""


def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    for match in _TOKEN_RE.finditer(expression):
        number, symbol = match.groups()
        if number is not None:
            tokens.append(("num", number))
        elif symbol is not None:
            if symbol not in "+-*/()":
                raise CalculatorError(f"unsupported character {symbol!r}")
            tokens.append(("op", symbol))
    return tokens


class _Parser:
    """expr := term (('+'|'-') term)* ; term := factor (('*'|'/') factor)* ;
    factor := ('+'|'-') factor | NUMBER | '(' expr ')'"""

    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        token = self._peek()
        if token is None:
            raise CalculatorError("unexpected end of expression")
        self.pos += 1
        return token

    def parse(self) -> Number:
        if not self.tokens:
            raise CalculatorError("empty expression")
        value = self._expr()
        if self._peek() is not None:
            raise CalculatorError(f"unexpected token {self._peek()[1]!r}")  # type: ignore[index]
        return value

    def _expr(self) -> Number:
        value = self._term()
        while self._peek() in (("op", "+"), ("op", "-")):
            _, op = self._take()
            rhs = self._term()
            value = value + rhs if op == "+" else value - rhs
        return value

    def _term(self) -> Number:
        value = self._factor()
        while self._peek() in (("op", "*"), ("op", "/")):
            _, op = self._take()
            rhs = self._factor()
            if op == "*":
                value = value * rhs
            else:
                if rhs == 0:
                    raise CalculatorError("division by zero")
                value = value / rhs
        return value

    def _factor(self) -> Number:
        kind, text = self._take()
        if kind == "num":
            return float(text) if "." in text else int(text)
        if text in "+-":
            self._enter()
            try:
                value = self._factor()
            finally:
                self.depth -= 1
            return -value if text == "-" else value
        if text == "(":
            self._enter()
            try:
                value = self._expr()
            finally:
                self.depth -= 1
            if self._take() != ("op", ")"):
                raise CalculatorError("expected ')'")
            return value
        raise CalculatorError(f"unexpected token {text!r}")

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise CalculatorError("expression is nested too deeply")


def evaluate(expression: str) -> Number:
    """Evaluate a restricted arithmetic *expression* and return its numeric value."""
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CalculatorError(f"expression longer than {MAX_EXPRESSION_LENGTH} characters")
    value = _Parser(_tokenize(expression)).parse()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _calculator(args: Dict[str, Any]) -> str:
    expression = args["expression"]
    return f"{expression} = {evaluate(expression)}"


def calculator_tool() -> ToolDescriptor:
    """Build the ``calculator`` tool."""
    return ToolDescriptor(
        name="calculator",
        description="Evaluate an arithmetic expression using numbers, + - * / and parentheses.",
        handler=_calculator,
        parameters=(
            param("expression", "string", description="Expression such as '(24 + 18) * 0.75'"),
        ),
    )
