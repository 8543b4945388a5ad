"""Sandboxed arithmetic expressions used by pricing rules.

Rule formulas such as ``transactionVolume > 100 ? basePrice * 1.5 : basePrice``
are tokenised and parsed once into a small tree of nodes, then evaluated
against a mapping of variable bindings. Nothing here calls ``eval``; the only
callables reachable from an expression are the functions registered in
``_FUNCTIONS``.

Grammar, lowest precedence first::

    expression  := or_expr ( "?" expression ":" expression )?
    or_expr     := and_expr ( ("||" | "or") and_expr )*
    and_expr    := equality ( ("&&" | "and") equality )*
    equality    := comparison ( ("==" | "!=") comparison )*
    comparison  := additive ( ("<" | "<=" | ">" | ">=") additive )*
    additive    := term ( ("+" | "-") term )*
    term        := unary ( ("*" | "/" | "%") unary )*
    unary       := ("-" | "+" | "!" | "not") unary | power
    power       := primary ( "^" unary )?
    primary     := NUMBER | STRING | "true" | "false"
                 | NAME "(" arguments? ")" | NAME | "(" expression ")"

Values are decimals, strings or booleans. Booleans count as ``1``/``0`` in
arithmetic; strings only support comparisons, and string equality ignores
case.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import (
    ROUND_CEILING,
    ROUND_FLOOR,
    ROUND_HALF_UP,
    Decimal,
    localcontext,
)
from enum import Enum
from functools import lru_cache
from typing import Any, Union

Value = Union[Decimal, str, bool]

_ZERO = Decimal("0")
_ONE = Decimal("1")

_NUMBER_TEXT = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_TOKEN_PATTERN = re.compile(
    r"""
    (?P<number>\d+(?:\.\d*)?|\.\d+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>&&|\|\||==|!=|<=|>=|[-+*/%^<>!?:(),])
    """,
    re.VERBOSE,
)
_KEYWORD_OPERATORS = {"and": "&&", "or": "||", "not": "!"}

# Parenthesised, unary and exponent nesting counted while parsing.
MAX_NESTING_DEPTH = 64
# Depth of the parsed tree, which bounds recursion during evaluation.
MAX_TREE_DEPTH = 200


class ExpressionError(ValueError):
    """Base class for expression failures."""


class ExpressionSyntaxError(ExpressionError):
    """Raised when an expression cannot be parsed."""


class ExpressionEvaluationError(ExpressionError):
    """Raised when a parsed expression cannot be evaluated."""


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def coerce_value(value: Any) -> Value:
    """Convert a binding supplied by the caller into an expression value."""

    if isinstance(value, Enum):
        return coerce_value(value.value)
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ExpressionEvaluationError("Non-finite numbers are not supported")
        return value
    if isinstance(value, (int, float)):
        return coerce_value(Decimal(str(value)))
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if _NUMBER_TEXT.match(text):
            return Decimal(text)
        return value
    return str(value)


def _as_number(value: Value, context: str) -> Decimal:
    if isinstance(value, bool):
        return _ONE if value else _ZERO
    if isinstance(value, Decimal):
        return value
    raise ExpressionEvaluationError(f"Cannot use text '{value}' in {context}")


def _truthy(value: Value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return value != 0
    return bool(value)


def _equals(left: Value, right: Value) -> bool:
    left_text = isinstance(left, str)
    right_text = isinstance(right, str)
    if left_text and right_text:
        return left.casefold() == right.casefold()
    if left_text or right_text:
        return False
    return _as_number(left, "comparison") == _as_number(right, "comparison")


def _compare(operator: str, left: Value, right: Value) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a: Any = left.casefold()
        b: Any = right.casefold()
    else:
        a = _as_number(left, "comparison")
        b = _as_number(right, "comparison")
    if operator == "<":
        return a < b
    if operator == "<=":
        return a <= b
    if operator == ">":
        return a > b
    return a >= b


def _power(base: Decimal, exponent: Decimal) -> Decimal:
    if base == 0 and exponent < 0:
        raise ExpressionEvaluationError("Zero cannot be raised to a negative power")
    if exponent == exponent.to_integral_value():
        return base ** int(exponent)
    if base < 0:
        raise ExpressionEvaluationError(
            "Negative numbers cannot be raised to fractional powers"
        )
    return base**exponent


# ---------------------------------------------------------------------------
# Syntax tree
# ---------------------------------------------------------------------------


class Node:
    """Base class for parsed expression nodes."""

    def evaluate(self, env: Mapping[str, Value]) -> Value:  # pragma: no cover
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Value

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        return self.value


@dataclass(frozen=True)
class Variable(Node):
    name: str

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        try:
            return env[self.name]
        except KeyError:
            raise ExpressionEvaluationError(
                f"Unknown variable '{self.name}'"
            ) from None


@dataclass(frozen=True)
class Unary(Node):
    operator: str
    operand: Node

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        value = self.operand.evaluate(env)
        if self.operator == "!":
            return not _truthy(value)
        number = _as_number(value, f"unary '{self.operator}'")
        return -number if self.operator == "-" else number


@dataclass(frozen=True)
class Binary(Node):
    operator: str
    left: Node
    right: Node

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        operator = self.operator
        if operator == "&&":
            return _truthy(self.left.evaluate(env)) and _truthy(self.right.evaluate(env))
        if operator == "||":
            return _truthy(self.left.evaluate(env)) or _truthy(self.right.evaluate(env))

        left = self.left.evaluate(env)
        right = self.right.evaluate(env)
        if operator == "==":
            return _equals(left, right)
        if operator == "!=":
            return not _equals(left, right)
        if operator in {"<", "<=", ">", ">="}:
            return _compare(operator, left, right)

        a = _as_number(left, f"'{operator}'")
        b = _as_number(right, f"'{operator}'")
        if operator == "+":
            return a + b
        if operator == "-":
            return a - b
        if operator == "*":
            return a * b
        if operator in {"/", "%"}:
            if b == 0:
                raise ExpressionEvaluationError("Division by zero")
            return a / b if operator == "/" else a % b
        if operator == "^":
            return _power(a, b)
        raise ExpressionEvaluationError(f"Unsupported operator '{operator}'")


@dataclass(frozen=True)
class Conditional(Node):
    condition: Node
    when_true: Node
    when_false: Node

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        if _truthy(self.condition.evaluate(env)):
            return self.when_true.evaluate(env)
        return self.when_false.evaluate(env)


def _numbers(name: str, values: Sequence[Value]) -> list[Decimal]:
    return [_as_number(value, f"{name}()") for value in values]


def _round(values: Sequence[Value]) -> Decimal:
    number, *rest = _numbers("round", values)
    digits = rest[0] if rest else _ZERO
    if digits != digits.to_integral_value():
        raise ExpressionEvaluationError("round() digits must be a whole number")
    exponent = _ONE.scaleb(-int(digits))
    return number.quantize(exponent, rounding=ROUND_HALF_UP)


def _sqrt(values: Sequence[Value]) -> Decimal:
    (number,) = _numbers("sqrt", values)
    if number < 0:
        raise ExpressionEvaluationError("sqrt() of a negative number")
    return number.sqrt()


_FUNCTIONS: dict[str, tuple[int, int | None, Callable[[Sequence[Value]], Value]]] = {
    "min": (1, None, lambda values: min(_numbers("min", values))),
    "max": (1, None, lambda values: max(_numbers("max", values))),
    "abs": (1, 1, lambda values: abs(_numbers("abs", values)[0])),
    "round": (1, 2, _round),
    "floor": (
        1,
        1,
        lambda values: _numbers("floor", values)[0].to_integral_value(ROUND_FLOOR),
    ),
    "ceiling": (
        1,
        1,
        lambda values: _numbers("ceiling", values)[0].to_integral_value(ROUND_CEILING),
    ),
    "sqrt": (1, 1, _sqrt),
}
_FUNCTIONS["ceil"] = _FUNCTIONS["ceiling"]
_LAZY_FUNCTIONS = {"if": 3}


@dataclass(frozen=True)
class Call(Node):
    name: str
    arguments: tuple[Node, ...]

    def evaluate(self, env: Mapping[str, Value]) -> Value:
        if self.name == "if":
            condition, when_true, when_false = self.arguments
            branch = when_true if _truthy(condition.evaluate(env)) else when_false
            return branch.evaluate(env)

        _, _, function = _FUNCTIONS[self.name]
        return function([argument.evaluate(env) for argument in self.arguments])


# ---------------------------------------------------------------------------
# Tokeniser and parser
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


def tokenize(source: str) -> list[Token]:
    """Split ``source`` into tokens, raising on unknown characters."""

    tokens: list[Token] = []
    position = 0
    length = len(source)
    while position < length:
        if source[position].isspace():
            position += 1
            continue
        match = _TOKEN_PATTERN.match(source, position)
        if match is None:
            raise ExpressionSyntaxError(
                f"Unexpected character {source[position]!r} at position {position}"
            )
        kind = match.lastgroup or "op"
        text = match.group()
        if kind == "name" and text.lower() in _KEYWORD_OPERATORS:
            kind, text = "op", _KEYWORD_OPERATORS[text.lower()]
        tokens.append(Token(kind, text, position))
        position = match.end()
    tokens.append(Token("end", "", length))
    return tokens


def _unescape(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _children(node: Node) -> tuple[Node, ...]:
    if isinstance(node, Unary):
        return (node.operand,)
    if isinstance(node, Binary):
        return (node.left, node.right)
    if isinstance(node, Conditional):
        return (node.condition, node.when_true, node.when_false)
    if isinstance(node, Call):
        return node.arguments
    return ()


def _tree_depth(root: Node) -> int:
    deepest = 0
    pending = [(root, 1)]
    while pending:
        node, level = pending.pop()
        deepest = max(deepest, level)
        pending.extend((child, level + 1) for child in _children(node))
    return deepest


class _Parser:
    def __init__(self, source: str) -> None:
        self._tokens = tokenize(source)
        self._index = 0
        self._depth = 0
        self.variables: set[str] = set()

    @property
    def _current(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._current
        self._index += 1
        return token

    def _accept(self, *operators: str) -> str | None:
        token = self._current
        if token.kind == "op" and token.text in operators:
            self._index += 1
            return token.text
        return None

    def _expect(self, operator: str) -> None:
        if self._accept(operator) is None:
            token = self._current
            found = token.text or "end of expression"
            raise ExpressionSyntaxError(
                f"Expected '{operator}' at position {token.position}, found '{found}'"
            )

    def parse(self) -> Node:
        node = self._expression()
        if self._current.kind != "end":
            token = self._current
            raise ExpressionSyntaxError(
                f"Unexpected '{token.text}' at position {token.position}"
            )
        if _tree_depth(node) > MAX_TREE_DEPTH:
            raise ExpressionSyntaxError(
                f"Expression is more than {MAX_TREE_DEPTH} operations deep"
            )
        return node

    def _descend(self) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise ExpressionSyntaxError(
                f"Expression nests deeper than {MAX_NESTING_DEPTH} levels at "
                f"position {self._current.position}"
            )

    def _expression(self) -> Node:
        self._descend()
        try:
            condition = self._or()
            if self._accept("?"):
                when_true = self._expression()
                self._expect(":")
                when_false = self._expression()
                return Conditional(condition, when_true, when_false)
            return condition
        finally:
            self._depth -= 1

    def _binary_level(self, operators: tuple[str, ...], operand: Callable[[], Node]) -> Node:
        node = operand()
        while True:
            operator = self._accept(*operators)
            if operator is None:
                return node
            node = Binary(operator, node, operand())

    def _or(self) -> Node:
        return self._binary_level(("||",), self._and)

    def _and(self) -> Node:
        return self._binary_level(("&&",), self._equality)

    def _equality(self) -> Node:
        return self._binary_level(("==", "!="), self._comparison)

    def _comparison(self) -> Node:
        return self._binary_level(("<", "<=", ">", ">="), self._additive)

    def _additive(self) -> Node:
        return self._binary_level(("+", "-"), self._term)

    def _term(self) -> Node:
        return self._binary_level(("*", "/", "%"), self._unary)

    def _unary(self) -> Node:
        self._descend()
        try:
            operator = self._accept("-", "+", "!")
            if operator is not None:
                return Unary(operator, self._unary())
            return self._power()
        finally:
            self._depth -= 1

    def _power(self) -> Node:
        base = self._primary()
        if self._accept("^"):
            return Binary("^", base, self._unary())
        return base

    def _primary(self) -> Node:
        token = self._advance()
        if token.kind == "number":
            return Literal(Decimal(token.text))
        if token.kind == "string":
            return Literal(_unescape(token.text))
        if token.kind == "name":
            lowered = token.text.lower()
            if lowered in {"true", "false"}:
                return Literal(lowered == "true")
            if self._accept("("):
                return self._call(token)
            self.variables.add(token.text)
            return Variable(token.text)
        if token.kind == "op" and token.text == "(":
            node = self._expression()
            self._expect(")")
            return node

        found = token.text or "end of expression"
        raise ExpressionSyntaxError(f"Unexpected '{found}' at position {token.position}")

    def _call(self, token: Token) -> Node:
        name = token.text.lower()
        arguments: list[Node] = []
        if self._accept(")") is None:
            arguments.append(self._expression())
            while self._accept(","):
                arguments.append(self._expression())
            self._expect(")")

        if name in _LAZY_FUNCTIONS:
            minimum = maximum = _LAZY_FUNCTIONS[name]
        elif name in _FUNCTIONS:
            minimum, maximum, _ = _FUNCTIONS[name]
        else:
            raise ExpressionSyntaxError(
                f"Unknown function '{token.text}' at position {token.position}"
            )

        if len(arguments) < minimum or (maximum is not None and len(arguments) > maximum):
            raise ExpressionSyntaxError(
                f"Function '{name}' received {len(arguments)} argument(s)"
            )
        return Call(name, tuple(arguments))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Expression:
    """A parsed expression ready to be evaluated repeatedly."""

    source: str
    root: Node
    variables: frozenset[str]

    def evaluate(self, bindings: Mapping[str, Any]) -> Decimal:
        """Evaluate against ``bindings`` and return a numeric result.

        Only the variables referenced by the expression are read from
        ``bindings``; ``None`` values are treated as unbound.
        """

        env: dict[str, Value] = {}
        for name in self.variables:
            raw = bindings.get(name)
            if raw is not None:
                env[name] = coerce_value(raw)

        try:
            with localcontext() as context:
                context.prec = 28
                result = self.root.evaluate(env)
        except ArithmeticError as exc:
            raise ExpressionEvaluationError(f"Arithmetic error: {exc}") from exc

        if isinstance(result, str):
            raise ExpressionEvaluationError(
                f"Expression produced text '{result}' instead of a number"
            )
        return _as_number(result, "result")


@lru_cache(maxsize=1024)
def compile_expression(source: str) -> Expression:
    """Parse ``source`` into an :class:`Expression`, caching by text."""

    if not isinstance(source, str) or not source.strip():
        raise ExpressionSyntaxError("Expression cannot be empty")

    parser = _Parser(source)
    root = parser.parse()
    return Expression(source=source, root=root, variables=frozenset(parser.variables))


def evaluate_expression(source: str, bindings: Mapping[str, Any]) -> Decimal:
    """Compile (with caching) and evaluate ``source`` in one step."""

    return compile_expression(source).evaluate(bindings)


SUPPORTED_FUNCTIONS = frozenset({*_FUNCTIONS, *_LAZY_FUNCTIONS})


__all__ = [
    "Expression",
    "ExpressionError",
    "ExpressionEvaluationError",
    "ExpressionSyntaxError",
    "SUPPORTED_FUNCTIONS",
    "coerce_value",
    "compile_expression",
    "evaluate_expression",
    "tokenize",
]
