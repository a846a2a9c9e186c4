"""Expression evaluator for transformation conditions and computed fields.

Expressions run against a *current item*. ``$`` paths and bare field names
(``age``, ``item.name``) are looked up on that item.
"""

from __future__ import annotations

import re
from typing import Any

from flowengine.exceptions import TransformationError
from flowengine.jsonpath import MISSING, evaluate_path

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<path>\$(?:\.\.?(?:\*|[A-Za-z_]\w*)|\[[^\]]*\])*)
  | (?P<ident>[A-Za-z_][\w]*(?:\.[A-Za-z_][\w]*|\[\d+\])*)
  | (?P<op>==|!=|>=|<=|&&|\|\||[-+*/%<>!(),])
    """,
    re.VERBOSE,
)

_KEYWORD_OPS = {"contains", "startsWith", "endsWith", "matches", "and", "or", "not"}
_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}
_COMPARISONS = {"==", "!=", ">", "<", ">=", "<=", "contains", "startsWith",
                "endsWith", "matches"}


def tokenize(expression: str) -> list[tuple[str, str]]:
    """Split an expression into (kind, text) tokens."""
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if not match:
            raise TransformationError(
                expression, f"Unexpected character {expression[pos]!r} at {pos}"
            )
        pos = match.end()
        kind = match.lastgroup or ""
        text = match.group()
        if kind == "ws":
            continue
        if kind == "ident" and text in _KEYWORD_OPS:
            kind = "op"
            text = {"and": "&&", "or": "||", "not": "!"}.get(text, text)
        tokens.append((kind, text))
    return tokens


class _Parser:
    """Recursive-descent parser producing a tuple-based AST."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = tokenize(expression)
        self.pos = 0

    def parse(self) -> tuple:
        if not self.tokens:
            raise TransformationError(self.expression, "Empty expression")
        node = self._or()
        if self.pos < len(self.tokens):
            raise TransformationError(
                self.expression, f"Unexpected token {self.tokens[self.pos][1]!r}"
            )
        return node

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, *ops: str) -> str | None:
        token = self._peek()
        if token and token[0] == "op" and token[1] in ops:
            self.pos += 1
            return token[1]
        return None

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            raise TransformationError(self.expression, f"Expected {op!r}")

    def _or(self) -> tuple:
        node = self._and()
        while self._accept("||"):
            node = ("or", node, self._and())
        return node

    def _and(self) -> tuple:
        node = self._not()
        while self._accept("&&"):
            node = ("and", node, self._not())
        return node

    def _not(self) -> tuple:
        if self._accept("!"):
            return ("not", self._not())
        return self._comparison()

    def _comparison(self) -> tuple:
        node = self._additive()
        op = self._accept(*_COMPARISONS)
        if op:
            node = ("cmp", op, node, self._additive())
        return node

    def _additive(self) -> tuple:
        node = self._term()
        while True:
            op = self._accept("+", "-")
            if not op:
                return node
            node = ("arith", op, node, self._term())

    def _term(self) -> tuple:
        node = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if not op:
                return node
            node = ("arith", op, node, self._unary())

    def _unary(self) -> tuple:
        if self._accept("-"):
            return ("neg", self._unary())
        return self._primary()

    def _primary(self) -> tuple:
        token = self._peek()
        if token is None:
            raise TransformationError(self.expression, "Unexpected end")
        kind, text = token
        self.pos += 1
        if kind == "number":
            return ("lit", float(text) if any(c in text for c in ".eE") else int(text))
        if kind == "string":
            return ("lit", _unquote(text))
        if kind == "path":
            return ("path", text)
        if kind == "ident":
            if text in _LITERALS:
                return ("lit", _LITERALS[text])
            if self._accept("("):
                args: list[tuple] = []
                if not self._accept(")"):
                    args.append(self._or())
                    while self._accept(","):
                        args.append(self._or())
                    self._expect(")")
                return ("call", text, args)
            return ("field", text)
        if kind == "op" and text == "(":
            node = self._or()
            self._expect(")")
            return node
        raise TransformationError(self.expression, f"Unexpected token {text!r}")


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> float | int | None:
    """Numeric view of a value, or None when it has none."""
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() and "." not in value else number
    return None


def truthy(value: Any) -> bool:
    if value is MISSING or value is None:
        return False
    if isinstance(value, (list, dict, str)):
        return len(value) > 0
    return bool(value)


def _equal(left: Any, right: Any) -> bool:
    if left is MISSING:
        left = None
    if right is MISSING:
        right = None
    if is_number(left) or is_number(right):
        a, b = to_number(left), to_number(right)
        if a is not None and b is not None:
            return a == b
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _equal(left, right)
    if op == "!=":
        return not _equal(left, right)
    if op == "contains":
        if isinstance(left, str):
            return str(right) in left
        if isinstance(left, (list, dict)):
            return right in left
        return False
    if op in ("startsWith", "endsWith"):
        if not isinstance(left, str):
            return False
        method = left.startswith if op == "startsWith" else left.endswith
        return method(str(right))
    if op == "matches":
        return isinstance(left, str) and re.search(str(right), left) is not None
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        if isinstance(left, str) and isinstance(right, str):
            a, b = left, right  # type: ignore[assignment]
        else:
            return False
    return {
        ">": a > b,
        "<": a < b,
        ">=": a >= b,
        "<=": a <= b,
    }[op]


def _arith(expression: str, op: str, left: Any, right: Any) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return f"{'' if left in (None, MISSING) else left}{'' if right in (None, MISSING) else right}"
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        raise TransformationError(
            expression, f"Cannot apply {op!r} to {left!r} and {right!r}"
        )
    if op in ("/", "%") and b == 0:
        raise TransformationError(expression, "Division by zero")
    result = {
        "+": lambda: a + b,
        "-": lambda: a - b,
        "*": lambda: a * b,
        "/": lambda: a / b,
        "%": lambda: a % b,
    }[op]()
    if isinstance(result, float) and result.is_integer() and op != "/":
        return int(result)
    return result


def _lookup_field(item: Any, name: str) -> Any:
    if name == "item":
        return item
    if name.startswith("item."):
        name = name[len("item."):]
    return evaluate_path(item, "$." + name)


_CALLS = {
    "length": lambda v: len(v) if isinstance(v, (list, dict, str)) else 0,
    "empty": lambda v: not truthy(v),
    "lower": lambda v: str(v).lower(),
    "upper": lambda v: str(v).upper(),
    "trim": lambda v: str(v).strip(),
    "string": lambda v: "" if v in (None, MISSING) else str(v),
    "number": to_number,
    "abs": lambda v: abs(to_number(v) or 0),
}


def _eval(node: tuple, item: Any, expression: str) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "path":
        return evaluate_path(item, node[1])
    if kind == "field":
        return _lookup_field(item, node[1])
    if kind == "not":
        return not truthy(_eval(node[1], item, expression))
    if kind == "and":
        left = _eval(node[1], item, expression)
        return _eval(node[2], item, expression) if truthy(left) else left
    if kind == "or":
        left = _eval(node[1], item, expression)
        return left if truthy(left) else _eval(node[2], item, expression)
    if kind == "neg":
        value = to_number(_eval(node[1], item, expression))
        if value is None:
            raise TransformationError(expression, "Cannot negate a non-number")
        return -value
    if kind == "cmp":
        return _compare(
            node[1],
            _eval(node[2], item, expression),
            _eval(node[3], item, expression),
        )
    if kind == "arith":
        return _arith(
            expression,
            node[1],
            _eval(node[2], item, expression),
            _eval(node[3], item, expression),
        )
    if kind == "call":
        func = _CALLS.get(node[1])
        if func is None:
            raise TransformationError(expression, f"Unknown function: {node[1]}")
        args = [_eval(a, item, expression) for a in node[2]]
        if len(args) != 1:
            raise TransformationError(
                expression, f"{node[1]}() takes exactly one argument"
            )
        return func(args[0])
    raise TransformationError(expression, f"Unknown node {kind}")


def evaluate_expression(expression: str, item: Any) -> Any:
    """Evaluate an expression against the current item."""
    tree = _Parser(expression).parse()
    return _eval(tree, item, expression)
