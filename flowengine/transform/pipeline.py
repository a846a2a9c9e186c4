"""Pipeline expressions: ``$.path | where(cond) | map(expr) | ...``."""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from typing import Any

from flowengine.exceptions import TransformationError
from flowengine.jsonpath import MISSING
from flowengine.transform.expression import (
    evaluate_expression,
    is_number,
    to_number,
    truthy,
)

PipelineFunction = Callable[[Any, list[str], str], Any]


def split_top_level(text: str, separator: str) -> list[str]:
    """Split on a single-character separator outside quotes and brackets.

    ``||`` is never treated as a ``|`` separator.
    """
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == separator and depth == 0:
            if separator == "|" and text[i + 1:i + 2] == "|":
                i += 2
                continue
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return [p.strip() for p in parts]


def _split_call(segment: str, expression: str) -> tuple[str, list[str]]:
    segment = segment.strip()
    paren = segment.find("(")
    if paren == -1:
        return segment, []
    if not segment.endswith(")"):
        raise TransformationError(expression, f"Malformed call: {segment}")
    name = segment[:paren].strip()
    inner = segment[paren + 1:-1].strip()
    return name, split_top_level(inner, ",") if inner else []


def _keyword(arg: str) -> tuple[str | None, str]:
    """Split ``key: expr`` arguments; plain arguments have no key."""
    head, sep, tail = arg.partition(":")
    key = head.strip()
    if sep and key.isidentifier() and not tail.startswith(":"):
        return key, tail.strip()
    return None, arg


def literal(arg: str) -> Any:
    """Parse a literal argument: JSON values or quoted strings."""
    arg = arg.strip()
    if len(arg) >= 2 and arg[0] == arg[-1] == "'":
        return arg[1:-1]
    try:
        return json.loads(arg)
    except (json.JSONDecodeError, ValueError):
        return arg


def evaluate(expression: str, data: Any) -> Any:
    """Evaluate a plain expression or a pipeline against data."""
    segments = split_top_level(expression, "|")
    source = segments[0]
    if source in ("", "data", "$"):
        value = data
    else:
        value = evaluate_expression(source, data)
    for segment in segments[1:]:
        name, args = _split_call(segment, expression)
        func = PIPELINE_FUNCTIONS.get(name)
        if func is None:
            raise TransformationError(expression, f"Unknown function: {name}")
        value = func(value, args, expression)
    return value


def _field(item: Any, ref: str) -> Any:
    value = evaluate(ref, item)
    return None if value is MISSING else value


def _require_list(value: Any, name: str, expression: str) -> list[Any]:
    if value is MISSING or value is None:
        return []
    if not isinstance(value, list):
        raise TransformationError(expression, f"{name}() expects an array")
    return value


def _numbers(value: Any, args: list[str], name: str, expression: str) -> list[Any]:
    items = _require_list(value, name, expression)
    if args:
        items = [_field(item, args[0]) for item in items]
    return [n for n in (to_number(i) for i in items) if n is not None]


def _where(value: Any, args: list[str], expression: str) -> Any:
    if len(args) != 1:
        raise TransformationError(expression, "where() takes one condition")
    items = _require_list(value, "where", expression)
    return [item for item in items if truthy(evaluate(args[0], item))]


def _project(item: Any, args: list[str]) -> Any:
    pairs = [_keyword(a) for a in args]
    if len(pairs) == 1 and pairs[0][0] is None:
        return _field(item, pairs[0][1])
    result: dict[str, Any] = {}
    for key, expr in pairs:
        if key is None:
            key = expr.split(".")[-1].lstrip("$")
        result[key] = _field(item, expr)
    return result


def _map(value: Any, args: list[str], expression: str) -> Any:
    if not args:
        raise TransformationError(expression, "map() needs an expression")
    items = _require_list(value, "map", expression)
    return [_project(item, args) for item in items]


def _transform(value: Any, args: list[str], expression: str) -> Any:
    if isinstance(value, list):
        return [_project(item, args) for item in value]
    return _project(value, args)


def _sum(value: Any, args: list[str], expression: str) -> Any:
    total = sum(_numbers(value, args, "sum", expression))
    return int(total) if isinstance(total, float) and total.is_integer() else total


def _avg(value: Any, args: list[str], expression: str) -> Any:
    numbers = _numbers(value, args, "avg", expression)
    return sum(numbers) / len(numbers) if numbers else None


def _min(value: Any, args: list[str], expression: str) -> Any:
    numbers = _numbers(value, args, "min", expression)
    return min(numbers) if numbers else None


def _max(value: Any, args: list[str], expression: str) -> Any:
    numbers = _numbers(value, args, "max", expression)
    return max(numbers) if numbers else None


def _count(value: Any, args: list[str], expression: str) -> Any:
    if isinstance(value, (dict, str)):
        return len(value)
    items = _require_list(value, "count", expression)
    if args:
        return sum(1 for item in items if truthy(evaluate(args[0], item)))
    return len(items)


def _first(value: Any, args: list[str], expression: str) -> Any:
    items = _require_list(value, "first", expression)
    return items[0] if items else None


def _last(value: Any, args: list[str], expression: str) -> Any:
    items = _require_list(value, "last", expression)
    return items[-1] if items else None


def _at(value: Any, args: list[str], expression: str) -> Any:
    items = _require_list(value, "at", expression)
    index = int(literal(args[0])) if args else 0
    return items[index] if -len(items) <= index < len(items) else None


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None or value is MISSING:
        return (2, 0)
    if is_number(value):
        return (0, value)
    return (1, str(value))


def _sort(value: Any, args: list[str], expression: str) -> Any:
    items = list(_require_list(value, "sort", expression))
    by: str | None = None
    desc = False
    for arg in args:
        key, expr = _keyword(arg)
        if key == "by":
            by = str(literal(expr))
        elif key == "desc":
            desc = truthy(literal(expr))
        elif key is None:
            by = str(literal(expr))
    if by:
        return sorted(items, key=lambda i: _sort_key(_field(i, by)), reverse=desc)
    return sorted(items, key=_sort_key, reverse=desc)


def _take(value: Any, args: list[str], expression: str) -> Any:
    items = _require_list(value, "take", expression)
    return items[: int(literal(args[0]))] if args else items[:1]


def _skip(value: Any, args: list[str], expression: str) -> Any:
    items = _require_list(value, "skip", expression)
    return items[int(literal(args[0])):] if args else items[1:]


def _flatten_list(items: list[Any], depth: float) -> list[Any]:
    flat: list[Any] = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            flat.extend(_flatten_list(item, depth - 1))
        else:
            flat.append(item)
    return flat


def _flatten(value: Any, args: list[str], expression: str) -> Any:
    depth = literal(args[0]) if args else 1
    if depth == "Infinity":
        depth = math.inf
    return _flatten_list(_require_list(value, "flatten", expression), depth)


def _unique(value: Any, args: list[str], expression: str) -> Any:
    seen: list[Any] = []
    for item in _require_list(value, "unique", expression):
        if item not in seen:
            seen.append(item)
    return seen


def _pick_one(item: Any, keys: list[str]) -> Any:
    if not isinstance(item, dict):
        return item
    return {k: item[k] for k in keys if k in item}


def _pick(value: Any, args: list[str], expression: str) -> Any:
    keys = [str(literal(a)) for a in args]
    if isinstance(value, list):
        return [_pick_one(item, keys) for item in value]
    return _pick_one(value, keys)


def _keys(value: Any, args: list[str], expression: str) -> Any:
    if not isinstance(value, dict):
        raise TransformationError(expression, "keys() expects an object")
    return list(value.keys())


def _values(value: Any, args: list[str], expression: str) -> Any:
    if not isinstance(value, dict):
        raise TransformationError(expression, "values() expects an object")
    return list(value.values())


def _join(value: Any, args: list[str], expression: str) -> Any:
    separator = str(literal(args[0])) if args else ","
    items = _require_list(value, "join", expression)
    return separator.join("" if i is None else str(i) for i in items)


def _arithmetic(op: str) -> PipelineFunction:
    def apply(value: Any, args: list[str], expression: str) -> Any:
        if not args:
            raise TransformationError(expression, f"{op}() needs an operand")
        operand = to_number(literal(args[0]))
        if operand is None:
            raise TransformationError(expression, f"{op}() operand is not a number")

        def one(item: Any) -> Any:
            number = to_number(item)
            if number is None:
                raise TransformationError(expression, f"{op}() got {item!r}")
            if op == "add":
                return number + operand
            if op == "sub":
                return number - operand
            if op == "mul":
                return number * operand
            if operand == 0:
                raise TransformationError(expression, "Division by zero")
            return number / operand

        if isinstance(value, list):
            return [one(item) for item in value]
        return one(value)

    return apply


def _round(value: Any, args: list[str], expression: str) -> Any:
    digits = int(literal(args[0])) if args else 0

    def one(item: Any) -> Any:
        number = to_number(item)
        if number is None:
            raise TransformationError(expression, f"round() got {item!r}")
        return round(number, digits) if digits else int(round(number))

    if isinstance(value, list):
        return [one(item) for item in value]
    return one(value)


def _to_number(value: Any, args: list[str], expression: str) -> Any:
    if isinstance(value, list):
        return [to_number(i) for i in value]
    return to_number(value)


def _to_string(value: Any, args: list[str], expression: str) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return "" if value is None else str(value)


def _to_bool(value: Any, args: list[str], expression: str) -> Any:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no")
    return truthy(value)


PIPELINE_FUNCTIONS: dict[str, PipelineFunction] = {
    "where": _where,
    "select": _where,
    "filter": _where,
    "map": _map,
    "transform": _transform,
    "sum": _sum,
    "avg": _avg,
    "min": _min,
    "max": _max,
    "count": _count,
    "first": _first,
    "last": _last,
    "at": _at,
    "sort": _sort,
    "take": _take,
    "skip": _skip,
    "flatten": _flatten,
    "unique": _unique,
    "pick": _pick,
    "keys": _keys,
    "values": _values,
    "join": _join,
    "add": _arithmetic("add"),
    "sub": _arithmetic("sub"),
    "mul": _arithmetic("mul"),
    "div": _arithmetic("div"),
    "round": _round,
    "toNumber": _to_number,
    "toString": _to_string,
    "toBool": _to_bool,
}
