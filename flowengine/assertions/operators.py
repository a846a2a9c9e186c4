"""Assertion operators and the conversions they apply to expected values."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from flowengine.jsonpath import MISSING
from flowengine.template.engine import stringify
from flowengine.transform.expression import is_number, to_number

Operator = Callable[[Any, Any], bool]


# --- Conversions ---


def as_number(value: Any) -> float | int | None:
    if value is MISSING:
        return None
    return to_number(value)


def as_list(value: Any) -> list[Any]:
    """Expected-value lists may be arrays, JSON text or comma-separated text."""
    if value is None or value is MISSING:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
        return [part.strip() for part in text.split(",") if part.strip()]
    return [value]


def as_bounds(value: Any) -> tuple[float, float]:
    """Two numeric bounds in ascending order, whatever order they came in."""
    items = [as_number(v) for v in as_list(value)]
    if len(items) != 2 or any(i is None for i in items):
        raise ValueError(f"Expected two numeric bounds, got {value!r}")
    low, high = sorted(items)  # type: ignore[type-var]
    return low, high


def _as_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _length(value: Any) -> int | None:
    if isinstance(value, (str, list, dict)):
        return len(value)
    return None


# --- Comparisons ---


def values_equal(actual: Any, expected: Any) -> bool:
    """Compare an actual value with an expected value of possibly other type."""
    if actual is MISSING:
        return False
    if is_number(actual):
        number = as_number(expected)
        return number is not None and actual == number
    if isinstance(actual, bool):
        if isinstance(expected, bool):
            return actual is expected
        return isinstance(expected, str) and expected.strip().lower() == stringify(actual)
    if actual is None:
        return expected is None or (
            isinstance(expected, str) and expected.strip().lower() == "null"
        )
    if isinstance(actual, (dict, list)):
        return actual == _as_json(expected)
    return str(actual) == stringify(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return stringify(expected) in actual
    if isinstance(actual, list):
        return any(values_equal(item, expected) for item in actual)
    if isinstance(actual, dict):
        return stringify(expected) in actual
    return False


def _numeric(compare: Callable[[Any, Any], bool]) -> Operator:
    def check(actual: Any, expected: Any) -> bool:
        a, b = as_number(actual), as_number(expected)
        if a is None or b is None:
            return False
        return compare(a, b)

    return check


def _between(actual: Any, expected: Any) -> bool:
    low, high = as_bounds(expected)
    number = as_number(actual)
    return number is not None and low <= number <= high


def _not_between(actual: Any, expected: Any) -> bool:
    low, high = as_bounds(expected)
    number = as_number(actual)
    return number is not None and not low <= number <= high


def _text(actual: Any) -> str | None:
    if actual is MISSING or actual is None:
        return None
    return stringify(actual)


def _starts_with(actual: Any, expected: Any) -> bool:
    text = _text(actual)
    return text is not None and text.startswith(stringify(expected))


def _ends_with(actual: Any, expected: Any) -> bool:
    text = _text(actual)
    return text is not None and text.endswith(stringify(expected))


def _matches_regex(actual: Any, expected: Any) -> bool:
    text = _text(actual)
    return text is not None and re.search(stringify(expected), text) is not None


def _is_empty(actual: Any, expected: Any) -> bool:
    if actual is MISSING or actual is None:
        return True
    length = _length(actual)
    return length == 0


def _is_null(actual: Any, expected: Any) -> bool:
    return actual is None or actual is MISSING


def _length_check(compare: Callable[[int, float], bool]) -> Operator:
    def check(actual: Any, expected: Any) -> bool:
        length = _length(actual)
        target = as_number(expected)
        return length is not None and target is not None and compare(length, target)

    return check


def _contains_all(actual: Any, expected: Any) -> bool:
    items = as_list(expected)
    return bool(items) and all(_contains(actual, item) for item in items)


def _contains_any(actual: Any, expected: Any) -> bool:
    return any(_contains(actual, item) for item in as_list(expected))


def _one_of(actual: Any, expected: Any) -> bool:
    return any(values_equal(actual, item) for item in as_list(expected))


_TYPE_CHECKS: dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": is_number,
    "integer": lambda v: is_number(v) and float(v).is_integer(),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "null": lambda v: v is None,
}


def _is_type(actual: Any, expected: Any) -> bool:
    check = _TYPE_CHECKS.get(stringify(expected).strip().lower())
    if check is None:
        raise ValueError(
            f"Unknown type {expected!r}. Use one of: {', '.join(_TYPE_CHECKS)}"
        )
    return actual is not MISSING and check(actual)


OPERATORS: dict[str, Operator] = {
    "equals": values_equal,
    "not_equals": lambda a, e: not values_equal(a, e),
    "greater_than": _numeric(lambda a, b: a > b),
    "less_than": _numeric(lambda a, b: a < b),
    "greater_than_or_equal": _numeric(lambda a, b: a >= b),
    "less_than_or_equal": _numeric(lambda a, b: a <= b),
    "between": _between,
    "not_between": _not_between,
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": _starts_with,
    "ends_with": _ends_with,
    "matches_regex": _matches_regex,
    "is_empty": _is_empty,
    "is_not_empty": lambda a, e: not _is_empty(a, e),
    "exists": lambda a, e: a is not MISSING,
    "not_exists": lambda a, e: a is MISSING,
    "is_null": _is_null,
    "is_not_null": lambda a, e: not _is_null(a, e),
    "has_length": _length_check(lambda n, t: n == t),
    "length_greater_than": _length_check(lambda n, t: n > t),
    "length_less_than": _length_check(lambda n, t: n < t),
    "contains_all": _contains_all,
    "contains_any": _contains_any,
    "not_contains_any": lambda a, e: not _contains_any(a, e),
    "one_of": _one_of,
    "not_one_of": lambda a, e: not _one_of(a, e),
    "is_type": _is_type,
}

# Operators that ignore the expected value.
UNARY_OPERATORS = {
    "exists",
    "not_exists",
    "is_empty",
    "is_not_empty",
    "is_null",
    "is_not_null",
}


def get_operator(name: str) -> Operator:
    """Get an assertion operator by name."""
    operator = OPERATORS.get(name)
    if operator is None:
        raise ValueError(
            f"Unknown operator: {name}. Available: {', '.join(OPERATORS)}"
        )
    return operator
