"""Assertion engine: evaluate declarative checks against one endpoint result."""

from __future__ import annotations

import re
from typing import Any

from flowengine.assertions.operators import (
    OPERATORS,
    UNARY_OPERATORS,
    get_operator,
)
from flowengine.exceptions import AssertionConfigError, FlowEngineError
from flowengine.jsonpath import MISSING, evaluate_path
from flowengine.logger import get_logger
from flowengine.models import (
    Assertion,
    AssertionOutcome,
    AssertionResult,
    CapturedResponse,
)
from flowengine.template.engine import (
    TemplateContext,
    build_template_context,
    resolve_template,
    stringify,
)
from flowengine.transform.pipeline import evaluate

log = get_logger(__name__)

__all__ = ["OPERATORS", "extract_actual_value", "run_assertion", "run_assertions"]


def _header(headers: dict[str, str], name: str) -> Any:
    wanted = name.strip().lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return MISSING


def extract_actual_value(
    assertion: Assertion,
    response: CapturedResponse | None,
    body: Any,
    transformed: dict[str, Any],
    timing_ms: int,
) -> Any:
    """Pick the value an assertion checks."""
    kind = assertion.assertion_type
    if kind == "status_code":
        return response.status if response else MISSING
    if kind == "response_time":
        return timing_ms
    locator = (assertion.data_id or "").strip()
    if not locator:
        raise AssertionConfigError(
            assertion.id, f"A {kind} assertion requires a data locator"
        )
    if kind == "header":
        return _header(response.headers if response else {}, locator)
    source = body if assertion.data_source == "response" else transformed
    if "|" in locator:
        return evaluate(locator, source)
    return evaluate_path(source, locator)


def _describe(assertion: Assertion, expected: Any) -> str:
    parts = [assertion.assertion_type]
    if assertion.data_id:
        parts.append(assertion.data_id)
    parts.append(assertion.operator)
    if assertion.operator not in UNARY_OPERATORS:
        parts.append(stringify(expected))
    return " ".join(parts)


def _display(value: Any) -> Any:
    return None if value is MISSING else value


def run_assertion(
    assertion: Assertion,
    response: CapturedResponse | None,
    body: Any,
    transformed: dict[str, Any],
    timing_ms: int,
    context: TemplateContext | None = None,
) -> AssertionResult:
    """Evaluate one assertion; errors become a failed result."""
    original = assertion.expected_value
    expected = original
    try:
        if assertion.is_template_expression and isinstance(original, str):
            expected = resolve_template(original, context or build_template_context())
        operator = get_operator(assertion.operator)
        actual = extract_actual_value(
            assertion, response, body, transformed, timing_ms
        )
        passed = operator(actual, expected)
    except (FlowEngineError, ValueError, re.error) as exc:
        return AssertionResult(
            assertion_id=assertion.id,
            passed=False,
            expected_value=_display(expected),
            original_expected_value=original,
            message=f"Assertion error: {_describe(assertion, expected)}: {exc}",
            error=str(exc),
        )

    description = _describe(assertion, expected)
    if passed:
        message = f"Assertion passed: {description}"
    else:
        message = (
            f"Assertion failed: {description}, "
            f"actual value: {'<missing>' if actual is MISSING else stringify(actual)}"
        )
    return AssertionResult(
        assertion_id=assertion.id,
        passed=bool(passed),
        actual_value=_display(actual),
        expected_value=expected,
        original_expected_value=original,
        message=message,
    )


def run_assertions(
    assertions: list[Assertion],
    response: CapturedResponse | None,
    body: Any,
    transformed: dict[str, Any],
    timing_ms: int,
    context: TemplateContext | None = None,
) -> AssertionOutcome:
    """Evaluate every enabled assertion; all of them run even after a failure."""
    results = [
        run_assertion(a, response, body, transformed, timing_ms, context)
        for a in assertions
        if a.enabled
    ]
    failures = [r.message for r in results if not r.passed]
    if failures:
        log.debug("assertions_failed", count=len(failures), total=len(results))
    return AssertionOutcome(
        passed=not failures,
        results=results,
        failure_message="; ".join(failures) if failures else None,
    )
