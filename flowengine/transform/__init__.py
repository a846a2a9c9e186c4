"""Transformation pipeline: derive named values from response bodies."""

from __future__ import annotations

from typing import Any

from flowengine.exceptions import TemplateResolutionError, TransformationError
from flowengine.jsonpath import MISSING
from flowengine.logger import get_logger
from flowengine.models import Transformation
from flowengine.runlog import RunLog
from flowengine.template.engine import (
    TEMPLATE_RE,
    TemplateContext,
    resolve_reference,
    stringify,
)
from flowengine.transform.pipeline import PIPELINE_FUNCTIONS, evaluate

log = get_logger(__name__)

__all__ = [
    "PIPELINE_FUNCTIONS",
    "apply_transformations",
    "evaluate_transformation",
]


def _substitute_references(expression: str, context: TemplateContext) -> str:
    def replacer(match: Any) -> str:
        return stringify(resolve_reference(match.group(1) or match.group(2), context))

    try:
        return TEMPLATE_RE.sub(replacer, expression)
    except TemplateResolutionError as exc:
        raise TransformationError(expression, str(exc)) from exc


def evaluate_transformation(
    expression: str, data: Any, context: TemplateContext | None = None
) -> Any:
    """Evaluate one expression against data, returning MISSING when empty."""
    if context is not None and TEMPLATE_RE.search(expression):
        expression = _substitute_references(expression, context)
    return evaluate(expression.strip(), data)


def apply_transformations(
    raw_body: Any,
    transformations: list[Transformation],
    context: TemplateContext | None = None,
    run_log: RunLog | None = None,
) -> dict[str, Any]:
    """Bind each alias to the raw body, then to its expression's result.

    A failing or empty expression keeps the raw body bound and never stops
    the remaining transformations.
    """
    results: dict[str, Any] = {}
    for transformation in transformations:
        alias = transformation.alias
        results[alias] = raw_body
        expression = transformation.expression.strip()
        if not expression:
            continue
        try:
            value = evaluate_transformation(expression, raw_body, context)
        except Exception as exc:
            log.warning("transformation_failed", alias=alias, error=str(exc))
            if run_log:
                run_log.error(
                    f"Transformation '{alias}' failed: {exc}",
                    {"expression": expression},
                )
            continue
        if value is MISSING:
            if run_log:
                run_log.warning(
                    f"Transformation '{alias}' produced no result, keeping raw data",
                    {"expression": expression},
                )
            continue
        results[alias] = value
    return results
