"""Template resolution for ``{{source:locator}}`` references.

Sources:
    res / response              ``res:<step>-<index>[.<jsonpath>]``
    trans / proc / transform    ``trans:<step>-<index>.$.<alias>[.<path>]``
    param / parameter / var     ``param:<name>``
    env / environment           ``env:<name>``
    func / function             ``func:<name>(<args>)``

A string that is exactly one reference resolves to the referenced value with
its type intact. References embedded in text are stringified in place;
``{{{...}}}`` JSON-encodes non-string values when embedded.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flowengine.exceptions import TemplateResolutionError, TransformationError
from flowengine.jsonpath import MISSING, evaluate_path
from flowengine.template.functions import (
    FUNCTION_REGISTRY,
    TemplateFunction,
    parse_arg,
    split_args,
)

TEMPLATE_RE = re.compile(r"\{\{\{([^}]+)\}\}\}|\{\{([^}]+)\}\}")
_CALL_RE = re.compile(r"^([A-Za-z_]\w*)\s*(?:\((.*)\))?$", re.DOTALL)

SOURCE_ALIASES = {
    "res": "response",
    "response": "response",
    "trans": "transform",
    "proc": "transform",
    "process": "transform",
    "transform": "transform",
    "param": "parameter",
    "parameter": "parameter",
    "var": "parameter",
    "env": "environment",
    "environment": "environment",
    "func": "function",
    "function": "function",
}


@dataclass
class TemplateContext:
    """Data visible to templates at one point of a run."""

    responses: dict[str, Any] = field(default_factory=dict)
    transformations: dict[str, dict[str, Any]] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, Any] = field(default_factory=dict)
    functions: dict[str, TemplateFunction] = field(
        default_factory=lambda: dict(FUNCTION_REGISTRY)
    )


def build_template_context(
    responses: dict[str, Any] | None = None,
    transformations: dict[str, dict[str, Any]] | None = None,
    parameters: dict[str, Any] | None = None,
    environment: dict[str, Any] | None = None,
    functions: dict[str, TemplateFunction] | None = None,
) -> TemplateContext:
    """Snapshot the current run data into a fresh context."""
    return TemplateContext(
        responses=dict(responses or {}),
        transformations=dict(transformations or {}),
        parameters=dict(parameters or {}),
        environment=dict(environment or {}),
        functions=dict(functions or FUNCTION_REGISTRY),
    )


def has_template(value: Any) -> bool:
    return isinstance(value, str) and TEMPLATE_RE.search(value) is not None


def stringify(value: Any) -> str:
    """Text form of a value embedded in a larger string."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _available(keys: Any) -> str:
    names = sorted(str(k) for k in keys)
    return ", ".join(names) if names else "none"


def _evaluate(reference: str, data: Any, path: str) -> Any:
    try:
        return evaluate_path(data, path)
    except TransformationError as exc:
        raise TemplateResolutionError(reference, str(exc)) from exc


def _lookup(
    reference: str, data: dict[str, Any], name: str, kind: str
) -> Any:
    if name in data:
        return data[name]
    head, _, path = name.partition(".")
    if path and head in data:
        value = _evaluate(reference, data[head], path)
        if value is not MISSING:
            return value
    raise TemplateResolutionError(
        reference, f"{kind} '{name}' not found. Available: {_available(data)}"
    )


def _resolve_response(reference: str, locator: str, context: TemplateContext) -> Any:
    key, _, path = locator.partition(".")
    if key not in context.responses:
        raise TemplateResolutionError(
            reference,
            f"No response stored for '{key}'. "
            f"Available: {_available(context.responses)}",
        )
    value = _evaluate(reference, context.responses[key], path or "$")
    if value is MISSING:
        raise TemplateResolutionError(
            reference, f"Path '{path}' not found in response '{key}'"
        )
    return value


def _resolve_transform(reference: str, locator: str, context: TemplateContext) -> Any:
    key, _, path = locator.partition(".")
    if key not in context.transformations:
        raise TemplateResolutionError(
            reference,
            f"No transformed data for '{key}'. "
            f"Available: {_available(context.transformations)}",
        )
    if not path:
        return context.transformations[key]
    value = _evaluate(reference, context.transformations[key], path)
    if value is MISSING:
        raise TemplateResolutionError(
            reference,
            f"Path '{path}' not found in transformed data of '{key}'. "
            f"Aliases: {_available(context.transformations[key])}",
        )
    return value


def _resolve_function(reference: str, locator: str, context: TemplateContext) -> Any:
    match = _CALL_RE.match(locator.strip())
    if not match:
        raise TemplateResolutionError(reference, f"Malformed function call '{locator}'")
    name, raw_args = match.group(1), match.group(2)
    func = context.functions.get(name)
    if func is None:
        raise TemplateResolutionError(
            reference,
            f"Unknown function '{name}'. Available: {_available(context.functions)}",
        )
    args = [parse_arg(a) for a in split_args(raw_args or "")]
    try:
        return func(*args)
    except Exception as exc:
        raise TemplateResolutionError(reference, f"{name}() failed: {exc}") from exc


def resolve_reference(reference: str, context: TemplateContext) -> Any:
    """Resolve the inside of one ``{{...}}`` reference."""
    source, sep, locator = reference.strip().partition(":")
    if not sep:
        raise TemplateResolutionError(
            reference, "Expected '<source>:<locator>'"
        )
    kind = SOURCE_ALIASES.get(source.strip())
    locator = locator.strip()
    if kind == "response":
        return _resolve_response(reference, locator, context)
    if kind == "transform":
        return _resolve_transform(reference, locator, context)
    if kind == "parameter":
        return _lookup(reference, context.parameters, locator, "Parameter")
    if kind == "environment":
        return _lookup(reference, context.environment, locator, "Environment variable")
    if kind == "function":
        return _resolve_function(reference, locator, context)
    raise TemplateResolutionError(
        reference,
        f"Unknown source '{source}'. Use one of: {', '.join(SOURCE_ALIASES)}",
    )


def resolve_template(template: Any, context: TemplateContext) -> Any:
    """Resolve every reference in a string."""
    if not isinstance(template, str):
        return template
    matches = list(TEMPLATE_RE.finditer(template))
    if not matches:
        return template
    if len(matches) == 1 and matches[0].group(0) == template.strip():
        match = matches[0]
        return resolve_reference(match.group(1) or match.group(2), context)

    def replacer(match: re.Match) -> str:
        if match.group(1) is not None:
            value = resolve_reference(match.group(1), context)
            return value if isinstance(value, str) else json.dumps(value)
        return stringify(resolve_reference(match.group(2), context))

    return TEMPLATE_RE.sub(replacer, template)


def resolve_object(
    value: Any,
    context: TemplateContext,
    on_error: Callable[[str, TemplateResolutionError], None] | None = None,
) -> Any:
    """Resolve every string leaf of a nested structure independently.

    With ``on_error`` a failing leaf is reported and kept as literal text;
    without it the error propagates.
    """
    if isinstance(value, dict):
        return {k: resolve_object(v, context, on_error) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_object(v, context, on_error) for v in value]
    if not isinstance(value, str):
        return value
    try:
        return resolve_template(value, context)
    except TemplateResolutionError as exc:
        if on_error is None:
            raise
        on_error(value, exc)
        return value
