"""Flow parameter resolution and per-type value conversion."""

from __future__ import annotations

import json
from typing import Any

from flowengine.exceptions import ParameterTypeError
from flowengine.logger import get_logger
from flowengine.models import FlowDefinition, FlowParameter
from flowengine.runlog import RunLog
from flowengine.template.engine import stringify
from flowengine.transform.expression import is_number

log = get_logger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _to_string(value: Any) -> str:
    return stringify(value)


def _to_number(value: Any) -> int | float:
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise ParameterTypeError(value, "number")


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if is_number(value) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ParameterTypeError(value, "boolean")


def _to_object(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ParameterTypeError(value, "object") from exc
        if isinstance(parsed, dict):
            return parsed
    raise ParameterTypeError(value, "object")


def _to_array(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        return parsed if isinstance(parsed, list) else [parsed]
    return [value]


CONVERTERS = {
    "string": _to_string,
    "number": _to_number,
    "boolean": _to_boolean,
    "object": _to_object,
    "array": _to_array,
    "null": lambda value: None,
}


def coerce_value(value: Any, declared_type: str | None) -> Any:
    """Convert a value to a declared parameter type."""
    if value is None or declared_type is None:
        return value
    converter = CONVERTERS.get(declared_type)
    if converter is None:
        return value
    return converter(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _coerce_or_keep(
    param: FlowParameter, value: Any, run_log: RunLog | None
) -> Any:
    try:
        return coerce_value(value, param.type)
    except ParameterTypeError as exc:
        log.warning("parameter_coercion_failed", name=param.name, error=str(exc))
        if run_log:
            run_log.warning(f"Parameter '{param.name}': {exc}, using raw value")
        return value


def prepare_parameters(
    flow: FlowDefinition,
    environment_variables: dict[str, Any] | None = None,
    overrides: dict[str, Any] | None = None,
    run_log: RunLog | None = None,
) -> dict[str, Any]:
    """Effective parameter values.

    Priority: caller override, explicit value, linked environment variable,
    default value.
    """
    environment_variables = environment_variables or {}
    overrides = overrides or {}
    mappings = (
        flow.settings.linked_environment.parameter_mappings
        if flow.settings.linked_environment
        else {}
    )
    values: dict[str, Any] = {}
    for param in flow.parameters:
        value: Any = None
        if not _is_blank(overrides.get(param.name)):
            value = overrides[param.name]
        elif not _is_blank(param.value):
            value = param.value
        elif param.name in mappings and not _is_blank(
            environment_variables.get(mappings[param.name])
        ):
            value = environment_variables[mappings[param.name]]
            if run_log:
                run_log.debug(
                    f"Parameter '{param.name}' taken from environment variable "
                    f"'{mappings[param.name]}'"
                )
        elif not _is_blank(param.default_value):
            value = param.default_value
        values[param.name] = _coerce_or_keep(param, value, run_log)
    # Extra caller values not declared by the flow are still visible to templates.
    for name, value in overrides.items():
        values.setdefault(name, value)
    return values


def find_missing_parameters(
    flow: FlowDefinition, values: dict[str, Any]
) -> list[FlowParameter]:
    """Required parameters that still have no value."""
    return [
        param
        for param in flow.parameters
        if param.required and _is_blank(values.get(param.name))
    ]


def apply_supplied_values(
    flow: FlowDefinition,
    values: dict[str, Any],
    supplied: dict[str, Any],
    run_log: RunLog | None = None,
) -> dict[str, Any]:
    """Merge caller-supplied values into prepared ones, converting per type."""
    declared = {p.name: p for p in flow.parameters}
    merged = dict(values)
    for name, value in supplied.items():
        param = declared.get(name)
        merged[name] = _coerce_or_keep(param, value, run_log) if param else value
    return merged
