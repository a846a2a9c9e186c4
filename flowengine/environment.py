"""Environment variable resolution for a selected sub-environment."""

from __future__ import annotations

from typing import Any

from flowengine.exceptions import EnvironmentResolutionError
from flowengine.models import Environment

SUB_ENVIRONMENT_NOT_FOUND = "SUB_ENVIRONMENT_NOT_FOUND"
MISSING_REQUIRED_VARIABLE = "MISSING_REQUIRED_VARIABLE"


def resolve_environment_variables(
    environment: Environment, sub_environment: str
) -> dict[str, Any]:
    """Merge a sub-environment's values over declared defaults.

    Raises EnvironmentResolutionError for an unknown sub-environment or a
    required variable with neither a value nor a default.
    """
    config = environment.config
    selected = config.environments.get(sub_environment)
    if selected is None:
        raise EnvironmentResolutionError(
            SUB_ENVIRONMENT_NOT_FOUND,
            f"Sub-environment '{sub_environment}' not found in environment "
            f"'{environment.name}'",
        )
    resolved: dict[str, Any] = {}
    for name, definition in config.variable_definitions.items():
        value = selected.variables.get(name)
        if value is None or value == "":
            value = definition.default_value
        if (value is None or value == "") and definition.required:
            raise EnvironmentResolutionError(
                MISSING_REQUIRED_VARIABLE,
                f"Required variable '{name}' has no value in sub-environment "
                f"'{sub_environment}'",
            )
        if value is not None:
            resolved[name] = value
    # Variables without a definition are passed through as-is.
    for name, value in selected.variables.items():
        resolved.setdefault(name, value)
    return resolved


def resolve_api_host_overrides(
    environment: Environment | None, sub_environment: str | None
) -> dict[str, str]:
    """Host URL overrides (api id -> base url) of a sub-environment."""
    if environment is None or not sub_environment:
        return {}
    selected = environment.config.environments.get(sub_environment)
    if selected is None:
        return {}
    return {k: v for k, v in selected.api_hosts.items() if v}
