"""Pre-run validation of a flow definition."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from flowengine.models import FlowDefinition
from flowengine.step_ids import is_step_id, step_sort_key

NO_API_HOSTS = (
    "No API Hosts are configured. "
    "Please configure at least one API host before running the flow."
)


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_flow(
    flow: FlowDefinition, host_overrides: dict[str, str] | None = None
) -> ValidationResult:
    """Check that a flow can run; errors block the run, warnings do not."""
    result = ValidationResult()
    if flow.steps is None:
        result.errors.append("Invalid flow data: steps are missing")
        return result

    duplicates = [
        step_id
        for step_id, count in Counter(s.step_id for s in flow.steps).items()
        if count > 1
    ]
    if duplicates:
        result.errors.append(f"Duplicate step ids: {', '.join(duplicates)}")

    hosts = {k: h.url for k, h in flow.settings.api_hosts.items()}
    hosts.update(host_overrides or {})
    if not any(url and url.strip() for url in hosts.values()):
        result.errors.append(NO_API_HOSTS)

    ids = [s.step_id for s in flow.steps]
    if ids and all(is_step_id(i) for i in ids):
        if ids != sorted(ids, key=step_sort_key):
            result.warnings.append("Step order does not match step id order")

    known = {e.id for e in flow.endpoints}
    for step in flow.steps:
        for endpoint in step.endpoints:
            if endpoint.endpoint_id not in known:
                result.warnings.append(
                    f"Step '{step.step_id}' references unknown endpoint "
                    f"'{endpoint.endpoint_id}'"
                )
            if not (hosts.get(endpoint.api_id) or "").strip():
                result.warnings.append(
                    f"Step '{step.step_id}' uses API '{endpoint.api_id}' "
                    "which has no host configured"
                )
    return result
