"""Flow output evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flowengine.exceptions import ParameterTypeError, TemplateResolutionError
from flowengine.logger import get_logger
from flowengine.models import FlowOutput
from flowengine.parameters import coerce_value
from flowengine.runlog import RunLog
from flowengine.template.engine import TemplateContext, resolve_object

log = get_logger(__name__)


@dataclass
class OutputEvaluation:
    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def evaluate_outputs(
    outputs: list[FlowOutput],
    context: TemplateContext,
    run_log: RunLog | None = None,
) -> OutputEvaluation:
    """Resolve every output once; a failing output is None with its error kept."""
    evaluation = OutputEvaluation()
    for output in outputs:
        try:
            value = output.value
            if output.is_template:
                value = resolve_object(value, context)
            if output.cast_to_type and output.type:
                value = coerce_value(value, output.type)
        except (TemplateResolutionError, ParameterTypeError) as exc:
            log.warning("output_failed", name=output.name, error=str(exc))
            if run_log:
                run_log.error(f"Error evaluating output '{output.name}': {exc}")
            evaluation.values[output.name] = None
            evaluation.errors[output.name] = str(exc)
            continue
        evaluation.values[output.name] = value
    return evaluation
