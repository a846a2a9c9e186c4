"""Sequence runner: runs flows in order, feeding earlier results into later ones.

Each flow's outputs and stored responses are kept under ``flow_<step_order>``
and can be mapped onto the parameters of any later flow in the sequence.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Mapping
from typing import Any

from flowengine.environment import resolve_environment_variables
from flowengine.exceptions import (
    EnvironmentResolutionError,
    FlowNotFoundError,
    ParameterTypeError,
    TemplateResolutionError,
    TransformationError,
)
from flowengine.flow import FlowLoader, FlowRunner
from flowengine.jsonpath import MISSING, evaluate_path
from flowengine.logger import get_logger
from flowengine.models import (
    EnvironmentBinding,
    ExecutionPreferences,
    FlowDefinition,
    FlowSequence,
    ParameterMapping,
    SequenceFlowResult,
    SequenceOutcome,
    SequenceStep,
)
from flowengine.parameters import coerce_value
from flowengine.runlog import LogCallback, RunLog
from flowengine.template.engine import build_template_context, resolve_template

log = get_logger(__name__)

FlowResultCallback = Callable[[SequenceFlowResult], None]

_TRUE_WORDS = ("true", "1", "yes")


def output_key(step_order: int) -> str:
    return f"flow_{step_order}"


def convert_static_value(value: str, data_type: str | None) -> Any:
    """Convert a literal mapping value; numbers that do not parse stay text."""
    if data_type == "number":
        try:
            return coerce_value(value, "number")
        except ParameterTypeError:
            return value
    if data_type == "boolean":
        return value.strip().lower() in _TRUE_WORDS
    return value


def _previous(
    mapping: ParameterMapping,
    store: dict[str, dict[str, Any]],
    kind: str,
    run_log: RunLog,
) -> dict[str, Any] | None:
    if mapping.source_flow_step is None:
        run_log.error(
            f"Mapping for '{mapping.flow_parameter_name}' needs a source flow step"
        )
        return None
    found = store.get(output_key(mapping.source_flow_step))
    if found is None:
        run_log.warning(
            f"No {kind} from flow step {mapping.source_flow_step} "
            f"for parameter '{mapping.flow_parameter_name}'"
        )
    return found


def resolve_mapping(
    mapping: ParameterMapping,
    outputs: dict[str, dict[str, Any]],
    responses: dict[str, dict[str, Any]],
    environment: dict[str, Any],
    run_log: RunLog,
) -> Any:
    """Resolve one mapping to a concrete value, or MISSING."""
    name = mapping.flow_parameter_name
    if mapping.source_type == "static_value":
        return convert_static_value(mapping.source_value, mapping.data_type)

    if mapping.source_type == "environment_variable":
        if mapping.source_value in environment:
            return environment[mapping.source_value]
        run_log.warning(
            f"Environment variable '{mapping.source_value}' not found "
            f"for parameter '{name}'"
        )
        return MISSING

    if mapping.source_type == "previous_output":
        flow_outputs = _previous(mapping, outputs, "outputs", run_log)
        if flow_outputs is None:
            return MISSING
        field = mapping.source_output_field or mapping.source_value
        if field not in flow_outputs:
            run_log.warning(f"Output '{field}' not found for parameter '{name}'")
            return MISSING
        return flow_outputs[field]

    if mapping.source_type == "previous_response":
        flow_responses = _previous(mapping, responses, "responses", run_log)
        if flow_responses is None:
            return MISSING
        try:
            value = evaluate_path(flow_responses, mapping.source_value or "$")
        except TransformationError as exc:
            run_log.error(f"Invalid response path for parameter '{name}': {exc}")
            return MISSING
        if value is MISSING:
            run_log.warning(
                f"Path '{mapping.source_value}' matched nothing for parameter '{name}'"
            )
        return value

    # function
    try:
        return resolve_template(
            f"{{{{func:{mapping.source_value}}}}}", build_template_context()
        )
    except TemplateResolutionError as exc:
        run_log.error(f"Function mapping for parameter '{name}' failed: {exc}")
        return MISSING


def resolve_flow_parameters(
    flow: FlowDefinition,
    step: SequenceStep,
    outputs: dict[str, dict[str, Any]],
    responses: dict[str, dict[str, Any]],
    environment: dict[str, Any],
    run_log: RunLog,
) -> dict[str, Any]:
    """Values for every mapped parameter of a flow.

    Unmapped parameters are left out so the runner falls back to their
    explicit value, linked environment variable or default.
    """
    declared = {p.name for p in flow.parameters}
    resolved: dict[str, Any] = {}
    for mapping in step.parameter_mappings:
        if mapping.flow_parameter_name not in declared:
            run_log.warning(
                f"Flow '{flow.flow_id}' has no parameter "
                f"'{mapping.flow_parameter_name}', mapping ignored"
            )
            continue
        value = resolve_mapping(mapping, outputs, responses, environment, run_log)
        if value is not MISSING:
            resolved[mapping.flow_parameter_name] = value
    run_log.debug(
        f"Resolved {len(resolved)} parameter(s) for flow '{flow.flow_id}'",
        {"parameters": sorted(resolved)},
    )
    return resolved


def response_error(responses: dict[str, Any]) -> tuple[str, str] | None:
    """First stored response body that reports an error, with its message."""
    for key, body in responses.items():
        if not isinstance(body, dict):
            continue
        if body.get("__error") is not None:
            return key, str(body["__error"])
        if body.get("error") is not None:
            return key, str(body["error"])
        if body.get("success") is False:
            return key, str(body.get("message") or "Unknown error from API response")
    return None


class SequenceRunner:
    """Runs the flows of a sequence one after another on a shared FlowRunner."""

    def __init__(
        self,
        runner: FlowRunner,
        flows: Mapping[str, FlowDefinition] | FlowLoader,
        on_flow_complete: FlowResultCallback | None = None,
        on_log: LogCallback | None = None,
    ) -> None:
        self.runner = runner
        self.flows = flows
        self.run_log = RunLog(on_log)
        self._on_flow_complete = on_flow_complete
        self.flow_results: list[SequenceFlowResult] = []
        self.accumulated_outputs: dict[str, dict[str, Any]] = {}
        self.accumulated_responses: dict[str, dict[str, Any]] = {}
        self.current_flow_index = 0
        self.progress = 0
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Stop after the current flow; the flow itself stops cooperatively."""
        if not self._running:
            return
        self._stop_requested = True
        self.runner.stop()
        self.run_log.info("Stop requested for sequence")

    def reset(self) -> None:
        self.flow_results = []
        self.accumulated_outputs = {}
        self.accumulated_responses = {}
        self.current_flow_index = 0
        self.progress = 0
        self.run_log.clear()
        self._stop_requested = False

    def find_flow(self, flow_id: str) -> FlowDefinition:
        if isinstance(self.flows, FlowLoader):
            return self.flows.load(flow_id)
        flow = self.flows.get(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    async def run(
        self,
        sequence: FlowSequence,
        preferences: ExecutionPreferences | None = None,
    ) -> SequenceOutcome:
        preferences = preferences or ExecutionPreferences()
        self.reset()
        start_time = time.monotonic()
        steps = sequence.ordered_steps()
        total = len(steps)
        log.info("sequence_run_started", sequence_id=sequence.sequence_id, flows=total)
        self.run_log.info(
            f"Starting sequence '{sequence.name or sequence.sequence_id}' "
            f"with {total} flows"
        )

        error: str | None = None
        stopped = False
        try:
            environment = self._environment_variables(sequence)
        except EnvironmentResolutionError as exc:
            self.run_log.error(str(exc))
            return self._outcome(
                sequence, total, "failed", start_time, success=False, error=str(exc)
            )

        self._running = True
        try:
            for index, step in enumerate(steps):
                self.current_flow_index = index
                self.progress = math.floor(index / total * 100)
                try:
                    flow = self.find_flow(step.flow_id)
                except FlowNotFoundError:
                    error = (
                        f"Flow '{step.flow_id}' not found in sequence step "
                        f"{step.step_order}"
                    )
                    self.run_log.error(error)
                    break

                result = await self._run_flow(
                    flow, step, sequence, environment, preferences
                )
                self.flow_results.append(result)
                self.accumulated_outputs[output_key(step.step_order)] = result.outputs
                self.accumulated_responses[output_key(step.step_order)] = result.responses
                if self._on_flow_complete:
                    self._on_flow_complete(result)

                if not result.success:
                    message = f"Flow '{result.flow_name or result.flow_id}' failed: {result.error}"
                    if preferences.stop_on_error:
                        error = message
                        self.run_log.error(f"Stopping sequence. {message}")
                        break
                    self.run_log.warning(f"Continuing sequence. {message}")
                if self._stop_requested or result.status == "stopped":
                    stopped = True
                    self.run_log.info("Sequence execution stopped by user")
                    break
        finally:
            self._running = False

        failed = error is not None or any(not r.success for r in self.flow_results)
        if stopped:
            status = "stopped"
        else:
            status = "failed" if failed else "success"
            if error is None:
                self.progress = 100
        log.info("sequence_run_finished", sequence_id=sequence.sequence_id, status=status)
        return self._outcome(
            sequence, total, status, start_time, success=not failed, error=error
        )

    async def _run_flow(
        self,
        flow: FlowDefinition,
        step: SequenceStep,
        sequence: FlowSequence,
        environment: dict[str, Any],
        preferences: ExecutionPreferences,
    ) -> SequenceFlowResult:
        self.run_log.info(
            f"Starting flow '{flow.name or flow.flow_id}' (step {step.step_order})"
        )
        params = resolve_flow_parameters(
            flow,
            step,
            self.accumulated_outputs,
            self.accumulated_responses,
            environment,
            self.run_log,
        )
        outcome = await self.runner.run(
            self._bind_environment(flow, sequence), preferences, params
        )

        success = outcome.success
        error = outcome.error
        if outcome.status == "awaiting_parameters":
            names = ", ".join(p.name for p in outcome.missing_parameters)
            error = f"Missing required parameters: {names}"
        elif success:
            found = response_error(outcome.stored_responses)
            if found is not None:
                key, message = found
                success = False
                error = f"{key}: {message}"
                self.run_log.error(f"API error detected in endpoint {key}", message)

        level = "info" if success else "error"
        self.run_log.add(
            level,
            f"Flow '{flow.name or flow.flow_id}' "
            f"{'completed' if success else 'failed'} in {outcome.duration_ms:.0f}ms",
            {"error": error} if error else None,
        )
        return SequenceFlowResult(
            flow_id=flow.flow_id,
            flow_name=flow.name,
            step_order=step.step_order,
            success=success,
            status=outcome.status,
            error=error,
            outputs=outcome.flow_outputs,
            responses=outcome.stored_responses,
            parameter_values=outcome.parameter_values,
            duration_ms=outcome.duration_ms,
        )

    def _environment_variables(self, sequence: FlowSequence) -> dict[str, Any]:
        environment = self.runner.environment
        if environment is None or not sequence.sub_environment:
            return {}
        return resolve_environment_variables(environment, sequence.sub_environment)

    def _bind_environment(
        self, flow: FlowDefinition, sequence: FlowSequence
    ) -> FlowDefinition:
        """Run the flow against the sequence's sub-environment when one is set."""
        environment = self.runner.environment
        if environment is None or not sequence.sub_environment:
            return flow
        binding = EnvironmentBinding(
            environment_id=environment.id,
            sub_environment=sequence.sub_environment,
        )
        settings = flow.settings.model_copy(update={"environment": binding})
        return flow.model_copy(update={"settings": settings})

    def _outcome(
        self,
        sequence: FlowSequence,
        total: int,
        status: str,
        start_time: float,
        success: bool,
        error: str | None = None,
    ) -> SequenceOutcome:
        return SequenceOutcome(
            sequence_id=sequence.sequence_id,
            success=success,
            status=status,
            error=error,
            completed_flows=len(self.flow_results),
            total_flows=total,
            progress=self.progress,
            flow_results=list(self.flow_results),
            sequence_outputs={
                output_key(r.step_order): r.outputs for r in self.flow_results
            },
            duration_ms=(time.monotonic() - start_time) * 1000,
        )
