"""Flow loader and runner."""

from __future__ import annotations

import asyncio
import json
import math
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from flowengine.cookies import CookieJar
from flowengine.environment import (
    resolve_api_host_overrides,
    resolve_environment_variables,
)
from flowengine.exceptions import (
    ConfigurationError,
    EnvironmentResolutionError,
    FlowNotFoundError,
    FlowValidationError,
    MissingParametersError,
)
from flowengine.executor import EndpointExecutor, ExecutionContext
from flowengine.http import DirectTransport, HttpTransport, ProxyTransport
from flowengine.logger import get_logger
from flowengine.models import (
    Environment,
    ExecutionOutcome,
    ExecutionPreferences,
    ExecutionStateSnapshot,
    FlowDefinition,
    FlowParameter,
    FlowStep,
    LogEntry,
    StepOutcome,
)
from flowengine.outputs import evaluate_outputs
from flowengine.parameters import (
    apply_supplied_values,
    find_missing_parameters,
    prepare_parameters,
)
from flowengine.runlog import LogCallback, RunLog
from flowengine.state import ExecutionStateStore, StateCallback, endpoint_key
from flowengine.transform import apply_transformations
from flowengine.validator import validate_flow

log = get_logger(__name__)


class FlowLoader:
    """Loads and validates .flow.json files."""

    def __init__(self, flows_dir: Path) -> None:
        self.flows_dir = Path(flows_dir)
        self._cache: dict[str, FlowDefinition] = {}

    def load(self, flow_id: str) -> FlowDefinition:
        """Load a flow by ID, using cache if available."""
        if flow_id in self._cache:
            return self._cache[flow_id]
        return self.reload(flow_id)

    def reload(self, flow_id: str) -> FlowDefinition:
        """Load a flow from disk, bypassing cache."""
        path = self._find_flow_file(flow_id)
        flow = self.load_file(path, flow_id)
        self._cache[flow_id] = flow
        log.info("flow_loaded", flow_id=flow_id, path=str(path))
        return flow

    @staticmethod
    def load_file(path: Path, flow_id: str | None = None) -> FlowDefinition:
        """Parse a single flow file; the file name supplies a missing flow id."""
        flow_id = flow_id or Path(path).name.removesuffix(".flow.json")
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            if isinstance(data, dict) and "flowId" not in data:
                data.setdefault("flow_id", flow_id)
            return FlowDefinition.model_validate(data)
        except json.JSONDecodeError as exc:
            raise FlowValidationError(flow_id, f"Invalid JSON: {exc}") from exc
        except Exception as exc:
            raise FlowValidationError(flow_id, str(exc)) from exc

    def load_all(self) -> dict[str, FlowDefinition]:
        """Load all flows from the flows directory."""
        flows: dict[str, FlowDefinition] = {}
        for path in self.flows_dir.rglob("*.flow.json"):
            try:
                flow = self.load_file(path)
                flows[flow.flow_id] = flow
                self._cache[flow.flow_id] = flow
            except FlowValidationError as exc:
                log.warning("flow_load_failed", path=str(path), error=str(exc))
        return flows

    def save(self, flow: FlowDefinition) -> Path:
        """Save a flow to disk."""
        path = self.flows_dir / f"{flow.flow_id}.flow.json"
        path.write_text(
            flow.model_dump_json(indent=2, exclude_none=True, by_alias=True),
            encoding="utf-8",
        )
        self._cache[flow.flow_id] = flow
        log.info("flow_saved", flow_id=flow.flow_id, path=str(path))
        return path

    def _find_flow_file(self, flow_id: str) -> Path:
        """Find the flow file by ID."""
        direct = self.flows_dir / f"{flow_id}.flow.json"
        if direct.exists():
            return direct
        for path in self.flows_dir.rglob(f"{flow_id}.flow.json"):
            return path
        raise FlowNotFoundError(flow_id)


class FlowRunner:
    """Executes a flow step by step against live endpoints.

    One runner holds the state of one run at a time: execution state, stored
    responses, cookies and logs survive until the next ``run`` or ``reset``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        proxy_url: str | None = None,
        environment: Environment | None = None,
        on_state_update: StateCallback | None = None,
        on_log: LogCallback | None = None,
    ) -> None:
        self.client = client
        self.proxy_url = proxy_url
        self.environment = environment
        self.run_log = RunLog(on_log)
        self.state = ExecutionStateStore(on_state_update)
        self.cookie_jar = CookieJar()
        self.context = ExecutionContext()
        self._running = False
        self._stop_requested = False
        self._pending: tuple[FlowDefinition, ExecutionPreferences, datetime, float] | None = None

    # --- Observable state ---

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def awaiting_parameters(self) -> bool:
        return self._pending is not None

    @property
    def logs(self) -> list[LogEntry]:
        return list(self.run_log.entries)

    @property
    def stored_responses(self) -> dict[str, Any]:
        return dict(self.context.responses)

    @property
    def parameter_values(self) -> dict[str, Any]:
        return dict(self.context.parameters)

    def execution_state(self) -> ExecutionStateSnapshot:
        return self.state.snapshot()

    # --- Control ---

    def stop(self) -> None:
        """Request a cooperative stop; ignored when nothing is running."""
        if not self._running:
            return
        self._stop_requested = True
        self.run_log.info("Stop requested, finishing current work")

    def reset(self) -> None:
        """Drop all run state, stored data and cookies."""
        self.state.reset()
        self._clear_cookies()
        self.context = ExecutionContext()
        self.run_log.clear()
        self._stop_requested = False
        self._pending = None

    # --- Execution ---

    async def run(
        self,
        flow: FlowDefinition,
        preferences: ExecutionPreferences | None = None,
        params: dict[str, Any] | None = None,
    ) -> ExecutionOutcome:
        """Run every step of a flow in order."""
        preferences = preferences or ExecutionPreferences()
        self.reset()
        started_at = datetime.now(tz=timezone.utc)
        start_time = time.monotonic()
        log.info("flow_run_started", flow_id=flow.flow_id)

        try:
            self._prepare(flow, params)
        except (ConfigurationError, EnvironmentResolutionError) as exc:
            self.run_log.error(str(exc))
            return self._outcome(
                flow, "configuration_error", started_at, start_time, error=str(exc)
            )

        missing = find_missing_parameters(flow, self.context.parameters)
        if missing:
            self._pending = (flow, preferences, started_at, start_time)
            return self._awaiting(flow, missing, started_at, start_time)
        return await self._execute(flow, preferences, started_at, start_time)

    def supply_parameters(self, values: dict[str, Any]) -> None:
        """Provide values for parameters a suspended run is waiting on."""
        if self._pending is None:
            raise ConfigurationError("No flow run is waiting for parameters")
        flow = self._pending[0]
        self.context.parameters = apply_supplied_values(
            flow, self.context.parameters, values, self.run_log
        )

    async def resume(self, values: dict[str, Any] | None = None) -> ExecutionOutcome:
        """Continue a run suspended on missing parameters."""
        if values:
            self.supply_parameters(values)
        if self._pending is None:
            raise ConfigurationError("No flow run is waiting for parameters")
        flow, preferences, started_at, start_time = self._pending
        missing = find_missing_parameters(flow, self.context.parameters)
        if missing:
            return self._awaiting(flow, missing, started_at, start_time)
        self._pending = None
        return await self._execute(flow, preferences, started_at, start_time)

    async def run_step(
        self,
        flow: FlowDefinition,
        step_index: int,
        preferences: ExecutionPreferences | None = None,
        params: dict[str, Any] | None = None,
    ) -> StepOutcome:
        """Re-run one step, keeping results of every other endpoint."""
        preferences = preferences or ExecutionPreferences()
        steps = flow.steps or []
        if not 0 <= step_index < len(steps):
            raise ConfigurationError(f"Step index {step_index} is out of range")
        if self._running:
            raise ConfigurationError("A flow run is already in progress")

        if params or not self.context.parameters:
            self._prepare(flow, params, keep_results=True)
        missing = find_missing_parameters(flow, self.context.parameters)
        if missing:
            raise MissingParametersError([p.name for p in missing])

        step = steps[step_index]
        self.state.discard(endpoint_key(step.step_id, i) for i in range(len(step.endpoints)))
        executor = self._make_executor(preferences)
        self._running = True
        self._stop_requested = False
        try:
            return await self._run_step(flow, step_index, step, executor, preferences)
        finally:
            self._running = False

    # --- Internals ---

    def _prepare(
        self,
        flow: FlowDefinition,
        params: dict[str, Any] | None,
        keep_results: bool = False,
    ) -> None:
        """Resolve environment and parameters, then validate the flow."""
        environment_vars, host_overrides = self._resolve_environment(flow)
        validation = validate_flow(flow, host_overrides)
        for warning in validation.warnings:
            self.run_log.warning(warning)
        if not validation.valid:
            raise ConfigurationError("; ".join(validation.errors))
        if not keep_results:
            self.context = ExecutionContext()
        self.context.environment = environment_vars
        self.context.host_overrides = host_overrides
        self.context.parameters = prepare_parameters(
            flow, environment_vars, params, self.run_log
        )

    def _resolve_environment(
        self, flow: FlowDefinition
    ) -> tuple[dict[str, Any], dict[str, str]]:
        binding = flow.settings.environment
        if self.environment is None or binding is None or not binding.sub_environment:
            return {}, {}
        if (
            binding.environment_id
            and self.environment.id
            and binding.environment_id != self.environment.id
        ):
            self.run_log.warning(
                f"Flow expects environment '{binding.environment_id}' "
                f"but '{self.environment.id}' is selected"
            )
        variables = resolve_environment_variables(
            self.environment, binding.sub_environment
        )
        hosts = resolve_api_host_overrides(self.environment, binding.sub_environment)
        self.run_log.debug(
            f"Using environment '{self.environment.name}/{binding.sub_environment}'",
            {"variables": sorted(variables), "hosts": hosts},
        )
        return variables, hosts

    def _make_executor(self, preferences: ExecutionPreferences) -> EndpointExecutor:
        transport: HttpTransport
        if preferences.server_cookie_handling:
            if not self.proxy_url:
                raise ConfigurationError(
                    "Server cookie handling requires a proxy URL"
                )
            transport = ProxyTransport(self.client, self.proxy_url)
        else:
            transport = DirectTransport(self.client)
        self.cookie_jar.configure(transport.mode, preferences.scope_cookies_by_domain)
        return EndpointExecutor(
            transport, self.cookie_jar, self.state, self.run_log, preferences
        )

    async def _execute(
        self,
        flow: FlowDefinition,
        preferences: ExecutionPreferences,
        started_at: datetime,
        start_time: float,
    ) -> ExecutionOutcome:
        try:
            executor = self._make_executor(preferences)
        except ConfigurationError as exc:
            self.run_log.error(str(exc))
            return self._outcome(
                flow, "configuration_error", started_at, start_time, error=str(exc)
            )

        steps = flow.steps or []
        total = len(steps)
        flow_error: str | None = None
        stopped = False
        self._running = True
        self._stop_requested = False
        self.run_log.info(
            f"Starting flow '{flow.name or flow.flow_id}' with {total} steps",
            {
                "parallel": preferences.parallel_execution,
                "stop_on_error": preferences.stop_on_error,
                "server_cookies": preferences.server_cookie_handling,
            },
        )
        try:
            for index, step in enumerate(steps):
                if self._stop_requested:
                    stopped = True
                    break
                outcome = await self._run_step(flow, index, step, executor, preferences)
                if step.endpoints:
                    self.state.set_progress(math.floor((index + 1) / total * 100), index)
                if not outcome.success and preferences.stop_on_error:
                    flow_error = outcome.error
                    self.run_log.error(
                        f"Stopping flow after step '{step.step_id}' failed"
                    )
                    break
                if self._stop_requested:
                    stopped = True
                    break
        finally:
            self._running = False

        if stopped:
            self.run_log.info("Flow execution stopped by user")
        elif flow_error is None and total:
            self.state.set_progress(100, None)

        status = "failed" if flow_error else "stopped" if stopped else "success"
        outputs, output_errors = {}, {}
        if flow_error is None:
            evaluation = evaluate_outputs(
                flow.outputs, self.context.template_context(), self.run_log
            )
            outputs, output_errors = evaluation.values, evaluation.errors
        log.info("flow_run_finished", flow_id=flow.flow_id, status=status)
        return self._outcome(
            flow,
            status,
            started_at,
            start_time,
            error=flow_error,
            flow_outputs=outputs,
            output_errors=output_errors,
        )

    async def _run_step(
        self,
        flow: FlowDefinition,
        index: int,
        step: FlowStep,
        executor: EndpointExecutor,
        preferences: ExecutionPreferences,
    ) -> StepOutcome:
        if not step.endpoints:
            self.run_log.debug(f"Step '{step.step_id}' has no endpoints, skipping")
            return StepOutcome(step_id=step.step_id, step_index=index, success=True)

        if step.clear_cookies_before_execution:
            self._clear_cookies()
            self.run_log.info(f"Cleared cookies before step '{step.step_id}'")

        self.state.set_progress(self.state.progress, index)
        self.run_log.info(f"Executing step '{step.label or step.step_id}'")

        def call(i: int) -> Any:
            step_endpoint = step.endpoints[i]
            return executor.execute(
                step.step_id,
                i,
                step_endpoint,
                flow.endpoint(step_endpoint.endpoint_id),
                flow.settings.api_hosts,
                self.context,
            )

        if preferences.parallel_execution:
            results = list(
                await asyncio.gather(*(call(i) for i in range(len(step.endpoints))))
            )
        else:
            results = []
            for i in range(len(step.endpoints)):
                result = await call(i)
                results.append(result)
                if self._stop_requested:
                    break
                if not result.success and preferences.stop_on_error:
                    break

        failed = [r for r in results if not r.success]
        return StepOutcome(
            step_id=step.step_id,
            step_index=index,
            success=not failed,
            error=f"{failed[0].key}: {failed[0].error}" if failed else None,
            endpoints=results,
        )

    def _clear_cookies(self) -> None:
        self.cookie_jar.clear()
        self.client.cookies.clear()

    def _awaiting(
        self,
        flow: FlowDefinition,
        missing: list[FlowParameter],
        started_at: datetime,
        start_time: float,
    ) -> ExecutionOutcome:
        names = ", ".join(p.name for p in missing)
        self.run_log.warning(f"Waiting for values of required parameters: {names}")
        return self._outcome(
            flow,
            "awaiting_parameters",
            started_at,
            start_time,
            missing_parameters=missing,
        )

    def _outcome(
        self,
        flow: FlowDefinition,
        status: str,
        started_at: datetime,
        start_time: float,
        **fields: Any,
    ) -> ExecutionOutcome:
        error = fields.pop("error", None)
        return ExecutionOutcome(
            flow_id=flow.flow_id,
            success=status in ("success", "stopped"),
            status=status,
            error=error,
            execution_state=self.state.snapshot(),
            stored_responses=dict(self.context.responses),
            parameter_values=dict(self.context.parameters),
            failed_endpoints=self.state.failed_keys(),
            progress=self.state.progress,
            started_at=started_at,
            finished_at=datetime.now(tz=timezone.utc),
            duration_ms=(time.monotonic() - start_time) * 1000,
            apply_transformations=apply_transformations,
            **fields,
        )
