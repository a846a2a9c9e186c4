"""FlowEngine — main entry point for running API test flows."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx

from flowengine.config import EngineConfig
from flowengine.exceptions import (
    ConfigurationError,
    FlowExecutionError,
    MissingParametersError,
)
from flowengine.flow import FlowLoader, FlowRunner
from flowengine.logger import get_logger
from flowengine.models import (
    Environment,
    ExecutionOutcome,
    ExecutionPreferences,
    FlowDefinition,
    FlowSequence,
    SequenceOutcome,
)
from flowengine.runlog import LogCallback
from flowengine.sequence import SequenceRunner
from flowengine.state import StateCallback

log = get_logger(__name__)


class FlowEngine:
    """Owns the HTTP client and runs flows loaded from a directory."""

    def __init__(
        self,
        flows_dir: str | Path = "flows",
        proxy_url: str | None = None,
        preferences: ExecutionPreferences | None = None,
        environment: Environment | None = None,
        on_state_update: StateCallback | None = None,
        on_log: LogCallback | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._flows_dir = Path(flows_dir)
        self._proxy_url = proxy_url
        self.preferences = preferences or ExecutionPreferences()
        self._environment = environment
        self._on_state_update = on_state_update
        self._on_log = on_log
        self._owns_client = client is None
        self._client = client
        self._loader = FlowLoader(self._flows_dir)
        self._runner: FlowRunner | None = None
        self._sequence_runner: SequenceRunner | None = None

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs: Any) -> FlowEngine:
        return cls(
            flows_dir=config.flows_dir,
            proxy_url=config.proxy_url,
            preferences=config.to_preferences(),
            **kwargs,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        """Create the HTTP client and runner."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        self._runner = FlowRunner(
            self._client,
            proxy_url=self._proxy_url,
            environment=self._environment,
            on_state_update=self._on_state_update,
            on_log=self._on_log,
        )
        log.info("engine_started", flows_dir=str(self._flows_dir))

    async def stop(self) -> None:
        """Close the HTTP client if the engine created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._runner = None
        self._sequence_runner = None
        log.info("engine_stopped")

    async def __aenter__(self) -> FlowEngine:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    @property
    def runner(self) -> FlowRunner:
        if self._runner is None:
            raise ConfigurationError("Engine is not started")
        return self._runner

    # --- Execution ---

    async def execute(
        self,
        flow: str | FlowDefinition,
        params: dict[str, Any] | None = None,
        preferences: ExecutionPreferences | None = None,
    ) -> dict[str, Any]:
        """Run a flow and return its outputs, raising when the run fails."""
        outcome = await self.execute_full(flow, params, preferences)
        if outcome.status == "configuration_error":
            raise ConfigurationError(outcome.error or "Flow is not configured")
        if outcome.status == "awaiting_parameters":
            raise MissingParametersError([p.name for p in outcome.missing_parameters])
        if outcome.status == "failed":
            raise FlowExecutionError(outcome.flow_id, outcome.error or "Flow failed")
        return outcome.flow_outputs

    async def execute_full(
        self,
        flow: str | FlowDefinition,
        params: dict[str, Any] | None = None,
        preferences: ExecutionPreferences | None = None,
    ) -> ExecutionOutcome:
        """Run a flow and return the full outcome."""
        definition = self._loader.load(flow) if isinstance(flow, str) else flow
        return await self.runner.run(
            definition, preferences or self.preferences, params
        )

    async def execute_sequence(
        self,
        sequence: FlowSequence,
        preferences: ExecutionPreferences | None = None,
    ) -> SequenceOutcome:
        """Run a sequence of flows loaded from the flows directory."""
        self._sequence_runner = SequenceRunner(
            self.runner, self._loader, on_log=self._on_log
        )
        return await self._sequence_runner.run(
            sequence, preferences or self.preferences
        )

    def stop_execution(self) -> None:
        if self._sequence_runner is not None and self._sequence_runner.is_running:
            self._sequence_runner.stop()
            return
        self.runner.stop()

    # --- Status ---

    def list_flows(self) -> list[str]:
        """List all available flow IDs."""
        return list(self._loader.load_all().keys())

    def load_flow(self, flow_id: str) -> FlowDefinition:
        return self._loader.load(flow_id)
