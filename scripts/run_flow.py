#!/usr/bin/env python3
"""Interactive flow runner — execute an API test flow from the terminal."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

from flowengine import FlowEngine, FlowLoader
from flowengine.config import EngineConfig
from flowengine.logger import configure_logging
from flowengine.models import ExecutionOutcome, FlowParameter


def discover_flows(base: Path) -> list[Path]:
    """Find all .flow.json files recursively."""
    return sorted(base.rglob("*.flow.json"))


def pick_flow(flows: list[Path], base: Path) -> Path:
    """Let the user choose a flow from the list."""
    print("\nAvailable flows:")
    for i, f in enumerate(flows, 1):
        flow = FlowLoader.load_file(f)
        print(f"  {i}. {f.relative_to(base)}  - {flow.name or flow.flow_id}")

    while True:
        choice = input(f"\nSelect flow [1-{len(flows)}]: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(flows):
            return flows[int(choice) - 1]
        print("Invalid choice, try again.")


def ask_parameters(missing: list[FlowParameter]) -> dict[str, str]:
    """Prompt for each parameter the run is waiting on."""
    print("\nRequired parameters:")
    values: dict[str, str] = {}
    for param in missing:
        hint = f" - {param.description}" if param.description else ""
        value = ""
        while not value:
            value = input(f"  {param.name} [{param.type}]{hint}: ").strip()
        values[param.name] = value
    return values


def print_outcome(outcome: ExecutionOutcome) -> None:
    print(f"\n{'=' * 60}")
    print(f"  Status:   {outcome.status}")
    print(f"  Duration: {outcome.duration_ms:.0f}ms")
    print("  Endpoints:")
    for key, state in outcome.execution_state.endpoints.items():
        icon = "✓" if state.status == "completed" else "✗"
        code = state.response.status if state.response else "-"
        print(f"    {icon} {key} [{state.status}] {code} {state.timing}ms")
        if state.error:
            print(f"      Error: {state.error}")
    if outcome.error:
        print(f"  Error: {outcome.error}")
    if outcome.flow_outputs:
        print(f"  Outputs: {json.dumps(outcome.flow_outputs, indent=4, default=str)}")
    print(f"{'=' * 60}")


async def run(flow_path: Path, config: EngineConfig) -> int:
    """Execute the flow, asking for parameter values when needed."""
    flow = FlowLoader.load_file(flow_path)
    print(f"\n▶ Running flow: {flow.name or flow.flow_id}")
    print(f"  Steps:        {len(flow.steps or [])}")
    print(f"  Proxy:        {config.proxy_url or 'direct'}")

    async with FlowEngine.from_config(config) as engine:
        outcome = await engine.execute_full(flow)
        while outcome.status == "awaiting_parameters":
            values = ask_parameters(outcome.missing_parameters)
            outcome = await engine.runner.resume(values)
        print_outcome(outcome)
    return 0 if outcome.success else 1


def main() -> None:
    config = EngineConfig.from_env()
    configure_logging(config.log_level, config.log_format)  # type: ignore[arg-type]

    if len(sys.argv) > 1:
        flow_path = Path(sys.argv[1])
    else:
        base = Path(config.flows_dir)
        flows = discover_flows(base)
        if not flows:
            print(f"No .flow.json files found in {base}")
            sys.exit(1)
        flow_path = pick_flow(flows, base)
    sys.exit(asyncio.run(run(flow_path, config)))


if __name__ == "__main__":
    main()
