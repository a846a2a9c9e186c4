"""Execution state shared between the runner and its observers."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from flowengine.models import (
    CapturedRequest,
    EndpointExecutionState,
    ExecutionStateSnapshot,
)

StateCallback = Callable[[ExecutionStateSnapshot], None]


def endpoint_key(step_id: str, index: int) -> str:
    """Composite key of an endpoint call: ``<step_id>-<index>``."""
    return f"{step_id}-{index}"


class ExecutionStateStore:
    """Holds one record per endpoint key.

    Each endpoint writes only its own key and records are replaced, never
    mutated, so snapshots handed to observers stay stable.
    """

    def __init__(self, on_update: StateCallback | None = None) -> None:
        self._endpoints: dict[str, EndpointExecutionState] = {}
        self.progress = 0
        self.current_step: int | None = None
        self._on_update = on_update

    def get(self, key: str) -> EndpointExecutionState | None:
        return self._endpoints.get(key)

    def begin(self, key: str, request: CapturedRequest | None = None) -> EndpointExecutionState:
        """Start a fresh ``running`` record for an endpoint."""
        record = EndpointExecutionState(status="running", request=request)
        self._endpoints[key] = record
        self._emit()
        return record

    def update(self, key: str, **changes: Any) -> EndpointExecutionState:
        """Merge changes into an endpoint's record."""
        current = self._endpoints.get(key) or EndpointExecutionState()
        record = current.model_copy(update=changes)
        self._endpoints[key] = record
        self._emit()
        return record

    def set_progress(self, progress: int, current_step: int | None = None) -> None:
        self.progress = max(0, min(100, progress))
        self.current_step = current_step
        self._emit()

    def discard(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._endpoints.pop(key, None)

    def failed_keys(self) -> list[str]:
        return [k for k, v in self._endpoints.items() if v.status == "failed"]

    def snapshot(self) -> ExecutionStateSnapshot:
        return ExecutionStateSnapshot(
            endpoints=dict(self._endpoints),
            progress=self.progress,
            current_step=self.current_step,
        )

    def reset(self) -> None:
        self._endpoints = {}
        self.progress = 0
        self.current_step = None

    def _emit(self) -> None:
        if self._on_update:
            self._on_update(self.snapshot())
