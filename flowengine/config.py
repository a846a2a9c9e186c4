"""Engine configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from flowengine.models import ExecutionPreferences


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class EngineConfig:
    """Engine configuration loaded from environment variables."""

    flows_dir: str = "flows"
    proxy_url: str | None = None
    timeout_ms: int = 30000
    parallel_execution: bool = False
    stop_on_error: bool = True
    server_cookie_handling: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load config from environment variables."""
        return cls(
            flows_dir=os.environ.get("FLOWENGINE_FLOWS_DIR", "flows"),
            proxy_url=os.environ.get("FLOWENGINE_PROXY_URL") or None,
            timeout_ms=int(os.environ.get("FLOWENGINE_TIMEOUT_MS", "30000")),
            parallel_execution=_flag("FLOWENGINE_PARALLEL", "false"),
            stop_on_error=_flag("FLOWENGINE_STOP_ON_ERROR", "true"),
            server_cookie_handling=_flag("FLOWENGINE_SERVER_COOKIES", "false"),
            log_level=os.environ.get("FLOWENGINE_LOG_LEVEL", "INFO"),
            log_format=os.environ.get("FLOWENGINE_LOG_FORMAT", "console"),
        )

    def to_preferences(self) -> ExecutionPreferences:
        return ExecutionPreferences(
            parallel_execution=self.parallel_execution,
            stop_on_error=self.stop_on_error,
            server_cookie_handling=self.server_cookie_handling,
            timeout=self.timeout_ms,
        )
