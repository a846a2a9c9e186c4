"""Per-run log surface mirrored to structlog and the caller's callback."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from flowengine.logger import get_logger
from flowengine.models import LogEntry, LogLevel

log = get_logger(__name__)

LogCallback = Callable[[LogEntry], None]


class RunLog:
    """Collects human-readable log lines for one runner."""

    def __init__(self, on_log: LogCallback | None = None) -> None:
        self.entries: list[LogEntry] = []
        self._on_log = on_log

    def add(self, level: LogLevel, message: str, details: Any = None) -> LogEntry:
        entry = LogEntry(
            level=level,
            message=message,
            details=details,
            timestamp=datetime.now(tz=timezone.utc),
        )
        self.entries.append(entry)
        getattr(log, level)("run_log", message=message, details=details)
        if self._on_log:
            self._on_log(entry)
        return entry

    def info(self, message: str, details: Any = None) -> LogEntry:
        return self.add("info", message, details)

    def debug(self, message: str, details: Any = None) -> LogEntry:
        return self.add("debug", message, details)

    def warning(self, message: str, details: Any = None) -> LogEntry:
        return self.add("warning", message, details)

    def error(self, message: str, details: Any = None) -> LogEntry:
        return self.add("error", message, details)

    def clear(self) -> None:
        self.entries.clear()
