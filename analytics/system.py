"""
SystemProbe — point-in-time resource snapshot of the current process.

Values are read fresh on every call (never historical). Uses psutil.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class SystemSnapshot:
    """Resource usage of the serving process at one instant."""

    memory_usage_mb: float = 0.0
    cpu_usage_percent: float = 0.0
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "memory_usage_mb": round(self.memory_usage_mb, 2),
            "cpu_usage_percent": round(self.cpu_usage_percent, 2),
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


class SystemProbe:
    """Reads memory (RSS), CPU and uptime for this process."""

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()
        # Prime cpu_percent so the next call measures since construction.
        try:
            self._process.cpu_percent(interval=None)
        except psutil.Error:
            logger.debug("SystemProbe: cpu_percent priming failed")

    def snapshot(self) -> SystemSnapshot:
        try:
            with self._process.oneshot():
                memory = self._process.memory_info().rss / _BYTES_PER_MB
                cpu = self._process.cpu_percent(interval=None)
                uptime = time.time() - self._process.create_time()
        except psutil.Error as exc:
            logger.warning("SystemProbe: unable to read process stats: %s", exc)
            return SystemSnapshot()

        return SystemSnapshot(
            memory_usage_mb=memory,
            cpu_usage_percent=min(cpu, 100.0),
            uptime_seconds=max(uptime, 0.0),
        )


class StaticSystemProbe(SystemProbe):
    """Probe returning a fixed snapshot; used by tests and offline tools."""

    def __init__(self, snapshot: SystemSnapshot | None = None) -> None:
        self._snapshot = snapshot or SystemSnapshot()

    def snapshot(self) -> SystemSnapshot:
        return self._snapshot
