"""
MonitoringForwarder — best-effort fan-out of recorded events.

Every event recorded by an analytics ledger is handed to the forwarder,
which logs it and passes it to any registered external sinks (APM
agents, SIEM shippers, ...). Sink failures are logged and swallowed:
recording must never fail because monitoring is unavailable.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Callable

logger = logging.getLogger(__name__)

MonitoringSink = Callable[[str, dict[str, Any]], None]


class MonitoringForwarder:
    """Forward recorded events to logging and external sinks.

    Usage::

        forwarder = MonitoringForwarder(verbose=True)
        forwarder.add_sink(lambda kind, event: shipper.send(kind, event))
        forwarder.forward("performance", {"route": "/api/events", ...})
    """

    def __init__(self, *, verbose: bool = False) -> None:
        self._verbose = verbose
        self._sinks: list[MonitoringSink] = []
        self._forwarded: Counter[str] = Counter()
        self._failures = 0

    def add_sink(self, sink: MonitoringSink) -> None:
        self._sinks.append(sink)

    def forward(self, kind: str, event: dict[str, Any], summary: str = "") -> None:
        """Send one event to every sink. Never raises."""
        if self._verbose:
            logger.info("%s event: %s", kind, summary or event)
        else:
            logger.debug("%s event: %s", kind, summary or event)

        for sink in self._sinks:
            try:
                sink(kind, event)
            except Exception:
                self._failures += 1
                logger.exception("Error sending %s event to monitoring sink", kind)

        self._forwarded[kind] += 1

    def get_stats(self) -> dict[str, Any]:
        return {
            "sinks": len(self._sinks),
            "forwarded": dict(self._forwarded),
            "failures": self._failures,
        }
