"""
WindowedAnalytics — generic bounded event ledger + windowed aggregator.

One engine, specialised by an ``AnalyticsStrategy`` that knows how to
build, summarize, group, score and export a specific record type.
The performance and security analytics are two strategies plugged
into the same engine.

Instances are constructed explicitly and injected where needed; there
is no process-wide singleton, so tests can build isolated instances.
"""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Sequence, TypeVar

from analytics.export import ExportFormat, parse_format, render_csv, render_json
from analytics.health import HealthAssessment
from analytics.ledger import EventLedger
from analytics.system import SystemProbe, SystemSnapshot
from core.exceptions import ValidationError
from monitoring.forwarder import MonitoringForwarder

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

T = TypeVar("T")

Clock = Callable[[], float]


def wall_clock_ms() -> float:
    """Current time in epoch milliseconds."""
    return time.time() * 1000


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    return sum(values) / len(values) if values else 0.0


def ratio(part: int, whole: int) -> float:
    """``part / whole``, 0.0 when ``whole`` is zero."""
    return part / whole if whole else 0.0


class AnalyticsStrategy(ABC, Generic[T]):
    """Record-specific behaviour for ``WindowedAnalytics``.

    Subclasses must implement:
      - ``build()`` — turn caller-supplied fields into a record
      - ``summarize()`` — window statistics
      - ``breakdown()`` — grouped / top-N analysis
      - ``score()`` — health assessment (pure function of its inputs)
      - ``export_columns`` / ``export_row()`` — CSV layout
    """

    #: Number of newest records included in detailed analytics.
    recent_limit: int = 50

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used for logging and monitoring (e.g. ``'performance'``)."""

    @property
    @abstractmethod
    def export_columns(self) -> tuple[str, ...]:
        """CSV header, in column order."""

    @abstractmethod
    def build(self, timestamp_ms: float, fields: dict[str, Any]) -> T:
        """Create a record stamped at ``timestamp_ms``."""

    @abstractmethod
    def summarize(
        self, records: list[T], *, snapshot: SystemSnapshot
    ) -> dict[str, Any]:
        """Aggregate statistics for a window of records."""

    @abstractmethod
    def breakdown(
        self, records: list[T], *, period_ms: float, now_ms: float
    ) -> dict[str, Any]:
        """Grouped analysis for a window of records."""

    @abstractmethod
    def score(
        self, records: list[T], *, snapshot: SystemSnapshot, now_ms: float
    ) -> HealthAssessment:
        """Health assessment for a window of records."""

    @abstractmethod
    def export_row(self, record: T) -> list[Any]:
        """Values for one CSV row, in ``export_columns`` order."""

    @abstractmethod
    def synthesize(self, rng: random.Random) -> dict[str, Any]:
        """Fields for one realistic synthetic record."""

    def to_dict(self, record: T) -> dict[str, Any]:
        return record.to_dict()  # type: ignore[attr-defined]

    def matches(self, record: T, filters: dict[str, Any]) -> bool:
        """Whether ``record`` passes the optional filters. Default: no filters."""
        return True

    def describe(self, record: T) -> str:
        """One-line summary for the monitoring forwarder."""
        return repr(record)

    def on_recorded(self, record: T, analytics: WindowedAnalytics[T]) -> None:
        """Hook invoked after a record is appended."""


class WindowedAnalytics(Generic[T]):
    """Bounded in-memory event ledger with on-demand windowed aggregation.

    Usage::

        analytics = WindowedAnalytics(PerformanceStrategy(), max_events=10_000)
        analytics.record_event(route="/api/events", method="GET",
                               response_time_ms=120, status_code=200)
        stats = analytics.get_stats(period_ms=HOUR_MS)
        csv_text = analytics.export_events("csv", period_ms=DAY_MS)
    """

    def __init__(
        self,
        strategy: AnalyticsStrategy[T],
        *,
        max_events: int = 10_000,
        default_period_ms: float = DAY_MS,
        clock: Clock | None = None,
        probe: SystemProbe | None = None,
        forwarder: MonitoringForwarder | None = None,
    ) -> None:
        self._strategy = strategy
        self._ledger: EventLedger[T] = EventLedger(max_events=max_events)
        self._default_period_ms = default_period_ms
        self._clock = clock or wall_clock_ms
        self._probe = probe or SystemProbe()
        self._forwarder = forwarder or MonitoringForwarder()
        self._rejected = 0

    # ── Recording ───────────────────────────────────────────────────────

    def record_event(self, **fields: Any) -> None:
        """Stamp, append and forward one event.

        Best-effort: malformed input is logged and dropped, hook and
        forwarding failures are logged. Never raises.
        """
        try:
            record = self._strategy.build(self.now_ms(), fields)
        except (TypeError, ValueError) as exc:
            self._rejected += 1
            logger.warning(
                "%s analytics: dropping malformed event (%s)", self._strategy.name, exc
            )
            return

        self._ledger.append(record)

        try:
            self._strategy.on_recorded(record, self)
        except Exception:
            logger.exception("%s analytics: post-record hook failed", self._strategy.name)

        try:
            self._forwarder.forward(
                self._strategy.name,
                self._strategy.to_dict(record),
                self._strategy.describe(record),
            )
        except Exception:
            logger.exception(
                "Error sending %s event to monitoring services", self._strategy.name
            )

    # ── Queries ─────────────────────────────────────────────────────────

    def now_ms(self) -> float:
        return self._clock()

    def records_in_window(
        self, period_ms: float | None = None, **filters: Any
    ) -> list[T]:
        """Records newer than ``now - period_ms`` that pass ``filters``."""
        period = self._resolve_period(period_ms)
        records = self._ledger.window(self.now_ms() - period)
        active = {k: v for k, v in filters.items() if v not in (None, "", "all")}
        if active:
            records = [r for r in records if self._strategy.matches(r, active)]
        return records

    def get_stats(self, period_ms: float | None = None) -> dict[str, Any]:
        """Aggregate statistics for the trailing window."""
        records = self.records_in_window(period_ms)
        stats = self._strategy.summarize(records, snapshot=self._probe.snapshot())
        stats = self._decorate_stats(stats)
        stats["last_updated"] = datetime.now(timezone.utc).isoformat()
        return stats

    def assess_health(
        self, period_ms: float | None = None, **filters: Any
    ) -> HealthAssessment:
        """Score the trailing window."""
        records = self.records_in_window(period_ms, **filters)
        return self._strategy.score(
            records, snapshot=self._probe.snapshot(), now_ms=self.now_ms()
        )

    def get_detailed_analytics(
        self, period_ms: float | None = None, **filters: Any
    ) -> dict[str, Any]:
        """Stats, grouped breakdown, health and most recent events."""
        period = self._resolve_period(period_ms)
        now = self.now_ms()
        records = self.records_in_window(period, **filters)
        health = self._strategy.score(
            records, snapshot=self._probe.snapshot(), now_ms=now
        )
        recent = sorted(records, key=lambda r: r.timestamp, reverse=True)  # type: ignore[attr-defined]
        return {
            "stats": self.get_stats(period),
            **self._strategy.breakdown(records, period_ms=period, now_ms=now),
            "health": health.to_dict(),
            "recent_events": [
                self._strategy.to_dict(r) for r in recent[: self._strategy.recent_limit]
            ],
            "period_ms": period,
        }

    def export_events(
        self,
        export_format: str | ExportFormat = ExportFormat.JSON,
        period_ms: float | None = None,
        **filters: Any,
    ) -> str:
        """Render the filtered window as JSON or CSV."""
        fmt = parse_format(export_format)
        records = self.records_in_window(period_ms, **filters)
        if fmt is ExportFormat.CSV:
            return render_csv(
                self._strategy.export_columns,
                (self._strategy.export_row(r) for r in records),
            )
        return render_json(self._strategy.to_dict(r) for r in records)

    # ── Maintenance ─────────────────────────────────────────────────────

    def generate_test_data(self, count: int = 100, *, seed: int | None = None) -> int:
        """Record ``count`` synthetic events. Returns the number recorded."""
        rng = random.Random(seed)
        for _ in range(count):
            self.record_event(**self._strategy.synthesize(rng))
        logger.info("Generated %d %s events", count, self._strategy.name)
        return count

    def clear(self) -> None:
        self._ledger.clear()

    @property
    def strategy(self) -> AnalyticsStrategy[T]:
        return self._strategy

    @property
    def ledger(self) -> EventLedger[T]:
        return self._ledger

    def get_ledger_stats(self) -> dict[str, Any]:
        return {**self._ledger.get_stats(), "rejected": self._rejected}

    def __len__(self) -> int:
        return len(self._ledger)

    # ── Internal ────────────────────────────────────────────────────────

    def _decorate_stats(self, stats: dict[str, Any]) -> dict[str, Any]:
        """Subclass hook for stats that depend on engine state."""
        return stats

    def _resolve_period(self, period_ms: float | None) -> float:
        period = self._default_period_ms if period_ms is None else period_ms
        if period <= 0:
            raise ValidationError(f"Period must be positive, got {period}")
        return period
