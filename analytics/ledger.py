"""
EventLedger — bounded, insertion-ordered in-memory event buffer.

Records are appended at the tail. Once the buffer holds more than
``max_events`` entries the oldest ones are evicted so exactly the most
recent ``max_events`` remain. Newest records are never dropped.

Lives only in process memory: every worker process owns its own ledger,
so totals derived from it are per-instance.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Generic, Iterator, Protocol, TypeVar

logger = logging.getLogger(__name__)


class TimestampedRecord(Protocol):
    timestamp: float


T = TypeVar("T", bound=TimestampedRecord)


class EventLedger(Generic[T]):
    """FIFO-bounded event store.

    Usage::

        ledger = EventLedger(max_events=3)
        for event in events:
            ledger.append(event)
        recent = ledger.window(cutoff_ms=now_ms - 3_600_000)
    """

    def __init__(self, max_events: int = 10_000) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self._max_events = max_events
        self._events: deque[T] = deque()
        self._total_appended = 0
        self._total_evicted = 0

    # ── Recording ───────────────────────────────────────────────────────

    def append(self, record: T) -> None:
        """Append a record, then trim the head back down to capacity."""
        self._events.append(record)
        self._total_appended += 1
        self._trim()

    # ── Queries ─────────────────────────────────────────────────────────

    def window(self, cutoff_ms: float) -> list[T]:
        """Return records with ``timestamp > cutoff_ms`` in insertion order."""
        return [e for e in self._events if e.timestamp > cutoff_ms]

    def snapshot(self) -> list[T]:
        """Return a copy of every retained record."""
        return list(self._events)

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the first record matching ``predicate``, or None."""
        for record in self._events:
            if predicate(record):
                return record
        return None

    def clear(self) -> None:
        self._events.clear()

    @property
    def max_events(self) -> int:
        return self._max_events

    def get_stats(self) -> dict[str, int]:
        """Return ledger statistics."""
        return {
            "size": len(self._events),
            "max_events": self._max_events,
            "total_appended": self._total_appended,
            "total_evicted": self._total_evicted,
        }

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._events))

    # ── Internal ────────────────────────────────────────────────────────

    def _trim(self) -> int:
        """Drop records from the head until within capacity."""
        removed = 0
        while len(self._events) > self._max_events:
            self._events.popleft()
            removed += 1
        if removed:
            self._total_evicted += removed
        return removed
