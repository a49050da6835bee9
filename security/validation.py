"""
Validation — query parameter checks for the admin analytics routes.

Validates:
  • Trailing window lengths (hours)
  • Export formats
  • Severity and event-type filters
  • Synthetic test-data counts
"""

from __future__ import annotations

import logging
from typing import Optional

from analytics.base import HOUR_MS
from analytics.export import ExportFormat, parse_format
from core.exceptions import ValidationError
from events.event_models import EventSeverity, SecurityEventType

logger = logging.getLogger(__name__)

# Filter value meaning "no filter".
ALL = "all"


def validate_period_hours(hours: float, max_hours: float) -> float:
    """Return the window length in milliseconds.

    Raises:
        ValidationError: If ``hours`` is not positive or exceeds ``max_hours``.
    """
    if hours <= 0:
        raise ValidationError(f"Period must be positive, got {hours} hours")
    if hours > max_hours:
        raise ValidationError(
            f"Period too long: {hours} hours (max: {max_hours} hours)"
        )
    return hours * HOUR_MS


def validate_export_format(value: str) -> ExportFormat:
    """Raises:
        ValidationError: If the format is neither json nor csv.
    """
    return parse_format(value.strip().lower())


def validate_severity(value: Optional[str]) -> Optional[EventSeverity]:
    """Parse a severity filter; ``None`` / ``all`` mean no filter.

    Raises:
        ValidationError: If the severity is unknown.
    """
    if value is None or value.strip().lower() in ("", ALL):
        return None
    cleaned = value.strip().lower()
    try:
        return EventSeverity(cleaned)
    except ValueError:
        valid = [s.value for s in EventSeverity]
        raise ValidationError(f"Invalid severity: '{value}'. Valid: {valid}") from None


def validate_event_type(value: Optional[str]) -> Optional[SecurityEventType]:
    """Parse an event-type filter; ``None`` / ``all`` mean no filter.

    Raises:
        ValidationError: If the event type is unknown.
    """
    if value is None or value.strip().lower() in ("", ALL):
        return None
    cleaned = value.strip().lower()
    try:
        return SecurityEventType(cleaned)
    except ValueError:
        valid = [t.value for t in SecurityEventType]
        raise ValidationError(f"Invalid event type: '{value}'. Valid: {valid}") from None


def validate_test_data_count(count: int, max_count: int) -> int:
    """Raises:
        ValidationError: If ``count`` is outside ``1..max_count``.
    """
    if count < 1 or count > max_count:
        raise ValidationError(
            f"Test data count must be between 1 and {max_count}, got {count}"
        )
    return count
