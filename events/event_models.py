"""
Event models — typed data containers for the analytics ledgers.

Performance events are immutable dataclasses. Security events are
immutable except for the ``resolved`` flag, which may flip from
False to True exactly once through ``resolve()``.
No aggregation logic lives here — pure data carriers.
"""

from __future__ import annotations

import math
import secrets
import string
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventSeverity(str, Enum):
    """Severity classification for security events."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEventType(str, Enum):
    """Fixed enumeration of recorded security event categories."""

    AUTH_ATTEMPT = "auth_attempt"
    FAILED_LOGIN = "failed_login"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    CSRF_ATTACK = "csrf_attack"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"
    XSS_ATTEMPT = "xss_attempt"
    ADMIN_ACCESS = "admin_access"
    PASSWORD_CHANGE = "password_change"
    ACCOUNT_LOCKOUT = "account_lockout"


def _require_number(name: str, value: Any, *, optional: bool = False) -> None:
    if value is None and optional:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")


def iso_from_ms(timestamp_ms: float) -> str:
    """Render an epoch-milliseconds timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class PerformanceEvent:
    """A single observed HTTP request.

    Attributes:
        timestamp: When the request completed (epoch milliseconds).
        route: Request path or route template.
        method: HTTP method.
        response_time_ms: Wall-clock handling time.
        status_code: Response status code.
        db_query_time_ms: Time spent in database calls, when measured.
        cache_hit_rate: Fraction of cache hits for the request, when measured.
        memory_usage_mb / cpu_usage_percent: Optional resource snapshot.
    """

    timestamp: float
    route: str
    method: str
    response_time_ms: float
    status_code: int
    user_agent: str | None = None
    user_id: str | None = None
    memory_usage_mb: float | None = None
    cpu_usage_percent: float | None = None
    db_query_time_ms: float | None = None
    cache_hit_rate: float | None = None

    def __post_init__(self) -> None:
        _require_number("timestamp", self.timestamp)
        _require_number("response_time_ms", self.response_time_ms)
        for name in ("memory_usage_mb", "cpu_usage_percent", "db_query_time_ms", "cache_hit_rate"):
            _require_number(name, getattr(self, name), optional=True)
        if isinstance(self.status_code, bool) or not isinstance(self.status_code, int):
            raise ValueError(f"Invalid HTTP status code: {self.status_code!r}")
        if self.response_time_ms < 0:
            raise ValueError("response_time_ms must be non-negative")
        if not 100 <= self.status_code <= 599:
            raise ValueError(f"Invalid HTTP status code: {self.status_code}")
        if self.cache_hit_rate is not None and not 0.0 <= self.cache_hit_rate <= 1.0:
            raise ValueError("cache_hit_rate must be within [0, 1]")

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp_iso"] = iso_from_ms(self.timestamp)
        return data


def generate_event_id(timestamp_ms: float) -> str:
    """Return an id of the form ``sec_<ms>_<9 random chars>``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"sec_{int(timestamp_ms)}_{suffix}"


@dataclass(frozen=True)
class SecurityEvent:
    """A recorded security incident.

    The dataclass is frozen; ``resolved`` is the single mutable field and
    can only be changed through ``resolve()``.
    """

    id: str
    timestamp: float
    event_type: SecurityEventType
    severity: EventSeverity
    ip: str
    description: str
    user_id: str | None = None
    user_agent: str | None = None
    route: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False

    def __post_init__(self) -> None:
        # Coerce plain strings into enums so callers may pass either.
        object.__setattr__(self, "event_type", SecurityEventType(self.event_type))
        object.__setattr__(self, "severity", EventSeverity(self.severity))
        if not self.ip:
            raise ValueError("Security events require a source IP")
        _require_number("timestamp", self.timestamp)
        if self.metadata is None:
            object.__setattr__(self, "metadata", {})
        elif not isinstance(self.metadata, Mapping):
            raise ValueError(f"metadata must be a mapping, got {type(self.metadata).__name__}")
        else:
            object.__setattr__(self, "metadata", dict(self.metadata))

    def resolve(self) -> bool:
        """Mark the event resolved. Returns False if it already was."""
        if self.resolved:
            return False
        object.__setattr__(self, "resolved", True)
        return True

    @property
    def is_high_or_critical(self) -> bool:
        return self.severity in (EventSeverity.HIGH, EventSeverity.CRITICAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "timestamp_iso": iso_from_ms(self.timestamp),
            "type": self.event_type.value,
            "severity": self.severity.value,
            "ip": self.ip,
            "user_id": self.user_id,
            "user_agent": self.user_agent,
            "route": self.route,
            "description": self.description,
            "metadata": dict(self.metadata),
            "resolved": self.resolved,
        }
