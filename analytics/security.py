"""
Security analytics — incident statistics, threat analysis and posture.

Counts security events by category for a trailing window, ranks threat
types with a trend classification, profiles events by hour of day, and
scores the security posture. Critical events trigger an auto-block
evaluation for their source IP.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from analytics.base import AnalyticsStrategy, WindowedAnalytics
from analytics.health import HealthAssessment, HealthScorer
from analytics.system import SystemSnapshot
from enforcement.ip_blocklist import AutoBlockEvaluator, IPBlocklist
from events.event_models import (
    EventSeverity,
    SecurityEvent,
    SecurityEventType,
    generate_event_id,
    iso_from_ms,
)

logger = logging.getLogger(__name__)

HEALTH_LABELS = ("secure", "warning", "critical")

CRITICAL_THREAT_TYPES = {
    SecurityEventType.SQL_INJECTION_ATTEMPT,
    SecurityEventType.XSS_ATTEMPT,
    SecurityEventType.CSRF_ATTACK,
}
HIGH_THREAT_TYPES = {
    SecurityEventType.FAILED_LOGIN,
    SecurityEventType.SUSPICIOUS_ACTIVITY,
}

# Trend: recent half vs older half of the window.
TREND_INCREASE_FACTOR = 1.2
TREND_DECREASE_FACTOR = 0.8

COMPLIANCE_THRESHOLDS = {"gdpr": 80, "ccpa": 75, "sox": 85, "pci": 90}

_DESCRIPTIONS = {
    SecurityEventType.AUTH_ATTEMPT: "User authentication attempt",
    SecurityEventType.FAILED_LOGIN: "Failed login attempt with invalid credentials",
    SecurityEventType.SUSPICIOUS_ACTIVITY: "Unusual user behavior pattern detected",
    SecurityEventType.RATE_LIMIT_EXCEEDED: "Request rate limit exceeded",
    SecurityEventType.CSRF_ATTACK: "Potential CSRF attack detected",
    SecurityEventType.SQL_INJECTION_ATTEMPT: "SQL injection attempt in user input",
    SecurityEventType.XSS_ATTEMPT: "Cross-site scripting attempt detected",
    SecurityEventType.ADMIN_ACCESS: "Administrative access granted",
    SecurityEventType.PASSWORD_CHANGE: "User password changed",
    SecurityEventType.ACCOUNT_LOCKOUT: "Account locked due to multiple failed attempts",
}
_SYNTHETIC_IPS = [
    "192.168.1.100", "10.0.0.50", "203.0.113.10", "198.51.100.25",
    "172.16.0.100", "192.0.2.15", "203.0.113.200", "198.51.100.150",
]
_SYNTHETIC_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "curl/7.68.0",
    "python-requests/2.25.1",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
    "Postman/7.36.0",
]
_SYNTHETIC_ROUTES = [
    "/api/auth/signin", "/admin/users", "/api/users", "/api/posts",
    "/api/payments", "/admin/dashboard", "/api/auth/reset-password",
]


def threat_severity(event_type: SecurityEventType, count: int) -> str:
    """Severity label for a threat type given its window count."""
    if event_type in CRITICAL_THREAT_TYPES or count > 50:
        return "critical"
    if event_type in HIGH_THREAT_TYPES or count > 20:
        return "high"
    if count > 10:
        return "medium"
    return "low"


def classify_trend(recent: int, older: int) -> str:
    """``increasing`` / ``decreasing`` / ``stable`` from two half-window counts."""
    if recent > older * TREND_INCREASE_FACTOR:
        return "increasing"
    if recent < older * TREND_DECREASE_FACTOR:
        return "decreasing"
    return "stable"


class SecurityStrategy(AnalyticsStrategy[SecurityEvent]):
    """Aggregation and scoring rules for ``SecurityEvent`` records."""

    def __init__(self, *, top_threats: int = 10, recent_limit: int = 100) -> None:
        self._top_threats = top_threats
        self.recent_limit = recent_limit

    @property
    def name(self) -> str:
        return "security"

    @property
    def export_columns(self) -> tuple[str, ...]:
        return (
            "id", "timestamp", "type", "severity", "ip",
            "route", "description", "user_id", "resolved",
        )

    # ── Construction ────────────────────────────────────────────────────

    def build(self, timestamp_ms: float, fields: dict[str, Any]) -> SecurityEvent:
        fields = dict(fields)
        for managed in ("id", "timestamp", "resolved"):
            fields.pop(managed, None)
        if "type" in fields and "event_type" not in fields:
            fields["event_type"] = fields.pop("type")
        fields.setdefault("metadata", {})
        return SecurityEvent(
            id=generate_event_id(timestamp_ms),
            timestamp=timestamp_ms,
            **fields,
        )

    def describe(self, record: SecurityEvent) -> str:
        return f"{record.event_type.value} - {record.severity.value} - {record.ip}"

    def matches(self, record: SecurityEvent, filters: dict[str, Any]) -> bool:
        severity = filters.get("severity")
        if severity and record.severity.value != str(getattr(severity, "value", severity)):
            return False
        event_type = filters.get("event_type")
        if event_type and record.event_type.value != str(getattr(event_type, "value", event_type)):
            return False
        ip = filters.get("ip")
        if ip and record.ip != ip:
            return False
        return True

    def on_recorded(
        self, record: SecurityEvent, analytics: WindowedAnalytics[SecurityEvent]
    ) -> None:
        if record.severity is EventSeverity.CRITICAL and isinstance(analytics, SecurityAnalytics):
            analytics.evaluate_ip_blocking(record.ip)

    # ── Aggregation ─────────────────────────────────────────────────────

    def summarize(
        self, records: list[SecurityEvent], *, snapshot: SystemSnapshot
    ) -> dict[str, Any]:
        by_type = Counter(r.event_type for r in records)
        return {
            "total_events": len(records),
            "critical_events": sum(1 for r in records if r.severity is EventSeverity.CRITICAL),
            "failed_logins": by_type[SecurityEventType.FAILED_LOGIN],
            "suspicious_activities": by_type[SecurityEventType.SUSPICIOUS_ACTIVITY],
            "rate_limit_violations": by_type[SecurityEventType.RATE_LIMIT_EXCEEDED],
            "csrf_attempts": by_type[SecurityEventType.CSRF_ATTACK],
            "sql_injection_attempts": by_type[SecurityEventType.SQL_INJECTION_ATTEMPT],
            "xss_attempts": by_type[SecurityEventType.XSS_ATTEMPT],
            "unresolved_events": sum(1 for r in records if not r.resolved),
        }

    def breakdown(
        self, records: list[SecurityEvent], *, period_ms: float, now_ms: float
    ) -> dict[str, Any]:
        return {
            "threat_analysis": {
                "top_threats": self._top_threats_for(records, period_ms, now_ms),
                "time_patterns": self._time_patterns(records),
            }
        }

    def _top_threats_for(
        self, records: list[SecurityEvent], period_ms: float, now_ms: float
    ) -> list[dict[str, Any]]:
        half = period_ms / 2
        counts: Counter[SecurityEventType] = Counter()
        recent: Counter[SecurityEventType] = Counter()
        older: Counter[SecurityEventType] = Counter()

        for record in records:
            counts[record.event_type] += 1
            age = now_ms - record.timestamp
            if age < half:
                recent[record.event_type] += 1
            elif age < period_ms:
                older[record.event_type] += 1

        threats = [
            {
                "type": event_type.value,
                "count": count,
                "severity": threat_severity(event_type, count),
                "trend": classify_trend(recent[event_type], older[event_type]),
            }
            for event_type, count in counts.items()
        ]
        threats.sort(key=lambda t: t["count"], reverse=True)
        return threats[: self._top_threats]

    @staticmethod
    def _time_patterns(records: list[SecurityEvent]) -> list[dict[str, Any]]:
        counts = [0] * 24
        critical = [0] * 24
        for record in records:
            hour = datetime.fromtimestamp(record.timestamp / 1000, tz=timezone.utc).hour
            counts[hour] += 1
            if record.severity is EventSeverity.CRITICAL:
                critical[hour] += 1

        patterns = []
        for hour in range(24):
            if critical[hour] > 5:
                level = "high"
            elif counts[hour] > 10:
                level = "medium"
            else:
                level = "low"
            patterns.append({"hour": hour, "event_count": counts[hour], "threat_level": level})
        return patterns

    # ── Health ──────────────────────────────────────────────────────────

    def score(
        self,
        records: list[SecurityEvent],
        *,
        snapshot: SystemSnapshot,
        now_ms: float,
    ) -> HealthAssessment:
        scorer = HealthScorer(now_ms)
        by_type = Counter(r.event_type for r in records)

        critical_count = sum(1 for r in records if r.severity is EventSeverity.CRITICAL)
        if critical_count > 10:
            scorer.penalize(
                "High Critical Event Volume", "critical", 30,
                f"{critical_count} critical security events detected",
                recommendation="Immediate investigation and threat mitigation required",
            )

        sql_attempts = by_type[SecurityEventType.SQL_INJECTION_ATTEMPT]
        if sql_attempts > 0:
            scorer.penalize(
                "SQL Injection Attempts", "high", 25,
                f"{sql_attempts} SQL injection attempts detected",
                recommendation="Review input validation and implement parameterized queries",
            )

        xss_attempts = by_type[SecurityEventType.XSS_ATTEMPT]
        if xss_attempts > 0:
            scorer.penalize(
                "XSS Attempts", "high", 20,
                f"{xss_attempts} XSS attempts detected",
                recommendation="Implement proper output encoding and Content Security Policy",
            )

        failed_logins = by_type[SecurityEventType.FAILED_LOGIN]
        if failed_logins > 50:
            scorer.penalize(
                "Brute Force Attacks", "medium", 15,
                f"{failed_logins} failed login attempts detected",
                recommendation="Implement account lockout and CAPTCHA mechanisms",
            )

        assessment = scorer.result(HEALTH_LABELS)
        assessment.extra["compliance"] = {
            name: assessment.score >= minimum
            for name, minimum in COMPLIANCE_THRESHOLDS.items()
        }
        return assessment

    # ── Export ──────────────────────────────────────────────────────────

    def export_row(self, record: SecurityEvent) -> list[Any]:
        return [
            record.id,
            iso_from_ms(record.timestamp),
            record.event_type.value,
            record.severity.value,
            record.ip,
            record.route,
            record.description,
            record.user_id,
            "true" if record.resolved else "false",
        ]

    # ── Synthetic data ──────────────────────────────────────────────────

    def synthesize(self, rng: random.Random) -> dict[str, Any]:
        event_type = rng.choice(list(SecurityEventType))

        if event_type in CRITICAL_THREAT_TYPES:
            severity = EventSeverity.CRITICAL if rng.random() < 0.7 else EventSeverity.HIGH
        elif event_type in HIGH_THREAT_TYPES:
            severity = EventSeverity.HIGH if rng.random() < 0.3 else EventSeverity.MEDIUM
        else:
            severity = rng.choice(list(EventSeverity))

        return {
            "event_type": event_type,
            "severity": severity,
            "ip": rng.choice(_SYNTHETIC_IPS),
            "user_agent": rng.choice(_SYNTHETIC_USER_AGENTS),
            "route": rng.choice(_SYNTHETIC_ROUTES),
            "description": _DESCRIPTIONS[event_type],
            "user_id": f"user_{rng.randrange(1000)}" if rng.random() < 0.6 else None,
            "metadata": {"source": "test_data_generator"},
        }


class SecurityAnalytics(WindowedAnalytics[SecurityEvent]):
    """Ledger of security events with IP auto-blocking and resolution."""

    def __init__(
        self,
        strategy: SecurityStrategy | None = None,
        *,
        blocklist: IPBlocklist | None = None,
        auto_block_window_ms: float = 60 * 60 * 1000,
        auto_block_threshold: int = 5,
        **kwargs: Any,
    ) -> None:
        super().__init__(strategy or SecurityStrategy(), **kwargs)
        self._blocklist = blocklist or IPBlocklist()
        self._auto_block = AutoBlockEvaluator(
            self._blocklist,
            window_ms=auto_block_window_ms,
            threshold=auto_block_threshold,
        )

    @property
    def blocklist(self) -> IPBlocklist:
        return self._blocklist

    def evaluate_ip_blocking(self, ip: str) -> bool:
        """Re-check ``ip`` against the auto-block rule."""
        return self._auto_block.evaluate(ip, self.ledger, self.now_ms())

    def resolve_event(self, event_id: str) -> bool:
        """Flip an event's ``resolved`` flag.

        Returns False when no such event is retained or it was
        already resolved.
        """
        event = self.ledger.find(lambda e: e.id == event_id)
        if event is None:
            return False
        resolved = event.resolve()
        if resolved:
            logger.info("Security event %s resolved", event_id)
        return resolved

    def get_event(self, event_id: str) -> SecurityEvent | None:
        return self.ledger.find(lambda e: e.id == event_id)

    def _decorate_stats(self, stats: dict[str, Any]) -> dict[str, Any]:
        stats["blocked_ips"] = len(self._blocklist)
        return stats

