"""
Performance analytics — request timing statistics and system health.

Summarizes request latency, error rate, database and cache behaviour
for a trailing window, groups requests by route, and scores system
health with fixed threshold penalties.
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from typing import Any

from analytics.base import AnalyticsStrategy, WindowedAnalytics, mean, ratio
from analytics.health import HealthAssessment, HealthScorer
from analytics.system import SystemSnapshot
from events.event_models import PerformanceEvent, iso_from_ms

logger = logging.getLogger(__name__)

HEALTH_LABELS = ("healthy", "warning", "critical")

# Threshold rules: (limit, severity, penalty), checked high → medium.
RESPONSE_TIME_RULES = ((2000.0, "high", 20), (1000.0, "medium", 10))
ERROR_RATE_RULES = ((0.05, "high", 25), (0.01, "medium", 10))
MEMORY_MB_RULES = ((500.0, "high", 15), (300.0, "medium", 8))
DB_QUERY_TIME_LIMIT_MS = 1000.0
DB_QUERY_PENALTY = 20

_SYNTHETIC_ROUTES = [
    "/api/users",
    "/api/auth/signin",
    "/api/auth/signup",
    "/api/admin/dashboard",
    "/api/posts",
    "/api/events",
    "/api/ai",
    "/protected/dashboard",
    "/admin/users",
    "/admin/events",
]
_SYNTHETIC_METHODS = ["GET", "POST", "PUT", "DELETE"]
_SYNTHETIC_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
]


class PerformanceStrategy(AnalyticsStrategy[PerformanceEvent]):
    """Aggregation and scoring rules for ``PerformanceEvent`` records."""

    def __init__(
        self,
        *,
        slow_query_threshold_ms: float = 1000.0,
        top_routes: int = 20,
        recent_limit: int = 50,
    ) -> None:
        self._slow_query_threshold_ms = slow_query_threshold_ms
        self._top_routes = top_routes
        self.recent_limit = recent_limit

    @property
    def name(self) -> str:
        return "performance"

    @property
    def export_columns(self) -> tuple[str, ...]:
        return (
            "timestamp",
            "route",
            "method",
            "response_time_ms",
            "status_code",
            "user_id",
            "memory_usage_mb",
            "cpu_usage_percent",
            "db_query_time_ms",
            "cache_hit_rate",
        )

    # ── Construction ────────────────────────────────────────────────────

    def build(self, timestamp_ms: float, fields: dict[str, Any]) -> PerformanceEvent:
        fields = dict(fields)
        fields.pop("timestamp", None)
        fields["method"] = str(fields.get("method", "GET")).upper()
        return PerformanceEvent(timestamp=timestamp_ms, **fields)

    def describe(self, record: PerformanceEvent) -> str:
        return (
            f"{record.method} {record.route} - {record.response_time_ms:.0f}ms "
            f"({record.status_code})"
        )

    def matches(self, record: PerformanceEvent, filters: dict[str, Any]) -> bool:
        route = filters.get("route")
        if route and record.route != route:
            return False
        method = filters.get("method")
        if method and record.method != str(method).upper():
            return False
        return True

    # ── Aggregation ─────────────────────────────────────────────────────

    def summarize(
        self, records: list[PerformanceEvent], *, snapshot: SystemSnapshot
    ) -> dict[str, Any]:
        total = len(records)
        errors = sum(1 for r in records if r.is_error)

        db_times = [r.db_query_time_ms for r in records if r.db_query_time_ms is not None]
        slow_queries = sum(1 for t in db_times if t > self._slow_query_threshold_ms)

        hit_rates = [r.cache_hit_rate for r in records if r.cache_hit_rate is not None]
        hit_rate = mean(hit_rates)

        return {
            "total_requests": total,
            "error_count": errors,
            "error_rate": ratio(errors, total),
            "average_response_time": mean([r.response_time_ms for r in records]),
            "db_performance": {
                "average_query_time": mean(db_times),
                "slow_queries": slow_queries,
                "queried_requests": len(db_times),
            },
            "cache_performance": {
                "hit_rate": hit_rate,
                "miss_rate": 1.0 - hit_rate if hit_rates else 0.0,
                "samples": len(hit_rates),
            },
            "system": snapshot.to_dict(),
        }

    def breakdown(
        self, records: list[PerformanceEvent], *, period_ms: float, now_ms: float
    ) -> dict[str, Any]:
        by_route: dict[str, list[PerformanceEvent]] = defaultdict(list)
        for record in records:
            by_route[record.route].append(record)

        routes = []
        for route, items in by_route.items():
            times = [r.response_time_ms for r in items]
            routes.append({
                "route": route,
                "request_count": len(items),
                "average_response_time": mean(times),
                "fastest_request": min(times),
                "slowest_request": max(times),
                "error_count": sum(1 for r in items if r.is_error),
            })

        routes.sort(key=lambda r: r["request_count"], reverse=True)
        return {"routes": routes[: self._top_routes]}

    # ── Health ──────────────────────────────────────────────────────────

    def score(
        self,
        records: list[PerformanceEvent],
        *,
        snapshot: SystemSnapshot,
        now_ms: float,
    ) -> HealthAssessment:
        scorer = HealthScorer(now_ms)

        avg_response = mean([r.response_time_ms for r in records])
        for limit, severity, penalty in RESPONSE_TIME_RULES:
            if avg_response > limit:
                label = "High" if severity == "high" else "Elevated"
                scorer.penalize(
                    "performance", severity, penalty,
                    f"{label} average response time: {avg_response:.0f}ms",
                )
                break

        error_rate = ratio(sum(1 for r in records if r.is_error), len(records))
        for limit, severity, penalty in ERROR_RATE_RULES:
            if error_rate > limit:
                label = "High" if severity == "high" else "Elevated"
                scorer.penalize(
                    "performance", severity, penalty,
                    f"{label} error rate: {error_rate * 100:.1f}%",
                )
                break

        memory_mb = snapshot.memory_usage_mb
        for limit, severity, penalty in MEMORY_MB_RULES:
            if memory_mb > limit:
                label = "High" if severity == "high" else "Elevated"
                scorer.penalize(
                    "memory", severity, penalty,
                    f"{label} memory usage: {memory_mb:.1f}MB",
                )
                break

        db_times = [r.db_query_time_ms for r in records if r.db_query_time_ms is not None]
        if db_times:
            avg_db = mean(db_times)
            if avg_db > DB_QUERY_TIME_LIMIT_MS:
                scorer.penalize(
                    "database", "high", DB_QUERY_PENALTY,
                    f"Slow database queries: {avg_db:.0f}ms average",
                )

        return scorer.result(HEALTH_LABELS)

    # ── Export ──────────────────────────────────────────────────────────

    def export_row(self, record: PerformanceEvent) -> list[Any]:
        return [
            iso_from_ms(record.timestamp),
            record.route,
            record.method,
            record.response_time_ms,
            record.status_code,
            record.user_id,
            record.memory_usage_mb,
            record.cpu_usage_percent,
            record.db_query_time_ms,
            record.cache_hit_rate,
        ]

    # ── Synthetic data ──────────────────────────────────────────────────

    def synthesize(self, rng: random.Random) -> dict[str, Any]:
        route = rng.choice(_SYNTHETIC_ROUTES)

        # AI endpoints are slowest, admin pages moderate
        if "/api/ai" in route:
            response_time = 1000 + rng.random() * 3000
        elif "/admin" in route:
            response_time = 200 + rng.random() * 800
        else:
            response_time = 50 + rng.random() * 500

        status_code = 200
        if rng.random() < 0.05:
            status_code = 404 if rng.random() < 0.7 else 500

        return {
            "route": route,
            "method": rng.choice(_SYNTHETIC_METHODS),
            "response_time_ms": round(response_time, 2),
            "status_code": status_code,
            "user_agent": rng.choice(_SYNTHETIC_USER_AGENTS),
            "user_id": f"user_{rng.randrange(1000)}" if rng.random() < 0.8 else None,
            "memory_usage_mb": round(100 + rng.random() * 400, 2),
            "cpu_usage_percent": round(rng.random() * 80, 2),
            "db_query_time_ms": round(10 + rng.random() * 200, 2) if rng.random() < 0.7 else None,
            "cache_hit_rate": round(0.7 + rng.random() * 0.3, 3) if rng.random() < 0.6 else None,
        }


class PerformanceAnalytics(WindowedAnalytics[PerformanceEvent]):
    """Ledger of HTTP request timings."""

    def __init__(
        self,
        strategy: PerformanceStrategy | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(strategy or PerformanceStrategy(), **kwargs)
