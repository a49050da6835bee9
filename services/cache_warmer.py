"""
CacheWarmer — prime the application cache with the hottest read queries.

Each target is loaded from the database and written to the cache on its
own; a failing target is recorded in ``errors`` and the batch continues.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from core.exceptions import PlatformError
from services.cache import CacheStore
from services.database import SupabaseClient

logger = logging.getLogger(__name__)

EVENT_FILTERS: list[dict[str, Any]] = [
    {"limit": 10, "offset": 0},
    {"limit": 20, "offset": 0},
    {"status": "live", "limit": 10},
    {"featured": True, "limit": 5},
    {"date_filter": "upcoming", "limit": 10},
    {"category": "workshop", "limit": 10},
    {"category": "competition", "limit": 10},
    {"category": "seminar", "limit": 10},
]

HACKATHON_FILTERS: list[dict[str, Any]] = [
    {"limit": 10, "offset": 0},
    {"limit": 20, "offset": 0},
    {"status": "live", "limit": 10},
    {"featured": True, "limit": 5},
    {"date_filter": "upcoming", "limit": 10},
    {"category": "web-development", "limit": 10},
    {"category": "mobile-development", "limit": 10},
    {"category": "ai-ml", "limit": 10},
]

Loader = Callable[[], Awaitable[Any]]


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class CacheWarmer:
    """Runs one warming pass over the listing, featured, leaderboard and stats queries."""

    def __init__(self, db: SupabaseClient, cache: CacheStore) -> None:
        self._db = db
        self._cache = cache

    async def warm(self) -> dict[str, Any]:
        logger.info("Starting cache warming process...")
        warmed: list[str] = []
        errors: list[str] = []

        for key, strategy, loader in self._targets():
            try:
                value = await loader()
                await self._cache.set(key, value, strategy)
            except PlatformError as exc:
                errors.append(f"{key}: {exc.message}")
                logger.warning("Cache warming failed for %s: %s", key, exc.message)
                continue
            warmed.append(key)

        logger.info(
            "Cache warming completed: %d warmed, %d errors", len(warmed), len(errors)
        )
        return {
            "success": True,
            "warmed_endpoints": len(warmed),
            "errors": len(errors),
            "details": {"warmed": warmed, "errors": errors},
        }

    # ── Targets ─────────────────────────────────────────────────────────

    def _targets(self) -> list[tuple[str, str, Loader]]:
        targets: list[tuple[str, str, Loader]] = []
        for filters in EVENT_FILTERS:
            targets.append((
                f"events:{json.dumps(filters, sort_keys=True)}",
                "API_STANDARD",
                self._listing_loader("events", filters),
            ))
        for filters in HACKATHON_FILTERS:
            targets.append((
                f"hackathons:{json.dumps(filters, sort_keys=True)}",
                "API_STANDARD",
                self._listing_loader("hackathons", filters),
            ))
        targets.extend([
            ("featured_events:5", "DATABASE_QUERIES", lambda: self._featured("events")),
            ("featured_hackathons:5", "DATABASE_QUERIES", lambda: self._featured("hackathons")),
            ("leaderboard:global:100", "DATABASE_QUERIES", self._global_leaderboard),
            ("leaderboard:monthly:50", "DATABASE_QUERIES", self._monthly_leaderboard),
            ("stats:global", "DATABASE_QUERIES", self._global_stats),
        ])
        return targets

    def _listing_loader(self, table: str, filters: dict[str, Any]) -> Loader:
        async def load() -> dict[str, Any]:
            conditions: dict[str, Any] = {}
            for column in ("category", "status", "featured"):
                if column in filters:
                    conditions[column] = filters[column]
            if filters.get("date_filter") == "upcoming":
                conditions["date"] = ("gte", _today())

            limit = filters.get("limit", 10)
            offset = filters.get("offset", 0)
            rows = await self._db.select(
                table, filters=conditions, limit=limit, offset=offset
            )
            total = await self._db.count(table, filters=conditions)
            return {table: rows, "total": total, "has_more": total > offset + limit}

        return load

    async def _featured(self, table: str) -> list[dict[str, Any]]:
        return await self._db.select(
            table,
            filters={"featured": True, "date": ("gte", _today())},
            order="date",
            limit=5,
        )

    async def _global_leaderboard(self) -> list[dict[str, Any]]:
        return await self._db.select(
            "user_points",
            columns="user_id,total_points,profiles!inner(first_name,last_name,username)",
            order="total_points",
            ascending=False,
            limit=100,
        )

    async def _monthly_leaderboard(self) -> list[dict[str, Any]]:
        start_of_month = datetime.now(timezone.utc).replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        )
        return await self._db.select(
            "user_activity_logs",
            columns="user_id,points_earned,profiles!inner(first_name,last_name,username)",
            filters={"timestamp": ("gte", start_of_month.isoformat())},
            order="points_earned",
            ascending=False,
            limit=50,
        )

    async def _global_stats(self) -> dict[str, Any]:
        thirty_days_ago = datetime.now(timezone.utc) - timedelta(days=30)
        return {
            "total_users": await self._db.count("profiles"),
            "active_users": await self._db.count(
                "profiles", filters={"updated_at": ("gte", thirty_days_ago.isoformat())}
            ),
            "total_events": await self._db.count("events"),
            "total_hackathons": await self._db.count("hackathons"),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
