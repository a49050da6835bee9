"""
Tests for the managed-service clients — cache, database, email, cache warming.
"""

from __future__ import annotations

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest


class _Ticker:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis we call."""

    def __init__(self, fail: bool = False) -> None:
        self.values = {}
        self.sets = {}
        self.expiry = {}
        self.fail = fail
        self.closed = False

    def _check(self):
        from redis.exceptions import ConnectionError

        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        self.expiry[key] = ex

    async def sadd(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).update(members)

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    async def ttl(self, key):
        self._check()
        if key not in self.values and key not in self.sets:
            return -2
        return self.expiry.get(key) or -1

    async def expire(self, key, seconds):
        self._check()
        self.expiry[key] = seconds

    async def delete(self, *keys):
        self._check()
        for key in keys:
            self.values.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)

    async def aclose(self):
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════
# Memory Cache
# ═══════════════════════════════════════════════════════════════════════


class TestMemoryCache:
    def test_set_and_get(self):
        from services.cache import MemoryCache

        cache = MemoryCache()
        cache.set("a", {"x": 1}, ttl_seconds=60)
        assert cache.get("a") == {"x": 1}
        assert "a" in cache

    def test_expired_entry_is_a_miss(self):
        from services.cache import MemoryCache

        ticker = _Ticker()
        cache = MemoryCache(clock=ticker)
        cache.set("a", 1, ttl_seconds=30)

        ticker.now += 29
        assert cache.get("a") == 1
        ticker.now += 1
        assert cache.get("a") is None
        assert "a" not in cache

    def test_lru_eviction(self):
        from services.cache import MemoryCache

        cache = MemoryCache(max_size=2)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.get("a")  # a is now most recently used
        cache.set("c", 3, 60)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert cache.get_stats()["evictions"] == 1

    def test_overwrite_does_not_evict(self):
        from services.cache import MemoryCache

        cache = MemoryCache(max_size=2)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.set("a", 10, 60)

        assert len(cache) == 2
        assert cache.get("a") == 10
        assert cache.get_stats()["evictions"] == 0

    def test_delete_by_tags(self):
        from services.cache import MemoryCache

        cache = MemoryCache()
        cache.set("events", 1, 60, ("api",))
        cache.set("page", 2, 60, ("pages", "content"))
        cache.set("leaderboard", 3, 60, ("database",))

        assert cache.delete_by_tags(["api", "content"]) == 2
        assert len(cache) == 1
        assert "leaderboard" in cache

    def test_purge_expired(self):
        from services.cache import MemoryCache

        ticker = _Ticker()
        cache = MemoryCache(clock=ticker)
        cache.set("short", 1, 10)
        cache.set("long", 2, 100)
        ticker.now += 50

        assert cache.purge_expired() == 1
        assert "short" not in cache
        assert "long" in cache

    def test_hit_rate(self):
        from services.cache import MemoryCache

        cache = MemoryCache()
        cache.set("a", 1, 60)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)

    def test_rejects_zero_size(self):
        from services.cache import MemoryCache

        with pytest.raises(ValueError):
            MemoryCache(max_size=0)


class TestCacheStrategies:
    def test_known_strategies(self):
        from services.cache import get_strategy

        assert get_strategy("API_STANDARD").app_ttl == 180
        assert get_strategy("REALTIME").app_ttl == 30
        assert get_strategy("USER_PRIVATE").private is True
        assert get_strategy("DYNAMIC_CONTENT").tags == ("pages", "content")

    def test_unknown_strategy(self):
        from services.cache import get_strategy

        with pytest.raises(ValueError):
            get_strategy("FOREVER")


# ═══════════════════════════════════════════════════════════════════════
# Cache Store
# ═══════════════════════════════════════════════════════════════════════


class TestCacheStore:
    @pytest.mark.asyncio
    async def test_memory_only_round_trip(self):
        from services.cache import CacheStore

        cache = CacheStore()
        assert await cache.set("events:featured", [1, 2, 3]) is True
        assert await cache.get("events:featured") == [1, 2, 3]
        assert cache.get_stats()["backend"] == "memory"

    @pytest.mark.asyncio
    async def test_uncached_strategy_is_skipped(self):
        from services.cache import CacheStore

        cache = CacheStore()
        assert await cache.set("profile:1", {"name": "x"}, "USER_PRIVATE") is False
        assert await cache.get("profile:1") is None

    @pytest.mark.asyncio
    async def test_get_or_set_loads_once(self):
        from services.cache import CacheStore

        cache = CacheStore()
        calls = []

        async def loader():
            calls.append(1)
            return {"total": 42}

        assert await cache.get_or_set("stats", loader) == {"total": 42}
        assert await cache.get_or_set("stats", loader) == {"total": 42}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate_tags(self):
        from services.cache import CacheStore

        cache = CacheStore()
        await cache.set("a", 1, "API_STANDARD")
        await cache.set("b", 2, "DATABASE_QUERIES")

        assert await cache.invalidate_tags(["api"]) == 1
        assert await cache.get("a") is None
        assert await cache.get("b") == 2

    @pytest.mark.asyncio
    async def test_redis_envelope_and_ttl(self):
        from services.cache import CacheStore

        redis = _FakeRedis()
        cache = CacheStore(redis=redis)
        await cache.set("events", {"rows": []}, "API_STANDARD")

        raw = redis.values["platform:cache:events"]
        envelope = json.loads(raw)
        assert envelope["data"] == {"rows": []}
        assert envelope["strategy"] == "API_STANDARD"
        assert redis.expiry["platform:cache:events"] == 180
        assert redis.sets["platform:cache:tag:api"] == {"events"}
        assert cache.get_stats()["backend"] == "redis+memory"

    @pytest.mark.asyncio
    async def test_redis_read_preferred(self):
        from services.cache import CacheStore

        redis = _FakeRedis()
        cache = CacheStore(redis=redis)
        redis.values["platform:cache:k"] = json.dumps({"data": "from-redis"})

        assert await cache.get("k") == "from-redis"

    @pytest.mark.asyncio
    async def test_redis_invalidation_uses_tag_sets(self):
        from services.cache import CacheStore

        redis = _FakeRedis()
        cache = CacheStore(redis=redis)
        await cache.set("a", 1, "API_STANDARD")
        await cache.invalidate_tags(["api"])

        assert "platform:cache:a" not in redis.values
        assert "platform:cache:tag:api" not in redis.sets

    @pytest.mark.asyncio
    async def test_tag_sets_expire_with_their_members(self):
        from services.cache import CacheStore

        redis = _FakeRedis()
        cache = CacheStore(redis=redis)
        await cache.set("a", 1, "API_STANDARD")
        assert redis.expiry["platform:cache:tag:api"] == 180

        redis.expiry["platform:cache:tag:api"] = 60
        await cache.set("b", 2, "API_STANDARD")
        assert redis.expiry["platform:cache:tag:api"] == 180

        redis.expiry["platform:cache:tag:api"] = 900
        await cache.set("c", 3, "API_STANDARD")
        assert redis.expiry["platform:cache:tag:api"] == 900

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self):
        from services.cache import CacheStore

        redis = _FakeRedis(fail=True)
        cache = CacheStore(redis=redis)

        assert await cache.set("a", 1) is True
        assert await cache.get("a") == 1
        assert cache.get_stats()["redis_errors"] == 2

    @pytest.mark.asyncio
    async def test_aclose_closes_redis(self):
        from services.cache import CacheStore

        redis = _FakeRedis()
        await CacheStore(redis=redis).aclose()
        assert redis.closed is True


# ═══════════════════════════════════════════════════════════════════════
# Supabase Client
# ═══════════════════════════════════════════════════════════════════════


class TestFilterParams:
    def test_operators_and_values(self):
        from services.database import build_filter_params

        params = build_filter_params({
            "status": "live",
            "featured": True,
            "date": ("gte", "2024-01-01"),
            "id": ("in", [1, 2, 3]),
            "deleted_at": ("is", None),
        })
        assert params == [
            ("status", "eq.live"),
            ("featured", "eq.true"),
            ("date", "gte.2024-01-01"),
            ("id", "in.(1,2,3)"),
            ("deleted_at", "is.null"),
        ]

    def test_empty(self):
        from services.database import build_filter_params

        assert build_filter_params(None) == []


class TestSupabaseClient:
    @pytest.mark.asyncio
    async def test_select_builds_query(self, db, db_backend):
        db_backend.reply("GET", "/rest/v1/events", body=[{"id": 1}])

        rows = await db.select(
            "events",
            filters={"status": "live"},
            order="date",
            ascending=False,
            limit=5,
            offset=10,
        )

        assert rows == [{"id": 1}]
        request = db_backend.requests[0]
        assert request.url.host == "db.example.test"
        assert request.url.params["select"] == "*"
        assert request.url.params["status"] == "eq.live"
        assert request.url.params["order"] == "date.desc"
        assert request.url.params["limit"] == "5"
        assert request.url.params["offset"] == "10"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"

    @pytest.mark.asyncio
    async def test_count_reads_content_range(self, db, db_backend):
        db_backend.reply("HEAD", "/rest/v1/profiles", headers={"content-range": "0-24/137"})

        assert await db.count("profiles") == 137
        assert db_backend.requests[0].headers["Prefer"] == "count=exact"

    @pytest.mark.asyncio
    async def test_count_without_header_is_zero(self, db):
        assert await db.count("profiles") == 0

    @pytest.mark.asyncio
    async def test_http_error_raises_database_error(self, db, db_backend):
        from core.exceptions import DatabaseError

        db_backend.reply("GET", "/rest/v1/events", status=503, body={"message": "down"})

        with pytest.raises(DatabaseError) as exc_info:
            await db.select("events")
        assert exc_info.value.details["status_code"] == 503
        assert db.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_unfiltered_update_refused(self, db, db_backend):
        from core.exceptions import DatabaseError

        with pytest.raises(DatabaseError):
            await db.update("payments", {"status": "x"}, filters={})
        with pytest.raises(DatabaseError):
            await db.delete("payments", filters={})
        assert db_backend.requests == []

    @pytest.mark.asyncio
    async def test_unconfigured_client(self):
        from core.exceptions import ConfigurationError
        from services.database import SupabaseClient

        client = SupabaseClient(None, None)
        assert client.configured is False
        with pytest.raises(ConfigurationError):
            await client.select("events")

    @pytest.mark.asyncio
    async def test_insert_wraps_single_row(self, db, db_backend):
        await db.insert("logs", {"message": "hi"})

        request = db_backend.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == [{"message": "hi"}]
        assert request.headers["Prefer"] == "return=representation"


# ═══════════════════════════════════════════════════════════════════════
# Email Client
# ═══════════════════════════════════════════════════════════════════════


class TestEmailClient:
    @pytest.mark.asyncio
    async def test_send_success(self, email, email_backend):
        result = await email.send("user@example.com", "Hello", "<p>Hi</p>")

        assert result.success is True
        assert result.message_id == "email_123"
        payload = json.loads(email_backend.requests[0].content)
        assert payload["to"] == ["user@example.com"]
        assert payload["from"] == "Codeunia <connect@codeunia.com>"
        assert email.get_stats()["sent"] == 1

    @pytest.mark.asyncio
    async def test_http_error(self, email, email_backend):
        email_backend.default = (422, {"message": "invalid"}, None)

        result = await email.send("user@example.com", "Hello", "<p>Hi</p>")
        assert result.success is False
        assert result.error == "HTTP 422"
        assert email.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        from services.email import EmailClient

        result = await EmailClient(None).send("user@example.com", "Hello", "<p>Hi</p>")
        assert result.success is False
        assert result.error == "Email provider not configured"

    def test_confirmation_is_escaped(self):
        from services.email import render_payment_confirmation

        subject, body = render_payment_confirmation(
            payment_id="pay_1",
            amount_rupees=1234.5,
            description="<script>alert(1)</script>",
        )
        assert subject == "Payment confirmation - pay_1"
        assert "INR 1,234.50" in body
        assert "<script>" not in body
        assert "&lt;script&gt;" in body


# ═══════════════════════════════════════════════════════════════════════
# Cache Warmer
# ═══════════════════════════════════════════════════════════════════════


class TestCacheWarmer:
    @pytest.mark.asyncio
    async def test_warms_every_target(self, db, db_backend):
        from services.cache import CacheStore
        from services.cache_warmer import EVENT_FILTERS, HACKATHON_FILTERS, CacheWarmer

        db_backend.reply("HEAD", "/rest/v1/profiles", headers={"content-range": "*/12"})
        cache = CacheStore()
        result = await CacheWarmer(db, cache).warm()

        expected = len(EVENT_FILTERS) + len(HACKATHON_FILTERS) + 5
        assert result["success"] is True
        assert result["warmed_endpoints"] == expected
        assert result["errors"] == 0

        stats = await cache.get("stats:global")
        assert stats["total_users"] == 12
        assert await cache.get("featured_events:5") == []

    @pytest.mark.asyncio
    async def test_listing_key_and_filters(self, db, db_backend):
        from services.cache import CacheStore
        from services.cache_warmer import CacheWarmer

        db_backend.reply("GET", "/rest/v1/events", body=[{"id": 1}])
        db_backend.reply("HEAD", "/rest/v1/events", headers={"content-range": "0-0/30"})
        cache = CacheStore()
        await CacheWarmer(db, cache).warm()

        listing = await cache.get('events:{"limit": 10, "offset": 0}')
        assert listing == {"events": [{"id": 1}], "total": 30, "has_more": True}

        live = [r for r in db_backend.sent("GET", "/rest/v1/events")
                if r.url.params.get("status") == "eq.live"]
        assert len(live) == 1

    @pytest.mark.asyncio
    async def test_failing_target_does_not_stop_batch(self, db, db_backend):
        from services.cache import CacheStore
        from services.cache_warmer import CacheWarmer

        db_backend.reply("GET", "/rest/v1/user_points", status=500, body={"message": "x"})
        result = await CacheWarmer(db, CacheStore()).warm()

        assert result["errors"] == 1
        assert result["details"]["errors"][0].startswith("leaderboard:global:100")
        assert "stats:global" in result["details"]["warmed"]

    @pytest.mark.asyncio
    async def test_unconfigured_database(self):
        from services.cache import CacheStore
        from services.cache_warmer import CacheWarmer
        from services.database import SupabaseClient

        result = await CacheWarmer(SupabaseClient(None, None), CacheStore()).warm()
        assert result["success"] is True
        assert result["warmed_endpoints"] == 0
        assert result["errors"] == 21
