"""
Cache — named TTL strategies over Redis with an in-process LRU mirror.

Values are always written to the in-memory LRU and, when ``REDIS_URL``
is configured, to Redis as JSON envelopes. Reads try Redis first and
fall back to memory. Redis failures are logged and never propagate.

Tags are tracked per key (Redis: one set per tag) so a whole class of
entries can be invalidated at once.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "platform:cache"


@dataclass(frozen=True)
class CacheStrategy:
    """TTL policy. ``app_ttl`` is in seconds; 0 disables app caching."""

    app_ttl: int
    tags: tuple[str, ...]
    browser_ttl: int = 0
    cdn_ttl: int = 0
    swr: int = 0
    private: bool = False


CACHE_STRATEGIES: dict[str, CacheStrategy] = {
    "STATIC_IMMUTABLE": CacheStrategy(
        app_ttl=0, tags=("static",), browser_ttl=31_536_000, cdn_ttl=31_536_000
    ),
    "DYNAMIC_CONTENT": CacheStrategy(
        app_ttl=300, tags=("pages", "content"), cdn_ttl=60, swr=300
    ),
    "API_STANDARD": CacheStrategy(app_ttl=180, tags=("api",), cdn_ttl=30, swr=120),
    "DATABASE_QUERIES": CacheStrategy(app_ttl=300, tags=("database",)),
    "USER_PRIVATE": CacheStrategy(app_ttl=0, tags=("private",), private=True),
    "REALTIME": CacheStrategy(app_ttl=30, tags=("realtime",), cdn_ttl=5, swr=60),
}


def get_strategy(name: str) -> CacheStrategy:
    try:
        return CACHE_STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown cache strategy '{name}'. Valid: {sorted(CACHE_STRATEGIES)}"
        ) from None


# ── Memory cache ────────────────────────────────────────────────────────


@dataclass
class _Entry:
    value: Any
    expires_at: float
    tags: tuple[str, ...]


class MemoryCache:
    """Bounded LRU with per-entry TTL, tags and hit/miss tracking."""

    def __init__(
        self,
        max_size: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float, tags: tuple[str, ...] = ()) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
            self._evictions += 1
        self._entries[key] = _Entry(value, self._clock() + ttl_seconds, tuple(tags))

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_by_tags(self, tags: tuple[str, ...] | list[str]) -> int:
        wanted = set(tags)
        doomed = [k for k, e in self._entries.items() if wanted.intersection(e.tags)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "evictions": self._evictions,
        }


# ── Cache store ─────────────────────────────────────────────────────────


class CacheStore:
    """Application cache: Redis when available, memory always.

    Usage::

        cache = CacheStore.from_settings()
        events = await cache.get_or_set("events:featured", load_events, "API_STANDARD")
        await cache.invalidate_tags(["api"])
    """

    def __init__(
        self,
        memory: MemoryCache | None = None,
        redis: Redis | None = None,
    ) -> None:
        self._memory = memory or MemoryCache()
        self._redis = redis
        self._redis_errors = 0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CacheStore":
        settings = settings or get_settings()
        redis = None
        if settings.REDIS_URL:
            redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
            logger.info("Cache: Redis backend configured")
        else:
            logger.info("Cache: Redis not configured, using memory cache only")
        return cls(MemoryCache(settings.CACHE_MAX_SIZE), redis)

    @property
    def memory(self) -> MemoryCache:
        return self._memory

    # ── Read / Write ────────────────────────────────────────────────────

    async def get(self, key: str) -> Any:
        """Cached value or ``None`` on a miss."""
        if self._redis is not None:
            try:
                raw = await self._redis.get(self._key(key))
            except (RedisError, OSError) as exc:
                self._redis_error("get", key, exc)
            else:
                if raw is not None:
                    try:
                        return json.loads(raw)["data"]
                    except (ValueError, KeyError, TypeError):
                        logger.warning("Cache: dropping unreadable Redis entry %s", key)
                        await self._redis_delete(key)
        return self._memory.get(key)

    async def set(self, key: str, value: Any, strategy: str = "API_STANDARD") -> bool:
        """Store ``value``. Returns False when the strategy disables app caching."""
        policy = get_strategy(strategy)
        if policy.app_ttl <= 0:
            return False

        if self._redis is not None:
            envelope = json.dumps(
                {"data": value, "strategy": strategy, "timestamp": time.time()},
                default=str,
            )
            try:
                await self._redis.set(self._key(key), envelope, ex=policy.app_ttl)
                for tag in policy.tags:
                    tag_key = self._tag_key(tag)
                    await self._redis.sadd(tag_key, key)
                    # A tag set lives as long as its longest-lived member.
                    if await self._redis.ttl(tag_key) < policy.app_ttl:
                        await self._redis.expire(tag_key, policy.app_ttl)
            except (RedisError, OSError) as exc:
                self._redis_error("set", key, exc)

        self._memory.set(key, value, policy.app_ttl, policy.tags)
        return True

    async def delete(self, key: str) -> None:
        await self._redis_delete(key)
        self._memory.delete(key)

    async def get_or_set(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        strategy: str = "API_STANDARD",
    ) -> Any:
        """Read-through: return the cached value or load, store and return it."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            await self.set(key, value, strategy)
        return value

    async def invalidate_tags(self, tags: list[str] | tuple[str, ...]) -> int:
        """Drop every entry carrying any of ``tags``. Returns memory entries removed."""
        removed = self._memory.delete_by_tags(tuple(tags))
        if self._redis is not None:
            try:
                for tag in tags:
                    keys = await self._redis.smembers(self._tag_key(tag))
                    if keys:
                        await self._redis.delete(*(self._key(k) for k in keys))
                    await self._redis.delete(self._tag_key(tag))
            except (RedisError, OSError) as exc:
                self._redis_error("invalidate", ",".join(tags), exc)
        logger.info("Cache: invalidated tags %s (%d memory entries)", list(tags), removed)
        return removed

    # ── Lifecycle & Stats ───────────────────────────────────────────────

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "redis+memory" if self._redis is not None else "memory",
            "memory": self._memory.get_stats(),
            "redis_errors": self._redis_errors,
        }

    # ── Private helpers ─────────────────────────────────────────────────

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    @staticmethod
    def _tag_key(tag: str) -> str:
        return f"{KEY_PREFIX}:tag:{tag}"

    async def _redis_delete(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._key(key))
        except (RedisError, OSError) as exc:
            self._redis_error("delete", key, exc)

    def _redis_error(self, operation: str, key: str, exc: Exception) -> None:
        self._redis_errors += 1
        logger.error("Cache: Redis %s failed for %s: %s", operation, key, exc)
