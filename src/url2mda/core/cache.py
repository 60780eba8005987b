"""Markdown cache: key-value store adapters and the cache-aside helper.

Keys follow ``{strategy}:{identifier}{suffix}`` where the suffix marks
variants of the same identifier (``-llm`` for content that went through the
LLM filter).  Values are raw extracted markdown, never the annotated
document: front-matter IDs and timestamps are regenerated on every request.

Typical usage::

    cache = CacheAside(RedisKeyValueStore(redis_client))
    md = await cache.get_or_fetch(
        cache_key("Default", url, filtered=True),
        ttl=3600,
        fetch=lambda: strategy_fetch(url),
        bypass=flags.bypass_cache,
        is_error=is_error_body,
    )
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Protocol

import redis.asyncio as aioredis

from url2mda.core.metrics import cache_lookups_total

logger = logging.getLogger(__name__)

#: Key suffix for entries holding LLM-filtered content.
FILTERED_SUFFIX: str = "-llm"


def cache_key(strategy: str, identifier: str, filtered: bool = False) -> str:
    """Build a cache key for *identifier* as produced by *strategy*."""
    return f"{strategy}:{identifier}{FILTERED_SUFFIX if filtered else ''}"


def _never(_value: str) -> bool:
    return False


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal TTL key-value interface the cache needs."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    """:class:`KeyValueStore` backed by ``redis.asyncio``.

    Args:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        namespace: Prefix prepended to every key.
    """

    def __init__(self, redis_client: aioredis.Redis, namespace: str = "url2mda:cache:") -> None:
        self._redis = redis_client
        self._namespace = namespace

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(self._namespace + key)
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def put(self, key: str, value: str, ttl: int) -> None:
        await self._redis.set(self._namespace + key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._namespace + key)


class MemoryKeyValueStore:
    """In-process :class:`KeyValueStore` with lazy TTL expiry.

    Used when no ``REDIS_URL`` is configured.  Entries are not shared between
    worker processes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


# ---------------------------------------------------------------------------
# Cache-aside
# ---------------------------------------------------------------------------


class CacheAside:
    """Read-through cache wrapper around a :class:`KeyValueStore`.

    Store failures are logged and treated as misses so a Redis outage
    degrades to uncached operation instead of failing conversions.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def get(self, key: str) -> str | None:
        try:
            return await self.store.get(key)
        except Exception:  # noqa: BLE001
            logger.warning("cache: read failed for %s", key, exc_info=True)
            return None

    async def put(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.store.put(key, value, ttl)
        except Exception:  # noqa: BLE001
            logger.warning("cache: write failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception:  # noqa: BLE001
            logger.warning("cache: delete failed for %s", key, exc_info=True)

    async def get_or_fetch(
        self,
        key: str,
        ttl: int,
        fetch: Callable[[], Awaitable[str]],
        *,
        bypass: bool = False,
        is_error: Callable[[str], bool] = _never,
    ) -> str:
        """Return the cached value for *key* or compute, store and return it.

        With ``bypass`` the existing entry is deleted before ``fetch`` runs, so
        a concurrent reader cannot pick up the stale value afterwards.  Values
        for which ``is_error`` returns ``True`` are returned but never stored.

        Args:
            key: Cache key (see :func:`cache_key`).
            ttl: Expiry in seconds for a freshly stored value.
            fetch: Zero-argument coroutine factory producing the value.
            bypass: Skip the read and drop the existing entry.
            is_error: Predicate identifying error values.

        Returns:
            The cached or freshly fetched value.
        """
        strategy = key.split(":", 1)[0]
        if bypass:
            cache_lookups_total.labels(strategy=strategy, result="bypass").inc()
            logger.debug("cache: bypass requested, deleting %s", key)
            await self.delete(key)
        else:
            cached = await self.get(key)
            if cached is not None:
                cache_lookups_total.labels(strategy=strategy, result="hit").inc()
                return cached
            cache_lookups_total.labels(strategy=strategy, result="miss").inc()

        value = await fetch()
        if not is_error(value):
            await self.put(key, value, ttl)
        return value
