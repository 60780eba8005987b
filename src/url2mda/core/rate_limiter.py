"""Sliding window rate limiter for inbound callers.

Implements the sliding window algorithm using Redis sorted sets (ZADD /
ZREMRANGEBYSCORE / ZCARD).  A Lua script performs the check-and-acquire
atomically so that several service workers sharing one Redis instance see a
single consistent view of each caller's window.

Typical usage::

    limiter = RedisRateLimiter(redis_client, RateLimitConfig(requests=30, window_seconds=60))
    if not await limiter.check(caller_ip):
        return ConversionResult.failure(url, RATE_LIMIT_SENTINEL, status=429)

Both implementations fail open: a limiter that cannot reach its backing store
allows the request rather than rejecting it.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Protocol

import redis.asyncio as aioredis
from redis.exceptions import NoScriptError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Budget applied to every caller key.

    Attributes:
        requests: Maximum requests allowed within the window.
        window_seconds: Length of the sliding window in seconds.
    """

    requests: int = 30
    window_seconds: int = 60


class RateLimiter(Protocol):
    """The single operation the orchestrator needs from a rate limiter."""

    async def check(self, key: str) -> bool: ...


# ---------------------------------------------------------------------------
# Lua scripts
# ---------------------------------------------------------------------------

# Atomic sliding-window check-and-acquire.
#
# KEYS[1]  sorted-set key for the caller
# ARGV[1]  current timestamp (float string)
# ARGV[2]  window size in seconds
# ARGV[3]  maximum requests allowed in the window
# ARGV[4]  unique member ID for this request
# ARGV[5]  TTL for the key (seconds, slightly > window)
#
# Returns 1 if the slot was acquired, 0 if rate-limited.
_LUA_CHECK_AND_ACQUIRE = """
local key        = KEYS[1]
local now        = tonumber(ARGV[1])
local window     = tonumber(ARGV[2])
local limit      = tonumber(ARGV[3])
local member     = ARGV[4]
local ttl        = tonumber(ARGV[5])
local cutoff     = now - window

redis.call('ZREMRANGEBYSCORE', key, '-inf', cutoff)
local count = redis.call('ZCARD', key)
if count < limit then
    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    return 1
end
return 0
"""


# ---------------------------------------------------------------------------
# RedisRateLimiter
# ---------------------------------------------------------------------------


@dataclass
class RedisRateLimiter:
    """Redis-based sliding window limiter keyed by caller identity.

    Uses Redis sorted sets keyed as::

        ratelimit:caller:{key}

    Attributes:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        config: Budget applied to every key.
    """

    redis_client: aioredis.Redis
    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    _sha_acquire: str = field(default="", init=False, repr=False)

    def _key(self, key: str) -> str:
        return f"ratelimit:caller:{key}"

    async def _ensure_scripts_loaded(self) -> None:
        """Upload the Lua script to Redis and cache its SHA1 hash.

        Called lazily on the first check so that the Redis connection is not
        required at construction time.
        """
        if self._sha_acquire:
            return
        try:
            self._sha_acquire = await self.redis_client.script_load(_LUA_CHECK_AND_ACQUIRE)
        except Exception:
            logger.exception("Failed to load Lua scripts into Redis")
            raise

    async def _acquire(self, key: str) -> int:
        window = self.config.window_seconds
        ttl = window + 10  # slight buffer so Redis keeps the key alive
        return await self.redis_client.evalsha(  # type: ignore[attr-defined,no-any-return]
            self._sha_acquire,
            1,
            self._key(key),
            str(time.time()),
            str(window),
            str(self.config.requests),
            str(uuid.uuid4()),
            str(ttl),
        )

    async def check(self, key: str) -> bool:
        """Record one request for *key* and report whether it is allowed.

        Args:
            key: Caller identity (client IP or ``"no-ip"``).

        Returns:
            ``True`` if the slot was acquired, ``False`` if rate-limited.
        """
        try:
            await self._ensure_scripts_loaded()
        except Exception:
            logger.warning(
                "Redis unavailable in check(); allowing request without rate limiting",
                extra={"key": key},
            )
            return True

        try:
            try:
                result = await self._acquire(key)
            except NoScriptError:
                # Script cache was flushed (Redis restart or SCRIPT FLUSH).
                logger.warning("rate limiter script missing from Redis; reloading")
                self._sha_acquire = ""
                await self._ensure_scripts_loaded()
                result = await self._acquire(key)
        except Exception:
            logger.exception("Redis error in check(); allowing request", extra={"key": key})
            return True
        allowed = bool(result)
        if not allowed:
            logger.info("rate limit reached for caller %s", key)
        return allowed


# ---------------------------------------------------------------------------
# MemoryRateLimiter
# ---------------------------------------------------------------------------


class MemoryRateLimiter:
    """Per-process sliding window limiter used when no Redis is configured."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}

    async def check(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.config.window_seconds
        window = self._windows.setdefault(key, deque())
        while window and window[0] <= cutoff:
            window.popleft()
        if len(window) >= self.config.requests:
            logger.info("rate limit reached for caller %s", key)
            return False
        window.append(now)
        return True
