"""Service container and request-scoped dependencies.

The container owns every long-lived collaborator (HTTP client, Redis
connection, browser handle, lifecycle controller, orchestrator).  It is
built once in the application lifespan and stored on ``app.state``; route
handlers resolve it through :func:`get_container`.  Tests build a container
from fakes with :meth:`ServiceContainer.assemble` and pass it to
``create_app()``.

Caller identity::

    client_key(request)     first X-Forwarded-For entry, else peer host, else "no-ip"
    is_privileged(request)  Authorization: Bearer <BACKEND_SECURITY_TOKEN>
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as aioredis
from fastapi import Request

from url2mda.browser.handle import BrowserHandleManager, PlaywrightBackend, RenderingBackend
from url2mda.browser.lifecycle import (
    AsyncioWakeTimer,
    IdleLifecycleController,
    IdleStateStore,
    InMemoryIdleStateStore,
    RedisIdleStateStore,
)
from url2mda.config.settings import Settings
from url2mda.core.cache import CacheAside, KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from url2mda.core.models import CallerIdentity, ModeFlags
from url2mda.core.rate_limiter import (
    MemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimiter,
)
from url2mda.crawler import CrawlAggregator
from url2mda.extractors.config import API_TIMEOUT
from url2mda.extractors.router import ExtractionRouter
from url2mda.orchestrator import ConversionOrchestrator
from url2mda.processing.llm_filter import ContentFilter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass
class ServiceContainer:
    """Long-lived collaborators shared by every request."""

    settings: Settings
    http_client: httpx.AsyncClient
    cache: CacheAside
    rate_limiter: RateLimiter
    backend: RenderingBackend
    handles: BrowserHandleManager
    lifecycle: IdleLifecycleController
    orchestrator: ConversionOrchestrator
    crawler: CrawlAggregator
    redis: Optional[aioredis.Redis] = None

    @classmethod
    def assemble(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient,
        store: KeyValueStore,
        rate_limiter: RateLimiter,
        backend: RenderingBackend,
        idle_store: IdleStateStore,
        router: ExtractionRouter | None = None,
        redis_client: aioredis.Redis | None = None,
    ) -> ServiceContainer:
        """Wire the orchestrator and its collaborators from the given adapters."""
        cache = CacheAside(store)
        handles = BrowserHandleManager(backend, retries=settings.browser_launch_retries)
        lifecycle = IdleLifecycleController(
            handles,
            idle_store,
            keep_alive_seconds=settings.keep_browser_alive_seconds,
            tick_seconds=settings.idle_tick_seconds,
        )
        content_filter = ContentFilter(
            http_client,
            api_url=settings.llm_api_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
        )
        orchestrator = ConversionOrchestrator(
            router=router or ExtractionRouter(),
            cache=cache,
            rate_limiter=rate_limiter,
            content_filter=content_filter,
            handles=handles,
            http_client=http_client,
            settings=settings,
        )
        return cls(
            settings=settings,
            http_client=http_client,
            cache=cache,
            rate_limiter=rate_limiter,
            backend=backend,
            handles=handles,
            lifecycle=lifecycle,
            orchestrator=orchestrator,
            crawler=CrawlAggregator(orchestrator, handles, settings),
            redis=redis_client,
        )

    async def aclose(self) -> None:
        """Close the browser, the backend driver and all network clients."""
        await self.lifecycle.shutdown()
        shutdown = getattr(self.backend, "shutdown", None)
        if shutdown is not None:
            try:
                await shutdown()
            except Exception:  # noqa: BLE001
                logger.warning("container: rendering backend shutdown failed", exc_info=True)
        await self.http_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()


def build_container(settings: Settings) -> ServiceContainer:
    """Build the production container.

    With ``REDIS_URL`` set the cache, rate limiter and idle state share one
    Redis connection; otherwise in-process implementations are used.
    """
    http_client = httpx.AsyncClient(timeout=API_TIMEOUT, follow_redirects=True)
    limits = RateLimitConfig(
        requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    redis_client: aioredis.Redis | None = None
    store: KeyValueStore
    rate_limiter: RateLimiter
    idle_store: IdleStateStore
    if settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
        store = RedisKeyValueStore(redis_client)
        rate_limiter = RedisRateLimiter(redis_client, limits)
        idle_store = RedisIdleStateStore(redis_client, AsyncioWakeTimer())
    else:
        logger.warning("container: REDIS_URL not set, using in-process cache and rate limiter")
        store = MemoryKeyValueStore()
        rate_limiter = MemoryRateLimiter(limits)
        idle_store = InMemoryIdleStateStore(AsyncioWakeTimer())

    return ServiceContainer.assemble(
        settings,
        http_client=http_client,
        store=store,
        rate_limiter=rate_limiter,
        backend=PlaywrightBackend(settings.browser_cdp_url, http_client),
        idle_store=idle_store,
        redis_client=redis_client,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container stored on ``app.state``."""
    return request.app.state.container  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def client_key(request: Request) -> str:
    """Return the rate-limit key for the calling client."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",", 1)[0].strip()
    if first:
        return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "no-ip"


def is_privileged(request: Request, token: str) -> bool:
    """Return ``True`` when the bearer token matches *token*.

    An empty configured token never matches.
    """
    if not token:
        return False
    scheme, _, credential = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not credential:
        return False
    return secrets.compare_digest(credential.strip().encode(), token.encode())


def caller_identity(request: Request, settings: Settings) -> CallerIdentity:
    return CallerIdentity(
        ip=client_key(request),
        privileged=is_privileged(request, settings.backend_security_token),
    )


def _flag(request: Request, name: str) -> bool:
    return request.query_params.get(name) == "true"


def mode_flags(request: Request) -> ModeFlags:
    """Parse ``nocache``, ``llmFilter`` and ``subpages``; only ``"true"`` enables a flag."""
    return ModeFlags(
        bypass_cache=_flag(request, "nocache"),
        apply_content_filter=_flag(request, "llmFilter"),
        crawl_linked=_flag(request, "subpages"),
    )


def wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("Content-Type", "")
