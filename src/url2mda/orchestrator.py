"""Concurrent fan-out of URL conversions.

:class:`ConversionOrchestrator` converts a list of URLs concurrently and
returns one :class:`~url2mda.core.models.ConversionResult` per URL, in input
order.  Each URL runs independently:

1. Caller rate-limit check, skipped for privileged callers.  A rejected URL
   short-circuits to a ``"Rate limit exceeded"`` result with status 429.
2. Route to a strategy and fetch, bounded by ``strategy_timeout_seconds``.
   Strategies that do not cache for themselves go through the shared
   cache-aside layer under ``<strategy>:<url>[-llm]``.
3. Optional LLM content filter on successful bodies.
4. Bodies starting with ``## Error`` become error results: 504 when they
   mention ``Timeout``, 500 otherwise.

Any exception raised while converting one URL is turned into an error
result for that URL; siblings are never affected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Sequence

import httpx

from url2mda.browser.handle import BrowserHandleManager
from url2mda.config.settings import Settings
from url2mda.core.cache import CacheAside, cache_key
from url2mda.core.exceptions import Url2MdaError
from url2mda.core.metrics import conversions_total
from url2mda.core.models import (
    ERROR_SENTINEL,
    RATE_LIMIT_SENTINEL,
    TIMEOUT_SIGNATURE,
    CallerIdentity,
    ConversionResult,
    ModeFlags,
    is_error_body,
)
from url2mda.core.rate_limiter import RateLimiter
from url2mda.extractors.base import ExtractionContext, ExtractionStrategy
from url2mda.extractors.router import ExtractionRouter
from url2mda.processing.llm_filter import ContentFilter

logger = logging.getLogger(__name__)


def classify(result: ConversionResult) -> ConversionResult:
    """Turn a body carrying the error sentinel into an error result."""
    if result.error or not is_error_body(result.md):
        return result
    status = 504 if TIMEOUT_SIGNATURE in result.md else 500
    return replace(result, error=True, status=status, error_details=result.md)


def _outcome(result: ConversionResult) -> str:
    if result.rate_limited:
        return "rate_limited"
    return "error" if result.error else "success"


class ConversionOrchestrator:
    """Runs per-URL conversions concurrently with per-item isolation.

    Args:
        router: Maps URLs to strategies.
        cache: Shared cache-aside layer.
        rate_limiter: Caller rate limiter.
        content_filter: LLM filter applied when ``apply_content_filter`` is set.
        handles: Shared browser handle passed to strategies.
        http_client: Shared HTTP client passed to strategies.
        settings: Application settings.
    """

    def __init__(
        self,
        router: ExtractionRouter,
        cache: CacheAside,
        rate_limiter: RateLimiter,
        content_filter: ContentFilter,
        handles: BrowserHandleManager,
        http_client: httpx.AsyncClient,
        settings: Settings,
    ) -> None:
        self.router = router
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.content_filter = content_filter
        self.handles = handles
        self.http_client = http_client
        self.settings = settings

    async def convert_many(
        self,
        urls: Sequence[str],
        flags: ModeFlags,
        caller: CallerIdentity,
    ) -> list[ConversionResult]:
        """Convert every URL concurrently; results keep the input order."""
        ctx = ExtractionContext(
            handles=self.handles,
            http_client=self.http_client,
            cache=self.cache,
            settings=self.settings,
            bypass_cache=flags.bypass_cache,
        )
        logger.info(
            "orchestrator: converting %d URLs (filter=%s, nocache=%s)",
            len(urls),
            flags.apply_content_filter,
            flags.bypass_cache,
        )
        results = await asyncio.gather(
            *(self._convert_isolated(url, flags, caller, ctx) for url in urls)
        )
        return list(results)

    async def convert_one(
        self,
        url: str,
        flags: ModeFlags,
        caller: CallerIdentity,
    ) -> ConversionResult:
        return (await self.convert_many([url], flags, caller))[0]

    async def _convert_isolated(
        self,
        url: str,
        flags: ModeFlags,
        caller: CallerIdentity,
        ctx: ExtractionContext,
    ) -> ConversionResult:
        strategy_name = "unrouted"
        try:
            if not caller.privileged and not await self.rate_limiter.check(caller.ip):
                logger.warning("orchestrator: rate limit exceeded for %s (caller %s)", url, caller.ip)
                result = ConversionResult.failure(url, RATE_LIMIT_SENTINEL, status=429)
            else:
                route = self.router.route(url)
                strategy_name = route.strategy.name
                if route.is_fallback:
                    logger.warning(
                        "orchestrator: could not determine page type for %s, using generic page",
                        url,
                    )
                result = await asyncio.wait_for(
                    self._extract(route.strategy, url, flags, ctx),
                    timeout=self.settings.strategy_timeout_seconds,
                )
        except asyncio.TimeoutError:
            logger.warning("orchestrator: %s timed out for %s", strategy_name, url)
            result = ConversionResult.failure(
                url,
                f"{ERROR_SENTINEL}: Timeout\n\nConversion did not finish within "
                f"{self.settings.strategy_timeout_seconds}s",
                status=504,
                error_details=f"{TIMEOUT_SIGNATURE}: {strategy_name} exceeded "
                f"{self.settings.strategy_timeout_seconds}s",
            )
        except Url2MdaError as exc:
            logger.warning("orchestrator: %s failed for %s: %s", strategy_name, url, exc)
            result = ConversionResult.failure(
                url, str(exc), status=exc.http_status, error_details=f"{type(exc).__name__}: {exc}"
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("orchestrator: unexpected error converting %s", url)
            result = ConversionResult.failure(
                url,
                "Failed to process page due to unexpected error",
                status=500,
                error_details=f"{type(exc).__name__}: {exc}",
            )

        conversions_total.labels(strategy=strategy_name, outcome=_outcome(result)).inc()
        return result

    async def _extract(
        self,
        strategy: ExtractionStrategy,
        url: str,
        flags: ModeFlags,
        ctx: ExtractionContext,
    ) -> ConversionResult:
        if strategy.self_caching:
            result = classify(await strategy.fetch(url, ctx))
            if not result.error and flags.apply_content_filter:
                result.md = await self.content_filter.apply(result.md)
            return result

        failures: list[ConversionResult] = []

        async def load() -> str:
            fetched = classify(await strategy.fetch(url, ctx))
            if fetched.error:
                failures.append(fetched)
                return fetched.md
            if flags.apply_content_filter:
                return await self.content_filter.apply(fetched.md)
            return fetched.md

        md = await self.cache.get_or_fetch(
            cache_key(strategy.name, url, filtered=flags.apply_content_filter),
            strategy.ttl,
            load,
            bypass=flags.bypass_cache,
            is_error=lambda _md: bool(failures),
        )
        if failures:
            return failures[0]
        return ConversionResult(url=url, md=md)
