"""Generic page strategy: render with the shared browser, convert to markdown.

Fallback chain:

1. Full document body converted with markdownify (``content.body_to_markdown``).
2. trafilatura markdown extraction of the same HTML.
3. ``## <title>`` plus the page's raw ``innerText``, capped at
   ``max_content_length``.
4. A body starting with ``## Error`` that the orchestrator maps to HTTP
   500, or 504 when it mentions ``Timeout``.

The strategy does no caching of its own; the orchestrator wraps it with the
shared cache layer.
"""

from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from url2mda.core.models import ERROR_SENTINEL, ConversionResult
from url2mda.extractors.base import ExtractionContext, ExtractionStrategy
from url2mda.extractors.config import EXPAND_SCRIPT, GENERIC_TTL, INNER_TEXT_SCRIPT, SCROLL_SCRIPT
from url2mda.extractors.content import html_to_markdown

logger = logging.getLogger(__name__)


async def navigate(page: Page, url: str, nav_timeout_s: int, idle_timeout_s: int) -> None:
    """Load *url*: ``domcontentloaded`` then a best-effort network-idle wait.

    A failed first navigation is retried once waiting for ``load``; an error
    from the retry propagates.
    """
    try:
        await page.goto(url, wait_until="domcontentloaded", timeout=nav_timeout_s * 1000)
    except PlaywrightError as exc:
        logger.info("generic: initial navigation failed for %s (%s), retrying with load", url, exc)
        await page.goto(url, wait_until="load", timeout=nav_timeout_s * 1000)
        return
    try:
        await page.wait_for_load_state("networkidle", timeout=idle_timeout_s * 1000)
    except PlaywrightTimeoutError:
        logger.debug("generic: network idle wait timed out for %s", url)


class GenericPageStrategy(ExtractionStrategy):
    """Default strategy for any URL without a dedicated handler."""

    name = "Default"
    ttl = GENERIC_TTL

    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        settings = ctx.settings
        try:
            async with ctx.handles.page() as page:
                try:
                    await navigate(
                        page,
                        url,
                        settings.navigation_timeout_seconds,
                        settings.network_idle_timeout_seconds,
                    )
                except PlaywrightTimeoutError as exc:
                    logger.warning("generic: navigation timeout for %s", url)
                    return ConversionResult(
                        url=url,
                        md=f"{ERROR_SENTINEL}: Navigation Timeout\n\nTimeout while loading {url}: {exc}",
                    )
                return ConversionResult(url=url, md=await self._extract(page, url, settings.max_content_length))
        except PlaywrightError as exc:
            logger.warning("generic: browser error for %s: %s", url, exc)
            return ConversionResult(url=url, md=f"{ERROR_SENTINEL}\n\nFailed to load page: {exc}")

    async def _extract(self, page: Page, url: str, max_length: int) -> str:
        try:
            await page.evaluate(SCROLL_SCRIPT)
            expanded = await page.evaluate(EXPAND_SCRIPT)
            logger.debug("generic: expanded %s collapsible elements on %s", expanded, url)
        except PlaywrightError as exc:
            logger.info("generic: page preparation failed for %s: %s", url, exc)

        try:
            html = await page.content()
            markdown = html_to_markdown(html, url)
            if markdown:
                return markdown
            logger.info("generic: no structured content for %s, using innerText", url)
        except PlaywrightError as exc:
            logger.warning("generic: could not read page source for %s: %s", url, exc)

        try:
            return await page.evaluate(INNER_TEXT_SCRIPT, max_length)
        except PlaywrightError as exc:
            logger.error("generic: innerText fallback failed for %s: %s", url, exc)
            return f"{ERROR_SENTINEL}\n\nFailed to extract content: {exc}"
