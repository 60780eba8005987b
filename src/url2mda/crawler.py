"""Subpage crawl for ``subpages=true``.

Loads the seed page once to collect same-site links, converts the seed plus
up to ``crawl_max_links`` of those links through the orchestrator, then
assembles either the per-URL JSON records or one combined text document
with a ``## Related Subpages`` section.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from playwright.async_api import Error as PlaywrightError

from url2mda.browser.handle import BrowserHandleManager
from url2mda.config.settings import Settings
from url2mda.core.models import CallerIdentity, ConversionResult, ModeFlags
from url2mda.extractors.config import LINKS_SCRIPT
from url2mda.extractors.generic import navigate
from url2mda.orchestrator import ConversionOrchestrator
from url2mda.processing.annotate import split_frontmatter

logger = logging.getLogger(__name__)

SUBPAGES_HEADING = "## Related Subpages"
UNTITLED_SUBPAGE = "Untitled Subpage"

_TITLE_RE = re.compile(r"^# (.+)$", re.MULTILINE)


def filter_links(hrefs: Iterable[object], seed: str, limit: int) -> list[str]:
    """Keep http(s) links under *seed*, deduplicated, in page order.

    The seed itself (with or without a trailing slash) is excluded and
    fragments are dropped before comparison.
    """
    base = seed if seed.endswith("/") else seed + "/"
    excluded = {seed, base, seed.rstrip("/")}
    links: list[str] = []
    for href in hrefs:
        if not isinstance(href, str) or not href.startswith(("http://", "https://")):
            continue
        href = href.split("#", 1)[0]
        if href in excluded or href in links or not href.startswith(base):
            continue
        links.append(href)
        if len(links) >= limit:
            break
    return links


def subpage_section(result: ConversionResult) -> str:
    """Render one successful, annotated subpage as a related-subpage entry."""
    _, content = split_frontmatter(result.md)
    match = _TITLE_RE.search(content)
    if match:
        title = match.group(1).strip()
        content = content[: match.start()] + content[match.end():]
    else:
        title = UNTITLED_SUBPAGE
    return f"### {title} [URL]({result.url})\n\n{content.strip()}"


def assemble_text(seed: str, results: list[ConversionResult]) -> str:
    """Combine the seed document with every successful subpage.

    The related-subpages section is only emitted when at least one subpage
    succeeded.
    """
    if not results:
        return ""
    main = next((r for r in results if r.url == seed), results[0])
    sections = [subpage_section(r) for r in results if r is not main and not r.error]
    if not sections:
        return main.md
    return main.md + f"\n\n{SUBPAGES_HEADING}\n\n" + "\n\n".join(sections)


def crawl_status(results: list[ConversionResult]) -> int:
    return 429 if any(r.rate_limited for r in results) else 200


class CrawlAggregator:
    """Discovers same-site links and converts them alongside the seed.

    Args:
        orchestrator: Used to convert the seed and the discovered links.
        handles: Shared browser handle used for link discovery.
        settings: Supplies timeouts and ``crawl_max_links``.
    """

    def __init__(
        self,
        orchestrator: ConversionOrchestrator,
        handles: BrowserHandleManager,
        settings: Settings,
    ) -> None:
        self.orchestrator = orchestrator
        self.handles = handles
        self.settings = settings

    async def discover(self, seed: str) -> list[str]:
        """Return same-site links found on *seed*; an empty list if it cannot load."""
        try:
            async with self.handles.page() as page:
                await navigate(
                    page,
                    seed,
                    self.settings.navigation_timeout_seconds,
                    self.settings.network_idle_timeout_seconds,
                )
                hrefs = await page.evaluate(LINKS_SCRIPT)
        except PlaywrightError as exc:
            logger.warning("crawler: link discovery failed for %s: %s", seed, exc)
            return []
        links = filter_links(hrefs or [], seed, self.settings.crawl_max_links)
        logger.info("crawler: found %d subpage links on %s", len(links), seed)
        return links

    async def crawl(
        self,
        seed: str,
        flags: ModeFlags,
        caller: CallerIdentity,
    ) -> list[ConversionResult]:
        """Convert *seed* and its discovered links; the seed is always first."""
        links = await self.discover(seed)
        return await self.orchestrator.convert_many([seed, *links], flags, caller)
