"""Unit tests for the subpage crawl.

Tests cover:
- filter_links() keeps same-site http(s) links, drops fragments, the seed
  and duplicates, and honours the limit
- subpage_section() strips front matter and lifts the first H1 into the heading
- assemble_text() adds the related-subpages section only when a subpage succeeded
- crawl_status() is 429 when any result was rate limited
- CrawlAggregator.discover() degrades to no links when the seed cannot load
- CrawlAggregator.crawl() converts the seed first, then the links
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from url2mda.browser.handle import BrowserHandleManager
from url2mda.core.models import CallerIdentity, ConversionResult, ModeFlags
from url2mda.crawler import (
    SUBPAGES_HEADING,
    UNTITLED_SUBPAGE,
    CrawlAggregator,
    assemble_text,
    crawl_status,
    filter_links,
    subpage_section,
)
from url2mda.processing.annotate import annotate

from tests.fakes import FakeBackend, make_page, make_settings

SEED = "https://docs.example.com/guide"


class TestFilterLinks:
    def test_keeps_same_site_links_in_order(self) -> None:
        hrefs = [
            "https://docs.example.com/guide/install",
            "https://other.example.com/guide/x",
            "https://docs.example.com/blog",
            "mailto:someone@example.com",
            "https://docs.example.com/guide/usage#options",
            "https://docs.example.com/guide/install#top",
            "https://docs.example.com/guide/",
            "https://docs.example.com/guide#intro",
            None,
        ]

        assert filter_links(hrefs, SEED, 10) == [
            "https://docs.example.com/guide/install",
            "https://docs.example.com/guide/usage",
        ]

    def test_limit(self) -> None:
        hrefs = [f"{SEED}/page-{n}" for n in range(20)]

        assert filter_links(hrefs, SEED, 3) == [f"{SEED}/page-{n}" for n in range(3)]

    def test_seed_with_trailing_slash(self) -> None:
        assert filter_links(["https://a.test/", "https://a.test/x"], "https://a.test/", 10) == [
            "https://a.test/x"
        ]


class TestAssembly:
    def test_subpage_section_uses_first_heading(self) -> None:
        result = ConversionResult(
            url=f"{SEED}/install",
            md=annotate(f"{SEED}/install", "# Install\n\nRun the installer."),
        )

        section = subpage_section(result)

        assert section == f"### Install [URL]({SEED}/install)\n\nRun the installer."

    def test_subpage_section_without_heading(self) -> None:
        section = subpage_section(ConversionResult(url="https://a.test/x", md="just text"))

        assert section.startswith(f"### {UNTITLED_SUBPAGE} [URL](https://a.test/x)")

    def test_text_with_successful_subpage(self) -> None:
        results = [
            ConversionResult(url=SEED, md="# Guide\n\nMain"),
            ConversionResult(url=f"{SEED}/a", md="# A\n\nSub A"),
            ConversionResult.failure(f"{SEED}/b", "Rate limit exceeded", status=429),
        ]

        text = assemble_text(SEED, results)

        assert text.startswith("# Guide\n\nMain")
        assert SUBPAGES_HEADING in text
        assert f"### A [URL]({SEED}/a)" in text
        assert f"{SEED}/b" not in text

    def test_text_without_successful_subpages(self) -> None:
        results = [
            ConversionResult(url=SEED, md="# Guide\n\nMain"),
            ConversionResult.failure(f"{SEED}/b", "## Error\n\nFailed", status=500),
        ]

        assert assemble_text(SEED, results) == "# Guide\n\nMain"

    def test_crawl_status(self) -> None:
        ok = ConversionResult(url=SEED, md="# Guide")
        limited = ConversionResult.failure(f"{SEED}/b", "Rate limit exceeded", status=429)

        assert crawl_status([ok]) == 200
        assert crawl_status([ok, limited]) == 429


@pytest.mark.asyncio
class TestCrawlAggregator:
    def _aggregator(self, page: MagicMock) -> tuple[CrawlAggregator, MagicMock]:
        orchestrator = MagicMock()
        orchestrator.convert_many = AsyncMock(return_value=[])
        handles = BrowserHandleManager(FakeBackend(page))
        settings = make_settings(crawl_max_links=2)
        return CrawlAggregator(orchestrator, handles, settings), orchestrator

    async def test_discover_filters_links(self) -> None:
        page = make_page()
        page.evaluate = AsyncMock(
            return_value=[f"{SEED}/a", f"{SEED}/b", f"{SEED}/c", "https://elsewhere.test/"]
        )
        aggregator, _ = self._aggregator(page)

        assert await aggregator.discover(SEED) == [f"{SEED}/a", f"{SEED}/b"]
        page.close.assert_awaited_once()

    async def test_discover_returns_nothing_when_seed_fails(self) -> None:
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        aggregator, _ = self._aggregator(page)

        assert await aggregator.discover(SEED) == []

    async def test_crawl_converts_seed_first(self) -> None:
        page = make_page()
        page.evaluate = AsyncMock(return_value=[f"{SEED}/a"])
        aggregator, orchestrator = self._aggregator(page)
        flags = ModeFlags(crawl_linked=True)
        caller = CallerIdentity(ip="203.0.113.7")

        await aggregator.crawl(SEED, flags, caller)

        orchestrator.convert_many.assert_awaited_once_with([SEED, f"{SEED}/a"], flags, caller)
