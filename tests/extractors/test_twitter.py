"""Tests for the Twitter / X strategies.

Covers:
- tweet_id_from_url() / path_segments() helpers
- format_tweet() and format_profile() rendering
- TweetStrategy.fetch() with mocked HTTP (respx): success, caching of both
  the raw payload and the formatted body, nocache refetch
- Error mapping: 404 and empty payload -> 404, 429 -> 429, 5xx -> 502,
  timeout -> 504, URL without ID -> 400
- TwitterProfileStrategy.fetch() over a fake page: success, missing posts,
  navigation timeout

These tests run without a live browser or network connection.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from url2mda.core.cache import cache_key
from url2mda.extractors.base import ExtractionContext
from url2mda.extractors.config import TWEET_SYNDICATION_URL
from url2mda.extractors.twitter import (
    TweetStrategy,
    TwitterProfileStrategy,
    format_profile,
    format_tweet,
    path_segments,
    tweet_id_from_url,
)

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures" / "api_responses" / "twitter"

TWEET_URL = "https://x.com/jack/status/20"
PROFILE_URL = "https://x.com/jack"


def _load_tweet() -> dict[str, Any]:
    return json.loads((FIXTURES_DIR / "tweet_result.json").read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestUrlHelpers:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://x.com/jack/status/20", "20"),
            ("https://twitter.com/jack/status/20?s=46", "20"),
            ("https://x.com/jack", None),
            ("https://x.com/", None),
        ],
    )
    def test_tweet_id_from_url(self, url: str, expected: str | None) -> None:
        assert tweet_id_from_url(url) == expected

    def test_path_segments_ignore_query(self) -> None:
        assert path_segments("https://x.com/jack/?lang=en") == ["jack"]


class TestFormatting:
    def test_format_tweet(self) -> None:
        md = format_tweet(_load_tweet(), TWEET_URL)

        assert md.startswith("## Tweet from jack (@jack) (2006-03-21 20:50 UTC)")
        assert "just setting up my twttr" in md
        assert "![Image](https://pbs.twimg.com/media/example.jpg)" in md
        assert "**Stats:** Likes: 305000, Replies/Retweets: 21000" in md
        assert md.endswith(f"**Tweet URL:** {TWEET_URL}")

    def test_format_tweet_missing_user(self) -> None:
        md = format_tweet({"text": "hi"}, TWEET_URL)

        assert md.startswith("## Tweet from Unknown (unknown date)")

    def test_format_profile_without_posts(self) -> None:
        md = format_profile({"profileName": None, "bio": None, "posts": []}, "jack", PROFILE_URL)

        assert md.startswith("# jack (@jack)\n\nNo bio found.")
        assert "No tweets found or could not be extracted." in md


# ---------------------------------------------------------------------------
# TweetStrategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestTweetStrategy:
    async def test_success_caches_raw_and_formatted(self, ctx: ExtractionContext) -> None:
        with respx.mock() as mock:
            route = mock.get(TWEET_SYNDICATION_URL).mock(
                return_value=httpx.Response(200, json=_load_tweet())
            )
            first = await TweetStrategy().fetch(TWEET_URL, ctx)
            second = await TweetStrategy().fetch(TWEET_URL, ctx)

        assert first.error is False
        assert first.md == second.md
        assert route.call_count == 1
        assert route.calls.last.request.url.params["id"] == "20"
        assert await ctx.cache.get(cache_key("TwitterTweet", "20")) == first.md
        assert json.loads(await ctx.cache.get(cache_key("Twitter", "20:raw")))["id_str"] == "20"

    async def test_nocache_refetches(self, ctx: ExtractionContext) -> None:
        ctx.bypass_cache = True
        with respx.mock() as mock:
            route = mock.get(TWEET_SYNDICATION_URL).mock(
                return_value=httpx.Response(200, json=_load_tweet())
            )
            await TweetStrategy().fetch(TWEET_URL, ctx)
            await TweetStrategy().fetch(TWEET_URL, ctx)

        assert route.call_count == 2

    @pytest.mark.parametrize(
        ("response", "status"),
        [
            (httpx.Response(404), 404),
            (httpx.Response(200, json={"__typename": "TweetTombstone"}), 404),
            (httpx.Response(429, headers={"Retry-After": "30"}), 429),
            (httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}), 429),
            (httpx.Response(503), 502),
            (httpx.Response(200, text="<html>"), 502),
        ],
    )
    async def test_error_mapping(
        self, ctx: ExtractionContext, response: httpx.Response, status: int
    ) -> None:
        with respx.mock() as mock:
            mock.get(TWEET_SYNDICATION_URL).mock(return_value=response)
            result = await TweetStrategy().fetch(TWEET_URL, ctx)

        assert result.error is True
        assert result.status == status
        assert await ctx.cache.get(cache_key("TwitterTweet", "20")) is None

    async def test_timeout_maps_to_504(self, ctx: ExtractionContext) -> None:
        with respx.mock() as mock:
            mock.get(TWEET_SYNDICATION_URL).mock(side_effect=httpx.ReadTimeout("slow"))
            result = await TweetStrategy().fetch(TWEET_URL, ctx)

        assert result.status == 504
        assert "Timeout" in result.md

    async def test_url_without_id(self, ctx: ExtractionContext) -> None:
        result = await TweetStrategy().fetch(PROFILE_URL, ctx)

        assert result.status == 400


# ---------------------------------------------------------------------------
# TwitterProfileStrategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestTwitterProfileStrategy:
    async def test_scrapes_profile(self, ctx: ExtractionContext, fake_page: MagicMock) -> None:
        fake_page.evaluate = AsyncMock(
            return_value={
                "profileName": "jack",
                "bio": "no state is the best state",
                "posts": ["first post text", "second post text"],
            }
        )

        result = await TwitterProfileStrategy().fetch(PROFILE_URL, ctx)

        assert result.error is False
        assert result.md.startswith("# jack (@jack)\n\nno state is the best state")
        assert "### Tweet 1\nfirst post text" in result.md
        assert result.md.endswith(f"Profile URL: {PROFILE_URL}")
        assert fake_page.evaluate.await_args.args[1] == ["jack", 10, 10]
        fake_page.close.assert_awaited_once()
        assert await ctx.cache.get(cache_key("TwitterProfile", PROFILE_URL)) == result.md

    async def test_missing_articles_still_extracts(
        self, ctx: ExtractionContext, fake_page: MagicMock
    ) -> None:
        fake_page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms"))
        fake_page.evaluate = AsyncMock(return_value={"profileName": "jack", "bio": "", "posts": []})

        result = await TwitterProfileStrategy().fetch(PROFILE_URL, ctx)

        assert result.error is False
        assert "No tweets found" in result.md

    async def test_navigation_timeout(self, ctx: ExtractionContext, fake_page: MagicMock) -> None:
        fake_page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 60000ms exceeded"))

        result = await TwitterProfileStrategy().fetch(PROFILE_URL, ctx)

        assert result.error is True
        assert result.status == 504
        fake_page.close.assert_awaited_once()
