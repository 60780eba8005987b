"""Tests for the Reddit subreddit strategy.

Covers:
- format_listing() rendering, including external links and empty listings
- public API success with caching; short listings are not cached
- public rate limit (HTTP 429 or an exhausted x-ratelimit-remaining header)
  without OAuth credentials -> 429 result
- OAuth fallback: token request, token caching, a single refresh on 401
- a second 401 after the refresh -> 502 result
- non-subreddit URL -> 400

These tests run without a network connection; HTTP is mocked with respx.
"""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx

from url2mda.core.cache import cache_key
from url2mda.extractors.base import ExtractionContext
from url2mda.extractors.config import REDDIT_OAUTH_URL, REDDIT_PUBLIC_URL, REDDIT_TOKEN_URL
from url2mda.extractors.reddit import TOKEN_CACHE_KEY, RedditStrategy, format_listing

from tests.fakes import make_settings

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures" / "api_responses" / "reddit"

URL = "https://www.reddit.com/r/python"
PUBLIC_API = REDDIT_PUBLIC_URL.format(subreddit="python")
OAUTH_API = REDDIT_OAUTH_URL.format(subreddit="python")


def _listing() -> dict[str, Any]:
    return json.loads((FIXTURES_DIR / "hot_listing.json").read_text(encoding="utf-8"))


def _with_credentials(ctx: ExtractionContext) -> ExtractionContext:
    return dataclasses.replace(
        ctx, settings=make_settings(reddit_client_id="client-id", reddit_client_secret="client-secret")
    )


# ---------------------------------------------------------------------------
# format_listing
# ---------------------------------------------------------------------------


class TestFormatListing:
    def test_renders_posts(self) -> None:
        md = format_listing(_listing(), "python", URL)

        assert md.startswith("# Subreddit: r/python\n\n## What's new in Python 3.13")
        assert "- **Author:** u/pydev" in md
        assert "- **Score:** 1542" in md
        assert "**Link:** [https://docs.python.org/3.13/whatsnew/3.13.html]" in md
        assert "Post your questions here. Beginners welcome." in md
        assert md.count("**Reddit link:**") == 2
        assert md.endswith(f"Source: [{URL}]({URL})")

    def test_internal_links_are_not_repeated(self) -> None:
        md = format_listing(_listing(), "python", URL)

        assert "**Link:** [https://www.reddit.com" not in md

    def test_long_selftext_is_truncated(self) -> None:
        listing = {"data": {"children": [{"data": {"title": "t", "selftext": "x" * 600}}]}}

        md = format_listing(listing, "python", URL)

        assert "x" * 500 + "..." in md
        assert "x" * 501 not in md

    def test_empty_listing(self) -> None:
        md = format_listing({"data": {"children": []}}, "python", URL)

        assert "No posts found" in md


# ---------------------------------------------------------------------------
# RedditStrategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPublicApi:
    async def test_success_is_cached(self, ctx: ExtractionContext) -> None:
        with respx.mock() as mock:
            route = mock.get(PUBLIC_API).mock(return_value=httpx.Response(200, json=_listing()))
            first = await RedditStrategy().fetch(URL, ctx)
            second = await RedditStrategy().fetch(URL, ctx)

        assert first.error is False
        assert first.md == second.md
        assert route.call_count == 1
        assert route.calls.last.request.url.params["limit"] == "5"
        assert await ctx.cache.get(cache_key("Reddit", URL)) == first.md

    async def test_short_listing_is_not_cached(self, ctx: ExtractionContext) -> None:
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=httpx.Response(200, json={"data": {"children": []}}))
            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is False
        assert await ctx.cache.get(cache_key("Reddit", URL)) is None

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(429),
            httpx.Response(429, headers={"x-ratelimit-reset": "soon"}),
            httpx.Response(200, json={"data": {"children": []}}, headers={"x-ratelimit-remaining": "0"}),
        ],
    )
    async def test_rate_limited_without_credentials(
        self, ctx: ExtractionContext, response: httpx.Response
    ) -> None:
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=response)
            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is True
        assert result.status == 429
        assert result.rate_limited is True

    async def test_invalid_url(self, ctx: ExtractionContext) -> None:
        result = await RedditStrategy().fetch("https://www.reddit.com/user/someone", ctx)

        assert result.status == 400


@pytest.mark.asyncio
class TestOAuthFallback:
    async def test_falls_back_and_caches_token(self, ctx: ExtractionContext) -> None:
        ctx = _with_credentials(ctx)
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=httpx.Response(429))
            token_route = mock.post(REDDIT_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
            )
            oauth_route = mock.get(OAUTH_API).mock(return_value=httpx.Response(200, json=_listing()))

            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is False
        assert "# Subreddit: r/python" in result.md
        assert token_route.call_count == 1
        assert oauth_route.calls.last.request.headers["Authorization"] == "Bearer tok-1"
        assert await ctx.cache.get(TOKEN_CACHE_KEY) == "tok-1"

    async def test_refreshes_token_once_on_401(self, ctx: ExtractionContext) -> None:
        ctx = _with_credentials(ctx)
        await ctx.cache.put(TOKEN_CACHE_KEY, "stale", 3000)
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=httpx.Response(500, text="server error"))
            token_route = mock.post(REDDIT_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "fresh"})
            )
            oauth_route = mock.get(OAUTH_API).mock(
                side_effect=[httpx.Response(401), httpx.Response(200, json=_listing())]
            )

            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is False
        assert token_route.call_count == 1
        assert [c.request.headers["Authorization"] for c in oauth_route.calls] == [
            "Bearer stale",
            "Bearer fresh",
        ]
        assert await ctx.cache.get(TOKEN_CACHE_KEY) == "fresh"

    async def test_second_401_is_reported(self, ctx: ExtractionContext) -> None:
        ctx = _with_credentials(ctx)
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=httpx.Response(429))
            token_route = mock.post(REDDIT_TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "tok"})
            )
            mock.get(OAUTH_API).mock(return_value=httpx.Response(401))

            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is True
        assert result.status == 502
        assert "authentication failed" in result.md
        assert token_route.call_count == 2

    async def test_token_endpoint_failure(self, ctx: ExtractionContext) -> None:
        ctx = _with_credentials(ctx)
        with respx.mock() as mock:
            mock.get(PUBLIC_API).mock(return_value=httpx.Response(429))
            mock.post(REDDIT_TOKEN_URL).mock(return_value=httpx.Response(401))

            result = await RedditStrategy().fetch(URL, ctx)

        assert result.error is True
        assert result.status == 502
