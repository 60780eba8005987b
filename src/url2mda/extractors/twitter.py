"""Twitter / X strategies.

- :class:`TweetStrategy` reads a single post from the public syndication
  endpoint used by the embed widget.  No browser is involved.
- :class:`TwitterProfileStrategy` renders a profile page in the shared
  browser and scrapes up to ten recent posts, the display name and the bio.

Both strategies manage their own cache entries:

- ``Twitter:<id>:raw``: raw syndication JSON (1 h)
- ``TwitterTweet:<id>``: formatted tweet markdown (1 h)
- ``TwitterProfile:<url>``: formatted profile markdown (30 min)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from url2mda.core.cache import cache_key
from url2mda.core.exceptions import (
    ExtractionError,
    RateLimitedError,
    UpstreamNotFoundError,
    parse_retry_after,
)
from url2mda.core.models import ConversionResult
from url2mda.extractors.base import ExtractionContext, ExtractionStrategy
from url2mda.extractors.config import (
    API_TIMEOUT,
    BROWSER_USER_AGENT,
    PROFILE_MAX_POSTS,
    PROFILE_MIN_POST_LENGTH,
    PROFILE_SCRIPT,
    PROFILE_SCROLL_DELAY_MS,
    PROFILE_SCROLL_PIXELS,
    PROFILE_TTL,
    TWEET_SYNDICATION_FEATURES,
    TWEET_SYNDICATION_TOKEN,
    TWEET_SYNDICATION_URL,
    TWEET_TTL,
)

logger = logging.getLogger(__name__)

#: Hosts served by these strategies.
TWITTER_HOSTS: frozenset[str] = frozenset(
    {"x.com", "www.x.com", "mobile.x.com", "twitter.com", "www.twitter.com", "mobile.twitter.com"}
)


def path_segments(url: str) -> list[str]:
    """Non-empty path segments of *url*, query and fragment ignored."""
    return [segment for segment in urlsplit(url).path.split("/") if segment]


def tweet_id_from_url(url: str) -> str | None:
    """Return the numeric status ID ending the path of *url*, or ``None``."""
    segments = path_segments(url)
    if segments and segments[-1].isdigit():
        return segments[-1]
    return None


def _format_timestamp(value: str | None) -> str:
    if not value:
        return "unknown date"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M UTC")


def format_tweet(tweet: dict[str, Any], url: str) -> str:
    """Render a syndication payload as markdown."""
    user = tweet.get("user") or {}
    name = user.get("name") or user.get("screen_name") or "Unknown"
    handle = user.get("screen_name")
    author = f"{name} (@{handle})" if handle else name

    parts = [
        f"## Tweet from {author} ({_format_timestamp(tweet.get('created_at'))})",
        tweet.get("text", ""),
    ]
    photos = [photo.get("url") for photo in tweet.get("photos") or [] if photo.get("url")]
    if photos:
        parts.append("\n".join(f"![Image]({photo})" for photo in photos))
    parts.append(
        f"**Stats:** Likes: {tweet.get('favorite_count') or 0}, "
        f"Replies/Retweets: {tweet.get('conversation_count') or 0}"
    )
    parts.append(f"**Tweet URL:** {url}")
    return "\n\n".join(parts)


def format_profile(content: dict[str, Any], username: str, url: str) -> str:
    """Render the scraped profile fields as markdown."""
    md = f"# {content.get('profileName') or username} (@{username})\n\n{content.get('bio') or 'No bio found.'}\n\n"
    posts = content.get("posts") or []
    if posts:
        md += "## Recent Tweets\n\n" + "\n\n".join(
            f"### Tweet {index}\n{post}" for index, post in enumerate(posts, start=1)
        )
    else:
        md += "## Recent Tweets\n\nNo tweets found or could not be extracted."
    md += f"\n\nProfile URL: {url}"
    return md


# ---------------------------------------------------------------------------
# Single post
# ---------------------------------------------------------------------------


class TweetStrategy(ExtractionStrategy):
    """Single post via ``cdn.syndication.twimg.com``."""

    name = "TwitterTweet"
    ttl = TWEET_TTL
    self_caching = True

    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        tweet_id = tweet_id_from_url(url)
        if tweet_id is None:
            return ConversionResult.failure(
                url, f"Invalid tweet URL or could not extract Tweet ID: {url}", status=400
            )

        key = cache_key(self.name, tweet_id)
        if ctx.bypass_cache:
            await ctx.cache.delete(key)
        else:
            cached = await ctx.cache.get(key)
            if cached is not None:
                logger.debug("twitter: using cached tweet %s", tweet_id)
                return ConversionResult(url=url, md=cached)

        try:
            tweet = await self._get_tweet(tweet_id, ctx)
        except RateLimitedError as exc:
            return ConversionResult.failure(url, str(exc), status=exc.http_status)
        except ExtractionError as exc:
            return ConversionResult.failure(
                url, str(exc), status=exc.http_status, error_details=repr(exc.__cause__ or exc)
            )

        md = format_tweet(tweet, url)
        await ctx.cache.put(key, md, self.ttl)
        return ConversionResult(url=url, md=md)

    async def _get_tweet(self, tweet_id: str, ctx: ExtractionContext) -> dict[str, Any]:
        """Return the raw syndication payload, from cache when possible.

        Raises:
            UpstreamNotFoundError: The post does not exist or is not public.
            RateLimitedError: The endpoint answered HTTP 429.
            ExtractionError: Any other HTTP or connection failure.
        """
        raw_key = cache_key("Twitter", f"{tweet_id}:raw")
        if ctx.bypass_cache:
            await ctx.cache.delete(raw_key)
        else:
            raw = await ctx.cache.get(raw_key)
            if raw is not None:
                try:
                    return json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("twitter: cached payload for %s is not valid JSON, refetching", tweet_id)

        params = {
            "id": tweet_id,
            "lang": "en",
            "features": TWEET_SYNDICATION_FEATURES,
            "token": TWEET_SYNDICATION_TOKEN,
        }
        headers = {"User-Agent": BROWSER_USER_AGENT, "Accept": "application/json"}
        try:
            response = await ctx.http_client.get(
                TWEET_SYNDICATION_URL, params=params, headers=headers, timeout=API_TIMEOUT
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                raise UpstreamNotFoundError(f"Tweet not found: {tweet_id}") from exc
            if status == 429:
                raise RateLimitedError(
                    f"Upstream rate limit exceeded fetching tweet {tweet_id}",
                    kind="upstream",
                    retry_after=parse_retry_after(exc.response.headers.get("Retry-After")),
                ) from exc
            raise ExtractionError(
                f"Tweet fetch failed for {tweet_id}: HTTP {status}", status=502
            ) from exc
        except httpx.TimeoutException as exc:
            raise ExtractionError(
                f"Timeout fetching tweet {tweet_id}", transient=True
            ) from exc
        except httpx.RequestError as exc:
            raise ExtractionError(
                f"Tweet fetch failed for {tweet_id}: {exc}", status=502
            ) from exc

        try:
            tweet = response.json()
        except ValueError as exc:
            raise ExtractionError(f"Tweet payload for {tweet_id} is not JSON", status=502) from exc
        # Deleted and protected posts come back as 200 with no text.
        if not isinstance(tweet, dict) or "text" not in tweet:
            raise UpstreamNotFoundError(f"Tweet not found: {tweet_id}")

        await ctx.cache.put(raw_key, json.dumps(tweet), self.ttl)
        return tweet


# ---------------------------------------------------------------------------
# Profile page
# ---------------------------------------------------------------------------


class TwitterProfileStrategy(ExtractionStrategy):
    """Profile page rendered in the shared browser."""

    name = "TwitterProfile"
    ttl = PROFILE_TTL
    self_caching = True

    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        key = cache_key(self.name, url)
        if ctx.bypass_cache:
            await ctx.cache.delete(key)
        else:
            cached = await ctx.cache.get(key)
            if cached is not None:
                logger.debug("twitter: using cached profile %s", url)
                return ConversionResult(url=url, md=cached)

        segments = path_segments(url)
        username = segments[-1] if segments else url
        nav_timeout_ms = ctx.settings.navigation_timeout_seconds * 1000
        try:
            async with ctx.handles.page(user_agent=BROWSER_USER_AGENT) as page:
                await page.goto(url, wait_until="domcontentloaded", timeout=nav_timeout_ms * 2)
                try:
                    await page.wait_for_selector("article", timeout=nav_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.warning("twitter: no posts rendered on %s, extracting profile only", url)
                try:
                    await page.mouse.wheel(0, PROFILE_SCROLL_PIXELS)
                    await page.wait_for_timeout(PROFILE_SCROLL_DELAY_MS)
                except PlaywrightError as exc:
                    logger.info("twitter: scrolling failed on %s: %s", url, exc)
                content = await page.evaluate(
                    PROFILE_SCRIPT, [username, PROFILE_MAX_POSTS, PROFILE_MIN_POST_LENGTH]
                )
        except PlaywrightTimeoutError as exc:
            logger.warning("twitter: timeout loading profile %s", url)
            return ConversionResult.failure(
                url, f"Timeout loading profile {url}", status=504, error_details=str(exc)
            )
        except PlaywrightError as exc:
            logger.warning("twitter: failed to scrape profile %s: %s", url, exc)
            return ConversionResult.failure(
                url, f"Failed to fetch profile {url}: {exc}", status=500, error_details=str(exc)
            )

        md = format_profile(content, username, url)
        await ctx.cache.put(key, md, self.ttl)
        return ConversionResult(url=url, md=md)
