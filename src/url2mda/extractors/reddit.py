"""Reddit subreddit listing strategy.

Reads the ``hot`` listing of the subreddit named in the URL.  The public
JSON API is tried first; when it signals a rate limit (HTTP 429, an
exhausted ``x-ratelimit-remaining`` header, or rate-limit wording in an
error body) or fails otherwise, the strategy falls back to the OAuth API
using an application-only token.

Cache entries:

- ``Reddit:<url>``: formatted listing (1 h), only stored when longer than
  100 characters.
- ``Reddit:OAuthToken``: client-credentials access token (3000 s); deleted
  and fetched again once when the API answers 401.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from url2mda.core.cache import cache_key
from url2mda.core.exceptions import (
    ExtractionError,
    RateLimitedError,
    UpstreamAuthError,
    parse_retry_after,
)
from url2mda.core.models import ConversionResult
from url2mda.extractors.base import ExtractionContext, ExtractionStrategy
from url2mda.extractors.config import (
    API_TIMEOUT,
    BROWSER_USER_AGENT,
    REDDIT_LISTING_LIMIT,
    REDDIT_MIN_CACHEABLE_LENGTH,
    REDDIT_OAUTH_URL,
    REDDIT_PUBLIC_URL,
    REDDIT_SELFTEXT_MAX,
    REDDIT_TOKEN_TTL,
    REDDIT_TOKEN_URL,
    REDDIT_TTL,
)

logger = logging.getLogger(__name__)

SUBREDDIT_RE = re.compile(r"reddit\.com/r/([A-Za-z0-9_-]+)", re.IGNORECASE)

TOKEN_CACHE_KEY: str = cache_key("Reddit", "OAuthToken")

_RATE_LIMIT_WORDING = ("rate limit", "ratelimit")


def format_listing(data: dict[str, Any], subreddit: str, url: str) -> str:
    """Render a Reddit listing response as markdown."""
    children = ((data or {}).get("data") or {}).get("children") or []
    if not children:
        return (
            f"# Subreddit: r/{subreddit}\n\n"
            "No posts found or could not be fetched from this subreddit."
        )

    md = f"# Subreddit: r/{subreddit}\n\n"
    for child in children:
        post = child.get("data")
        if not post:
            continue
        posted = datetime.fromtimestamp(post.get("created_utc") or 0, tz=timezone.utc)
        md += f"## {post.get('title') or 'Untitled post'}\n\n"
        md += f"- **Author:** u/{post.get('author') or 'unknown'}\n"
        md += f"- **Score:** {post.get('score') or 0}\n"
        md += f"- **Comments:** {post.get('num_comments') or 0}\n"
        md += f"- **Posted:** {posted.strftime('%Y-%m-%d %H:%M UTC')}\n\n"

        selftext = post.get("selftext") or ""
        if selftext:
            if len(selftext) > REDDIT_SELFTEXT_MAX:
                selftext = selftext[:REDDIT_SELFTEXT_MAX] + "..."
            md += f"{selftext}\n\n"

        link = post.get("url") or ""
        if link and "reddit.com" not in link:
            md += f"**Link:** [{link}]({link})\n\n"

        md += f"**Reddit link:** [View full post](https://reddit.com{post.get('permalink', '')})\n\n"
        md += "---\n\n"

    md += f"\nSource: [{url}]({url})"
    return md


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    remaining = response.headers.get("x-ratelimit-remaining")
    if remaining is not None:
        try:
            if float(remaining) <= 0:
                return True
        except ValueError:
            pass
    if not response.is_success:
        body = response.text.lower()
        return any(marker in body for marker in _RATE_LIMIT_WORDING)
    return False


def _parse_listing(response: httpx.Response, api: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ExtractionError(f"Error parsing Reddit {api} API response", status=502) from exc
    if isinstance(data, dict) and data.get("error"):
        raise ExtractionError(
            f"Reddit API error: {data.get('message') or data.get('error')}", status=502
        )
    return data


class RedditStrategy(ExtractionStrategy):
    """Subreddit ``hot`` listing via the public API with an OAuth fallback."""

    name = "Reddit"
    ttl = REDDIT_TTL
    self_caching = True

    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        match = SUBREDDIT_RE.search(url)
        if match is None:
            return ConversionResult.failure(url, "Invalid Reddit URL format", status=400)
        subreddit = match.group(1)

        key = cache_key(self.name, url)
        if ctx.bypass_cache:
            await ctx.cache.delete(key)
        else:
            cached = await ctx.cache.get(key)
            if cached is not None:
                logger.debug("reddit: using cached listing for %s", url)
                return ConversionResult(url=url, md=cached)

        try:
            md = await self._fetch_public(subreddit, url, ctx)
        except (RateLimitedError, ExtractionError) as public_exc:
            settings = ctx.settings
            if not (settings.reddit_client_id and settings.reddit_client_secret):
                logger.warning(
                    "reddit: public API failed for r/%s and no OAuth credentials are configured",
                    subreddit,
                )
                return ConversionResult.failure(
                    url, str(public_exc), status=public_exc.http_status, error_details=repr(public_exc)
                )
            logger.info("reddit: public API failed for r/%s (%s), trying OAuth", subreddit, public_exc)
            try:
                md = await self._fetch_authenticated(subreddit, url, ctx)
            except (RateLimitedError, ExtractionError, UpstreamAuthError) as exc:
                return ConversionResult.failure(
                    url, str(exc), status=exc.http_status, error_details=repr(exc)
                )

        if len(md) > REDDIT_MIN_CACHEABLE_LENGTH:
            await ctx.cache.put(key, md, self.ttl)
        else:
            logger.warning("reddit: formatted listing for %s is suspiciously short", url)
        return ConversionResult(url=url, md=md)

    async def _fetch_public(self, subreddit: str, url: str, ctx: ExtractionContext) -> str:
        """Fetch the listing without authentication.

        Raises:
            RateLimitedError: The public API signalled a rate limit.
            ExtractionError: Any other failure.
        """
        api_url = REDDIT_PUBLIC_URL.format(subreddit=subreddit)
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "Accept": "application/json",
            "Cache-Control": "no-cache",
        }
        try:
            response = await ctx.http_client.get(
                api_url, params={"limit": REDDIT_LISTING_LIMIT}, headers=headers, timeout=API_TIMEOUT
            )
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"Timeout fetching Reddit public API for r/{subreddit}", transient=True) from exc
        except httpx.RequestError as exc:
            raise ExtractionError(f"Error fetching Reddit public content: {exc}", status=502) from exc

        if _is_rate_limited(response):
            raise RateLimitedError(
                f"Upstream rate limit exceeded: Reddit public API for r/{subreddit}",
                kind="upstream",
                retry_after=parse_retry_after(response.headers.get("x-ratelimit-reset")),
            )
        if not response.is_success:
            raise ExtractionError(
                f"Failed to fetch from Reddit Public API: {response.status_code}", status=502
            )
        return format_listing(_parse_listing(response, "public"), subreddit, url)

    async def _fetch_authenticated(self, subreddit: str, url: str, ctx: ExtractionContext) -> str:
        """Fetch the listing through ``oauth.reddit.com``.

        A 401 invalidates the cached token and retries exactly once with a
        fresh one.

        Raises:
            UpstreamAuthError: No token could be obtained, or the fresh token
                was rejected too.
            RateLimitedError: The OAuth API answered 429.
            ExtractionError: Any other failure.
        """
        api_url = REDDIT_OAUTH_URL.format(subreddit=subreddit)
        token = await self._token(ctx)
        response = await self._oauth_get(api_url, token, ctx)
        if response.status_code == 401:
            logger.info("reddit: OAuth token rejected, refreshing once")
            await ctx.cache.delete(TOKEN_CACHE_KEY)
            token = await self._token(ctx, refresh=True)
            response = await self._oauth_get(api_url, token, ctx)
            if response.status_code == 401:
                raise UpstreamAuthError("Reddit authentication failed. Token may have expired.")

        if response.status_code == 429:
            raise RateLimitedError(
                f"Upstream rate limit exceeded: Reddit OAuth API for r/{subreddit}",
                kind="upstream",
            )
        if not response.is_success:
            raise ExtractionError(
                "Failed to fetch from Reddit API (authenticated): "
                f"{response.status_code} - {response.text[:100]}",
                status=502,
            )
        return format_listing(_parse_listing(response, "OAuth"), subreddit, url)

    async def _oauth_get(self, api_url: str, token: str, ctx: ExtractionContext) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": ctx.settings.reddit_user_agent,
            "Accept": "application/json",
        }
        try:
            return await ctx.http_client.get(
                api_url, params={"limit": REDDIT_LISTING_LIMIT}, headers=headers, timeout=API_TIMEOUT
            )
        except httpx.TimeoutException as exc:
            raise ExtractionError("Timeout fetching Reddit OAuth API", transient=True) from exc
        except httpx.RequestError as exc:
            raise ExtractionError(f"Error fetching Reddit authenticated content: {exc}", status=502) from exc

    async def _token(self, ctx: ExtractionContext, refresh: bool = False) -> str:
        """Return a cached access token or request a new one."""
        if not refresh:
            cached = await ctx.cache.get(TOKEN_CACHE_KEY)
            if cached:
                return cached

        settings = ctx.settings
        try:
            response = await ctx.http_client.post(
                REDDIT_TOKEN_URL,
                auth=(settings.reddit_client_id or "", settings.reddit_client_secret or ""),
                data={"grant_type": "client_credentials", "scope": "read"},
                headers={"User-Agent": settings.reddit_user_agent},
                timeout=API_TIMEOUT,
            )
        except httpx.RequestError as exc:
            raise UpstreamAuthError(f"Failed to authenticate with Reddit: {exc}") from exc

        if not response.is_success:
            await ctx.cache.delete(TOKEN_CACHE_KEY)
            raise UpstreamAuthError(f"Failed to authenticate with Reddit: {response.status_code}")
        try:
            token = response.json().get("access_token")
        except ValueError as exc:
            raise UpstreamAuthError("Failed to parse Reddit authentication response") from exc
        if not token:
            raise UpstreamAuthError("Reddit did not provide an access token")

        await ctx.cache.put(TOKEN_CACHE_KEY, token, REDDIT_TOKEN_TTL)
        logger.info("reddit: obtained new OAuth token")
        return token
