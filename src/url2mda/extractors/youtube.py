"""YouTube video strategy.

Derives a small metadata document from the URL alone: the video ID, a direct
link and an embed snippet.  No network request is made, so the strategy
always succeeds; URLs without a recognisable ID yield an explanatory
document instead of an error.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlsplit

from url2mda.core.cache import cache_key
from url2mda.core.models import ConversionResult
from url2mda.extractors.base import ExtractionContext, ExtractionStrategy
from url2mda.extractors.config import YOUTUBE_TTL

logger = logging.getLogger(__name__)

_EMBED_ALLOW = "accelerometer; autoplay; clipboard-write; encrypted-media; gyroscope; picture-in-picture"


def video_id_from_url(url: str) -> str | None:
    """Return the video ID from a ``youtube.com/watch`` or ``youtu.be`` URL."""
    if "youtube.com/watch" in url:
        values = parse_qs(urlsplit(url).query).get("v")
        return values[0] if values and values[0] else None
    if "youtu.be/" in url:
        tail = url.split("youtu.be/", 1)[1]
        video_id = tail.split("?", 1)[0].split("#", 1)[0].split("/", 1)[0]
        return video_id or None
    return None


def format_video(video_id: str, url: str) -> str:
    embed = (
        f'<iframe width="560" height="315" src="https://www.youtube.com/embed/{video_id}" '
        f'frameborder="0" allow="{_EMBED_ALLOW}" allowfullscreen></iframe>'
    )
    return (
        "# YouTube Video\n\n"
        "## Information\n"
        f"- **Video ID**: {video_id}\n"
        f"- **Direct Link**: {url}\n"
        f"- **Embed Code**: {embed}\n\n"
        f"To view this video, visit: {url}"
    )


class YouTubeStrategy(ExtractionStrategy):
    name = "Youtube"
    ttl = YOUTUBE_TTL
    self_caching = True

    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        key = cache_key(self.name, url)
        if ctx.bypass_cache:
            await ctx.cache.delete(key)
        else:
            cached = await ctx.cache.get(key)
            if cached is not None:
                return ConversionResult(url=url, md=cached)

        video_id = video_id_from_url(url)
        if video_id is None:
            logger.warning("youtube: could not extract video ID from %s", url)
            return ConversionResult(url=url, md=f"# YouTube Video\n\nCould not extract video ID from: {url}")

        md = format_video(video_id, url)
        await ctx.cache.put(key, md, self.ttl)
        return ConversionResult(url=url, md=md)
