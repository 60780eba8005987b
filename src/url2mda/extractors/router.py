"""URL classification: which extraction strategy handles a URL.

Routing is an ordered table of ``(name, predicate, strategy)`` rows,
evaluated top to bottom; the first matching predicate wins.  Predicates
only look at the URL string, so :meth:`ExtractionRouter.route` is pure and
deterministic.

Precedence::

    youtube            youtube.com/watch, youtu.be/
    twitter-post       x.com / twitter.com, numeric last path segment
    twitter-profile    x.com / twitter.com, non-numeric path
    twitter-fallback   x.com / twitter.com, no path (generic page)
    reddit             reddit.com/r/<name>
    default            everything else (generic page)

Example::

    router = ExtractionRouter()
    match = router.route("https://x.com/jack/status/20")
    match.name       # "twitter-post"
    match.strategy   # <TweetStrategy name='TwitterTweet'>
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence
from urllib.parse import urlsplit

from url2mda.extractors.base import ExtractionStrategy
from url2mda.extractors.generic import GenericPageStrategy
from url2mda.extractors.reddit import RedditStrategy
from url2mda.extractors.twitter import (
    TWITTER_HOSTS,
    TweetStrategy,
    TwitterProfileStrategy,
    path_segments,
    tweet_id_from_url,
)
from url2mda.extractors.youtube import YouTubeStrategy

#: Rule names whose match is a deliberate fallback the caller should log.
FALLBACK_RULES: frozenset[str] = frozenset({"twitter-fallback"})


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_video(url: str) -> bool:
    return "youtube.com/watch" in url or "youtu.be/" in url


def _is_twitter_host(url: str) -> bool:
    return (urlsplit(url).hostname or "").lower() in TWITTER_HOSTS


def is_social_post(url: str) -> bool:
    return _is_twitter_host(url) and tweet_id_from_url(url) is not None


def is_social_profile(url: str) -> bool:
    return _is_twitter_host(url) and bool(path_segments(url)) and tweet_id_from_url(url) is None


def is_social_other(url: str) -> bool:
    return _is_twitter_host(url)


def is_forum_listing(url: str) -> bool:
    return "reddit.com/r/" in url.lower()


def always(_url: str) -> bool:
    return True


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Route:
    """One row of the routing table."""

    name: str
    predicate: Callable[[str], bool]
    strategy: ExtractionStrategy

    @property
    def is_fallback(self) -> bool:
        return self.name in FALLBACK_RULES


def default_routes() -> list[Route]:
    """Build the standard routing table with fresh strategy instances."""
    generic = GenericPageStrategy()
    return [
        Route("youtube", is_video, YouTubeStrategy()),
        Route("twitter-post", is_social_post, TweetStrategy()),
        Route("twitter-profile", is_social_profile, TwitterProfileStrategy()),
        Route("twitter-fallback", is_social_other, generic),
        Route("reddit", is_forum_listing, RedditStrategy()),
        Route("default", always, generic),
    ]


class ExtractionRouter:
    """Evaluates the routing table.

    Args:
        routes: Ordered table; defaults to :func:`default_routes`.  The last
            row should match everything.
    """

    def __init__(self, routes: Sequence[Route] | None = None) -> None:
        self.routes: list[Route] = list(routes) if routes is not None else default_routes()

    def route(self, url: str) -> Route:
        """Return the first route whose predicate accepts *url*.

        Raises:
            LookupError: If no row matches (only possible with a custom table
                lacking a catch-all).
        """
        for candidate in self.routes:
            if candidate.predicate(url):
                return candidate
        raise LookupError(f"no extraction route matches {url}")
