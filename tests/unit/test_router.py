"""Unit tests for the extraction router.

Tests cover:
- Each predicate in isolation
- Precedence: numeric X/Twitter paths route to posts, not profiles
- Bare X/Twitter hosts fall back to the generic page and are flagged
- Unmatched URLs reach the default generic route
- route() is deterministic for the same input
- A custom table without a catch-all raises LookupError
"""

from __future__ import annotations

import pytest

from url2mda.extractors.generic import GenericPageStrategy
from url2mda.extractors.reddit import RedditStrategy
from url2mda.extractors.router import (
    ExtractionRouter,
    Route,
    is_forum_listing,
    is_social_post,
    is_social_profile,
    is_video,
)
from url2mda.extractors.twitter import TweetStrategy, TwitterProfileStrategy
from url2mda.extractors.youtube import YouTubeStrategy


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


class TestPredicates:
    def test_is_video_matches_watch_and_short_links(self) -> None:
        assert is_video("https://www.youtube.com/watch?v=dQw4w9WgXcQ") is True
        assert is_video("https://youtu.be/dQw4w9WgXcQ") is True
        assert is_video("https://www.youtube.com/@channel") is False

    def test_is_social_post_requires_numeric_last_segment(self) -> None:
        assert is_social_post("https://x.com/jack/status/20") is True
        assert is_social_post("https://twitter.com/jack/status/20?s=20") is True
        assert is_social_post("https://x.com/jack") is False

    def test_is_social_post_ignores_other_hosts(self) -> None:
        assert is_social_post("https://example.com/status/20") is False

    def test_is_social_profile_requires_non_numeric_path(self) -> None:
        assert is_social_profile("https://x.com/jack") is True
        assert is_social_profile("https://x.com/") is False
        assert is_social_profile("https://x.com/jack/status/20") is False

    def test_is_forum_listing(self) -> None:
        assert is_forum_listing("https://www.reddit.com/r/python/") is True
        assert is_forum_listing("https://www.reddit.com/user/spez") is False


# ---------------------------------------------------------------------------
# Routing table
# ---------------------------------------------------------------------------


class TestExtractionRouter:
    @pytest.mark.parametrize(
        ("url", "rule", "strategy_type"),
        [
            ("https://www.youtube.com/watch?v=abc123", "youtube", YouTubeStrategy),
            ("https://youtu.be/abc123", "youtube", YouTubeStrategy),
            ("https://x.com/jack/status/20", "twitter-post", TweetStrategy),
            ("https://twitter.com/nasa", "twitter-profile", TwitterProfileStrategy),
            ("https://x.com", "twitter-fallback", GenericPageStrategy),
            ("https://www.reddit.com/r/python", "reddit", RedditStrategy),
            ("https://example.com", "default", GenericPageStrategy),
            ("https://docs.python.org/3/library/asyncio.html", "default", GenericPageStrategy),
        ],
    )
    def test_route_selects_expected_rule(self, url: str, rule: str, strategy_type: type) -> None:
        match = ExtractionRouter().route(url)

        assert match.name == rule
        assert isinstance(match.strategy, strategy_type)

    def test_post_takes_precedence_over_profile(self) -> None:
        """A social URL ending in digits matches both post and host rules; post wins."""
        match = ExtractionRouter().route("https://x.com/someone/status/1234567890")

        assert match.name == "twitter-post"

    def test_bare_social_host_is_flagged_as_fallback(self) -> None:
        router = ExtractionRouter()

        assert router.route("https://x.com/").is_fallback is True
        assert router.route("https://example.com").is_fallback is False

    def test_route_is_deterministic(self) -> None:
        router = ExtractionRouter()
        url = "https://twitter.com/jack"

        assert router.route(url) is router.route(url)

    def test_generic_strategy_instance_is_shared_between_rows(self) -> None:
        router = ExtractionRouter()

        assert router.route("https://x.com").strategy is router.route("https://example.com").strategy

    def test_custom_table_without_catch_all_raises(self) -> None:
        router = ExtractionRouter([Route("youtube", is_video, YouTubeStrategy())])

        with pytest.raises(LookupError):
            router.route("https://example.com")
