"""Request and result records shared by the orchestrator, strategies and API."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------

#: Prefix emitted by the generic page strategy when extraction failed.
ERROR_SENTINEL: str = "## Error"

#: Body of a result short-circuited by the caller rate limiter.
RATE_LIMIT_SENTINEL: str = "Rate limit exceeded"

#: Substring of an error body that marks a navigation timeout (HTTP 504).
TIMEOUT_SIGNATURE: str = "Timeout"

#: Sentinel alone on its line or followed by a colon; "## Error 404 handbook" is a title.
_ERROR_BODY_RE = re.compile(r"^" + re.escape(ERROR_SENTINEL) + r"(?=:|\n|$)")

_VALID_URL_RE = re.compile(r'^(http|https)://[^ "]+$')


def is_valid_url(url: str | None) -> bool:
    """Return ``True`` for absolute http(s) URLs without spaces or quotes."""
    return bool(url) and _VALID_URL_RE.match(url) is not None


def is_error_body(md: str) -> bool:
    """Return ``True`` when *md* is an error body produced by a strategy."""
    return _ERROR_BODY_RE.match(md) is not None


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModeFlags:
    """Per-request switches parsed from the query string.

    Attributes:
        bypass_cache: ``nocache=true``: drop and refetch cached entries.
        apply_content_filter: ``llmFilter=true``: run the LLM content filter.
        crawl_linked: ``subpages=true``: also convert same-site links.
    """

    bypass_cache: bool = False
    apply_content_filter: bool = False
    crawl_linked: bool = False


@dataclass(frozen=True)
class CallerIdentity:
    """Who is calling: the rate-limit key and whether the bearer token matched."""

    ip: str = "no-ip"
    privileged: bool = False


@dataclass(frozen=True)
class ConversionRequest:
    """A validated inbound conversion request."""

    url: str
    flags: ModeFlags = field(default_factory=ModeFlags)
    caller: CallerIdentity = field(default_factory=CallerIdentity)
    wants_json: bool = False


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class ConversionResult:
    """Outcome of converting one URL.

    Attributes:
        url: The identifier that was converted.
        md: Markdown body on success, error text on failure.  Annotated in
            place by the API layer before serialisation.
        error: ``True`` when ``md`` carries an error rather than content.
        status: HTTP-like status for error records (429, 500, 504, ...).
        error_details: Raw diagnostic detail for error records.
    """

    url: str
    md: str
    error: bool = False
    status: int | None = None
    error_details: str | None = None

    @property
    def rate_limited(self) -> bool:
        return self.error and (self.status == 429 or self.md == RATE_LIMIT_SENTINEL)

    @classmethod
    def failure(
        cls,
        url: str,
        md: str,
        status: int = 500,
        error_details: str | None = None,
    ) -> ConversionResult:
        return cls(url=url, md=md, error=True, status=status, error_details=error_details)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the wire shape ``{url, md, error?, status?, errorDetails?}``."""
        payload: dict[str, Any] = {"url": self.url, "md": self.md}
        if self.error:
            payload["error"] = True
        if self.status is not None:
            payload["status"] = self.status
        if self.error_details is not None:
            payload["errorDetails"] = self.error_details
        return payload
