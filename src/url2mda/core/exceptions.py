"""Application-wide exception hierarchy for url2mda.

All custom exceptions subclass ``Url2MdaError`` and carry the HTTP status
the API maps them to.

Hierarchy::

    Url2MdaError
    ├── InvalidIdentifierError      (400)
    ├── ResourceUnavailableError    (500)
    ├── RateLimitedError            (429, kind: platform | upstream)
    ├── ExtractionError             (500 / 504, transient flag)
    │   └── UpstreamNotFoundError   (404)
    └── UpstreamAuthError           (502)

Strategies raise these internally and turn them into error-shaped
``ConversionResult`` records at their own boundary, so none of them ever
escapes a fan-out.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime


class Url2MdaError(Exception):
    """Base class for all url2mda exceptions."""

    http_status: int = 500


class InvalidIdentifierError(Url2MdaError):
    """Raised when the ``url`` parameter is missing or not an absolute http(s) URL.

    Args:
        url: The rejected value (may be ``None``).
    """

    http_status = 400

    def __init__(self, url: str | None) -> None:
        super().__init__(
            "Invalid URL provided, should be a full URL starting with http:// or https://"
        )
        self.url = url


class ResourceUnavailableError(Url2MdaError):
    """Raised when no live browser could be established within the retry budget.

    Args:
        attempts: Number of launch attempts made.
    """

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Could not start or connect to browser instance after {attempts} attempts"
        )
        self.attempts = attempts


class RateLimitedError(Url2MdaError):
    """Raised when a rate limit blocks the request.

    Args:
        message: Human-readable description.
        kind: ``"platform"`` for the service's own limiter, ``"upstream"``
            when a third-party API signalled a limit.
        retry_after: Suggested wait in seconds.
    """

    http_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        kind: str = "platform",
        retry_after: float = 60.0,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.retry_after = retry_after


def parse_retry_after(value: str | None, default: float = 60.0) -> float:
    """Return the wait in seconds from a ``Retry-After`` style header value.

    Accepts delta-seconds and the HTTP-date form.  Missing or unparseable
    values give *default*; dates in the past give ``0.0``.
    """
    if not value:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ExtractionError(Url2MdaError):
    """Raised when a strategy fails to extract content for one URL.

    Args:
        message: Description of the failure.
        url: The URL being processed.
        transient: ``True`` for timeouts; mapped to HTTP 504.
        status: Explicit HTTP status override.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        transient: bool = False,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.transient = transient
        self.http_status = status or (504 if transient else 500)


class UpstreamNotFoundError(ExtractionError):
    """Raised when an upstream API reports that the requested item does not exist."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message, url=url, status=404)


class UpstreamAuthError(Url2MdaError):
    """Raised when an upstream API rejects our credential.

    The caller is expected to invalidate the cached credential and retry
    once; a second failure is reported to the client.
    """

    http_status = 502
