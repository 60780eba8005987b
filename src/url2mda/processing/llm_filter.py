"""LLM content filter for ``llmFilter=true``.

Sends extracted markdown to an OpenAI-compatible chat completions endpoint
(OpenRouter by default) and asks it to drop navigation, ads and other page
chrome.  The filter never fails a conversion: a missing API key, any HTTP or
network error, or an unusable response returns the input unchanged.

Error mapping inside :func:`chat_completion`:

- HTTP 429 -> :class:`~url2mda.core.exceptions.RateLimitedError`
- HTTP 401/403 -> :class:`~url2mda.core.exceptions.UpstreamAuthError`
- Other non-2xx, network errors -> :class:`~url2mda.core.exceptions.ExtractionError`
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from url2mda.core.exceptions import (
    ExtractionError,
    RateLimitedError,
    UpstreamAuthError,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

FILTER_PROMPT: str = (
    "You are an expert Markdown filtering assistant. Remove all extraneous sections "
    "(ads, navigation, footers, sidebars, unrelated links) and any inappropriate content. "
    "Preserve only the core content: titles, headings, paragraphs, lists, code blocks, "
    "and inline formatting. Do not include explanations, commentary, metadata, or markdown fences."
)

#: Output shorter than this fraction of the input is logged as suspicious.
_SHRINK_WARNING_RATIO: float = 0.1

_FILTER_TIMEOUT: float = 60.0


async def chat_completion(
    client: httpx.AsyncClient,
    api_url: str,
    api_key: str,
    model: str,
    system_prompt: str,
    user_message: str,
) -> dict[str, Any]:
    """POST one chat completion request and return the parsed response.

    Raises:
        RateLimitedError: On HTTP 429.
        UpstreamAuthError: On HTTP 401 or 403.
        ExtractionError: On other HTTP errors or network failures.
    """
    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        "temperature": 0,
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        response = await client.post(api_url, json=payload, headers=headers, timeout=_FILTER_TIMEOUT)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        if code == 429:
            raise RateLimitedError(
                "llm filter: HTTP 429, rate limited",
                kind="upstream",
                retry_after=parse_retry_after(exc.response.headers.get("Retry-After")),
            ) from exc
        if code in (401, 403):
            raise UpstreamAuthError(f"llm filter: HTTP {code}, invalid API key") from exc
        raise ExtractionError(f"llm filter: HTTP {code}: {exc.response.text[:200]}") from exc
    except httpx.RequestError as exc:
        raise ExtractionError(f"llm filter: network error: {exc}") from exc

    try:
        return response.json()  # type: ignore[no-any-return]
    except ValueError as exc:
        raise ExtractionError("llm filter: response is not JSON") from exc


class ContentFilter:
    """Applies the LLM filter to markdown bodies.

    Args:
        http_client: Shared client.
        api_url: Chat completions endpoint.
        api_key: Bearer key; ``None`` turns :meth:`apply` into a no-op.
        model: Model identifier.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        api_key: str | None,
        model: str,
    ) -> None:
        self.http_client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.model = model

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def apply(self, md: str) -> str:
        """Return the filtered body, or *md* unchanged when filtering is not possible."""
        if not self.enabled:
            logger.debug("llm filter: no API key configured, returning content unfiltered")
            return md
        logger.info("llm filter: filtering %d characters", len(md))
        try:
            data = await chat_completion(
                self.http_client,
                self.api_url,
                self.api_key or "",
                self.model,
                FILTER_PROMPT,
                f"Input:\n{md}\n\nOutput:",
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("llm filter: request failed, returning content unfiltered: %s", exc)
            return md

        try:
            filtered = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("llm filter: unexpected response shape, returning content unfiltered")
            return md
        if not isinstance(filtered, str) or not filtered.strip():
            logger.warning("llm filter: empty response, returning content unfiltered")
            return md

        filtered = filtered.strip()
        if len(md) > 100 and len(filtered) < len(md) * _SHRINK_WARNING_RATIO:
            logger.warning(
                "llm filter: output is %d characters from %d input; check output quality",
                len(filtered),
                len(md),
            )
        return filtered
