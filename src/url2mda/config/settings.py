"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
All credentials and secrets are accessed exclusively through this module;
never call ``os.getenv`` directly elsewhere in the codebase.

Usage::

    from url2mda.config.settings import get_settings

    settings = get_settings()
    token = settings.backend_security_token
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration backed by environment variables and an optional .env file.

    Every field has a default so the service can start in single-process
    development mode with no environment at all.  Production deployments
    should at least set ``REDIS_URL`` and ``BACKEND_SECURITY_TOKEN``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "URL2MDA"
    """Human-readable application name shown in the help page and OpenAPI docs."""

    debug: bool = False
    """Enable FastAPI debug mode.  Never True in production."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    metrics_enabled: bool = True
    """Expose Prometheus metrics at ``GET /metrics``."""

    # ------------------------------------------------------------------
    # Redis
    # ------------------------------------------------------------------

    redis_url: Optional[str] = None
    """Redis connection URL backing the markdown cache, the rate limiter and
    the persisted idle counter.

    When ``None`` all three fall back to in-process implementations, which is
    only suitable for a single worker process.
    """

    # ------------------------------------------------------------------
    # Security / rate limiting
    # ------------------------------------------------------------------

    backend_security_token: str = ""
    """Bearer token that bypasses rate limiting.  An empty string disables the bypass."""

    rate_limit_requests: int = 30
    """Requests allowed per caller key within ``rate_limit_window_seconds``."""

    rate_limit_window_seconds: int = 60
    """Sliding window length for the caller rate limiter."""

    # ------------------------------------------------------------------
    # Browser
    # ------------------------------------------------------------------

    browser_cdp_url: Optional[str] = None
    """HTTP(S) endpoint of a remote Chromium exposing the DevTools protocol,
    e.g. ``http://browser:9222``.  When ``None`` a local headless Chromium is
    launched through Playwright."""

    browser_launch_retries: int = 3
    """Launch attempts made by ``BrowserHandleManager.ensure()`` before giving up."""

    keep_browser_alive_seconds: int = 60
    """Idle time after which the shared browser is closed."""

    idle_tick_seconds: int = 10
    """Interval of the idle wake timer; each firing adds this to the idle counter."""

    navigation_timeout_seconds: int = 30
    """Timeout for ``page.goto`` navigations."""

    network_idle_timeout_seconds: int = 15
    """Best-effort wait for network idle after ``domcontentloaded``."""

    strategy_timeout_seconds: int = 90
    """Upper bound on one extraction strategy call inside a fan-out."""

    max_content_length: int = 10_000
    """Character cap applied to raw ``innerText`` fallbacks."""

    crawl_max_links: int = 10
    """Maximum number of same-site links followed by a subpage crawl."""

    # ------------------------------------------------------------------
    # Reddit OAuth (fallback when the public API is rate limited)
    # ------------------------------------------------------------------

    reddit_client_id: Optional[str] = None
    reddit_client_secret: Optional[str] = None
    reddit_user_agent: str = "url2mda/1.0 (markdown conversion service)"

    # ------------------------------------------------------------------
    # LLM content filter
    # ------------------------------------------------------------------

    llm_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    """OpenAI-compatible chat completions endpoint used by ``llmFilter=true``."""

    llm_api_key: Optional[str] = None
    """Bearer key for ``llm_api_url``.  When ``None`` the filter is a no-op."""

    llm_model: str = "qwen/qwen-2.5-72b-instruct"
    """Model identifier sent with every filter request."""


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    Uses ``functools.lru_cache`` so that Pydantic Settings reads the environment
    and .env file exactly once per process lifetime.  In tests, call
    ``get_settings.cache_clear()`` after patching environment variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
