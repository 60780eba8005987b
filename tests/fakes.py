"""Test doubles for Playwright objects and the rendering backend."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

TEST_TOKEN = "test-backend-token"

EXAMPLE_HTML = (
    "<html><head><title>Example Domain</title></head><body>"
    "<nav><a href='/'>Home</a></nav>"
    "<h1>Example Domain</h1>"
    "<p>This domain is for use in illustrative examples in documents.</p>"
    "<script>console.log('x')</script>"
    "</body></html>"
)


def make_page(*, html: str = EXAMPLE_HTML, evaluate: Any = None) -> MagicMock:
    """Return a Page stand-in.

    Args:
        html: Value returned by ``page.content()``.
        evaluate: Callables and lists become the ``side_effect`` of
            ``page.evaluate``; anything else is its return value.
    """
    page = MagicMock(name="Page")
    page.goto = AsyncMock(return_value=None)
    page.wait_for_load_state = AsyncMock(return_value=None)
    page.wait_for_selector = AsyncMock(return_value=None)
    page.wait_for_timeout = AsyncMock(return_value=None)
    page.content = AsyncMock(return_value=html)
    page.title = AsyncMock(return_value="Example Domain")
    page.close = AsyncMock(return_value=None)
    page.mouse = MagicMock()
    page.mouse.wheel = AsyncMock(return_value=None)
    if callable(evaluate) or isinstance(evaluate, list):
        page.evaluate = AsyncMock(side_effect=evaluate)
    else:
        page.evaluate = AsyncMock(return_value=evaluate)
    return page


def make_browser(page: MagicMock) -> MagicMock:
    browser = MagicMock(name="Browser")
    browser.new_page = AsyncMock(return_value=page)
    browser.close = AsyncMock(return_value=None)
    return browser


class FakeBackend:
    """RenderingBackend fake.

    The first ``launch_failures`` launches raise; ``alive`` controls whether
    ``version()`` answers.
    """

    def __init__(self, page: MagicMock | None = None, launch_failures: int = 0) -> None:
        self.page = page or make_page()
        self.launch_failures = launch_failures
        self.alive = True
        self.launches = 0
        self.browsers: list[MagicMock] = []
        self.sessions: list[str] = []
        self.closed_sessions: list[str] = []

    async def launch(self) -> MagicMock:
        self.launches += 1
        if self.launch_failures > 0:
            self.launch_failures -= 1
            raise RuntimeError("chromium failed to start")
        browser = make_browser(self.page)
        self.browsers.append(browser)
        return browser

    async def version(self, browser: Any) -> str:
        if not self.alive:
            raise RuntimeError("target closed")
        return "HeadlessChrome/124.0"

    async def list_sessions(self) -> list[str]:
        return list(self.sessions)

    async def close_session(self, session_id: str) -> None:
        self.closed_sessions.append(session_id)


def make_settings(**overrides: Any):
    """Settings isolated from any local .env file, with short timeouts."""
    from url2mda.config.settings import Settings  # noqa: PLC0415

    values: dict[str, Any] = {
        "backend_security_token": TEST_TOKEN,
        "redis_url": None,
        "llm_api_key": None,
        "reddit_client_id": None,
        "reddit_client_secret": None,
        "strategy_timeout_seconds": 5,
        "navigation_timeout_seconds": 1,
        "network_idle_timeout_seconds": 1,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
