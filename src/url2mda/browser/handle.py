"""Shared headless-browser handle with health checks and retry-with-cleanup.

The :class:`BrowserHandleManager` owns the single Chromium connection the
service renders pages with.  It is created once per process, injected into
the strategies that need it, and torn down by the idle lifecycle
controller.

The rendering engine itself sits behind :class:`RenderingBackend` so the
manager can be exercised without a real browser.  :class:`PlaywrightBackend`
is the production implementation: it launches a local headless Chromium, or
attaches to a remote one over the DevTools protocol when ``BROWSER_CDP_URL``
is configured.

Install the browser binary once per environment::

    playwright install chromium
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

import httpx
from playwright.async_api import Browser, Page, Playwright, async_playwright

from url2mda.core.exceptions import ResourceUnavailableError
from url2mda.core.metrics import browser_launches_total

logger = logging.getLogger(__name__)

_LOCAL_PREFIX = "local:"
_CDP_PREFIX = "cdp:"

_CHROMIUM_ARGS: list[str] = [
    "--disable-dev-shm-usage",
    "--no-sandbox",
]


class RenderingBackend(Protocol):
    """Control surface of the rendering engine used by the handle manager."""

    async def launch(self) -> Any:
        """Start (or attach to) a browser and return it."""
        ...

    async def version(self, browser: Any) -> str:
        """Perform a cheap round-trip against *browser*; raise if it is gone."""
        ...

    async def list_sessions(self) -> list[str]:
        """Return identifiers of browser sessions that may have been orphaned."""
        ...

    async def close_session(self, session_id: str) -> None:
        """Close one session returned by :meth:`list_sessions`."""
        ...


# ---------------------------------------------------------------------------
# Playwright backend
# ---------------------------------------------------------------------------


class PlaywrightBackend:
    """:class:`RenderingBackend` implemented with the Playwright async API.

    Args:
        cdp_url: HTTP endpoint of a remote Chromium (``http://host:9222``).
            ``None`` launches a local headless Chromium instead.
        http_client: Client used for the DevTools ``/json`` endpoints.
    """

    def __init__(
        self,
        cdp_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.cdp_url = cdp_url.rstrip("/") if cdp_url else None
        self._http = http_client
        self._playwright: Playwright | None = None
        self._launched: dict[str, Browser] = {}

    async def _driver(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    async def launch(self) -> Browser:
        driver = await self._driver()
        if self.cdp_url:
            browser = await driver.chromium.connect_over_cdp(self.cdp_url)
        else:
            browser = await driver.chromium.launch(headless=True, args=_CHROMIUM_ARGS)

        session_id = uuid.uuid4().hex
        self._launched[session_id] = browser
        browser.on("disconnected", lambda _browser: self._launched.pop(session_id, None))
        logger.info(
            "browser: %s chromium session %s",
            "attached to remote" if self.cdp_url else "launched local",
            session_id,
        )
        return browser

    async def version(self, browser: Browser) -> str:
        session = await browser.new_browser_cdp_session()
        try:
            info = await session.send("Browser.getVersion")
        finally:
            await session.detach()
        return str(info.get("product", ""))

    async def list_sessions(self) -> list[str]:
        sessions = [_LOCAL_PREFIX + sid for sid in self._launched]
        if self.cdp_url and self._http is not None:
            response = await self._http.get(f"{self.cdp_url}/json/list")
            response.raise_for_status()
            sessions.extend(
                _CDP_PREFIX + target["id"]
                for target in response.json()
                if target.get("type") == "page" and target.get("id")
            )
        return sessions

    async def close_session(self, session_id: str) -> None:
        if session_id.startswith(_LOCAL_PREFIX):
            browser = self._launched.pop(session_id[len(_LOCAL_PREFIX):], None)
            if browser is not None:
                await browser.close()
            return
        if session_id.startswith(_CDP_PREFIX) and self.cdp_url and self._http is not None:
            target_id = session_id[len(_CDP_PREFIX):]
            response = await self._http.get(f"{self.cdp_url}/json/close/{target_id}")
            response.raise_for_status()

    async def shutdown(self) -> None:
        """Close every tracked browser and stop the Playwright driver."""
        for session_id in list(self._launched):
            try:
                await self.close_session(_LOCAL_PREFIX + session_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("browser: failed to close session %s: %s", session_id, exc)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


# ---------------------------------------------------------------------------
# Handle manager
# ---------------------------------------------------------------------------


class BrowserHandleManager:
    """Owns the process-wide browser handle.

    ``ensure()`` is single-flight: concurrent callers wait on one lock, so a
    burst of requests against a cold service launches exactly one browser.
    The handle is only ever replaced wholesale, never mutated in place.

    Args:
        backend: Rendering engine control surface.
        retries: Launch attempts before :meth:`ensure` gives up.
    """

    def __init__(self, backend: RenderingBackend, retries: int = 3) -> None:
        self.backend = backend
        self.retries = retries
        self._browser: Any | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def probe(self) -> bool:
        """Return ``True`` if the current handle answers a version query."""
        if self._browser is None:
            return False
        try:
            await self.backend.version(self._browser)
        except Exception as exc:  # noqa: BLE001
            logger.info("browser: connection check failed: %s", exc)
            return False
        return True

    async def ensure(self) -> bool:
        """Guarantee a live handle exists.

        Each attempt probes the current handle and, if it is missing or dead,
        launches a fresh one.  After a failed launch every orphaned session
        the backend reports is closed (best effort) before the next attempt.

        Returns:
            ``True`` when a live handle is available, ``False`` once the
            retry budget is exhausted.
        """
        async with self._lock:
            attempts_left = self.retries
            while attempts_left > 0:
                if self._browser is not None and await self.probe():
                    return True
                logger.info(
                    "browser: not connected, launching (attempts left: %d)", attempts_left
                )
                try:
                    browser = await self.backend.launch()
                except Exception as exc:  # noqa: BLE001
                    browser_launches_total.labels(outcome="failure").inc()
                    attempts_left -= 1
                    logger.warning("browser: launch failed: %s", exc)
                    if not attempts_left:
                        logger.error("browser: giving up after %d launch attempts", self.retries)
                        return False
                    await self._cleanup_sessions()
                    continue
                browser_launches_total.labels(outcome="success").inc()
                self._browser = browser
                return True
            return False

    async def require(self) -> None:
        """Like :meth:`ensure` but raise :class:`ResourceUnavailableError` on failure."""
        if not await self.ensure():
            raise ResourceUnavailableError(self.retries)

    async def _cleanup_sessions(self) -> None:
        try:
            sessions = await self.backend.list_sessions()
        except Exception as exc:  # noqa: BLE001
            logger.error("browser: failed to list sessions for cleanup: %s", exc)
            return
        logger.info("browser: cleaning up %d existing sessions", len(sessions))
        for session_id in sessions:
            try:
                await self.backend.close_session(session_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("browser: failed to close session %s: %s", session_id, exc)

    @asynccontextmanager
    async def page(self, **options: Any) -> AsyncIterator[Page]:
        """Open a page on the shared browser and close it on every exit path.

        Keyword options are forwarded to ``Browser.new_page`` (for example
        ``user_agent``).

        Raises:
            ResourceUnavailableError: If no live browser can be established.
        """
        if self._browser is None:
            await self.require()
        page = await self._browser.new_page(**options)
        try:
            yield page
        finally:
            try:
                await page.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("browser: failed to close page: %s", exc)

    async def close(self) -> None:
        """Close the current handle, if any.  Failures are logged, not raised."""
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
            logger.info("browser: closed shared browser")
        except Exception as exc:  # noqa: BLE001
            logger.warning("browser: failed to close browser: %s", exc)
