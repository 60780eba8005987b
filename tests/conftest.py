"""Shared pytest fixtures for url2mda tests.

Fixture summary
---------------
settings        : Settings with test defaults (no Redis, no LLM key, short timeouts).
cache           : CacheAside over an in-process MemoryKeyValueStore.
fake_page       : Playwright ``Page`` stand-in (see ``tests/fakes.py``).
fake_backend    : RenderingBackend fake whose browser hands out ``fake_page``.
handles         : BrowserHandleManager over ``fake_backend``.
http_client     : Plain httpx.AsyncClient; pair with ``respx.mock``.
ctx             : ExtractionContext wired from the fixtures above.

No test needs a live browser, Redis or network access.
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set before application modules are imported so that Settings() sees them.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "BACKEND_SECURITY_TOKEN": "test-backend-token",
    "LOG_LEVEL": "WARNING",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)
for _unset in ("REDIS_URL", "LLM_API_KEY", "BROWSER_CDP_URL", "REDDIT_CLIENT_ID", "REDDIT_CLIENT_SECRET"):
    os.environ.pop(_unset, None)

from url2mda.browser.handle import BrowserHandleManager  # noqa: E402
from url2mda.config.settings import Settings, get_settings  # noqa: E402
from url2mda.core.cache import CacheAside, MemoryKeyValueStore  # noqa: E402
from url2mda.extractors.base import ExtractionContext  # noqa: E402

from tests.fakes import FakeBackend, make_page, make_settings  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def cache() -> CacheAside:
    return CacheAside(MemoryKeyValueStore())


@pytest.fixture
def fake_page() -> MagicMock:
    return make_page()


@pytest.fixture
def fake_backend(fake_page: MagicMock) -> FakeBackend:
    return FakeBackend(fake_page)


@pytest.fixture
def handles(fake_backend: FakeBackend) -> BrowserHandleManager:
    return BrowserHandleManager(fake_backend, retries=3)


@pytest_asyncio.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def ctx(
    handles: BrowserHandleManager,
    http_client: httpx.AsyncClient,
    cache: CacheAside,
    settings: Settings,
) -> ExtractionContext:
    return ExtractionContext(handles=handles, http_client=http_client, cache=cache, settings=settings)
