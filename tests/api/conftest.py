"""Fixtures for the HTTP layer.

container   : ServiceContainer wired from fakes (FakeBackend, in-memory
              cache, rate limiter and idle state).
client      : httpx.AsyncClient against ``create_app(container)``.

The lifespan is not run by ``ASGITransport``; ``create_app`` stores an
injected container on ``app.state`` directly.
"""

from __future__ import annotations

from typing import AsyncGenerator

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from url2mda.api.dependencies import ServiceContainer
from url2mda.api.main import create_app
from url2mda.browser.lifecycle import InMemoryIdleStateStore
from url2mda.core.cache import MemoryKeyValueStore
from url2mda.core.rate_limiter import MemoryRateLimiter, RateLimitConfig

from tests.fakes import FakeBackend, make_settings


@pytest_asyncio.fixture
async def container() -> AsyncGenerator[ServiceContainer, None]:
    settings = make_settings(rate_limit_requests=100)
    http_client = httpx.AsyncClient()
    services = ServiceContainer.assemble(
        settings,
        http_client=http_client,
        store=MemoryKeyValueStore(),
        rate_limiter=MemoryRateLimiter(RateLimitConfig(requests=100, window_seconds=60)),
        backend=FakeBackend(),
        idle_store=InMemoryIdleStateStore(),
    )
    yield services
    await services.aclose()


@pytest_asyncio.fixture
async def client(container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
