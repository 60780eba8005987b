"""Abstract base class for extraction strategies.

Every strategy turns one URL into a :class:`~url2mda.core.models.ConversionResult`.
Strategies never raise for expected failures: they return error-shaped
results instead, so a failing URL cannot take down its siblings in a fan-out.

Example::

    from url2mda.extractors.base import ExtractionContext, ExtractionStrategy

    class MyStrategy(ExtractionStrategy):
        name = "MySite"
        ttl = 600

        async def fetch(self, url, ctx): ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

import httpx

from url2mda.browser.handle import BrowserHandleManager
from url2mda.config.settings import Settings
from url2mda.core.cache import CacheAside
from url2mda.core.models import ConversionResult


@dataclass
class ExtractionContext:
    """Shared collaborators handed to every strategy call.

    Attributes:
        handles: The shared browser handle.
        http_client: Client for direct API calls.
        cache: Cache for strategies that manage their own entries.
        settings: Application settings.
        bypass_cache: ``nocache=true`` was requested.
    """

    handles: BrowserHandleManager
    http_client: httpx.AsyncClient
    cache: CacheAside
    settings: Settings
    bypass_cache: bool = False


class ExtractionStrategy(ABC):
    """Base class for all extraction strategies.

    Class attributes:
        name: Cache namespace and metrics label (``"Default"``, ``"Reddit"``, ...).
        ttl: Cache lifetime of a successful result, in seconds.
        self_caching: ``True`` when the strategy reads and writes its own
            cache entries; the orchestrator then calls it directly instead
            of going through the shared cache layer.
    """

    name: ClassVar[str] = ""
    ttl: ClassVar[int] = 3600
    self_caching: ClassVar[bool] = False

    @abstractmethod
    async def fetch(self, url: str, ctx: ExtractionContext) -> ConversionResult:
        """Extract markdown for *url*.

        Args:
            url: The absolute http(s) URL to convert.
            ctx: Shared collaborators for this request.

        Returns:
            A :class:`ConversionResult`.  Failures are reported through
            ``error``/``status`` rather than raised.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
