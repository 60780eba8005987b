"""FastAPI application factory and entry point.

Creates the application instance, registers the request logging middleware,
mounts the conversion router and the system endpoints, and configures the
Jinja2 template engine used by the help page.

Usage::

    # Development server (from project root)
    uvicorn url2mda.api.main:app --reload

    # Console script installed with the package
    url2mda
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from url2mda import __version__
from url2mda.api.dependencies import ServiceContainer, build_container
from url2mda.api.routes import router as conversion_router
from url2mda.config.settings import get_settings
from url2mda.core.logging_config import configure_logging, request_id_var
from url2mda.core.metrics import (
    get_metrics_response,
    http_request_duration_seconds,
    http_requests_total,
)

configure_logging("INFO")

logger = structlog.get_logger(__name__)

_PACKAGE_DIR = Path(__file__).parent
_TEMPLATES_DIR = _PACKAGE_DIR / "templates"


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        container: Pre-built collaborators.  When omitted the lifespan builds
            the production container from settings and closes it on shutdown;
            an injected container is left open for its owner to close.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = container.settings if container is not None else get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        owned = container is None
        services = build_container(settings) if owned else container
        application.state.container = services
        await services.lifecycle.load()
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            redis=bool(settings.redis_url),
            remote_browser=bool(settings.browser_cdp_url),
            log_level=settings.log_level,
        )
        try:
            yield
        finally:
            if owned:
                await services.aclose()
            logger.info("application_shutdown")

    application = FastAPI(
        title=settings.app_name,
        description="Converts web pages to markdown annotated with front matter and AI directives.",
        version=__version__,
        debug=settings.debug,
        redirect_slashes=False,
        lifespan=lifespan,
    )
    application.state.templates = Jinja2Templates(directory=_TEMPLATES_DIR)
    if container is not None:
        application.state.container = container

    # ---- Request logging middleware ----------------------------------------

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration and record HTTP metrics.

        Binds a unique ``request_id`` to the structlog context so that all log
        lines emitted while serving the request can be correlated.
        """
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed = time.perf_counter() - start
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )
            if settings.metrics_enabled:
                http_requests_total.labels(
                    method=request.method, path=request.url.path, status=str(status_code)
                ).inc()
                http_request_duration_seconds.labels(
                    method=request.method, path=request.url.path
                ).observe(elapsed)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- System endpoints ---------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status without any I/O."""
        return JSONResponse({"status": "ok"})

    if settings.metrics_enabled:

        @application.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            body, content_type = get_metrics_response()
            return Response(content=body, media_type=content_type)

    # ---- Conversion ---------------------------------------------------------

    application.include_router(conversion_router)

    return application


app = create_app()
"""The FastAPI application instance passed to Uvicorn."""


def run() -> None:
    """Console-script entry point: serve ``app`` with Uvicorn."""
    uvicorn.run("url2mda.api.main:app", host="0.0.0.0", port=8000)
