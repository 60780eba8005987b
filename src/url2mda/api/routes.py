"""Conversion endpoint.

``GET /?url=<uri>[&subpages=true][&nocache=true][&llmFilter=true]``

Request flow:

1. Non-GET methods get 405; a missing ``url`` renders the help page.
2. Invalid URLs are rejected with 400 before any browser or cache use.
3. Unprivileged callers pass the admission rate check (429 otherwise).
4. Inside the idle-lifecycle scope the shared browser is ensured (500 when
   it cannot be established), then either the single page or the crawl is
   converted.
5. Successful bodies are annotated with front matter and directive blocks.

``Content-Type: application/json`` selects the JSON array response; anything
else gets plain text, or a JSON error object when a single page failed.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from url2mda import __version__
from url2mda.api.dependencies import (
    ServiceContainer,
    caller_identity,
    get_container,
    mode_flags,
    wants_json,
)
from url2mda.core.exceptions import InvalidIdentifierError
from url2mda.core.models import (
    RATE_LIMIT_SENTINEL,
    CallerIdentity,
    ConversionResult,
    ModeFlags,
    is_valid_url,
)
from url2mda.crawler import assemble_text, crawl_status
from url2mda.processing.annotate import annotate

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["conversion"])

BROWSER_UNAVAILABLE = "Could not start or connect to browser instance"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _templates(request: Request) -> Jinja2Templates:
    """Resolve the Jinja2Templates instance stored on the app by ``main.py``."""
    templates = getattr(request.app.state, "templates", None)
    if templates is None:
        raise RuntimeError("Templates not initialized. Ensure create_app() configured them.")
    return templates  # type: ignore[no-any-return]


def _annotate(results: list[ConversionResult]) -> None:
    for result in results:
        if not result.error:
            result.md = annotate(result.url, result.md)


def _error_status(result: ConversionResult) -> int:
    if result.rate_limited:
        return 429
    return result.status or 500


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@router.api_route("/", methods=_ALL_METHODS, response_model=None)
async def convert(
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> Response:
    """Convert ``url`` (and optionally its subpages) to annotated markdown.

    Every inbound request, including help-page and rejected ones, resets the
    browser idle counter.
    """
    async with container.lifecycle.track_request():
        return await _dispatch(request, container)


async def _dispatch(request: Request, container: ServiceContainer) -> Response:
    if request.method != "GET":
        return PlainTextResponse("Method not allowed", status_code=405)

    url = request.query_params.get("url")
    if not url:
        return _templates(request).TemplateResponse(
            request,
            "help.html",
            {
                "app_name": container.settings.app_name,
                "version": __version__,
                "max_links": container.settings.crawl_max_links,
            },
        )

    if not is_valid_url(url):
        logger.info("invalid_url", url=url)
        return JSONResponse({"error": str(InvalidIdentifierError(url))}, status_code=400)

    settings = container.settings
    caller = caller_identity(request, settings)
    flags = mode_flags(request)
    json_mode = wants_json(request)

    if not caller.privileged and not await container.rate_limiter.check(caller.ip):
        logger.warning("rate_limited", caller=caller.ip, url=url)
        return JSONResponse({"error": RATE_LIMIT_SENTINEL}, status_code=429)

    try:
        if not await container.handles.ensure():
            logger.error("browser_unavailable", url=url)
            return JSONResponse({"error": BROWSER_UNAVAILABLE}, status_code=500)
        if flags.crawl_linked:
            return await _crawl(container, url, flags, caller, json_mode)
        return await _single(container, url, flags, caller, json_mode)
    except Exception as exc:  # noqa: BLE001
        logger.exception("conversion_failed", url=url)
        return JSONResponse(
            {"error": "Internal server error", "message": f"{type(exc).__name__}: {exc}"},
            status_code=500,
        )


async def _single(
    container: ServiceContainer,
    url: str,
    flags: ModeFlags,
    caller: CallerIdentity,
    json_mode: bool,
) -> Response:
    result = await container.orchestrator.convert_one(url, flags, caller)
    _annotate([result])
    logger.info("conversion_complete", url=url, error=result.error, status=result.status)

    if json_mode:
        status = _error_status(result) if result.error else 200
        return JSONResponse([result.to_dict()], status_code=status)

    if result.error:
        return JSONResponse(
            {
                "error": result.md,
                "message": result.error_details or "Error processing page",
                "url": result.url,
            },
            status_code=_error_status(result),
        )
    return PlainTextResponse(result.md)


async def _crawl(
    container: ServiceContainer,
    url: str,
    flags: ModeFlags,
    caller: CallerIdentity,
    json_mode: bool,
) -> Response:
    results = await container.crawler.crawl(url, flags, caller)
    _annotate(results)
    status = crawl_status(results)
    logger.info(
        "crawl_complete",
        url=url,
        pages=len(results),
        failed=sum(1 for r in results if r.error),
        status=status,
    )

    if json_mode:
        return JSONResponse([r.to_dict() for r in results], status_code=status)
    return PlainTextResponse(assemble_text(url, results), status_code=status)
