"""url2mda -- convert web resources into annotated markdown documents.

Sub-packages:
- ``config``     : environment-backed settings
- ``core``       : models, exceptions, logging, cache, rate limiting, metrics
- ``browser``    : shared Playwright browser handle and its idle lifecycle
- ``extractors`` : per-site extraction strategies and the URL router
- ``processing`` : LLM content filter and metadata annotation
- ``api``        : FastAPI application (``GET /?url=...``)
"""

__version__ = "0.1.0"
