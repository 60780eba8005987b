"""Prometheus metrics for url2mda.

All metrics are module-level singletons registered on the default
``REGISTRY``.

Metrics defined here:

  conversions_total{strategy, outcome}
      Counter: per-URL conversions by strategy and outcome
      (success, error, rate_limited).

  cache_lookups_total{strategy, result}
      Counter: cache-aside lookups by strategy and result (hit, miss, bypass).

  browser_launches_total{outcome}
      Counter: browser launch attempts (success, failure).

  browser_idle_shutdowns_total
      Counter: browsers closed by the idle lifecycle timer.

  http_requests_total{method, path, status}
      Counter: HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram: HTTP request latency in seconds.

Usage::

    from url2mda.core.metrics import conversions_total
    conversions_total.labels(strategy="Reddit", outcome="success").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Conversion metrics
# ---------------------------------------------------------------------------

conversions_total: Counter = Counter(
    "conversions_total",
    "Per-URL conversions by extraction strategy and outcome.",
    labelnames=["strategy", "outcome"],
)

cache_lookups_total: Counter = Counter(
    "cache_lookups_total",
    "Cache-aside lookups by strategy and result.",
    labelnames=["strategy", "result"],
)

# ---------------------------------------------------------------------------
# Browser metrics
# ---------------------------------------------------------------------------

browser_launches_total: Counter = Counter(
    "browser_launches_total",
    "Browser launch attempts by outcome.",
    labelnames=["outcome"],
)

browser_idle_shutdowns_total: Counter = Counter(
    "browser_idle_shutdowns_total",
    "Browsers closed after the keep-alive threshold was reached.",
)

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in api/main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string).
    """
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # noqa: PLC0415

    return generate_latest(), CONTENT_TYPE_LATEST
