from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from wikisearch.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by route template",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
SEARCH_QUERIES = Counter(
    "search_queries_total",
    "Search queries executed",
    ["scope"],
)
SEARCH_RESULTS = Histogram(
    "search_results",
    "Number of merged results per search",
    buckets=(0, 1, 5, 10, 20, 50, 100, 500, 1000),
)
REINDEX_DURATION = Histogram(
    "search_reindex_duration_seconds",
    "Duration of full search index rebuilds",
)


def observe_search(scope: str, total: int) -> None:
    if not settings.metrics_enabled:
        return
    SEARCH_QUERIES.labels(scope).inc()
    SEARCH_RESULTS.observe(total)


def _route_path(request: Request) -> str:
    """Route template such as ``/search/book/{book_id}``; raw path for unmatched requests."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled or request.url.path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        path = _route_path(request)
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(time.monotonic() - start)


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
