from __future__ import annotations

import time
from typing import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

REQUEST_COUNTER = Counter(
    "resume_chat_http_requests_total",
    "Total HTTP requests handled by the API",
    ["method", "route", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "resume_chat_http_request_latency_seconds",
    "Time until response headers are sent, in seconds (streamed bodies continue afterwards)",
    ["method", "route"],
)

METRICS_PATH = "/metrics"


def _route_template(request: Request) -> str:
    """Label by route template so unmatched paths collapse into one series."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match is Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Counts requests and header latency per route template.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        latency = time.perf_counter() - start

        route = _route_template(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            route=route,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(method=request.method, route=route).observe(latency)

        return response


metrics_router = APIRouter(tags=["metrics"])


@metrics_router.get(METRICS_PATH)
async def metrics() -> Response:
    """
    Prometheus metrics endpoint.
    """
    data: bytes = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
