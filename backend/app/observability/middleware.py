from __future__ import annotations

import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import get_logger
from .metrics import METRICS_PATH, _route_template

logger = get_logger("request")

# Scraped by Prometheus and the orchestrator every few seconds.
ROUTINE_PATHS = frozenset({METRICS_PATH, "/api/v1/health", "/api/v1/health/ready"})


def _log_level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.WARNING
    if path in ROUTINE_PATHS:
        return logging.DEBUG
    return logging.INFO


class TraceLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request, carrying trace_id/span_id from the logging factory.

    A chat answer is streamed, so its line is written when the headers go out
    and `elapsed_ms` covers retrieval plus the wait for the first token.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        start = time.perf_counter()
        response = await call_next(request)
        content_type = response.headers.get("content-type", "")
        logger.log(
            _log_level_for(request.url.path, response.status_code),
            "Response started" if content_type.startswith("text/plain") else "Request handled",
            extra={
                "method": request.method,
                "route": _route_template(request),
                "status_code": response.status_code,
                "content_type": content_type,
                "client": request.client.host if request.client else None,
                "elapsed_ms": round((time.perf_counter() - start) * 1000, 1),
            },
        )
        return response
