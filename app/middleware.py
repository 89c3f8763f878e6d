# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
HTTP Middleware: request correlation and Prometheus metrics.

Endpoint labels use the matched route template, so a magic token in
``/respond/{token}`` never becomes a label value.
"""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import request_id_var
from app.metrics.prometheus import HTTP_ERRORS, REQUEST_COUNT, REQUEST_LATENCY, SLACK_RETRIES

SKIP_PATHS: tuple[str, ...] = (
    "/health", "/health/ready", "/metrics", "/openapi.json", "/docs", "/redoc",
)
UNMATCHED = "unmatched"


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or mint X-Request-ID and expose it to log records."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Request count, latency and errors per route; Slack redeliveries by reason."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        path = request.url.path
        if path in SKIP_PATHS:
            return response

        endpoint = route_template(request)
        status = str(response.status_code)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=status).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(duration)
        if response.status_code >= 400:
            HTTP_ERRORS.labels(method=request.method, endpoint=endpoint, status=status).inc()

        if path.startswith("/slack/") and request.headers.get("X-Slack-Retry-Num"):
            SLACK_RETRIES.labels(
                reason=request.headers.get("X-Slack-Retry-Reason", "unknown"),
            ).inc()
        return response
