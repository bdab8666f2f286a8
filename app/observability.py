"""Request id propagation and HTTP latency metrics."""

import time
import uuid

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

HTTP_REQUESTS = Counter(
    "omnibridge_http_requests_total",
    "HTTP requests",
    ["method", "route", "status"],
)
HTTP_LATENCY = Histogram(
    "omnibridge_http_request_seconds",
    "HTTP request latency",
    ["method", "route"],
)


def _route_label(request: Request) -> str:
    # Route templates keep the label set bounded.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            elapsed = time.perf_counter() - started
            route = _route_label(request)
            HTTP_REQUESTS.labels(method=request.method, route=route, status=str(status_code)).inc()
            HTTP_LATENCY.labels(method=request.method, route=route).observe(elapsed)
            logger.debug(
                "http_request method=%s path=%s status=%s duration_ms=%s request_id=%s",
                request.method,
                request.url.path,
                status_code,
                int(elapsed * 1000),
                request_id,
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
