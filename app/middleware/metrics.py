"""Prometheus instrumentation for every HTTP request.

The endpoint label is the matched route template
(``/v1/analytics/courses/{course_id}/progress``), so per-course paths
do not explode label cardinality.  Unmatched paths share one label.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

UNMATCHED_ENDPOINT = "unmatched"


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or UNMATCHED_ENDPOINT


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Scrapes would otherwise inflate the request count.
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code: str | None = None

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            status_code = "500"
            raise
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            # The route is only known after routing ran inside call_next.
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code if status_code is not None else "500",
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
