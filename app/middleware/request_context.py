"""Request IDs for log correlation.

Dashboard pages fire several analytics calls at once; the request ID
ties each call's fetch, fold and summary log lines together.  It lives
in a ContextVar because concurrent requests share the event-loop thread.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_INBOUND_ID_LEN = 128

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Copies the current request ID onto every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Installed on the root logger so every module's records carry the ID.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


def _inbound_id(request: Request) -> str | None:
    raw = request.headers.get(REQUEST_ID_HEADER)
    if not raw or len(raw) > _MAX_INBOUND_ID_LEN or not raw.isprintable():
        return None
    return raw


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, times the request and logs one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = _inbound_id(request) or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        try:
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            logger.info(
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "request_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = req_id
        return response
