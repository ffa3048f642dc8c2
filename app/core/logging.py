"""Logging configuration for the analytics service.

Two output modes share one stdout handler:

  _ContainerFormatter: single-line text for local development.
  _JsonFormatter:      one JSON object per line for log aggregation.

Set LOG_JSON=true to switch to JSON.  Context fields attached to a
LogRecord through ``extra=`` (request metadata from the middleware,
analytics labels from the service layer) become top-level JSON keys so
they can be filtered on directly.
"""

from __future__ import annotations

import json
import logging
import sys

# Loggers that are chatty at DEBUG and never useful below WARNING here.
_NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
    "asyncpg",
)


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    WARNING and above get a ``[filename:lineno]`` suffix.
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # .NNN goes before the +0000 offset
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter.

    Request fields come from RequestContextMiddleware; analytics fields
    come from AnalyticsService when it logs a computed metric.
    """

    _CONTEXT_FIELDS = (
        "request_id",
        "method",
        "path",
        "user_id",
        "status_code",
        "duration_ms",
        "operation",
        "period",
        "currency",
        "skipped",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Decimal amounts and datetimes fall through to str()
        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger.

    Args:
        level_name: debug/info/warning/error; unknown names fall back to info.
        json_format: emit JSON lines instead of text (LOG_JSON).
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
