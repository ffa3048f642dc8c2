"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behavior import the metric and update it at the point of action.
Values are scraped from ``GET /metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Analytics metrics (populated by AnalyticsService and the aggregation fold)
# ---------------------------------------------------------------------------

ANALYTICS_COMPUTATIONS = Counter(
    "analytics_computations_total",
    "Analytics metrics computed, by operation",
    ["operation"],  # revenue|completion|course_progress|period_delta|...
)

ANALYTICS_DURATION = Histogram(
    "analytics_computation_duration_seconds",
    "Wall time of one analytics computation including record fetches",
    ["operation"],
    # Dominated by fetch latency; the fold itself is sub-millisecond.
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

SKIPPED_RECORDS = Counter(
    "analytics_skipped_records_total",
    "Malformed or out-of-range records excluded from an aggregation",
    ["record_type"],  # enrollment|lesson_progress|transaction
)

CURRENCY_FALLBACKS = Counter(
    "analytics_currency_fallbacks_total",
    "Requests rendered in the base currency because the target was unsupported",
)

FETCH_FAILURES = Counter(
    "analytics_fetch_failures_total",
    "Record fetcher calls that raised DataUnavailable",
    ["query"],
)
