"""Prometheus middleware tests.

The default registry is global and counters never reset, so every
assertion compares a before/after delta.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_endpoint_label_is_the_route_template(client: TestClient, token: str) -> None:
    labels = {
        "method": "GET",
        "endpoint": "/v1/analytics/courses/{course_id}/progress",
        "status_code": "200",
    }
    before = _get_sample("http_requests_total", labels)
    client.get("/v1/analytics/courses/abc/progress", headers=auth(token))
    client.get("/v1/analytics/courses/xyz/progress", headers=auth(token))
    assert _get_sample("http_requests_total", labels) - before == 2


def test_unknown_paths_share_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/no/such/page")
    client.get("/another/missing/page")
    assert _get_sample("http_requests_total", labels) - before == 2


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "analytics_computations_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
