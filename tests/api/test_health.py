from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.db import engine as db


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # No DATABASE_URL in tests: the in-memory fetcher is in use
    assert data["checks"]["database"] == "not_configured"


def test_ready_returns_200_without_database(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200


def test_unreachable_database_degrades_health_and_readiness(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _down() -> bool:
        return False

    monkeypatch.setattr(db, "engine", object())
    monkeypatch.setattr(db, "ping_database", _down)

    health = client.get("/health")
    ready = client.get("/ready")

    assert health.status_code == 200
    assert health.json() == {"status": "degraded", "checks": {"database": "degraded"}}
    assert ready.status_code == 503


def test_reachable_database_is_ok(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _up() -> bool:
        return True

    monkeypatch.setattr(db, "engine", object())
    monkeypatch.setattr(db, "ping_database", _up)

    assert client.get("/health").json()["checks"]["database"] == "ok"
    assert client.get("/ready").status_code == 200
