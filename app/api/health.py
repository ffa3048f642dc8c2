"""Health and readiness endpoints.

/health (liveness): the process answers.  Always 200; ``status`` says
whether the record store is reachable.

/ready (readiness): 503 while a configured database is unreachable, so
the load balancer stops routing dashboards here without restarting the
container.  Without DATABASE_URL the in-memory fetcher is always ready.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from app.db import engine as db

router = APIRouter(tags=["health"])


async def _database_check() -> str:
    if db.engine is None:
        return "not_configured"
    return "ok" if await db.ping_database() else "degraded"


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Returns 200 even when degraded; a 503 here would make the
    orchestrator restart a process that is merely cut off from Postgres.
    """
    checks = {"database": await _database_check()}
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_check() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
