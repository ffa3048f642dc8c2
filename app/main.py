from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.analytics import router as analytics_router
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_db():
        yield


app = FastAPI(
    title="lms-analytics",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)

# Last-added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(analytics_router)

logger.info(
    "lms-analytics started  env=%s log_level=%s port=%d base_currency=%s fetcher=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.base_currency,
    "postgres" if SETTINGS.database_url else "in-memory",
)
