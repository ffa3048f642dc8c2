from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.db.engine import async_session_factory
from app.models.principal import Principal
from app.repos.pg_records_repo import PgRecordFetcher
from app.repos.records_repo import InMemoryRecordFetcher, RecordFetcher
from app.services import token_service
from app.services.analytics_service import AnalyticsService, Clock, utc_now

logger = logging.getLogger(__name__)

# Tokens are issued by the platform auth service; this API only verifies them.
bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Module-level singleton, used when no DATABASE_URL is configured
# ---------------------------------------------------------------------------

in_memory_fetcher = InMemoryRecordFetcher()


def require_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"admin", "instructor"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


def get_clock() -> Clock:
    """Time source for period resolution; tests override it."""
    return utc_now


async def get_record_fetcher() -> AsyncGenerator[RecordFetcher, None]:
    """Postgres fetcher on a request-scoped session, or the in-memory one."""
    if async_session_factory is None:
        yield in_memory_fetcher
        return
    async with async_session_factory() as session:
        try:
            yield PgRecordFetcher(session)
        finally:
            await session.rollback()


def get_analytics_service(
    fetcher: Annotated[RecordFetcher, Depends(get_record_fetcher)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> AnalyticsService:
    return AnalyticsService(fetcher, clock=clock)
