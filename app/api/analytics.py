"""Dashboard analytics endpoints.

Instructors see their own courses only.  Admins may pass
``instructor_id`` or omit it for platform-wide figures.  Every other
authenticated user can read their own progress and statistics.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from app.api.dependencies import (
    get_analytics_service,
    get_clock,
    require_any_role,
    require_user,
)
from app.models.analytics import Period, Scope, SeriesPoint
from app.models.principal import ADMIN, INSTRUCTOR, Principal
from app.repos.records_repo import DataUnavailable
from app.services import time_windows
from app.services.analytics_service import AnalyticsService, Clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])

RETRY_AFTER_SECONDS = 30

# Decimals go over the wire as JSON numbers.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SeriesPointOut(_CamelModel):
    label: str
    value: Money


class RecentTransactionOut(_CamelModel):
    id: str
    course_title: str
    amount: Money
    created_at: datetime
    payment_method: str


class CourseRevenueOut(_CamelModel):
    course_id: str
    title: str
    amount: Money


class RevenueOut(_CamelModel):
    period: str
    currency: str
    total: Money
    series: list[SeriesPointOut]
    by_method: dict[str, Money]
    by_course: list[CourseRevenueOut]
    transaction_count: int
    skipped_count: int
    currency_fallback: bool
    recent_transactions: list[RecentTransactionOut]


class CompletionOut(_CamelModel):
    rate: int
    completed_count: int
    total_count: int
    discrepancy_count: int
    skipped_count: int


class EnrollmentsOut(_CamelModel):
    period: str
    total: int
    series: list[SeriesPointOut]
    cumulative_students: list[SeriesPointOut]
    skipped_count: int


class EngagementPointOut(_CamelModel):
    label: str
    engagement: int
    completion: int


class PayoutOut(_CamelModel):
    period: str
    currency: str
    gross: Money
    commission_percent: Money
    commission: Money
    net: Money
    currency_fallback: bool


class CourseProgressOut(_CamelModel):
    progress_percent: int
    completed_lessons: int
    total_lessons: int


class StudentStatisticsOut(_CamelModel):
    enrolled_count: int
    completion_rate: int
    average_progress: int
    total_learning_minutes: int
    streak_days: int


class DeltaIn(BaseModel):
    series: list[Decimal] = Field(default_factory=list)


class DeltaOut(_CamelModel):
    change_percent: int
    is_positive: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _unavailable(exc: DataUnavailable) -> HTTPException:
    logger.warning("Analytics unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Analytics data is temporarily unavailable",
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def _invalid(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail=str(exc),
    )


def _scope_for(principal: Principal, instructor_id: str | None) -> Scope:
    if principal.is_platform_admin():
        return Scope(instructor_id=instructor_id)
    if instructor_id is not None and instructor_id != principal.user_id:
        logger.warning(
            "Access denied: user=%s requested instructor=%s",
            principal.user_id,
            instructor_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view analytics for your own courses",
        )
    return Scope(instructor_id=principal.user_id)


def _range(
    period: str,
    start: datetime | None,
    end: datetime | None,
    days: int | None,
    clock: Clock,
) -> tuple[str, datetime | None, datetime | None]:
    """``days`` turns any request into a rolling custom range ending today."""
    if days is None:
        return period, start, end
    try:
        rolling = time_windows.rolling_days(clock(), days)
    except ValueError as exc:
        raise _invalid(exc) from None
    return "custom", rolling.start, rolling.end


def _points(series: tuple[SeriesPoint, ...]) -> list[SeriesPointOut]:
    return [SeriesPointOut(label=p.label, value=p.value) for p in series]


_Staff = Annotated[Principal, Depends(require_any_role({ADMIN, INSTRUCTOR}))]
_Service = Annotated[AnalyticsService, Depends(get_analytics_service)]
_Clock = Annotated[Clock, Depends(get_clock)]
_Days = Annotated[int | None, Query(ge=1, le=time_windows.MAX_CUSTOM_DAYS)]


# ---------------------------------------------------------------------------
# Instructor / admin dashboards
# ---------------------------------------------------------------------------


@router.get("/revenue", response_model=RevenueOut)
async def get_revenue(
    principal: _Staff,
    service: _Service,
    clock: _Clock,
    period: Period = "month",
    currency: str = "USD",
    start: datetime | None = None,
    end: datetime | None = None,
    days: _Days = None,
    instructor_id: str | None = None,
) -> RevenueOut:
    scope = _scope_for(principal, instructor_id)
    period, start, end = _range(period, start, end, days, clock)
    try:
        report = await service.compute_revenue(
            scope, period, currency, start=start, end=end
        )
    except DataUnavailable as exc:
        raise _unavailable(exc) from None
    except ValueError as exc:
        raise _invalid(exc) from None

    return RevenueOut(
        period=report.period,
        currency=report.currency,
        total=report.total,
        series=_points(report.series),
        by_method=report.by_method,
        by_course=[
            CourseRevenueOut(course_id=c.course_id, title=c.title, amount=c.amount)
            for c in report.by_course
        ],
        transaction_count=report.transaction_count,
        skipped_count=report.skipped_count,
        currency_fallback=report.currency_fallback,
        recent_transactions=[
            RecentTransactionOut(
                id=t.id,
                course_title=t.course_title,
                amount=t.amount,
                created_at=t.created_at,
                payment_method=t.payment_method,
            )
            for t in report.recent_transactions
        ],
    )


@router.get("/completion", response_model=CompletionOut)
async def get_completion(
    principal: _Staff,
    service: _Service,
    clock: _Clock,
    period: Period = "month",
    start: datetime | None = None,
    end: datetime | None = None,
    days: _Days = None,
    instructor_id: str | None = None,
) -> CompletionOut:
    scope = _scope_for(principal, instructor_id)
    period, start, end = _range(period, start, end, days, clock)
    try:
        report = await service.compute_completion(scope, period, start=start, end=end)
    except DataUnavailable as exc:
        raise _unavailable(exc) from None
    except ValueError as exc:
        raise _invalid(exc) from None

    return CompletionOut(
        rate=report.rate,
        completed_count=report.completed_count,
        total_count=report.total_count,
        discrepancy_count=report.discrepancy_count,
        skipped_count=report.skipped_count,
    )


@router.get("/enrollments", response_model=EnrollmentsOut)
async def get_enrollments(
    principal: _Staff,
    service: _Service,
    clock: _Clock,
    period: Period = "month",
    start: datetime | None = None,
    end: datetime | None = None,
    days: _Days = None,
    instructor_id: str | None = None,
) -> EnrollmentsOut:
    scope = _scope_for(principal, instructor_id)
    period, start, end = _range(period, start, end, days, clock)
    try:
        report = await service.compute_enrollment_series(
            scope, period, start=start, end=end
        )
    except DataUnavailable as exc:
        raise _unavailable(exc) from None
    except ValueError as exc:
        raise _invalid(exc) from None

    return EnrollmentsOut(
        period=report.period,
        total=report.total,
        series=_points(report.series),
        cumulative_students=_points(report.cumulative_students),
        skipped_count=report.skipped_count,
    )


@router.get("/engagement", response_model=list[EngagementPointOut])
async def get_engagement(
    principal: _Staff,
    service: _Service,
    clock: _Clock,
    period: Period = "week",
    start: datetime | None = None,
    end: datetime | None = None,
    days: _Days = None,
    instructor_id: str | None = None,
) -> list[EngagementPointOut]:
    scope = _scope_for(principal, instructor_id)
    period, start, end = _range(period, start, end, days, clock)
    try:
        points = await service.compute_engagement(scope, period, start=start, end=end)
    except DataUnavailable as exc:
        raise _unavailable(exc) from None
    except ValueError as exc:
        raise _invalid(exc) from None

    return [
        EngagementPointOut(label=p.label, engagement=p.engagement, completion=p.completion)
        for p in points
    ]


@router.get("/payouts", response_model=PayoutOut)
async def get_payouts(
    principal: _Staff,
    service: _Service,
    clock: _Clock,
    period: Period = "month",
    currency: str = "USD",
    start: datetime | None = None,
    end: datetime | None = None,
    days: _Days = None,
    instructor_id: str | None = None,
) -> PayoutOut:
    scope = _scope_for(principal, instructor_id)
    period, start, end = _range(period, start, end, days, clock)
    try:
        report = await service.compute_instructor_payout(
            scope, period, currency, start=start, end=end
        )
    except DataUnavailable as exc:
        raise _unavailable(exc) from None
    except ValueError as exc:
        raise _invalid(exc) from None

    return PayoutOut(
        period=report.period,
        currency=report.currency,
        gross=report.gross,
        commission_percent=report.commission_percent,
        commission=report.commission,
        net=report.net,
        currency_fallback=report.currency_fallback,
    )


# ---------------------------------------------------------------------------
# Student views
# ---------------------------------------------------------------------------


@router.get("/courses/{course_id}/progress", response_model=CourseProgressOut)
async def get_course_progress(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: _Service,
    student_id: str | None = None,
) -> CourseProgressOut:
    target = student_id or principal.user_id
    if target != principal.user_id and not principal.is_platform_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own progress",
        )
    try:
        report = await service.compute_course_progress(target, course_id)
    except DataUnavailable as exc:
        raise _unavailable(exc) from None

    return CourseProgressOut(
        progress_percent=report.progress_percent,
        completed_lessons=report.completed_lessons,
        total_lessons=report.total_lessons,
    )


@router.get("/students/me/statistics", response_model=StudentStatisticsOut)
async def get_my_statistics(
    principal: Annotated[Principal, Depends(require_user)],
    service: _Service,
) -> StudentStatisticsOut:
    try:
        stats = await service.compute_student_statistics(principal.user_id)
    except DataUnavailable as exc:
        raise _unavailable(exc) from None

    return StudentStatisticsOut(
        enrolled_count=stats.enrolled_count,
        completion_rate=stats.completion_rate,
        average_progress=stats.average_progress,
        total_learning_minutes=stats.total_learning_minutes,
        streak_days=stats.streak_days,
    )


@router.post("/delta", response_model=DeltaOut)
async def post_delta(
    body: DeltaIn,
    _principal: Annotated[Principal, Depends(require_user)],
    service: _Service,
) -> DeltaOut:
    try:
        delta = service.compute_period_delta(body.series)
    except ValueError as exc:
        raise _invalid(exc) from None
    except ArithmeticError:
        raise HTTPException(status_code=422, detail="series values out of range") from None
    return DeltaOut(change_percent=delta.change_percent, is_positive=delta.is_positive)
