"""Dashboard analytics: fetch raw records, fold them, convert for display.

Each public coroutine is one dashboard metric.  The only suspension
points are the RecordFetcher calls; everything after the fetch is a
synchronous pure fold from app.services.aggregation.  Nothing is cached:
every call recomputes from the records it fetched.

DataUnavailable from the fetcher propagates unchanged.  An unsupported
display currency never fails a call; the report comes back in the base
currency with ``currency_fallback=True``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from app.core.config import SETTINGS
from app.core.metrics import (
    ANALYTICS_COMPUTATIONS,
    ANALYTICS_DURATION,
    CURRENCY_FALLBACKS,
    FETCH_FAILURES,
)
from app.models.analytics import (
    AggregationResult,
    CompletionReport,
    CourseProgressReport,
    CourseRevenue,
    EngagementPoint,
    EnrollmentReport,
    PayoutReport,
    PeriodDelta,
    RecentTransaction,
    ResolvedPeriod,
    RevenueReport,
    Scope,
    SeriesPoint,
    StudentStatistics,
)
from app.models.course import CourseInfo
from app.models.transaction import REALIZED_STATUSES, Transaction
from app.repos.records_repo import DataUnavailable, RecordFetcher
from app.services import aggregation, time_windows
from app.services.aggregation import MalformedRecord, require
from app.services.currency import CurrencyConverter, quantize_money
from app.services.normalizer import normalize, was_repaired

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RECENT_TRANSACTIONS_LIMIT = 10
MINUTES_PER_LESSON = 15
UNKNOWN_METHOD = "Other"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class _RevenueFold:
    result: AggregationResult
    by_course: dict[str, Decimal]  # course id -> base-currency amount
    recent: tuple[tuple[Transaction, Decimal, CourseInfo], ...]
    repaired_count: int = 0


class AnalyticsService:
    def __init__(
        self,
        fetcher: RecordFetcher,
        *,
        clock: Clock = utc_now,
        converter: CurrencyConverter | None = None,
        commission_percent: Decimal | None = None,
        epoch: date | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock
        self._converter = converter or CurrencyConverter()
        self._commission_percent = (
            SETTINGS.commission_percent
            if commission_percent is None
            else commission_percent
        )
        self._epoch = epoch or SETTINGS.analytics_epoch

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _instrument(self, operation: str) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        except DataUnavailable as exc:
            FETCH_FAILURES.labels(query=exc.query).inc()
            logger.warning(
                "%s aborted: %s", operation, exc, extra={"operation": operation}
            )
            raise
        finally:
            ANALYTICS_DURATION.labels(operation=operation).observe(
                time.monotonic() - start
            )
        ANALYTICS_COMPUTATIONS.labels(operation=operation).inc()

    def _resolve(
        self, period: str, start: datetime | None, end: datetime | None
    ) -> ResolvedPeriod:
        return time_windows.resolve(
            period, self._clock(), epoch=self._epoch, start=start, end=end
        )

    async def _scope_courses(self, scope: Scope) -> tuple[list[str], dict[str, CourseInfo]]:
        """Course ids in scope and the metadata known for them.

        Explicit course ids stay in scope even without metadata, so their
        records surface as skipped instead of vanishing.
        """
        if scope.course_ids is not None:
            courses = await self._fetcher.fetch_course_prices(scope.course_ids)
            ids = list(dict.fromkeys(scope.course_ids))
        else:
            courses = await self._fetcher.fetch_courses(scope.instructor_id)
            ids = [c.id for c in courses]
        return ids, {c.id: c for c in courses}

    def _display_currency(self, requested: str) -> tuple[str, bool]:
        display, fell_back = self._converter.resolve_display(requested)
        if fell_back:
            CURRENCY_FALLBACKS.inc()
        return display, fell_back

    def _money(self, amount: Decimal, currency: str) -> Decimal:
        return self._converter.from_base(amount, currency)

    async def _revenue_fold(
        self, course_ids: list[str], courses: dict[str, CourseInfo], resolved: ResolvedPeriod
    ) -> _RevenueFold:
        if course_ids:
            fetched = await self._fetcher.fetch_transactions(
                course_ids, resolved.window, REALIZED_STATUSES
            )
        else:
            fetched = []
        realized = [t for t in fetched if t.is_realized]

        def course_of(tx: Transaction) -> CourseInfo:
            course = courses.get(require(tx.course_id, "course_id"))
            if course is None:
                raise MalformedRecord(f"unknown course {tx.course_id}")
            return course

        def amount_of(tx: Transaction) -> Decimal:
            return normalize(tx, course_of(tx))

        result = aggregation.aggregate(
            realized,
            resolved.buckets,
            timestamp=lambda tx: tx.created_at,
            value=amount_of,
            group_by=lambda tx: tx.payment_method or UNKNOWN_METHOD,
            record_type="transaction",
        )
        # Same records, same skips; reported once by the fold above.
        by_course = aggregation.aggregate(
            realized,
            resolved.buckets,
            timestamp=lambda tx: tx.created_at,
            value=amount_of,
            group_by=lambda tx: course_of(tx).id,
            record_type=None,
        ).breakdown

        recent = []
        for tx in realized:
            if tx.created_at is None:
                continue
            if time_windows.bucket_index(resolved.buckets, tx.created_at) is None:
                continue
            try:
                course = course_of(tx)
            except MalformedRecord:
                continue
            recent.append((tx, normalize(tx, course), course))
        recent.sort(key=lambda row: time_windows.as_aware(row[0].created_at), reverse=True)

        return _RevenueFold(
            result=result,
            by_course=by_course,
            recent=tuple(recent[:RECENT_TRANSACTIONS_LIMIT]),
            repaired_count=sum(1 for tx, _amount, _course in recent if was_repaired(tx)),
        )

    # ------------------------------------------------------------------
    # exposed operations
    # ------------------------------------------------------------------

    async def compute_revenue(
        self,
        scope: Scope,
        period: str,
        currency: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> RevenueReport:
        with self._instrument("revenue"):
            resolved = self._resolve(period, start, end)
            display, fell_back = self._display_currency(currency)
            course_ids, courses = await self._scope_courses(scope)
            fold = await self._revenue_fold(course_ids, courses, resolved)

            series = tuple(
                SeriesPoint(p.label, self._money(p.value, display))
                for p in fold.result.series
            )
            report = RevenueReport(
                period=resolved.period,
                currency=display,
                # Summed after conversion so the series always adds up to it.
                total=sum((p.value for p in series), Decimal("0.00")),
                series=series,
                by_method={
                    k: self._money(v, display) for k, v in fold.result.breakdown.items()
                },
                by_course=tuple(
                    CourseRevenue(
                        course_id=course_id,
                        title=courses[course_id].label,
                        amount=self._money(amount, display),
                    )
                    for course_id, amount in fold.by_course.items()
                ),
                transaction_count=fold.result.count,
                skipped_count=fold.result.skipped_count,
                currency_fallback=fell_back,
                recent_transactions=tuple(
                    RecentTransaction(
                        id=tx.id,
                        course_title=course.label,
                        amount=self._money(amount, display),
                        created_at=time_windows.as_aware(tx.created_at),
                        payment_method=tx.payment_method or UNKNOWN_METHOD,
                    )
                    for tx, amount, course in fold.recent
                ),
            )

        logger.info(
            "Computed revenue total=%s %s transactions=%d repaired=%d skipped=%d",
            report.total,
            report.currency,
            report.transaction_count,
            fold.repaired_count,
            report.skipped_count,
            extra={
                "operation": "revenue",
                "period": resolved.period,
                "currency": report.currency,
                "skipped": report.skipped_count,
            },
        )
        return report

    async def compute_completion(
        self,
        scope: Scope,
        period: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> CompletionReport:
        with self._instrument("completion"):
            resolved = self._resolve(period, start, end)
            course_ids, _courses = await self._scope_courses(scope)
            enrollments = (
                await self._fetcher.fetch_enrollments(course_ids, resolved.window)
                if course_ids
                else []
            )
            report = aggregation.completion_rate(enrollments)

        logger.info(
            "Computed completion rate=%d%% completed=%d total=%d",
            report.rate,
            report.completed_count,
            report.total_count,
            extra={
                "operation": "completion",
                "period": resolved.period,
                "skipped": report.skipped_count,
            },
        )
        return report

    async def compute_course_progress(
        self, student_id: str, course_id: str
    ) -> CourseProgressReport:
        with self._instrument("course_progress"):
            counts = await self._fetcher.fetch_lesson_counts([course_id])
            progress = await self._fetcher.fetch_lesson_progress(
                [student_id], None, [course_id]
            )
            report = aggregation.lesson_completion(
                progress,
                counts.get(course_id, 0),
                student_id=student_id,
                course_id=course_id,
            )
        logger.debug(
            "Course progress student=%s course=%s %d/%d",
            student_id,
            course_id,
            report.completed_lessons,
            report.total_lessons,
        )
        return report

    def compute_period_delta(self, series: Sequence[Decimal | int | float]) -> PeriodDelta:
        with self._instrument("period_delta"):
            return aggregation.period_delta(series)

    async def compute_enrollment_series(
        self,
        scope: Scope,
        period: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> EnrollmentReport:
        with self._instrument("enrollments"):
            resolved = self._resolve(period, start, end)
            course_ids, _courses = await self._scope_courses(scope)
            if course_ids:
                in_window = await self._fetcher.fetch_enrollments(
                    course_ids, resolved.window
                )
                # Growth counts everyone enrolled before each bucket ends.
                ever = (
                    in_window
                    if resolved.window is None
                    else await self._fetcher.fetch_enrollments(course_ids, None)
                )
            else:
                in_window, ever = [], []

            counts = aggregation.aggregate(
                in_window,
                resolved.buckets,
                timestamp=lambda e: e.enrollment_date,
                record_type="enrollment",
            )
            growth = aggregation.cumulative_distinct(
                ever,
                resolved.buckets,
                timestamp=lambda e: e.enrollment_date,
                key=lambda e: e.student_id,
                record_type="enrollment",
            )
            report = EnrollmentReport(
                period=resolved.period,
                total=counts.count,
                series=counts.series,
                cumulative_students=growth,
                skipped_count=counts.skipped_count,
            )

        logger.info(
            "Computed enrollments total=%d",
            report.total,
            extra={"operation": "enrollments", "period": resolved.period},
        )
        return report

    async def compute_engagement(
        self,
        scope: Scope,
        period: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[EngagementPoint, ...]:
        with self._instrument("engagement"):
            resolved = self._resolve(period, start, end)
            course_ids, _courses = await self._scope_courses(scope)
            if not course_ids:
                return aggregation.engagement_series([], [], resolved.buckets)
            activity = await self._fetcher.fetch_lesson_progress(
                None, resolved.window, course_ids
            )
            enrollments = await self._fetcher.fetch_enrollments(course_ids, None)
            points = aggregation.engagement_series(
                activity, enrollments, resolved.buckets
            )

        logger.info(
            "Computed engagement buckets=%d activity=%d",
            len(points),
            len(activity),
            extra={"operation": "engagement", "period": resolved.period},
        )
        return points

    async def compute_student_statistics(self, student_id: str) -> StudentStatistics:
        with self._instrument("student_statistics"):
            now = self._clock()
            enrollments = await self._fetcher.fetch_enrollments(
                None, None, student_ids=[student_id]
            )
            if not enrollments:
                return StudentStatistics(
                    enrolled_count=0,
                    completion_rate=0,
                    average_progress=0,
                    total_learning_minutes=0,
                    streak_days=0,
                )
            activity = await self._fetcher.fetch_lesson_progress([student_id], None)

            completion = aggregation.completion_rate(enrollments)
            completed_lessons = {
                (p.course_id, p.lesson_id) for p in activity if p.completed
            }
            stats = StudentStatistics(
                enrolled_count=completion.total_count,
                completion_rate=completion.rate,
                average_progress=aggregation.average_progress(enrollments),
                total_learning_minutes=MINUTES_PER_LESSON * len(completed_lessons),
                streak_days=aggregation.streak_days(activity, now),
            )

        logger.debug(
            "Student statistics student=%s enrolled=%d streak=%d",
            student_id,
            stats.enrolled_count,
            stats.streak_days,
        )
        return stats

    async def compute_instructor_payout(
        self,
        scope: Scope,
        period: str,
        currency: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PayoutReport:
        with self._instrument("payout"):
            resolved = self._resolve(period, start, end)
            display, fell_back = self._display_currency(currency)
            course_ids, courses = await self._scope_courses(scope)
            fold = await self._revenue_fold(course_ids, courses, resolved)

            gross = fold.result.total
            commission = quantize_money(gross * self._commission_percent / 100)
            converted_gross = self._money(gross, display)
            converted_commission = self._money(commission, display)
            report = PayoutReport(
                period=resolved.period,
                currency=display,
                gross=converted_gross,
                commission_percent=self._commission_percent,
                commission=converted_commission,
                net=converted_gross - converted_commission,
                currency_fallback=fell_back,
            )

        logger.info(
            "Computed payout gross=%s net=%s %s",
            report.gross,
            report.net,
            report.currency,
            extra={
                "operation": "payout",
                "period": resolved.period,
                "currency": report.currency,
            },
        )
        return report
