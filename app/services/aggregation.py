"""Time-bucketed aggregation folds.

Every dashboard metric is a configuration of the same fold: pick a
timestamp, a value and optionally a grouping key per record, drop the
record into the half-open bucket containing its timestamp, and sum.

The folds are pure: no clock access, no I/O, inputs are never mutated,
and identical inputs give identical outputs.  A record that cannot be
read (missing timestamp, missing course reference) or that falls outside
every bucket is skipped and counted, never raised, so a partially broken
data set still renders.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import TypeVar

from app.core.metrics import SKIPPED_RECORDS
from app.models.analytics import (
    AggregationResult,
    Bucket,
    CompletionReport,
    CourseProgressReport,
    EngagementPoint,
    PeriodDelta,
    SeriesPoint,
)
from app.models.enrollment import Enrollment
from app.models.progress import LessonProgress
from app.services.time_windows import as_aware, bucket_index, start_of_day

logger = logging.getLogger(__name__)

R = TypeVar("R")

ZERO = Decimal("0")
ONE = Decimal("1")

# Each lesson-activity event in a bucket adds this much engagement, capped at 100.
ENGAGEMENT_PER_EVENT = 10
STREAK_WINDOW_DAYS = 7


class MalformedRecord(ValueError):
    """A single record failed validation; the fold skips it."""


def require(value: R | None, field: str) -> R:
    if value is None or value == "":
        raise MalformedRecord(f"missing {field}")
    return value


def round_half_up(value: Decimal) -> int:
    with localcontext() as ctx:
        # quantize needs every integer digit to fit the context precision
        ctx.prec = max(ctx.prec, value.adjusted() + 2)
        return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def percent(numerator: int | Decimal, denominator: int | Decimal) -> int:
    """``round(100 * numerator / denominator)``; 0 when the denominator is 0."""
    if not denominator:
        return 0
    return round_half_up(Decimal(100) * Decimal(numerator) / Decimal(denominator))


def _record_skips(record_type: str | None, skipped: int, reason: str) -> None:
    if skipped and record_type is not None:
        SKIPPED_RECORDS.labels(record_type=record_type).inc(skipped)
        logger.warning(
            "Skipped %d %s record(s): %s", skipped, record_type, reason
        )


# ---------------------------------------------------------------------------
# Generic bucketed fold
# ---------------------------------------------------------------------------


def aggregate(
    records: Iterable[R],
    buckets: Sequence[Bucket],
    *,
    timestamp: Callable[[R], datetime | None],
    value: Callable[[R], Decimal] = lambda _r: ONE,
    group_by: Callable[[R], str] | None = None,
    record_type: str | None = "record",
) -> AggregationResult:
    """Fold ``records`` into per-bucket sums.

    Args:
        records: any iterable; not mutated.
        buckets: contiguous, ordered half-open buckets.
        timestamp: instant used for bucket assignment.
        value: amount contributed by one record (default: count of 1).
        group_by: optional key for the breakdown mapping.  The breakdown
            keeps first-occurrence order; sort it yourself if needed.
        record_type: label for skip metrics and logs; None folds silently.

    ``total`` always equals the sum of the series: records outside every
    bucket count toward ``skipped_count`` instead of the total.
    """
    sums = [ZERO] * len(buckets)
    breakdown: dict[str, Decimal] = {}
    count = 0
    malformed = 0
    out_of_range = 0

    for record in records:
        try:
            ts = require(timestamp(record), "timestamp")
            amount = value(record)
            key = group_by(record) if group_by is not None else None
        except MalformedRecord:
            malformed += 1
            continue

        idx = bucket_index(buckets, ts)
        if idx is None:
            out_of_range += 1
            continue

        sums[idx] += amount
        count += 1
        if key is not None:
            breakdown[key] = breakdown.get(key, ZERO) + amount

    _record_skips(record_type, malformed, "malformed")
    _record_skips(record_type, out_of_range, "outside every bucket")

    return AggregationResult(
        total=sum(sums, ZERO),
        series=tuple(SeriesPoint(b.label, s) for b, s in zip(buckets, sums)),
        breakdown=breakdown,
        count=count,
        skipped_count=malformed + out_of_range,
    )


def cumulative_distinct(
    records: Iterable[R],
    buckets: Sequence[Bucket],
    *,
    timestamp: Callable[[R], datetime | None],
    key: Callable[[R], str],
    record_type: str = "record",
) -> tuple[SeriesPoint, ...]:
    """Running count of distinct keys seen up to the end of each bucket.

    Records before the first bucket count toward every point (they are
    part of the running total); malformed records are skipped.
    """
    firsts: dict[str, datetime] = {}
    malformed = 0
    for record in records:
        try:
            ts = as_aware(require(timestamp(record), "timestamp"))
            k = require(key(record), "key")
        except MalformedRecord:
            malformed += 1
            continue
        if k not in firsts or ts < firsts[k]:
            firsts[k] = ts
    _record_skips(record_type, malformed, "malformed")

    first_seen = sorted(firsts.values())
    points = []
    seen = 0
    for bucket in buckets:
        while seen < len(first_seen) and first_seen[seen] < bucket.end:
            seen += 1
        points.append(SeriesPoint(bucket.label, Decimal(seen)))
    return tuple(points)


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def _well_formed(enrollment: Enrollment) -> bool:
    try:
        require(enrollment.student_id, "student_id")
        require(enrollment.course_id, "course_id")
    except MalformedRecord:
        return False
    return True


def completion_rate(enrollments: Iterable[Enrollment]) -> CompletionReport:
    """Share of enrollments that are complete (flag OR progress >= 100)."""
    total = 0
    completed = 0
    discrepancies = 0
    malformed = 0

    for enrollment in enrollments:
        if not _well_formed(enrollment):
            malformed += 1
            continue
        total += 1
        if enrollment.is_complete:
            completed += 1
        if enrollment.has_discrepancy:
            discrepancies += 1

    _record_skips("enrollment", malformed, "malformed")
    if discrepancies:
        # Completion flag and stored progress disagree: likely an upstream
        # progress-tracking bug, reported rather than silently reconciled.
        logger.warning(
            "%d of %d enrollment(s) have completed flag and progress out of sync",
            discrepancies,
            total,
        )

    return CompletionReport(
        rate=percent(completed, total),
        completed_count=completed,
        total_count=total,
        discrepancy_count=discrepancies,
        skipped_count=malformed,
    )


def average_progress(enrollments: Iterable[Enrollment]) -> int:
    """Mean effective progress in whole percent over well-formed enrollments.

    Uses the same records as ``completion_rate``; malformed rows are left
    out silently since that fold already reports them.
    """
    progress = [e.effective_progress for e in enrollments if _well_formed(e)]
    return percent(sum(progress), 100 * len(progress))


def lesson_completion(
    progress: Iterable[LessonProgress],
    total_lessons: int,
    *,
    student_id: str,
    course_id: str,
) -> CourseProgressReport:
    """Completed lessons over total lessons for one (student, course) pair."""
    done = {
        p.lesson_id
        for p in progress
        if p.completed
        and p.lesson_id
        and p.student_id == student_id
        and p.course_id == course_id
    }
    completed = min(len(done), total_lessons) if total_lessons > 0 else 0
    return CourseProgressReport(
        progress_percent=percent(completed, total_lessons),
        completed_lessons=completed,
        total_lessons=max(total_lessons, 0),
    )


# ---------------------------------------------------------------------------
# Period-over-period change
# ---------------------------------------------------------------------------


def percentage_change(current: Decimal, previous: Decimal) -> int:
    """Relative change in whole percent.

    A zero baseline reports 100 for any growth and 0 otherwise.
    """
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up(Decimal(100) * (current - previous) / previous)


def period_delta(series: Sequence[Decimal | int | float]) -> PeriodDelta:
    """Change between the last two points of ``series``.

    Missing leading points count as zero.  Raises ``ValueError`` for NaN
    or infinite points.
    """
    values = [Decimal(str(v)) for v in series[-2:]]
    if not all(v.is_finite() for v in values):
        raise ValueError("series values must be finite")
    while len(values) < 2:
        values.insert(0, ZERO)
    change = percentage_change(values[1], values[0])
    return PeriodDelta(change_percent=change, is_positive=change >= 0)


# ---------------------------------------------------------------------------
# Engagement and activity
# ---------------------------------------------------------------------------


def engagement_series(
    activity: Sequence[LessonProgress],
    enrollments: Sequence[Enrollment],
    buckets: Sequence[Bucket],
) -> tuple[EngagementPoint, ...]:
    """Per-bucket engagement score and running completion rate.

    engagement = min(10 x lesson accesses in the bucket, 100); completion
    is the completion rate over enrollments that started before the
    bucket ends.
    """
    events = aggregate(
        activity,
        buckets,
        timestamp=lambda p: p.last_accessed,
        record_type="lesson_progress",
    )

    dated = []
    for e in enrollments:
        if e.enrollment_date is not None:
            dated.append((as_aware(e.enrollment_date), e.is_complete))
    dated.sort(key=lambda pair: pair[0])

    points = []
    seen = 0
    done = 0
    for bucket, point in zip(buckets, events.series):
        while seen < len(dated) and dated[seen][0] < bucket.end:
            done += dated[seen][1]
            seen += 1
        engagement = min(int(point.value) * ENGAGEMENT_PER_EVENT, 100)
        points.append(
            EngagementPoint(
                label=bucket.label,
                engagement=engagement,
                completion=percent(done, seen),
            )
        )
    return tuple(points)


def streak_days(
    activity: Iterable[LessonProgress],
    now: datetime,
    *,
    window_days: int = STREAK_WINDOW_DAYS,
) -> int:
    """Distinct calendar days with lesson activity in the trailing window.

    The window covers today and the ``window_days - 1`` days before it.
    """
    now = as_aware(now)
    floor = start_of_day(now) - timedelta(days=window_days - 1)
    days = set()
    for p in activity:
        if p.last_accessed is None:
            continue
        accessed = as_aware(p.last_accessed).astimezone(now.tzinfo)
        if floor <= accessed <= now:
            days.add(accessed.date())
    return min(len(days), window_days)
