"""Value types produced and consumed by the analytics layer.

None of these are persisted: every report is built fresh per request
and discarded after it is rendered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal

Period = Literal["day", "week", "month", "year", "all", "custom"]
PERIODS: tuple[str, ...] = ("day", "week", "month", "year", "all", "custom")


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True, slots=True)
class Bucket:
    label: str
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True, slots=True)
class ResolvedPeriod:
    period: str
    start: datetime
    end: datetime
    buckets: tuple[Bucket, ...]
    # None means "do not filter the underlying query" (period=all).
    window: TimeWindow | None


@dataclass(frozen=True, slots=True)
class Scope:
    """Which courses an aggregation is restricted to.

    ``course_ids`` wins when set; otherwise all courses of
    ``instructor_id``; both None means platform-wide.
    """

    instructor_id: str | None = None
    course_ids: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    label: str
    value: Decimal


@dataclass(frozen=True, slots=True)
class AggregationResult:
    total: Decimal
    series: tuple[SeriesPoint, ...]
    # Insertion order of first occurrence, not sorted.
    breakdown: dict[str, Decimal] = field(default_factory=dict)
    count: int = 0
    skipped_count: int = 0


# ---------------------------------------------------------------------------
# Reports returned by AnalyticsService
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RecentTransaction:
    id: str
    course_title: str
    amount: Decimal
    created_at: datetime
    payment_method: str


@dataclass(frozen=True, slots=True)
class CourseRevenue:
    course_id: str
    title: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class RevenueReport:
    period: str
    currency: str
    total: Decimal
    series: tuple[SeriesPoint, ...]
    by_method: dict[str, Decimal]
    by_course: tuple[CourseRevenue, ...]
    transaction_count: int
    skipped_count: int = 0
    currency_fallback: bool = False
    recent_transactions: tuple[RecentTransaction, ...] = ()


@dataclass(frozen=True, slots=True)
class CompletionReport:
    rate: int
    completed_count: int
    total_count: int
    discrepancy_count: int = 0
    skipped_count: int = 0


@dataclass(frozen=True, slots=True)
class CourseProgressReport:
    progress_percent: int
    completed_lessons: int
    total_lessons: int


@dataclass(frozen=True, slots=True)
class PeriodDelta:
    change_percent: int
    is_positive: bool


@dataclass(frozen=True, slots=True)
class EngagementPoint:
    label: str
    engagement: int
    completion: int


@dataclass(frozen=True, slots=True)
class EnrollmentReport:
    period: str
    total: int
    series: tuple[SeriesPoint, ...]
    cumulative_students: tuple[SeriesPoint, ...]
    skipped_count: int = 0


@dataclass(frozen=True, slots=True)
class StudentStatistics:
    enrolled_count: int
    completion_rate: int
    average_progress: int
    total_learning_minutes: int
    streak_days: int


@dataclass(frozen=True, slots=True)
class PayoutReport:
    period: str
    currency: str
    gross: Decimal
    commission_percent: Decimal
    commission: Decimal
    net: Decimal
    currency_fallback: bool = False
