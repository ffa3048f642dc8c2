"""PostgreSQL implementation of RecordFetcher."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Collection
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import (
    CourseRow,
    EnrollmentRow,
    LessonRow,
    PaymentTransactionRow,
    StudentLessonProgressRow,
)
from app.models.analytics import TimeWindow
from app.models.course import CourseInfo
from app.models.enrollment import Enrollment
from app.models.progress import LessonProgress
from app.models.transaction import Transaction
from app.repos.records_repo import DataUnavailable

logger = logging.getLogger(__name__)


def _uuids(ids: Collection[str]) -> list[uuid.UUID]:
    # Ids that are not UUIDs cannot match any row.
    out = []
    for raw in ids:
        try:
            out.append(uuid.UUID(str(raw)))
        except ValueError:
            continue
    return out


def _str(value: Any) -> str:
    return "" if value is None else str(value)


class PgRecordFetcher:
    """Satisfies the RecordFetcher Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _all(self, query: str, stmt: Select) -> list[Any]:
        try:
            result = await self._session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            logger.exception("Record fetch failed: %s", query)
            raise DataUnavailable(query, exc) from exc
        return list(result.scalars().all())

    async def fetch_courses(self, instructor_id: str | None) -> list[CourseInfo]:
        stmt = select(CourseRow)
        if instructor_id is not None:
            ids = _uuids([instructor_id])
            if not ids:
                return []
            stmt = stmt.where(CourseRow.instructor_id == ids[0])
        rows = await self._all("fetch_courses", stmt)
        return [_row_to_course(r) for r in rows]

    async def fetch_course_prices(self, course_ids: Collection[str]) -> list[CourseInfo]:
        ids = _uuids(course_ids)
        if not ids:
            return []
        stmt = select(CourseRow).where(CourseRow.id.in_(ids))
        rows = await self._all("fetch_course_prices", stmt)
        return [_row_to_course(r) for r in rows]

    async def fetch_enrollments(
        self,
        course_ids: Collection[str] | None,
        window: TimeWindow | None,
        student_ids: Collection[str] | None = None,
    ) -> list[Enrollment]:
        stmt = select(EnrollmentRow)
        if course_ids is not None:
            ids = _uuids(course_ids)
            if not ids:
                return []
            stmt = stmt.where(EnrollmentRow.course_id.in_(ids))
        if student_ids is not None:
            stmt = stmt.where(EnrollmentRow.student_id.in_(_uuids(student_ids)))
        if window is not None:
            stmt = stmt.where(
                EnrollmentRow.enrollment_date >= window.start,
                EnrollmentRow.enrollment_date < window.end,
            )
        rows = await self._all("fetch_enrollments", stmt)
        return [
            Enrollment(
                student_id=_str(r.student_id),
                course_id=_str(r.course_id),
                enrollment_date=r.enrollment_date,
                progress=r.progress,
                completed=bool(r.completed),
            )
            for r in rows
        ]

    async def fetch_lesson_progress(
        self,
        student_ids: Collection[str] | None,
        window: TimeWindow | None,
        course_ids: Collection[str] | None = None,
    ) -> list[LessonProgress]:
        stmt = select(StudentLessonProgressRow)
        if student_ids is not None:
            stmt = stmt.where(
                StudentLessonProgressRow.student_id.in_(_uuids(student_ids))
            )
        if course_ids is not None:
            stmt = stmt.where(StudentLessonProgressRow.course_id.in_(_uuids(course_ids)))
        if window is not None:
            stmt = stmt.where(
                StudentLessonProgressRow.last_accessed >= window.start,
                StudentLessonProgressRow.last_accessed < window.end,
            )
        rows = await self._all("fetch_lesson_progress", stmt)
        return [
            LessonProgress(
                student_id=_str(r.student_id),
                course_id=_str(r.course_id),
                lesson_id=_str(r.lesson_id),
                completed=bool(r.completed),
                last_accessed=r.last_accessed,
            )
            for r in rows
        ]

    async def fetch_transactions(
        self,
        course_ids: Collection[str],
        window: TimeWindow | None,
        statuses: Collection[str],
    ) -> list[Transaction]:
        ids = _uuids(course_ids)
        if not ids or not statuses:
            return []
        stmt = (
            select(PaymentTransactionRow)
            .where(PaymentTransactionRow.course_id.in_(ids))
            .where(PaymentTransactionRow.status.in_(list(statuses)))
            .order_by(PaymentTransactionRow.created_at.desc())
        )
        if window is not None:
            stmt = stmt.where(
                PaymentTransactionRow.created_at >= window.start,
                PaymentTransactionRow.created_at < window.end,
            )
        rows = await self._all("fetch_transactions", stmt)
        return [
            Transaction(
                id=_str(r.id),
                user_id=_str(r.user_id),
                course_id=_str(r.course_id) or None,
                amount=r.amount,
                status=r.status,
                created_at=r.created_at,
                currency_hint=r.currency,
                payment_method=r.payment_method,
            )
            for r in rows
        ]

    async def fetch_lesson_counts(self, course_ids: Collection[str]) -> dict[str, int]:
        ids = _uuids(course_ids)
        counts = {str(cid): 0 for cid in course_ids}
        if not ids:
            return counts
        stmt = (
            select(LessonRow.course_id, func.count(LessonRow.id))
            .where(LessonRow.course_id.in_(ids))
            .group_by(LessonRow.course_id)
        )
        try:
            result = await self._session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            logger.exception("Record fetch failed: fetch_lesson_counts")
            raise DataUnavailable("fetch_lesson_counts", exc) from exc
        for course_id, n in result.all():
            counts[str(course_id)] = int(n)
        return counts


def _row_to_course(row: CourseRow) -> CourseInfo:
    return CourseInfo(
        id=str(row.id),
        title=row.title or "",
        instructor_id=_str(row.instructor_id) or None,
        price=row.price,
        discounted_price=row.discounted_price,
    )
