from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime
from typing import Protocol

from app.models.analytics import TimeWindow
from app.models.course import CourseInfo
from app.models.enrollment import Enrollment
from app.models.progress import LessonProgress
from app.models.transaction import Transaction
from app.services.time_windows import as_aware


class DataUnavailable(Exception):
    """The backing store could not be reached.  Never retried here."""

    def __init__(self, query: str, cause: BaseException | None = None) -> None:
        super().__init__(f"record store unavailable during {query}")
        self.query = query
        self.cause = cause


class RecordFetcher(Protocol):
    """Read-only access to the platform's raw analytics rows.

    ``window=None`` and ``course_ids=None`` mean unfiltered.  Every
    method may raise DataUnavailable.
    """

    async def fetch_courses(self, instructor_id: str | None) -> list[CourseInfo]: ...

    async def fetch_course_prices(
        self, course_ids: Collection[str]
    ) -> list[CourseInfo]: ...

    async def fetch_enrollments(
        self,
        course_ids: Collection[str] | None,
        window: TimeWindow | None,
        student_ids: Collection[str] | None = None,
    ) -> list[Enrollment]: ...

    async def fetch_lesson_progress(
        self,
        student_ids: Collection[str] | None,
        window: TimeWindow | None,
        course_ids: Collection[str] | None = None,
    ) -> list[LessonProgress]: ...

    async def fetch_transactions(
        self,
        course_ids: Collection[str],
        window: TimeWindow | None,
        statuses: Collection[str],
    ) -> list[Transaction]: ...

    async def fetch_lesson_counts(
        self, course_ids: Collection[str]
    ) -> dict[str, int]: ...


def _in_window(instant: datetime | None, window: TimeWindow | None) -> bool:
    if window is None:
        return True
    # Rows without a timestamp cannot match a time filter.
    if instant is None:
        return False
    return window.contains(as_aware(instant))


class InMemoryRecordFetcher:
    """List-backed fetcher for development and tests.

    ``fail_with`` makes every call raise DataUnavailable, to exercise the
    unreachable-store path.
    """

    def __init__(self) -> None:
        self._courses: dict[str, CourseInfo] = {}
        self._lessons: dict[str, set[str]] = {}
        self._enrollments: list[Enrollment] = []
        self._progress: list[LessonProgress] = []
        self._transactions: list[Transaction] = []
        self.fail_with: str | None = None

    # --- seeding -------------------------------------------------------

    def add_course(self, course: CourseInfo, lesson_ids: Iterable[str] = ()) -> None:
        self._courses[course.id] = course
        self._lessons.setdefault(course.id, set()).update(lesson_ids)

    def add_enrollment(self, enrollment: Enrollment) -> None:
        self._enrollments.append(enrollment)

    def add_lesson_progress(self, progress: LessonProgress) -> None:
        self._progress.append(progress)

    def add_transaction(self, transaction: Transaction) -> None:
        self._transactions.append(transaction)

    def clear(self) -> None:
        self._courses.clear()
        self._lessons.clear()
        self._enrollments.clear()
        self._progress.clear()
        self._transactions.clear()
        self.fail_with = None

    def _check(self, query: str) -> None:
        if self.fail_with is not None:
            raise DataUnavailable(query, ConnectionError(self.fail_with))

    # --- RecordFetcher -------------------------------------------------

    async def fetch_courses(self, instructor_id: str | None) -> list[CourseInfo]:
        self._check("fetch_courses")
        return [
            c
            for c in self._courses.values()
            if instructor_id is None or c.instructor_id == instructor_id
        ]

    async def fetch_course_prices(self, course_ids: Collection[str]) -> list[CourseInfo]:
        self._check("fetch_course_prices")
        return [self._courses[cid] for cid in course_ids if cid in self._courses]

    async def fetch_enrollments(
        self,
        course_ids: Collection[str] | None,
        window: TimeWindow | None,
        student_ids: Collection[str] | None = None,
    ) -> list[Enrollment]:
        self._check("fetch_enrollments")
        return [
            e
            for e in self._enrollments
            if (course_ids is None or e.course_id in course_ids)
            and (student_ids is None or e.student_id in student_ids)
            and _in_window(e.enrollment_date, window)
        ]

    async def fetch_lesson_progress(
        self,
        student_ids: Collection[str] | None,
        window: TimeWindow | None,
        course_ids: Collection[str] | None = None,
    ) -> list[LessonProgress]:
        self._check("fetch_lesson_progress")
        return [
            p
            for p in self._progress
            if (student_ids is None or p.student_id in student_ids)
            and (course_ids is None or p.course_id in course_ids)
            and _in_window(p.last_accessed, window)
        ]

    async def fetch_transactions(
        self,
        course_ids: Collection[str],
        window: TimeWindow | None,
        statuses: Collection[str],
    ) -> list[Transaction]:
        self._check("fetch_transactions")
        return [
            t
            for t in self._transactions
            if t.course_id in course_ids
            and t.status in statuses
            and _in_window(t.created_at, window)
        ]

    async def fetch_lesson_counts(self, course_ids: Collection[str]) -> dict[str, int]:
        self._check("fetch_lesson_counts")
        return {cid: len(self._lessons.get(cid, ())) for cid in course_ids}
