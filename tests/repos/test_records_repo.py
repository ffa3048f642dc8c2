from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.models.analytics import TimeWindow
from app.models.course import CourseInfo
from app.models.transaction import COMPLETED, PENDING, REALIZED_STATUSES
from app.repos.records_repo import DataUnavailable, InMemoryRecordFetcher
from tests.conftest import (
    INSTRUCTOR_ID,
    NOW,
    OTHER_INSTRUCTOR_ID,
    make_course,
    make_enrollment,
    make_progress,
    make_transaction,
)

WINDOW = TimeWindow(NOW - timedelta(days=1), NOW + timedelta(days=1))


@pytest.fixture
def store() -> InMemoryRecordFetcher:
    store = InMemoryRecordFetcher()
    store.add_course(make_course("c1"), lesson_ids=["l1", "l2", "l3"])
    store.add_course(make_course("c2", instructor_id=OTHER_INSTRUCTOR_ID))
    return store


def test_fetch_courses_by_instructor(store: InMemoryRecordFetcher) -> None:
    mine = asyncio.run(store.fetch_courses(INSTRUCTOR_ID))
    everyone = asyncio.run(store.fetch_courses(None))
    assert [c.id for c in mine] == ["c1"]
    assert {c.id for c in everyone} == {"c1", "c2"}


def test_fetch_course_prices_ignores_unknown_ids(store: InMemoryRecordFetcher) -> None:
    courses = asyncio.run(store.fetch_course_prices(["c2", "missing"]))
    assert [c.id for c in courses] == ["c2"]


def test_fetch_transactions_filters_course_status_and_window(
    store: InMemoryRecordFetcher,
) -> None:
    store.add_transaction(make_transaction("1", NOW, course_id="c1", tx_id="keep"))
    store.add_transaction(make_transaction("2", NOW, course_id="c2", tx_id="other-course"))
    store.add_transaction(make_transaction("3", NOW, course_id="c1", status=PENDING))
    store.add_transaction(
        make_transaction("4", NOW - timedelta(days=5), course_id="c1", tx_id="old")
    )
    store.add_transaction(make_transaction("5", None, course_id="c1", tx_id="undated"))

    windowed = asyncio.run(store.fetch_transactions(["c1"], WINDOW, REALIZED_STATUSES))
    unfiltered = asyncio.run(store.fetch_transactions(["c1"], None, {COMPLETED}))

    assert [t.id for t in windowed] == ["keep"]
    assert {t.id for t in unfiltered} == {"keep", "old", "undated"}


def test_window_is_half_open(store: InMemoryRecordFetcher) -> None:
    store.add_enrollment(make_enrollment("s1", WINDOW.start, course_id="c1"))
    store.add_enrollment(make_enrollment("s2", WINDOW.end, course_id="c1"))
    found = asyncio.run(store.fetch_enrollments(["c1"], WINDOW))
    assert [e.student_id for e in found] == ["s1"]


def test_fetch_enrollments_by_student_across_courses(store: InMemoryRecordFetcher) -> None:
    store.add_enrollment(make_enrollment("s1", NOW, course_id="c1"))
    store.add_enrollment(make_enrollment("s1", NOW, course_id="c2"))
    store.add_enrollment(make_enrollment("s2", NOW, course_id="c1"))
    found = asyncio.run(store.fetch_enrollments(None, None, student_ids=["s1"]))
    assert {e.course_id for e in found} == {"c1", "c2"}


def test_fetch_lesson_progress_filters(store: InMemoryRecordFetcher) -> None:
    store.add_lesson_progress(make_progress("l1", NOW, student_id="s1", course_id="c1"))
    store.add_lesson_progress(make_progress("l2", NOW, student_id="s2", course_id="c1"))
    store.add_lesson_progress(make_progress("l1", NOW, student_id="s1", course_id="c2"))

    by_student = asyncio.run(store.fetch_lesson_progress(["s1"], WINDOW))
    by_course = asyncio.run(store.fetch_lesson_progress(None, None, ["c1"]))

    assert len(by_student) == 2
    assert {p.student_id for p in by_course} == {"s1", "s2"}


def test_naive_timestamps_are_compared_as_utc(store: InMemoryRecordFetcher) -> None:
    store.add_enrollment(make_enrollment("s1", datetime(2024, 5, 15, 8), course_id="c1"))
    window = TimeWindow(
        datetime(2024, 5, 15, tzinfo=UTC), datetime(2024, 5, 16, tzinfo=UTC)
    )
    assert len(asyncio.run(store.fetch_enrollments(["c1"], window))) == 1


def test_fetch_lesson_counts(store: InMemoryRecordFetcher) -> None:
    counts = asyncio.run(store.fetch_lesson_counts(["c1", "c2", "missing"]))
    assert counts == {"c1": 3, "c2": 0, "missing": 0}


def test_fail_with_raises_data_unavailable(store: InMemoryRecordFetcher) -> None:
    store.fail_with = "connection refused"
    with pytest.raises(DataUnavailable) as exc_info:
        asyncio.run(store.fetch_transactions(["c1"], None, REALIZED_STATUSES))
    assert exc_info.value.query == "fetch_transactions"
    assert isinstance(exc_info.value.cause, ConnectionError)


def test_clear_resets_everything(store: InMemoryRecordFetcher) -> None:
    store.fail_with = "down"
    store.clear()
    assert asyncio.run(store.fetch_courses(None)) == []


def test_new_course_gets_a_generated_id(store: InMemoryRecordFetcher) -> None:
    course = CourseInfo.new(title="Statistics 101", instructor_id=INSTRUCTOR_ID)
    store.add_course(course, lesson_ids=["l1"])

    found = asyncio.run(store.fetch_course_prices([course.id]))

    assert found == [course]
    assert found[0].label == "Statistics 101"
