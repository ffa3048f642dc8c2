from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_clock, in_memory_fetcher
from app.main import app
from app.models.course import CourseInfo
from app.models.enrollment import Enrollment
from app.models.progress import LessonProgress
from app.models.transaction import COMPLETED, Transaction
from app.repos.records_repo import InMemoryRecordFetcher
from app.services import token_service
from app.services.currency import CurrencyConverter

# Wednesday 2024-05-15, 14:30 UTC.  Every test reads time from here.
NOW = datetime(2024, 5, 15, 14, 30, tzinfo=UTC)

INSTRUCTOR_ID = "instructor-1"
OTHER_INSTRUCTOR_ID = "instructor-2"

TEST_RATES = {
    "USD": Decimal("1"),
    "NGN": Decimal("1430"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
}


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def reset_fetcher() -> None:
    """Clear the in-memory record store between tests."""
    in_memory_fetcher.clear()


@pytest.fixture(autouse=True)
def pin_clock():
    """All HTTP requests resolve periods against NOW."""
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    yield
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def fetcher() -> InMemoryRecordFetcher:
    """The fetcher the API reads from when DATABASE_URL is unset."""
    return in_memory_fetcher


@pytest.fixture
def converter() -> CurrencyConverter:
    return CurrencyConverter(rates=TEST_RATES, base_currency="USD")


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with the default (student) role."""
    return mint_token()


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username=INSTRUCTOR_ID, roles=["instructor"])


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_course(
    course_id: str = "course-1",
    *,
    title: str = "Intro to Python",
    instructor_id: str | None = INSTRUCTOR_ID,
    price: str | None = "100.00",
    discounted_price: str | None = None,
) -> CourseInfo:
    return CourseInfo(
        id=course_id,
        title=title,
        instructor_id=instructor_id,
        price=Decimal(price) if price is not None else None,
        discounted_price=Decimal(discounted_price) if discounted_price else None,
    )


def make_transaction(
    amount: str | None,
    created_at: datetime | None,
    *,
    course_id: str | None = "course-1",
    status: str = COMPLETED,
    payment_method: str | None = "card",
    tx_id: str | None = None,
    user_id: str = "student-1",
) -> Transaction:
    return Transaction(
        id=tx_id or f"tx-{amount}-{created_at}",
        user_id=user_id,
        course_id=course_id,
        amount=Decimal(amount) if amount is not None else None,
        status=status,
        created_at=created_at,
        payment_method=payment_method,
    )


def make_enrollment(
    student_id: str,
    enrolled: datetime | None,
    *,
    course_id: str = "course-1",
    progress: int | None = 0,
    completed: bool | None = False,
) -> Enrollment:
    return Enrollment(
        student_id=student_id,
        course_id=course_id,
        enrollment_date=enrolled,
        progress=progress,
        completed=completed,
    )


def make_progress(
    lesson_id: str,
    accessed: datetime | None,
    *,
    student_id: str = "student-1",
    course_id: str = "course-1",
    completed: bool = True,
) -> LessonProgress:
    return LessonProgress(
        student_id=student_id,
        course_id=course_id,
        lesson_id=lesson_id,
        completed=completed,
        last_accessed=accessed,
    )
