from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

PENDING = "pending"
COMPLETED = "completed"
SUCCESSFUL = "successful"
FAILED = "failed"

# Only these statuses are realized revenue.
REALIZED_STATUSES: frozenset[str] = frozenset({COMPLETED, SUCCESSFUL})


@dataclass(frozen=True, slots=True)
class Transaction:
    id: str
    user_id: str
    course_id: str | None
    amount: Decimal | None  # base currency; zero/None is a known data defect
    status: str  # pending|completed|successful|failed
    created_at: datetime | None
    currency_hint: str | None = None
    payment_method: str | None = None

    @property
    def is_realized(self) -> bool:
        return self.status in REALIZED_STATUSES
