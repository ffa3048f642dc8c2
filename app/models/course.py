from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class CourseInfo:
    """Read-only course metadata.

    Only used to normalize transaction amounts and to label breakdowns.
    Prices are in the base currency.
    """

    id: str
    title: str = ""
    instructor_id: str | None = None
    price: Decimal | None = None
    discounted_price: Decimal | None = None

    @staticmethod
    def new(
        *,
        title: str,
        instructor_id: str | None = None,
        price: Decimal | None = None,
        discounted_price: Decimal | None = None,
    ) -> CourseInfo:
        return CourseInfo(
            id=str(uuid4()),
            title=title,
            instructor_id=instructor_id,
            price=price,
            discounted_price=discounted_price,
        )

    @property
    def label(self) -> str:
        return self.title or self.id
