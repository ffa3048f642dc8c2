"""Transaction amount repair.

The payment gateway stores zero (or no) amount for some successful
payments.  Counting those as free would understate instructor revenue,
so a non-positive stored amount is replaced by the course's discounted
price, then its list price, then zero.

This heuristic cannot tell a malformed record from a genuinely free
enrollment: there is no "free" flag on either the transaction or the
course.
"""

from __future__ import annotations

from decimal import Decimal

from app.models.course import CourseInfo
from app.models.transaction import Transaction

ZERO = Decimal("0")


def normalize(transaction: Transaction, course: CourseInfo | None) -> Decimal:
    """Effective amount of ``transaction`` in the base currency."""
    amount = transaction.amount
    if amount is not None and amount > 0:
        return amount
    if course is None:
        return ZERO
    if course.discounted_price is not None and course.discounted_price > 0:
        return course.discounted_price
    if course.price is not None:
        return course.price
    return ZERO


def was_repaired(transaction: Transaction) -> bool:
    return transaction.amount is None or transaction.amount <= 0

