"""Reporting-period resolution.

Turns a period selector plus an injected ``now`` into a concrete query
window and the ordered chart buckets inside it.  Every interval is
half-open ``[start, end)``: an instant exactly on a boundary belongs to
the later bucket.

Bucket boundaries are computed in the timezone carried by ``now``; a
naive ``now`` is read as UTC.
"""

from __future__ import annotations

import bisect
from collections.abc import Sequence
from datetime import UTC, date, datetime, time, timedelta

from app.models.analytics import PERIODS, Bucket, ResolvedPeriod, TimeWindow

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip

DAY_BUCKET_HOURS = 3
MONTH_WEEK_BUCKETS = 4
MAX_CUSTOM_DAYS = 366


def as_aware(instant: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant


def start_of_day(instant: datetime) -> datetime:
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def _hour_label(hour: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display}{suffix}"


def _first_of_next_month(first: datetime) -> datetime:
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def _day_buckets(midnight: datetime) -> tuple[Bucket, ...]:
    step = timedelta(hours=DAY_BUCKET_HOURS)
    return tuple(
        Bucket(
            label=_hour_label(i * DAY_BUCKET_HOURS),
            start=midnight + i * step,
            end=midnight + (i + 1) * step,
        )
        for i in range(24 // DAY_BUCKET_HOURS)
    )


def _week_buckets(first_day: datetime) -> tuple[Bucket, ...]:
    buckets = []
    for i in range(7):
        start = first_day + timedelta(days=i)
        buckets.append(
            Bucket(
                label=_WEEKDAYS[start.weekday()],
                start=start,
                end=start + timedelta(days=1),
            )
        )
    return tuple(buckets)


def _month_buckets(first: datetime) -> tuple[Bucket, ...]:
    # The trailing partial week folds into the last bucket.
    next_first = _first_of_next_month(first)
    buckets = []
    for i in range(MONTH_WEEK_BUCKETS):
        start = first + timedelta(days=7 * i)
        end = (
            next_first
            if i == MONTH_WEEK_BUCKETS - 1
            else first + timedelta(days=7 * (i + 1))
        )
        buckets.append(Bucket(label=f"Week {i + 1}", start=start, end=end))
    return tuple(buckets)


def _year_buckets(jan_first: datetime) -> tuple[Bucket, ...]:
    buckets = []
    start = jan_first
    for label in _MONTHS:
        end = _first_of_next_month(start)
        buckets.append(Bucket(label=label, start=start, end=end))
        start = end
    return tuple(buckets)


def _all_time_buckets(floor: datetime, now: datetime) -> tuple[Bucket, ...]:
    buckets = []
    start = floor
    for year in range(floor.year, now.year + 1):
        end = floor.replace(year=year + 1, month=1, day=1)
        buckets.append(Bucket(label=str(year), start=start, end=end))
        start = end
    return tuple(buckets)


def _daily_buckets(start: datetime, end: datetime) -> tuple[Bucket, ...]:
    buckets = []
    cursor = start
    while cursor < end:
        nxt = min(start_of_day(cursor) + timedelta(days=1), end)
        buckets.append(Bucket(label=cursor.date().isoformat(), start=cursor, end=nxt))
        cursor = nxt
    return tuple(buckets)


def resolve(
    period: str,
    now: datetime,
    *,
    epoch: date = date(2020, 1, 1),
    start: datetime | None = None,
    end: datetime | None = None,
) -> ResolvedPeriod:
    """Resolve ``period`` relative to ``now``.

    Args:
        period: day|week|month|year|all|custom.
        now: the caller's clock reading.
        epoch: floor for ``all``; records before it land in no bucket.
        start, end: required for ``custom``, ignored otherwise.

    Raises:
        ValueError: unknown period, or an invalid custom range.
    """
    if period not in PERIODS:
        raise ValueError(f"period must be one of {'|'.join(PERIODS)} (got {period!r})")

    now = as_aware(now)
    midnight = start_of_day(now)

    if period == "day":
        buckets = _day_buckets(midnight)
    elif period == "week":
        buckets = _week_buckets(midnight - timedelta(days=6))
    elif period == "month":
        buckets = _month_buckets(midnight.replace(day=1))
    elif period == "year":
        buckets = _year_buckets(midnight.replace(month=1, day=1))
    elif period == "all":
        floor = datetime.combine(epoch, time(), tzinfo=now.tzinfo)
        if floor > now:
            raise ValueError(f"epoch {epoch.isoformat()} is after now")
        return ResolvedPeriod(
            period=period,
            start=floor,
            end=now,
            buckets=_all_time_buckets(floor, now),
            window=None,
        )
    else:
        return resolve_custom(start, end)

    return ResolvedPeriod(
        period=period,
        start=buckets[0].start,
        end=buckets[-1].end,
        buckets=buckets,
        window=TimeWindow(buckets[0].start, buckets[-1].end),
    )


def resolve_custom(start: datetime | None, end: datetime | None) -> ResolvedPeriod:
    """Explicit ``[start, end)`` range bucketed by calendar day."""
    if start is None or end is None:
        raise ValueError("custom period requires both start and end")
    start, end = as_aware(start), as_aware(end)
    if start >= end:
        raise ValueError("custom period start must be before end")
    if end - start > timedelta(days=MAX_CUSTOM_DAYS):
        raise ValueError(f"custom period may span at most {MAX_CUSTOM_DAYS} days")

    return ResolvedPeriod(
        period="custom",
        start=start,
        end=end,
        buckets=_daily_buckets(start, end),
        window=TimeWindow(start, end),
    )


def rolling_days(now: datetime, days: int) -> ResolvedPeriod:
    """The last ``days`` calendar days, today included, one bucket each."""
    if days < 1:
        raise ValueError(f"days must be >= 1 (got {days})")
    tomorrow = start_of_day(as_aware(now)) + timedelta(days=1)
    return resolve_custom(tomorrow - timedelta(days=days), tomorrow)


def bucket_index(buckets: Sequence[Bucket], instant: datetime) -> int | None:
    """Index of the bucket containing ``instant``, or None if outside all.

    Buckets must be contiguous and ordered, as ``resolve`` produces them.
    """
    if not buckets:
        return None
    instant = as_aware(instant)
    starts = [b.start for b in buckets]
    idx = bisect.bisect_right(starts, instant) - 1
    if idx < 0 or not buckets[idx].contains(instant):
        return None
    return idx
