"""
Reporting Periods

The dashboard reports one calendar month at a time. A period is the
month containing a reference date, with inclusive bounds from its
first to its last day.
"""

from datetime import date, timedelta
from typing import Callable, Iterable, Optional, TypeVar

import structlog

from finance_tracker.models.dashboard import Period
from finance_tracker.models.records import MalformedRecordError, MoneyRecord


logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=MoneyRecord)

MalformedCallback = Callable[[MoneyRecord, MalformedRecordError], None]


def month_bounds(day: date) -> tuple[date, date]:
    """First and last day of the month containing `day`."""
    start = day.replace(day=1)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    return start, next_month - timedelta(days=1)


def period_for(reference_date: date) -> Period:
    start, end = month_bounds(reference_date)
    return Period(reference_date=reference_date, start=start, end=end)


def shift_month(reference_date: date, delta: int) -> date:
    """
    First day of the month `delta` months away from `reference_date`.

    Always lands on day 1, so moving from 31 January to February never
    overflows, and two shifts compose into one: shifting by a then b
    equals shifting by a + b.
    """
    index = reference_date.year * 12 + (reference_date.month - 1) + delta
    year, month = divmod(index, 12)
    return date(year, month + 1, 1)


def filter_by_month(
    reference_date: date,
    records: Iterable[R],
    on_malformed: Optional[MalformedCallback] = None,
) -> list[R]:
    """
    Records dated within the month containing `reference_date`.

    Both month bounds are inclusive and the input order is kept.
    A record whose date cannot be parsed is skipped and reported to
    `on_malformed`; it never fails the whole filter.
    """
    start, end = month_bounds(reference_date)

    selected = []
    for record in records:
        try:
            day = record.parsed_date()
        except MalformedRecordError as e:
            logger.warning(
                "malformed_record_skipped",
                entity_type=record.kind.value,
                record_id=record.id,
                field=e.field,
            )
            if on_malformed:
                on_malformed(record, e)
            continue

        if start <= day <= end:
            selected.append(record)

    return selected
