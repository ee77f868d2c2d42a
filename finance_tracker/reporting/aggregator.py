"""
Month Totals

DESIGN DECISION: Totals are recomputed from scratch every time, never
patched incrementally. There is no update path that can be missed, so
the totals cannot drift from the records they summarize.

Amounts are summed as Decimal, so "0.10" + "0.20" is exactly "0.30".
"""

from decimal import Decimal
from typing import Iterable, Optional

import structlog

from finance_tracker.models.dashboard import Aggregate
from finance_tracker.models.money import ZERO
from finance_tracker.models.records import MalformedRecordError, MoneyRecord
from finance_tracker.reporting.periods import MalformedCallback


logger = structlog.get_logger(__name__)


def total_amount(
    records: Iterable[MoneyRecord],
    on_malformed: Optional[MalformedCallback] = None,
) -> Decimal:
    """Sum of record amounts. Records with unparseable amounts are skipped."""
    total = ZERO
    for record in records:
        try:
            total += record.parsed_amount()
        except MalformedRecordError as e:
            logger.warning(
                "malformed_record_skipped",
                entity_type=record.kind.value,
                record_id=record.id,
                field=e.field,
            )
            if on_malformed:
                on_malformed(record, e)
    return total


def recompute(
    expenses: Iterable[MoneyRecord],
    incomes: Iterable[MoneyRecord],
    on_malformed: Optional[MalformedCallback] = None,
) -> Aggregate:
    """
    Totals for the filtered expense and income sets.

    Empty sets sum to zero. balance = total_income - total_expenses.
    """
    total_income = total_amount(incomes, on_malformed)
    total_expenses = total_amount(expenses, on_malformed)
    return Aggregate(
        total_income=total_income,
        total_expenses=total_expenses,
        balance=total_income - total_expenses,
    )
