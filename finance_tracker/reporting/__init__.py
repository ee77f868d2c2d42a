"""Period filtering and month totals."""

from finance_tracker.reporting.aggregator import recompute, total_amount
from finance_tracker.reporting.periods import (
    filter_by_month,
    month_bounds,
    period_for,
    shift_month,
)

__all__ = [
    "filter_by_month",
    "month_bounds",
    "period_for",
    "recompute",
    "shift_month",
    "total_amount",
]
