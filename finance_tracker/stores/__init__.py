"""Client-side record stores."""

from finance_tracker.stores.records import (
    ExpenseStore,
    IncomeStore,
    MoneyRecordStore,
    RecordStore,
    UserStore,
)

__all__ = [
    "ExpenseStore",
    "IncomeStore",
    "MoneyRecordStore",
    "RecordStore",
    "UserStore",
]
