"""
Data Models Package

Pydantic models for users, money records, dashboard state and audit
events. Everything the stores, the controller and the view exchange
conforms to these schemas.
"""

from finance_tracker.models.money import (
    InvalidAmountError,
    parse_amount,
    sum_amounts,
)
from finance_tracker.models.records import (
    Expense,
    Income,
    MalformedRecordError,
    MoneyRecord,
    NewExpense,
    NewIncome,
    NewMoneyRecord,
    NewUser,
    RecordKind,
    User,
    UserUpdate,
    UserWithIncomes,
    parse_record_date,
)
from finance_tracker.models.dashboard import (
    Aggregate,
    CommandResult,
    DashboardSnapshot,
    DashboardState,
    Draft,
    EditState,
    Period,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Money
    "InvalidAmountError",
    "parse_amount",
    "sum_amounts",
    # Records
    "Expense",
    "Income",
    "MalformedRecordError",
    "MoneyRecord",
    "NewExpense",
    "NewIncome",
    "NewMoneyRecord",
    "NewUser",
    "RecordKind",
    "User",
    "UserUpdate",
    "UserWithIncomes",
    "parse_record_date",
    # Dashboard
    "Aggregate",
    "CommandResult",
    "DashboardSnapshot",
    "DashboardState",
    "Draft",
    "EditState",
    "Period",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
