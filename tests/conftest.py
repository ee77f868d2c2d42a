"""
Shared fixtures.

The seeded backend holds the worked example used throughout the tests:
user u1 with expenses of 50.00 (2024-03-05) and 20.00 (2024-04-01) and
an income of 1000.00 (2024-03-10).
"""

from datetime import date

import pytest

from finance_tracker.audit import AuditLogger
from finance_tracker.dashboard import DashboardController
from finance_tracker.models.records import Expense, Income, RecordKind
from finance_tracker.services.backend import InMemoryAuditStorage, InMemoryBackend


MARCH_15 = date(2024, 3, 15)


def make_expense(record_id="e1", amount="50.00", day="2024-03-05", **fields) -> Expense:
    return Expense(
        id=record_id,
        user_id=fields.pop("user_id", "u1"),
        item_name=fields.pop("item_name", "Groceries"),
        amount=amount,
        date=day,
        **fields,
    )


def make_income(record_id="i1", amount="1000.00", day="2024-03-10", **fields) -> Income:
    return Income(
        id=record_id,
        user_id=fields.pop("user_id", "u1"),
        source=fields.pop("source", "Salary"),
        amount=amount,
        date=day,
        **fields,
    )


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def seeded_backend(backend):
    backend.seed_user("u1", first_name="Ada", last_name="Lovelace", email="ada@example.com")
    backend.seed_record(
        RecordKind.EXPENSE, "u1", "e1",
        item_name="Groceries", amount="50.00", date="2024-03-05",
    )
    backend.seed_record(
        RecordKind.EXPENSE, "u1", "e2",
        item_name="Books", amount="20.00", date="2024-04-01",
    )
    backend.seed_record(
        RecordKind.INCOME, "u1", "i1",
        source="Salary", amount="1000.00", date="2024-03-10",
    )
    return backend


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def controller(seeded_backend, audit_storage):
    return DashboardController(
        seeded_backend,
        reference_date=MARCH_15,
        audit_logger=AuditLogger(audit_storage),
    )
