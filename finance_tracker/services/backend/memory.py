"""
In-Memory Backend Implementation

Behaves like the REST server as far as the client can observe:
- ids are UUID4 strings, timestamps are naive UTC ISO strings
- the category field must not be blank
- amounts must be decimal strings greater than zero
- dates must be ISO calendar dates
- records must reference an existing user
- unknown ids raise NotFoundError
- deleting a user deletes its expenses and incomes

It also records every call and can inject failures or hold a response
back, which is how the tests exercise error paths and races.
"""

import asyncio
import copy
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.money import InvalidAmountError, parse_amount
from finance_tracker.models.records import RecordKind, parse_record_date
from finance_tracker.services.backend.interface import (
    AuditStorageInterface,
    BackendError,
    FinanceBackend,
    NotFoundError,
    ValidationFailure,
)


USER_FIELDS = ("first_name", "last_name", "email", "password")


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


class InMemoryBackend(FinanceBackend):
    """
    Finance backend held in process memory.

    Usage in tests:
        backend = InMemoryBackend()
        user = backend.seed_user(first_name="Ada", last_name="Lovelace")
        backend.fail_next("update_expense", NetworkFailure("down"))
    """

    def __init__(self):
        self._users: dict[str, dict] = {}
        self._records: dict[RecordKind, dict[str, dict]] = {
            RecordKind.EXPENSE: {},
            RecordKind.INCOME: {},
        }
        self._failures: dict[str, deque[BackendError]] = defaultdict(deque)
        self._holds: dict[str, deque[asyncio.Event]] = defaultdict(deque)
        self.calls: list[tuple[str, tuple]] = []

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def seed_user(self, user_id: Optional[str] = None, **fields: Any) -> dict:
        """Insert a user directly, without validation."""
        now = _now()
        user = {
            "id": user_id or str(uuid4()),
            "first_name": fields.get("first_name", "Test"),
            "last_name": fields.get("last_name", "User"),
            "email": fields.get("email", "test@example.com"),
            "password": fields.get("password", "secret123"),
            "created_at": now,
            "updated_at": now,
        }
        self._users[user["id"]] = user
        return copy.deepcopy(user)

    def seed_record(
        self,
        kind: RecordKind,
        user_id: str,
        record_id: Optional[str] = None,
        **fields: Any,
    ) -> dict:
        """Insert an expense or income directly, without validation."""
        now = _now()
        record = {
            "id": record_id or str(uuid4()),
            "user_id": user_id,
            kind.category_field: fields.pop(kind.category_field, kind.value),
            "amount": fields.pop("amount", "0.00"),
            "date": fields.pop("date", now[:10]),
            "description": fields.pop("description", None),
            "created_at": now,
            "updated_at": now,
        }
        record.update(fields)
        self._records[kind][record["id"]] = record
        return copy.deepcopy(record)

    def fail_next(self, operation: str, error: BackendError) -> None:
        """Make the next call to `operation` raise `error`."""
        self._failures[operation].append(error)

    def hold_next(self, operation: str) -> asyncio.Event:
        """
        Hold back the response of the next call to `operation`.

        The response is computed when the call is issued but only
        returned once the returned event is set.
        """
        gate = asyncio.Event()
        self._holds[operation].append(gate)
        return gate

    def call_count(self, operation: Optional[str] = None) -> int:
        if operation is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == operation)

    def stored_record(self, kind: RecordKind, record_id: str) -> Optional[dict]:
        record = self._records[kind].get(record_id)
        return copy.deepcopy(record) if record else None

    # -------------------------------------------------------------------------
    # Call plumbing
    # -------------------------------------------------------------------------

    async def _call(self, operation: str, args: tuple, handler) -> Any:
        self.calls.append((operation, args))
        gate = self._holds[operation].popleft() if self._holds[operation] else None
        if self._failures[operation]:
            error = self._failures[operation].popleft()
            if gate:
                await gate.wait()
            raise error

        result = copy.deepcopy(handler())
        await asyncio.sleep(0)
        if gate:
            await gate.wait()
        return result

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate_user_fields(self, payload: dict, partial: bool) -> dict:
        cleaned = {}
        for field in USER_FIELDS:
            if field not in payload:
                if not partial:
                    raise ValidationFailure(f"{field} is required", status_code=400)
                continue
            value = payload[field]
            if value is None and partial:
                continue
            if not isinstance(value, str) or not value.strip():
                raise ValidationFailure(f"{field} cannot be empty", status_code=400)
            cleaned[field] = value.strip()
        return cleaned

    def _validate_record_fields(
        self,
        kind: RecordKind,
        payload: dict,
        partial: bool,
    ) -> dict:
        cleaned: dict[str, Any] = {}

        category = kind.category_field
        if category in payload or not partial:
            value = payload.get(category)
            if not isinstance(value, str) or not value.strip():
                label = "Item name" if kind is RecordKind.EXPENSE else "Source"
                raise ValidationFailure(f"{label} cannot be empty", status_code=400)
            cleaned[category] = value.strip()

        if "amount" in payload or not partial:
            value = payload.get("amount")
            if value is None:
                raise ValidationFailure("Amount cannot be empty", status_code=400)
            try:
                amount = parse_amount(value)
            except InvalidAmountError:
                raise ValidationFailure("Invalid amount format", status_code=400) from None
            if amount <= 0:
                raise ValidationFailure("Amount must be greater than zero", status_code=400)
            cleaned["amount"] = str(amount)

        if "date" in payload or not partial:
            try:
                cleaned["date"] = parse_record_date(payload.get("date")).isoformat()
            except ValueError:
                raise ValidationFailure("Invalid date format", status_code=400) from None

        if "description" in payload:
            value = payload["description"]
            cleaned["description"] = value.strip() if isinstance(value, str) and value.strip() else None

        return cleaned

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def fetch_users(self) -> list[dict]:
        return await self._call("fetch_users", (), lambda: list(self._users.values()))

    async def fetch_user(self, user_id: str) -> dict:
        def handler():
            user = self._require_user(user_id)
            incomes = [
                record for record in self._records[RecordKind.INCOME].values()
                if record["user_id"] == user_id
            ]
            return {**user, "incomes": incomes}

        return await self._call("fetch_user", (user_id,), handler)

    async def create_user(self, payload: dict) -> dict:
        def handler():
            fields = self._validate_user_fields(payload, partial=False)
            self._ensure_unique_email(fields["email"])
            return self.seed_user(**fields)

        return await self._call("create_user", (payload,), handler)

    async def update_user(self, user_id: str, partial: dict) -> dict:
        def handler():
            user = self._require_user(user_id)
            fields = self._validate_user_fields(partial, partial=True)
            if "email" in fields and fields["email"] != user["email"]:
                self._ensure_unique_email(fields["email"])
            user.update(fields)
            user["updated_at"] = _now()
            return user

        return await self._call("update_user", (user_id, partial), handler)

    async def delete_user(self, user_id: str) -> None:
        def handler():
            self._require_user(user_id)
            del self._users[user_id]
            for records in self._records.values():
                for record_id in [
                    rid for rid, r in records.items() if r["user_id"] == user_id
                ]:
                    del records[record_id]
            return None

        return await self._call("delete_user", (user_id,), handler)

    def _require_user(self, user_id: str) -> dict:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}", status_code=404)
        return user

    def _ensure_unique_email(self, email: str) -> None:
        if any(u["email"].lower() == email.lower() for u in self._users.values()):
            raise ValidationFailure(f"Email already registered: {email}", status_code=409)

    # -------------------------------------------------------------------------
    # Money records
    # -------------------------------------------------------------------------

    def _fetch_records(self, kind: RecordKind, user_id: str) -> list[dict]:
        return [
            record for record in self._records[kind].values()
            if record["user_id"] == user_id
        ]

    def _create_record(self, kind: RecordKind, payload: dict) -> dict:
        user_id = payload.get("user_id")
        if not user_id or user_id not in self._users:
            raise ValidationFailure(f"User does not exist: {user_id}", status_code=400)
        fields = self._validate_record_fields(kind, payload, partial=False)
        fields.setdefault("description", None)
        return self.seed_record(kind, user_id, **fields)

    def _update_record(self, kind: RecordKind, record_id: str, partial: dict) -> dict:
        record = self._records[kind].get(record_id)
        if record is None:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {record_id}", status_code=404)
        fields = self._validate_record_fields(kind, partial, partial=True)
        record.update(fields)
        record["updated_at"] = _now()
        return record

    def _delete_record(self, kind: RecordKind, record_id: str) -> None:
        if record_id not in self._records[kind]:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {record_id}", status_code=404)
        del self._records[kind][record_id]

    async def fetch_expenses_by_user(self, user_id: str) -> list[dict]:
        return await self._call(
            "fetch_expenses_by_user", (user_id,),
            lambda: self._fetch_records(RecordKind.EXPENSE, user_id),
        )

    async def create_expense(self, payload: dict) -> dict:
        return await self._call(
            "create_expense", (payload,),
            lambda: self._create_record(RecordKind.EXPENSE, payload),
        )

    async def update_expense(self, expense_id: str, partial: dict) -> dict:
        return await self._call(
            "update_expense", (expense_id, partial),
            lambda: self._update_record(RecordKind.EXPENSE, expense_id, partial),
        )

    async def delete_expense(self, expense_id: str) -> None:
        return await self._call(
            "delete_expense", (expense_id,),
            lambda: self._delete_record(RecordKind.EXPENSE, expense_id),
        )

    async def fetch_incomes_by_user(self, user_id: str) -> list[dict]:
        return await self._call(
            "fetch_incomes_by_user", (user_id,),
            lambda: self._fetch_records(RecordKind.INCOME, user_id),
        )

    async def create_income(self, payload: dict) -> dict:
        return await self._call(
            "create_income", (payload,),
            lambda: self._create_record(RecordKind.INCOME, payload),
        )

    async def update_income(self, income_id: str, partial: dict) -> dict:
        return await self._call(
            "update_income", (income_id, partial),
            lambda: self._update_record(RecordKind.INCOME, income_id, partial),
        )

    async def delete_income(self, income_id: str) -> None:
        return await self._call(
            "delete_income", (income_id,),
            lambda: self._delete_record(RecordKind.INCOME, income_id),
        )


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list. Used by default and in tests."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
