"""
Record Models for the Finance Tracker

These models mirror the JSON shapes the backend sends and accepts:
Users, and the two kinds of dated money record (Expense, Income).

DESIGN DECISION: Money records keep `amount` and `date` as the strings
the backend sent. They are parsed only when a period filter or the
aggregator needs them, so one malformed record can be skipped without
losing the rest of the collection.

Expense and Income share one base class. The only differences are the
category field name (item_name vs source) and the kind tag.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from finance_tracker.models.money import InvalidAmountError, parse_amount


# =============================================================================
# ERRORS
# =============================================================================

class MalformedRecordError(ValueError):
    """A record carries a date or amount that cannot be parsed."""

    def __init__(self, record_id: Optional[str], field: str, value: object):
        self.record_id = record_id
        self.field = field
        self.value = value
        super().__init__(
            f"Malformed {field} on record {record_id or '<unknown>'}: {value!r}"
        )


# =============================================================================
# ENUMS
# =============================================================================

class RecordKind(str, Enum):
    """The two kinds of dated money record."""
    EXPENSE = "expense"
    INCOME = "income"

    @property
    def category_field(self) -> str:
        """Name of the free-text category field for this kind."""
        return "item_name" if self is RecordKind.EXPENSE else "source"

    @property
    def editable_fields(self) -> tuple[str, ...]:
        """Fields a user may change through an edit session."""
        return (self.category_field, "amount", "date", "description")


# =============================================================================
# HELPERS
# =============================================================================

def parse_record_date(value: object) -> date:
    """
    Parse a record date into a calendar date.

    Accepts an ISO date ("2024-03-05") or an ISO datetime, in which case
    the time part is dropped.

    Raises:
        ValueError: If the value is not an ISO date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Not a date: {value!r}")

    text = value.strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    return date.fromisoformat(text)


def _coerce_text(value: Any) -> Any:
    """Send numbers, UUIDs and dates to their wire string form."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


# =============================================================================
# USERS
# =============================================================================

class User(BaseModel):
    """
    A user account.

    The password is write-only: it is accepted when the backend echoes
    it but never dumped or shown in repr.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str
    first_name: str
    last_name: str
    email: str
    password: Optional[str] = Field(default=None, exclude=True, repr=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _coerce_text(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserWithIncomes(User):
    """User as returned by the single-user fetch, with current incomes embedded."""

    incomes: list["Income"] = Field(default_factory=list)


class NewUser(BaseModel):
    """Payload for creating a user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)

    def to_payload(self) -> dict:
        return self.model_dump()


class UserUpdate(BaseModel):
    """
    Partial payload for updating a user.

    Only fields that were set and are not blank are sent, so an
    untouched password field never overwrites the stored one.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: Optional[str] = None

    @field_validator("password", mode="before")
    @classmethod
    def blank_password_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_payload(self) -> dict:
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


# =============================================================================
# MONEY RECORDS
# =============================================================================

class MoneyRecord(BaseModel):
    """
    A dated money record owned by a user.

    `amount` is a decimal string and `date` an ISO calendar date string,
    both exactly as received. An empty description is the same as no
    description.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    kind: ClassVar[RecordKind]

    id: str
    user_id: str
    amount: str
    date: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "user_id", "amount", "date", mode="before")
    @classmethod
    def coerce_wire_text(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator("description", mode="before")
    @classmethod
    def blank_description_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def category(self) -> str:
        """The item name (expense) or source (income)."""
        return getattr(self, self.kind.category_field)

    def parsed_amount(self) -> Decimal:
        """Amount as Decimal. Raises MalformedRecordError."""
        try:
            return parse_amount(self.amount)
        except InvalidAmountError:
            raise MalformedRecordError(self.id, "amount", self.amount) from None

    def parsed_date(self) -> date:
        """Date as a calendar date. Raises MalformedRecordError."""
        try:
            return parse_record_date(self.date)
        except ValueError:
            raise MalformedRecordError(self.id, "date", self.date) from None

    def editable_values(self) -> dict[str, Any]:
        """Current values of the fields an edit session may change."""
        return {name: getattr(self, name) for name in self.kind.editable_fields}


class Expense(MoneyRecord):
    kind: ClassVar[RecordKind] = RecordKind.EXPENSE

    item_name: str


class Income(MoneyRecord):
    kind: ClassVar[RecordKind] = RecordKind.INCOME

    source: str


UserWithIncomes.model_rebuild()


RECORD_MODELS: dict[RecordKind, type[MoneyRecord]] = {
    RecordKind.EXPENSE: Expense,
    RecordKind.INCOME: Income,
}


# =============================================================================
# MONEY RECORD PAYLOADS
# =============================================================================

class NewMoneyRecord(BaseModel):
    """
    Base payload for creating an expense or income.

    The amount must read as a decimal number. Its sign is left to the
    backend to judge.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: ClassVar[RecordKind]

    user_id: str
    amount: str
    date: str
    description: Optional[str] = None

    @field_validator("user_id", "amount", "date", mode="before")
    @classmethod
    def coerce_wire_text(cls, v: Any) -> Any:
        return _coerce_text(v)

    @field_validator("amount")
    @classmethod
    def amount_is_decimal(cls, v: str) -> str:
        parse_amount(v)
        return v

    @field_validator("date")
    @classmethod
    def date_is_iso(cls, v: str) -> str:
        return parse_record_date(v).isoformat()

    @field_validator("description", mode="before")
    @classmethod
    def blank_description_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_payload(self) -> dict:
        return self.model_dump()


class NewExpense(NewMoneyRecord):
    kind: ClassVar[RecordKind] = RecordKind.EXPENSE

    item_name: str = Field(..., min_length=1, max_length=200)


class NewIncome(NewMoneyRecord):
    kind: ClassVar[RecordKind] = RecordKind.INCOME

    source: str = Field(..., min_length=1, max_length=200)


NEW_RECORD_MODELS: dict[RecordKind, type[NewMoneyRecord]] = {
    RecordKind.EXPENSE: NewExpense,
    RecordKind.INCOME: NewIncome,
}
