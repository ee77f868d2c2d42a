"""
Dashboard State Models

Derived and ephemeral state exposed to the view layer: the reporting
period, the month totals, edit drafts, command results and the
snapshot handed to subscribers after every recompute.

None of these are persisted. Period and Aggregate are always derived
from scratch; a Draft lives only inside an edit session.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from finance_tracker.models.money import ZERO
from finance_tracker.models.records import Expense, Income, RecordKind, User


class DashboardState(str, Enum):
    """Lifecycle of the dashboard controller."""
    NO_USER = "no_user"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class EditState(str, Enum):
    """Lifecycle of an edit session."""
    IDLE = "idle"
    EDITING = "editing"
    COMMITTING = "committing"


class Period(BaseModel):
    """A calendar month selected for reporting, bounds inclusive."""
    model_config = ConfigDict(frozen=True)

    reference_date: date
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def label(self) -> str:
        return self.start.strftime("%B %Y")


class Aggregate(BaseModel):
    """
    Month totals.

    Always a pure function of the filtered income and expense sets.
    """
    model_config = ConfigDict(frozen=True)

    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    balance: Decimal = ZERO


class Draft(BaseModel):
    """
    Uncommitted copy of a record's editable fields.

    `touched` holds every field mutated since the draft was opened.
    """

    record_id: str
    kind: RecordKind
    values: dict[str, Any] = Field(default_factory=dict)
    touched: set[str] = Field(default_factory=set)

    def update_payload(self) -> dict[str, Any]:
        """
        Fields to send with the update.

        A field is present when it has a value or was explicitly touched.
        Absent fields are never sent so the server keeps its values.
        """
        return {
            name: value
            for name, value in self.values.items()
            if value is not None or name in self.touched
        }


class CommandResult(BaseModel):
    """
    Outcome of a controller command, for user-visible display.

    Backend failures become unsuccessful results instead of exceptions.
    `performed` is False when a command needing confirmation was not
    confirmed; that is not a failure.
    """

    success: bool
    performed: bool = True
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls) -> "CommandResult":
        return cls(success=True)

    @classmethod
    def declined(cls) -> "CommandResult":
        return cls(success=True, performed=False)

    @classmethod
    def failed(cls, error_kind: str, error_message: str) -> "CommandResult":
        return cls(success=False, error_kind=error_kind, error_message=error_message)


class DashboardSnapshot(BaseModel):
    """Everything the view needs to render the dashboard once."""

    state: DashboardState
    current_user: Optional[User] = None
    period: Period
    filtered_expenses: list[Expense] = Field(default_factory=list)
    filtered_incomes: list[Income] = Field(default_factory=list)
    aggregate: Aggregate = Field(default_factory=Aggregate)
    expense_edit_state: EditState = EditState.IDLE
    income_edit_state: EditState = EditState.IDLE
    last_error: Optional[str] = None
