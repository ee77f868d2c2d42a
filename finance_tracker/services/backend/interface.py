"""
Abstract Backend Interface

DESIGN DECISION: The stores never talk HTTP directly. They call this
interface, which lets us:
1. Run against the REST server in production
2. Use the in-memory backend in tests and demos
3. Inject failures to exercise every error path

Payloads and results are plain dicts in the backend's JSON shape.
Converting them to models is the stores' job.

Every method is a coroutine: the caller suspends only here, at the
boundary of a remote command.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent


class FinanceBackend(ABC):
    """
    Remote store of users, expenses and incomes.

    Any implementation (REST, in-memory) must implement these methods
    and raise the errors defined below.
    """

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_users(self) -> list[dict]:
        """Return every user."""
        pass

    @abstractmethod
    async def fetch_user(self, user_id: str) -> dict:
        """
        Return one user with its incomes embedded under "incomes".

        Raises:
            NotFoundError: If the user does not exist
        """
        pass

    @abstractmethod
    async def create_user(self, payload: dict) -> dict:
        """
        Create a user and return it.

        Raises:
            ValidationFailure: If the backend rejects the payload
        """
        pass

    @abstractmethod
    async def update_user(self, user_id: str, partial: dict) -> dict:
        """
        Apply a partial update and return the updated user.

        Raises:
            NotFoundError: If the user does not exist
            ValidationFailure: If the backend rejects the payload
        """
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        """
        Delete a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        pass

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_expenses_by_user(self, user_id: str) -> list[dict]:
        pass

    @abstractmethod
    async def create_expense(self, payload: dict) -> dict:
        pass

    @abstractmethod
    async def update_expense(self, expense_id: str, partial: dict) -> dict:
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> None:
        pass

    # -------------------------------------------------------------------------
    # Incomes
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_incomes_by_user(self, user_id: str) -> list[dict]:
        pass

    @abstractmethod
    async def create_income(self, payload: dict) -> dict:
        pass

    @abstractmethod
    async def update_income(self, income_id: str, partial: dict) -> dict:
        pass

    @abstractmethod
    async def delete_income(self, income_id: str) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if stored successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events of one command, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events, newest first."""
        pass


class BackendError(Exception):
    """Base exception for backend operations."""

    kind = "backend"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkFailure(BackendError):
    """Transport-level failure: no usable response from the backend."""

    kind = "network"


class ValidationFailure(BackendError):
    """The backend rejected the request (4xx other than 404)."""

    kind = "validation"


class NotFoundError(BackendError):
    """Operating on a deleted or nonexistent id."""

    kind = "not_found"
