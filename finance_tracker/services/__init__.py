"""Services package."""

from finance_tracker.services.backend import (
    AuditStorageInterface,
    BackendError,
    FinanceBackend,
    InMemoryAuditStorage,
    InMemoryBackend,
    NetworkFailure,
    NotFoundError,
    RestBackend,
    ValidationFailure,
)

__all__ = [
    "AuditStorageInterface",
    "BackendError",
    "FinanceBackend",
    "InMemoryAuditStorage",
    "InMemoryBackend",
    "NetworkFailure",
    "NotFoundError",
    "RestBackend",
    "ValidationFailure",
]
