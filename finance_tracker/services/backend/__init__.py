"""
Backend Services Package

Provides the abstract backend interface, its error taxonomy, and two
implementations: the REST client used in production and an in-memory
backend used by tests and local demos.
"""

from finance_tracker.services.backend.interface import (
    AuditStorageInterface,
    BackendError,
    FinanceBackend,
    NetworkFailure,
    NotFoundError,
    ValidationFailure,
)
from finance_tracker.services.backend.memory import (
    InMemoryAuditStorage,
    InMemoryBackend,
)
from finance_tracker.services.backend.rest import RestBackend

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceBackend",
    # Exceptions
    "BackendError",
    "NetworkFailure",
    "NotFoundError",
    "ValidationFailure",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryBackend",
    "RestBackend",
]
