"""
Audit Logger

Every user-visible action on the dashboard is logged. This provides:
1. A history the view can show next to the totals
2. Debugging capability when cache and server disagree
3. A record of every failure that was surfaced to the user

The audit logger:
- Is async to fit the controller's command flow
- Gracefully handles sink failures (never crashes the controller)
- Supports correlation IDs to tie the events of one command together
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_tracker.services.backend import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_log_level(level: str = "INFO") -> None:
    """Route structured logs to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit sink (for the view's history), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Sink for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Appends to the sink if available.

        Returns True if the sink write succeeded (or no sink configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_user_selected(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.user_selected(user_id, correlation_id))

    async def log_record_mutated(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log a successful create, update or delete."""
        event = AuditEventBuilder.record_mutated(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            details=details,
        )
        await self.log(event)

    async def log_mutation_failed(
        self,
        operation: str,
        entity_type: str,
        entity_id: Optional[str],
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed create, update or delete."""
        event = AuditEventBuilder.mutation_failed(
            operation=operation,
            entity_type=entity_type,
            entity_id=entity_id,
            error_kind=getattr(error, "kind", type(error).__name__),
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_malformed_record(
        self,
        entity_type: str,
        entity_id: Optional[str],
        field: str,
        value: object,
    ) -> None:
        event = AuditEventBuilder.malformed_record_skipped(
            entity_type=entity_type,
            entity_id=entity_id,
            field=field,
            value=value,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a controller command and pass it through
    every event the command produces.
    """
    return uuid4()
