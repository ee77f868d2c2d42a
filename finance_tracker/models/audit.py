"""
Audit Models for the Finance Tracker

Every user-visible action on the dashboard leaves an audit event:
selecting a user, changing month, creating/updating/deleting records,
opening and closing edit sessions, and every failure along the way.

This gives the view a history it can show ("Expense deleted",
"Update rejected: amount must be greater than zero") and gives us a
trail when the cache and the server ever disagree.

DESIGN DECISION: Audit events are append-only. Nothing edits or
removes them once written.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Dashboard navigation
    USER_SELECTED = "user_selected"
    USER_DATA_LOADED = "user_data_loaded"
    USER_DATA_LOAD_FAILED = "user_data_load_failed"
    MONTH_CHANGED = "month_changed"

    # Record mutations
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    MUTATION_FAILED = "mutation_failed"
    DELETE_DECLINED = "delete_declined"

    # Edit sessions
    EDIT_STARTED = "edit_started"
    EDIT_COMMITTED = "edit_committed"
    EDIT_COMMIT_FAILED = "edit_commit_failed"
    EDIT_CANCELLED = "edit_cancelled"

    # User administration
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"

    # Data quality
    MALFORMED_RECORD_SKIPPED = "malformed_record_skipped"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What the event is about
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (user, expense, income)"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by the events of one command"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.user_selected(user_id)
        event = AuditEventBuilder.record_deleted("expense", expense_id, correlation_id)
    """

    @staticmethod
    def user_selected(user_id: str, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SELECTED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"User selected: {user_id}",
            is_user_action=True,
        )

    @staticmethod
    def user_data_loaded(
        user_id: str,
        expense_count: int,
        income_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_DATA_LOADED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Loaded {expense_count} expenses and {income_count} incomes",
            details={
                "expense_count": expense_count,
                "income_count": income_count,
            },
        )

    @staticmethod
    def user_data_load_failed(
        user_id: str,
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_DATA_LOAD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Could not load data for user {user_id}",
            error_kind=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def month_changed(start: str, delta: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_CHANGED,
            description=f"Reporting month changed to {start}",
            details={"period_start": start, "delta": delta},
            is_user_action=True,
        )

    @staticmethod
    def record_mutated(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.RECORD_CREATED: "created",
            AuditEventType.RECORD_UPDATED: "updated",
            AuditEventType.RECORD_DELETED: "deleted",
            AuditEventType.USER_CREATED: "created",
            AuditEventType.USER_UPDATED: "updated",
            AuditEventType.USER_DELETED: "deleted",
        }.get(event_type, "changed")
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def mutation_failed(
        operation: str,
        entity_type: str,
        entity_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {operation} failed",
            details={"operation": operation},
            error_kind=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def delete_declined(entity_type: str, entity_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_DECLINED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Deletion of {entity_type} not confirmed",
            is_user_action=True,
        )

    @staticmethod
    def edit_event(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        fields: Optional[list[str]] = None,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        severity = (
            AuditSeverity.WARNING
            if event_type == AuditEventType.EDIT_COMMIT_FAILED
            else AuditSeverity.INFO
        )
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} edit: {event_type.value}",
            details={"fields": fields or []},
            error_kind=error_kind,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def malformed_record_skipped(
        entity_type: str,
        entity_id: Optional[str],
        field: str,
        value: object,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MALFORMED_RECORD_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Skipped {entity_type} with malformed {field}",
            details={"field": field, "value": repr(value)},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_kind=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
