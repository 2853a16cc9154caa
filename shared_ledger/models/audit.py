"""
Audit Models for the Shared Ledger

Every user intent and every failure in the system is logged for audit purposes.
This provides:
1. Traceability of who added, edited, deleted or settled what
2. Debugging information when the store misbehaves
3. Ability to reconstruct history after a reset

DESIGN DECISION: Audit logs are append-only. We never delete or modify them,
not even when the ledger itself is cleared.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from shared_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Ledger mutations
    EXPENSE_ADDED = "expense_added"
    AMOUNT_EDITED = "amount_edited"
    EVENT_DELETED = "event_deleted"
    SETTLEMENT_RECORDED = "settlement_recorded"
    LEDGER_CLEARED = "ledger_cleared"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    MUTATION_FAILED = "mutation_failed"
    REFRESH_FAILED = "refresh_failed"
    UNCLASSIFIABLE_EVENT = "unclassifiable_event"

    # Synchronization
    REMOTE_CHANGE_RECEIVED = "remote_change_received"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    One entry of the audit trail: an intent, its outcome, or a failure
    seen while keeping the view in sync.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique audit event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Which ledger event is this about? Store ids are opaque strings.
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the ledger event this relates to"
    )

    # Shared by all events of one user intent
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g. a mutation and its failure)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    One constructor per audited situation, so descriptions and severities
    stay consistent across the controller.

    Usage:
        event = AuditEventBuilder.expense_added(event_id, "Tomi", "100.00")
        event = AuditEventBuilder.refresh_failed("timeout")
    """

    @staticmethod
    def expense_added(
        event_id: str,
        participant: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            entity_id=event_id,
            correlation_id=correlation_id,
            description=f"Expense added: {participant} paid {amount}",
            details={
                "participant": participant,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def amount_edited(
        event_id: str,
        new_amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AMOUNT_EDITED,
            entity_id=event_id,
            correlation_id=correlation_id,
            description=f"Amount changed to {new_amount}",
            details={
                "new_amount": new_amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def event_deleted(
        event_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_DELETED,
            entity_id=event_id,
            correlation_id=correlation_id,
            description="Ledger event deleted",
            is_user_action=True,
        )

    @staticmethod
    def settlement_recorded(
        event_id: str,
        debtor: str,
        receiver: str,
        amount: str,
        outstanding: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_RECORDED,
            entity_id=event_id,
            correlation_id=correlation_id,
            description=f"{debtor} reimbursed {receiver} {amount}",
            details={
                "debtor": debtor,
                "receiver": receiver,
                "amount": amount,
                "outstanding_before": outstanding,
            },
            is_user_action=True,
        )

    @staticmethod
    def ledger_cleared(
        deleted_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_CLEARED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Ledger cleared ({deleted_count} events deleted)",
            details={
                "deleted_count": deleted_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        field: str,
        raw_value: str,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Rejected input for {field}",
            details={
                "field": field,
                "raw_value": raw_value,
            },
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def mutation_failed(
        operation: str,
        error_message: str,
        event_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_id=event_id,
            correlation_id=correlation_id,
            description=f"Store rejected {operation}",
            details={
                "operation": operation,
            },
            error_message=error_message,
        )

    @staticmethod
    def refresh_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Could not load the ledger; keeping the previous view",
            error_message=error_message,
        )

    @staticmethod
    def unclassifiable_event(
        event_id: str,
        participant_tag: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNCLASSIFIABLE_EVENT,
            severity=AuditSeverity.WARNING,
            entity_id=event_id,
            description="Event excluded from totals: unknown participant tag",
            details={
                "participant_tag": participant_tag,
            },
        )

    @staticmethod
    def remote_change_received(
        change_type: str,
        source: str,
        event_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_CHANGE_RECEIVED,
            severity=AuditSeverity.DEBUG,
            entity_id=event_id,
            description=f"Store reported a change ({change_type})",
            details={
                "change_type": change_type,
                "source": source,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
