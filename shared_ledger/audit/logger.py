"""
Audit Logger

DESIGN DECISION: Every user intent and every failure is logged.
This provides:
1. Traceability of who changed the shared ledger and how
2. Debugging capability when the store misbehaves
3. A history that survives clearing the ledger

Writing to the audit store is best effort: a failed write is logged
locally and the intent that produced the event carries on. A correlation
id ties the events of one intent together (validation failure, mutation,
settlement).
"""

import logging
from typing import Iterable, Optional
from uuid import UUID, uuid4

import structlog

from shared_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from shared_ledger.models.ledger import ChangeNotification, MonetaryEvent
from shared_ledger.services.storage import AuditStorageInterface


# JSON lines on the stdlib logging handlers
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


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through a stdlib handler at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger().setLevel(level.upper())


class AuditLogger:
    """
    Writes audit events to the structlog output and, when given, to an
    audit store (the AuditLog sheet or an in-memory list).
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("shared_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
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
                # The ledger keeps working without its audit trail
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_added(
        self,
        event_id: str,
        participant: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_added(
            event_id=event_id,
            participant=participant,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_amount_edited(
        self,
        event_id: str,
        new_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.amount_edited(
            event_id=event_id,
            new_amount=new_amount,
            correlation_id=correlation_id,
        ))

    async def log_event_deleted(
        self,
        event_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.event_deleted(
            event_id=event_id,
            correlation_id=correlation_id,
        ))

    async def log_settlement(
        self,
        event_id: str,
        debtor: str,
        receiver: str,
        amount: str,
        outstanding: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_recorded(
            event_id=event_id,
            debtor=debtor,
            receiver=receiver,
            amount=amount,
            outstanding=outstanding,
            correlation_id=correlation_id,
        ))

    async def log_ledger_cleared(
        self,
        deleted_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_cleared(
            deleted_count=deleted_count,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        field: str,
        raw_value: object,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rejected user input."""
        await self.log(AuditEventBuilder.validation_failed(
            field=field,
            raw_value=repr(raw_value),
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_mutation_failed(
        self,
        operation: str,
        error_message: str,
        event_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a store write that was not applied."""
        await self.log(AuditEventBuilder.mutation_failed(
            operation=operation,
            error_message=error_message,
            event_id=event_id,
            correlation_id=correlation_id,
        ))

    async def log_refresh_failed(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.refresh_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_unclassifiable_events(
        self,
        events: Iterable[MonetaryEvent],
    ) -> None:
        """One warning per event excluded from the totals."""
        for event in events:
            await self.log(AuditEventBuilder.unclassifiable_event(
                event_id=event.id,
                participant_tag=event.participant_tag,
            ))

    async def log_remote_change(self, notification: ChangeNotification) -> None:
        await self.log(AuditEventBuilder.remote_change_received(
            change_type=notification.change_type.value,
            source=notification.source,
            event_id=notification.event_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    New id for the audit events of one user intent.
    """
    return uuid4()
