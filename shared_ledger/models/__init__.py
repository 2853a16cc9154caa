"""
Data Models Package

This package contains all Pydantic models used in the Shared Ledger.
All data flowing through the system must conform to these schemas.
"""

from shared_ledger.models.ledger import (
    BalanceSummary,
    ChangeNotification,
    ChangeType,
    Classification,
    EventDraft,
    EventKind,
    LedgerView,
    MonetaryEvent,
    MutationErrorKind,
    MutationOutcome,
    Roster,
)
from shared_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BalanceSummary",
    "ChangeNotification",
    "ChangeType",
    "Classification",
    "EventDraft",
    "EventKind",
    "LedgerView",
    "MonetaryEvent",
    "MutationErrorKind",
    "MutationOutcome",
    "Roster",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
