"""
Core Data Models for the Shared Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce the ledger invariants at construction time (no zero/negative amounts)
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Only MonetaryEvent is persisted. Totals, balances and the
debtor are derived from the full event collection every time and never stored.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def assume_utc(value: datetime) -> datetime:
    """Read a timestamp without an offset as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EventKind(str, Enum):
    """
    What a monetary event represents.

    The kind is not stored as its own column: it is encoded in the
    participant tag through the reimbursement marker.
    """
    SHARED_EXPENSE = "shared_expense"   # One participant paid for both
    REIMBURSEMENT = "reimbursement"     # Direct transfer to settle the balance


class ChangeType(str, Enum):
    """Kind of change reported by a ledger store subscription."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UNKNOWN = "unknown"  # Polling backends only know that something changed


class MutationErrorKind(str, Enum):
    """Why a user intent was not applied."""
    VALIDATION = "validation"
    STORE_UNAVAILABLE = "store_unavailable"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


# =============================================================================
# PERSISTED EVENTS
# =============================================================================

class EventDraft(BaseModel):
    """
    Everything needed to create an event, carried atomically to the store.

    The store assigns the id.
    """
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount, currency agnostic"
    )
    participant_tag: str = Field(
        ...,
        min_length=1,
        description="Participant base name, optionally followed by the reimbursement marker"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="Creation instant (display ordering only)"
    )

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return assume_utc(v)


class MonetaryEvent(BaseModel):
    """
    A stored shared expense or reimbursement.

    CRITICAL: amount > 0 is enforced here, so a zero or negative
    amount can never be built, let alone persisted.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier assigned by the store"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount, currency agnostic"
    )
    participant_tag: str = Field(
        ...,
        min_length=1,
        description="Participant base name, optionally followed by the reimbursement marker"
    )
    timestamp: datetime = Field(
        ...,
        description="Creation instant (display ordering only)"
    )

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Hand-typed sheet rows may carry no offset; events must stay comparable."""
        return assume_utc(v)

    @classmethod
    def from_draft(cls, event_id: str, draft: EventDraft) -> "MonetaryEvent":
        return cls(
            id=event_id,
            amount=draft.amount,
            participant_tag=draft.participant_tag,
            timestamp=draft.timestamp,
        )


# =============================================================================
# PARTICIPANTS
# =============================================================================

class Roster(BaseModel):
    """
    The two participants and the reimbursement marker.

    Classification relies on substring containment, so the names and the
    marker must not contain one another. That is checked here, once, when
    the roster is built from configuration.
    """
    model_config = ConfigDict(frozen=True)

    first: str = Field(..., min_length=1)
    second: str = Field(..., min_length=1)
    reimbursement_marker: str = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_no_collisions(self) -> 'Roster':
        """Reject names that would make tags ambiguous."""
        if self.first == self.second:
            raise ValueError("Participant names must be distinct")

        for name, other in ((self.first, self.second), (self.second, self.first)):
            if name in other:
                raise ValueError(
                    f"Participant name '{name}' is contained in '{other}'"
                )
            if name in self.reimbursement_marker:
                raise ValueError(
                    f"Participant name '{name}' is contained in the reimbursement marker"
                )
            if self.reimbursement_marker in name:
                raise ValueError(
                    f"Reimbursement marker is contained in participant name '{name}'"
                )

        return self

    @classmethod
    def from_settings(cls, settings) -> "Roster":
        """Build from a LedgerSettings instance."""
        return cls(
            first=settings.first_participant,
            second=settings.second_participant,
            reimbursement_marker=settings.reimbursement_marker,
        )

    @property
    def participants(self) -> tuple[str, str]:
        return (self.first, self.second)

    def require(self, participant: str) -> str:
        """Return the participant unchanged, or raise if it is not on the roster."""
        if participant not in self.participants:
            raise ValueError(
                f"Unknown participant '{participant}'. Expected one of {self.participants}"
            )
        return participant

    def other(self, participant: str) -> str:
        """The participant on the other side of the ledger."""
        self.require(participant)
        return self.second if participant == self.first else self.first

    def tag_for(
        self,
        participant: str,
        kind: EventKind = EventKind.SHARED_EXPENSE,
    ) -> str:
        """Build the participant tag stored with an event."""
        self.require(participant)
        if kind == EventKind.REIMBURSEMENT:
            return f"{participant}{self.reimbursement_marker}"
        return participant


class Classification(BaseModel):
    """Result of classifying one event."""
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    owner: str


# =============================================================================
# DERIVED STATE (never persisted)
# =============================================================================

class BalanceSummary(BaseModel):
    """
    Everything derived from one snapshot of the event collection.

    A positive balance means the second participant owes the first.
    Values are raw Decimals; rounding happens only when formatting.
    """
    model_config = ConfigDict(frozen=True)

    first: str
    second: str
    shared_totals: dict[str, Decimal]
    reimbursed_totals: dict[str, Decimal]
    raw_balance: Decimal
    balance: Decimal
    debtor: str
    receiver: str
    magnitude: Decimal = Field(ge=0)
    is_settled: bool
    event_count: int = Field(default=0, ge=0)
    unclassified: list[MonetaryEvent] = Field(
        default_factory=list,
        description="Events whose tag matched no participant (excluded from totals)"
    )

    def shared_total(self, participant: str) -> Decimal:
        return self.shared_totals.get(participant, Decimal("0"))

    def reimbursed_total(self, participant: str) -> Decimal:
        return self.reimbursed_totals.get(participant, Decimal("0"))

    @property
    def has_unclassified(self) -> bool:
        return bool(self.unclassified)


class ChangeNotification(BaseModel):
    """
    Something changed in the store.

    Payload fields are best effort; consumers must not rely on them.
    """

    change_type: ChangeType = ChangeType.UNKNOWN
    event_id: Optional[str] = None
    source: str = Field(
        default="store",
        description="Which backend or watcher produced the notification"
    )
    observed_at: datetime = Field(default_factory=utc_now)


class LedgerView(BaseModel):
    """
    The controller's local copy of the ledger.

    Replaced wholesale on every successful refresh. On a failed refresh the
    events and summary stay as they were and only fetch_error changes.
    """

    events: list[MonetaryEvent] = Field(default_factory=list)
    summary: Optional[BalanceSummary] = None
    fetch_error: Optional[str] = Field(
        default=None,
        description="Persistent error shown until a refresh succeeds or it is dismissed"
    )
    is_loading: bool = False
    last_refreshed_at: Optional[datetime] = None

    @property
    def has_loaded(self) -> bool:
        return self.last_refreshed_at is not None

    def find(self, event_id: str) -> Optional[MonetaryEvent]:
        for event in self.events:
            if event.id == event_id:
                return event
        return None


class MutationOutcome(BaseModel):
    """
    Result of a user intent.

    Store and validation errors are reported here instead of being raised,
    so nothing escapes the controller.
    """
    model_config = ConfigDict(frozen=True)

    ok: bool
    error_kind: Optional[MutationErrorKind] = None
    message: str = ""
    event_id: Optional[str] = None

    @classmethod
    def success(cls, message: str = "", event_id: Optional[str] = None) -> "MutationOutcome":
        return cls(ok=True, message=message, event_id=event_id)

    @classmethod
    def failure(
        cls,
        error_kind: MutationErrorKind,
        message: str,
        event_id: Optional[str] = None,
    ) -> "MutationOutcome":
        return cls(ok=False, error_kind=error_kind, message=message, event_id=event_id)
