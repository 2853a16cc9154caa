"""
Reconciliation Controller for the Shared Ledger

This module ties together the store, the balance engine and the interaction
state machine, and defines the flows for every user intent:
add an expense, edit an amount, delete an event, settle up, clear the ledger.

DESIGN DECISION: The local view is a cache. It is discarded and rebuilt from
the store after every mutation and on every change notification, whoever
made the change. There is no incremental merge and therefore no conflict
resolution: the displayed balance is always computed from one complete
snapshot of the store.

The controller enforces the boundaries:
- Invalid amounts never reach the store
- Store errors never escape; every intent returns a MutationOutcome
- A failed fetch never replaces the previous view
- Every intent and failure is audited
"""

from decimal import Decimal
from typing import Optional

import structlog

from shared_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from shared_ledger.config import LedgerSettings, get_settings
from shared_ledger.engine.balance import BalanceCalculator
from shared_ledger.engine.classifier import EventClassifier
from shared_ledger.engine.formatting import format_amount
from shared_ledger.engine.interaction import (
    InteractionState,
    InteractionStateMachine,
    InvalidTransitionError,
)
from shared_ledger.models.ledger import (
    BalanceSummary,
    ChangeNotification,
    EventDraft,
    EventKind,
    LedgerView,
    MonetaryEvent,
    MutationErrorKind,
    MutationOutcome,
    Roster,
    utc_now,
)
from shared_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    Subscription,
)
from shared_ledger.validation import AmountValidationError, parse_amount


logger = structlog.get_logger(__name__)

FETCH_ERROR_MESSAGE = "Could not load the ledger. Check your connection and retry."


class LedgerController:
    """
    Owns the local view of the ledger and keeps it consistent with the store.

    Refreshes may overlap (a change notification arriving while a mutation's
    own refresh is in flight). Each refresh gets a sequence number and a
    result older than the last applied one is discarded, so the view only
    ever moves forward.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        calculator: Optional[BalanceCalculator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        if calculator is None:
            settings = settings or get_settings().ledger
            calculator = BalanceCalculator(
                EventClassifier(Roster.from_settings(settings)),
                settings.settle_epsilon,
            )
        self._store = store
        self._calculator = calculator
        self._roster = calculator.roster
        self._audit = audit_logger or AuditLogger()
        self._interaction = InteractionStateMachine()
        self._subscription: Optional[Subscription] = None

        self._view = LedgerView(summary=calculator.compute([]))
        self._issued_seq = 0
        self._applied_seq = 0
        self._reported_unclassified: set[str] = set()

        # Text of the "new expense" field; kept when an insert fails
        self.amount_input = ""

    # Read-only state ---------------------------------------------------------

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    @property
    def roster(self) -> Roster:
        return self._roster

    @property
    def view(self) -> LedgerView:
        return self._view

    @property
    def events(self) -> list[MonetaryEvent]:
        return self._view.events

    @property
    def summary(self) -> BalanceSummary:
        return self._view.summary

    @property
    def interaction(self) -> InteractionState:
        return self._interaction.state

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    # Lifecycle ---------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to store changes and load the ledger."""
        if self._subscription is None:
            self._subscription = self._store.subscribe(self.on_remote_change)
        await self.refresh()

    async def close(self) -> None:
        """Release the change subscription."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> "LedgerController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Synchronization ---------------------------------------------------------

    async def refresh(self) -> bool:
        """
        Replace the local view with a fresh snapshot of the store.

        Returns True if this call's snapshot was applied. On failure the
        previous events and summary are kept and fetch_error is set.
        """
        self._issued_seq += 1
        seq = self._issued_seq
        self._view = self._view.model_copy(update={"is_loading": True})

        try:
            events = await self._store.list_events(newest_first=True)
        except StorageError as e:
            if seq < self._applied_seq:
                return False
            self._applied_seq = seq
            self._view = self._view.model_copy(update={
                "fetch_error": FETCH_ERROR_MESSAGE,
                "is_loading": seq < self._issued_seq,
            })
            await self._audit.log_refresh_failed(str(e))
            return False

        if seq < self._applied_seq:
            logger.debug("stale_refresh_discarded", seq=seq, applied_seq=self._applied_seq)
            return False
        self._applied_seq = seq

        summary = self._calculator.compute(events)
        self._view = LedgerView(
            events=events,
            summary=summary,
            fetch_error=None,
            is_loading=seq < self._issued_seq,
            last_refreshed_at=utc_now(),
        )
        self._interaction.reconcile(event.id for event in events)
        await self._report_unclassified(summary)
        return True

    async def _report_unclassified(self, summary: BalanceSummary) -> None:
        # Audit each corrupted row once, not on every refresh
        new = [e for e in summary.unclassified if e.id not in self._reported_unclassified]
        self._reported_unclassified = {e.id for e in summary.unclassified}
        if new:
            await self._audit.log_unclassifiable_events(new)

    async def on_remote_change(self, notification: ChangeNotification) -> None:
        """Any change, from any writer, triggers a full refresh."""
        await self._audit.log_remote_change(notification)
        await self.refresh()

    def dismiss_error(self) -> None:
        self._view = self._view.model_copy(update={"fetch_error": None})

    # Mutations ---------------------------------------------------------------

    async def _validate_amount(self, raw: object, correlation_id) -> Decimal:
        try:
            return parse_amount(raw)
        except AmountValidationError as e:
            await self._audit.log_validation_failed("amount", raw, str(e), correlation_id)
            raise

    async def add_expense(
        self,
        participant: str,
        amount: object = None,
    ) -> MutationOutcome:
        """
        Record that a participant paid a shared expense.

        Args:
            participant: Base name of the payer
            amount: Amount to record; defaults to the amount_input field

        On success the amount field is cleared. On any failure it is kept
        so the user can correct it or retry.
        """
        correlation_id = create_correlation_id()
        raw = self.amount_input if amount is None else amount

        try:
            self._roster.require(participant)
            value = await self._validate_amount(raw, correlation_id)
        except ValueError as e:
            return MutationOutcome.failure(MutationErrorKind.VALIDATION, str(e))

        draft = EventDraft(amount=value, participant_tag=self._roster.tag_for(participant))
        try:
            event_id = await self._store.insert_event(draft)
        except StorageError as e:
            await self._audit.log_mutation_failed("insert", str(e), correlation_id=correlation_id)
            return MutationOutcome.failure(
                MutationErrorKind.STORE_UNAVAILABLE,
                "Could not add the expense. Please try again.",
            )

        self.amount_input = ""
        await self._audit.log_expense_added(event_id, participant, str(value), correlation_id)
        await self.refresh()
        return MutationOutcome.success(
            f"{participant} paid {format_amount(value)}", event_id=event_id
        )

    async def edit_amount(self, event_id: str, new_amount: object) -> MutationOutcome:
        """Change only the amount of an existing event."""
        correlation_id = create_correlation_id()

        try:
            value = await self._validate_amount(new_amount, correlation_id)
        except AmountValidationError as e:
            return MutationOutcome.failure(MutationErrorKind.VALIDATION, str(e), event_id)

        try:
            await self._store.update_event_amount(event_id, value)
        except NotFoundError as e:
            await self._audit.log_mutation_failed("update", str(e), event_id, correlation_id)
            # Our view is out of date; another writer removed the event
            await self.refresh()
            return MutationOutcome.failure(
                MutationErrorKind.NOT_FOUND,
                "This entry no longer exists.",
                event_id,
            )
        except StorageError as e:
            await self._audit.log_mutation_failed("update", str(e), event_id, correlation_id)
            return MutationOutcome.failure(
                MutationErrorKind.STORE_UNAVAILABLE,
                "Could not save the change. Please try again.",
                event_id,
            )

        await self._audit.log_amount_edited(event_id, str(value), correlation_id)
        await self.refresh()
        return MutationOutcome.success(f"Amount changed to {format_amount(value)}", event_id)

    async def delete_event(self, event_id: str) -> MutationOutcome:
        """Delete an event by id. Deleting an already deleted event succeeds."""
        correlation_id = create_correlation_id()
        try:
            await self._store.delete_event(event_id)
        except StorageError as e:
            await self._audit.log_mutation_failed("delete", str(e), event_id, correlation_id)
            return MutationOutcome.failure(
                MutationErrorKind.STORE_UNAVAILABLE,
                "Could not delete the entry. Please try again.",
                event_id,
            )

        await self._audit.log_event_deleted(event_id, correlation_id)
        await self.refresh()
        return MutationOutcome.success("Entry deleted", event_id)

    async def settle_up(self, amount: object = None) -> MutationOutcome:
        """
        Record a reimbursement by the current debtor.

        Args:
            amount: Amount paid back; defaults to the full outstanding balance.
                    Smaller amounts are partial settlements, larger ones flip
                    the balance.
        """
        correlation_id = create_correlation_id()
        summary = self.summary

        if summary.is_settled:
            return MutationOutcome.failure(
                MutationErrorKind.INVALID_STATE,
                "Nothing to settle: the balance is already even.",
            )

        raw = summary.magnitude if amount is None else amount
        try:
            value = await self._validate_amount(raw, correlation_id)
        except AmountValidationError as e:
            return MutationOutcome.failure(MutationErrorKind.VALIDATION, str(e))

        debtor = summary.debtor
        draft = EventDraft(
            amount=value,
            participant_tag=self._roster.tag_for(debtor, EventKind.REIMBURSEMENT),
        )
        try:
            event_id = await self._store.insert_event(draft)
        except StorageError as e:
            await self._audit.log_mutation_failed("settle", str(e), correlation_id=correlation_id)
            return MutationOutcome.failure(
                MutationErrorKind.STORE_UNAVAILABLE,
                "Could not record the reimbursement. Please try again.",
            )

        await self._audit.log_settlement(
            event_id=event_id,
            debtor=debtor,
            receiver=summary.receiver,
            amount=str(value),
            outstanding=str(summary.magnitude),
            correlation_id=correlation_id,
        )
        await self.refresh()
        return MutationOutcome.success(
            f"{debtor} reimbursed {summary.receiver} {format_amount(value)}",
            event_id=event_id,
        )

    async def clear_ledger(self) -> MutationOutcome:
        """Delete every event in the ledger."""
        correlation_id = create_correlation_id()
        try:
            deleted = await self._store.delete_all_events()
        except StorageError as e:
            await self._audit.log_mutation_failed("clear", str(e), correlation_id=correlation_id)
            return MutationOutcome.failure(
                MutationErrorKind.STORE_UNAVAILABLE,
                "Could not clear the ledger. Check the sheet permissions.",
            )

        await self._audit.log_ledger_cleared(deleted, correlation_id)
        await self.refresh()
        return MutationOutcome.success(f"{deleted} entries deleted")

    # Row flows ---------------------------------------------------------------

    def _transition(self, action, *args) -> MutationOutcome:
        try:
            action(*args)
        except InvalidTransitionError as e:
            return MutationOutcome.failure(MutationErrorKind.INVALID_STATE, str(e))
        return MutationOutcome.success(event_id=self._interaction.state.event_id)

    def start_edit(self, event_id: str) -> MutationOutcome:
        """Open the amount editor on a row, closing any other open flow."""
        event = self._view.find(event_id)
        if event is None:
            return MutationOutcome.failure(
                MutationErrorKind.NOT_FOUND, "This entry no longer exists.", event_id
            )
        return self._transition(self._interaction.start_edit, event_id, str(event.amount))

    def update_edit_draft(self, draft: str) -> MutationOutcome:
        return self._transition(self._interaction.update_draft, draft)

    def cancel_edit(self) -> MutationOutcome:
        return self._transition(self._interaction.cancel_edit)

    async def save_edit(self) -> MutationOutcome:
        """
        Save the open editor.

        Stays in the editor when the amount is invalid or the store fails.
        """
        state = self._interaction.state
        if not state.is_editing(state.event_id or ""):
            return MutationOutcome.failure(
                MutationErrorKind.INVALID_STATE, "No amount is being edited."
            )

        outcome = await self.edit_amount(state.event_id, state.draft)
        if outcome.ok and self._interaction.state.is_editing(state.event_id):
            self._interaction.finish_edit()
        return outcome

    def request_delete(self, event_id: str) -> MutationOutcome:
        """Ask for delete confirmation on a row, closing any other open flow."""
        if self._view.find(event_id) is None:
            return MutationOutcome.failure(
                MutationErrorKind.NOT_FOUND, "This entry no longer exists.", event_id
            )
        return self._transition(self._interaction.request_delete, event_id)

    def cancel_delete(self) -> MutationOutcome:
        return self._transition(self._interaction.cancel_delete)

    async def confirm_delete(self) -> MutationOutcome:
        """Second step of a delete. Stays in confirmation if the store fails."""
        state = self._interaction.state
        if not state.is_confirming_delete(state.event_id or ""):
            return MutationOutcome.failure(
                MutationErrorKind.INVALID_STATE, "No delete is awaiting confirmation."
            )

        outcome = await self.delete_event(state.event_id)
        # The refresh usually resets the slot already, since the row is gone
        if outcome.ok and self._interaction.state.is_confirming_delete(state.event_id):
            self._interaction.finish_delete()
        return outcome

    def request_clear(self) -> MutationOutcome:
        return self._transition(self._interaction.request_clear)

    def cancel_clear(self) -> MutationOutcome:
        return self._transition(self._interaction.cancel_clear)

    async def confirm_clear(self) -> MutationOutcome:
        if not self._interaction.state.is_confirming_clear:
            return MutationOutcome.failure(
                MutationErrorKind.INVALID_STATE, "Clearing the ledger was not requested."
            )

        outcome = await self.clear_ledger()
        if outcome.ok and self._interaction.state.is_confirming_clear:
            self._interaction.finish_clear()
        return outcome


def create_ledger_controller(use_storage: bool = True) -> LedgerController:
    """
    Factory function to create the controller and its collaborators.

    Args:
        use_storage: Whether to connect to Google Sheets.
                    Set to False to run against an in-memory ledger.

    Returns:
        A controller that has not been started yet
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging("DEBUG" if app_settings.debug_mode else app_settings.log_level)

    store = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStore(
                sheets_client,
                poll_interval_seconds=settings.ledger.poll_interval_seconds,
            )
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryLedgerStore()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    return LedgerController(
        store,
        audit_logger=audit_logger,
        settings=settings.ledger,
    )
