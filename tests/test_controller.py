"""
Flow tests for the reconciliation controller.

Every test runs against the in-memory store, wrapped so calls can be
counted and outages simulated (see conftest.RecordingLedgerStore).
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from shared_ledger.audit import AuditLogger
from shared_ledger.config import get_settings
from shared_ledger.controller import (
    FETCH_ERROR_MESSAGE,
    LedgerController,
    create_ledger_controller,
)
from shared_ledger.models import AuditEventType, EventDraft, MutationErrorKind
from shared_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


class GatedLedgerStore(InMemoryLedgerStore):
    """Store whose next list_events can be held back after taking its snapshot."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = None

    async def list_events(self, newest_first: bool = True):
        events = await super().list_events(newest_first)
        gate, self.gate = self.gate, None
        if gate is not None:
            await gate.wait()
        return events


async def audit_types(audit_storage) -> list[AuditEventType]:
    return [e.event_type for e in await audit_storage.get_recent_events(limit=1000)]


class TestRefresh:
    """Tests for loading the view from the store."""

    @pytest.mark.asyncio
    async def test_start_loads_existing_events(self, store, calculator, make_event):
        store = type(store)([make_event(100, "Tomi"), make_event(40, "Damien")])
        controller = LedgerController(store, calculator=calculator)
        await controller.start()

        assert len(controller.events) == 2
        assert controller.summary.balance == Decimal("30")
        assert controller.view.has_loaded
        assert controller.view.is_loading is False
        await controller.close()

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, controller):
        await controller.add_expense("Tomi", "100")
        first = controller.summary
        await controller.refresh()
        await controller.refresh()
        assert controller.summary == first

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_view(self, store, controller, audit_storage):
        await controller.add_expense("Tomi", "100")
        events = controller.events
        summary = controller.summary

        store.failing.add("list_events")
        assert await controller.refresh() is False

        assert controller.events == events
        assert controller.summary == summary
        assert controller.view.fetch_error == FETCH_ERROR_MESSAGE
        assert controller.view.is_loading is False
        assert AuditEventType.REFRESH_FAILED in await audit_types(audit_storage)

    @pytest.mark.asyncio
    async def test_successful_refresh_clears_error(self, store, controller):
        store.failing.add("list_events")
        await controller.refresh()
        store.failing.clear()

        assert await controller.refresh() is True
        assert controller.view.fetch_error is None

    @pytest.mark.asyncio
    async def test_dismiss_error(self, store, controller):
        store.failing.add("list_events")
        await controller.refresh()
        controller.dismiss_error()
        assert controller.view.fetch_error is None

    @pytest.mark.asyncio
    async def test_stale_refresh_is_discarded(self, calculator):
        """Test that a slow, older snapshot never overwrites a newer one."""
        store = GatedLedgerStore()
        controller = LedgerController(
            store,
            calculator=calculator,
            audit_logger=AuditLogger(InMemoryAuditStorage()),
        )
        gate = asyncio.Event()
        store.gate = gate

        slow = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)  # slow refresh has read the empty ledger and waits

        await store.insert_event(EventDraft(amount=Decimal("10"), participant_tag="Tomi"))
        assert await controller.refresh() is True

        gate.set()
        assert await slow is False
        assert len(controller.events) == 1
        assert controller.view.is_loading is False

    @pytest.mark.asyncio
    async def test_unclassifiable_events_reported_once(self, calculator, make_event):
        audit_storage = InMemoryAuditStorage()
        store = InMemoryLedgerStore([make_event(100, "Tomi"), make_event(5, "Alice")])
        controller = LedgerController(
            store,
            calculator=calculator,
            audit_logger=AuditLogger(audit_storage),
        )

        await controller.refresh()
        await controller.refresh()

        assert controller.summary.balance == Decimal("50")
        assert len(controller.summary.unclassified) == 1
        types = await audit_types(audit_storage)
        assert types.count(AuditEventType.UNCLASSIFIABLE_EVENT) == 1


class TestAddExpense:
    """Tests for recording shared expenses."""

    @pytest.mark.asyncio
    async def test_add_expense(self, controller, audit_storage):
        controller.amount_input = "25"
        outcome = await controller.add_expense("Tomi")

        assert outcome.ok
        assert outcome.message == "Tomi paid 25.00"
        assert controller.amount_input == ""
        assert controller.summary.shared_total("Tomi") == Decimal("25")
        assert controller.events[0].id == outcome.event_id
        assert AuditEventType.EXPENSE_ADDED in await audit_types(audit_storage)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["0", "-5", "abc", "", "12abc"])
    async def test_invalid_amount_never_reaches_store(self, store, controller, audit_storage, raw):
        controller.amount_input = raw
        outcome = await controller.add_expense("Tomi")

        assert outcome.ok is False
        assert outcome.error_kind == MutationErrorKind.VALIDATION
        assert store.calls == []
        assert controller.amount_input == raw
        assert AuditEventType.VALIDATION_FAILED in await audit_types(audit_storage)

    @pytest.mark.asyncio
    async def test_unknown_participant_rejected(self, store, controller):
        outcome = await controller.add_expense("Alice", "10")
        assert outcome.error_kind == MutationErrorKind.VALIDATION
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_failed_insert_keeps_input(self, store, controller, audit_storage):
        controller.amount_input = "25"
        store.failing.add("insert_event")

        outcome = await controller.add_expense("Damien")

        assert outcome.error_kind == MutationErrorKind.STORE_UNAVAILABLE
        assert controller.amount_input == "25"
        assert controller.events == []
        assert AuditEventType.MUTATION_FAILED in await audit_types(audit_storage)


class TestEditAndDelete:
    """Tests for changing and removing single events."""

    @pytest.mark.asyncio
    async def test_edit_amount(self, controller):
        added = await controller.add_expense("Tomi", "100")
        outcome = await controller.edit_amount(added.event_id, "60")

        assert outcome.ok
        assert controller.summary.shared_total("Tomi") == Decimal("60")
        assert controller.events[0].participant_tag == "Tomi"

    @pytest.mark.asyncio
    async def test_edit_with_invalid_amount(self, store, controller):
        added = await controller.add_expense("Tomi", "100")
        store.calls.clear()

        outcome = await controller.edit_amount(added.event_id, "0")
        assert outcome.error_kind == MutationErrorKind.VALIDATION
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_edit_missing_event(self, controller):
        outcome = await controller.edit_amount("missing", "10")
        assert outcome.error_kind == MutationErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_only_event_of_participant(self, controller):
        await controller.add_expense("Tomi", "100")
        added = await controller.add_expense("Damien", "40")

        outcome = await controller.delete_event(added.event_id)

        assert outcome.ok
        assert controller.summary.shared_total("Damien") == Decimal("0")
        assert controller.summary.balance == Decimal("50")

    @pytest.mark.asyncio
    async def test_delete_already_deleted_event(self, controller):
        outcome = await controller.delete_event("missing")
        assert outcome.ok

    @pytest.mark.asyncio
    async def test_delete_failure(self, store, controller):
        added = await controller.add_expense("Tomi", "100")
        store.failing.add("delete_event")

        outcome = await controller.delete_event(added.event_id)
        assert outcome.error_kind == MutationErrorKind.STORE_UNAVAILABLE
        assert len(controller.events) == 1


class TestSettleUp:
    """Tests for recording reimbursements."""

    @pytest.mark.asyncio
    async def test_settle_full_balance(self, controller, audit_storage):
        await controller.add_expense("Tomi", "100")
        await controller.add_expense("Damien", "40")
        assert controller.summary.debtor == "Damien"

        outcome = await controller.settle_up()

        assert outcome.ok
        assert outcome.message == "Damien reimbursed Tomi 30.00"
        reimbursement = controller.view.find(outcome.event_id)
        assert reimbursement.participant_tag == "Damien (Remboursement)"
        assert reimbursement.amount == Decimal("30")
        assert controller.summary.is_settled
        assert AuditEventType.SETTLEMENT_RECORDED in await audit_types(audit_storage)

    @pytest.mark.asyncio
    async def test_settle_when_first_participant_owes(self, controller):
        await controller.add_expense("Damien", "50")

        outcome = await controller.settle_up()

        reimbursement = controller.view.find(outcome.event_id)
        assert reimbursement.participant_tag == "Tomi (Remboursement)"
        assert reimbursement.amount == Decimal("25")
        assert controller.summary.is_settled

    @pytest.mark.asyncio
    async def test_partial_settlement(self, controller):
        await controller.add_expense("Tomi", "100")
        outcome = await controller.settle_up("20")

        assert outcome.ok
        assert controller.summary.balance == Decimal("30")
        assert controller.summary.debtor == "Damien"

    @pytest.mark.asyncio
    async def test_settle_on_settled_ledger_rejected(self, store, controller):
        outcome = await controller.settle_up()
        assert outcome.error_kind == MutationErrorKind.INVALID_STATE
        assert store.mutation_calls == []

    @pytest.mark.asyncio
    async def test_settle_with_invalid_amount(self, store, controller):
        await controller.add_expense("Tomi", "100")
        store.calls.clear()

        outcome = await controller.settle_up("-3")
        assert outcome.error_kind == MutationErrorKind.VALIDATION
        assert store.calls == []


class TestClearLedger:
    """Tests for deleting everything."""

    @pytest.mark.asyncio
    async def test_clear_ledger(self, controller, audit_storage):
        await controller.add_expense("Tomi", "100")
        await controller.add_expense("Damien", "40")

        outcome = await controller.clear_ledger()

        assert outcome.ok
        assert outcome.message == "2 entries deleted"
        assert controller.events == []
        assert controller.summary.is_settled
        assert AuditEventType.LEDGER_CLEARED in await audit_types(audit_storage)

    @pytest.mark.asyncio
    async def test_clear_failure_keeps_events(self, store, controller):
        await controller.add_expense("Tomi", "100")
        store.failing.add("delete_all_events")

        outcome = await controller.clear_ledger()
        assert outcome.error_kind == MutationErrorKind.STORE_UNAVAILABLE
        assert len(controller.events) == 1


class TestRowFlows:
    """Tests for the edit and confirmation flows driven through the controller."""

    @pytest.mark.asyncio
    async def test_edit_flow(self, controller):
        added = await controller.add_expense("Tomi", "40")

        assert controller.start_edit(added.event_id).ok
        assert controller.interaction.is_editing(added.event_id)
        assert controller.interaction.draft == "40"

        controller.update_edit_draft("45")
        outcome = await controller.save_edit()

        assert outcome.ok
        assert controller.interaction.is_idle
        assert controller.events[0].amount == Decimal("45")

    @pytest.mark.asyncio
    async def test_invalid_draft_stays_in_editor(self, controller):
        added = await controller.add_expense("Tomi", "40")
        controller.start_edit(added.event_id)
        controller.update_edit_draft("abc")

        outcome = await controller.save_edit()

        assert outcome.error_kind == MutationErrorKind.VALIDATION
        assert controller.interaction.is_editing(added.event_id)
        assert controller.interaction.draft == "abc"

    @pytest.mark.asyncio
    async def test_store_failure_stays_in_editor(self, store, controller):
        added = await controller.add_expense("Tomi", "40")
        controller.start_edit(added.event_id)
        controller.update_edit_draft("50")
        store.failing.add("update_event_amount")

        outcome = await controller.save_edit()

        assert outcome.error_kind == MutationErrorKind.STORE_UNAVAILABLE
        assert controller.interaction.is_editing(added.event_id)

    @pytest.mark.asyncio
    async def test_save_without_editor(self, controller):
        outcome = await controller.save_edit()
        assert outcome.error_kind == MutationErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_cancel_edit(self, store, controller):
        added = await controller.add_expense("Tomi", "40")
        store.calls.clear()
        controller.start_edit(added.event_id)

        assert controller.cancel_edit().ok
        assert controller.interaction.is_idle
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_start_edit_unknown_row(self, controller):
        outcome = controller.start_edit("missing")
        assert outcome.error_kind == MutationErrorKind.NOT_FOUND
        assert controller.interaction.is_idle

    @pytest.mark.asyncio
    async def test_edit_while_other_row_awaits_delete(self, controller):
        a = await controller.add_expense("Tomi", "10")
        b = await controller.add_expense("Damien", "20")

        controller.request_delete(b.event_id)
        controller.start_edit(a.event_id)

        assert controller.interaction.is_editing(a.event_id)
        assert not controller.interaction.is_confirming_delete(b.event_id)

    @pytest.mark.asyncio
    async def test_confirm_delete_flow(self, controller):
        added = await controller.add_expense("Tomi", "10")

        assert controller.request_delete(added.event_id).ok
        outcome = await controller.confirm_delete()

        assert outcome.ok
        assert controller.interaction.is_idle
        assert controller.events == []

    @pytest.mark.asyncio
    async def test_cancel_delete(self, controller):
        added = await controller.add_expense("Tomi", "10")
        controller.request_delete(added.event_id)

        assert controller.cancel_delete().ok
        assert len(controller.events) == 1

    @pytest.mark.asyncio
    async def test_failed_delete_stays_in_confirmation(self, store, controller):
        added = await controller.add_expense("Tomi", "10")
        controller.request_delete(added.event_id)
        store.failing.add("delete_event")

        outcome = await controller.confirm_delete()

        assert outcome.ok is False
        assert controller.interaction.is_confirming_delete(added.event_id)

    @pytest.mark.asyncio
    async def test_confirm_delete_without_request(self, controller):
        outcome = await controller.confirm_delete()
        assert outcome.error_kind == MutationErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_clear_flow(self, controller):
        await controller.add_expense("Tomi", "10")

        assert controller.request_clear().ok
        assert controller.interaction.is_confirming_clear
        outcome = await controller.confirm_clear()

        assert outcome.ok
        assert controller.interaction.is_idle
        assert controller.events == []

    @pytest.mark.asyncio
    async def test_confirm_clear_without_request(self, store, controller):
        outcome = await controller.confirm_clear()
        assert outcome.error_kind == MutationErrorKind.INVALID_STATE
        assert store.mutation_calls == []


class TestMultipleWriters:
    """Tests for two devices sharing one store."""

    @pytest.mark.asyncio
    async def test_other_controller_sees_changes(self, store, calculator):
        phone = LedgerController(store, calculator=calculator)
        laptop = LedgerController(store, calculator=calculator)
        await phone.start()
        await laptop.start()

        await phone.add_expense("Tomi", "100")
        await laptop.add_expense("Damien", "40")

        assert phone.summary.balance == Decimal("30")
        assert laptop.summary.balance == Decimal("30")
        assert [e.id for e in phone.events] == [e.id for e in laptop.events]

        await phone.close()
        await laptop.close()

    @pytest.mark.asyncio
    async def test_remote_delete_closes_editor(self, store, calculator):
        phone = LedgerController(store, calculator=calculator)
        laptop = LedgerController(store, calculator=calculator)
        await phone.start()
        await laptop.start()

        added = await phone.add_expense("Tomi", "100")
        phone.start_edit(added.event_id)
        await laptop.delete_event(added.event_id)

        assert phone.interaction.is_idle
        assert phone.events == []

        await phone.close()
        await laptop.close()

    @pytest.mark.asyncio
    async def test_closed_controller_stops_refreshing(self, store, calculator):
        phone = LedgerController(store, calculator=calculator)
        laptop = LedgerController(store, calculator=calculator)
        await phone.start()
        await laptop.start()

        await laptop.close()
        assert laptop.is_subscribed is False
        await phone.add_expense("Tomi", "100")

        assert laptop.events == []
        assert store.subscriber_count == 1
        await phone.close()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, store, calculator):
        async with LedgerController(store, calculator=calculator) as controller:
            assert controller.is_subscribed
            assert store.subscriber_count == 1
        assert controller.is_subscribed is False
        assert store.subscriber_count == 0


class TestFactory:
    """Tests for create_ledger_controller."""

    def test_in_memory_controller(self):
        controller = create_ledger_controller(use_storage=False)
        assert isinstance(controller.store, InMemoryLedgerStore)
        assert controller.roster.participants == (
            controller.roster.first,
            controller.roster.second,
        )

    def test_debug_mode_forces_debug_logging(self, monkeypatch):
        """Test that the debug flag wins over the configured log level."""
        monkeypatch.setenv("DEBUG_MODE", "true")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        root = logging.getLogger()
        previous = root.level
        get_settings.cache_clear()
        try:
            create_ledger_controller(use_storage=False)
            assert root.level == logging.DEBUG
        finally:
            root.setLevel(previous)
            get_settings.cache_clear()
