"""Shared fixtures for the Shared Ledger test suite."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import pytest

from shared_ledger.audit import AuditLogger
from shared_ledger.controller import LedgerController
from shared_ledger.engine import BalanceCalculator, EventClassifier
from shared_ledger.models import MonetaryEvent, Roster
from shared_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    StoreUnavailableError,
)


BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingLedgerStore(InMemoryLedgerStore):
    """
    In-memory store that records every call and can simulate an outage.

    Put an operation name in `failing` to make that operation raise
    StoreUnavailableError.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: list[str] = []
        self.failing: set[str] = set()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise StoreUnavailableError(f"{name} failed: backend unreachable")

    @property
    def mutation_calls(self) -> list[str]:
        return [call for call in self.calls if call != "list_events"]

    async def list_events(self, newest_first: bool = True):
        self._record("list_events")
        return await super().list_events(newest_first)

    async def insert_event(self, draft):
        self._record("insert_event")
        return await super().insert_event(draft)

    async def update_event_amount(self, event_id, amount):
        self._record("update_event_amount")
        return await super().update_event_amount(event_id, amount)

    async def delete_event(self, event_id):
        self._record("delete_event")
        return await super().delete_event(event_id)

    async def delete_all_events(self):
        self._record("delete_all_events")
        return await super().delete_all_events()


@pytest.fixture
def roster() -> Roster:
    return Roster(first="Tomi", second="Damien", reimbursement_marker=" (Remboursement)")


@pytest.fixture
def classifier(roster) -> EventClassifier:
    return EventClassifier(roster)


@pytest.fixture
def calculator(classifier) -> BalanceCalculator:
    return BalanceCalculator(classifier, Decimal("0.01"))


@pytest.fixture
def make_event():
    """Factory for stored events with increasing ids and timestamps."""
    ids = count(1)

    def _make(amount, participant_tag: str, event_id: str = None) -> MonetaryEvent:
        n = next(ids)
        return MonetaryEvent(
            id=event_id or f"evt-{n}",
            amount=Decimal(str(amount)),
            participant_tag=participant_tag,
            timestamp=BASE_TIME + timedelta(minutes=n),
        )

    return _make


@pytest.fixture
def store() -> RecordingLedgerStore:
    return RecordingLedgerStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def controller(store, calculator, audit_storage) -> LedgerController:
    return LedgerController(
        store,
        calculator=calculator,
        audit_logger=AuditLogger(audit_storage),
    )
