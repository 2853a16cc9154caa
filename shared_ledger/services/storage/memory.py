"""
In-Memory Storage Implementation

Used for tests and for running the ledger without Google credentials.
Several controllers can share one instance to play the part of several
devices writing to the same ledger: every mutation notifies all
subscribers before the mutating call returns.
"""

from decimal import Decimal
from typing import Callable, Iterable, Optional
from uuid import uuid4

from shared_ledger.models.audit import AuditEvent
from shared_ledger.models.ledger import (
    ChangeNotification,
    ChangeType,
    EventDraft,
    MonetaryEvent,
)
from shared_ledger.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    LedgerStoreInterface,
    NotFoundError,
    Subscription,
)
from shared_ledger.services.storage.notifier import ChangeNotifier


class InMemoryLedgerStore(LedgerStoreInterface):
    """Ledger store backed by a dict, with synchronous change fan-out."""

    SOURCE = "memory"

    def __init__(
        self,
        events: Optional[Iterable[MonetaryEvent]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._events: dict[str, MonetaryEvent] = {}
        for event in events or []:
            self._events[event.id] = event
        self._id_factory = id_factory or (lambda: uuid4().hex)
        self._issued_ids: set[str] = set(self._events)
        self._notifier = ChangeNotifier()

    @property
    def subscriber_count(self) -> int:
        return self._notifier.subscriber_count

    async def _notify(self, change_type: ChangeType, event_id: Optional[str] = None) -> None:
        await self._notifier.notify(ChangeNotification(
            change_type=change_type,
            event_id=event_id,
            source=self.SOURCE,
        ))

    async def list_events(self, newest_first: bool = True) -> list[MonetaryEvent]:
        return sorted(
            self._events.values(),
            key=lambda e: (e.timestamp, e.id),
            reverse=newest_first,
        )

    async def insert_event(self, draft: EventDraft) -> str:
        event_id = self._id_factory()
        # Ids are never reused, including ids of deleted events
        while event_id in self._issued_ids:
            event_id = self._id_factory()
        self._issued_ids.add(event_id)
        self._events[event_id] = MonetaryEvent.from_draft(event_id, draft)
        await self._notify(ChangeType.INSERT, event_id)
        return event_id

    async def update_event_amount(self, event_id: str, amount: Decimal) -> None:
        current = self._events.get(event_id)
        if current is None:
            raise NotFoundError(f"Event not found: {event_id}")
        # Rebuilt rather than copied so the amount > 0 check runs again
        self._events[event_id] = MonetaryEvent(
            id=current.id,
            amount=amount,
            participant_tag=current.participant_tag,
            timestamp=current.timestamp,
        )
        await self._notify(ChangeType.UPDATE, event_id)

    async def delete_event(self, event_id: str) -> None:
        if self._events.pop(event_id, None) is not None:
            await self._notify(ChangeType.DELETE, event_id)

    async def delete_all_events(self) -> int:
        deleted = len(self._events)
        self._events.clear()
        if deleted:
            await self._notify(ChangeType.DELETE)
        return deleted

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        return self._notifier.subscribe(callback)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
