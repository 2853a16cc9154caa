"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the ledger store.
This allows us to:
1. Use Google Sheets as the shared, multi-writer backend
2. Use in-memory storage for testing and local runs
3. Swap in a real database later
4. Keep the reconciliation logic decoupled from storage implementation

The interface is intentionally small: insert, update the amount, delete,
list everything, and a change subscription. Participant and kind are
immutable once written, so there is no general "update event" operation.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Awaitable, Callable

from shared_ledger.models.ledger import ChangeNotification, EventDraft, MonetaryEvent
from shared_ledger.models.audit import AuditEvent


ChangeCallback = Callable[[ChangeNotification], Awaitable[None]]


class Subscription(ABC):
    """
    Handle on a change subscription.

    Acquired once per session and released on shutdown.
    unsubscribe() is idempotent.
    """

    @property
    @abstractmethod
    def active(self) -> bool:
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        pass


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger store.

    The store is the sole source of truth. Any storage implementation
    must implement these methods and report every insert, update and
    delete, from any writer, to its subscribers.
    """

    @abstractmethod
    async def list_events(self, newest_first: bool = True) -> list[MonetaryEvent]:
        """
        Fetch the full event collection.

        Args:
            newest_first: Sort by timestamp descending (display order)

        Returns:
            All events

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def insert_event(self, draft: EventDraft) -> str:
        """
        Create an event.

        Args:
            draft: Amount, participant tag and timestamp

        Returns:
            The id assigned by the store

        Raises:
            StoreUnavailableError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_event_amount(self, event_id: str, amount: Decimal) -> None:
        """
        Change the amount of an existing event.

        Raises:
            NotFoundError: If the event doesn't exist
            StoreUnavailableError: If the update fails
        """
        pass

    @abstractmethod
    async def delete_event(self, event_id: str) -> None:
        """
        Delete an event by id. Deleting an unknown id is a no-op.

        Raises:
            StoreUnavailableError: If the delete fails
        """
        pass

    @abstractmethod
    async def delete_all_events(self) -> int:
        """
        Delete every event.

        Returns:
            Number of events deleted
        """
        pass

    @abstractmethod
    def subscribe(self, callback: ChangeCallback) -> Subscription:
        """
        Register a coroutine called after every change to the collection.

        Notifications carry no guarantee beyond "something changed".
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StoreUnavailableError(StorageError):
    """The backend could not be reached or rejected the operation."""
    pass
