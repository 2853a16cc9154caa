"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the ledger store.
Google Sheets is the shared backend; the in-memory store serves tests and
local runs. Both are interchangeable behind LedgerStoreInterface.
"""

from shared_ledger.services.storage.interface import (
    AuditStorageInterface,
    ChangeCallback,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    StoreUnavailableError,
    Subscription,
)
from shared_ledger.services.storage.notifier import ChangeNotifier
from shared_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from shared_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ChangeCallback",
    "LedgerStoreInterface",
    "Subscription",
    "ChangeNotifier",
    # Exceptions
    "NotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
