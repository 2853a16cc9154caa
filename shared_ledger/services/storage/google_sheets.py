"""
Google Sheets ledger store

The ledger is one worksheet with a header row and one event per row
(id, amount, participant_tag, timestamp). Both participants can open it
directly in Sheets, and any number of devices can write to it.

TRADEOFFS:
- No transactions (each operation is a single row write)
- No push notifications. A subscription polls the sheet and compares a
  fingerprint of its contents; local writes notify immediately.
- Limited query capabilities (we read everything and filter in Python,
  which is what a full refresh needs anyway)

The controller only sees LedgerStoreInterface; the in-memory store is
its drop-in replacement for tests and offline runs.
"""

import asyncio
import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from shared_ledger.config import GoogleSheetsSettings, get_settings
from shared_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    StorageError,
    StoreUnavailableError,
    Subscription,
)
from shared_ledger.services.storage.notifier import ChangeNotifier


logger = structlog.get_logger(__name__)


# Column mappings for the events sheet
EVENT_COLUMNS = [
    "id",
    "amount",
    "participant_tag",
    "timestamp",
]

AMOUNT_COLUMN = EVENT_COLUMNS.index("amount") + 1  # gspread columns are 1-based

# Row lookups repeated when concurrent edits shift the sheet
LOCATE_ATTEMPTS = 3

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Service-account connection to the ledger spreadsheet.

    Connecting is retried; worksheets are created with their header row
    on first use.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StoreUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StoreUnavailableError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_events_sheet(self) -> gspread.Worksheet:
        """Get or create the events worksheet."""
        return self._get_or_create_sheet(
            self._settings.events_sheet_name, EVENT_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class SheetSubscription(Subscription):
    """Subscription that keeps the sheet watcher alive while active."""

    def __init__(self, store: "GoogleSheetsLedgerStore", inner: Subscription):
        self._store = store
        self._inner = inner

    @property
    def active(self) -> bool:
        return self._inner.active

    def unsubscribe(self) -> None:
        if not self._inner.active:
            return
        self._inner.unsubscribe()
        self._store._stop_watcher_if_idle()


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One event per row. Amounts are written as plain strings so Sheets
    never reformats them (value_input_option="RAW").
    """

    SOURCE = "google_sheets"

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        if poll_interval_seconds is None:
            poll_interval_seconds = get_settings().ledger.poll_interval_seconds
        self._poll_interval = poll_interval_seconds
        self._notifier = ChangeNotifier()
        self._watcher: Optional[asyncio.Task] = None
        self._last_fingerprint: Optional[str] = None

    # Row conversion ----------------------------------------------------------

    def _draft_to_row(self, event_id: str, draft: EventDraft) -> list:
        """Convert a draft and its new id to a spreadsheet row."""
        return [
            event_id,
            str(draft.amount),
            draft.participant_tag,
            draft.timestamp.isoformat(),
        ]

    def _row_to_event(self, row: list) -> MonetaryEvent:
        """Convert a spreadsheet row to a MonetaryEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return MonetaryEvent(
            id=safe_get(0),
            amount=Decimal(safe_get(1)),
            participant_tag=safe_get(2),
            timestamp=datetime.fromisoformat(safe_get(3)),
        )

    def _find_row_index(self, rows: list[list], event_id: str) -> Optional[int]:
        """1-based sheet row index of an event, header included."""
        for idx, row in enumerate(rows[1:], start=2):  # Start from 2 (row 1 is header)
            if row and row[0] == event_id:
                return idx
        return None

    def _locate_row(self, sheet, event_id: str) -> Optional[int]:
        """
        Find the row of an event and confirm it just before a write.

        Another device may insert or delete rows between the full read and
        the write, shifting row numbers. The id cell is read again at the
        found index and the lookup repeats while it no longer matches.
        """
        for _ in range(LOCATE_ATTEMPTS):
            idx = self._find_row_index(sheet.get_all_values(), event_id)
            if idx is None:
                return None
            current = sheet.row_values(idx)
            if current and current[0] == event_id:
                return idx
            logger.info("event_row_moved", event_id=event_id, row=idx)
        raise StoreUnavailableError(
            f"Event {event_id} kept moving while the sheet was being edited"
        )

    # Store operations --------------------------------------------------------

    async def list_events(self, newest_first: bool = True) -> list[MonetaryEvent]:
        try:
            sheet = self._client.get_events_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to list events: {e}") from e

        events = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                # Hand-edited rows with a zero amount or a bad date end up here
                logger.warning("malformed_event_row", row=row, error=str(e))

        events.sort(key=lambda e: (e.timestamp, e.id), reverse=newest_first)
        return events

    async def insert_event(self, draft: EventDraft) -> str:
        event_id = uuid4().hex
        try:
            sheet = self._client.get_events_sheet()
            sheet.append_row(self._draft_to_row(event_id, draft), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to insert event: {e}") from e

        await self._notify(ChangeType.INSERT, event_id)
        return event_id

    async def update_event_amount(self, event_id: str, amount: Decimal) -> None:
        if amount <= 0:
            raise ValueError("Amount must be greater than zero")
        try:
            sheet = self._client.get_events_sheet()
            idx = self._locate_row(sheet, event_id)
            if idx is None:
                raise NotFoundError(f"Event not found: {event_id}")
            sheet.update_cell(idx, AMOUNT_COLUMN, str(amount))
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to update event: {e}") from e

        await self._notify(ChangeType.UPDATE, event_id)

    async def delete_event(self, event_id: str) -> None:
        try:
            sheet = self._client.get_events_sheet()
            idx = self._locate_row(sheet, event_id)
            if idx is None:
                return
            sheet.delete_rows(idx)
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to delete event: {e}") from e

        await self._notify(ChangeType.DELETE, event_id)

    async def delete_all_events(self) -> int:
        try:
            sheet = self._client.get_events_sheet()
            data_rows = len(sheet.get_all_values()) - 1
            if data_rows <= 0:
                return 0
            # Keep the header row
            sheet.delete_rows(2, data_rows + 1)
        except StorageError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Failed to clear events: {e}") from e

        await self._notify(ChangeType.DELETE)
        return data_rows

    # Change notifications ----------------------------------------------------

    async def _notify(self, change_type: ChangeType, event_id: Optional[str] = None) -> None:
        await self._notifier.notify(ChangeNotification(
            change_type=change_type,
            event_id=event_id,
            source=self.SOURCE,
        ))

    def subscribe(self, callback: ChangeCallback) -> Subscription:
        """
        Subscribe to changes.

        Must be called from a running event loop: the first subscription
        starts the polling task, the last unsubscribe stops it.
        """
        inner = self._notifier.subscribe(callback)
        if self._watcher is None or self._watcher.done():
            self._last_fingerprint = None
            self._watcher = asyncio.get_running_loop().create_task(self._watch())
        return SheetSubscription(self, inner)

    def _stop_watcher_if_idle(self) -> None:
        if self._notifier.subscriber_count == 0 and self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None

    def _fingerprint(self) -> str:
        rows = self._client.get_events_sheet().get_all_values()
        return hashlib.sha256(json.dumps(rows).encode("utf-8")).hexdigest()

    async def check_for_changes(self) -> bool:
        """
        Compare the sheet with the last fingerprint and notify on a difference.

        The first call only records the fingerprint. Returns True if
        subscribers were notified.
        """
        # gspread calls block
        fingerprint = await asyncio.to_thread(self._fingerprint)
        previous = self._last_fingerprint
        self._last_fingerprint = fingerprint
        if previous is None or previous == fingerprint:
            return False
        await self._notifier.notify(ChangeNotification(
            change_type=ChangeType.UNKNOWN,
            source=f"{self.SOURCE}_poll",
        ))
        return True

    async def _watch(self) -> None:
        while True:
            try:
                await self.check_for_changes()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep polling; the next successful poll catches up
                logger.warning("sheet_poll_failed", error=str(e))
            await asyncio.sleep(self._poll_interval)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail kept in its own worksheet, one row per AuditEvent.

    Rows are only ever appended, so clearing the ledger keeps its history.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_id=safe_get(4) or None,
            correlation_id=UUID(safe_get(5)) if safe_get(5) else None,
            description=safe_get(6),
            details=json.loads(safe_get(7)) if safe_get(7) else {},
            error_message=safe_get(8) or None,
            is_user_action=safe_get(9).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning(
                "audit_sheet_write_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StoreUnavailableError(f"Failed to get audit events: {e}") from e

        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception as e:
                    logger.warning("malformed_audit_row", error=str(e))

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
