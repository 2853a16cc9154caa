"""
Change notification fan-out shared by the store implementations.

Callbacks are awaited one after the other in subscription order. A failing
callback is logged and skipped; it never fails the write that triggered it.
"""

from itertools import count
from typing import Callable, Optional

import structlog

from shared_ledger.models.ledger import ChangeNotification
from shared_ledger.services.storage.interface import ChangeCallback, Subscription


logger = structlog.get_logger(__name__)


class NotifierSubscription(Subscription):
    """Subscription handle returned by ChangeNotifier.subscribe."""

    def __init__(
        self,
        notifier: "ChangeNotifier",
        token: int,
        on_release: Optional[Callable[[], None]] = None,
    ):
        self._notifier = notifier
        self._token = token
        self._on_release = on_release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._notifier._remove(self._token)
        if self._on_release is not None:
            self._on_release()


class ChangeNotifier:
    """Registry of change callbacks."""

    def __init__(self):
        self._callbacks: dict[int, ChangeCallback] = {}
        self._tokens = count(1)
        self._error_count = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    @property
    def error_count(self) -> int:
        return self._error_count

    def subscribe(
        self,
        callback: ChangeCallback,
        on_release: Optional[Callable[[], None]] = None,
    ) -> Subscription:
        token = next(self._tokens)
        self._callbacks[token] = callback
        return NotifierSubscription(self, token, on_release)

    def _remove(self, token: int) -> None:
        self._callbacks.pop(token, None)

    async def notify(self, notification: ChangeNotification) -> None:
        for token, callback in list(self._callbacks.items()):
            # Unsubscribed by an earlier callback
            if token not in self._callbacks:
                continue
            try:
                await callback(notification)
            except Exception as exc:
                self._error_count += 1
                logger.error(
                    "change_callback_failed",
                    change_type=notification.change_type.value,
                    event_id=notification.event_id,
                    error=str(exc),
                    exc_info=True,
                )
