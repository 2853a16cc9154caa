"""
Interaction State Machine

Governs the confirmation flows on ledger rows: editing an amount and
confirming a delete, plus the confirmation before clearing the whole ledger.

CRITICAL: There is a single slot for the whole list. At most one row is
being edited or awaiting delete confirmation at any time. Starting a flow
replaces whatever flow was active, so the mutual exclusion holds by
construction rather than through per-row flags.

    IDLE --start_edit(id)--------> EDITING(id)
    EDITING --finish_edit--------> IDLE        (remote update succeeded)
    EDITING --cancel_edit--------> IDLE        (no remote call)
    IDLE --request_delete(id)----> CONFIRMING_DELETE(id)
    CONFIRMING_DELETE --finish---> IDLE        (remote delete completed)
    CONFIRMING_DELETE --cancel---> IDLE
    IDLE --request_clear---------> CONFIRMING_CLEAR
    CONFIRMING_CLEAR --finish/cancel--> IDLE
"""

from enum import Enum
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, model_validator


logger = structlog.get_logger(__name__)


class InteractionMode(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    CONFIRMING_DELETE = "confirming_delete"
    CONFIRMING_CLEAR = "confirming_clear"


_ROW_MODES = (InteractionMode.EDITING, InteractionMode.CONFIRMING_DELETE)


class InvalidTransitionError(Exception):
    """The requested transition is not allowed from the current state."""
    pass


class InteractionState(BaseModel):
    """Immutable snapshot of the single interaction slot."""
    model_config = ConfigDict(frozen=True)

    mode: InteractionMode = InteractionMode.IDLE
    event_id: Optional[str] = None
    draft: str = ""

    @model_validator(mode='after')
    def validate_event_id(self) -> 'InteractionState':
        if self.mode in _ROW_MODES and not self.event_id:
            raise ValueError(f"{self.mode.value} requires an event id")
        if self.mode not in _ROW_MODES and self.event_id is not None:
            raise ValueError(f"{self.mode.value} does not refer to an event")
        return self

    @property
    def is_idle(self) -> bool:
        return self.mode == InteractionMode.IDLE

    def is_editing(self, event_id: str) -> bool:
        return self.mode == InteractionMode.EDITING and self.event_id == event_id

    def is_confirming_delete(self, event_id: str) -> bool:
        return self.mode == InteractionMode.CONFIRMING_DELETE and self.event_id == event_id

    @property
    def is_confirming_clear(self) -> bool:
        return self.mode == InteractionMode.CONFIRMING_CLEAR


class InteractionStateMachine:
    """
    Holds the current InteractionState and applies transitions.

    Invalid transitions raise InvalidTransitionError and leave the state
    unchanged.
    """

    def __init__(self):
        self._state = InteractionState()

    @property
    def state(self) -> InteractionState:
        return self._state

    def _set(self, state: InteractionState) -> InteractionState:
        if state != self._state:
            logger.debug(
                "interaction_transition",
                from_mode=self._state.mode.value,
                from_event_id=self._state.event_id,
                to_mode=state.mode.value,
                to_event_id=state.event_id,
            )
        self._state = state
        return state

    def _require(self, mode: InteractionMode, action: str) -> None:
        if self._state.mode != mode:
            raise InvalidTransitionError(
                f"Cannot {action} while {self._state.mode.value}"
            )

    # Editing -----------------------------------------------------------------

    def start_edit(self, event_id: str, draft: str = "") -> InteractionState:
        """Enter EDITING for a row, cancelling any other active flow."""
        return self._set(InteractionState(
            mode=InteractionMode.EDITING,
            event_id=event_id,
            draft=draft,
        ))

    def update_draft(self, draft: str) -> InteractionState:
        self._require(InteractionMode.EDITING, "update the edit draft")
        return self._set(self._state.model_copy(update={"draft": draft}))

    def cancel_edit(self) -> InteractionState:
        self._require(InteractionMode.EDITING, "cancel an edit")
        return self._set(InteractionState())

    def finish_edit(self) -> InteractionState:
        """Called once the remote update succeeded."""
        self._require(InteractionMode.EDITING, "save an edit")
        return self._set(InteractionState())

    # Deleting ----------------------------------------------------------------

    def request_delete(self, event_id: str) -> InteractionState:
        """Ask for delete confirmation, cancelling any other active flow."""
        return self._set(InteractionState(
            mode=InteractionMode.CONFIRMING_DELETE,
            event_id=event_id,
        ))

    def cancel_delete(self) -> InteractionState:
        self._require(InteractionMode.CONFIRMING_DELETE, "cancel a delete")
        return self._set(InteractionState())

    def finish_delete(self) -> InteractionState:
        """Called once the remote delete completed."""
        self._require(InteractionMode.CONFIRMING_DELETE, "confirm a delete")
        return self._set(InteractionState())

    # Clearing ----------------------------------------------------------------

    def request_clear(self) -> InteractionState:
        return self._set(InteractionState(mode=InteractionMode.CONFIRMING_CLEAR))

    def cancel_clear(self) -> InteractionState:
        self._require(InteractionMode.CONFIRMING_CLEAR, "cancel clearing the ledger")
        return self._set(InteractionState())

    def finish_clear(self) -> InteractionState:
        self._require(InteractionMode.CONFIRMING_CLEAR, "clear the ledger")
        return self._set(InteractionState())

    # -------------------------------------------------------------------------

    def reset(self) -> InteractionState:
        return self._set(InteractionState())

    def reconcile(self, event_ids: Iterable[str]) -> bool:
        """
        Drop a row flow whose event no longer exists.

        Returns True if the state was reset.
        """
        if self._state.mode not in _ROW_MODES:
            return False
        if self._state.event_id in set(event_ids):
            return False
        self._set(InteractionState())
        return True
