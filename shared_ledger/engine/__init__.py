"""Reconciliation engine: classification, balance and interaction state."""

from shared_ledger.engine.balance import (
    DEFAULT_EPSILON,
    BalanceCalculator,
    compute_balance,
)
from shared_ledger.engine.classifier import EventClassifier, UnclassifiableEventError
from shared_ledger.engine.formatting import (
    describe_balance,
    format_amount,
    format_timestamp,
    round_amount,
)
from shared_ledger.engine.interaction import (
    InteractionMode,
    InteractionState,
    InteractionStateMachine,
    InvalidTransitionError,
)

__all__ = [
    "DEFAULT_EPSILON",
    "BalanceCalculator",
    "compute_balance",
    "EventClassifier",
    "UnclassifiableEventError",
    "describe_balance",
    "format_amount",
    "format_timestamp",
    "round_amount",
    "InteractionMode",
    "InteractionState",
    "InteractionStateMachine",
    "InvalidTransitionError",
]
