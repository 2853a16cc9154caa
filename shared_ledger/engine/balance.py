"""
Balance Calculator

Maps the full event collection to a signed balance and a "who owes whom"
result. Recomputed from scratch on every observation of the ledger; nothing
here is stored or updated incrementally.

Sign convention: a positive balance means the second participant owes the
first.

    raw_balance = shared(first) / 2 - shared(second) / 2
    balance     = raw_balance - reimbursed(second) + reimbursed(first)

A reimbursement is written under the name of the participant who pays it
back, so a reimbursement by the debtor always moves the balance towards zero.

All arithmetic is Decimal. The settled check runs on the unrounded
magnitude; rounding to two decimals happens only in formatting.
"""

from decimal import Decimal
from typing import Iterable

import structlog

from shared_ledger.engine.classifier import EventClassifier, UnclassifiableEventError
from shared_ledger.models.ledger import (
    BalanceSummary,
    EventKind,
    MonetaryEvent,
    Roster,
)


DEFAULT_EPSILON = Decimal("0.01")

_ZERO = Decimal("0")
_TWO = Decimal("2")

logger = structlog.get_logger(__name__)


class BalanceCalculator:
    """
    Computes BalanceSummary objects for one roster.

    Unclassifiable events never make the calculation fail: they are left
    out of every total, listed on the summary and logged as warnings.
    """

    def __init__(
        self,
        classifier: EventClassifier,
        epsilon: Decimal = DEFAULT_EPSILON,
    ):
        if epsilon <= 0:
            raise ValueError("Settlement tolerance must be positive")
        self._classifier = classifier
        self._epsilon = epsilon

    @property
    def epsilon(self) -> Decimal:
        return self._epsilon

    @property
    def roster(self) -> Roster:
        return self._classifier.roster

    def compute(self, events: Iterable[MonetaryEvent]) -> BalanceSummary:
        roster = self._classifier.roster
        shared = {name: _ZERO for name in roster.participants}
        reimbursed = {name: _ZERO for name in roster.participants}
        unclassified = []
        event_count = 0

        for event in events:
            event_count += 1
            try:
                classification = self._classifier.classify(event)
            except UnclassifiableEventError as e:
                logger.warning(
                    "unclassifiable_event",
                    event_id=event.id,
                    participant_tag=event.participant_tag,
                    reason=e.reason,
                )
                unclassified.append(event)
                continue

            if classification.kind == EventKind.REIMBURSEMENT:
                reimbursed[classification.owner] += event.amount
            else:
                shared[classification.owner] += event.amount

        raw_balance = shared[roster.first] / _TWO - shared[roster.second] / _TWO
        balance = raw_balance - reimbursed[roster.second] + reimbursed[roster.first]

        debtor = roster.second if balance > 0 else roster.first
        magnitude = abs(balance)

        return BalanceSummary(
            first=roster.first,
            second=roster.second,
            shared_totals=shared,
            reimbursed_totals=reimbursed,
            raw_balance=raw_balance,
            balance=balance,
            debtor=debtor,
            receiver=roster.other(debtor),
            magnitude=magnitude,
            is_settled=magnitude < self._epsilon,
            event_count=event_count,
            unclassified=unclassified,
        )


def compute_balance(
    events: Iterable[MonetaryEvent],
    roster: Roster,
    epsilon: Decimal = DEFAULT_EPSILON,
) -> BalanceSummary:
    """Shortcut for one-off calculations."""
    return BalanceCalculator(EventClassifier(roster), epsilon).compute(events)
