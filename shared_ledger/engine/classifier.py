"""
Event Classifier

Decides, from the participant tag alone, whether an event is a shared
expense or a reimbursement and which participant it belongs to.

Rules:
- REIMBURSEMENT iff the tag contains the reimbursement marker
- The owner is the one participant whose base name is contained in the tag

A tag that contains neither name, or both, is unclassifiable. That only
happens with data written outside this application.
"""

from shared_ledger.models.ledger import (
    Classification,
    EventKind,
    MonetaryEvent,
    Roster,
)


class UnclassifiableEventError(ValueError):
    """The participant tag does not identify exactly one participant."""

    def __init__(self, event: MonetaryEvent, reason: str):
        super().__init__(
            f"Cannot classify event {event.id} "
            f"(tag '{event.participant_tag}'): {reason}"
        )
        self.event = event
        self.reason = reason


class EventClassifier:
    """Pure classifier bound to one roster."""

    def __init__(self, roster: Roster):
        self._roster = roster

    @property
    def roster(self) -> Roster:
        return self._roster

    def classify(self, event: MonetaryEvent) -> Classification:
        tag = event.participant_tag

        if self._roster.reimbursement_marker in tag:
            kind = EventKind.REIMBURSEMENT
        else:
            kind = EventKind.SHARED_EXPENSE

        owners = [name for name in self._roster.participants if name in tag]

        if not owners:
            raise UnclassifiableEventError(event, "no known participant in tag")
        if len(owners) > 1:
            raise UnclassifiableEventError(event, "tag names both participants")

        return Classification(kind=kind, owner=owners[0])
