"""
Provenance tracking for match state.

Every set of match fields the engine writes is built here, stamped with who
or what set it and when. Because provenance lives inside ``MatchFields`` it
is written by the same atomic store update as the match itself.
"""

from datetime import datetime, timezone
from typing import Callable, Union

from .models.transaction import (
    SYSTEM,
    HumanSource,
    MatchCandidate,
    MatchConfidence,
    MatchEvent,
    MatchFields,
    MatchProvenance,
)
from .store.base import TransactionStore
from .utils.exceptions import NotFoundError, ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_actor(actor: Union[str, HumanSource]) -> HumanSource:
    """
    Coerce an actor identifier into a human match source.

    Raises:
        ValidationError: If the actor id is blank
    """
    if isinstance(actor, HumanSource):
        return actor
    try:
        return HumanSource(str(actor).strip() if actor is not None else "")
    except ValueError as e:
        raise ValidationError(str(e), field="actor") from e


class AuditTracker:
    """Builds provenance-stamped match fields and answers "who set this, and when"."""

    def __init__(self, store: TransactionStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def unmatched(self) -> MatchFields:
        """Initial state of a transaction the system could not match."""
        return MatchFields(MatchConfidence.UNMATCHED, None, self.clock(), SYSTEM)

    def auto_match(self, candidate: MatchCandidate) -> MatchFields:
        return MatchFields(
            MatchConfidence.AUTO,
            candidate.profile_id,
            self.clock(),
            SYSTEM,
            candidate.signal,
        )

    def manual_match(self, user_id: str, actor: Union[str, HumanSource]) -> MatchFields:
        if not user_id:
            raise ValidationError("A profile id is required for a manual match", field="user_id")
        return MatchFields(MatchConfidence.MANUAL, user_id, self.clock(), as_actor(actor))

    def cleared(self, actor: Union[str, HumanSource]) -> MatchFields:
        return MatchFields(MatchConfidence.UNMATCHED, None, self.clock(), as_actor(actor))

    def provenance(self, transaction_id: str) -> MatchProvenance:
        """
        Return who or what set the current match state of a transaction.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        txn = self.store.get(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return _to_provenance(MatchEvent(txn.id, txn.match))

    def history(self, transaction_id: str) -> list[MatchProvenance]:
        """
        Return every recorded match state of a transaction, oldest first.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        if self.store.get(transaction_id) is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return [_to_provenance(event) for event in self.store.match_history(transaction_id)]


def _to_provenance(event: MatchEvent) -> MatchProvenance:
    fields = event.fields
    return MatchProvenance(
        transaction_id=event.transaction_id,
        confidence=fields.confidence,
        user_id=fields.user_id,
        source=fields.source,
        matched_at=fields.matched_at,
        signal=fields.signal,
    )
