"""
Interfaces for the record store and the profile directory.

The reconciler only talks to these two abstractions; concrete backends
(in-memory, JSON file, a managed database) are injected by the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Collection, Optional

from ..models.transaction import (
    MatchConfidence,
    MatchEvent,
    MatchFields,
    NaturalKey,
    Profile,
    Transaction,
    TransactionImport,
)


@dataclass(frozen=True)
class TransactionFilter:
    """Filters for listing transactions; ``None`` means no constraint."""

    user_id: Optional[str] = None
    confidence: Optional[MatchConfidence] = None
    import_id: Optional[str] = None
    transaction_ids: Optional[frozenset[str]] = None

    def accepts(self, txn: Transaction) -> bool:
        if self.user_id is not None and txn.matched_user_id != self.user_id:
            return False
        if self.confidence is not None and txn.match_confidence != self.confidence:
            return False
        if self.import_id is not None and txn.import_id != self.import_id:
            return False
        if self.transaction_ids is not None and txn.id not in self.transaction_ids:
            return False
        return True


class TransactionStore(ABC):
    """
    Durable store for transactions and statement imports.

    Every method may raise a ``StoreError`` subclass. Each insert and match
    update is applied atomically for its row.
    """

    @abstractmethod
    def insert(self, transaction: Transaction) -> Transaction:
        """
        Persist a new transaction together with its initial match fields.

        Raises:
            DuplicateTransactionError: If the natural key is already stored
        """

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[Transaction]:
        """Return the transaction with this id, if any."""

    @abstractmethod
    def find_by_natural_key(self, key: NaturalKey) -> Optional[Transaction]:
        """Return the transaction recorded for this bank event, if any."""

    @abstractmethod
    def update_match_fields(
        self,
        transaction_id: str,
        fields: MatchFields,
        expected: Optional[Collection[MatchConfidence]] = None,
    ) -> bool:
        """
        Replace all match fields of one transaction in a single atomic write.

        The write also appends a ``MatchEvent`` to the transaction's history.

        Args:
            transaction_id: Transaction to update
            fields: New match fields
            expected: When given, only update if the current confidence is one
                of these (compare-and-set)

        Returns:
            True if the row existed and was updated
        """

    @abstractmethod
    def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
        newest_first: bool = True,
    ) -> list[Transaction]:
        """List transactions ordered by date (then id)."""

    @abstractmethod
    def delete(self, transaction_id: str) -> bool:
        """Delete a transaction and its history; returns False if absent."""

    @abstractmethod
    def match_history(self, transaction_id: str) -> list[MatchEvent]:
        """Every recorded match mutation of a transaction, oldest first."""

    @abstractmethod
    def insert_import(self, record: TransactionImport) -> TransactionImport:
        """Persist a new statement import record."""

    @abstractmethod
    def update_import(self, record: TransactionImport) -> bool:
        """Replace a stored import record; returns False if absent."""

    @abstractmethod
    def get_import(self, import_id: str) -> Optional[TransactionImport]:
        """Return the import record with this id, if any."""

    @abstractmethod
    def list_imports(self) -> list[TransactionImport]:
        """List import records, newest upload first."""

    @abstractmethod
    def delete_import(self, import_id: str) -> int:
        """
        Delete an import record and every transaction it created.

        Returns:
            Number of transactions removed

        Raises:
            NotFoundError: If the import does not exist
        """


class ProfileDirectory(ABC):
    """Read-only view of member profiles owned by the membership subsystem."""

    @abstractmethod
    def list_active_profiles_with_aliases(self) -> list[Profile]:
        """Return every active profile with its payment aliases."""

    @abstractmethod
    def get_profile(self, profile_id: str) -> Optional[Profile]:
        """Return a profile by id, active or not."""
