"""In-memory store and profile directory."""

from typing import Collection, Iterable, Optional
import threading

from ..models.transaction import (
    MatchConfidence,
    MatchEvent,
    MatchFields,
    NaturalKey,
    Profile,
    Transaction,
    TransactionImport,
)
from ..utils.exceptions import DuplicateTransactionError, NotFoundError
from .base import ProfileDirectory, TransactionFilter, TransactionStore


class InMemoryTransactionStore(TransactionStore):
    """
    Transaction store held in process memory.

    A single re-entrant lock serializes every write, which makes each insert
    and each match update atomic per row and keeps the natural-key index
    consistent under concurrent imports.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._transactions: dict[str, Transaction] = {}
        self._by_key: dict[NaturalKey, str] = {}
        self._history: dict[str, list[MatchEvent]] = {}
        self._imports: dict[str, TransactionImport] = {}

    def insert(self, transaction: Transaction) -> Transaction:
        with self._lock:
            key = transaction.natural_key
            if key in self._by_key:
                raise DuplicateTransactionError(
                    f"Transaction already recorded as {self._by_key[key]}"
                )
            if transaction.id in self._transactions:
                raise DuplicateTransactionError(f"Transaction id in use: {transaction.id}")

            self._transactions[transaction.id] = transaction
            self._by_key[key] = transaction.id
            self._history[transaction.id] = [MatchEvent(transaction.id, transaction.match)]
            self._changed()
            return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(transaction_id)

    def find_by_natural_key(self, key: NaturalKey) -> Optional[Transaction]:
        with self._lock:
            transaction_id = self._by_key.get(key)
            return self._transactions.get(transaction_id) if transaction_id else None

    def update_match_fields(
        self,
        transaction_id: str,
        fields: MatchFields,
        expected: Optional[Collection[MatchConfidence]] = None,
    ) -> bool:
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None:
                return False
            if expected is not None and current.match_confidence not in expected:
                return False

            self._transactions[transaction_id] = current.with_match(fields)
            self._history[transaction_id].append(MatchEvent(transaction_id, fields))
            self._changed()
            return True

    def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
        newest_first: bool = True,
    ) -> list[Transaction]:
        filters = filters or TransactionFilter()
        with self._lock:
            rows = [t for t in self._transactions.values() if filters.accepts(t)]
        return sorted(rows, key=lambda t: (t.transaction_date, t.id), reverse=newest_first)

    def delete(self, transaction_id: str) -> bool:
        with self._lock:
            removed = self._remove(transaction_id)
            if removed:
                self._changed()
            return removed

    def match_history(self, transaction_id: str) -> list[MatchEvent]:
        with self._lock:
            return list(self._history.get(transaction_id, []))

    def insert_import(self, record: TransactionImport) -> TransactionImport:
        with self._lock:
            if record.id in self._imports:
                raise DuplicateTransactionError(f"Import id in use: {record.id}")
            self._imports[record.id] = record
            self._changed()
            return record

    def update_import(self, record: TransactionImport) -> bool:
        with self._lock:
            if record.id not in self._imports:
                return False
            self._imports[record.id] = record
            self._changed()
            return True

    def get_import(self, import_id: str) -> Optional[TransactionImport]:
        with self._lock:
            return self._imports.get(import_id)

    def list_imports(self) -> list[TransactionImport]:
        with self._lock:
            records = list(self._imports.values())
        return sorted(records, key=lambda r: (r.uploaded_at, r.id), reverse=True)

    def delete_import(self, import_id: str) -> int:
        with self._lock:
            if import_id not in self._imports:
                raise NotFoundError(f"Import not found: {import_id}")
            owned = [t.id for t in self._transactions.values() if t.import_id == import_id]
            for transaction_id in owned:
                self._remove(transaction_id)
            del self._imports[import_id]
            self._changed()
            return len(owned)

    def _remove(self, transaction_id: str) -> bool:
        transaction = self._transactions.pop(transaction_id, None)
        if transaction is None:
            return False
        self._by_key.pop(transaction.natural_key, None)
        self._history.pop(transaction_id, None)
        return True

    def _changed(self) -> None:
        """Hook called under the lock after every successful write."""


class InMemoryProfileDirectory(ProfileDirectory):
    """Profile directory backed by a fixed list of profiles."""

    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles = {p.id: p for p in profiles}

    def list_active_profiles_with_aliases(self) -> list[Profile]:
        return sorted((p for p in self._profiles.values() if p.active), key=lambda p: p.id)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        return self._profiles.get(profile_id)

    def upsert(self, profile: Profile) -> None:
        """Add or replace a profile (membership-side changes such as new aliases)."""
        self._profiles[profile.id] = profile
