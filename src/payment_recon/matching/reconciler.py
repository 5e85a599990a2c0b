"""
Reconciler: imports statement rows, drops duplicates, runs the matcher,
persists results, and applies manual match overrides.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar, Union
import logging
import threading
import uuid

from ..audit import AuditTracker, Clock, utc_now
from ..config import ReconConfig
from ..models.transaction import (
    BatchResult,
    HumanSource,
    ImportStatus,
    MatchCandidate,
    MatchConfidence,
    MatchProvenance,
    NaturalKey,
    PaymentSummary,
    Profile,
    RerunResult,
    RowError,
    RowPreview,
    Transaction,
    TransactionImport,
    TransactionView,
)
from ..parsers.values import validate_row
from ..store.base import ProfileDirectory, TransactionFilter, TransactionStore
from ..utils.exceptions import (
    DuplicateTransactionError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    TransientStoreError,
    ValidationError,
)
from .matcher import Matcher

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _RowStatus(Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    NOT_PROCESSED = "not_processed"


@dataclass
class _RowOutcome:
    status: _RowStatus
    transaction_id: Optional[str] = None
    error: Optional[RowError] = None
    ambiguous: tuple[MatchCandidate, ...] = ()


class Reconciler:
    """
    Orchestrates import, deduplication, matching and manual overrides.

    The reconciler holds no transaction state between calls; every operation
    reads what it needs from the injected store and profile directory.
    """

    def __init__(
        self,
        store: TransactionStore,
        profiles: ProfileDirectory,
        config: Optional[ReconConfig] = None,
        matcher: Optional[Matcher] = None,
        clock: Clock = utc_now,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Transaction store
            profiles: Read-only profile directory
            config: Application configuration (defaults when omitted)
            matcher: Matcher to use (built from ``config.matching`` when omitted)
            clock: Source of match timestamps
            id_factory: Generator for new transaction and import ids
        """
        self.store = store
        self.profiles = profiles
        self.config = config or ReconConfig()
        self.matcher = matcher or Matcher(self.config.matching)
        self.audit = AuditTracker(store, clock)
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_batch(
        self,
        raw_rows: Iterable[Mapping[str, Any]],
        import_id: Optional[str] = None,
    ) -> BatchResult:
        """
        Import a batch of raw transaction rows.

        Each row is validated, checked against the store by natural key,
        matched, and inserted together with its match state in one write.
        Failures are reported per row and never abort the batch, except
        that an unavailable store stops processing of the remaining rows.

        Args:
            raw_rows: Mappings with transaction_date, description, amount,
                reference (and optionally balance, raw_data)
            import_id: Statement import the new rows belong to

        Returns:
            Counters and per-row details for the batch
        """
        rows = list(raw_rows)
        result = BatchResult()
        start_time = datetime.now()
        logger.info(f"Starting import of {len(rows)} rows")

        try:
            profiles = self._call(self.profiles.list_active_profiles_with_aliases)
        except StoreError as e:
            logger.error(f"Profile directory unavailable, nothing imported: {e}")
            result.aborted = True
            result.errors.append(RowError(0, f"Profile directory unavailable: {e}"))
            return result

        stop = threading.Event()

        def process(numbered: tuple[int, Mapping[str, Any]]) -> _RowOutcome:
            return self._import_row(numbered[0], numbered[1], profiles, import_id, stop)

        workers = self.config.import_.workers
        if workers > 1 and len(rows) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                outcomes = list(executor.map(process, enumerate(rows, start=1)))
        else:
            outcomes = [process(numbered) for numbered in enumerate(rows, start=1)]

        for outcome in outcomes:
            self._tally(result, outcome)
        result.aborted = stop.is_set()

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Import complete in {elapsed:.2f}s: {result.inserted} inserted "
            f"({result.auto_matched} auto-matched, {result.unmatched} unmatched), "
            f"{result.skipped_duplicates} duplicates, {result.failed} failed"
        )
        if result.aborted:
            logger.warning(
                f"Store became unavailable; {len(rows) - result.processed} rows not processed"
            )

        return result

    def _import_row(
        self,
        row_number: int,
        raw: Mapping[str, Any],
        profiles: list[Profile],
        import_id: Optional[str],
        stop: threading.Event,
    ) -> _RowOutcome:
        """Validate, deduplicate, match and persist one row."""
        if stop.is_set():
            return _RowOutcome(_RowStatus.NOT_PROCESSED)

        if not isinstance(raw, Mapping):
            return _failed(row_number, f"Row is not a mapping: {type(raw).__name__}")
        row_number = _row_number(raw, row_number)

        try:
            draft = validate_row(raw, self.config.input.statement.date_formats)
        except ValidationError as e:
            logger.warning(f"Row {row_number}: {e}")
            return _failed(row_number, str(e), e.field)

        try:
            existing = self._call(self.store.find_by_natural_key, draft.natural_key)
            if existing is not None:
                logger.debug(f"Row {row_number}: duplicate of {existing.id}")
                return _RowOutcome(_RowStatus.DUPLICATE, existing.id)

            outcome = self.matcher.evaluate(draft, profiles)
            if outcome.candidate is not None:
                fields = self.audit.auto_match(outcome.candidate)
            else:
                fields = self.audit.unmatched()

            txn = Transaction.from_draft(self._new_id(), draft, fields, import_id)
            self._call(self.store.insert, txn)
        except DuplicateTransactionError:
            # Same event inserted concurrently by another row of this batch
            logger.debug(f"Row {row_number}: duplicate detected on insert")
            return _RowOutcome(_RowStatus.DUPLICATE)
        except StoreUnavailableError as e:
            stop.set()
            logger.error(f"Row {row_number}: store unavailable: {e}")
            return _failed(row_number, f"Store unavailable: {e}")
        except StoreError as e:
            logger.error(f"Row {row_number}: store error: {e}")
            return _failed(row_number, f"Store error: {e}")

        if outcome.candidate is not None:
            logger.debug(
                f"Row {row_number}: matched {outcome.candidate.profile_id} "
                f"via {outcome.candidate.signal.value}"
            )
            return _RowOutcome(_RowStatus.MATCHED, txn.id)
        return _RowOutcome(_RowStatus.UNMATCHED, txn.id, ambiguous=outcome.ambiguous)

    @staticmethod
    def _tally(result: BatchResult, outcome: _RowOutcome) -> None:
        if outcome.status == _RowStatus.NOT_PROCESSED:
            return
        if outcome.status == _RowStatus.FAILED:
            result.failed += 1
            if outcome.error:
                result.errors.append(outcome.error)
            return
        if outcome.status == _RowStatus.DUPLICATE:
            result.skipped_duplicates += 1
            return

        result.inserted += 1
        result.transaction_ids.append(outcome.transaction_id)
        if outcome.status == _RowStatus.MATCHED:
            result.auto_matched += 1
        else:
            result.unmatched += 1
            if outcome.ambiguous:
                result.ambiguous[outcome.transaction_id] = outcome.ambiguous

    def preview_batch(
        self,
        raw_rows: Iterable[Mapping[str, Any]],
    ) -> tuple[BatchResult, list[RowPreview]]:
        """
        Work out what importing a batch would do, without writing anything.

        Rows go through the same validation, duplicate detection (against
        the store and earlier rows of the batch) and matching as
        ``import_batch``. Counters describe the rows that would be inserted;
        ambiguous rows are keyed by their line.

        Args:
            raw_rows: Mappings in the shape accepted by ``import_batch``

        Returns:
            The would-be batch counters and one preview per valid row

        Raises:
            StoreError: If the store or profile directory cannot be read
        """
        result = BatchResult()
        previews: list[RowPreview] = []
        profiles = self._call(self.profiles.list_active_profiles_with_aliases)
        seen: set[NaturalKey] = set()

        for position, raw in enumerate(raw_rows, start=1):
            if not isinstance(raw, Mapping):
                result.failed += 1
                result.errors.append(
                    RowError(position, f"Row is not a mapping: {type(raw).__name__}")
                )
                continue

            row_number = _row_number(raw, position)
            try:
                draft = validate_row(raw, self.config.input.statement.date_formats)
            except ValidationError as e:
                result.failed += 1
                result.errors.append(RowError(row_number, str(e), e.field))
                continue

            key = draft.natural_key
            if key in seen or self._call(self.store.find_by_natural_key, key) is not None:
                result.skipped_duplicates += 1
                previews.append(RowPreview(row_number, draft, duplicate=True))
                continue
            seen.add(key)

            outcome = self.matcher.evaluate(draft, profiles)
            result.inserted += 1
            if outcome.candidate is not None:
                result.auto_matched += 1
            else:
                result.unmatched += 1
                if outcome.ambiguous:
                    result.ambiguous[f"line {row_number}"] = outcome.ambiguous
            previews.append(RowPreview(row_number, draft, outcome))

        logger.info(
            f"Preview: {result.inserted} new ({result.auto_matched} auto-matched), "
            f"{result.skipped_duplicates} duplicates, {result.failed} invalid"
        )
        return result, previews

    def import_statement(
        self,
        raw_rows: Iterable[Mapping[str, Any]],
        filename: str,
        uploaded_by: str,
    ) -> tuple[TransactionImport, BatchResult]:
        """
        Record a statement upload and import its rows under it.

        Args:
            raw_rows: Rows extracted from the statement
            filename: Name of the uploaded file
            uploaded_by: Actor id of the uploader

        Returns:
            The stored import record and the batch result
        """
        record = TransactionImport(
            id=self._new_id(),
            filename=filename,
            uploaded_by=uploaded_by,
            uploaded_at=self.audit.clock(),
            status=ImportStatus.PROCESSING,
        )
        self._call(self.store.insert_import, record)

        result = self.import_batch(raw_rows, import_id=record.id)

        record.row_count = result.inserted
        record.matched_count = result.auto_matched
        record.status = ImportStatus.FAILED if result.aborted else ImportStatus.COMPLETED
        try:
            self._call(self.store.update_import, record)
        except StoreError as e:
            logger.error(f"Could not record outcome of import {record.id}: {e}")

        return record, result

    def list_imports(self) -> list[TransactionImport]:
        return self._call(self.store.list_imports)

    def delete_import(self, import_id: str) -> int:
        """
        Delete an import and every transaction it created.

        Raises:
            NotFoundError: If the import does not exist
        """
        removed = self._call(self.store.delete_import, import_id)
        logger.info(f"Deleted import {import_id} and {removed} transactions")
        return removed

    # ------------------------------------------------------------------
    # Automatic re-matching
    # ------------------------------------------------------------------

    def rerun_auto_match(self, transaction_ids: Optional[Iterable[str]] = None) -> RerunResult:
        """
        Re-run the matcher over transactions that are not manually matched.

        Unmatched transactions gain a match when a candidate now exists.
        Automatic matches are never downgraded, and only move when a strictly
        stronger signal appears. Manual matches are never touched. Updates
        are compare-and-set, so a concurrent manual action always wins.

        Args:
            transaction_ids: Limit the pass to these transactions

        Returns:
            Counters for the pass
        """
        result = RerunResult()
        scope = frozenset(transaction_ids) if transaction_ids is not None else None

        try:
            profiles = self._call(self.profiles.list_active_profiles_with_aliases)
            transactions = self._call(
                self.store.list_transactions,
                TransactionFilter(transaction_ids=scope),
                False,
            )
        except StoreError as e:
            logger.error(f"Re-match pass could not start: {e}")
            result.aborted = True
            return result

        for txn in transactions:
            if txn.match_confidence == MatchConfidence.MANUAL:
                result.skipped_manual += 1
                continue

            result.examined += 1
            try:
                self._rescore(txn, profiles, result)
            except StoreUnavailableError as e:
                logger.error(f"Store unavailable during re-match pass: {e}")
                result.failed += 1
                result.aborted = True
                break
            except StoreError as e:
                logger.error(f"Re-match of {txn.id} failed: {e}")
                result.failed += 1

        logger.info(
            f"Re-match pass: {result.examined} examined, {result.newly_matched} newly matched, "
            f"{result.rematched} re-matched, {result.skipped_manual} manual skipped"
        )
        return result

    def _rescore(self, txn: Transaction, profiles: list[Profile], result: RerunResult) -> None:
        outcome = self.matcher.evaluate(txn, profiles)
        candidate = outcome.candidate

        if candidate is None:
            if outcome.is_ambiguous and txn.match_confidence == MatchConfidence.UNMATCHED:
                result.ambiguous[txn.id] = outcome.ambiguous
            result.unchanged += 1
            return

        if txn.match_confidence == MatchConfidence.AUTO and not _improves(txn, candidate):
            result.unchanged += 1
            return

        updated = self._call(
            self.store.update_match_fields,
            txn.id,
            self.audit.auto_match(candidate),
            {txn.match_confidence},
        )
        if not updated:
            logger.info(f"Transaction {txn.id} changed during re-match, left as is")
            result.unchanged += 1
        elif txn.match_confidence == MatchConfidence.UNMATCHED:
            result.newly_matched += 1
        else:
            result.rematched += 1

    # ------------------------------------------------------------------
    # Manual overrides
    # ------------------------------------------------------------------

    def set_manual_match(
        self,
        transaction_id: str,
        user_id: str,
        actor: Union[str, HumanSource],
    ) -> None:
        """
        Manually assign a transaction to a profile.

        Allowed from any state, including reassigning an existing manual
        match. Automatic passes never change the result afterwards.

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If the user id or actor is blank
        """
        fields = self.audit.manual_match(user_id, actor)
        if not self._call(self.store.update_match_fields, transaction_id, fields):
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        logger.info(f"Transaction {transaction_id} manually matched to {user_id} by {fields.source}")

    def clear_match(self, transaction_id: str, actor: Union[str, HumanSource]) -> bool:
        """
        Return a transaction to the unmatched state.

        Clearing an already unmatched transaction is a no-op.

        Returns:
            True if a match was cleared, False if there was nothing to clear

        Raises:
            NotFoundError: If the transaction does not exist
        """
        fields = self.audit.cleared(actor)
        if self._call(
            self.store.update_match_fields, transaction_id, fields, _CLEARABLE
        ):
            logger.info(f"Transaction {transaction_id} unmatched by {fields.source}")
            return True

        if self._call(self.store.get, transaction_id) is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return False

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        confidence: Optional[MatchConfidence] = None,
        import_id: Optional[str] = None,
    ) -> list[TransactionView]:
        """List transactions, newest first, annotated with the matched member's name."""
        transactions = self._call(
            self.store.list_transactions,
            TransactionFilter(user_id=user_id, confidence=confidence, import_id=import_id),
        )
        names: dict[str, Optional[str]] = {}
        return [self._view(txn, names) for txn in transactions]

    def get_transaction(self, transaction_id: str) -> TransactionView:
        """
        Return one transaction annotated with the matched member's name.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        txn = self._call(self.store.get, transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return self._view(txn, {})

    def payment_summary(self, user_id: str) -> PaymentSummary:
        """Total, count and latest date of payments attributed to a member."""
        transactions = self._call(
            self.store.list_transactions, TransactionFilter(user_id=user_id)
        )
        total_paid = sum((t.amount for t in transactions if t.amount > 0), Decimal("0"))
        return PaymentSummary(
            user_id=user_id,
            total_paid=total_paid,
            last_payment_date=transactions[0].transaction_date if transactions else None,
            payment_count=len(transactions),
            transactions=transactions,
        )

    def provenance(self, transaction_id: str) -> MatchProvenance:
        return self.audit.provenance(transaction_id)

    def history(self, transaction_id: str) -> list[MatchProvenance]:
        return self.audit.history(transaction_id)

    def _view(self, txn: Transaction, names: dict[str, Optional[str]]) -> TransactionView:
        user_id = txn.matched_user_id
        if user_id is None:
            return TransactionView(txn)
        if user_id not in names:
            profile = self._call(self.profiles.get_profile, user_id)
            names[user_id] = profile.display_name if profile else None
        return TransactionView(txn, names[user_id])

    # ------------------------------------------------------------------

    def _call(self, operation: Callable[..., T], *args: Any) -> T:
        """Run a store operation, retrying once on a transient failure."""
        try:
            return operation(*args)
        except TransientStoreError as e:
            if not self.config.import_.retry_transient_errors:
                raise
            logger.warning(f"Transient store error, retrying once: {e}")
            return operation(*args)


_CLEARABLE = frozenset({MatchConfidence.AUTO, MatchConfidence.MANUAL})


def _improves(txn: Transaction, candidate: MatchCandidate) -> bool:
    """Whether a fresh candidate should replace an existing automatic match."""
    current = txn.match.signal
    if current is None:
        return True
    return candidate.signal.rank < current.rank


def _row_number(raw: Mapping[str, Any], position: int) -> int:
    """Statement line of a row, or its position in the batch when absent or garbled."""
    line_number = raw.get("line_number")
    if line_number in (None, "") or isinstance(line_number, bool):
        return position
    try:
        return int(line_number)
    except (TypeError, ValueError):
        return position


def _failed(row_number: int, message: str, field: Optional[str] = None) -> _RowOutcome:
    return _RowOutcome(_RowStatus.FAILED, error=RowError(row_number, message, field))
