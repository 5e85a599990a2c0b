"""Data models for bank transactions, member profiles and match state."""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union


class MatchConfidence(Enum):
    """How the current match of a transaction was established."""

    AUTO = "auto"
    MANUAL = "manual"
    UNMATCHED = "unmatched"


class MatchSignal(Enum):
    """Evidence that links a transaction to a profile."""

    EXACT_REFERENCE = "exact-reference"
    EMBEDDED_REFERENCE = "embedded-reference"
    FUZZY_NAME = "fuzzy-name"
    AMOUNT_PATTERN = "amount-pattern"

    @property
    def rank(self) -> int:
        """Tier order of the signal; lower is stronger."""
        return _SIGNAL_RANKS[self]


_SIGNAL_RANKS = {
    MatchSignal.EXACT_REFERENCE: 1,
    MatchSignal.EMBEDDED_REFERENCE: 2,
    MatchSignal.FUZZY_NAME: 3,
    MatchSignal.AMOUNT_PATTERN: 4,
}


class ImportStatus(Enum):
    """Lifecycle of a statement upload."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SystemSource:
    """Match state set by an automatic pass."""

    def __str__(self) -> str:
        return "system"


@dataclass(frozen=True)
class HumanSource:
    """Match state set by a named administrator."""

    actor_id: str

    def __post_init__(self) -> None:
        if not self.actor_id or not self.actor_id.strip():
            raise ValueError("Human match source requires an actor id")

    def __str__(self) -> str:
        return f"user:{self.actor_id}"


MatchSource = Union[SystemSource, HumanSource]

SYSTEM = SystemSource()


def parse_match_source(value: str) -> MatchSource:
    """Inverse of ``str(source)`` for stored provenance values."""
    if value == "system":
        return SYSTEM
    if value.startswith("user:"):
        return HumanSource(value[len("user:"):])
    raise ValueError(f"Unrecognised match source: {value!r}")


@dataclass(frozen=True)
class MatchFields:
    """
    The mutable part of a transaction, always written as one unit.

    Construction rejects every combination that would break the match
    invariants, so a partially updated state can never be persisted:

    - ``unmatched`` if and only if ``user_id`` is absent
    - ``manual`` only from a human source
    - ``auto`` only from the system, and only with the signal that produced it
    """

    confidence: MatchConfidence
    user_id: Optional[str]
    matched_at: datetime
    source: MatchSource
    signal: Optional[MatchSignal] = None

    def __post_init__(self) -> None:
        if (self.confidence == MatchConfidence.UNMATCHED) != (self.user_id is None):
            raise ValueError(
                f"match_confidence={self.confidence.value} is inconsistent with "
                f"matched_user_id={self.user_id!r}"
            )
        if self.confidence == MatchConfidence.MANUAL and not isinstance(
            self.source, HumanSource
        ):
            raise ValueError("Manual matches must be set by a human actor")
        if self.confidence == MatchConfidence.AUTO:
            if not isinstance(self.source, SystemSource):
                raise ValueError("Automatic matches must be set by the system")
            if self.signal is None:
                raise ValueError("Automatic matches must record their signal")
        elif self.signal is not None:
            raise ValueError("Only automatic matches carry a match signal")


@dataclass(frozen=True)
class NaturalKey:
    """Identity of a bank event used to drop duplicates on re-import."""

    transaction_date: date
    description: str
    reference: Optional[str]
    amount: Decimal


@dataclass(frozen=True)
class TransactionDraft:
    """A validated incoming row that has not been persisted yet."""

    transaction_date: date
    description: str
    amount: Decimal
    reference: Optional[str] = None
    balance: Optional[Decimal] = None
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(
            self.transaction_date, self.description, self.reference, self.amount
        )


@dataclass(frozen=True)
class Transaction:
    """A persisted bank transaction and its current match state."""

    id: str
    transaction_date: date
    description: str
    amount: Decimal
    match: MatchFields
    reference: Optional[str] = None
    balance: Optional[Decimal] = None
    import_id: Optional[str] = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_draft(
        cls,
        transaction_id: str,
        draft: TransactionDraft,
        match: MatchFields,
        import_id: Optional[str] = None,
    ) -> "Transaction":
        return cls(
            id=transaction_id,
            transaction_date=draft.transaction_date,
            description=draft.description,
            amount=draft.amount,
            match=match,
            reference=draft.reference,
            balance=draft.balance,
            import_id=import_id,
            raw_data=dict(draft.raw_data),
            created_at=match.matched_at,
        )

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(
            self.transaction_date, self.description, self.reference, self.amount
        )

    @property
    def matched_user_id(self) -> Optional[str]:
        return self.match.user_id

    @property
    def match_confidence(self) -> MatchConfidence:
        return self.match.confidence

    @property
    def matched_at(self) -> datetime:
        return self.match.matched_at

    @property
    def matched_by_source(self) -> MatchSource:
        return self.match.source

    def with_match(self, match: MatchFields) -> "Transaction":
        """Return a copy carrying new match fields; identity fields never change."""
        return replace(self, match=match)


@dataclass(frozen=True)
class Profile:
    """
    Read-only view of a member profile from the membership directory.

    ``aliases`` are payment references or membership codes a member may quote
    when paying; ``expected_amounts`` are amounts the member usually pays.
    """

    id: str
    display_name: str
    aliases: tuple[str, ...] = ()
    active: bool = True
    expected_amounts: tuple[Decimal, ...] = ()


@dataclass(frozen=True)
class MatchCandidate:
    """Transient result of one matching attempt."""

    profile_id: str
    display_name: str
    score: float
    signals: tuple[MatchSignal, ...]
    fragment: str

    @property
    def signal(self) -> MatchSignal:
        """The signal that selected this candidate."""
        return self.signals[0]


@dataclass(frozen=True)
class MatchOutcome:
    """Matcher result with the fuzzy candidates that made it ambiguous, if any."""

    candidate: Optional[MatchCandidate] = None
    ambiguous: tuple[MatchCandidate, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return self.candidate is None and len(self.ambiguous) > 1


@dataclass(frozen=True)
class MatchEvent:
    """One recorded mutation of a transaction's match fields."""

    transaction_id: str
    fields: MatchFields


@dataclass(frozen=True)
class MatchProvenance:
    """Who or what set the current match state of a transaction, and when."""

    transaction_id: str
    confidence: MatchConfidence
    user_id: Optional[str]
    source: MatchSource
    matched_at: datetime
    signal: Optional[MatchSignal] = None

    @property
    def set_by_human(self) -> bool:
        return isinstance(self.source, HumanSource)


@dataclass
class RowError:
    """A single input row that could not be imported."""

    row_number: int
    message: str
    field: Optional[str] = None


@dataclass
class BatchResult:
    """Counters and details returned from one import batch."""

    inserted: int = 0
    skipped_duplicates: int = 0
    auto_matched: int = 0
    unmatched: int = 0
    failed: int = 0

    # Set when the store became unavailable and remaining rows were not processed
    aborted: bool = False

    errors: list[RowError] = field(default_factory=list)
    ambiguous: dict[str, tuple[MatchCandidate, ...]] = field(default_factory=dict)
    transaction_ids: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.inserted + self.skipped_duplicates + self.failed


@dataclass(frozen=True)
class RowPreview:
    """What importing one row would do, worked out without writing anything."""

    row_number: int
    draft: TransactionDraft
    outcome: MatchOutcome = field(default_factory=MatchOutcome)
    duplicate: bool = False


@dataclass
class RerunResult:
    """Counters returned from one automatic re-match pass."""

    examined: int = 0
    newly_matched: int = 0
    rematched: int = 0
    unchanged: int = 0
    skipped_manual: int = 0
    failed: int = 0
    aborted: bool = False
    ambiguous: dict[str, tuple[MatchCandidate, ...]] = field(default_factory=dict)


@dataclass
class TransactionImport:
    """One uploaded statement and the outcome of importing it."""

    id: str
    filename: str
    uploaded_by: str
    uploaded_at: datetime
    row_count: int = 0
    matched_count: int = 0
    status: ImportStatus = ImportStatus.PENDING


@dataclass(frozen=True)
class TransactionView:
    """A transaction annotated with the matched profile's display name."""

    transaction: Transaction
    matched_user_name: Optional[str] = None


@dataclass
class PaymentSummary:
    """Payments attributed to a single member."""

    user_id: str
    total_paid: Decimal
    last_payment_date: Optional[date]
    payment_count: int
    transactions: list[Transaction] = field(default_factory=list)
