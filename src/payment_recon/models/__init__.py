"""Data models for reconciliation."""

from .transaction import (
    SYSTEM,
    BatchResult,
    HumanSource,
    ImportStatus,
    MatchCandidate,
    MatchConfidence,
    MatchEvent,
    MatchFields,
    MatchOutcome,
    MatchProvenance,
    MatchSignal,
    MatchSource,
    NaturalKey,
    PaymentSummary,
    Profile,
    RerunResult,
    RowError,
    RowPreview,
    SystemSource,
    Transaction,
    TransactionDraft,
    TransactionImport,
    TransactionView,
    parse_match_source,
)

__all__ = [
    "SYSTEM",
    "BatchResult",
    "HumanSource",
    "ImportStatus",
    "MatchCandidate",
    "MatchConfidence",
    "MatchEvent",
    "MatchFields",
    "MatchOutcome",
    "MatchProvenance",
    "MatchSignal",
    "MatchSource",
    "NaturalKey",
    "PaymentSummary",
    "Profile",
    "RerunResult",
    "RowError",
    "RowPreview",
    "SystemSource",
    "Transaction",
    "TransactionDraft",
    "TransactionImport",
    "TransactionView",
    "parse_match_source",
]
