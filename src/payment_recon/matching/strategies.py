"""
Matching strategies for linking bank transactions to member profiles.
Each strategy implements one tier of the matcher.
"""

from abc import ABC, abstractmethod
from difflib import SequenceMatcher
from typing import Iterable, Union
import re

from ..models.transaction import (
    MatchCandidate,
    MatchOutcome,
    MatchSignal,
    Profile,
    Transaction,
    TransactionDraft,
)

Matchable = Union[Transaction, TransactionDraft]


def normalize_text(text: str) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(text.casefold().split())


def normalize_name(text: str) -> str:
    """Normalize free text for name comparison: lowercase, alphanumerics only."""
    text = re.sub(r"[^a-z0-9\s]", " ", text.casefold())
    return " ".join(text.split())


class MatchingStrategy(ABC):
    """Abstract base class for matching strategies."""

    signal: MatchSignal

    @abstractmethod
    def find_candidates(
        self,
        txn: Matchable,
        profiles: Iterable[Profile],
    ) -> list[MatchCandidate]:
        """
        Find profiles this strategy links to the transaction.

        Args:
            txn: Transaction to match
            profiles: Active profiles with their aliases

        Returns:
            At most one candidate per profile (may be empty)
        """
        pass

    def resolve(self, candidates: list[MatchCandidate]) -> MatchOutcome:
        """
        Choose the winning candidate of this tier.

        The longest matching fragment wins, then the lowest profile id, so the
        result never depends on profile ordering.
        """
        if not candidates:
            return MatchOutcome()
        best = min(candidates, key=lambda c: (-len(c.fragment), c.profile_id))
        return MatchOutcome(candidate=best)


class ExactReferenceStrategy(MatchingStrategy):
    """
    Exact reference match - the payment reference equals a profile alias.
    Highest confidence tier.
    """

    signal = MatchSignal.EXACT_REFERENCE

    def find_candidates(
        self,
        txn: Matchable,
        profiles: Iterable[Profile],
    ) -> list[MatchCandidate]:
        """Find profiles owning an alias equal to the reference."""
        if not txn.reference:
            return []

        reference = normalize_text(txn.reference)
        if not reference:
            return []

        candidates: list[MatchCandidate] = []
        for profile in profiles:
            for alias in profile.aliases:
                if normalize_text(alias) == reference:
                    candidates.append(
                        MatchCandidate(
                            profile_id=profile.id,
                            display_name=profile.display_name,
                            score=1.0,
                            signals=(self.signal,),
                            fragment=reference,
                        )
                    )
                    break

        return candidates


class EmbeddedReferenceStrategy(MatchingStrategy):
    """
    Description-embedded reference - a profile alias appears inside the
    statement narrative. Aliases shorter than ``min_alias_length`` are
    ignored so that short codes don't match by accident.
    """

    signal = MatchSignal.EMBEDDED_REFERENCE

    def __init__(self, min_alias_length: int = 5):
        """
        Initialize with the alias length guard.

        Args:
            min_alias_length: Shortest normalized alias allowed to match
        """
        self.min_alias_length = min_alias_length

    def find_candidates(
        self,
        txn: Matchable,
        profiles: Iterable[Profile],
    ) -> list[MatchCandidate]:
        """Find profiles whose alias is a substring of the description."""
        description = normalize_text(txn.description)
        if not description:
            return []

        candidates: list[MatchCandidate] = []
        for profile in profiles:
            embedded = [
                alias
                for alias in (normalize_text(a) for a in profile.aliases)
                if len(alias) >= self.min_alias_length and alias in description
            ]
            if not embedded:
                continue

            # Longest alias of this profile represents it
            fragment = max(embedded, key=lambda a: (len(a), a))
            candidates.append(
                MatchCandidate(
                    profile_id=profile.id,
                    display_name=profile.display_name,
                    score=0.9,
                    signals=(self.signal,),
                    fragment=fragment,
                )
            )

        return candidates


class FuzzyNameStrategy(MatchingStrategy):
    """
    Fuzzy name matching - compares the reference and description with each
    profile's display name. Lowest confidence tier; only a single clear
    winner is accepted.
    """

    signal = MatchSignal.FUZZY_NAME

    def __init__(self, similarity_threshold: float = 0.85, min_token_length: int = 2):
        """
        Initialize with similarity threshold.

        Args:
            similarity_threshold: Minimum similarity (0.0-1.0) to clear the tier
            min_token_length: Name tokens shorter than this are ignored for overlap
        """
        self.similarity_threshold = similarity_threshold
        self.min_token_length = min_token_length

    def find_candidates(
        self,
        txn: Matchable,
        profiles: Iterable[Profile],
    ) -> list[MatchCandidate]:
        """Find every profile whose display name clears the threshold."""
        texts = [normalize_name(t) for t in (txn.reference, txn.description) if t]
        texts = [t for t in texts if t]
        if not texts:
            return []

        candidates: list[MatchCandidate] = []
        for profile in profiles:
            name = normalize_name(profile.display_name)
            if not name:
                continue

            score, fragment = max(
                ((self.similarity(name, text), text) for text in texts),
                key=lambda pair: (pair[0], len(pair[1]), pair[1]),
            )
            if score >= self.similarity_threshold:
                candidates.append(
                    MatchCandidate(
                        profile_id=profile.id,
                        display_name=profile.display_name,
                        score=round(score, 4),
                        signals=(self.signal,),
                        fragment=fragment,
                    )
                )

        return candidates

    def similarity(self, name: str, text: str) -> float:
        """
        Similarity between a normalized display name and normalized text.

        The larger of the character-level ratio and the share of name tokens
        that appear as whole tokens in the text. Token overlap needs at least
        two name tokens; a one-word name such as "Jane" is scored by ratio
        alone, so it cannot claim every text that mentions it.
        """
        ratio = SequenceMatcher(None, name, text).ratio()

        name_tokens = [t for t in name.split() if len(t) >= self.min_token_length]
        if len(name_tokens) < 2:
            return ratio

        text_tokens = set(text.split())
        overlap = sum(1 for t in name_tokens if t in text_tokens) / len(name_tokens)
        return max(ratio, overlap)

    def resolve(self, candidates: list[MatchCandidate]) -> MatchOutcome:
        """A single clearing profile wins; several are reported as ambiguous."""
        if not candidates:
            return MatchOutcome()
        if len(candidates) == 1:
            return MatchOutcome(candidate=candidates[0])

        ranked = sorted(candidates, key=lambda c: (-c.score, c.profile_id))
        return MatchOutcome(ambiguous=tuple(ranked))
