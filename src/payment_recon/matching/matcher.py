"""
Tiered matcher that links one transaction to at most one member profile.

The matcher is pure: it reads the transaction and the profile list it is
given and nothing else, so it can be called concurrently and repeatedly.
"""

from typing import Iterable, Optional
import logging

from ..config import MatchingSettings
from ..models.transaction import MatchCandidate, MatchOutcome, MatchSignal, Profile
from .strategies import (
    EmbeddedReferenceStrategy,
    ExactReferenceStrategy,
    FuzzyNameStrategy,
    Matchable,
    MatchingStrategy,
)

logger = logging.getLogger(__name__)


class Matcher:
    """
    Applies the matching tiers in priority order; the first tier that yields
    a candidate or an ambiguity decides the outcome.
    """

    def __init__(self, settings: Optional[MatchingSettings] = None):
        """
        Initialize the matcher.

        Args:
            settings: Matching thresholds (defaults when omitted)
        """
        self.settings = settings or MatchingSettings()
        self.strategies = self._build_strategies()

    def _build_strategies(self) -> list[MatchingStrategy]:
        strategies: list[MatchingStrategy] = [ExactReferenceStrategy()]

        if self.settings.embedded_reference_enabled:
            strategies.append(
                EmbeddedReferenceStrategy(min_alias_length=self.settings.min_alias_length)
            )
        if self.settings.fuzzy_name_enabled:
            strategies.append(
                FuzzyNameStrategy(
                    similarity_threshold=self.settings.fuzzy_threshold,
                    min_token_length=self.settings.min_name_token_length,
                )
            )

        for strategy in strategies:
            logger.debug(f"Loaded matching tier: {strategy.signal.value}")
        return strategies

    def evaluate(self, txn: Matchable, profiles: Iterable[Profile]) -> MatchOutcome:
        """
        Run every tier against the transaction.

        Args:
            txn: Transaction (or validated draft) to match
            profiles: Active profiles with their aliases

        Returns:
            The selected candidate, or no candidate with any ambiguous
            fuzzy candidates retained for manual disambiguation
        """
        active = sorted((p for p in profiles if p.active), key=lambda p: p.id)

        for strategy in self.strategies:
            outcome = strategy.resolve(strategy.find_candidates(txn, active))

            if outcome.candidate is not None:
                candidate = self._corroborate(txn, outcome.candidate, active)
                return MatchOutcome(candidate=candidate)

            if outcome.is_ambiguous:
                logger.debug(
                    f"Ambiguous {strategy.signal.value} match for "
                    f"{txn.description!r}: {[c.profile_id for c in outcome.ambiguous]}"
                )
                return outcome

        return MatchOutcome()

    def match(self, txn: Matchable, profiles: Iterable[Profile]) -> Optional[MatchCandidate]:
        """Return the matched candidate, or None when no tier is satisfied."""
        return self.evaluate(txn, profiles).candidate

    def _corroborate(
        self,
        txn: Matchable,
        candidate: MatchCandidate,
        profiles: list[Profile],
    ) -> MatchCandidate:
        """Add the amount-pattern signal when the amount is one the member usually pays."""
        profile = next((p for p in profiles if p.id == candidate.profile_id), None)
        if profile is None or txn.amount not in profile.expected_amounts:
            return candidate

        return MatchCandidate(
            profile_id=candidate.profile_id,
            display_name=candidate.display_name,
            score=min(1.0, round(candidate.score + self.settings.amount_pattern_bonus, 4)),
            signals=candidate.signals + (MatchSignal.AMOUNT_PATTERN,),
            fragment=candidate.fragment,
        )
