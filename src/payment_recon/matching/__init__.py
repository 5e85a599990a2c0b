"""Matcher, matching strategies and the reconciler."""

from .matcher import Matcher
from .reconciler import Reconciler
from .strategies import (
    MatchingStrategy,
    ExactReferenceStrategy,
    EmbeddedReferenceStrategy,
    FuzzyNameStrategy,
)

__all__ = [
    "Matcher",
    "Reconciler",
    "MatchingStrategy",
    "ExactReferenceStrategy",
    "EmbeddedReferenceStrategy",
    "FuzzyNameStrategy",
]
