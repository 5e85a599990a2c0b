from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from payment_recon.models.transaction import (
    SYSTEM,
    BatchResult,
    HumanSource,
    MatchConfidence,
    MatchFields,
    MatchSignal,
    TransactionDraft,
    parse_match_source,
)

AT = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "confidence, user_id, source, signal",
    [
        (MatchConfidence.UNMATCHED, "P1", SYSTEM, None),
        (MatchConfidence.AUTO, None, SYSTEM, MatchSignal.EXACT_REFERENCE),
        (MatchConfidence.MANUAL, None, HumanSource("admin1"), None),
        (MatchConfidence.MANUAL, "P1", SYSTEM, None),
        (MatchConfidence.AUTO, "P1", HumanSource("admin1"), MatchSignal.EXACT_REFERENCE),
        (MatchConfidence.AUTO, "P1", SYSTEM, None),
        (MatchConfidence.MANUAL, "P1", HumanSource("admin1"), MatchSignal.FUZZY_NAME),
    ],
)
def test_inconsistent_match_fields_are_rejected(confidence, user_id, source, signal):
    with pytest.raises(ValueError):
        MatchFields(confidence, user_id, AT, source, signal)


def test_consistent_match_fields():
    assert MatchFields(MatchConfidence.UNMATCHED, None, AT, HumanSource("admin1")).user_id is None
    assert MatchFields(MatchConfidence.MANUAL, "P1", AT, HumanSource("admin1")).signal is None
    auto = MatchFields(MatchConfidence.AUTO, "P1", AT, SYSTEM, MatchSignal.FUZZY_NAME)
    assert auto.signal.rank == 3


def test_human_source_requires_actor():
    with pytest.raises(ValueError):
        HumanSource("  ")


def test_match_source_text_form():
    assert str(SYSTEM) == "system"
    assert str(HumanSource("admin1")) == "user:admin1"
    assert parse_match_source("system") is SYSTEM
    assert parse_match_source("user:admin1") == HumanSource("admin1")

    with pytest.raises(ValueError):
        parse_match_source("robot")


def test_signal_ranks_follow_tier_order():
    ranks = [s.rank for s in MatchSignal]
    assert ranks == sorted(ranks)
    assert MatchSignal.EXACT_REFERENCE.rank < MatchSignal.FUZZY_NAME.rank


def test_natural_key_ignores_amount_formatting():
    a = TransactionDraft(date(2024, 3, 1), "BANK CREDIT", Decimal("25.00"), "REF")
    b = TransactionDraft(date(2024, 3, 1), "BANK CREDIT", Decimal("25"), "REF")
    assert a.natural_key == b.natural_key
    assert hash(a.natural_key) == hash(b.natural_key)


def test_batch_result_processed_count():
    result = BatchResult(inserted=3, skipped_duplicates=2, failed=1)
    assert result.processed == 6
