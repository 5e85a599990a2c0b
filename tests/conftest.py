"""Shared fixtures: in-memory store and directory, a fixed clock, sample profiles.

The reconciler is built with a deterministic clock and sequential ids so that
assertions about timestamps, ordering and history are stable.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import itertools

import pytest

from payment_recon.config import ReconConfig
from payment_recon.matching.reconciler import Reconciler
from payment_recon.models.transaction import MatchConfidence, Profile
from payment_recon.store.memory import InMemoryProfileDirectory, InMemoryTransactionStore


class FixedClock:
    """Clock that advances one second per call, starting at a fixed instant."""

    def __init__(self, start: datetime = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


def sequential_ids(prefix: str = "tx"):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def make_row(
    description: str,
    amount: str = "25.00",
    reference: str | None = None,
    transaction_date: str = "2024-03-01",
) -> dict:
    return {
        "transaction_date": transaction_date,
        "description": description,
        "reference": reference,
        "amount": amount,
    }


def assert_match_invariant(store: InMemoryTransactionStore) -> None:
    for txn in store.list_transactions():
        assert (txn.match_confidence == MatchConfidence.UNMATCHED) == (
            txn.matched_user_id is None
        ), txn


@pytest.fixture
def profiles() -> list[Profile]:
    return [
        Profile("P1", "Jane Smith", aliases=("JSMITH25",), expected_amounts=(Decimal("25.00"),)),
        Profile("P2", "John Doe", aliases=("DOE-MEMBER-7",)),
        Profile("P3", "Priya Patel", aliases=("PP1",)),
        Profile("P9", "Former Member", aliases=("OLDREF99",), active=False),
    ]


@pytest.fixture
def directory(profiles: list[Profile]) -> InMemoryProfileDirectory:
    return InMemoryProfileDirectory(profiles)


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def config() -> ReconConfig:
    return ReconConfig()


@pytest.fixture
def reconciler(
    store: InMemoryTransactionStore,
    directory: InMemoryProfileDirectory,
    config: ReconConfig,
    clock: FixedClock,
) -> Reconciler:
    return Reconciler(store, directory, config, clock=clock, id_factory=sequential_ids())
