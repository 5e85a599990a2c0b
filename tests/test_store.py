import json
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from payment_recon.models.transaction import (
    SYSTEM,
    HumanSource,
    ImportStatus,
    MatchConfidence,
    MatchFields,
    MatchSignal,
    Transaction,
    TransactionImport,
)
from payment_recon.store.base import TransactionFilter
from payment_recon.store.json_store import JsonFileTransactionStore, YamlProfileDirectory
from payment_recon.store.memory import InMemoryTransactionStore
from payment_recon.store.records import profile_from_record, transaction_from_record
from payment_recon.utils.exceptions import (
    ConfigurationError,
    DuplicateTransactionError,
    NotFoundError,
    StoreError,
)

AT = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

UNMATCHED = MatchFields(MatchConfidence.UNMATCHED, None, AT, SYSTEM)
AUTO_P1 = MatchFields(MatchConfidence.AUTO, "P1", AT, SYSTEM, MatchSignal.EXACT_REFERENCE)
MANUAL_P2 = MatchFields(MatchConfidence.MANUAL, "P2", AT, HumanSource("admin1"))


def _transaction(
    transaction_id: str = "tx-1",
    description: str = "FASTER PAYMENT JSMITH25",
    match: MatchFields = UNMATCHED,
    **kwargs,
) -> Transaction:
    return Transaction(
        id=transaction_id,
        transaction_date=kwargs.pop("transaction_date", date(2024, 3, 1)),
        description=description,
        amount=kwargs.pop("amount", Decimal("25.00")),
        match=match,
        reference=kwargs.pop("reference", "JSMITH25"),
        **kwargs,
    )


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryTransactionStore()
    return JsonFileTransactionStore(tmp_path / "store.json")


def test_insert_rejects_duplicate_natural_key(any_store):
    any_store.insert(_transaction("tx-1"))

    with pytest.raises(DuplicateTransactionError):
        any_store.insert(_transaction("tx-2"))

    assert [t.id for t in any_store.list_transactions()] == ["tx-1"]


def test_natural_key_lookup(any_store):
    txn = any_store.insert(_transaction())
    assert any_store.find_by_natural_key(txn.natural_key) == txn
    assert any_store.find_by_natural_key(_transaction(amount=Decimal("1.00")).natural_key) is None


def test_compare_and_set_update(any_store):
    any_store.insert(_transaction(match=AUTO_P1))

    assert not any_store.update_match_fields("tx-1", UNMATCHED, {MatchConfidence.MANUAL})
    assert any_store.get("tx-1").match == AUTO_P1

    assert any_store.update_match_fields("tx-1", MANUAL_P2, {MatchConfidence.AUTO})
    assert any_store.get("tx-1").match == MANUAL_P2


def test_update_unknown_transaction_returns_false(any_store):
    assert not any_store.update_match_fields("missing", MANUAL_P2)


def test_every_write_is_recorded_in_history(any_store):
    any_store.insert(_transaction(match=AUTO_P1))
    any_store.update_match_fields("tx-1", MANUAL_P2)

    assert [e.fields for e in any_store.match_history("tx-1")] == [AUTO_P1, MANUAL_P2]


def test_failed_compare_and_set_leaves_no_history(any_store):
    any_store.insert(_transaction(match=AUTO_P1))
    any_store.update_match_fields("tx-1", UNMATCHED, {MatchConfidence.MANUAL})

    assert len(any_store.match_history("tx-1")) == 1


def test_list_filters_and_ordering(any_store):
    any_store.insert(_transaction("tx-1", match=AUTO_P1))
    any_store.insert(_transaction("tx-2", "OTHER", transaction_date=date(2024, 3, 5)))
    any_store.insert(_transaction("tx-3", "THIRD", match=MANUAL_P2, import_id="imp-1"))

    assert [t.id for t in any_store.list_transactions()] == ["tx-2", "tx-3", "tx-1"]
    assert [t.id for t in any_store.list_transactions(newest_first=False)] == [
        "tx-1",
        "tx-3",
        "tx-2",
    ]
    assert [t.id for t in any_store.list_transactions(TransactionFilter(user_id="P1"))] == ["tx-1"]
    assert [
        t.id
        for t in any_store.list_transactions(
            TransactionFilter(confidence=MatchConfidence.UNMATCHED)
        )
    ] == ["tx-2"]
    assert [
        t.id for t in any_store.list_transactions(TransactionFilter(import_id="imp-1"))
    ] == ["tx-3"]


def test_delete_frees_the_natural_key(any_store):
    any_store.insert(_transaction("tx-1"))

    assert any_store.delete("tx-1")
    assert not any_store.delete("tx-1")
    any_store.insert(_transaction("tx-2"))


def test_delete_import_cascades(any_store):
    record = TransactionImport("imp-1", "march.csv", "treasurer1", AT)
    any_store.insert_import(record)
    any_store.insert(_transaction("tx-1", import_id="imp-1"))
    any_store.insert(_transaction("tx-2", "OTHER"))

    assert any_store.delete_import("imp-1") == 1
    assert any_store.get_import("imp-1") is None
    assert [t.id for t in any_store.list_transactions()] == ["tx-2"]

    with pytest.raises(NotFoundError):
        any_store.delete_import("imp-1")


def test_json_store_survives_reopen(tmp_path):
    path = tmp_path / "store.json"
    store = JsonFileTransactionStore(path)
    store.insert_import(TransactionImport("imp-1", "march.csv", "treasurer1", AT, 1, 1))
    store.insert(
        _transaction(
            match=AUTO_P1,
            import_id="imp-1",
            balance=Decimal("1024.50"),
            raw_data={"Memo": "SUBS"},
        )
    )
    store.update_match_fields("tx-1", MANUAL_P2)

    reopened = JsonFileTransactionStore(path)

    txn = reopened.get("tx-1")
    assert txn == store.get("tx-1")
    assert txn.amount == Decimal("25.00")
    assert txn.balance == Decimal("1024.50")
    assert txn.matched_by_source == HumanSource("admin1")
    assert [e.fields for e in reopened.match_history("tx-1")] == [AUTO_P1, MANUAL_P2]
    assert reopened.get_import("imp-1").status == ImportStatus.PENDING

    with pytest.raises(DuplicateTransactionError):
        reopened.insert(_transaction("tx-9"))


def test_json_store_writes_amounts_as_text(tmp_path):
    path = tmp_path / "store.json"
    JsonFileTransactionStore(path).insert(_transaction(amount=Decimal("0.10")))

    document = json.loads(path.read_text())
    (record,) = document["transactions"]
    assert record["amount"] == "0.10"
    assert record["matched_by_source"] == "system"


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json")

    with pytest.raises(StoreError):
        JsonFileTransactionStore(path)


def test_json_store_rolls_back_when_the_file_write_fails(tmp_path, monkeypatch):
    path = tmp_path / "store.json"
    store = JsonFileTransactionStore(path)
    store.insert(_transaction("tx-1"))

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("payment_recon.store.json_store.os.replace", failing_replace)
    second = _transaction("tx-2", description="STANDING ORDER DOE-MEMBER-7")
    with pytest.raises(StoreError, match="disk full"):
        store.insert(second)

    assert store.get("tx-2") is None
    assert store.find_by_natural_key(second.natural_key) is None
    assert store.list_transactions() == JsonFileTransactionStore(path).list_transactions()
    assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    monkeypatch.undo()
    store.insert(second)
    assert JsonFileTransactionStore(path).get("tx-2") == second


def test_json_store_rolls_back_when_a_record_cannot_be_serialized(tmp_path):
    path = tmp_path / "store.json"
    store = JsonFileTransactionStore(path)
    store.insert(_transaction("tx-1"))

    unserializable = _transaction(
        "tx-2", description="CARD PAYMENT", raw_data={"amount": Decimal("11.00")}
    )
    with pytest.raises(StoreError, match="serialize"):
        store.insert(unserializable)

    assert store.get("tx-2") is None
    assert store.find_by_natural_key(unserializable.natural_key) is None
    assert store.list_transactions() == JsonFileTransactionStore(path).list_transactions()

    store.insert(_transaction("tx-2", description="CARD PAYMENT", raw_data={"amount": "11.00"}))
    assert JsonFileTransactionStore(path).get("tx-2").raw_data == {"amount": "11.00"}


def test_record_violating_match_invariant_is_rejected():
    record = {
        "id": "tx-1",
        "transaction_date": "2024-03-01",
        "description": "BANK CREDIT",
        "amount": "10.00",
        "match_confidence": "manual",
        "matched_user_id": None,
        "matched_at": AT.isoformat(),
        "matched_by_source": "user:admin1",
    }
    with pytest.raises(StoreError):
        transaction_from_record(record)


def test_profile_record_accepts_legacy_payment_reference():
    profile = profile_from_record(
        {"id": 7, "name": "Jane Smith", "payment_reference": "JSMITH25", "expected_amounts": [25]}
    )

    assert profile.id == "7"
    assert profile.display_name == "Jane Smith"
    assert profile.aliases == ("JSMITH25",)
    assert profile.expected_amounts == (Decimal("25"),)
    assert profile.active


def test_yaml_profile_directory(tmp_path):
    path = tmp_path / "profiles.yaml"
    path.write_text(
        "profiles:\n"
        "  - id: P1\n"
        "    name: Jane Smith\n"
        "    aliases: [JSMITH25, SMITHFAMILY]\n"
        "  - id: P9\n"
        "    name: Former Member\n"
        "    aliases: OLDREF99\n"
        "    active: false\n"
    )

    directory = YamlProfileDirectory(path)

    assert [p.id for p in directory.list_active_profiles_with_aliases()] == ["P1"]
    assert directory.get_profile("P1").aliases == ("JSMITH25", "SMITHFAMILY")
    assert directory.get_profile("P9").aliases == ("OLDREF99",)


def test_yaml_profile_directory_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        YamlProfileDirectory(tmp_path / "missing.yaml")


def test_yaml_profile_directory_bad_entry(tmp_path):
    path = tmp_path / "profiles.yaml"
    path.write_text("profiles:\n  - name: No Id\n")

    with pytest.raises(ConfigurationError):
        YamlProfileDirectory(path)
