"""
Mapping between stored records and the strict model types.

Store backends hold loosely-typed dictionaries (JSON documents, database
rows). Everything crossing into the engine goes through these functions so
that malformed records are rejected at the boundary.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from ..models.transaction import (
    ImportStatus,
    MatchConfidence,
    MatchFields,
    MatchSignal,
    Profile,
    Transaction,
    TransactionImport,
    parse_match_source,
)
from ..utils.exceptions import StoreError


def match_fields_to_record(fields: MatchFields) -> dict[str, Any]:
    return {
        "match_confidence": fields.confidence.value,
        "matched_user_id": fields.user_id,
        "matched_at": fields.matched_at.isoformat(),
        "matched_by_source": str(fields.source),
        "match_signal": fields.signal.value if fields.signal else None,
    }


def match_fields_from_record(record: Mapping[str, Any]) -> MatchFields:
    signal = record.get("match_signal")
    return MatchFields(
        confidence=MatchConfidence(record["match_confidence"]),
        user_id=record.get("matched_user_id"),
        matched_at=datetime.fromisoformat(record["matched_at"]),
        source=parse_match_source(record["matched_by_source"]),
        signal=MatchSignal(signal) if signal else None,
    )


def transaction_to_record(txn: Transaction) -> dict[str, Any]:
    record = {
        "id": txn.id,
        "transaction_date": txn.transaction_date.isoformat(),
        "description": txn.description,
        "reference": txn.reference,
        "amount": str(txn.amount),
        "balance": str(txn.balance) if txn.balance is not None else None,
        "import_id": txn.import_id,
        "raw_data": dict(txn.raw_data),
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
    }
    record.update(match_fields_to_record(txn.match))
    return record


def transaction_from_record(record: Mapping[str, Any]) -> Transaction:
    """
    Build a Transaction from a stored record.

    Raises:
        StoreError: If the record is missing fields or violates match invariants
    """
    try:
        return Transaction(
            id=str(record["id"]),
            transaction_date=date.fromisoformat(record["transaction_date"]),
            description=record["description"],
            amount=Decimal(record["amount"]),
            match=match_fields_from_record(record),
            reference=record.get("reference"),
            balance=_optional_decimal(record.get("balance")),
            import_id=record.get("import_id"),
            raw_data=dict(record.get("raw_data") or {}),
            created_at=_optional_datetime(record.get("created_at")),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise StoreError(f"Malformed transaction record {record.get('id')!r}: {e}") from e


def import_to_record(record: TransactionImport) -> dict[str, Any]:
    return {
        "id": record.id,
        "filename": record.filename,
        "uploaded_by": record.uploaded_by,
        "uploaded_at": record.uploaded_at.isoformat(),
        "row_count": record.row_count,
        "matched_count": record.matched_count,
        "status": record.status.value,
    }


def import_from_record(record: Mapping[str, Any]) -> TransactionImport:
    try:
        return TransactionImport(
            id=str(record["id"]),
            filename=record["filename"],
            uploaded_by=record["uploaded_by"],
            uploaded_at=datetime.fromisoformat(record["uploaded_at"]),
            row_count=int(record.get("row_count", 0)),
            matched_count=int(record.get("matched_count", 0)),
            status=ImportStatus(record.get("status", ImportStatus.PENDING.value)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Malformed import record {record.get('id')!r}: {e}") from e


def profile_from_record(record: Mapping[str, Any]) -> Profile:
    """Build a Profile from a directory entry (``id``, ``name``, ``aliases``...)."""
    aliases = record.get("aliases") or []
    if isinstance(aliases, str):
        aliases = [aliases]
    # Older directory entries carry a single payment_reference instead of aliases
    payment_reference = record.get("payment_reference")
    if payment_reference:
        aliases = [*aliases, payment_reference]

    return Profile(
        id=str(record["id"]),
        display_name=str(record.get("display_name") or record.get("name") or ""),
        aliases=tuple(str(a) for a in aliases if str(a).strip()),
        active=bool(record.get("active", True)),
        expected_amounts=tuple(Decimal(str(a)) for a in record.get("expected_amounts") or ()),
    )


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return Decimal(value) if value not in (None, "") else None


def _optional_datetime(value: Any) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
