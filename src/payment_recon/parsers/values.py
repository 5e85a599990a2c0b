"""
Value parsing and row validation at the import boundary.

Loosely-typed incoming rows (from a statement file or an API caller) are
turned into strict ``TransactionDraft`` objects here, before any store access
or matching happens.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence
import re

from ..models.transaction import TransactionDraft
from ..utils.exceptions import ValidationError

DEFAULT_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y-%m-%d", "%d %b %Y")

_CURRENCY_NOISE = re.compile(r"[£$€,\s]")


def parse_amount(value: Any) -> Decimal:
    """
    Parse a signed monetary value into an exact Decimal.

    Accepts Decimals, integers, floats (via their shortest repr) and strings
    such as ``"1,234.56"``, ``"-12.00"``, ``"(12.00)"``, ``"£12.00 DR"``.

    Raises:
        ValidationError: If the value is empty or not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        amount = _parse_amount_text(value)
    else:
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")
    return amount


def _parse_amount_text(text: str) -> Decimal:
    cleaned = text.strip()
    negative = False

    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1].strip()

    upper = cleaned.upper()
    if upper.endswith("CR"):
        cleaned = cleaned[:-2].strip()
    elif upper.endswith("DR"):
        negative = True
        cleaned = cleaned[:-2].strip()

    if cleaned.startswith("-"):
        negative = not negative
        cleaned = cleaned[1:]

    cleaned = _CURRENCY_NOISE.sub("", cleaned)
    if not cleaned:
        raise ValidationError(f"Invalid amount: {text!r}", field="amount")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {text!r}", field="amount") from e

    return -amount if negative else amount


def parse_date(value: Any, formats: Sequence[str] = DEFAULT_DATE_FORMATS) -> date:
    """
    Parse a transaction date.

    Args:
        value: A date, datetime, or string in one of ``formats``
        formats: strptime formats tried in order (day-first formats first)

    Raises:
        ValidationError: If the value matches none of the formats
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid date: {value!r}", field="transaction_date")

    text = value.strip()
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    raise ValidationError(f"Invalid date format: {text!r}", field="transaction_date")


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _raw_data(value: Any) -> dict[str, str]:
    """Original statement cells, as text."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(
            f"raw_data must be a mapping, got {type(value).__name__}", field="raw_data"
        )
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def validate_row(
    raw: Mapping[str, Any],
    date_formats: Sequence[str] = DEFAULT_DATE_FORMATS,
) -> TransactionDraft:
    """
    Validate one raw transaction record.

    Args:
        raw: Mapping with ``transaction_date``, ``description``, ``amount`` and
            optionally ``reference``, ``balance`` and ``raw_data``
        date_formats: Accepted formats for string dates

    Returns:
        A validated draft ready for deduplication and matching

    Raises:
        ValidationError: If a required field is missing or malformed
    """
    if "transaction_date" not in raw or raw["transaction_date"] in (None, ""):
        raise ValidationError("Missing transaction date", field="transaction_date")
    transaction_date = parse_date(raw["transaction_date"], date_formats)

    description = _optional_text(raw.get("description"))
    if description is None:
        raise ValidationError("Missing description", field="description")

    if "amount" not in raw:
        raise ValidationError("Missing amount", field="amount")
    amount = parse_amount(raw["amount"])

    balance: Optional[Decimal] = None
    if raw.get("balance") not in (None, ""):
        try:
            balance = parse_amount(raw["balance"])
        except ValidationError:
            # Balance is optional; a garbled value is dropped
            balance = None

    return TransactionDraft(
        transaction_date=transaction_date,
        description=description,
        amount=amount,
        reference=_optional_text(raw.get("reference")),
        balance=balance,
        raw_data=_raw_data(raw.get("raw_data")),
    )
