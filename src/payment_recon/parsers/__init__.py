"""Statement extraction and row validation."""

from .statement_parser import StatementExtract, StatementParser
from .values import parse_amount, parse_date, validate_row

__all__ = [
    "StatementExtract",
    "StatementParser",
    "parse_amount",
    "parse_date",
    "validate_row",
]
