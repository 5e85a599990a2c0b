"""
Bank statement CSV extraction.
Reads exported statements into a flat list of raw transaction rows.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from io import StringIO
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from ..config import ReconConfig
from ..models.transaction import RowError
from ..utils.exceptions import StatementParseError, ValidationError
from .values import parse_amount

logger = logging.getLogger(__name__)


@dataclass
class StatementExtract:
    """Rows pulled from a statement file plus per-row extraction problems."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)


class StatementParser:
    """
    Parser for bank statement CSV exports.

    Columns are located by header aliases so statements from different banks
    can be read without per-bank configuration. Values are passed through as
    text; the reconciler validates dates and amounts per row.
    """

    def __init__(self, config: ReconConfig):
        """
        Initialize the parser with configuration.

        Args:
            config: Application configuration object
        """
        self.settings = config.input.statement

    def parse_file(self, file_path: Path) -> StatementExtract:
        """
        Parse a statement CSV file.

        Args:
            file_path: Path to the CSV file

        Returns:
            Extracted rows and row-level errors

        Raises:
            StatementParseError: If the file cannot be read or lacks required columns
        """
        logger.info(f"Parsing statement file: {file_path}")

        try:
            df = pd.read_csv(
                file_path,
                encoding=self.settings.encoding,
                delimiter=self.settings.delimiter,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
            )
        except (OSError, ValueError, pd.errors.ParserError) as e:
            logger.error(f"Failed to read statement file: {e}")
            raise StatementParseError(f"Failed to read statement file: {e}") from e

        extract = self._process_dataframe(df)
        logger.info(
            f"Extracted {len(extract.rows)} rows from {file_path.name} "
            f"({len(extract.errors)} rejected)"
        )
        return extract

    def parse_text(self, content: str) -> StatementExtract:
        """Parse statement CSV content already held in memory."""
        if not content.strip():
            raise StatementParseError("Statement is empty")

        try:
            df = pd.read_csv(
                StringIO(content),
                delimiter=self.settings.delimiter,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
            )
        except (ValueError, pd.errors.ParserError) as e:
            raise StatementParseError(f"Failed to read statement: {e}") from e

        return self._process_dataframe(df)

    def _process_dataframe(self, df: pd.DataFrame) -> StatementExtract:
        """
        Map DataFrame rows onto the raw row shape consumed by the reconciler.

        Args:
            df: DataFrame with every cell read as text

        Returns:
            Extracted rows and row-level errors
        """
        df.columns = [str(c).strip().lower() for c in df.columns]
        columns = self._locate_columns(list(df.columns))

        extract = StatementExtract(columns=list(df.columns))

        for idx, row in df.iterrows():
            # Header is line 1 of the file
            line_number = int(idx) + 2
            values = {col: str(row[col]).strip() for col in df.columns}

            if not any(values.values()):
                continue

            try:
                amount = self._row_amount(values, columns)
            except ValidationError as e:
                extract.errors.append(RowError(line_number, str(e), e.field))
                continue

            extract.rows.append(
                {
                    "transaction_date": values.get(columns["date"], ""),
                    "description": values.get(columns["description"], ""),
                    "amount": amount,
                    "reference": _cell(values, columns.get("reference")),
                    "balance": _cell(values, columns.get("balance")),
                    "raw_data": values,
                    "line_number": line_number,
                }
            )

        return extract

    def _locate_columns(self, headers: list[str]) -> dict[str, Optional[str]]:
        """
        Find the header used for each logical column.

        Raises:
            StatementParseError: If date, description or an amount column is missing
        """
        located: dict[str, Optional[str]] = {}
        for name, aliases in self.settings.column_aliases.items():
            located[name] = next((a for a in aliases if a in headers), None)

        if located.get("date") is None:
            raise StatementParseError(
                "Could not find date column. Expected: Date, Transaction Date, etc."
            )
        if located.get("description") is None:
            raise StatementParseError(
                "Could not find description column. Expected: Description, Narrative, etc."
            )
        if not any(located.get(name) for name in ("amount", "credit", "debit")):
            raise StatementParseError(
                "Could not find amount column(s). Expected: Amount, Credit/Debit, etc."
            )
        return located

    def _row_amount(self, values: dict[str, str], columns: dict[str, Optional[str]]) -> str:
        """Return the signed amount text, combining credit/debit columns when needed."""
        if columns.get("amount"):
            return values[columns["amount"]]

        credit = _cell(values, columns.get("credit"))
        debit = _cell(values, columns.get("debit"))
        if credit is None and debit is None:
            raise ValidationError("Missing amount", field="amount")

        total = parse_amount(credit) if credit else Decimal("0")
        if debit:
            total -= abs(parse_amount(debit))
        return str(total)


def _cell(values: dict[str, str], column: Optional[str]) -> Optional[str]:
    if column is None:
        return None
    return values.get(column) or None
