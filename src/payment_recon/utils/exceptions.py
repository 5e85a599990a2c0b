"""Custom exceptions for the reconciliation engine."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ValidationError(ReconciliationError):
    """Malformed input row (missing field, unparseable amount or date)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ReconciliationError):
    """Referenced transaction or import does not exist."""

    pass


class StatementParseError(ReconciliationError):
    """Error reading a bank statement file."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class StoreError(ReconciliationError):
    """Underlying persistence failure."""

    pass


class TransientStoreError(StoreError):
    """Store failure that may succeed on retry (e.g. a lock conflict)."""

    pass


class StoreUnavailableError(StoreError):
    """Store cannot be reached; further work should stop."""

    pass


class DuplicateTransactionError(StoreError):
    """A transaction with the same natural key already exists."""

    pass
