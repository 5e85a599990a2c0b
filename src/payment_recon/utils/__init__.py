"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    StatementParseError,
    ConfigurationError,
    StoreError,
    TransientStoreError,
    StoreUnavailableError,
    DuplicateTransactionError,
)
from .logging_config import setup_logging

__all__ = [
    "ReconciliationError",
    "ValidationError",
    "NotFoundError",
    "StatementParseError",
    "ConfigurationError",
    "StoreError",
    "TransientStoreError",
    "StoreUnavailableError",
    "DuplicateTransactionError",
    "setup_logging",
]
