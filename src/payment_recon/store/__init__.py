"""Record store and profile directory backends."""

from .base import ProfileDirectory, TransactionFilter, TransactionStore
from .json_store import JsonFileTransactionStore, YamlProfileDirectory
from .memory import InMemoryProfileDirectory, InMemoryTransactionStore

__all__ = [
    "ProfileDirectory",
    "TransactionFilter",
    "TransactionStore",
    "JsonFileTransactionStore",
    "YamlProfileDirectory",
    "InMemoryProfileDirectory",
    "InMemoryTransactionStore",
]
