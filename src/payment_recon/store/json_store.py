"""File-backed store and YAML profile directory used by the command line."""

from pathlib import Path
from typing import Any, NoReturn
import json
import logging
import os
import tempfile

import yaml

from ..models.transaction import MatchEvent
from ..utils.exceptions import ConfigurationError, StoreError, StoreUnavailableError
from .memory import InMemoryProfileDirectory, InMemoryTransactionStore
from .records import (
    import_from_record,
    import_to_record,
    match_fields_from_record,
    match_fields_to_record,
    profile_from_record,
    transaction_from_record,
    transaction_to_record,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class JsonFileTransactionStore(InMemoryTransactionStore):
    """
    Transaction store persisted to a single JSON document.

    The whole document is rewritten after every successful write, via a
    temporary file and ``os.replace``. If the rewrite fails the in-memory
    state is reloaded from disk, so a failed write leaves no trace.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        self._transactions.clear()
        self._by_key.clear()
        self._history.clear()
        self._imports.clear()

        if not self.path.exists():
            logger.debug(f"No store file at {self.path}, starting empty")
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read store file {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt store file {self.path}: {e}") from e

        for record in document.get("transactions", []):
            txn = transaction_from_record(record)
            self._transactions[txn.id] = txn
            self._by_key[txn.natural_key] = txn.id
            self._history[txn.id] = [
                MatchEvent(txn.id, match_fields_from_record(event))
                for event in record.get("history", [])
            ] or [MatchEvent(txn.id, txn.match)]

        for record in document.get("imports", []):
            imported = import_from_record(record)
            self._imports[imported.id] = imported

        logger.debug(
            f"Loaded {len(self._transactions)} transactions and "
            f"{len(self._imports)} imports from {self.path}"
        )

    def _document(self) -> dict[str, Any]:
        transactions = []
        for txn in sorted(self._transactions.values(), key=lambda t: t.id):
            record = transaction_to_record(txn)
            record["history"] = [
                match_fields_to_record(event.fields) for event in self._history[txn.id]
            ]
            transactions.append(record)

        return {
            "version": FORMAT_VERSION,
            "transactions": transactions,
            "imports": [import_to_record(r) for r in self._imports.values()],
        }

    def _changed(self) -> None:
        try:
            content = json.dumps(self._document(), indent=2)
        except (TypeError, ValueError) as e:
            self._rollback(f"Cannot serialize store state: {e}", e)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            self._rollback(f"Failed to write store file {self.path}: {e}", e)

    def _rollback(self, message: str, cause: Exception) -> NoReturn:
        """Restore the in-memory state from disk and report the failed write."""
        logger.error(message)
        self._load()
        raise StoreError(message) from cause


class YamlProfileDirectory(InMemoryProfileDirectory):
    """
    Profile directory read from a YAML file of the form::

        profiles:
          - id: P1
            name: Jane Smith
            aliases: [JSMITH25]
            expected_amounts: [25.00]
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> list:
        if not self.path.exists():
            raise ConfigurationError(f"Profile file not found: {self.path}")

        with open(self.path, "r", encoding="utf-8") as f:
            try:
                document = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.path}: {e}") from e

        entries = document.get("profiles", []) if isinstance(document, dict) else document
        try:
            profiles = [profile_from_record(entry) for entry in entries]
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ConfigurationError(f"Invalid profile entry in {self.path}: {e}") from e

        logger.info(f"Loaded {len(profiles)} profiles from {self.path}")
        return profiles
