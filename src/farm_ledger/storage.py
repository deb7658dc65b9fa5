"""Whole-document persistence.

Each logical file (ledger, payments, manager credits, ...) is loaded in full,
mutated in memory and written back in full. There is no partial update and
no cross-document transaction.
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Protocol

import structlog

from farm_ledger.errors import PersistenceFailure

logger = structlog.get_logger(__name__)

LEDGER_DOC = "analyzed_data"
PAYMENTS_DOC = "payments"
MANAGER_PAYMENTS_DOC = "manager_payments"
MANAGER_CREDITS_DOC = "manager_credits"
EXPECTATIONS_DOC = "manager_expectations"
ABUSE_ACTIONS_DOC = "abuse_actions"
FARM_BALANCE_DOC = "farm_balance"
WORKERS_DOC = "workers"
WORKER_RATINGS_DOC = "worker_ratings"


class DocumentStore(Protocol):
    """Key/value store of JSON documents."""

    def load(self, key: str) -> dict[str, Any] | None: ...

    def save(self, key: str, document: dict[str, Any]) -> None: ...


class InMemoryStore:
    """Dict-backed store, used in tests and dry runs."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None):
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self.save_count = 0

    def load(self, key: str) -> dict[str, Any] | None:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    def save(self, key: str, document: dict[str, Any]) -> None:
        self._documents[key] = copy.deepcopy(document)
        self.save_count += 1

    def keys(self) -> list[str]:
        return sorted(self._documents)


class JsonFileStore:
    """Stores each document as ``<data_dir>/<key>.json``."""

    def __init__(self, data_dir: str | Path):
        self._data_dir = Path(data_dir)
        self._logger = logger.bind(component="json_store", data_dir=str(self._data_dir))

    def path_for(self, key: str) -> Path:
        return self._data_dir / f"{key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            self._logger.error("document_load_failed", key=key, error=str(e))
            raise PersistenceFailure(f"Could not read document {key!r}", {"path": str(path)}) from e
        if not isinstance(data, dict):
            raise PersistenceFailure(
                f"Document {key!r} is not a JSON object", {"path": str(path)}
            )
        return data

    def save(self, key: str, document: dict[str, Any]) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8"
            )
            os.replace(tmp_path, path)
        except OSError as e:
            self._logger.error("document_save_failed", key=key, error=str(e))
            raise PersistenceFailure(
                f"Could not write document {key!r}; in-memory state is ahead of storage",
                {"path": str(path)},
            ) from e
        self._logger.debug("document_saved", key=key)
