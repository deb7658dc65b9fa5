"""Shared state for one reconciliation session.

Replaces module-level singletons: every service receives the same context
and reads or writes documents through its store. A single writer at a time
is assumed; nothing here locks.
"""

from __future__ import annotations

import structlog

from farm_ledger.config import get_settings
from farm_ledger.directory import WorkerDirectory
from farm_ledger.items import ItemNormalizer
from farm_ledger.ledger import ActivityLedger, BalanceTracker
from farm_ledger.rules import GameRules, get_rules
from farm_ledger.storage import (
    FARM_BALANCE_DOC,
    LEDGER_DOC,
    DocumentStore,
    JsonFileStore,
)

logger = structlog.get_logger(__name__)


class FarmContext:
    def __init__(
        self,
        store: DocumentStore,
        rules: GameRules | None = None,
        normalizer: ItemNormalizer | None = None,
        directory: WorkerDirectory | None = None,
        ledger: ActivityLedger | None = None,
        balance: BalanceTracker | None = None,
    ):
        self.store = store
        self.rules = rules if rules is not None else get_rules()
        self.normalizer = normalizer if normalizer is not None else ItemNormalizer()
        self.directory = directory if directory is not None else WorkerDirectory()
        self.ledger = ledger if ledger is not None else ActivityLedger()
        self.balance = balance if balance is not None else BalanceTracker()

    @classmethod
    def load(
        cls,
        store: DocumentStore,
        rules: GameRules | None = None,
        normalizer: ItemNormalizer | None = None,
        history_cap: int | None = None,
    ) -> FarmContext:
        """Load ledger, workers and balance documents from the store."""
        cap = history_cap if history_cap is not None else get_settings().ledger_history_cap
        context = cls(
            store=store,
            rules=rules,
            normalizer=normalizer,
            directory=WorkerDirectory.load(store),
            ledger=ActivityLedger.from_document(store.load(LEDGER_DOC), history_cap=cap),
            balance=BalanceTracker.from_document(store.load(FARM_BALANCE_DOC)),
        )
        logger.info(
            "context_loaded",
            activities=len(context.ledger),
            workers=len(context.directory),
            balance=str(context.balance.current) if context.balance.known else None,
        )
        return context

    @classmethod
    def from_settings(cls) -> FarmContext:
        settings = get_settings()
        return cls.load(JsonFileStore(settings.data_dir), history_cap=settings.ledger_history_cap)

    def save_ledger(self) -> None:
        self.store.save(LEDGER_DOC, self.ledger.to_document())

    def save_balance(self) -> None:
        self.store.save(FARM_BALANCE_DOC, self.balance.to_document())

    def save_workers(self) -> None:
        self.directory.save(self.store)
