"""Tests for document stores and the farm context."""

import json

import pytest

from farm_ledger.context import FarmContext
from farm_ledger.directory import WorkerDirectory
from farm_ledger.errors import PersistenceFailure
from farm_ledger.ledger import ActivityLedger
from farm_ledger.models import ActivityKind
from farm_ledger.storage import FARM_BALANCE_DOC, LEDGER_DOC, InMemoryStore, JsonFileStore


class TestInMemoryStore:
    def test_documents_are_copied(self):
        store = InMemoryStore()
        document = {"activities": [1, 2]}

        store.save("doc", document)
        document["activities"].append(3)
        loaded = store.load("doc")
        loaded["activities"].append(4)

        assert store.load("doc") == {"activities": [1, 2]}
        assert store.save_count == 1

    def test_missing_document(self):
        assert InMemoryStore().load("nope") is None


class TestJsonFileStore:
    def test_save_and_load(self, tmp_path):
        store = JsonFileStore(tmp_path / "data")

        store.save("payments", {"payments": [], "totalPaid": 0})

        assert store.load("payments") == {"payments": [], "totalPaid": 0}
        assert (tmp_path / "data" / "payments.json").exists()
        assert not (tmp_path / "data" / "payments.json.tmp").exists()

    def test_missing_file_is_none(self, tmp_path):
        assert JsonFileStore(tmp_path).load("analyzed_data") is None

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceFailure):
            JsonFileStore(tmp_path).load("broken")

    def test_non_object_raises(self, tmp_path):
        (tmp_path / "list.json").write_text(json.dumps([1, 2]), encoding="utf-8")

        with pytest.raises(PersistenceFailure):
            JsonFileStore(tmp_path).load("list")

    def test_unwritable_directory_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")

        with pytest.raises(PersistenceFailure):
            JsonFileStore(blocker / "data").save("doc", {})


def test_context_load_restores_state(context, make_activity, tmp_path):
    """Test that ledger and balance survive a save/load cycle on disk."""
    store = JsonFileStore(tmp_path)
    context.store = store
    context.ledger.append(
        make_activity(ActivityKind.DEPOSIT, amount=160, balance_after="6000")
    )
    context.balance.observe(context.ledger.activities)
    context.save_ledger()
    context.save_balance()
    context.save_workers()

    reloaded = FarmContext.load(store, rules=context.rules, history_cap=100)

    assert len(reloaded.ledger) == 1
    assert str(reloaded.balance.current) == "6000.0"
    assert reloaded.directory.get("maria") is not None
    assert {LEDGER_DOC, FARM_BALANCE_DOC} <= {p.stem for p in tmp_path.glob("*.json")}


def test_empty_store_keeps_history_cap(make_activity):
    """Test that a context loaded from an empty store still bounds its ledger."""
    context = FarmContext.load(InMemoryStore(), history_cap=2)

    for minute in range(5):
        context.ledger.append(
            make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=1, minutes=minute)
        )

    assert len(context.ledger) == 2


def test_injected_empty_collaborators_are_kept():
    ledger = ActivityLedger(history_cap=3)
    directory = WorkerDirectory()

    context = FarmContext(InMemoryStore(), ledger=ledger, directory=directory)

    assert context.ledger is ledger
    assert context.directory is directory
