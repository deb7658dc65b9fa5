"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("FARM_DATA_DIR", "test-data")

from farm_ledger.context import FarmContext
from farm_ledger.directory import WorkerDirectory
from farm_ledger.items import ItemNormalizer
from farm_ledger.models import Activity, ActivityKind, Role, WorkerProfile
from farm_ledger.rules import GameRules
from farm_ledger.storage import InMemoryStore

BASE_TIME = datetime(2024, 5, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def rules():
    """Default game rules, independent of the environment."""
    return GameRules()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def normalizer():
    return ItemNormalizer()


@pytest.fixture
def profiles():
    """Two workers, one manager and one supervisor."""
    return [
        WorkerProfile(id="maria", display_name="Maria Silva", linked_account_id="1001"),
        WorkerProfile(id="joao", display_name="João Pereira", linked_account_id="1002"),
        WorkerProfile(
            id="carlos", display_name="Carlos Mendes", role=Role.MANAGER, linked_account_id="2001"
        ),
        WorkerProfile(id="ana", display_name="Ana Costa", role=Role.SUPERVISOR),
    ]


@pytest.fixture
def directory(profiles):
    return WorkerDirectory(profiles)


@pytest.fixture
def context(store, rules, normalizer, directory):
    """A farm context over an empty in-memory store."""
    return FarmContext(store=store, rules=rules, normalizer=normalizer, directory=directory)


@pytest.fixture
def make_activity():
    """Factory for ledger activities with unique ids.

    ``minutes`` offsets the timestamp from BASE_TIME.
    """
    ids = count(1)

    def _make(
        kind: ActivityKind,
        actor: str = "maria",
        item: str | None = None,
        quantity: int = 0,
        amount: str | int = 0,
        minutes: float = 0,
        balance_after: str | None = None,
        paid: bool = False,
    ) -> Activity:
        return Activity(
            id=f"act-{next(ids)}",
            kind=kind,
            actor=actor,
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            item=item,
            quantity=quantity,
            amount=Decimal(str(amount)),
            balance_after=Decimal(balance_after) if balance_after is not None else None,
            paid=paid,
        )

    return _make


@pytest.fixture
def make_record():
    """Factory for chat-export message dicts."""
    ids = count(1)

    def _make(
        content: str = "",
        author: str | dict = "Maria Silva",
        minutes: float = 0,
        title: str | None = None,
        fields: list[tuple[str, str]] | None = None,
        record_id: str | None = None,
    ) -> dict:
        record = {
            "id": record_id or f"msg-{next(ids)}",
            "author": author,
            "content": content,
            "timestamp": (BASE_TIME + timedelta(minutes=minutes)).isoformat(),
        }
        if title or fields:
            record["embeds"] = [
                {
                    "title": title,
                    "fields": [{"name": name, "value": value} for name, value in fields or []],
                }
            ]
        return record

    return _make
