"""Tests for turning parsed candidates into ledger activities."""

from decimal import Decimal

from farm_ledger.classifier import ActivityClassifier, activity_id_for
from farm_ledger.models import ActivityKind
from farm_ledger.parser import ParsedCandidate


def _candidate(base_time, **overrides):
    values = {
        "record_id": "msg-1",
        "kind": ActivityKind.ITEM_ADD,
        "timestamp": base_time,
        "actor_name": "Maria Silva",
        "raw_item": "Trigo",
        "quantity": 50,
    }
    values.update(overrides)
    return ParsedCandidate(**values)


def test_activity_ids_are_stable():
    assert activity_id_for("msg-1") == activity_id_for("msg-1")
    assert activity_id_for("msg-1") != activity_id_for("msg-2")


def test_inventory_item_is_canonical(normalizer, directory, base_time):
    classifier = ActivityClassifier(normalizer, directory)

    activity = classifier.classify(_candidate(base_time))

    assert activity.item == "wheat"
    assert activity.actor == "maria"
    assert activity.actor_name == "Maria Silva"
    assert activity.id == activity_id_for("msg-1")
    assert activity.source_id == "msg-1"


def test_financial_activity_has_no_item(normalizer, directory, base_time):
    classifier = ActivityClassifier(normalizer, directory)

    activity = classifier.classify(
        _candidate(
            base_time,
            kind=ActivityKind.DEPOSIT,
            raw_item=None,
            quantity=0,
            amount=Decimal("160"),
            balance_after=Decimal("5160"),
        )
    )

    assert activity.item is None
    assert activity.quantity is None
    assert activity.amount == Decimal("160")
    assert activity.balance_after == Decimal("5160")


def test_unmatched_actor_falls_back_to_account_then_name(normalizer, directory, base_time):
    classifier = ActivityClassifier(normalizer, directory)

    with_account = classifier.classify(
        _candidate(base_time, actor_name="Stranger", account_id="9999")
    )
    without_account = classifier.classify(_candidate(base_time, actor_name="Stranger"))

    assert with_account.actor == "9999"
    assert without_account.actor == "Stranger"
