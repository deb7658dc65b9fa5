"""Tests for the named-operation facade."""

from datetime import timedelta
from decimal import Decimal

import pytest

from farm_ledger.context import FarmContext
from farm_ledger.ledger import BalanceTracker
from farm_ledger.models import ActivityKind
from farm_ledger.operations import LedgerOperations
from farm_ledger.storage import JsonFileStore


@pytest.fixture
def planted(context, make_activity):
    context.ledger.append(make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=50))
    return context


def test_pay_all_succeeds(planted, base_time):
    ops = LedgerOperations(planted)

    result = ops.execute("pay_all", {"worker_id": "maria", "now": base_time.isoformat()})

    assert result.success
    assert result.data["amount"] == 7.5
    assert result.to_dict()["result"]["workerId"] == "maria"


def test_unknown_operation_is_not_found(context):
    result = LedgerOperations(context).execute("pay_everyone")

    assert not result.success
    assert result.code == "not_found"
    assert result.details == {"operation": "pay_everyone"}


def test_unknown_manager_is_not_found(context):
    result = LedgerOperations(context).execute(
        "pay_manager", {"manager_id": "maria", "amount": "10"}
    )

    assert result.to_dict()["code"] == "not_found"


def test_balance_too_low_is_insufficient_funds(planted, base_time):
    planted.balance = BalanceTracker(current=Decimal("5.00"), updated_at=base_time)

    result = LedgerOperations(planted).execute("pay_all", {"worker_id": "maria"})

    assert not result.success
    assert result.code == "insufficient_funds"
    assert result.details["balance"] == "5.00"
    assert planted.ledger.activities[0].paid is False


def test_write_failure_is_persistence_failure(
    tmp_path, rules, normalizer, directory, make_activity
):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    context = FarmContext(
        store=JsonFileStore(blocker), rules=rules, normalizer=normalizer, directory=directory
    )
    context.ledger.append(make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=50))

    result = LedgerOperations(context).execute("pay_all", {"worker_id": "maria"})

    assert not result.success
    assert result.code == "persistence_failure"
    assert "path" in result.details


def test_nothing_to_pay(context):
    result = LedgerOperations(context).execute("pay_all", {"worker_id": "joao"})

    assert result.code == "nothing_to_pay"


def test_ingest_then_statement(context, make_record):
    ops = LedgerOperations(context)

    ingest = ops.execute("ingest", {"records": [make_record("Maria x50 trigo (add)")]})
    statement = ops.execute("worker_statement", {"worker_id": "maria"})

    assert ingest.data["appended"] == 1
    assert statement.success


def test_manager_credit_round(context, base_time):
    ops = LedgerOperations(context)
    later = (base_time + timedelta(minutes=1)).isoformat()

    adjusted = ops.execute(
        "adjust_credit", {"manager_id": "carlos", "amount": "-12.5", "reason": "manual"}
    )
    reset = ops.execute("reset_negative_balances", {"now": later})

    assert adjusted.data == -12.5
    assert reset.data == {"carlos": -12.5}


def test_bad_enum_value_is_generic_failure(planted):
    result = LedgerOperations(planted).execute(
        "pay_service", {"worker_id": "maria", "service_type": "fishing"}
    )

    assert not result.success
    assert result.code == "error"


def test_evaluate_worker(planted, base_time):
    result = LedgerOperations(planted).execute(
        "evaluate_worker", {"worker_id": "maria", "now": base_time.isoformat()}
    )

    assert result.success
    assert result.data["stars"] == 2
    assert set(result.data["scores"]) == {
        "consistency",
        "reliability",
        "efficiency",
        "honesty",
        "overall",
    }
