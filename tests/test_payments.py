"""Tests for worker payment calculation and payroll actions."""

from datetime import timedelta
from decimal import Decimal

import pytest

from farm_ledger.errors import InsufficientFunds, NothingToPay, NotPayable
from farm_ledger.ledger import BalanceTracker
from farm_ledger.models import ActivityKind, ServiceType
from farm_ledger.payments import (
    SUSPICIOUS_NOTE,
    AnimalDeliveryService,
    DeliveryStatus,
    PaymentBook,
    PayrollService,
    PlantationService,
)
from farm_ledger.storage import PAYMENTS_DOC


@pytest.fixture
def payroll(context):
    return PayrollService(context)


@pytest.fixture
def add(context, make_activity):
    """Append an activity to the context ledger and return it."""

    def _add(kind, **kwargs):
        activity = make_activity(kind, **kwargs)
        assert context.ledger.append(activity)
        return activity

    return _add


class TestPlantation:
    def test_fifty_wheat_pays_seven_fifty(self, context, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)

        summary = PlantationService(context).calculate("maria")

        assert summary.total == Decimal("7.50")
        assert summary.lines[0].unit_price == Decimal("0.15")

    def test_tiers_and_grouping(self, context, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=20)
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=30, minutes=1)
        add(ActivityKind.ITEM_ADD, item="tomato", quantity=10, minutes=2)
        add(ActivityKind.ITEM_ADD, item="wheat_seed", quantity=10, minutes=3)
        add(ActivityKind.ITEM_REMOVE, item="corn", quantity=10, minutes=4)

        summary = PlantationService(context).calculate("maria")

        assert [(line.item, line.quantity) for line in summary.lines] == [
            ("tomato", 10),
            ("wheat", 50),
        ]
        assert summary.total == Decimal("9.50")
        assert len(summary.activity_ids) == 3

    def test_paid_activities_excluded(self, context, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50, paid=True)

        assert PlantationService(context).calculate("maria").total == 0

    def test_only_workers_are_paid(self, context, add):
        add(ActivityKind.ITEM_ADD, actor="carlos", item="wheat", quantity=500)

        assert PlantationService(context).calculate("carlos").lines == []

    def test_price_activity_rejects_non_plants(self, context, add):
        activity = add(ActivityKind.ITEM_ADD, item="hoe", quantity=1)

        with pytest.raises(NotPayable):
            PlantationService(context).price_activity(activity)


class TestAnimalDelivery:
    def test_full_deposit_is_complete(self, context, add):
        add(ActivityKind.DEPOSIT, amount=160)

        summary = AnimalDeliveryService(context).calculate("maria")

        delivery = summary.deliveries[0]
        assert delivery.status == DeliveryStatus.COMPLETE
        assert delivery.payment == Decimal("60.00")
        assert delivery.problem is None

    def test_half_deposit_is_incomplete(self, context, add):
        add(ActivityKind.DEPOSIT, amount=80)

        delivery = AnimalDeliveryService(context).calculate("maria").deliveries[0]

        assert delivery.status == DeliveryStatus.INCOMPLETE
        assert delivery.payment == Decimal("30.00")
        assert delivery.problem == "incomplete delivery: 80.00 of 160.00 expected"

    def test_oversized_deposit_pays_standard(self, context):
        payment, status, _ = AnimalDeliveryService(context).delivery_payment(Decimal("320"))

        assert payment == Decimal("60.00")
        assert status == DeliveryStatus.COMPLETE

    def test_movements_in_window(self, context, add):
        add(ActivityKind.ITEM_REMOVE, item="cow_female", quantity=4, minutes=-60)
        add(ActivityKind.ITEM_REMOVE, item="feed", quantity=8, minutes=-59)
        add(ActivityKind.DEPOSIT, amount=80)

        delivery = AnimalDeliveryService(context).calculate("maria").deliveries[0]

        assert delivery.animals_removed == 4
        assert delivery.feed_removed == 8
        assert len(delivery.related_activity_ids) == 2
        assert delivery.honesty_score == 50

    def test_movement_outside_lookback_is_orphan(self, context, add):
        add(ActivityKind.ITEM_REMOVE, item="cow_female", quantity=4, minutes=-180)
        add(ActivityKind.DEPOSIT, amount=160)

        summary = AnimalDeliveryService(context).calculate("maria")

        assert summary.deliveries[0].animals_removed == 0
        assert summary.deliveries[0].honesty_score == 100
        assert len(summary.suspicious) == 1

    def test_each_movement_counted_once(self, context, add):
        add(ActivityKind.ITEM_REMOVE, item="pig_male", quantity=4, minutes=-30)
        add(ActivityKind.DEPOSIT, amount=160)
        add(ActivityKind.DEPOSIT, amount=80, minutes=5)

        deliveries = AnimalDeliveryService(context).calculate("maria").deliveries

        assert [d.animals_removed for d in deliveries] == [4, 0]
        # The second window starts where the first ended
        assert deliveries[1].window_start == deliveries[0].window_end

    def test_removal_without_deposit_is_suspicious(self, context, add):
        add(ActivityKind.ITEM_REMOVE, item="cow_female", quantity=4)

        summary = AnimalDeliveryService(context).calculate("maria")

        assert summary.deliveries == []
        assert len(summary.suspicious) == 1
        record = summary.suspicious[0]
        assert record.status == DeliveryStatus.SUSPICIOUS
        assert record.honesty_score == 0
        assert record.problem == SUSPICIOUS_NOTE
        assert record.net_animals == 4

    def test_returned_animals_are_not_suspicious(self, context, add):
        add(ActivityKind.ITEM_REMOVE, item="cow_female", quantity=4)
        add(ActivityKind.ITEM_ADD, item="cow_female", quantity=4, minutes=10)

        assert AnimalDeliveryService(context).calculate("maria").suspicious == []

    def test_same_second_deposits_counted_once(self, context, add):
        add(ActivityKind.DEPOSIT, amount=160)
        duplicate = add(ActivityKind.DEPOSIT, amount=80)

        summary = AnimalDeliveryService(context).calculate("maria")

        assert len(summary.deliveries) == 1
        assert summary.deliveries[0].payment == Decimal("60.00")
        assert summary.skipped_ids == [duplicate.id]


class TestStatements:
    def test_net_is_gross_minus_charges(self, payroll, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=2, minutes=1)

        statement = payroll.worker_statement("maria")

        assert statement.gross == Decimal("7.50")
        assert statement.total_charges == Decimal("10.00")
        assert statement.net_payment == Decimal("-2.50")
        assert statement.to_dict()["netPayment"] == -2.5

    def test_lines_cover_both_services(self, payroll, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        add(ActivityKind.DEPOSIT, amount=160, minutes=1)

        earnings = payroll.calculate("maria")
        lines = earnings.lines()

        assert earnings.gross == Decimal("67.50")
        assert [line.service for line in lines] == [
            ServiceType.PLANTATION,
            ServiceType.ANIMAL_DELIVERY,
        ]


class TestPayroll:
    def test_pay_service_marks_paid_and_saves(self, context, payroll, add, store):
        activity = add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)

        record = payroll.pay_service("maria", ServiceType.PLANTATION)

        assert record.amount == Decimal("7.50")
        assert record.activity_ids == [activity.id]
        assert activity.paid
        assert "TOTAL PAID: $7.50" in record.receipt
        assert store.load(PAYMENTS_DOC)["totalPaid"] == 7.5
        with pytest.raises(NothingToPay):
            payroll.pay_service("maria", ServiceType.PLANTATION)

    def test_pay_all_combines_services(self, payroll, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        add(ActivityKind.DEPOSIT, amount=160, minutes=1)

        record = payroll.pay_all("maria")

        assert record.service_type == ServiceType.COMBINED
        assert record.amount == Decimal("67.50")
        assert payroll.calculate("maria").gross == 0

    def test_pay_all_workers_skips_idle(self, payroll, add):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)

        records = payroll.pay_all_workers()

        assert [r.worker_id for r in records] == ["maria"]

    def test_pay_transaction_deposit(self, payroll, add):
        deposit = add(ActivityKind.DEPOSIT, amount=80)

        record = payroll.pay_transaction(deposit.id)

        assert record.amount == Decimal("30.00")
        assert record.service_type == ServiceType.ANIMAL_DELIVERY
        with pytest.raises(NothingToPay):
            payroll.pay_transaction(deposit.id)

    def test_pay_transaction_rejects_manager_activity(self, payroll, add):
        activity = add(ActivityKind.ITEM_ADD, actor="carlos", item="wheat", quantity=50)

        with pytest.raises(NotPayable):
            payroll.pay_transaction(activity.id)

    def test_insufficient_farm_balance(self, context, payroll, add):
        context.balance = BalanceTracker(current=Decimal("5.00"))
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)

        with pytest.raises(InsufficientFunds):
            payroll.pay_all("maria")
        assert payroll.calculate("maria").gross == Decimal("7.50")

    def test_delete_payment_leaves_flags(self, payroll, add):
        """Test that voiding a receipt does not return activities to the unpaid pool."""
        activity = add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        record = payroll.pay_all("maria")

        payroll.delete_payment(record.id)

        assert activity.paid
        assert payroll.payment_history("maria") == []

    def test_delete_payment_can_restore(self, payroll, add):
        activity = add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        record = payroll.pay_all("maria")

        payroll.delete_payment(record.id, restore_activities=True)

        assert not activity.paid

    def test_unpay(self, payroll, add):
        first = add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        second = add(ActivityKind.ITEM_ADD, item="corn", quantity=10, minutes=1)
        payroll.pay_all("maria")

        assert payroll.unpay_transaction(first.id) is True
        assert not first.paid and second.paid
        assert payroll.unpay_all("maria") == 1
        assert not second.paid

    def test_history_newest_first(self, payroll, add, base_time):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        older = payroll.pay_all("maria", now=base_time)
        add(ActivityKind.ITEM_ADD, item="corn", quantity=10, minutes=1)
        newer = payroll.pay_all("maria", now=base_time + timedelta(hours=1))

        assert [p.id for p in payroll.payment_history()] == [newer.id, older.id]

    def test_book_round_trip(self, payroll, add, store):
        add(ActivityKind.ITEM_ADD, item="wheat", quantity=50)
        record = payroll.pay_all("maria")

        book = PaymentBook.from_document(store.load(PAYMENTS_DOC))

        assert book.get(record.id).amount == Decimal("7.5")
        assert book.get(record.id).lines[0].description == "Wheat"
