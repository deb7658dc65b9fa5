"""Tests for abuse charges and per-activity screening."""

from datetime import timedelta
from decimal import Decimal

import pytest

from farm_ledger.abuse import (
    AbuseActionBook,
    AbuseDetector,
    ActivityScreen,
    ItemClass,
    ScreenThresholds,
)
from farm_ledger.models import AbuseCategory, AbuseDecision, ActivityKind
from farm_ledger.storage import ABUSE_ACTIONS_DOC


@pytest.fixture
def detector(context):
    return AbuseDetector(context)


@pytest.fixture
def add(context, make_activity):
    def _add(kind, **kwargs):
        activity = make_activity(kind, **kwargs)
        assert context.ledger.append(activity)
        return activity

    return _add


def test_item_classes(detector):
    assert detector.classify_item("wheat") == ItemClass.SERVICE
    assert detector.classify_item("rustic_box") == ItemClass.SERVICE
    assert detector.classify_item("water") == ItemClass.ALLOWANCE
    assert detector.classify_item("hoe") == ItemClass.TOOL
    assert detector.classify_item("pedra_misteriosa") == ItemClass.UNKNOWN


class TestCharges:
    def test_unknown_items_flat_rate(self, detector, add):
        add(ActivityKind.ITEM_REMOVE, item="pedra_misteriosa", quantity=3)

        report = detector.report("maria")

        assert report.findings[0].category == AbuseCategory.SUSPICIOUS_ITEM
        assert report.total_charge == Decimal("3.00")

    def test_tool_charge_uses_catalog_cost(self, detector, add):
        add(ActivityKind.ITEM_REMOVE, item="pickaxe", quantity=2)
        add(ActivityKind.ITEM_ADD, item="pickaxe", quantity=1, minutes=5)

        finding = detector.report("maria").findings[0]

        assert finding.category == AbuseCategory.UNRETURNED_TOOL
        assert finding.quantity == 1
        assert finding.charge == Decimal("10.00")

    def test_tool_charge_is_monotonic(self, context, make_activity):
        """Test that more unreturned tools never lower the charge."""
        detector = AbuseDetector(context)
        charges = []
        for minute, quantity in enumerate([1, 1, 3, 2]):
            context.ledger.append(
                make_activity(
                    ActivityKind.ITEM_REMOVE, item="hoe", quantity=quantity, minutes=minute
                )
            )
            charges.append(detector.report("maria").total_charge)

        assert charges == sorted(charges)
        assert charges[-1] == Decimal("35.00")

    def test_allowance_and_service_items_are_free(self, detector, add):
        add(ActivityKind.ITEM_REMOVE, item="water", quantity=20)
        add(ActivityKind.ITEM_REMOVE, item="bread", quantity=5, minutes=1)
        add(ActivityKind.ITEM_REMOVE, item="wheat_seed", quantity=30, minutes=2)

        assert detector.report("maria").findings == []

    def test_excess_feed(self, detector, add):
        add(ActivityKind.ITEM_REMOVE, item="feed", quantity=130)
        for i in range(17):
            add(ActivityKind.DEPOSIT, amount=160, minutes=i + 1)

        findings = detector.report("maria").findings

        assert [f.category for f in findings] == [AbuseCategory.EXCESS_CONSUMPTION]
        assert findings[0].quantity == 30
        assert findings[0].charge == Decimal("15.00")

    def test_undelivered_animals(self, detector, add):
        add(ActivityKind.ITEM_REMOVE, item="cow_female", quantity=6)
        add(ActivityKind.ITEM_REMOVE, item="feed", quantity=10, minutes=1)
        add(ActivityKind.DEPOSIT, amount=160, minutes=30)

        report = detector.report("maria")

        by_item = {f.item: f for f in report.findings}
        assert by_item["animals"].quantity == 2
        assert by_item["animals"].charge == Decimal("80.00")
        assert by_item["feed"].quantity == 2
        assert by_item["feed"].charge == Decimal("2.00")
        assert report.violations[0].startswith("animals removed: 6")
        assert report.total_charge == Decimal("82.00")

    def test_cutoff_excludes_old_activity(self, context, add, base_time):
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=4, minutes=-60)
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=1)
        context.rules = context.rules.with_overrides(abuse_ignore_before=base_time)

        assert AbuseDetector(context).report("maria").total_charge == Decimal("5.00")


class TestActions:
    def test_ignore_decision_removes_charge(self, detector, add, store):
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=1)

        detector.record_action("maria", AbuseDecision.IGNORE, AbuseCategory.UNRETURNED_TOOL, "hoe")
        report = detector.report("maria")

        assert report.total_charge == 0
        assert len(report.ignored) == 1
        assert len(store.load(ABUSE_ACTIONS_DOC)["actions"]) == 1

    def test_latest_decision_wins(self, detector, add, base_time):
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=1)

        detector.record_action(
            "maria", AbuseDecision.IGNORE, AbuseCategory.UNRETURNED_TOOL, now=base_time
        )
        detector.record_action(
            "maria",
            AbuseDecision.CHARGE,
            AbuseCategory.UNRETURNED_TOOL,
            now=base_time + timedelta(minutes=1),
        )

        assert detector.report("maria").total_charge == Decimal("5.00")

    def test_actions_reload(self, context, detector, add, store):
        add(ActivityKind.ITEM_REMOVE, item="hoe", quantity=1)
        detector.record_action("maria", AbuseDecision.IGNORE, AbuseCategory.UNRETURNED_TOOL)

        book = AbuseActionBook.from_document(store.load(ABUSE_ACTIONS_DOC))

        assert AbuseDetector(context, book).report("maria").total_charge == 0


class TestScreen:
    def test_clean_activity(self, make_activity, base_time):
        activity = make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=50)

        result = ActivityScreen().screen(activity, [], now=base_time)

        assert result.confidence == 1.0
        assert not result.flagged

    def test_future_timestamp_blocks(self, make_activity, base_time):
        screen = ActivityScreen()
        activity = make_activity(ActivityKind.DEPOSIT, amount=160, minutes=60)

        result = screen.screen(activity, [], now=base_time)

        assert "future_timestamp" in result.flags
        assert screen.is_blocked(result)

    def test_rapid_delivery_and_duplicate(self, make_activity, base_time):
        first = make_activity(ActivityKind.DEPOSIT, amount=160)
        second = make_activity(ActivityKind.DEPOSIT, amount=160, minutes=0.5)

        result = ActivityScreen().screen(second, [first], now=base_time + timedelta(hours=1))

        assert result.flags == ["rapid_delivery", "duplicate_submission"]
        assert result.confidence == pytest.approx(0.1 * 0.2)

    def test_plant_rate_needs_normalizer(self, make_activity, normalizer, base_time):
        history = [
            make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=300, minutes=i)
            for i in range(2)
        ]
        activity = make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=100, minutes=10)
        later = base_time + timedelta(hours=1)

        without = ActivityScreen().screen(activity, history, now=later)
        with_normalizer = ActivityScreen().screen(activity, history, normalizer, now=later)

        assert "plant_rate" not in without.flags
        assert "plant_rate" in with_normalizer.flags

    def test_fractional_deposit(self, make_activity, base_time):
        activity = make_activity(ActivityKind.DEPOSIT, amount="159.37")

        result = ActivityScreen().screen(activity, [], now=base_time)

        assert result.flags == ["fractional_deposit"]
        assert result.confidence == pytest.approx(0.6)
        assert result.flagged

    def test_flag_threshold_is_configurable(self, make_activity, base_time):
        activity = make_activity(ActivityKind.DEPOSIT, amount="159.37")
        screen = ActivityScreen(ScreenThresholds(flag_below=0.5))

        result = screen.screen(activity, [], now=base_time)

        assert result.flags == ["fractional_deposit"]
        assert not result.flagged

    def test_pattern_anomaly_against_daily_history(self, make_activity, base_time):
        history = [
            make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=10, minutes=-1440 * day)
            for day in range(1, 14)
        ]
        history += [
            make_activity(ActivityKind.ITEM_ADD, item="corn", quantity=i + 1, minutes=10 * i)
            for i in range(19)
        ]
        activity = make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=5, minutes=190)

        result = ActivityScreen().screen(activity, history, now=base_time + timedelta(hours=4))

        assert result.flags == ["pattern_anomaly"]
        assert result.confidence == pytest.approx(0.64, abs=0.01)

    def test_steady_history_is_not_an_anomaly(self, make_activity, base_time):
        history = [
            make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=10, minutes=-1440 * day)
            for day in range(1, 14)
        ]
        activity = make_activity(ActivityKind.ITEM_ADD, item="wheat", quantity=10)

        result = ActivityScreen().screen(activity, history, now=base_time)

        assert result.flags == []
