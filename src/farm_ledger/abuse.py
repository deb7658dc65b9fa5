"""Abuse and theft detection over a worker's inventory activity.

Findings are derived on every query and never stored. Only the charge or
ignore decisions taken on them are persisted.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from statistics import fmean, pstdev
from typing import Any

import structlog

from farm_ledger.context import FarmContext
from farm_ledger.items import ItemKind, ItemNormalizer
from farm_ledger.models import (
    AbuseAction,
    AbuseCategory,
    AbuseDecision,
    AbuseFinding,
    Activity,
    ActivityCategory,
    ActivityKind,
    format_timestamp,
    utc_now,
)
from farm_ledger.rules import money
from farm_ledger.storage import ABUSE_ACTIONS_DOC

logger = structlog.get_logger(__name__)


class ItemClass(str, Enum):
    SERVICE = "service"
    ALLOWANCE = "allowance"
    TOOL = "tool"
    UNKNOWN = "unknown"


_SERVICE_KINDS = frozenset(
    {
        ItemKind.MAIN_CROP,
        ItemKind.SPECIALTY_CROP,
        ItemKind.SEED,
        ItemKind.ANIMAL,
        ItemKind.FEED,
        ItemKind.BOX,
        ItemKind.MATERIAL,
    }
)


@dataclass
class ItemBalance:
    item: str
    item_class: ItemClass
    removed: int = 0
    returned: int = 0

    @property
    def net(self) -> int:
        return self.removed - self.returned


@dataclass
class AbuseReport:
    worker_id: str
    findings: list[AbuseFinding] = field(default_factory=list)
    ignored: list[AbuseFinding] = field(default_factory=list)

    @property
    def total_charge(self) -> Decimal:
        return money(sum((f.charge for f in self.findings), Decimal("0")))

    @property
    def violations(self) -> list[str]:
        return [f.violation for f in self.findings if f.violation]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workerId": self.worker_id,
            "findings": [f.to_dict() for f in self.findings],
            "ignored": [f.to_dict() for f in self.ignored],
            "totalCharge": float(self.total_charge),
            "violations": self.violations,
        }


class AbuseActionBook:
    """Persisted charge/ignore decisions."""

    def __init__(self, actions: Iterable[AbuseAction] = ()):
        self.actions: list[AbuseAction] = list(actions)

    def decision_for(self, finding: AbuseFinding) -> AbuseDecision | None:
        latest: AbuseAction | None = None
        for action in self.actions:
            if not action.applies_to(finding):
                continue
            if latest is None or action.timestamp >= latest.timestamp:
                latest = action
        return latest.decision if latest else None

    def to_document(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> AbuseActionBook:
        if not document:
            return cls()
        return cls(AbuseAction.from_dict(item) for item in document.get("actions") or [])


class AbuseDetector:
    """Computes per-item and worker-level charges for a worker."""

    def __init__(self, context: FarmContext, actions: AbuseActionBook | None = None):
        self._context = context
        if actions is None:
            actions = AbuseActionBook.from_document(context.store.load(ABUSE_ACTIONS_DOC))
        self._actions = actions
        self._logger = logger.bind(component="abuse_detector")

    @property
    def actions(self) -> AbuseActionBook:
        return self._actions

    def classify_item(self, item: str | None) -> ItemClass:
        kind = self._context.normalizer.kind_of(item)
        if kind in _SERVICE_KINDS:
            return ItemClass.SERVICE
        if kind == ItemKind.ALLOWANCE:
            return ItemClass.ALLOWANCE
        if kind == ItemKind.TOOL:
            return ItemClass.TOOL
        return ItemClass.UNKNOWN

    def _worker_activities(self, worker_id: str) -> list[Activity]:
        cutoff = self._context.rules.abuse_ignore_before
        return self._context.ledger.for_actor(
            worker_id, lambda a: cutoff is None or a.timestamp >= cutoff
        )

    def item_balances(self, worker_id: str) -> dict[str, ItemBalance]:
        balances: dict[str, ItemBalance] = {}
        for activity in self._worker_activities(worker_id):
            if activity.category != ActivityCategory.INVENTORY or not activity.item:
                continue
            balance = balances.get(activity.item)
            if balance is None:
                balance = ItemBalance(activity.item, self.classify_item(activity.item))
                balances[activity.item] = balance
            if activity.kind == ActivityKind.ITEM_REMOVE:
                balance.removed += activity.quantity
            else:
                balance.returned += activity.quantity
        return balances

    def findings(self, worker_id: str) -> list[AbuseFinding]:
        """All findings for a worker, before charge/ignore decisions."""
        rules = self._context.rules
        normalizer = self._context.normalizer
        found: list[AbuseFinding] = []
        balances = self.item_balances(worker_id)

        for balance in sorted(balances.values(), key=lambda b: b.item):
            if balance.net <= 0:
                continue
            if balance.item_class == ItemClass.UNKNOWN:
                found.append(
                    AbuseFinding(
                        category=AbuseCategory.SUSPICIOUS_ITEM,
                        worker_id=worker_id,
                        item=balance.item,
                        quantity=balance.net,
                        charge=money(balance.net * rules.suspicious_item_charge),
                    )
                )
            elif balance.item_class == ItemClass.TOOL:
                cost = normalizer.tool_cost(balance.item, rules.default_tool_cost)
                found.append(
                    AbuseFinding(
                        category=AbuseCategory.UNRETURNED_TOOL,
                        worker_id=worker_id,
                        item=balance.item,
                        quantity=balance.net,
                        charge=money(balance.net * cost),
                    )
                )
            elif normalizer.kind_of(balance.item) == ItemKind.FEED:
                excess = balance.net - rules.feed_reasonable_cap
                if excess > 0:
                    found.append(
                        AbuseFinding(
                            category=AbuseCategory.EXCESS_CONSUMPTION,
                            worker_id=worker_id,
                            item=balance.item,
                            quantity=excess,
                            charge=money(excess * rules.excess_feed_charge),
                        )
                    )

        found.extend(self._theft_findings(worker_id, balances))
        return found

    def _theft_findings(
        self, worker_id: str, balances: dict[str, ItemBalance]
    ) -> list[AbuseFinding]:
        rules = self._context.rules
        normalizer = self._context.normalizer
        deliveries = sum(
            1 for a in self._worker_activities(worker_id) if a.kind == ActivityKind.DEPOSIT
        )

        animals = sum(
            b.net for b in balances.values() if normalizer.kind_of(b.item) == ItemKind.ANIMAL
        )
        feed = sum(b.net for b in balances.values() if normalizer.kind_of(b.item) == ItemKind.FEED)

        found = []
        checks = (
            ("animals", animals, rules.animals_per_delivery, rules.stolen_animal_charge),
            ("feed", feed, rules.feed_per_delivery, rules.stolen_feed_charge),
        )
        for label, removed, per_delivery, rate in checks:
            expected = deliveries * per_delivery
            shortfall = removed - expected
            if shortfall <= 0:
                continue
            found.append(
                AbuseFinding(
                    category=AbuseCategory.UNDELIVERED_ANIMAL,
                    worker_id=worker_id,
                    item=label,
                    quantity=shortfall,
                    charge=money(shortfall * rate),
                    violation=(
                        f"{label} removed: {removed}, expected from {deliveries} "
                        f"deliveries: {expected}, undelivered: {shortfall}"
                    ),
                )
            )
        return found

    def report(self, worker_id: str) -> AbuseReport:
        """Findings with recorded decisions applied. Ignored ones carry no charge."""
        report = AbuseReport(worker_id=worker_id)
        for finding in self.findings(worker_id):
            if self._actions.decision_for(finding) == AbuseDecision.IGNORE:
                report.ignored.append(finding)
            else:
                report.findings.append(finding)
        if report.findings:
            self._logger.info(
                "abuse_detected",
                worker_id=worker_id,
                findings=len(report.findings),
                total_charge=str(report.total_charge),
            )
        return report

    def record_action(
        self,
        worker_id: str,
        decision: AbuseDecision,
        category: AbuseCategory,
        item: str | None = None,
        now: datetime | None = None,
    ) -> AbuseAction:
        action = AbuseAction(
            worker_id=worker_id,
            decision=decision,
            category=category,
            item=item,
            timestamp=now or utc_now(),
        )
        self._actions.actions.append(action)
        self._context.store.save(ABUSE_ACTIONS_DOC, self._actions.to_document())
        self._logger.info(
            "abuse_action_recorded",
            worker_id=worker_id,
            decision=decision.value,
            category=category.value,
            item=item,
        )
        return action


# === Per-activity screening ===


@dataclass(frozen=True)
class ScreenThresholds:
    max_per_minute: int = 10
    max_per_hour: int = 200
    max_plants_per_hour: int = 500
    min_between_deliveries: timedelta = timedelta(minutes=5)
    duplicate_window: timedelta = timedelta(seconds=60)
    max_quantity: int = 1000
    suspicious_deposit: Decimal = Decimal("10000")
    future_tolerance: timedelta = timedelta(minutes=5)
    pattern_min_days: int = 7
    pattern_max_deviation: float = 3.0
    flag_below: float = 0.7
    block_below: float = 0.3


@dataclass
class ScreenResult:
    activity_id: str
    confidence: float = 1.0
    flags: list[str] = field(default_factory=list)
    details: list[str] = field(default_factory=list)
    flag_below: float = 1.0

    @property
    def flagged(self) -> bool:
        """Confidence fell below the flag threshold the screen was run with."""
        return self.confidence < self.flag_below


class ActivityScreen:
    """Heuristic anomaly checks on a single activity against its actor's history.

    Each triggered check has a severity; confidence is the product of
    ``1 - severity`` over all checks, so 1.0 is clean and 0.0 is certain fraud.
    """

    def __init__(self, thresholds: ScreenThresholds | None = None):
        self.thresholds = thresholds or ScreenThresholds()

    def screen(
        self,
        activity: Activity,
        history: Iterable[Activity],
        normalizer: ItemNormalizer | None = None,
        now: datetime | None = None,
    ) -> ScreenResult:
        t = self.thresholds
        now = now or utc_now()
        result = ScreenResult(activity_id=activity.id, flag_below=t.flag_below)
        prior = [
            a
            for a in history
            if a.actor == activity.actor
            and a.id != activity.id
            and a.timestamp <= activity.timestamp
        ]

        def hit(flag: str, severity: float, detail: str) -> None:
            result.flags.append(flag)
            result.details.append(detail)
            result.confidence *= 1 - severity

        if activity.timestamp > now + t.future_tolerance:
            hit("future_timestamp", 1.0, "timestamp is in the future")

        last_minute = [a for a in prior if activity.timestamp - a.timestamp <= timedelta(minutes=1)]
        last_hour = [a for a in prior if activity.timestamp - a.timestamp <= timedelta(hours=1)]
        if len(last_minute) + 1 > t.max_per_minute:
            hit("rate_per_minute", 0.6, f"{len(last_minute) + 1} activities in one minute")
        if len(last_hour) + 1 > t.max_per_hour:
            hit("rate_per_hour", 0.4, f"{len(last_hour) + 1} activities in one hour")

        adds_plants = activity.kind == ActivityKind.ITEM_ADD and normalizer is not None
        if adds_plants and normalizer.is_plant(activity.item):
            plants = activity.quantity + sum(
                a.quantity
                for a in last_hour
                if a.kind == ActivityKind.ITEM_ADD and normalizer.is_plant(a.item)
            )
            if plants > t.max_plants_per_hour:
                hit("plant_rate", 0.7, f"{plants} plants added in one hour")

        if activity.kind == ActivityKind.DEPOSIT:
            previous = [a for a in prior if a.kind == ActivityKind.DEPOSIT]
            if previous:
                gap = activity.timestamp - max(a.timestamp for a in previous)
                if gap < t.min_between_deliveries:
                    hit("rapid_delivery", 0.9, f"deliveries {int(gap.total_seconds())}s apart")
            if activity.amount > t.suspicious_deposit:
                hit("large_deposit", 0.8, f"deposit of {activity.amount}")
            if activity.amount != activity.amount.to_integral_value():
                hit("fractional_deposit", 0.4, f"unusual decimal amount {activity.amount}")

        if activity.category == ActivityCategory.INVENTORY and activity.quantity > t.max_quantity:
            hit("large_quantity", 0.7, f"quantity {activity.quantity}")

        for other in prior:
            if (
                activity.timestamp - other.timestamp <= t.duplicate_window
                and other.kind == activity.kind
                and other.item == activity.item
                and other.quantity == activity.quantity
                and other.amount == activity.amount
            ):
                hit("duplicate_submission", 0.8, f"repeats activity {other.id}")
                break

        daily = Counter(a.timestamp.date() for a in prior)
        today = activity.timestamp.date()
        daily[today] += 1
        if len(daily) >= t.pattern_min_days:
            counts = list(daily.values())
            spread = pstdev(counts)
            if spread > 0:
                deviation = abs(daily[today] - fmean(counts)) / spread
                if deviation > t.pattern_max_deviation:
                    hit(
                        "pattern_anomaly",
                        min(0.6, deviation / 10),
                        f"{daily[today]} activities today, {deviation:.1f} deviations from normal",
                    )

        result.confidence = max(0.0, min(1.0, result.confidence))
        return result

    def is_blocked(self, result: ScreenResult) -> bool:
        return result.confidence < self.thresholds.block_below
