"""Worker payment calculation and payroll actions.

Two independent services price a worker's unpaid activities:

* plantation: plants returned to the farm storage, priced per unit by crop tier
* animal delivery: cash deposits from selling animals, paid in proportion to a
  full standard delivery

Only profiles with the ``worker`` role are paid by these services.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from farm_ledger.abuse import AbuseDetector, AbuseReport
from farm_ledger.context import FarmContext
from farm_ledger.errors import EntityNotFound, InsufficientFunds, NothingToPay, NotPayable
from farm_ledger.items import ItemKind
from farm_ledger.models import (
    Activity,
    ActivityKind,
    PaymentLine,
    PaymentRecord,
    Role,
    ServiceType,
    format_timestamp,
    utc_now,
)
from farm_ledger.receipts import render_receipt
from farm_ledger.rules import money
from farm_ledger.storage import PAYMENTS_DOC

if TYPE_CHECKING:
    from farm_ledger.evaluation import WorkerEvaluator

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
SUSPICIOUS_NOTE = "suspicious: delivery without withdrawal/deposit"


# === Plantation ===


@dataclass(frozen=True)
class PlantationLine:
    item: str
    tier: ItemKind
    quantity: int
    unit_price: Decimal
    amount: Decimal
    activity_ids: tuple[str, ...]


@dataclass
class PlantationSummary:
    worker_id: str
    lines: list[PlantationLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return money(sum((line.amount for line in self.lines), ZERO))

    @property
    def activity_ids(self) -> list[str]:
        return [activity_id for line in self.lines for activity_id in line.activity_ids]


class PlantationService:
    def __init__(self, context: FarmContext):
        self._context = context

    def unit_price(self, item: str | None) -> Decimal | None:
        """Tier price for a plant, or None when the item is not a plant."""
        kind = self._context.normalizer.kind_of(item)
        if kind == ItemKind.MAIN_CROP:
            return self._context.rules.main_crop_price
        if kind == ItemKind.SPECIALTY_CROP:
            return self._context.rules.specialty_crop_price
        return None

    def eligible(self, worker_id: str) -> list[Activity]:
        if self._context.directory.role_of(worker_id) != Role.WORKER:
            return []
        return self._context.ledger.for_actor(
            worker_id,
            lambda a: (
                a.kind == ActivityKind.ITEM_ADD
                and not a.paid
                and self.unit_price(a.item) is not None
            ),
        )

    def calculate(self, worker_id: str) -> PlantationSummary:
        grouped: dict[str, list[Activity]] = {}
        for activity in self.eligible(worker_id):
            grouped.setdefault(activity.item or "", []).append(activity)

        summary = PlantationSummary(worker_id=worker_id)
        for item in sorted(grouped):
            activities = grouped[item]
            price = self.unit_price(item) or ZERO
            quantity = sum(a.quantity for a in activities)
            summary.lines.append(
                PlantationLine(
                    item=item,
                    tier=self._context.normalizer.kind_of(item),
                    quantity=quantity,
                    unit_price=price,
                    amount=money(quantity * price),
                    activity_ids=tuple(a.id for a in activities),
                )
            )
        return summary

    def price_activity(self, activity: Activity) -> Decimal:
        price = self.unit_price(activity.item)
        if activity.kind != ActivityKind.ITEM_ADD or price is None:
            raise NotPayable(
                "Activity is not a plantation return", {"activity_id": activity.id}
            )
        return money(activity.quantity * price)


# === Animal delivery ===


class DeliveryStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    SUSPICIOUS = "suspicious"


@dataclass
class DeliveryRecord:
    """One settled (or suspicious) animal-selling cycle."""

    worker_id: str
    timestamp: datetime
    status: DeliveryStatus
    deposit: Decimal = ZERO
    payment: Decimal = ZERO
    activity_id: str | None = None
    problem: str | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    animals_removed: int = 0
    animals_returned: int = 0
    feed_removed: int = 0
    feed_returned: int = 0
    related_activity_ids: list[str] = field(default_factory=list)
    honesty_score: int = 100
    paid: bool = False

    @property
    def net_animals(self) -> int:
        return self.animals_removed - self.animals_returned

    @property
    def net_feed(self) -> int:
        return self.feed_removed - self.feed_returned

    def to_dict(self) -> dict[str, Any]:
        return {
            "workerId": self.worker_id,
            "activityId": self.activity_id,
            "timestamp": format_timestamp(self.timestamp),
            "status": self.status.value,
            "deposit": float(self.deposit),
            "payment": float(self.payment),
            "problem": self.problem,
            "windowStart": format_timestamp(self.window_start),
            "windowEnd": format_timestamp(self.window_end),
            "animalsRemoved": self.animals_removed,
            "animalsReturned": self.animals_returned,
            "feedRemoved": self.feed_removed,
            "feedReturned": self.feed_returned,
            "netAnimals": self.net_animals,
            "netFeed": self.net_feed,
            "relatedActivityIds": list(self.related_activity_ids),
            "honestyScore": self.honesty_score,
            "paid": self.paid,
        }


@dataclass
class AnimalDeliverySummary:
    worker_id: str
    deliveries: list[DeliveryRecord] = field(default_factory=list)
    suspicious: list[DeliveryRecord] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)

    @property
    def unpaid(self) -> list[DeliveryRecord]:
        return [d for d in self.deliveries if not d.paid]

    @property
    def total(self) -> Decimal:
        return money(sum((d.payment for d in self.unpaid), ZERO))

    @property
    def activity_ids(self) -> list[str]:
        return [d.activity_id for d in self.unpaid if d.activity_id]


class AnimalDeliveryService:
    def __init__(self, context: FarmContext):
        self._context = context
        self._logger = logger.bind(component="animal_delivery")

    def delivery_payment(self, deposit: Decimal) -> tuple[Decimal, DeliveryStatus, str | None]:
        rules = self._context.rules
        expected = rules.animal_delivery_value
        if deposit >= expected:
            return money(rules.animal_delivery_payment), DeliveryStatus.COMPLETE, None
        payment = money(min(deposit, expected) / expected * rules.animal_delivery_payment)
        problem = f"incomplete delivery: {money(deposit)} of {money(expected)} expected"
        return payment, DeliveryStatus.INCOMPLETE, problem

    def _honesty(self, record: DeliveryRecord) -> int:
        rules = self._context.rules
        removed_fraction = max(
            Decimal(max(record.net_animals, 0)) / rules.animals_per_delivery,
            Decimal(max(record.net_feed, 0)) / rules.feed_per_delivery,
        )
        if removed_fraction == 0:
            return 100
        delivered_fraction = record.deposit / rules.animal_delivery_value
        score = min(Decimal("1"), delivered_fraction / removed_fraction) * 100
        return int(score.to_integral_value())

    def calculate(self, worker_id: str) -> AnimalDeliverySummary:
        summary = AnimalDeliverySummary(worker_id=worker_id)
        if self._context.directory.role_of(worker_id) != Role.WORKER:
            return summary

        rules = self._context.rules
        normalizer = self._context.normalizer
        history = self._context.ledger.history_of(worker_id)

        deposits: list[Activity] = []
        seen_seconds: set[datetime] = set()
        for activity in history:
            if activity.kind != ActivityKind.DEPOSIT:
                continue
            second = activity.timestamp.replace(microsecond=0)
            if second in seen_seconds:
                summary.skipped_ids.append(activity.id)
                continue
            seen_seconds.add(second)
            deposits.append(activity)

        movements = [
            a
            for a in history
            if a.kind in (ActivityKind.ITEM_ADD, ActivityKind.ITEM_REMOVE)
            and normalizer.kind_of(a.item) in (ItemKind.ANIMAL, ItemKind.FEED)
        ]
        assigned: set[str] = set()
        previous_end: datetime | None = None

        for deposit in deposits:
            start = previous_end
            if start is None:
                start = deposit.timestamp - rules.delivery_lookback
            end = deposit.timestamp + rules.delivery_lookahead
            payment, status, problem = self.delivery_payment(deposit.amount)
            record = DeliveryRecord(
                worker_id=worker_id,
                activity_id=deposit.id,
                timestamp=deposit.timestamp,
                status=status,
                deposit=deposit.amount,
                payment=payment,
                problem=problem,
                window_start=start,
                window_end=end,
                paid=deposit.paid,
            )
            for movement in movements:
                if movement.id in assigned or not (start <= movement.timestamp <= end):
                    continue
                if previous_end is not None and movement.timestamp == start:
                    continue
                assigned.add(movement.id)
                self._tally(record, movement)
            record.honesty_score = self._honesty(record)
            summary.deliveries.append(record)
            previous_end = end

        orphans = [
            m
            for m in movements
            if m.id not in assigned and normalizer.kind_of(m.item) == ItemKind.ANIMAL
        ]
        summary.suspicious = self._suspicious_clusters(worker_id, orphans)
        if summary.suspicious:
            self._logger.warning(
                "suspicious_animal_removals", worker_id=worker_id, count=len(summary.suspicious)
            )
        return summary

    def _tally(self, record: DeliveryRecord, movement: Activity) -> None:
        is_animal = self._context.normalizer.kind_of(movement.item) == ItemKind.ANIMAL
        removed = movement.kind == ActivityKind.ITEM_REMOVE
        if is_animal and removed:
            record.animals_removed += movement.quantity
        elif is_animal:
            record.animals_returned += movement.quantity
        elif removed:
            record.feed_removed += movement.quantity
        else:
            record.feed_returned += movement.quantity
        record.related_activity_ids.append(movement.id)

    def _suspicious_clusters(
        self, worker_id: str, orphans: list[Activity]
    ) -> list[DeliveryRecord]:
        """Group animal movements no delivery covers; flag those with net removals."""
        lookback = self._context.rules.delivery_lookback
        clusters: list[list[Activity]] = []
        for movement in orphans:
            if clusters and movement.timestamp - clusters[-1][-1].timestamp <= lookback:
                clusters[-1].append(movement)
            else:
                clusters.append([movement])

        records = []
        for cluster in clusters:
            record = DeliveryRecord(
                worker_id=worker_id,
                timestamp=cluster[-1].timestamp,
                status=DeliveryStatus.SUSPICIOUS,
                problem=SUSPICIOUS_NOTE,
                window_start=cluster[0].timestamp,
                window_end=cluster[-1].timestamp,
                honesty_score=0,
            )
            for movement in cluster:
                self._tally(record, movement)
            if record.net_animals > 0:
                records.append(record)
        return records


# === Payroll ===


@dataclass
class WorkerEarnings:
    worker_id: str
    plantation: PlantationSummary
    animal_delivery: AnimalDeliverySummary

    @property
    def gross(self) -> Decimal:
        return money(self.plantation.total + self.animal_delivery.total)

    def lines(self, display_name: Callable[[str], str] | None = None) -> list[PaymentLine]:
        lines = []
        for line in self.plantation.lines:
            lines.append(
                PaymentLine(
                    service=ServiceType.PLANTATION,
                    description=display_name(line.item) if display_name else line.item,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    amount=line.amount,
                )
            )
        for delivery in self.animal_delivery.unpaid:
            lines.append(
                PaymentLine(
                    service=ServiceType.ANIMAL_DELIVERY,
                    description=f"Delivery {delivery.timestamp.strftime('%d/%m %H:%M')}",
                    quantity=1,
                    unit_price=delivery.payment,
                    amount=delivery.payment,
                )
            )
        return lines


@dataclass
class WorkerStatement:
    worker_id: str
    earnings: WorkerEarnings
    abuse: AbuseReport

    @property
    def gross(self) -> Decimal:
        return self.earnings.gross

    @property
    def total_charges(self) -> Decimal:
        return self.abuse.total_charge

    @property
    def net_payment(self) -> Decimal:
        # Negative net is reported as-is
        return self.gross - self.total_charges

    def to_dict(self) -> dict[str, Any]:
        return {
            "workerId": self.worker_id,
            "gross": float(self.gross),
            "plantation": float(self.earnings.plantation.total),
            "animalDelivery": float(self.earnings.animal_delivery.total),
            "totalCharges": float(self.total_charges),
            "netPayment": float(self.net_payment),
            "abuse": self.abuse.to_dict(),
            "deliveries": [d.to_dict() for d in self.earnings.animal_delivery.deliveries],
            "suspicious": [d.to_dict() for d in self.earnings.animal_delivery.suspicious],
        }


class PaymentBook:
    """The payments document: every receipt issued, newest last."""

    def __init__(self, payments: Iterable[PaymentRecord] = ()):
        self.payments: list[PaymentRecord] = list(payments)

    @property
    def total_paid(self) -> Decimal:
        return money(sum((p.amount for p in self.payments), ZERO))

    def get(self, payment_id: str) -> PaymentRecord:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        raise EntityNotFound(f"Unknown payment: {payment_id}", {"payment_id": payment_id})

    def to_document(self) -> dict[str, Any]:
        return {
            "payments": [p.to_dict() for p in self.payments],
            "totalPaid": float(self.total_paid),
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> PaymentBook:
        if not document:
            return cls()
        return cls(PaymentRecord.from_dict(p) for p in document.get("payments") or [])


class PayrollService:
    """Payroll actions over the ledger.

    Each action marks activities paid and saves the ledger first, then
    appends the PaymentRecord and saves the payments document. A failed
    second write surfaces as PersistenceFailure with the two out of step.
    With an evaluator, each payment rates the worker and prints the rating
    on the receipt; the amount paid is unaffected.
    """

    def __init__(
        self,
        context: FarmContext,
        abuse: AbuseDetector | None = None,
        book: PaymentBook | None = None,
        evaluator: WorkerEvaluator | None = None,
    ):
        self._context = context
        self.evaluator = evaluator
        self.plantation = PlantationService(context)
        self.animal_delivery = AnimalDeliveryService(context)
        self.abuse = abuse if abuse is not None else AbuseDetector(context)
        if book is None:
            book = PaymentBook.from_document(context.store.load(PAYMENTS_DOC))
        self.book = book
        self._logger = logger.bind(component="payroll")

    # === Queries ===

    def calculate(self, worker_id: str) -> WorkerEarnings:
        self._context.directory.require(worker_id)
        return WorkerEarnings(
            worker_id=worker_id,
            plantation=self.plantation.calculate(worker_id),
            animal_delivery=self.animal_delivery.calculate(worker_id),
        )

    def worker_statement(self, worker_id: str) -> WorkerStatement:
        return WorkerStatement(
            worker_id=worker_id,
            earnings=self.calculate(worker_id),
            abuse=self.abuse.report(worker_id),
        )

    def payment_history(self, worker_id: str | None = None) -> list[PaymentRecord]:
        payments = [p for p in self.book.payments if worker_id is None or p.worker_id == worker_id]
        return sorted(payments, key=lambda p: p.timestamp, reverse=True)

    # === Actions ===

    def pay_all(self, worker_id: str, now: datetime | None = None) -> PaymentRecord:
        """Pay both services in one combined record."""
        earnings = self.calculate(worker_id)
        activity_ids = earnings.plantation.activity_ids + earnings.animal_delivery.activity_ids
        return self._settle(
            worker_id,
            ServiceType.COMBINED,
            earnings.gross,
            activity_ids,
            earnings.lines(self._context.normalizer.display_name),
            now,
        )

    def pay_all_workers(self, now: datetime | None = None) -> list[PaymentRecord]:
        records = []
        for profile in self._context.directory.with_role(Role.WORKER):
            earnings = self.calculate(profile.id)
            if earnings.gross <= 0:
                continue
            records.append(self.pay_all(profile.id, now=now))
        return records

    def pay_service(
        self, worker_id: str, service: ServiceType, now: datetime | None = None
    ) -> PaymentRecord:
        earnings = self.calculate(worker_id)
        lines = [
            line
            for line in earnings.lines(self._context.normalizer.display_name)
            if line.service == service
        ]
        if service == ServiceType.PLANTATION:
            amount, ids = earnings.plantation.total, earnings.plantation.activity_ids
        elif service == ServiceType.ANIMAL_DELIVERY:
            amount, ids = earnings.animal_delivery.total, earnings.animal_delivery.activity_ids
        else:
            return self.pay_all(worker_id, now=now)
        return self._settle(worker_id, service, amount, ids, lines, now)

    def pay_transaction(self, activity_id: str, now: datetime | None = None) -> PaymentRecord:
        activity = self._context.ledger.require(activity_id)
        worker_id = activity.actor
        if self._context.directory.role_of(worker_id) != Role.WORKER:
            raise NotPayable(
                "Activity actor is not a registered worker",
                {"activity_id": activity_id, "actor": worker_id},
            )
        if activity.paid:
            raise NothingToPay("Activity already paid", {"activity_id": activity_id})

        if activity.kind == ActivityKind.DEPOSIT:
            summary = self.animal_delivery.calculate(worker_id)
            delivery = next((d for d in summary.deliveries if d.activity_id == activity_id), None)
            if delivery is None:
                raise NotPayable(
                    "Deposit is a duplicate of another at the same second",
                    {"activity_id": activity_id},
                )
            service, amount = ServiceType.ANIMAL_DELIVERY, delivery.payment
            description = f"Delivery {delivery.timestamp.strftime('%d/%m %H:%M')}"
            quantity = 1
            unit_price = amount
        else:
            service, amount = ServiceType.PLANTATION, self.plantation.price_activity(activity)
            description = self._context.normalizer.display_name(activity.item or "")
            quantity = activity.quantity
            unit_price = self.plantation.unit_price(activity.item) or ZERO

        line = PaymentLine(
            service=service,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
        )
        return self._settle(worker_id, service, amount, [activity_id], [line], now)

    def unpay_transaction(self, activity_id: str) -> bool:
        """Clear the paid flag on one activity. Receipts are left untouched."""
        self._context.ledger.require(activity_id)
        changed = self._context.ledger.mark_unpaid([activity_id])
        if changed:
            self._context.save_ledger()
        return bool(changed)

    def unpay_all(self, worker_id: str) -> int:
        paid = self._context.ledger.for_actor(worker_id, lambda a: a.paid)
        changed = self._context.ledger.mark_unpaid(a.id for a in paid)
        if changed:
            self._context.save_ledger()
            self._logger.info("worker_unpaid", worker_id=worker_id, count=changed)
        return changed

    def delete_payment(self, payment_id: str, restore_activities: bool = False) -> PaymentRecord:
        """Void a receipt.

        The referenced activities stay paid unless ``restore_activities`` is
        set, in which case they are returned to the unpaid pool.
        """
        payment = self.book.get(payment_id)
        self.book.payments.remove(payment)
        if restore_activities:
            self._context.ledger.mark_unpaid(payment.activity_ids)
            self._context.save_ledger()
        self._context.store.save(PAYMENTS_DOC, self.book.to_document())
        self._logger.info(
            "payment_deleted",
            payment_id=payment_id,
            worker_id=payment.worker_id,
            amount=str(payment.amount),
            restored=restore_activities,
        )
        return payment

    def _settle(
        self,
        worker_id: str,
        service: ServiceType,
        amount: Decimal,
        activity_ids: list[str],
        lines: list[PaymentLine],
        now: datetime | None,
    ) -> PaymentRecord:
        if not activity_ids or amount <= 0:
            raise NothingToPay(
                f"Nothing to pay for {worker_id}",
                {"worker_id": worker_id, "service": service.value},
            )
        balance = self._context.balance
        if balance.known and balance.current is not None and amount > balance.current:
            raise InsufficientFunds(
                f"Payment of {amount} exceeds farm balance {balance.current}",
                {"worker_id": worker_id, "amount": str(amount), "balance": str(balance.current)},
            )

        profile = self._context.directory.require(worker_id)
        timestamp = now or utc_now()
        rating = self.evaluator.evaluate(worker_id, now=timestamp) if self.evaluator else None
        record = PaymentRecord(
            worker_id=worker_id,
            worker_name=profile.display_name,
            service_type=service,
            amount=money(amount),
            activity_ids=list(activity_ids),
            lines=lines,
            timestamp=timestamp,
        )
        record.receipt = render_receipt(
            receipt_id=record.id,
            worker_id=worker_id,
            worker_name=profile.display_name,
            service_type=service,
            lines=lines,
            total=record.amount,
            timestamp=timestamp,
            rating=rating,
        )

        self._context.ledger.mark_paid(activity_ids, now=timestamp)
        self._context.save_ledger()
        self.book.payments.append(record)
        self._context.store.save(PAYMENTS_DOC, self.book.to_document())

        self._logger.info(
            "payroll_paid",
            worker_id=worker_id,
            service=service.value,
            amount=str(record.amount),
            activities=len(activity_ids),
            payment_id=record.id,
        )
        return record
