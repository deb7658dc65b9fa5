"""Manager workload, payroll pool distribution and accountability.

Managers are not paid per activity. Their service since the last payment is
converted into workload points, and the spendable part of the farm balance
is split between them in proportion to those points.

Withdrawals a manager makes (seeds, animals, boxes) open time-boxed
expectations that later plantings or deposits must fulfil. Expired
expectations are kept for audit only and never debit the credit ledger.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Any
from uuid import NAMESPACE_URL, uuid5

import structlog

from farm_ledger.context import FarmContext
from farm_ledger.errors import EntityNotFound, InsufficientFunds, NothingToPay
from farm_ledger.items import ItemKind
from farm_ledger.models import (
    Activity,
    ActivityKind,
    Expectation,
    ExpectationKind,
    ExpectationStatus,
    ManagerPaymentRecord,
    ManagerWorkloadSnapshot,
    Role,
    WorkerProfile,
    WorkloadService,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from farm_ledger.rules import CENT, money
from farm_ledger.storage import EXPECTATIONS_DOC, MANAGER_CREDITS_DOC, MANAGER_PAYMENTS_DOC

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class ManagerShare:
    manager_id: str
    manager_name: str
    snapshot: ManagerWorkloadSnapshot
    share: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "managerId": self.manager_id,
            "managerName": self.manager_name,
            "workload": self.snapshot.to_dict(),
            "share": float(self.share),
            "amount": float(self.amount),
        }


class ManagerPaymentBook:
    def __init__(self, payments: Iterable[ManagerPaymentRecord] = ()):
        self.payments: list[ManagerPaymentRecord] = list(payments)

    def last_payment(self, manager_id: str) -> ManagerPaymentRecord | None:
        mine = [p for p in self.payments if p.manager_id == manager_id]
        return max(mine, key=lambda p: p.timestamp) if mine else None

    def paid_since(self, since: datetime | None) -> Decimal:
        return sum(
            (p.amount for p in self.payments if since is None or p.timestamp > since), ZERO
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "payments": [p.to_dict() for p in self.payments],
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> ManagerPaymentBook:
        if not document:
            return cls()
        return cls(ManagerPaymentRecord.from_dict(p) for p in document.get("payments") or [])


@dataclass
class CreditEntry:
    amount: Decimal
    reason: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": float(self.amount),
            "reason": self.reason,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class CreditAccount:
    balance: Decimal = ZERO
    history: list[CreditEntry] = field(default_factory=list)


class CreditLedger:
    """Per-manager service credit balances with an adjustment history."""

    def __init__(self, accounts: dict[str, CreditAccount] | None = None):
        self.accounts: dict[str, CreditAccount] = accounts or {}

    def balance(self, manager_id: str) -> Decimal:
        account = self.accounts.get(manager_id)
        return account.balance if account else ZERO

    def adjust(
        self, manager_id: str, amount: Decimal, reason: str, now: datetime | None = None
    ) -> Decimal:
        account = self.accounts.setdefault(manager_id, CreditAccount())
        account.balance = money(account.balance + amount)
        account.history.append(CreditEntry(money(amount), reason, now or utc_now()))
        return account.balance

    def to_document(self) -> dict[str, Any]:
        return {
            "credits": {
                manager_id: {
                    "balance": float(account.balance),
                    "history": [entry.to_dict() for entry in account.history],
                }
                for manager_id, account in self.accounts.items()
            },
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> CreditLedger:
        if not document:
            return cls()
        accounts = {}
        for manager_id, raw in (document.get("credits") or {}).items():
            accounts[manager_id] = CreditAccount(
                balance=Decimal(str(raw.get("balance") or 0)),
                history=[
                    CreditEntry(
                        amount=Decimal(str(entry.get("amount") or 0)),
                        reason=str(entry.get("reason") or ""),
                        timestamp=parse_timestamp(entry["timestamp"]),
                    )
                    for entry in raw.get("history") or []
                ],
            )
        return cls(accounts)


class ManagerReconciler:
    """Workload points, pool shares, manager payroll and accountability."""

    def __init__(
        self,
        context: FarmContext,
        book: ManagerPaymentBook | None = None,
        credits: CreditLedger | None = None,
        expectations: list[Expectation] | None = None,
    ):
        self._context = context
        store = context.store
        if book is None:
            book = ManagerPaymentBook.from_document(store.load(MANAGER_PAYMENTS_DOC))
        if credits is None:
            credits = CreditLedger.from_document(store.load(MANAGER_CREDITS_DOC))
        self.book = book
        self.credits = credits
        if expectations is None:
            document = store.load(EXPECTATIONS_DOC) or {}
            expectations = [Expectation.from_dict(e) for e in document.get("expectations") or []]
        self.expectations: list[Expectation] = expectations
        self._logger = logger.bind(component="manager_reconciler")

    # === Workload ===

    def managers(self) -> list[WorkerProfile]:
        return self._context.directory.with_role(Role.MANAGER)

    def _require_manager(self, manager_id: str) -> WorkerProfile:
        profile = self._context.directory.get(manager_id)
        if profile is None or profile.role != Role.MANAGER:
            raise EntityNotFound(f"Unknown manager: {manager_id}", {"manager_id": manager_id})
        return profile

    def deliveries_in(self, amount: Decimal) -> tuple[WorkloadService | None, int]:
        """Classify a deposit as box or animal deliveries by exact multiples."""
        rules = self._context.rules
        if amount <= 0:
            return None, 0
        if amount % rules.box_delivery_value == 0:
            return WorkloadService.BOX_DELIVERY, int(amount / rules.box_delivery_value)
        if amount % rules.animal_delivery_value == 0:
            return WorkloadService.ANIMAL_DELIVERY, int(amount / rules.animal_delivery_value)
        return None, 0

    def workload(self, manager_id: str) -> ManagerWorkloadSnapshot:
        """Points earned strictly after the manager's last payment."""
        rules = self._context.rules
        normalizer = self._context.normalizer
        last = self.book.last_payment(manager_id)
        since = last.timestamp if last else None
        snapshot = ManagerWorkloadSnapshot(manager_id=manager_id, since=since)

        activities = self._context.ledger.for_actor(
            manager_id, lambda a: since is None or a.timestamp > since
        )
        for activity in activities:
            if activity.kind == ActivityKind.ITEM_ADD:
                if normalizer.is_plant(activity.item):
                    service, weight = WorkloadService.PLANTATION, rules.workload_plantation_weight
                else:
                    service, weight = WorkloadService.RESTOCK, rules.workload_restock_weight
                snapshot.points[service] += activity.quantity * weight
                snapshot.counts[service] += activity.quantity
            elif activity.kind == ActivityKind.DEPOSIT:
                service, count = self.deliveries_in(activity.amount)
                if service is None:
                    continue
                weight = (
                    rules.workload_box_weight
                    if service == WorkloadService.BOX_DELIVERY
                    else rules.workload_animal_weight
                )
                snapshot.points[service] += count * weight
                snapshot.counts[service] += count
        return snapshot

    def available_pool(self) -> Decimal:
        """Farm balance above the reserve, less manager pay issued since it was read."""
        balance = self._context.balance
        if not balance.known or balance.current is None:
            return ZERO
        spent = self.book.paid_since(balance.updated_at)
        return money(max(ZERO, balance.current - self._context.rules.manager_reserve - spent))

    def distribution(self) -> list[ManagerShare]:
        """Candidate amounts per active manager. Nothing is paid here."""
        pool = self.available_pool()
        snapshots = [(p, self.workload(p.id)) for p in self.managers()]
        total_points = sum((s.total_points for _, s in snapshots), ZERO)
        shares = []
        for profile, snapshot in snapshots:
            share = snapshot.total_points / total_points if total_points > 0 else ZERO
            amount = (pool * share).quantize(CENT, rounding=ROUND_DOWN)
            shares.append(
                ManagerShare(
                    manager_id=profile.id,
                    manager_name=profile.display_name,
                    snapshot=snapshot,
                    share=share,
                    amount=amount,
                )
            )
        return shares

    # === Payroll ===

    def pay_manager(
        self,
        manager_id: str,
        amount: Decimal | None = None,
        description: str = "",
        now: datetime | None = None,
    ) -> ManagerPaymentRecord:
        """Pay one manager, by default their current candidate share."""
        profile = self._require_manager(manager_id)
        snapshot = self.workload(manager_id)
        if amount is None:
            share = next((s for s in self.distribution() if s.manager_id == manager_id), None)
            amount = share.amount if share else ZERO
        amount = money(amount)
        if amount <= 0:
            raise NothingToPay(
                f"Nothing to pay for manager {manager_id}", {"manager_id": manager_id}
            )

        pool = self.available_pool()
        if amount > pool:
            raise InsufficientFunds(
                f"Manager payment of {amount} exceeds available pool {pool}",
                {"manager_id": manager_id, "amount": str(amount), "pool": str(pool)},
            )
        return self._record_payment(profile, amount, snapshot, description, now)

    def pay_all_managers(self, now: datetime | None = None) -> list[ManagerPaymentRecord]:
        shares = [s for s in self.distribution() if s.amount > 0]
        requested = sum((s.amount for s in shares), ZERO)
        pool = self.available_pool()
        if requested > pool:
            raise InsufficientFunds(
                f"Manager payroll of {requested} exceeds available pool {pool}",
                {"amount": str(requested), "pool": str(pool)},
            )
        timestamp = now or utc_now()
        records = []
        for share in shares:
            profile = self._require_manager(share.manager_id)
            records.append(
                self._record_payment(
                    profile, share.amount, share.snapshot, "Workload share", timestamp
                )
            )
        return records

    def _record_payment(
        self,
        profile: WorkerProfile,
        amount: Decimal,
        snapshot: ManagerWorkloadSnapshot,
        description: str,
        now: datetime | None,
    ) -> ManagerPaymentRecord:
        record = ManagerPaymentRecord(
            manager_id=profile.id,
            manager_name=profile.display_name,
            amount=amount,
            description=description,
            points=snapshot.total_points,
            timestamp=now or utc_now(),
        )
        self.book.payments.append(record)
        self._context.store.save(MANAGER_PAYMENTS_DOC, self.book.to_document())
        self._logger.info(
            "manager_paid",
            manager_id=profile.id,
            amount=str(amount),
            points=str(snapshot.total_points),
            payment_id=record.id,
        )
        return record

    # === Credits ===

    def adjust_credit(
        self, manager_id: str, amount: Decimal, reason: str, now: datetime | None = None
    ) -> Decimal:
        self._require_manager(manager_id)
        balance = self.credits.adjust(manager_id, amount, reason, now)
        self._context.store.save(MANAGER_CREDITS_DOC, self.credits.to_document())
        self._logger.info(
            "manager_credit_adjusted",
            manager_id=manager_id,
            amount=str(amount),
            balance=str(balance),
            reason=reason,
        )
        return balance

    def reset_negative_balances(self, now: datetime | None = None) -> dict[str, Decimal]:
        """Bring negative credit balances back to zero.

        Compensates for balances driven negative by the retired expectation
        penalty. Each reset is written to the account history and logged.
        Returns the previous balance of every account that was reset.
        """
        reset: dict[str, Decimal] = {}
        for manager_id, account in self.credits.accounts.items():
            if account.balance >= 0:
                continue
            previous = account.balance
            self.credits.adjust(manager_id, -previous, "reset_negative_balance", now)
            reset[manager_id] = previous
            self._logger.warning(
                "negative_balance_reset", manager_id=manager_id, previous=str(previous)
            )
        if reset:
            self._context.store.save(MANAGER_CREDITS_DOC, self.credits.to_document())
        return reset

    # === Expectations ===

    def _expectation_for(self, activity: Activity) -> Expectation | None:
        rules = self._context.rules
        kind_of = self._context.normalizer.kind_of(activity.item)
        if kind_of == ItemKind.SEED:
            kind = ExpectationKind.SEED_RETURN
            expected = Decimal(activity.quantity * rules.plants_per_seed)
            window = rules.seed_return_window
        elif kind_of == ItemKind.ANIMAL:
            kind = ExpectationKind.ANIMAL_DELIVERY
            deliveries = Decimal(activity.quantity) / rules.animals_per_delivery
            expected = money(deliveries * rules.animal_delivery_value)
            window = rules.animal_return_window
        elif kind_of == ItemKind.BOX:
            kind = ExpectationKind.BOX_DELIVERY
            deliveries = Decimal(activity.quantity) / rules.boxes_per_delivery
            expected = money(deliveries * rules.box_delivery_value)
            window = rules.box_return_window
        else:
            return None
        return Expectation(
            id=str(uuid5(NAMESPACE_URL, f"farm-ledger/expectation/{activity.id}")),
            manager_id=activity.actor,
            kind=kind,
            source_activity_id=activity.id,
            expected=expected,
            created_at=activity.timestamp,
            deadline=activity.timestamp + window,
        )

    def sync_expectations(self, now: datetime | None = None) -> list[Expectation]:
        """Open expectations for new manager withdrawals and reconcile all of them.

        Fulfilment is recomputed from the ledger on every call, so repeated
        syncs give the same result. Returns the expectations that expired
        during this call.
        """
        now = now or utc_now()
        known = {e.id: e for e in self.expectations}
        previous_status = {e.id: e.status for e in self.expectations}

        for profile in self.managers():
            removals = self._context.ledger.history_of(
                profile.id, lambda a: a.kind == ActivityKind.ITEM_REMOVE
            )
            for activity in removals:
                expectation = self._expectation_for(activity)
                if expectation is not None and expectation.id not in known:
                    known[expectation.id] = expectation
                    self.expectations.append(expectation)
                    self._logger.info(
                        "expectation_opened",
                        manager_id=profile.id,
                        kind=expectation.kind.value,
                        expected=str(expectation.expected),
                        deadline=format_timestamp(expectation.deadline),
                    )

        self._reconcile(now)

        expired = [
            e
            for e in self.expectations
            if e.status == ExpectationStatus.EXPIRED
            and previous_status.get(e.id) != ExpectationStatus.EXPIRED
        ]
        for expectation in expired:
            # Penalty accrual is disabled: expiry is audit-only
            self._logger.warning(
                "expectation_expired",
                manager_id=expectation.manager_id,
                kind=expectation.kind.value,
                outstanding=str(expectation.outstanding),
                penalty_applied=False,
            )
        self._save_expectations()
        return expired

    def _reconcile(self, now: datetime) -> None:
        normalizer = self._context.normalizer
        by_manager: dict[str, list[Expectation]] = {}
        for expectation in self.expectations:
            expectation.fulfilled = ZERO
            expectation.feed_units = 0
            by_manager.setdefault(expectation.manager_id, []).append(expectation)

        for manager_id, expectations in by_manager.items():
            expectations.sort(key=lambda e: e.created_at)
            activities = self._context.ledger.history_of(manager_id)
            for activity in activities:
                if (
                    activity.kind == ActivityKind.ITEM_REMOVE
                    and normalizer.kind_of(activity.item) == ItemKind.FEED
                ):
                    self._attach_feed(expectations, activity)
                    continue
                if activity.kind == ActivityKind.ITEM_ADD and normalizer.is_plant(activity.item):
                    kind, amount = ExpectationKind.SEED_RETURN, Decimal(activity.quantity)
                elif activity.kind == ActivityKind.DEPOSIT:
                    service, _ = self.deliveries_in(activity.amount)
                    kind = (
                        ExpectationKind.BOX_DELIVERY
                        if service == WorkloadService.BOX_DELIVERY
                        else ExpectationKind.ANIMAL_DELIVERY
                    )
                    amount = activity.amount
                else:
                    continue
                for expectation in expectations:
                    if amount <= 0:
                        break
                    if expectation.kind != kind:
                        continue
                    if not (expectation.created_at <= activity.timestamp <= expectation.deadline):
                        continue
                    applied = min(amount, expectation.outstanding)
                    expectation.fulfilled += applied
                    amount -= applied

            for expectation in expectations:
                if expectation.outstanding == 0:
                    expectation.status = ExpectationStatus.FULFILLED
                elif now > expectation.deadline:
                    expectation.status = ExpectationStatus.EXPIRED
                else:
                    expectation.status = ExpectationStatus.PENDING

    def _save_expectations(self) -> None:
        self._context.store.save(
            EXPECTATIONS_DOC,
            {
                "expectations": [e.to_dict() for e in self.expectations],
                "lastUpdated": format_timestamp(utc_now()),
            },
        )

    def expectations_for(
        self, manager_id: str, status: ExpectationStatus | None = None
    ) -> list[Expectation]:
        return [
            e
            for e in self.expectations
            if e.manager_id == manager_id and (status is None or e.status == status)
        ]

    @staticmethod
    def _attach_feed(expectations: list[Expectation], activity: Activity) -> None:
        """Credit withdrawn feed to the newest open animal delivery it falls into."""
        candidates = [
            e
            for e in expectations
            if e.kind == ExpectationKind.ANIMAL_DELIVERY
            and e.created_at <= activity.timestamp <= e.deadline
        ]
        if candidates:
            max(candidates, key=lambda e: e.created_at).feed_units += activity.quantity
