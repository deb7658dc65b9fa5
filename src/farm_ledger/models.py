"""Data model for the farm activity ledger.

Everything that is persisted serializes to camelCase JSON so the documents
stay field-compatible with the chat bot and dashboard that share them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string, epoch number or datetime into an aware datetime.

    Epoch values above 10^12 are treated as milliseconds. Naive values are
    assumed to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1_000_000_000_000 else value
        parsed = datetime.fromtimestamp(seconds, tz=UTC)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _number(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


# === Raw input ===


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str


@dataclass(frozen=True)
class RawLogRecord:
    """A chat-log message as exported by the gateway."""

    id: str
    author: str
    content: str
    timestamp: datetime
    embed_title: str | None = None
    embed_fields: tuple[EmbedField, ...] = ()
    author_is_bot: bool = False

    @property
    def has_embed(self) -> bool:
        return bool(self.embed_title or self.embed_fields)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawLogRecord:
        """Build a record from the chat export shape.

        Accepts ``embeds`` or ``raw_embeds``; the first embed carrying a title
        or fields is used. ``author`` may be a plain string or an object with
        ``username``/``globalName``/``bot`` keys.
        """
        author = data.get("author") or ""
        author_is_bot = bool(data.get("authorIsBot", False))
        if isinstance(author, dict):
            author_is_bot = bool(author.get("bot", author_is_bot))
            author = author.get("globalName") or author.get("username") or ""

        embed_title = None
        embed_fields: tuple[EmbedField, ...] = ()
        embeds = data.get("embeds") or data.get("raw_embeds") or []
        for embed in embeds:
            if not isinstance(embed, dict):
                continue
            fields = embed.get("fields") or []
            if embed.get("title") or fields:
                embed_title = embed.get("title")
                embed_fields = tuple(
                    EmbedField(name=str(f.get("name", "")), value=str(f.get("value", "")))
                    for f in fields
                    if isinstance(f, dict)
                )
                break

        return cls(
            id=str(data["id"]),
            author=str(author),
            content=str(data.get("content") or ""),
            timestamp=parse_timestamp(data["timestamp"]),
            embed_title=embed_title,
            embed_fields=embed_fields,
            author_is_bot=author_is_bot,
        )


# === Activities ===


class ActivityCategory(str, Enum):
    INVENTORY = "inventory"
    FINANCIAL = "financial"


class ActivityKind(str, Enum):
    """The four recognized actions in the farm log."""

    ITEM_ADD = "item_add"
    ITEM_REMOVE = "item_remove"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

    @property
    def category(self) -> ActivityCategory:
        if self in (ActivityKind.ITEM_ADD, ActivityKind.ITEM_REMOVE):
            return ActivityCategory.INVENTORY
        return ActivityCategory.FINANCIAL


@dataclass
class Activity:
    """One canonical fact extracted from a log record."""

    id: str
    kind: ActivityKind
    actor: str
    timestamp: datetime
    item: str | None = None
    quantity: int | None = None
    amount: Decimal | None = None
    balance_after: Decimal | None = None
    actor_name: str = ""
    account_id: str | None = None
    source_id: str | None = None
    paid: bool = False
    paid_at: datetime | None = None

    def __post_init__(self) -> None:
        # Inventory facts carry a quantity, financial facts an amount; never both
        if self.category == ActivityCategory.INVENTORY:
            self.quantity = self.quantity or 0
            self.amount = None
        else:
            self.quantity = None
            self.amount = self.amount if self.amount is not None else Decimal("0")

    @property
    def category(self) -> ActivityCategory:
        return self.kind.category

    @property
    def identity_key(self) -> tuple[Any, ...]:
        """Fields that make two activities the same event."""
        return (
            self.kind.value,
            self.item,
            self.quantity,
            self.amount,
            self.actor,
            self.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "category": self.category.value,
            "actor": self.actor,
            "actorName": self.actor_name,
            "accountId": self.account_id,
            "item": self.item,
            "quantity": self.quantity,
            "amount": _number(self.amount),
            "balanceAfter": _number(self.balance_after),
            "timestamp": format_timestamp(self.timestamp),
            "sourceId": self.source_id,
            "paid": self.paid,
            "paidAt": format_timestamp(self.paid_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activity:
        paid_at = data.get("paidAt")
        return cls(
            id=str(data["id"]),
            kind=ActivityKind(data["kind"]),
            actor=str(data.get("actor") or ""),
            timestamp=parse_timestamp(data["timestamp"]),
            item=data.get("item"),
            quantity=int(data["quantity"]) if data.get("quantity") is not None else None,
            amount=_decimal_or_none(data.get("amount")),
            balance_after=_decimal_or_none(data.get("balanceAfter")),
            actor_name=str(data.get("actorName") or ""),
            account_id=data.get("accountId"),
            source_id=data.get("sourceId"),
            paid=bool(data.get("paid", False)),
            paid_at=parse_timestamp(paid_at) if paid_at else None,
        )


# === Workers ===


class Role(str, Enum):
    WORKER = "worker"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"


@dataclass
class WorkerProfile:
    id: str
    display_name: str
    role: Role = Role.WORKER
    active: bool = True
    linked_account_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "role": self.role.value,
            "active": self.active,
            "linkedAccountId": self.linked_account_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkerProfile:
        linked = data.get("linkedAccountId")
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("displayName") or data["id"]),
            role=Role(data.get("role", Role.WORKER.value)),
            active=bool(data.get("active", True)),
            linked_account_id=str(linked) if linked else None,
        )


# === Payments ===


class ServiceType(str, Enum):
    PLANTATION = "plantation"
    ANIMAL_DELIVERY = "animal-delivery"
    COMBINED = "combined"


@dataclass(frozen=True)
class PaymentLine:
    """One itemized receipt line."""

    service: ServiceType
    description: str
    quantity: int
    unit_price: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service.value,
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": float(self.unit_price),
            "amount": float(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentLine:
        return cls(
            service=ServiceType(data["service"]),
            description=str(data.get("description", "")),
            quantity=int(data.get("quantity") or 0),
            unit_price=Decimal(str(data.get("unitPrice") or 0)),
            amount=Decimal(str(data.get("amount") or 0)),
        )


@dataclass
class PaymentRecord:
    """A settled payroll action. Never mutated once created."""

    worker_id: str
    service_type: ServiceType
    amount: Decimal
    activity_ids: list[str]
    worker_name: str = ""
    lines: list[PaymentLine] = field(default_factory=list)
    receipt: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workerId": self.worker_id,
            "workerName": self.worker_name,
            "serviceType": self.service_type.value,
            "amount": float(self.amount),
            "activityIds": list(self.activity_ids),
            "lines": [line.to_dict() for line in self.lines],
            "receipt": self.receipt,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentRecord:
        return cls(
            id=str(data["id"]),
            worker_id=str(data["workerId"]),
            worker_name=str(data.get("workerName") or ""),
            service_type=ServiceType(data["serviceType"]),
            amount=Decimal(str(data.get("amount") or 0)),
            activity_ids=[str(i) for i in data.get("activityIds") or []],
            lines=[PaymentLine.from_dict(line) for line in data.get("lines") or []],
            receipt=str(data.get("receipt") or ""),
            timestamp=parse_timestamp(data["timestamp"]),
        )


# === Abuse ===


class AbuseCategory(str, Enum):
    SUSPICIOUS_ITEM = "suspicious-item"
    UNRETURNED_TOOL = "unreturned-tool"
    EXCESS_CONSUMPTION = "excess-consumption"
    UNDELIVERED_ANIMAL = "undelivered-animal"


@dataclass(frozen=True)
class AbuseFinding:
    """A derived charge against a worker. Recomputed on every query."""

    category: AbuseCategory
    worker_id: str
    item: str
    quantity: int
    charge: Decimal
    violation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "workerId": self.worker_id,
            "item": self.item,
            "quantity": self.quantity,
            "charge": float(self.charge),
            "violation": self.violation,
        }


class AbuseDecision(str, Enum):
    CHARGE = "charge"
    IGNORE = "ignore"


@dataclass
class AbuseAction:
    """A recorded decision to charge or ignore a finding."""

    worker_id: str
    decision: AbuseDecision
    category: AbuseCategory
    item: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def applies_to(self, finding: AbuseFinding) -> bool:
        if finding.worker_id != self.worker_id or finding.category != self.category:
            return False
        return self.item is None or self.item == finding.item

    def to_dict(self) -> dict[str, Any]:
        return {
            "workerId": self.worker_id,
            "decision": self.decision.value,
            "category": self.category.value,
            "item": self.item,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AbuseAction:
        return cls(
            worker_id=str(data["workerId"]),
            decision=AbuseDecision(data["decision"]),
            category=AbuseCategory(data["category"]),
            item=data.get("item"),
            timestamp=parse_timestamp(data["timestamp"]),
        )


# === Managers ===


class WorkloadService(str, Enum):
    PLANTATION = "plantation"
    ANIMAL_DELIVERY = "animal-delivery"
    BOX_DELIVERY = "box-delivery"
    RESTOCK = "restock"


@dataclass
class ManagerWorkloadSnapshot:
    manager_id: str
    since: datetime | None
    points: dict[WorkloadService, Decimal] = field(
        default_factory=lambda: {service: Decimal("0") for service in WorkloadService}
    )
    counts: dict[WorkloadService, int] = field(
        default_factory=lambda: {service: 0 for service in WorkloadService}
    )

    @property
    def total_points(self) -> Decimal:
        return sum(self.points.values(), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "managerId": self.manager_id,
            "since": format_timestamp(self.since),
            "points": {service.value: float(value) for service, value in self.points.items()},
            "counts": {service.value: count for service, count in self.counts.items()},
            "totalPoints": float(self.total_points),
        }


@dataclass
class ManagerPaymentRecord:
    manager_id: str
    amount: Decimal
    manager_name: str = ""
    description: str = ""
    points: Decimal = Decimal("0")
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "managerId": self.manager_id,
            "managerName": self.manager_name,
            "amount": float(self.amount),
            "description": self.description,
            "points": float(self.points),
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManagerPaymentRecord:
        return cls(
            id=str(data["id"]),
            manager_id=str(data["managerId"]),
            manager_name=str(data.get("managerName") or ""),
            amount=Decimal(str(data.get("amount") or 0)),
            description=str(data.get("description") or ""),
            points=Decimal(str(data.get("points") or 0)),
            timestamp=parse_timestamp(data["timestamp"]),
        )


class ExpectationKind(str, Enum):
    SEED_RETURN = "seed-return"
    ANIMAL_DELIVERY = "animal-delivery"
    BOX_DELIVERY = "box-delivery"


class ExpectationStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"


@dataclass
class Expectation:
    """A time-boxed obligation opened by a manager withdrawal."""

    id: str
    manager_id: str
    kind: ExpectationKind
    source_activity_id: str
    expected: Decimal
    created_at: datetime
    deadline: datetime
    fulfilled: Decimal = Decimal("0")
    status: ExpectationStatus = ExpectationStatus.PENDING
    feed_units: int = 0

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal("0"), self.expected - self.fulfilled)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "managerId": self.manager_id,
            "kind": self.kind.value,
            "sourceActivityId": self.source_activity_id,
            "expected": float(self.expected),
            "fulfilled": float(self.fulfilled),
            "feedUnits": self.feed_units,
            "createdAt": format_timestamp(self.created_at),
            "deadline": format_timestamp(self.deadline),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Expectation:
        return cls(
            id=str(data["id"]),
            manager_id=str(data["managerId"]),
            kind=ExpectationKind(data["kind"]),
            source_activity_id=str(data["sourceActivityId"]),
            expected=Decimal(str(data.get("expected") or 0)),
            fulfilled=Decimal(str(data.get("fulfilled") or 0)),
            feed_units=int(data.get("feedUnits") or 0),
            created_at=parse_timestamp(data["createdAt"]),
            deadline=parse_timestamp(data["deadline"]),
            status=ExpectationStatus(data.get("status", ExpectationStatus.PENDING.value)),
        )
