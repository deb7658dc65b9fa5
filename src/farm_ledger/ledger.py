"""Activity ledger: deduplicated, time-ordered, bounded store of activities.

There is one canonical in-memory list. The on-disk canonical document and the
legacy three-array document are both projections of it.
"""

from __future__ import annotations

from bisect import bisect_left
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import NAMESPACE_URL, uuid5

import structlog

from farm_ledger.errors import EntityNotFound
from farm_ledger.models import (
    Activity,
    ActivityCategory,
    ActivityKind,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

logger = structlog.get_logger(__name__)

ActivityPredicate = Callable[[Activity], bool]


def _sort_key(activity: Activity) -> float:
    return -activity.timestamp.timestamp()


@dataclass
class LedgerSummary:
    total: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    actors: set[str] = field(default_factory=set)
    latest: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_activities": self.total,
            "activity_types": dict(self.by_kind),
            "active_users": sorted(self.actors),
            "latest_activity": format_timestamp(self.latest),
        }


class ActivityLedger:
    """Append-only activity store with running summaries.

    Activities are kept newest first. An activity is rejected as a duplicate
    when its id or its (kind, item, quantity, amount, actor, timestamp)
    identity is already present.
    """

    def __init__(self, activities: Iterable[Activity] = (), history_cap: int | None = None):
        self._history_cap = history_cap
        self._activities: list[Activity] = []
        self._by_id: dict[str, Activity] = {}
        self._identities: set[tuple[Any, ...]] = set()
        self._summary = LedgerSummary()
        self._logger = logger.bind(component="activity_ledger")
        for activity in activities:
            self._insert(activity)
        self._prune()
        self._recompute_summary()

    def __len__(self) -> int:
        return len(self._activities)

    def __iter__(self):
        return iter(list(self._activities))

    def __contains__(self, activity_id: object) -> bool:
        return activity_id in self._by_id

    @property
    def summary(self) -> LedgerSummary:
        return self._summary

    @property
    def activities(self) -> list[Activity]:
        return list(self._activities)

    def is_duplicate(self, activity: Activity) -> bool:
        return activity.id in self._by_id or activity.identity_key in self._identities

    # === Mutations ===

    def append(self, activity: Activity) -> bool:
        """Insert an activity unless it duplicates a stored one."""
        if not self._insert(activity):
            self._logger.debug(
                "activity_duplicate", activity_id=activity.id, kind=activity.kind.value
            )
            return False
        self._prune()
        self._recompute_summary()
        self._logger.debug("activity_appended", activity_id=activity.id, kind=activity.kind.value)
        return True

    def extend(self, activities: Iterable[Activity]) -> int:
        """Append many activities; returns how many were new."""
        added = 0
        for activity in activities:
            if self._insert(activity):
                added += 1
        if added:
            self._prune()
            self._recompute_summary()
        return added

    def mark_paid(self, activity_ids: Iterable[str], now: datetime | None = None) -> int:
        """Flag activities as paid. Already-paid and unknown ids are left alone."""
        paid_at = now or utc_now()
        changed = 0
        for activity_id in activity_ids:
            activity = self._by_id.get(activity_id)
            if activity is None or activity.paid:
                continue
            activity.paid = True
            activity.paid_at = paid_at
            changed += 1
        if changed:
            self._logger.info("activities_marked_paid", count=changed)
        return changed

    def mark_unpaid(self, activity_ids: Iterable[str]) -> int:
        changed = 0
        for activity_id in activity_ids:
            activity = self._by_id.get(activity_id)
            if activity is None or not activity.paid:
                continue
            activity.paid = False
            activity.paid_at = None
            changed += 1
        if changed:
            self._logger.info("activities_marked_unpaid", count=changed)
        return changed

    def remove(self, activity_id: str) -> Activity:
        """Administrative removal of a single activity."""
        activity = self.require(activity_id)
        self._activities.remove(activity)
        del self._by_id[activity.id]
        self._identities.discard(activity.identity_key)
        self._recompute_summary()
        self._logger.info("activity_removed", activity_id=activity_id, kind=activity.kind.value)
        return activity

    # === Reads ===

    def get(self, activity_id: str) -> Activity | None:
        return self._by_id.get(activity_id)

    def require(self, activity_id: str) -> Activity:
        activity = self._by_id.get(activity_id)
        if activity is None:
            raise EntityNotFound(
                f"Unknown activity: {activity_id}", {"activity_id": activity_id}
            )
        return activity

    def query(
        self,
        predicate: ActivityPredicate | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Activity]:
        """Return a newest-first page of activities matching the predicate."""
        matched = [a for a in self._activities if predicate is None or predicate(a)]
        end = None if limit is None else offset + limit
        return matched[offset:end]

    def for_actor(self, actor: str, predicate: ActivityPredicate | None = None) -> list[Activity]:
        return self.query(lambda a: a.actor == actor and (predicate is None or predicate(a)))

    def history_of(
        self, actor: str, predicate: ActivityPredicate | None = None
    ) -> list[Activity]:
        """Oldest first. Activities sharing a timestamp keep their arrival order."""
        return list(reversed(self.for_actor(actor, predicate)))

    # === Internals ===

    def _insert(self, activity: Activity) -> bool:
        if self.is_duplicate(activity):
            return False
        # Equal timestamps: the newcomer goes first
        index = bisect_left(self._activities, _sort_key(activity), key=_sort_key)
        self._activities.insert(index, activity)
        self._by_id[activity.id] = activity
        self._identities.add(activity.identity_key)
        return True

    def _prune(self) -> None:
        if self._history_cap is None or len(self._activities) <= self._history_cap:
            return
        dropped = self._activities[self._history_cap :]
        del self._activities[self._history_cap :]
        for activity in dropped:
            self._by_id.pop(activity.id, None)
            self._identities.discard(activity.identity_key)
        self._logger.info("ledger_pruned", dropped=len(dropped), cap=self._history_cap)

    def _recompute_summary(self) -> None:
        kinds = Counter(a.kind.value for a in self._activities)
        self._summary = LedgerSummary(
            total=len(self._activities),
            by_kind=dict(kinds),
            actors={a.actor for a in self._activities},
            latest=self._activities[0].timestamp if self._activities else None,
        )

    # === Projections ===

    def to_document(self) -> dict[str, Any]:
        return {
            "activities": [a.to_dict() for a in self._activities],
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(
        cls, document: dict[str, Any] | None, history_cap: int | None = None
    ) -> ActivityLedger:
        """Load either the canonical or the legacy three-array document."""
        if not document:
            return cls(history_cap=history_cap)
        if "activities" not in document and any(k in document for k in LEGACY_ARRAYS):
            return cls.from_legacy_shape(document, history_cap=history_cap)
        # Stored newest first; replay oldest first to rebuild arrival order
        stored = [Activity.from_dict(item) for item in document.get("activities") or []]
        return cls(reversed(stored), history_cap=history_cap)

    def to_legacy_shape(self) -> dict[str, Any]:
        """Project into the analyzed-data layout the dashboard reads."""
        inventory: list[dict[str, Any]] = []
        financial: list[dict[str, Any]] = []
        user_activities: dict[str, dict[str, Any]] = {}
        for activity in self._activities:
            entry = _to_legacy_entry(activity)
            if activity.category == ActivityCategory.INVENTORY:
                inventory.append(entry)
            else:
                financial.append(entry)

            stats = user_activities.setdefault(
                activity.actor,
                {"total_activities": 0, "activity_types": {}, "last_activity": None},
            )
            stats["total_activities"] += 1
            kind = activity.kind.value
            stats["activity_types"][kind] = stats["activity_types"].get(kind, 0) + 1
            if stats["last_activity"] is None:
                stats["last_activity"] = format_timestamp(activity.timestamp)

        summary = self._summary.to_dict()
        summary["active_users"] = len(self._summary.actors)
        return {
            "farm_activities": [],
            "financial_transactions": financial,
            "inventory_changes": inventory,
            "user_activities": user_activities,
            "summary": summary,
            "last_analyzed": format_timestamp(utc_now()),
        }

    @classmethod
    def from_legacy_shape(
        cls, document: dict[str, Any], history_cap: int | None = None
    ) -> ActivityLedger:
        activities: list[Activity] = []
        skipped = 0
        for key in LEGACY_ARRAYS:
            for entry in document.get(key) or []:
                activity = _from_legacy_entry(entry)
                if activity is None:
                    skipped += 1
                    continue
                activities.append(activity)
        if skipped:
            logger.info("legacy_entries_skipped", count=skipped)
        return cls(activities, history_cap=history_cap)


LEGACY_ARRAYS = ("farm_activities", "financial_transactions", "inventory_changes")


def _to_legacy_entry(activity: Activity) -> dict[str, Any]:
    details: dict[str, Any] = {"action": _LEGACY_ACTIONS[activity.kind]}
    if activity.category == ActivityCategory.INVENTORY:
        details["item"] = activity.item
        details["quantity"] = activity.quantity
    else:
        details["amount"] = float(activity.amount)
    if activity.balance_after is not None:
        details["balance_after"] = float(activity.balance_after)
    return {
        "id": activity.id,
        "type": activity.kind.value,
        "author": activity.actor_name or activity.actor,
        "actor": activity.actor,
        "account_id": activity.account_id,
        "timestamp": format_timestamp(activity.timestamp),
        "details": details,
        "paid": activity.paid,
        "paid_at": format_timestamp(activity.paid_at),
    }


_LEGACY_ACTIONS = {
    ActivityKind.ITEM_ADD: "add",
    ActivityKind.ITEM_REMOVE: "remove",
    ActivityKind.DEPOSIT: "deposit",
    ActivityKind.WITHDRAWAL: "withdrawal",
}


def _from_legacy_entry(entry: dict[str, Any]) -> Activity | None:
    try:
        kind = ActivityKind(entry.get("type"))
    except ValueError:
        return None
    if not entry.get("timestamp"):
        return None
    details = entry.get("details") or {}
    timestamp = parse_timestamp(entry["timestamp"])
    author = str(entry.get("author") or "")
    activity_id = entry.get("id") or str(
        uuid5(NAMESPACE_URL, f"farm-ledger/legacy/{author}/{entry['timestamp']}")
    )
    balance = details.get("balance_after")
    paid_at = entry.get("paid_at")
    return Activity(
        id=str(activity_id),
        kind=kind,
        actor=str(entry.get("actor") or author),
        actor_name=author,
        account_id=entry.get("account_id"),
        timestamp=timestamp,
        item=details.get("item") if kind.category == ActivityCategory.INVENTORY else None,
        quantity=int(details.get("quantity") or 0),
        amount=Decimal(str(details.get("amount") or 0)),
        balance_after=Decimal(str(balance)) if balance is not None else None,
        paid=bool(entry.get("paid", False)),
        paid_at=parse_timestamp(paid_at) if paid_at else None,
    )


@dataclass
class BalanceEntry:
    previous: Decimal
    new: Decimal
    timestamp: datetime
    activity_id: str | None = None


class BalanceTracker:
    """Farm cash balance as last reported by the in-game bank.

    The balance is never computed from deposits; it is the ``balanceAfter``
    of the most recent financial activity that carries one.
    """

    def __init__(
        self,
        current: Decimal | None = None,
        updated_at: datetime | None = None,
        history: list[BalanceEntry] | None = None,
    ):
        self.current = current
        self.updated_at = updated_at
        self.history = history or []
        self._logger = logger.bind(component="balance_tracker")

    @property
    def known(self) -> bool:
        return self.current is not None

    def observe(self, activities: Iterable[Activity]) -> bool:
        """Apply reported balances newer than the last update. Returns True on change."""
        reported = sorted(
            (
                a
                for a in activities
                if a.balance_after is not None and a.category == ActivityCategory.FINANCIAL
            ),
            key=lambda a: a.timestamp,
        )
        if self.updated_at is not None:
            reported = [a for a in reported if a.timestamp > self.updated_at]
        if not reported:
            return False

        latest = reported[-1]
        new_balance = latest.balance_after or Decimal("0")
        previous = self.current if self.current is not None else Decimal("0")
        if new_balance == self.current:
            self.updated_at = latest.timestamp
            return False

        self.history.append(
            BalanceEntry(
                previous=previous,
                new=new_balance,
                timestamp=latest.timestamp,
                activity_id=latest.id,
            )
        )
        self.current = new_balance
        self.updated_at = latest.timestamp
        self._logger.info("farm_balance_updated", previous=str(previous), new=str(new_balance))
        return True

    def to_document(self) -> dict[str, Any]:
        return {
            "currentBalance": float(self.current) if self.current is not None else None,
            "lastUpdated": format_timestamp(self.updated_at),
            "history": [
                {
                    "previous": float(entry.previous),
                    "new": float(entry.new),
                    "timestamp": format_timestamp(entry.timestamp),
                    "activityId": entry.activity_id,
                }
                for entry in self.history
            ],
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> BalanceTracker:
        if not document:
            return cls()
        # Older files use the Portuguese keys
        current = document.get("currentBalance", document.get("saldo_atual"))
        updated = document.get("lastUpdated", document.get("ultima_atualizacao"))
        history = []
        for entry in document.get("history") or document.get("historico_saldos") or []:
            history.append(
                BalanceEntry(
                    previous=Decimal(str(entry.get("previous", entry.get("saldo_anterior", 0)))),
                    new=Decimal(str(entry.get("new", entry.get("saldo_novo", 0)))),
                    timestamp=parse_timestamp(entry["timestamp"]),
                    activity_id=entry.get("activityId"),
                )
            )
        return cls(
            current=Decimal(str(current)) if current is not None else None,
            updated_at=parse_timestamp(updated) if updated else None,
            history=history,
        )
