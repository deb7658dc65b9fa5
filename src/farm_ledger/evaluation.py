"""Worker performance rating.

A worker is scored on consistency, reliability, efficiency and honesty, each
in [0, 1] and weighted equally, and the weighted total maps to one to five
stars. Scores are recomputed from the ledger on every evaluation; only a short
history of past ratings is stored, to report whether a worker is trending up
or down.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from statistics import fmean, pstdev
from typing import Any

import structlog

from farm_ledger.abuse import AbuseDetector
from farm_ledger.context import FarmContext
from farm_ledger.models import Activity, ActivityKind, format_timestamp, parse_timestamp, utc_now
from farm_ledger.payments import AnimalDeliveryService, DeliveryStatus
from farm_ledger.storage import WORKER_RATINGS_DOC

logger = structlog.get_logger(__name__)

WEIGHTS = {
    "consistency": 0.25,
    "reliability": 0.25,
    "efficiency": 0.25,
    "honesty": 0.25,
}

# (minimum overall score, stars), best first
STAR_THRESHOLDS = ((0.9, 5), (0.75, 4), (0.6, 3), (0.4, 2))


@dataclass(frozen=True)
class EvaluationBenchmarks:
    min_active_days: int = 7
    hours_per_active_day: float = 8.0
    # Items returned to the farm per hour
    excellent_rate: float = 50.0
    good_rate: float = 30.0
    average_rate: float = 15.0
    poor_rate: float = 5.0
    max_abuse_ratio: float = 0.05
    trust_decay: float = 0.1
    trend_change: float = 0.1
    history_size: int = 30


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class WorkerEvaluation:
    worker_id: str
    evaluated_at: datetime
    consistency: float
    reliability: float
    efficiency: float
    honesty: float
    trend: Trend = Trend.STABLE
    active_days: int = 0
    total_activities: int = 0
    items_returned: int = 0
    recommendations: list[str] = field(default_factory=list)

    @property
    def overall(self) -> float:
        return sum(getattr(self, name) * weight for name, weight in WEIGHTS.items())

    @property
    def stars(self) -> int:
        overall = self.overall
        for minimum, stars in STAR_THRESHOLDS:
            if overall >= minimum:
                return stars
        return 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "workerId": self.worker_id,
            "evaluatedAt": format_timestamp(self.evaluated_at),
            "scores": {
                "consistency": round(self.consistency, 4),
                "reliability": round(self.reliability, 4),
                "efficiency": round(self.efficiency, 4),
                "honesty": round(self.honesty, 4),
                "overall": round(self.overall, 4),
            },
            "stars": self.stars,
            "trend": self.trend.value,
            "statistics": {
                "activeDays": self.active_days,
                "totalActivities": self.total_activities,
                "itemsReturned": self.items_returned,
            },
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class RatingEntry:
    evaluated_at: datetime
    overall: float
    stars: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluatedAt": format_timestamp(self.evaluated_at),
            "overall": self.overall,
            "stars": self.stars,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RatingEntry:
        return cls(
            evaluated_at=parse_timestamp(data["evaluatedAt"]),
            overall=float(data.get("overall") or 0),
            stars=int(data.get("stars") or 1),
        )


class RatingBook:
    """Recent rating history per worker, oldest first."""

    def __init__(self, history: dict[str, list[RatingEntry]] | None = None):
        self.history: dict[str, list[RatingEntry]] = history or {}

    def entries(self, worker_id: str) -> list[RatingEntry]:
        return list(self.history.get(worker_id, []))

    def record(self, evaluation: WorkerEvaluation, keep: int) -> None:
        entries = self.history.setdefault(evaluation.worker_id, [])
        entries.append(
            RatingEntry(
                evaluated_at=evaluation.evaluated_at,
                overall=round(evaluation.overall, 4),
                stars=evaluation.stars,
            )
        )
        del entries[:-keep]

    def to_document(self) -> dict[str, Any]:
        return {
            "ratings": {
                worker_id: [entry.to_dict() for entry in entries]
                for worker_id, entries in self.history.items()
            },
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> RatingBook:
        if not document:
            return cls()
        return cls(
            {
                worker_id: [RatingEntry.from_dict(item) for item in entries or []]
                for worker_id, entries in (document.get("ratings") or {}).items()
            }
        )


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class WorkerEvaluator:
    def __init__(
        self,
        context: FarmContext,
        abuse: AbuseDetector | None = None,
        benchmarks: EvaluationBenchmarks | None = None,
        book: RatingBook | None = None,
    ):
        self._context = context
        self._deliveries = AnimalDeliveryService(context)
        self._abuse = abuse if abuse is not None else AbuseDetector(context)
        self.benchmarks = benchmarks or EvaluationBenchmarks()
        if book is None:
            book = RatingBook.from_document(context.store.load(WORKER_RATINGS_DOC))
        self.book = book
        self._logger = logger.bind(component="worker_evaluator")

    def evaluate(
        self, worker_id: str, now: datetime | None = None, save: bool = True
    ) -> WorkerEvaluation:
        """Score a worker from their ledger history.

        Args:
            worker_id: Worker to rate.
            now: Evaluation time, defaults to the current UTC time.
            save: Append the rating to the stored history.

        Raises:
            EntityNotFound: If the worker is not in the directory.
        """
        self._context.directory.require(worker_id)
        history = self._context.ledger.history_of(worker_id)
        daily = self._daily_counts(history)
        items = sum(a.quantity or 0 for a in history if a.kind == ActivityKind.ITEM_ADD)

        evaluation = WorkerEvaluation(
            worker_id=worker_id,
            evaluated_at=now or utc_now(),
            consistency=self.consistency(daily),
            reliability=self.reliability(worker_id, len(history)),
            efficiency=self.efficiency(items, len(daily)),
            honesty=self.honesty(worker_id, len(history)),
            trend=self.trend(self.book.entries(worker_id)),
            active_days=len(daily),
            total_activities=len(history),
            items_returned=items,
        )
        evaluation.recommendations = self._recommendations(evaluation)

        if save:
            self.book.record(evaluation, self.benchmarks.history_size)
            self._context.store.save(WORKER_RATINGS_DOC, self.book.to_document())
        self._logger.info(
            "worker_evaluated",
            worker_id=worker_id,
            overall=round(evaluation.overall, 3),
            stars=evaluation.stars,
            trend=evaluation.trend.value,
        )
        return evaluation

    @staticmethod
    def _daily_counts(history: list[Activity]) -> Counter[date]:
        return Counter(a.timestamp.date() for a in history)

    def consistency(self, daily: Counter[date]) -> float:
        """Share of days active across the span, tempered by day-to-day variation."""
        if not daily:
            return 0.0
        if len(daily) < self.benchmarks.min_active_days:
            return 0.5
        days = sorted(daily)
        span = (days[-1] - days[0]).days + 1
        counts = list(daily.values())
        variation = pstdev(counts) / (fmean(counts) or 1)
        return _clamp(len(days) / span * 0.6 + max(0.0, 1 - variation) * 0.4)

    def reliability(self, worker_id: str, total_activities: int) -> float:
        summary = self._deliveries.calculate(worker_id)
        cycles = len(summary.deliveries) + len(summary.suspicious)
        if cycles == 0:
            if total_activities == 0:
                return 0.5
            return min(1.0, total_activities / 100)
        complete = sum(1 for d in summary.deliveries if d.status == DeliveryStatus.COMPLETE)
        return _clamp(complete / cycles * 0.7 + len(summary.deliveries) / cycles * 0.3)

    def efficiency(self, items: int, active_days: int) -> float:
        b = self.benchmarks
        hours = active_days * b.hours_per_active_day
        if hours == 0:
            return 0.0
        rate = items / hours
        if rate >= b.excellent_rate:
            return 1.0
        if rate >= b.good_rate:
            return 0.8 + (rate - b.good_rate) / (b.excellent_rate - b.good_rate) * 0.2
        if rate >= b.average_rate:
            return 0.6 + (rate - b.average_rate) / (b.good_rate - b.average_rate) * 0.2
        if rate >= b.poor_rate:
            return 0.4 + (rate - b.poor_rate) / (b.average_rate - b.poor_rate) * 0.2
        return _clamp(rate / b.poor_rate * 0.4)

    def honesty(self, worker_id: str, total_activities: int) -> float:
        """Full trust, less a penalty per abuse finding and suspicious delivery."""
        if total_activities == 0:
            return 1.0
        b = self.benchmarks
        incidents = len(self._abuse.report(worker_id).findings)
        incidents += len(self._deliveries.calculate(worker_id).suspicious)
        ratio = incidents / total_activities
        score = 1.0 - max(0.0, ratio - b.max_abuse_ratio) * 10 - incidents * b.trust_decay
        return _clamp(score)

    def trend(self, entries: list[RatingEntry]) -> Trend:
        """Last three ratings against everything before them."""
        recent, earlier = entries[-3:], entries[:-3]
        if not earlier:
            return Trend.STABLE
        baseline = fmean(e.overall for e in earlier)
        if baseline == 0:
            return Trend.STABLE
        change = (fmean(e.overall for e in recent) - baseline) / baseline
        if change > self.benchmarks.trend_change:
            return Trend.IMPROVING
        if change < -self.benchmarks.trend_change:
            return Trend.DECLINING
        return Trend.STABLE

    @staticmethod
    def _recommendations(evaluation: WorkerEvaluation) -> list[str]:
        tips = []
        if evaluation.honesty < 0.8:
            tips.append("Address flagged activities")
        if evaluation.consistency < 0.6:
            tips.append("Work more regularly through the week")
        if evaluation.reliability < 0.7:
            tips.append("Complete every animal delivery you start")
        if evaluation.efficiency < 0.5:
            tips.append("Return more of what you harvest")
        if evaluation.trend == Trend.DECLINING:
            tips.append("Performance declining since recent ratings")
        return tips
