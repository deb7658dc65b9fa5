"""Ingestion pipeline: raw log records to ledger activities."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from farm_ledger.abuse import ActivityScreen, ScreenResult
from farm_ledger.classifier import ActivityClassifier
from farm_ledger.context import FarmContext
from farm_ledger.managers import ManagerReconciler
from farm_ledger.models import Activity, RawLogRecord
from farm_ledger.parser import MessageParser
from farm_ledger.storage import DocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class IngestReport:
    parsed: int = 0
    appended: int = 0
    duplicates: int = 0
    failures: int = 0
    reasons: Counter[str] = field(default_factory=Counter)
    new_workers: list[str] = field(default_factory=list)
    flagged: list[ScreenResult] = field(default_factory=list)
    balance_changed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "parsed": self.parsed,
            "appended": self.appended,
            "duplicates": self.duplicates,
            "failures": self.failures,
            "reasons": dict(self.reasons),
            "newWorkers": list(self.new_workers),
            "flagged": [
                {"activityId": r.activity_id, "confidence": r.confidence, "flags": r.flags}
                for r in self.flagged
            ],
            "balanceChanged": self.balance_changed,
        }


class ReconciliationPipeline:
    """Parses, classifies and appends records, then persists the ledger.

    Unknown authors with an account id are registered as workers before
    classification so their activity resolves to a stable worker id.
    Screening is advisory: flagged activities are still appended.
    """

    def __init__(
        self,
        context: FarmContext,
        parser: MessageParser | None = None,
        screen: ActivityScreen | None = None,
        auto_register: bool = True,
    ):
        self._context = context
        self._parser = parser or MessageParser()
        self._classifier = ActivityClassifier(context.normalizer, context.directory)
        self._screen = screen
        self._auto_register = auto_register
        self._logger = logger.bind(component="reconciliation_pipeline")

    def ingest(
        self, records: Iterable[RawLogRecord | dict[str, Any]], now: datetime | None = None
    ) -> IngestReport:
        parse_report = self._parser.parse_batch(records)
        report = IngestReport(
            parsed=len(parse_report.candidates),
            failures=parse_report.failures,
            reasons=parse_report.reasons,
        )
        directory = self._context.directory
        ledger = self._context.ledger

        new_activities: list[Activity] = []
        for candidate in parse_report.candidates:
            if (
                self._auto_register
                and directory.resolve(candidate.actor_name, candidate.account_id) is None
            ):
                profile = directory.register_from_activity(
                    candidate.account_id, candidate.actor_name
                )
                if profile is not None:
                    report.new_workers.append(profile.id)

            activity = self._classifier.classify(candidate)
            if self._screen is not None:
                result = self._screen.screen(
                    activity, ledger.activities, self._context.normalizer, now
                )
                if result.flagged:
                    report.flagged.append(result)
                    self._logger.warning(
                        "activity_flagged",
                        activity_id=activity.id,
                        actor=activity.actor,
                        confidence=round(result.confidence, 3),
                        flags=result.flags,
                    )
            if ledger.append(activity):
                report.appended += 1
                new_activities.append(activity)
            else:
                report.duplicates += 1

        report.balance_changed = self._context.balance.observe(new_activities)

        if report.new_workers:
            self._context.save_workers()
        self._context.save_ledger()
        self._context.save_balance()

        self._logger.info(
            "ingest_complete",
            parsed=report.parsed,
            appended=report.appended,
            duplicates=report.duplicates,
            failures=report.failures,
            new_workers=len(report.new_workers),
        )
        return report


def open_context(store: DocumentStore | None = None) -> FarmContext:
    """Load a context and run the startup corrective passes."""
    context = FarmContext.load(store) if store is not None else FarmContext.from_settings()
    ManagerReconciler(context).reset_negative_balances()
    return context
