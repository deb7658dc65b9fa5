"""Activity classifier: category, canonical item and actor identity."""

from __future__ import annotations

from uuid import NAMESPACE_URL, uuid5

import structlog

from farm_ledger.directory import WorkerDirectory
from farm_ledger.items import ItemNormalizer
from farm_ledger.models import Activity, ActivityCategory
from farm_ledger.parser import ParsedCandidate

logger = structlog.get_logger(__name__)


def activity_id_for(record_id: str) -> str:
    """Stable activity id derived from the source record id."""
    return str(uuid5(NAMESPACE_URL, f"farm-ledger/activity/{record_id}"))


class ActivityClassifier:
    def __init__(self, normalizer: ItemNormalizer, directory: WorkerDirectory):
        self._normalizer = normalizer
        self._directory = directory
        self._logger = logger.bind(component="activity_classifier")

    def resolve_actor(self, candidate: ParsedCandidate) -> str:
        """Worker id for the candidate, else its account id, else the raw name."""
        match = self._directory.resolve(candidate.actor_name, candidate.account_id)
        if match is not None:
            return match.profile.id
        self._logger.debug(
            "actor_unmatched",
            name=candidate.actor_name,
            account_id=candidate.account_id,
            record_id=candidate.record_id,
        )
        return candidate.account_id or candidate.actor_name

    def classify(self, candidate: ParsedCandidate) -> Activity:
        item = None
        if candidate.category == ActivityCategory.INVENTORY and candidate.raw_item:
            item = self._normalizer.canonicalize(candidate.raw_item)

        return Activity(
            id=activity_id_for(candidate.record_id),
            kind=candidate.kind,
            actor=self.resolve_actor(candidate),
            actor_name=candidate.actor_name,
            account_id=candidate.account_id,
            timestamp=candidate.timestamp,
            item=item,
            quantity=candidate.quantity,
            amount=candidate.amount,
            balance_after=candidate.balance_after,
            source_id=candidate.record_id,
        )
