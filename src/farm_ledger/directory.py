"""Worker directory: profiles, roles and linked chat accounts."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from farm_ledger.errors import EntityNotFound
from farm_ledger.matching import AuthorMatch, match_author
from farm_ledger.models import Role, WorkerProfile, format_timestamp, utc_now
from farm_ledger.storage import WORKERS_DOC, DocumentStore

logger = structlog.get_logger(__name__)


class WorkerDirectory:
    def __init__(self, profiles: Iterable[WorkerProfile] = ()):
        self._profiles: dict[str, WorkerProfile] = {p.id: p for p in profiles}
        self._logger = logger.bind(component="worker_directory")

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._profiles

    @property
    def profiles(self) -> list[WorkerProfile]:
        return list(self._profiles.values())

    def get(self, worker_id: str) -> WorkerProfile | None:
        return self._profiles.get(worker_id)

    def require(self, worker_id: str) -> WorkerProfile:
        profile = self._profiles.get(worker_id)
        if profile is None:
            raise EntityNotFound(f"Unknown worker: {worker_id}", {"worker_id": worker_id})
        return profile

    def add(self, profile: WorkerProfile) -> None:
        self._profiles[profile.id] = profile

    def with_role(self, role: Role, active_only: bool = True) -> list[WorkerProfile]:
        return [
            p for p in self._profiles.values() if p.role == role and (p.active or not active_only)
        ]

    def role_of(self, worker_id: str) -> Role | None:
        profile = self._profiles.get(worker_id)
        return profile.role if profile else None

    def resolve(self, name: str | None, account_id: str | None) -> AuthorMatch | None:
        return match_author(name, account_id, self._profiles.values())

    def register_from_activity(self, account_id: str | None, name: str) -> WorkerProfile | None:
        """Auto-register an unknown author as a worker.

        Only authors with a numeric account id are registered, keyed by that id.
        """
        if not account_id or account_id in self._profiles:
            return None
        profile = WorkerProfile(
            id=account_id,
            display_name=name or account_id,
            role=Role.WORKER,
            linked_account_id=account_id,
        )
        self._profiles[profile.id] = profile
        self._logger.info("worker_registered", worker_id=profile.id, name=profile.display_name)
        return profile

    def to_document(self) -> dict:
        return {
            "workers": [p.to_dict() for p in self._profiles.values()],
            "lastUpdated": format_timestamp(utc_now()),
        }

    @classmethod
    def from_document(cls, document: dict | None) -> WorkerDirectory:
        if not document:
            return cls()
        return cls(WorkerProfile.from_dict(item) for item in document.get("workers") or [])

    @classmethod
    def load(cls, store: DocumentStore) -> WorkerDirectory:
        return cls.from_document(store.load(WORKERS_DOC))

    def save(self, store: DocumentStore) -> None:
        store.save(WORKERS_DOC, self.to_document())
