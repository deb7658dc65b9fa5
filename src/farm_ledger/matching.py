"""Ranked author matching against the worker directory.

Tiers, strongest first:

1. the numeric account id equals a profile's linked account id (or its id)
2. the accent- and case-folded name equals the profile name
3. fuzzy: two or more shared significant words, or one name contains the other

The functions here are pure; they never touch the ledger or storage.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum

from farm_ledger.items import fold
from farm_ledger.models import WorkerProfile

MIN_WORD_LENGTH = 3
MIN_SHARED_WORDS = 2


class MatchTier(IntEnum):
    ACCOUNT_ID = 1
    EXACT_NAME = 2
    FUZZY = 3


@dataclass(frozen=True)
class AuthorMatch:
    profile: WorkerProfile
    tier: MatchTier
    score: int = 0


def normalize_name(name: str) -> str:
    return " ".join(fold(name).replace("_", " ").split())


def significant_words(name: str) -> set[str]:
    return {word for word in normalize_name(name).split() if len(word) >= MIN_WORD_LENGTH}


def _fuzzy_score(author: str, candidate: str) -> int:
    """Return a positive score when the two normalized names fuzzily match."""
    if not author or not candidate:
        return 0
    shared = significant_words(author) & significant_words(candidate)
    if len(shared) >= MIN_SHARED_WORDS:
        return 100 + len(shared)
    shorter, longer = sorted((author, candidate), key=len)
    if len(shorter) >= MIN_WORD_LENGTH and shorter in longer:
        return len(shorter)
    return 0


def rank_candidates(
    name: str | None,
    account_id: str | None,
    profiles: Iterable[WorkerProfile],
) -> list[AuthorMatch]:
    """Return every matching profile, best first."""
    author = normalize_name(name or "")
    matches: list[AuthorMatch] = []
    for profile in profiles:
        if account_id and account_id in (profile.linked_account_id, profile.id):
            matches.append(AuthorMatch(profile, MatchTier.ACCOUNT_ID))
            continue
        candidate = normalize_name(profile.display_name)
        if author and author == candidate:
            matches.append(AuthorMatch(profile, MatchTier.EXACT_NAME))
            continue
        score = _fuzzy_score(author, candidate)
        if score:
            matches.append(AuthorMatch(profile, MatchTier.FUZZY, score))
    matches.sort(key=lambda m: (m.tier, -m.score))
    return matches


def match_author(
    name: str | None,
    account_id: str | None,
    profiles: Iterable[WorkerProfile],
) -> AuthorMatch | None:
    """Pick the single best profile for a log author.

    A tie between two different profiles at the best tier and score is
    ambiguous and yields no match, so the activity keeps its raw attribution.
    """
    ranked = rank_candidates(name, account_id, profiles)
    if not ranked:
        return None
    best = ranked[0]
    if len(ranked) > 1:
        runner_up = ranked[1]
        if (runner_up.tier, runner_up.score) == (best.tier, best.score):
            return None
    return best
