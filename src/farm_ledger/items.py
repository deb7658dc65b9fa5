"""Item canonicalization: accent folding, alias tables and compound ids."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable
from decimal import Decimal
from enum import Enum

import structlog

from farm_ledger.config import ItemCatalog, load_item_catalog

logger = structlog.get_logger(__name__)

_NON_ID_CHARS = re.compile(r"[^a-z0-9_]+")
_SEPARATORS = re.compile(r"[\s\-./]+")

STOPWORDS = frozenset({"de", "da", "do", "das", "dos", "of", "the", "a", "o"})
SEED_WORDS = frozenset({"seed", "seeds", "semente", "sementes"})


class ItemKind(str, Enum):
    MAIN_CROP = "main_crop"
    SPECIALTY_CROP = "specialty_crop"
    SEED = "seed"
    ANIMAL = "animal"
    FEED = "feed"
    ALLOWANCE = "allowance"
    TOOL = "tool"
    BOX = "box"
    MATERIAL = "material"
    UNKNOWN = "unknown"

    @property
    def is_plant(self) -> bool:
        return self in (ItemKind.MAIN_CROP, ItemKind.SPECIALTY_CROP)


def fold(text: str) -> str:
    """Lowercase, strip accents and collapse separators into underscores."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = _SEPARATORS.sub("_", stripped.strip().lower())
    return _NON_ID_CHARS.sub("", lowered).strip("_")


class ItemNormalizer:
    """Resolves raw item text from the log to canonical catalog ids.

    Lookup order: exact canonical id, alias table, then compound matching
    (stopwords dropped, tokens re-joined in both orders, seed words folded
    into a ``<crop>_seed`` id, trailing plural ``s`` removed). Text that
    still does not resolve is returned folded so it can be audited as an
    unknown item.
    """

    def __init__(
        self,
        catalog: ItemCatalog | None = None,
        display_names: Callable[[str], str | None] | None = None,
    ):
        self._catalog = catalog or load_item_catalog()
        self._canonical = self._catalog.canonical_ids
        self._display_names = display_names
        self._cache: dict[str, str] = {}

    @property
    def catalog(self) -> ItemCatalog:
        return self._catalog

    def canonicalize(self, raw: str) -> str:
        key = fold(raw)
        if not key:
            return key
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        resolved = self._resolve(key)
        if resolved is None:
            logger.debug("item_unresolved", raw=raw, folded=key)
            resolved = key
        self._cache[key] = resolved
        return resolved

    def _lookup(self, key: str) -> str | None:
        if key in self._canonical:
            return key
        return self._catalog.aliases.get(key)

    def _resolve(self, key: str) -> str | None:
        found = self._lookup(key)
        if found:
            return found

        tokens = [t for t in key.split("_") if t and t not in STOPWORDS]
        if not tokens:
            return None

        seed_tokens = [t for t in tokens if t in SEED_WORDS]
        if seed_tokens:
            rest = [t for t in tokens if t not in SEED_WORDS]
            if rest:
                crop = self._resolve("_".join(rest))
                if crop and f"{crop}_seed" in self._canonical:
                    return f"{crop}_seed"

        for candidate in ("_".join(tokens), "_".join(reversed(tokens))):
            found = self._lookup(candidate)
            if found:
                return found

        if key.endswith("s") and len(key) > 3:
            found = self._lookup(key[:-1])
            if found:
                return found

        return None

    def kind_of(self, item: str | None) -> ItemKind:
        if not item:
            return ItemKind.UNKNOWN
        category = self._catalog.category_of(item)
        if category is None:
            return ItemKind.UNKNOWN
        return ItemKind(category)

    def is_plant(self, item: str | None) -> bool:
        return self.kind_of(item).is_plant

    def tool_cost(self, item: str, default: Decimal) -> Decimal:
        return self._catalog.tool_costs.get(item, default)

    def display_name(self, item: str) -> str:
        """Human-readable name, from the injected lookup when it has one."""
        if self._display_names is not None:
            name = self._display_names(item)
            if name:
                return name
        return item.replace("_", " ").title()
