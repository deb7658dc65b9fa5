"""Utilities for loading the item catalog from YAML."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "items.yaml"

KNOWN_CATEGORIES = (
    "main_crop",
    "specialty_crop",
    "seed",
    "animal",
    "feed",
    "allowance",
    "tool",
    "box",
    "material",
)


@dataclass(frozen=True)
class ItemCatalog:
    """Canonical item ids by category, plus alias and tool cost tables."""

    categories: dict[str, frozenset[str]]
    aliases: dict[str, str] = field(default_factory=dict)
    tool_costs: dict[str, Decimal] = field(default_factory=dict)

    @property
    def canonical_ids(self) -> frozenset[str]:
        ids: set[str] = set()
        for members in self.categories.values():
            ids.update(members)
        return frozenset(ids)

    def category_of(self, item_id: str) -> str | None:
        for category, members in self.categories.items():
            if item_id in members:
                return category
        return None


def _as_key(value: Any) -> str:
    return str(value).strip().lower().replace(" ", "_")


def parse_catalog(data: dict[str, Any], source: str = "catalog") -> ItemCatalog:
    """Validate raw YAML data and build an ItemCatalog.

    Raises:
        ValueError: If a section has the wrong shape or references an
            unknown category or item.
    """
    raw_categories = data.get("categories") or {}
    if not isinstance(raw_categories, dict):
        raise ValueError(f"{source}: categories must be a mapping")

    categories: dict[str, frozenset[str]] = {}
    owner: dict[str, str] = {}
    for category, members in raw_categories.items():
        if category not in KNOWN_CATEGORIES:
            raise ValueError(f"{source}: unknown category {category!r}")
        if not isinstance(members, list):
            raise ValueError(f"{source}: category {category!r} must be a list")
        keys = [_as_key(member) for member in members]
        for key in keys:
            if key in owner:
                raise ValueError(
                    f"{source}: item {key!r} listed in both {owner[key]!r} and {category!r}"
                )
            owner[key] = category
        categories[category] = frozenset(keys)

    raw_aliases = data.get("aliases") or {}
    if not isinstance(raw_aliases, dict):
        raise ValueError(f"{source}: aliases must be a mapping")

    aliases: dict[str, str] = {}
    for canonical, names in raw_aliases.items():
        canonical_key = _as_key(canonical)
        if canonical_key not in owner:
            raise ValueError(f"{source}: alias target {canonical!r} is not a catalog item")
        if not isinstance(names, list):
            raise ValueError(f"{source}: aliases for {canonical!r} must be a list")
        for name in names:
            aliases[_as_key(name)] = canonical_key

    raw_costs = data.get("tool_costs") or {}
    if not isinstance(raw_costs, dict):
        raise ValueError(f"{source}: tool_costs must be a mapping")

    tool_costs: dict[str, Decimal] = {}
    for tool, cost in raw_costs.items():
        tool_key = _as_key(tool)
        if owner.get(tool_key) != "tool":
            raise ValueError(f"{source}: tool_costs entry {tool!r} is not a tool")
        try:
            value = Decimal(str(cost))
        except ArithmeticError as exc:
            raise ValueError(f"{source}: invalid cost for {tool!r}: {cost!r}") from exc
        if value < 0:
            raise ValueError(f"{source}: negative cost for {tool!r}: {value}")
        tool_costs[tool_key] = value

    return ItemCatalog(categories=categories, aliases=aliases, tool_costs=tool_costs)


@lru_cache
def load_item_catalog(path: Path = DEFAULT_CATALOG_PATH) -> ItemCatalog:
    """Load and cache the item catalog.

    Args:
        path: YAML file to read. Defaults to the packaged items.yaml.

    Returns:
        Parsed ItemCatalog.
    """
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: top level must be a mapping")
    return parse_catalog(data, source=path.name)
