# src/models/catalog.py

"""Crafting catalog: legendary mercenaries and the materials they need."""

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from src.config.settings import Settings
from src.models.price_snapshot import ItemPrice

AWAKENED = "awakened"
MODIFIED = "modified"
LEGENDARY = "legendary"

# "영웅의 영혼석 20개" -> ("영웅의 영혼석", 20)
_MATERIAL_RE = re.compile(r"(.+?)\s+(\d+)개")


@dataclass
class ItemRequirement:
    """A material and the quantity a recipe consumes."""

    name: str
    quantity: int


@dataclass
class ChildMercenary:
    """An awakened or modified mercenary consumed by a legendary recipe."""

    id: int
    name: str
    attribute: str
    country: str
    class_type: str
    items: list[ItemRequirement]


@dataclass
class Mercenary:
    """A legendary mercenary with its own and its children's materials."""

    id: int
    name: str
    attribute: str
    country: str
    items: list[ItemRequirement]
    children: list[ChildMercenary] = field(
        default_factory=lambda: list[ChildMercenary]()
    )


@dataclass
class CraftingCost:
    """Market cost of a legendary recipe at current minimum prices."""

    main_cost: int
    child_cost: int
    total_cost: int


def parse_crafting_materials(text: str) -> list[ItemRequirement]:
    """Parse a comma-separated material string.

    Entries without a ``N개`` count are taken as a single unit.
    """
    if not text:
        return []
    requirements: list[ItemRequirement] = []
    for part in text.split(", "):
        match = _MATERIAL_RE.match(part)
        if match:
            requirements.append(
                ItemRequirement(match.group(1), int(match.group(2)))
            )
        else:
            requirements.append(ItemRequirement(part, 1))
    return requirements


def _build_child(
    raw: dict[str, Any], child_id: int, class_type: str,
) -> ChildMercenary:
    return ChildMercenary(
        id=child_id,
        name=str(raw["name"]),
        attribute=str(raw.get("attribute", "")),
        country=str(raw.get("country", "")),
        class_type=class_type,
        items=parse_crafting_materials(str(raw.get("materials", ""))),
    )


@lru_cache(maxsize=4)
def load_catalog(path: Path | None = None) -> tuple[Mercenary, ...]:
    """Load legendary mercenaries with resolved child mercenaries."""
    with open(path or Settings.CATALOG_PATH, encoding="utf-8") as f:
        data: dict[str, Any] = json.load(f)

    pools: dict[str, dict[int, ChildMercenary]] = {
        kind: {
            int(cid): _build_child(raw, int(cid), kind)
            for cid, raw in data.get(kind, {}).items()
        }
        for kind in (AWAKENED, MODIFIED)
    }

    mercenaries: list[Mercenary] = []
    for raw in data.get(LEGENDARY, []):
        children = [
            pools[kind][cid]
            for kind in (AWAKENED, MODIFIED)
            for cid in raw.get(kind, [])
            if cid in pools[kind]
        ]
        mercenaries.append(Mercenary(
            id=int(raw["id"]),
            name=str(raw["name"]),
            attribute=str(raw.get("attribute", "")),
            country=str(raw.get("country", "")),
            items=parse_crafting_materials(str(raw.get("materials", ""))),
            children=children,
        ))
    return tuple(mercenaries)


def get_modified_mercenary_items(path: Path | None = None) -> frozenset[str]:
    """Materials of modified mercenaries (not sold on the market)."""
    return frozenset(
        item.name
        for merc in load_catalog(path)
        for child in merc.children
        if child.class_type == MODIFIED
        for item in child.items
    )


def is_modified_mercenary_item(name: str, path: Path | None = None) -> bool:
    return name in get_modified_mercenary_items(path)


def get_all_unique_items(path: Path | None = None) -> list[str]:
    """Every market-tradable material, in first-seen catalog order."""
    seen: dict[str, None] = {}
    for merc in load_catalog(path):
        for item in merc.items:
            seen.setdefault(item.name, None)
        for child in merc.children:
            if child.class_type == MODIFIED:
                continue
            for item in child.items:
                seen.setdefault(item.name, None)
    return list(seen)


def _requirements_cost(
    items: list[ItemRequirement], prices: dict[str, ItemPrice],
) -> int:
    total = 0
    for req in items:
        info = prices.get(req.name)
        if info is not None and info.min_price > 0:
            total += info.min_price * req.quantity
    return total


def calculate_total_cost(
    mercenary: Mercenary, prices: dict[str, ItemPrice],
) -> CraftingCost:
    """Sum material costs; unpriced materials contribute nothing."""
    main_cost = _requirements_cost(mercenary.items, prices)
    child_cost = sum(
        _requirements_cost(child.items, prices)
        for child in mercenary.children
    )
    return CraftingCost(
        main_cost=main_cost,
        child_cost=child_cost,
        total_cost=main_cost + child_cost,
    )
