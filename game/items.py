"""Item catalog and validation of generated items."""

from __future__ import annotations

import logging
import math
import random
import re
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from game.constants import ARMOR_TYPES, MARKET_TYPE_MULTIPLIERS, SELL_RATIO

log = logging.getLogger(__name__)

DAMAGE_DICE_RE = re.compile(r"^\d+d\d+$")

ItemType = Literal[
    "weapon", "light-armor", "medium-armor", "heavy-armor",
    "shield", "accessory", "consumable",
]
WeaponType = Literal[
    "simple-melee", "simple-ranged", "martial-melee", "martial-ranged",
    "finesse", "magical",
]
Rarity = Literal["common", "uncommon", "rare", "epic", "legendary"]
Ability = Literal[
    "strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma",
]


class ItemEffect(BaseModel):
    type: Ability
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return str(v) if isinstance(v, (int, float)) else v


class ItemStats(BaseModel):
    damage: Optional[str] = None
    defense: Optional[int] = None
    effects: list[ItemEffect] = Field(default_factory=list)


class GeneratedItem(BaseModel):
    """An item produced by the model, before it is stored."""

    name: str = Field(min_length=1)
    type: ItemType
    weapon_type: Optional[WeaponType] = None
    rarity: Rarity
    stats: ItemStats
    required_level: int = Field(ge=1, le=20)
    value: int = Field(ge=0)
    description: str = ""


class ItemRuleError(ValueError):
    pass


def validate_item(raw: Any) -> dict[str, Any]:
    """Validate one generated item. Raises ValidationError or ItemRuleError."""
    item = GeneratedItem.model_validate(raw)
    if item.type == "weapon":
        if not item.weapon_type:
            raise ItemRuleError("weapon requires weapon_type")
        if not item.stats.damage:
            raise ItemRuleError("weapon requires damage")
    if item.type in ARMOR_TYPES and not item.stats.defense:
        raise ItemRuleError("armor requires defense")
    if item.stats.damage and not DAMAGE_DICE_RE.match(item.stats.damage):
        raise ItemRuleError("damage must be NdM dice (e.g. 1d6)")
    return item.model_dump()


def validate_generated_items(raw_items: Any, *, allow_consumables: bool = True
                             ) -> list[dict[str, Any]]:
    """Keep only the items that pass validation; log and drop the rest."""
    if not isinstance(raw_items, list):
        return []
    valid = []
    for raw in raw_items:
        try:
            item = validate_item(raw)
        except (ValidationError, ItemRuleError) as exc:
            log.warning("Generated item rejected: %s (%r)", exc, raw)
            continue
        if not allow_consumables and item["type"] == "consumable":
            log.info("Generated consumable dropped: %s", item["name"])
            continue
        valid.append(item)
    return valid


# ── Catalog ──────────────────────────────────────────────────────

def load_base_items(path: str | Path) -> list[dict[str, Any]]:
    """Read the market catalog YAML."""
    with open(path, encoding="utf-8") as f:
        items = yaml.safe_load(f) or []
    for item in items:
        item.setdefault("weapon_type", None)
        item.setdefault("description", "")
        stats = item.setdefault("stats", {})
        stats.setdefault("effects", [])
    return items


# ── Prices ───────────────────────────────────────────────────────

def market_price(value: int, market_type: str,
                 rng: random.Random | None = None) -> int:
    low, high = MARKET_TYPE_MULTIPLIERS.get(market_type, MARKET_TYPE_MULTIPLIERS["normal"])
    rng = rng or random
    return math.floor(value * rng.uniform(low, high))


def sell_price(value: int) -> int:
    return math.floor(value * SELL_RATIO)
