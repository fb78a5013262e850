"""Character rules — creation defaults, healing and labor pricing."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any

from game.constants import (
    ABILITIES,
    CLASS_RESOURCES,
    DEFAULT_RESOURCE,
    HIT_DICE,
    LABOR_HOURS,
    STARTING_GOLD_DICE,
    SPELL_SLOTS,
)


def ability_modifier(score: int) -> int:
    """D&D ability modifier: floor((score - 10) / 2)."""
    return (int(score) - 10) // 2


def hit_dice_label(class_name: str) -> str:
    return f"d{HIT_DICE[class_name]}"


def initial_hp(class_name: str, constitution: int) -> int:
    """Level-1 HP: full hit die + CON modifier, at least 1."""
    return max(1, HIT_DICE[class_name] + ability_modifier(constitution))


def roll_starting_gold(class_name: str, rng: random.Random | None = None) -> int:
    count, sides, multiplier = STARTING_GOLD_DICE[class_name]
    rng = rng or random
    return sum(rng.randint(1, sides) for _ in range(count)) * multiplier


def spell_slots(class_name: str) -> list[dict[str, int]]:
    totals = SPELL_SLOTS.get(class_name)
    if totals is None:
        return []
    return [
        {"level": lvl, "total": total, "used": 0}
        for lvl, total in enumerate(totals, start=1)
    ]


def class_resource(class_name: str) -> dict[str, Any]:
    maximum, name = CLASS_RESOURCES.get(class_name, DEFAULT_RESOURCE)
    return {"current": maximum, "max": maximum, "name": name}


def normalize_stats(stats: dict[str, Any] | None) -> dict[str, int]:
    stats = stats or {}
    return {ab: int(stats.get(ab, 10)) for ab in ABILITIES}


def build_character(user_id: int, data: dict[str, Any],
                    rng: random.Random | None = None) -> dict[str, Any]:
    """Fill in everything the server derives for a new character.

    ``data`` carries the player's choices (name, class_name, race, stats,
    proficiencies, features, profile_image). Class and race must already be
    validated.
    """
    class_name = data["class_name"]
    stats = normalize_stats(data.get("stats"))
    hp = initial_hp(class_name, stats["constitution"])
    return {
        "user_id": user_id,
        "name": data["name"],
        "class_name": class_name,
        "race": data["race"],
        "level": 1,
        "experience": 0,
        "stats": stats,
        "proficiencies": list(data.get("proficiencies") or []),
        "features": list(data.get("features") or []),
        "hp": {"current": hp, "max": hp, "hit_dice": hit_dice_label(class_name)},
        "spells": {"known": [], "slots": spell_slots(class_name)},
        "resource": class_resource(class_name),
        "gold": roll_starting_gold(class_name, rng),
        "profile_image": data.get("profile_image") or "",
    }


# ── Town services ────────────────────────────────────────────────

def heal_cost(level: int) -> int:
    return 50 + (level - 1) * 10


def needs_healing(character: dict[str, Any]) -> bool:
    hp = character["hp"]
    res = character.get("resource") or {}
    return (hp["current"] < hp["max"]
            or res.get("current", 0) < res.get("max", 0))


def labor_reward(level: int) -> int:
    return 300 + level * 15


def labor_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    start = now or datetime.now(timezone.utc)
    return start, start + timedelta(hours=LABOR_HOURS)
