"""Level and experience system."""

from __future__ import annotations

from typing import Any

from game.character import ability_modifier
from game.constants import HIT_DICE, MAX_LEVEL


def exp_to_next(level: int) -> int:
    """Experience needed to advance from ``level`` to ``level + 1``."""
    return level * 1000


def hp_gain(class_name: str, constitution: int) -> int:
    """Fixed per-level HP gain: average hit die + CON modifier, at least 1."""
    die = HIT_DICE.get(class_name, 8)
    return max(1, die // 2 + 1 + ability_modifier(constitution))


def apply_experience(char: dict[str, Any], amount: int) -> dict[str, Any]:
    """Add experience to a character document in place.

    Surplus experience carries over and several levels may be gained at
    once. At the level cap experience keeps accumulating. Returns
    ``{"level_ups": [{"level", "hp_gain"}], "next_level_xp"}``.
    """
    char["experience"] = int(char.get("experience", 0)) + max(0, int(amount))
    level_ups: list[dict[str, int]] = []

    while char["level"] < MAX_LEVEL and char["experience"] >= exp_to_next(char["level"]):
        char["experience"] -= exp_to_next(char["level"])
        char["level"] += 1
        gain = hp_gain(char["class_name"], char["stats"].get("constitution", 10))
        hp = char["hp"]
        hp["max"] += gain
        hp["current"] = min(hp["max"], hp["current"] + gain)
        level_ups.append({"level": char["level"], "hp_gain": gain})

    return {
        "level_ups": level_ups,
        "next_level_xp": exp_to_next(char["level"]) if char["level"] < MAX_LEVEL else None,
    }
