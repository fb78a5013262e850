"""Dungeon reward math — experience, gold and escape penalties."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any

from game.constants import (
    DEFEAT_XP_RATIO,
    ENEMY_LEVEL_BONUS_XP,
    RARITY_PRESERVATION_BONUS,
)


def base_xp_for_level(level: int) -> int:
    """100 at level 1, +15% per level."""
    return math.floor(100 * 1.15 ** (level - 1))


def level_multiplier(recommended_level: int, level: int) -> float:
    """+20% per level the dungeon is above the character, -15% per level below."""
    diff = max(-5, min(5, recommended_level - level))
    if diff > 0:
        return 1 + diff * 0.2
    if diff < 0:
        return max(0.1, 1 + diff * 0.15)
    return 1.0


def failure_xp(dungeon: dict[str, Any], level: int) -> int:
    stage = dungeon["current_stage"]
    xp = (base_xp_for_level(level) * stage
          * level_multiplier(dungeon["recommended_level"], level))
    # Reached the boss room
    if stage == dungeon["max_stages"] - 1:
        xp *= 1.5
    return math.floor(xp)


def completion_xp(dungeon: dict[str, Any], level: int) -> int:
    base = base_xp_for_level(level)
    stage_bonus = dungeon["max_stages"] * base * 0.2
    difficulty_bonus = base * 0.1 if dungeon["recommended_level"] > level else 0
    mult = level_multiplier(dungeon["recommended_level"], level)
    return math.floor((base + stage_bonus + difficulty_bonus) * mult)


def unclaimed_gold(logs: list[dict[str, Any]]) -> int:
    """Gold offered by logs that nobody picked up."""
    total = 0
    for entry in logs:
        rewards = (entry.get("data") or {}).get("rewards") or {}
        if rewards.get("gold") and not rewards.get("gold_looted"):
            total += int(rewards["gold"])
    return total


def combat_xp(log_entry: dict[str, Any], level: int, victory: bool
              ) -> tuple[int, int]:
    """Returns (base_xp, bonus_xp) for resolving a combat log."""
    data = log_entry.get("data") or {}
    reward_xp = int((data.get("rewards") or {}).get("xp") or 0)
    if not victory:
        return math.floor(reward_xp * DEFEAT_XP_RATIO), 0
    bonus = sum(
        max(0, int(enemy.get("level", 0)) - level) * ENEMY_LEVEL_BONUS_XP
        for enemy in data.get("enemies") or []
    )
    return reward_xp, bonus


# ── Escape ───────────────────────────────────────────────────────

@dataclass
class EscapeOutcome:
    progress: float
    gold_penalty: int
    preserved_gold: int
    xp: int
    saved: list[dict[str, Any]] = field(default_factory=list)
    lost: list[dict[str, Any]] = field(default_factory=list)

    @property
    def final_gold(self) -> int:
        return max(0, self.preserved_gold - self.gold_penalty)


def escape_outcome(dungeon: dict[str, Any], character: dict[str, Any],
                   item_rarity: dict[int, str],
                   rng: random.Random | None = None) -> EscapeOutcome:
    """Roll the result of leaving a dungeon early.

    ``item_rarity`` maps staged item ids to their rarity. Each staged entry
    lands in ``saved`` or ``lost``.
    """
    rng = rng or random
    progress = dungeon["current_stage"] / dungeon["max_stages"]

    penalty_rate = max(0.05, 0.25 - progress * 0.15)
    outcome = EscapeOutcome(
        progress=progress,
        gold_penalty=math.floor(character["gold"] * penalty_rate),
        preserved_gold=math.floor(unclaimed_gold(dungeon["logs"]) * (0.5 + progress * 0.4)),
        xp=math.floor(failure_xp(dungeon, character["level"]) * (0.6 + progress * 0.4)),
    )

    keep_chance = 0.3 + progress * 0.4
    for staged in dungeon.get("temporary_inventory") or []:
        rarity = item_rarity.get(int(staged["item_id"]), "")
        chance = keep_chance + RARITY_PRESERVATION_BONUS.get(rarity, 0.0)
        if rng.random() < chance:
            outcome.saved.append(staged)
        else:
            outcome.lost.append(staged)
    return outcome
