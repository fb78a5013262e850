"""Prompt builders for the text model, and checks on what comes back."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from game.constants import (
    DIFFICULTIES,
    EQUIPMENT_RESTRICTIONS,
    ITEM_BASE_VALUES,
    LOG_TYPES,
    MAX_STAGES,
    MIN_STAGES,
    STAGE_RANGES,
    STATS_MODIFIERS,
)
from game.items import Ability

log = logging.getLogger(__name__)


class GeneratedContentError(ValueError):
    """The model's JSON does not describe a usable dungeon or scene."""


# ── Dungeon generation ───────────────────────────────────────────

def dungeon_prompt(level: int) -> str:
    return f"""
D&D 5e 규칙 기반의 던전을 생성해주세요. JSON 형식으로 다음 구조를 따라주세요:

{{
  "dungeon_name": string,      // 한국어로 된 독특하고 분위기 있는 던전 이름
  "concept": string,           // 한국어로 된 던전의 설정과 분위기 설명 (2-3문장)
  "max_stages": number,        // 층 수 ({MIN_STAGES}-{MAX_STAGES})
  "difficulty": "easy" | "normal" | "hard",
  "first_scene": {{
    "description": string,     // 한국어로 된 입구 장면 상세 설명
    "image_prompt": string     // 영어로 된 이미지 생성용 프롬프트
  }}
}}

Requirements:
- D&D 5e 레벨 {level} 캐릭터에 적합한 난이도로 설정
- 던전 난이도와 구조:
  * easy (CR {level - 1} ~ {level}): 3-4층
  * normal (CR {level} ~ {level + 1}): 4-5층
  * hard (CR {level + 1} ~ {level + 2}): 5-7층

환경 묘사시 고려사항:
- D&D의 전형적인 환경 유형 사용
- 잠재적 위험과 보물에 대한 암시
- 주요 몬스터나 적대 세력의 흔적

image_prompt는 다음 형식으로:
"fantasy D&D dungeon entrance, [environment type], [key features], [atmosphere], [time of day], detailed, dramatic lighting"

Return ONLY the JSON object with no additional text.
""".strip()


def check_dungeon(raw: dict[str, Any]) -> dict[str, Any]:
    """Normalize a generated dungeon; raise GeneratedContentError if unusable."""
    scene = raw.get("first_scene")
    if not raw.get("dungeon_name") or not raw.get("concept") or not isinstance(scene, dict):
        raise GeneratedContentError("Generated dungeon is missing required fields")
    difficulty = raw.get("difficulty")
    if difficulty not in DIFFICULTIES:
        raise GeneratedContentError(f"Invalid difficulty: {difficulty!r}")
    try:
        stages = int(raw.get("max_stages") or MIN_STAGES)
    except (TypeError, ValueError) as exc:
        raise GeneratedContentError("max_stages is not a number") from exc
    stages = min(max(stages, MIN_STAGES), MAX_STAGES)
    low, high = STAGE_RANGES[difficulty]
    if not low <= stages <= high:
        raise GeneratedContentError(
            f"{stages} stages does not fit difficulty {difficulty}"
        )
    return {
        "dungeon_name": str(raw["dungeon_name"]),
        "concept": str(raw["concept"]),
        "difficulty": difficulty,
        "max_stages": stages,
        "first_scene": {
            "description": str(scene.get("description") or ""),
            "image_prompt": scene.get("image_prompt"),
        },
    }


# ── Scene payloads ───────────────────────────────────────────────

class _Generated(BaseModel):
    """Model output where null means "use the default"."""

    @field_validator("*", mode="before")
    @classmethod
    def _null_is_default(cls, v: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields[info.field_name]
        if v is None and not field.is_required():
            return field.get_default(call_default_factory=True)
        return v


class EnemyAttack(_Generated):
    name: str = ""
    damage: str = "1d4"
    to_hit: int = 0

    @field_validator("damage", mode="before")
    @classmethod
    def _flat_damage(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class Enemy(_Generated):
    name: str = Field(min_length=1)
    level: int = Field(default=1, ge=0)
    hp: int = Field(default=10, ge=0)
    ac: int = 10
    attacks: list[EnemyAttack] = Field(default_factory=list)


class TrapOutcome(_Generated):
    description: str = ""


class TrapOutcomes(_Generated):
    success: TrapOutcome = Field(default_factory=TrapOutcome)
    failure: TrapOutcome = Field(default_factory=TrapOutcome)


class Trap(_Generated):
    dc: int = Field(default=10, ge=1)
    ability: Ability = "dexterity"
    damage: str = "1d6"
    outcomes: TrapOutcomes = Field(default_factory=TrapOutcomes)

    @field_validator("damage", mode="before")
    @classmethod
    def _flat_damage(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class SceneRewards(_Generated):
    gold: int = Field(default=0, ge=0)
    xp: int = Field(default=0, ge=0)
    items: list[Any] = Field(default_factory=list)


class SceneEffects(_Generated):
    hp_change: int = 0
    stage_progress: bool = False


def _checked(model: type[BaseModel], raw: Any, what: str) -> dict[str, Any] | None:
    """Validate one part of a generated scene; log and drop it if malformed."""
    try:
        return model.model_validate(raw).model_dump()
    except ValidationError as exc:
        log.warning("Generated %s rejected: %s (%r)", what, exc, raw)
        return None


# ── Scenes ───────────────────────────────────────────────────────

def scene_prompt(dungeon: dict[str, Any], character: dict[str, Any], action: str) -> str:
    stage = dungeon["current_stage"]
    max_stages = dungeon["max_stages"]
    latest = dungeon["logs"][-1]["description"] if dungeon["logs"] else ""
    final_note = (
        "This is the final stage. Focus on concluding events."
        if stage == max_stages - 1
        else "Progress to next stage when appropriate."
    )
    return f"""
Based on the following D&D 5e dungeon context and player action, generate the next scene:

Current dungeon: {dungeon["dungeon_name"]}
Current stage: {stage + 1}/{max_stages}
Concept: {dungeon["concept"]}
Character level: {character["level"]}
Player HP: {dungeon["player_hp"]}/{character["hp"]["max"]}
Latest scene: {latest}

Player action: "{action}"

Response format (JSON):
{{
  "description": string,
  "type": "combat" | "trap" | "treasure" | "story" | "rest",
  "image_prompt": string,
  "effects": {{
    "hp_change": number,
    "stage_progress": boolean
  }},
  "combat": {{
    "enemies": [{{"name": string, "level": number, "hp": number, "ac": number,
                  "attacks": [{{"name": string, "damage": string, "to_hit": number}}]}}]
  }},
  "trap": {{
    "dc": number,
    "ability": "strength" | "dexterity" | "constitution" | "intelligence" | "wisdom" | "charisma",
    "damage": string,
    "outcomes": {{"success": {{"description": string}}, "failure": {{"description": string}}}}
  }},
  "rewards": {{
    "gold": number,
    "xp": number,
    "items": [{{
      "name": string,
      "type": "weapon" | "light-armor" | "medium-armor" | "heavy-armor" | "shield" | "accessory" | "consumable",
      "weapon_type": "simple-melee" | "simple-ranged" | "martial-melee" | "martial-ranged" | "finesse" | "magical",
      "rarity": "common" | "uncommon" | "rare" | "epic" | "legendary",
      "stats": {{"damage": string, "defense": number,
                 "effects": [{{"type": "strength" | "dexterity" | "constitution" | "intelligence" | "wisdom" | "charisma", "value": string}}]}},
      "required_level": number,
      "value": number,
      "description": string
    }}]
  }}
}}

"combat", "trap" and "rewards" are optional.

Consider:
- Action consequences based on D&D rules
- Character level and current dungeon stage
- Balance rewards based on stage/difficulty
- Combat difficulty appropriate for character level

Important notes for stage progression:
- Set stage_progress to true when the action completes current stage objectives
- Consider room exploration, combat completion, puzzle solving as stage completion triggers

{final_note}

Return ONLY the JSON object with no additional text.
""".strip()


def check_scene(raw: dict[str, Any]) -> dict[str, Any]:
    """Normalize a generated scene; raise GeneratedContentError if unusable.

    Malformed enemies are dropped one by one. A malformed trap or reward
    block is dropped whole. Reward items are validated later, on storage.
    """
    if not isinstance(raw, dict) or not raw.get("description"):
        raise GeneratedContentError("Generated scene has no description")
    scene_type = raw.get("type") if raw.get("type") in LOG_TYPES else "story"
    effects = _checked(SceneEffects, raw.get("effects") or {}, "effects")
    if effects is None:
        effects = SceneEffects().model_dump()

    combat = raw.get("combat")
    enemies = []
    if isinstance(combat, dict) and isinstance(combat.get("enemies"), list):
        for raw_enemy in combat["enemies"]:
            enemy = _checked(Enemy, raw_enemy, "enemy")
            if enemy:
                enemies.append(enemy)

    trap = _checked(Trap, raw["trap"], "trap") if raw.get("trap") else None
    rewards = _checked(SceneRewards, raw["rewards"], "rewards") if raw.get("rewards") else None
    return {
        "description": str(raw["description"]),
        "type": scene_type,
        "image_prompt": raw.get("image_prompt"),
        "hp_change": effects["hp_change"],
        "stage_progress": effects["stage_progress"],
        "enemies": enemies or None,
        "trap": trap,
        "rewards": rewards,
    }


# ── Markets ──────────────────────────────────────────────────────

def market_items_prompt(level: int, class_name: str, count: int) -> str:
    restrictions = EQUIPMENT_RESTRICTIONS[class_name]
    modifiers = "\n".join(
        f"  * {rarity.capitalize()}: +{low} to +{high}"
        for rarity, (low, high) in STATS_MODIFIERS.items()
    )
    values = "\n".join(
        f"  * {rarity.capitalize()}: {low}-{high}"
        for rarity, (low, high) in ITEM_BASE_VALUES.items()
    )
    return f"""
Create {count} unique fantasy RPG items for D&D 5E system.
Market Type: secret
Player Class: {class_name}
Player Level: {level}

Item Type Restrictions:
- ONLY create equipment items (NO potions, scrolls, or consumables)
- Focus on weapons, armor, shields, and accessories

Class Restrictions:
- Allowed Weapons: {", ".join(restrictions["weapons"])}
- Allowed Armor: {", ".join(restrictions["armor"])}
- Can use shields: {str(restrictions["shields"]).lower()}

Equipment Guidelines:
- Weapons follow D&D damage dice (1d4, 1d6, 1d8, 1d10, 1d12, 2d6)
- Armor provides base AC (Light: 11-12, Medium: 13-15, Heavy: 14-18)
- Stats modifiers by rarity:
{modifiers}
- Gold value by rarity:
{values}
- Effects only modify abilities: strength, dexterity, constitution, intelligence, wisdom, charisma

Balance Guidelines:
- Items should be appropriate for player level ({level})
- Focus on rare and unique magical equipment
- Equipment types must be one of: weapon, light-armor, medium-armor, heavy-armor, shield, accessory

Return a JSON object {{"items": [...]}} where each item has:
name, type, weapon_type (weapons only), rarity,
stats {{damage, defense, effects [{{type, value}}]}}, required_level, value, description.
""".strip()


# ── Combat illustration ──────────────────────────────────────────

def combat_image_prompt(scene: dict[str, Any]) -> str:
    return f"""
Write one English prompt for a text-to-image model that illustrates this
fantasy RPG combat scene. Describe the setting, the combatants and the
decisive moment in a single paragraph of at most 60 words. Do not include
any text, captions or UI elements.

Scene:
{scene}

Return only the prompt.
""".strip()
