"""Game tables — classes, races, items, markets."""

from __future__ import annotations

MAX_LEVEL = 20

ABILITIES = (
    "strength", "dexterity", "constitution",
    "intelligence", "wisdom", "charisma",
)

RACES = ("human", "dwarf", "elf", "halfling", "dragonborn", "tiefling")

# ── Classes ──────────────────────────────────────────────────────
# hit die sides per class
HIT_DICE: dict[str, int] = {
    "barbarian": 12,
    "fighter": 10, "paladin": 10, "ranger": 10,
    "bard": 8, "cleric": 8, "druid": 8, "monk": 8, "rogue": 8, "warlock": 8,
    "sorcerer": 6, "wizard": 6,
}

CLASSES = tuple(HIT_DICE)

# (count, sides, multiplier): countDsides × multiplier
STARTING_GOLD_DICE: dict[str, tuple[int, int, int]] = {
    "barbarian": (2, 4, 10),
    "bard": (5, 4, 10),
    "cleric": (5, 4, 10),
    "druid": (2, 4, 10),
    "fighter": (5, 4, 10),
    "monk": (5, 4, 1),
    "paladin": (5, 4, 10),
    "ranger": (5, 4, 10),
    "rogue": (4, 4, 10),
    "sorcerer": (3, 4, 10),
    "warlock": (4, 4, 10),
    "wizard": (4, 4, 10),
}

# Level-1 spell slots: [1st-level total, 2nd-level total]
SPELL_SLOTS: dict[str, tuple[int, int]] = {
    "wizard": (2, 0), "sorcerer": (2, 0), "cleric": (2, 0),
    "druid": (2, 0), "bard": (2, 0),
    "warlock": (1, 0),
    "paladin": (0, 0), "ranger": (0, 0),
}

# (max, name)
CLASS_RESOURCES: dict[str, tuple[int, str]] = {
    "wizard": (20, "Mana"), "sorcerer": (20, "Mana"),
    "cleric": (20, "Mana"), "druid": (20, "Mana"),
    "bard": (15, "Mana"), "warlock": (15, "Mana"),
    "barbarian": (10, "Rage"),
    "monk": (10, "Ki"),
    "paladin": (15, "Divine Power"),
    "ranger": (15, "Focus"),
    "fighter": (10, "Stamina"),
    "rogue": (10, "Energy"),
}
DEFAULT_RESOURCE = (10, "Energy")

# ── Items ────────────────────────────────────────────────────────

ARMOR_TYPES = ("light-armor", "medium-armor", "heavy-armor")

_SIMPLE = ("simple-melee", "simple-ranged")
_MARTIAL = ("martial-melee", "martial-ranged")

EQUIPMENT_RESTRICTIONS: dict[str, dict] = {
    "barbarian": {"weapons": (*_SIMPLE, *_MARTIAL),
                  "armor": ("light-armor", "medium-armor"), "shields": True},
    "bard": {"weapons": (*_SIMPLE, "finesse", "magical"),
             "armor": ("light-armor", "medium-armor"), "shields": False},
    "cleric": {"weapons": (*_SIMPLE, "magical"),
               "armor": ARMOR_TYPES, "shields": True},
    "druid": {"weapons": (*_SIMPLE, "magical"),
              "armor": ("light-armor", "medium-armor"), "shields": True},
    "fighter": {"weapons": (*_SIMPLE, *_MARTIAL, "finesse"),
                "armor": ARMOR_TYPES, "shields": True},
    "monk": {"weapons": (*_SIMPLE, "finesse"),
             "armor": ("light-armor",), "shields": False},
    "paladin": {"weapons": (*_SIMPLE, *_MARTIAL),
                "armor": ARMOR_TYPES, "shields": True},
    "ranger": {"weapons": (*_SIMPLE, "martial-ranged", "finesse"),
               "armor": ("light-armor", "medium-armor"), "shields": True},
    "rogue": {"weapons": ("simple-melee", "finesse"),
              "armor": ("light-armor",), "shields": False},
    "sorcerer": {"weapons": (*_SIMPLE, "magical"),
                 "armor": ("light-armor",), "shields": False},
    "warlock": {"weapons": (*_SIMPLE, "magical"),
                "armor": ("light-armor",), "shields": False},
    "wizard": {"weapons": ("simple-melee", "magical"),
               "armor": ("light-armor",), "shields": False},
}

# Stat bonus range per rarity (min, max)
STATS_MODIFIERS: dict[str, tuple[int, int]] = {
    "common": (1, 2),
    "uncommon": (2, 3),
    "rare": (3, 4),
    "epic": (4, 5),
    "legendary": (5, 6),
}

ITEM_BASE_VALUES: dict[str, tuple[int, int]] = {
    "common": (50, 200),
    "uncommon": (200, 1000),
    "rare": (1000, 5000),
    "epic": (5000, 20000),
    "legendary": (20000, 50000),
}

# Extra item-keep chance on escape, by rarity
RARITY_PRESERVATION_BONUS: dict[str, float] = {
    "rare": 0.1,
    "epic": 0.2,
    "legendary": 0.3,
}

# ── Markets ──────────────────────────────────────────────────────

MARKET_TYPE_MULTIPLIERS: dict[str, tuple[float, float]] = {
    "normal": (1.0, 1.0),
    "black": (1.5, 2.0),
    "secret": (2.5, 4.0),
}
MARKET_ITEM_COUNTS = {"secret": 3, "black": 4}
BLACK_MARKET_LEVEL_SPAN = 3
SELL_RATIO = 0.6

# ── Dungeons ─────────────────────────────────────────────────────

DIFFICULTIES = ("easy", "normal", "hard")
STAGE_RANGES: dict[str, tuple[int, int]] = {
    "easy": (3, 4),
    "normal": (4, 5),
    "hard": (5, 7),
}
MIN_STAGES = 3
MAX_STAGES = 7
RECOMMENDED_LEVEL_OFFSET = {"easy": 0, "normal": 1, "hard": 2}
LOG_TYPES = ("story", "combat", "trap", "treasure", "rest")

FAIL_GOLD_RATIO = 0.2
DEFEAT_XP_RATIO = 0.3
ENEMY_LEVEL_BONUS_XP = 50

# ── Town ─────────────────────────────────────────────────────────

LABOR_HOURS = 3
