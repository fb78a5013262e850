"""Document helpers — population of item references, logs, status docs."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException

if TYPE_CHECKING:
    from core.auth import AuthUser
    from core.db import Database

EQUIPMENT_SLOTS = ("weapon", "armor", "shield")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """User document without credentials."""
    return {k: v for k, v in user.items() if k != "password_hash"}


# ── Characters ───────────────────────────────────────────────────

async def populate_character(db: Database, char: dict[str, Any], *,
                             inventory: bool = True,
                             conn: Any = None) -> dict[str, Any]:
    """Return a copy of ``char`` with equipment (and inventory) item docs inlined.

    Inventory entries may repeat, so the populated list keeps that order and
    multiplicity. Ids that no longer resolve are dropped.
    """
    equipment = dict(char.get("equipment") or {})
    accessories = list(equipment.get("accessories") or [])
    ids = [equipment.get(slot) for slot in EQUIPMENT_SLOTS] + accessories
    if inventory:
        ids += list(char.get("inventory") or [])
    items = {it["id"]: it for it in await db.fetch_items(
        (i for i in ids if i is not None), conn=conn)}

    populated = dict(char)
    populated["equipment"] = {
        **{slot: items.get(equipment.get(slot)) for slot in EQUIPMENT_SLOTS},
        "accessories": [items[i] for i in accessories if i in items],
    }
    if inventory:
        populated["inventory"] = [
            items[i] for i in char.get("inventory") or [] if i in items
        ]
    return populated


async def owned_character(db: Database, character_id: int, user: AuthUser, *,
                          conn: Any = None, for_update: bool = False
                          ) -> dict[str, Any]:
    """Fetch by id then compare owners: 404 when missing, 403 when foreign."""
    char = await db.fetch_character(character_id, conn=conn, for_update=for_update)
    if char is None:
        raise HTTPException(status_code=404, detail="Character not found")
    if char["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to access this character")
    return char


def remove_one(entries: list[int], item_id: int) -> bool:
    """Remove a single occurrence of ``item_id``. False when absent."""
    try:
        entries.remove(item_id)
    except ValueError:
        return False
    return True


def is_equipped(char: dict[str, Any], item_id: int) -> bool:
    equipment = char.get("equipment") or {}
    if any(equipment.get(slot) == item_id for slot in EQUIPMENT_SLOTS):
        return True
    return item_id in (equipment.get("accessories") or [])


# ── Dungeon logs ─────────────────────────────────────────────────

def new_log(log_type: str, description: str, *, image: str | None = None,
            data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "id": secrets.token_hex(12),
        "type": log_type,
        "description": description,
        "image": image,
        "timestamp": utcnow().isoformat(),
        "data": data or {},
    }


def find_log(dungeon: dict[str, Any], log_id: str) -> dict[str, Any]:
    for entry in dungeon["logs"]:
        if entry.get("id") == log_id:
            return entry
    raise HTTPException(status_code=404, detail="Log not found")


def log_rewards(entry: dict[str, Any]) -> dict[str, Any]:
    return (entry.get("data") or {}).get("rewards") or {}


def mark_gold_looted(logs: list[dict[str, Any]]) -> None:
    for entry in logs:
        rewards = log_rewards(entry)
        if rewards:
            rewards["gold_looted"] = True


def staged_item_ids(dungeon: dict[str, Any]) -> list[int]:
    return [int(s["item_id"]) for s in dungeon.get("temporary_inventory") or []]


# ── Character status ─────────────────────────────────────────────

def default_status(active_dungeon: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "dungeon": {
            "is_active": active_dungeon is not None,
            "dungeon_id": active_dungeon["id"] if active_dungeon else None,
        },
        "labor": {"is_active": False},
    }


async def set_dungeon_flag(db: Database, character_id: int,
                           dungeon: dict[str, Any] | None, *,
                           conn: Any = None) -> dict[str, Any]:
    """Sync the derived dungeon flag, keeping labor and other keys."""
    record = await db.fetch_status(character_id, conn=conn)
    status = record["status"] if record else default_status()
    status["dungeon"] = {
        "is_active": dungeon is not None,
        "dungeon_id": dungeon["id"] if dungeon else None,
    }
    return await db.save_status(character_id, status, conn=conn)
