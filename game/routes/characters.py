"""Character routes — CRUD, healing, rewards and activity status."""

import logging
import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user
from game.character import (
    build_character,
    heal_cost,
    labor_reward,
    labor_window,
    needs_healing,
    normalize_stats,
)
from game.constants import CLASSES, EQUIPMENT_RESTRICTIONS, RACES
from game.documents import (
    EQUIPMENT_SLOTS,
    default_status,
    owned_character,
    populate_character,
)
from game.level import apply_experience

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/characters", tags=["characters"])


class CharacterCreateBody(BaseModel):
    name: Optional[str] = None
    class_name: Optional[str] = None
    race: Optional[str] = None
    stats: Optional[dict[str, int]] = None
    proficiencies: list[str] = []
    features: list[dict[str, Any]] = []
    profile_image: Optional[str] = None


class CharacterUpdateBody(BaseModel):
    name: Optional[str] = None
    stats: Optional[dict[str, int]] = None
    proficiencies: Optional[list[str]] = None
    features: Optional[list[dict[str, Any]]] = None
    spells: Optional[dict[str, Any]] = None
    equipment: Optional[dict[str, Any]] = None
    profile_image: Optional[str] = None


class HealBody(BaseModel):
    character_id: Optional[int] = None
    healing_cost: Optional[float] = None


class RewardBody(BaseModel):
    character_id: Optional[int] = None
    gold: Any = None
    experience: Any = 0


class StatusBody(BaseModel):
    character_id: Optional[int] = None
    status_type: Optional[str] = None
    data: Optional[dict[str, Any]] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


async def _scoped_character(character_id: int, user: AuthUser, *,
                            conn: Any = None, for_update: bool = False) -> dict:
    """The caller's character, or 404 whether missing or foreign."""
    char = await get_server().db.fetch_character(character_id, conn=conn,
                                                 for_update=for_update)
    if char is None or char["user_id"] != user.id:
        raise HTTPException(status_code=404, detail="Character not found")
    return char


async def _check_equipment(char: dict, equipment: dict[str, Any]) -> dict[str, Any]:
    """Validate an equipment layout against the inventory and class rules."""
    restrictions = EQUIPMENT_RESTRICTIONS[char["class_name"]]
    slots = {slot: equipment.get(slot) for slot in EQUIPMENT_SLOTS}
    accessories = list(equipment.get("accessories") or [])
    wanted = [i for i in slots.values() if i is not None] + accessories

    inventory = list(char.get("inventory") or [])
    for item_id in wanted:
        if item_id not in inventory:
            raise HTTPException(status_code=400, detail=f"Item {item_id} is not in inventory")
        inventory.remove(item_id)

    items = {it["id"]: it for it in await get_server().db.fetch_items(wanted)}
    weapon = items.get(slots["weapon"])
    if weapon and (weapon["type"] != "weapon"
                   or weapon.get("weapon_type") not in restrictions["weapons"]):
        raise HTTPException(status_code=400, detail="Weapon not usable by this class")
    armor = items.get(slots["armor"])
    if armor and armor["type"] not in restrictions["armor"]:
        raise HTTPException(status_code=400, detail="Armor not usable by this class")
    shield = items.get(slots["shield"])
    if shield and (shield["type"] != "shield" or not restrictions["shields"]):
        raise HTTPException(status_code=400, detail="Shield not usable by this class")
    if any(items.get(i, {}).get("type") != "accessory" for i in accessories):
        raise HTTPException(status_code=400, detail="Only accessories fit accessory slots")
    return {**slots, "accessories": accessories}


# ── Collection ───────────────────────────────────────────────────

@router.get("")
@api_errors("Internal Server Error")
async def list_characters(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    chars = await db.fetch_characters(user.id, offset=(page - 1) * limit, limit=limit)
    total = await db.count_characters(user.id)
    return respond({
        "characters": [await populate_character(db, c, inventory=False) for c in chars],
        "pagination": {"total": total, "page": page, "pages": math.ceil(total / limit)},
    })


@router.post("", status_code=201)
@api_errors("Internal Server Error")
async def create_character(body: CharacterCreateBody,
                           user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.name or not body.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    if body.class_name not in CLASSES:
        raise HTTPException(status_code=400, detail="Invalid character class")
    if body.race not in RACES:
        raise HTTPException(status_code=400, detail="Invalid character race")

    data = body.model_dump()
    data["name"] = body.name.strip()
    char = await get_server().db.create_character(build_character(user.id, data))
    log.info("Character created: %s (%s, id=%d, user=%d)",
             char["name"], char["class_name"], char["id"], user.id)
    return respond(char, status_code=201)


# ── Town services ────────────────────────────────────────────────

@router.post("/heal")
@api_errors("Internal Server Error")
async def heal_character(body: HealBody,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    custom_cost = math.ceil(body.healing_cost) if body.healing_cost is not None else None
    if custom_cost is not None and custom_cost <= 0:
        raise HTTPException(status_code=400, detail="Healing cost must be positive")

    db = get_server().db
    async with db.transaction() as conn:
        char = await _scoped_character(body.character_id, user, conn=conn, for_update=True)
        if await db.fetch_active_dungeon(char["id"], conn=conn):
            raise HTTPException(status_code=400, detail="Cannot heal while in a dungeon")

        cost = custom_cost if custom_cost is not None else heal_cost(char["level"])
        if char["gold"] < cost:
            raise HTTPException(status_code=400, detail="Insufficient gold for healing")
        if not needs_healing(char):
            raise HTTPException(status_code=400,
                                detail="Character is already at full health and resources")

        hp = {**char["hp"], "current": char["hp"]["max"]}
        resource = {**char["resource"], "current": char["resource"]["max"]}
        updated = await db.update_character(
            char["id"], {"hp": hp, "resource": resource, "gold": char["gold"] - cost},
            conn=conn,
        )
        populated = await populate_character(db, updated, conn=conn)
    log.info("Character healed: id=%d cost=%d", char["id"], cost)
    return respond(populated)


@router.post("/reward")
@api_errors("Failed to process reward")
async def reward_character(body: RewardBody,
                           user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not _is_number(body.gold):
        raise HTTPException(status_code=400,
                            detail="Character ID and gold amount are required")
    experience = body.experience if body.experience is not None else 0
    if not _is_number(experience):
        raise HTTPException(status_code=400, detail="Experience must be a number")
    if body.gold < 0 or experience < 0:
        raise HTTPException(status_code=400, detail="Reward amounts cannot be negative")

    gold, experience = int(body.gold), int(experience)
    db = get_server().db
    async with db.transaction() as conn:
        char = await owned_character(db, body.character_id, user, conn=conn, for_update=True)
        progress = apply_experience(char, experience)
        char["gold"] += gold
        await db.update_character(char["id"], {
            "gold": char["gold"], "level": char["level"],
            "experience": char["experience"], "hp": char["hp"],
        }, conn=conn)

    return respond({
        "success": True,
        "message": f"Successfully added {gold} gold and {experience} experience to character",
        "character": {
            "id": char["id"], "name": char["name"], "gold": char["gold"],
            "level": char["level"], "experience": char["experience"],
        },
        "level_up": bool(progress["level_ups"]),
        "level_ups": progress["level_ups"],
        "next_level_xp": progress["next_level_xp"],
    })


# ── Activity status ──────────────────────────────────────────────

@router.get("/status")
@api_errors("Failed to check character status")
async def get_status(character_id: Optional[int] = None,
                     user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not character_id:
        raise HTTPException(status_code=400, detail="Character ID is required")
    db = get_server().db
    await owned_character(db, character_id, user)
    active = await db.fetch_active_dungeon(character_id)

    record = await db.fetch_status(character_id)
    status = record["status"] if record else default_status()
    status["dungeon"] = default_status(active)["dungeon"]
    record = await db.save_status(character_id, status)
    return respond({"success": True, "status": record})


@router.post("/status")
@api_errors("Failed to update character status")
async def update_status(body: StatusBody,
                        user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.status_type or body.data is None:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if body.status_type == "dungeon":
        raise HTTPException(status_code=400, detail="Cannot directly modify dungeon status")

    db = get_server().db
    async with db.transaction() as conn:
        char = await owned_character(db, body.character_id, user, conn=conn, for_update=True)
        active = await db.fetch_active_dungeon(char["id"], conn=conn)
        data = dict(body.data)
        if body.status_type == "labor" and data.get("is_active"):
            if active:
                raise HTTPException(status_code=400,
                                    detail="Cannot start labor while in a dungeon")
            start, end = labor_window()
            data.setdefault("start_time", start.isoformat())
            data.setdefault("end_time", end.isoformat())
            data.setdefault("reward", labor_reward(char["level"]))

        record = await db.fetch_status(char["id"], conn=conn)
        status = record["status"] if record else default_status()
        status["dungeon"] = default_status(active)["dungeon"]
        status[body.status_type] = data
        record = await db.save_status(char["id"], status, conn=conn)
    return respond({"success": True, "status": record})


# ── Single character ─────────────────────────────────────────────

@router.get("/{character_id}")
@api_errors("Internal Server Error")
async def get_character(character_id: int,
                        user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    char = await _scoped_character(character_id, user)
    return respond(await populate_character(db, char))


@router.put("/{character_id}")
@api_errors("Internal Server Error")
async def update_character(character_id: int, body: CharacterUpdateBody,
                           user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    char = await _scoped_character(character_id, user)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise HTTPException(status_code=400, detail="Name is required")
    if "stats" in changes:
        changes["stats"] = normalize_stats({**char["stats"], **changes["stats"]})
    if "equipment" in changes:
        changes["equipment"] = await _check_equipment(char, changes["equipment"])

    updated = await db.update_character(character_id, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="Character not found")
    return respond(await populate_character(db, updated))


@router.delete("/{character_id}", status_code=204)
@api_errors("Internal Server Error")
async def delete_character(character_id: int,
                           user: AuthUser = Depends(current_user)) -> Response:
    if not await get_server().db.delete_character(character_id, user.id):
        raise HTTPException(status_code=404, detail="Character not found")
    log.info("Character deleted: id=%d (user=%d)", character_id, user.id)
    return Response(status_code=204)
