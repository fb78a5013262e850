"""Dungeon routes — run lifecycle, scene generation, combat/trap results, loot."""

import logging
from typing import Any, Optional

import asyncpg
from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user
from game.constants import FAIL_GOLD_RATIO, RECOMMENDED_LEVEL_OFFSET
from game.documents import (
    find_log,
    log_rewards,
    mark_gold_looted,
    new_log,
    owned_character,
    populate_character,
    remove_one,
    set_dungeon_flag,
    staged_item_ids,
    utcnow,
)
from game.items import validate_generated_items
from game.level import apply_experience
from game.prompts import check_dungeon, check_scene, dungeon_prompt, scene_prompt
from game.rewards import (
    combat_xp,
    completion_xp,
    escape_outcome,
    failure_xp,
    unclaimed_gold,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dungeon", tags=["dungeon"])


class InitializeBody(BaseModel):
    character_id: Optional[int] = None


class ActionBody(BaseModel):
    dungeon_id: Optional[int] = None
    action: Optional[str] = None


class UsedItem(BaseModel):
    item_id: int


class CombatResult(BaseModel):
    victory: bool
    remaining_hp: int = 0
    used_items: list[UsedItem] = []


class CombatResultBody(BaseModel):
    dungeon_id: Optional[int] = None
    character_id: Optional[int] = None
    result: Optional[CombatResult] = None


class TrapResult(BaseModel):
    success: bool
    roll: int = 0
    damage: int = 0


class TrapResultBody(BaseModel):
    dungeon_id: Optional[int] = None
    log_id: Optional[str] = None
    result: Optional[TrapResult] = None


class LootBody(BaseModel):
    dungeon_id: Optional[int] = None
    log_id: Optional[str] = None
    item_id: Optional[int] = None


class LootGoldBody(BaseModel):
    dungeon_id: Optional[int] = None
    log_id: Optional[str] = None


class FinishBody(BaseModel):
    character_id: Optional[int] = None
    dungeon_id: Optional[int] = None


class ForfeitBody(BaseModel):
    dungeon_id: Optional[int] = None


# ── Helpers ──────────────────────────────────────────────────────

async def _active_dungeon(db: Any, dungeon_id: int, *, conn: Any = None,
                          for_update: bool = False) -> dict[str, Any]:
    dungeon = await db.fetch_dungeon(dungeon_id, conn=conn, for_update=for_update)
    if dungeon is None or not dungeon["active"]:
        raise HTTPException(status_code=404, detail="Active dungeon not found")
    return dungeon


async def _run_character(db: Any, dungeon: dict[str, Any], user: AuthUser, *,
                         character_id: int | None = None, conn: Any = None
                         ) -> dict[str, Any]:
    """The character running ``dungeon``, locked, checked against the caller."""
    char = await owned_character(db, character_id or dungeon["character_id"], user,
                                 conn=conn, for_update=True)
    if char["id"] != dungeon["character_id"]:
        raise HTTPException(status_code=403,
                            detail="Dungeon does not belong to this character")
    return char


def _clamp_hp(value: int, char: dict[str, Any]) -> int:
    return max(0, min(int(value), char["hp"]["max"]))


async def _with_character(db: Any, dungeon: dict[str, Any], char: dict[str, Any], *,
                          conn: Any = None) -> dict[str, Any]:
    return {**dungeon, "character": await populate_character(db, char, conn=conn)}


async def _drop_staged(db: Any, char: dict[str, Any], staged: list[dict[str, Any]], *,
                       conn: Any) -> None:
    """Remove staged loot from the inventory and delete the items."""
    ids = [int(s["item_id"]) for s in staged]
    for item_id in ids:
        remove_one(char["inventory"], item_id)
    await db.delete_items(ids, conn=conn)


async def _finish(db: Any, dungeon: dict[str, Any], *, status: str,
                  rewards: dict[str, int], conn: Any,
                  loot_gold: bool = True) -> dict[str, Any]:
    """Close a run: clear staging, settle log gold, clear the activity flag."""
    logs = dungeon["logs"]
    if loot_gold:
        mark_gold_looted(logs)
    updated = await db.update_dungeon(dungeon["id"], {
        "active": False,
        "status": status,
        "completed_at": utcnow(),
        "rewards": rewards,
        "temporary_inventory": [],
        "logs": logs,
    }, conn=conn)
    await set_dungeon_flag(db, dungeon["character_id"], None, conn=conn)
    log.info("Dungeon %d %s: rewards=%s", dungeon["id"], status, rewards)
    return updated


def _progress(dungeon: dict[str, Any]) -> dict[str, int]:
    return {
        "current_stage": dungeon["current_stage"],
        "max_stages": dungeon["max_stages"],
        "progress_percentage": dungeon["current_stage"] * 100 // dungeon["max_stages"],
    }


# ── Start / inspect ──────────────────────────────────────────────

@router.post("/initialize")
@api_errors("Failed to initialize dungeon")
async def initialize_dungeon(body: InitializeBody,
                             user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id:
        raise HTTPException(status_code=400, detail="Character ID is required")

    server = get_server()
    db = server.db
    char = await owned_character(db, body.character_id, user)
    if await db.fetch_active_dungeon(char["id"]):
        raise HTTPException(status_code=400, detail="Character already has an active dungeon")
    if char["hp"]["current"] <= 0:
        raise HTTPException(status_code=400, detail="Character needs healing before entering a dungeon")

    generated = check_dungeon(await server.ai.generate_json(dungeon_prompt(char["level"])))
    scene = generated["first_scene"]
    image = await server.ai.generate_image(scene["image_prompt"])

    try:
        async with db.transaction() as conn:
            dungeon = await db.create_dungeon({
                "character_id": char["id"],
                "dungeon_name": generated["dungeon_name"],
                "concept": generated["concept"],
                "difficulty": generated["difficulty"],
                "recommended_level": char["level"] + RECOMMENDED_LEVEL_OFFSET[generated["difficulty"]],
                "current_stage": 0,
                "max_stages": generated["max_stages"],
                "can_escape": generated["difficulty"] != "hard",
                "player_hp": char["hp"]["current"],
                "active": True,
                "status": "active",
                "temporary_inventory": [],
                "logs": [new_log("story", scene["description"], image=image)],
                "rewards": {},
            }, conn=conn)
            await set_dungeon_flag(db, char["id"], dungeon, conn=conn)
    except asyncpg.UniqueViolationError as exc:
        raise HTTPException(status_code=400,
                            detail="Character already has an active dungeon") from exc

    log.info("Dungeon %d started: %s (%s, %d stages) for character %d",
             dungeon["id"], dungeon["dungeon_name"], dungeon["difficulty"],
             dungeon["max_stages"], char["id"])
    return respond({"success": True, "dungeon": await _with_character(db, dungeon, char)})


@router.get("/active")
@api_errors("Failed to check active dungeon")
async def active_dungeon(character_id: Optional[int] = None,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not character_id:
        raise HTTPException(status_code=400, detail="Character ID is required")
    db = get_server().db
    char = await owned_character(db, character_id, user)
    dungeon = await db.fetch_active_dungeon(char["id"])
    return respond({
        "success": True,
        "dungeon": await _with_character(db, dungeon, char) if dungeon else None,
    })


# ── Scenes ───────────────────────────────────────────────────────

@router.post("/action")
@api_errors("Failed to process dungeon action")
async def dungeon_action(body: ActionBody,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id or not body.action or not body.action.strip():
        raise HTTPException(status_code=400, detail="Action and dungeon_id are required")

    server = get_server()
    db = server.db
    dungeon = await _active_dungeon(db, body.dungeon_id)
    char = await owned_character(db, dungeon["character_id"], user)
    if dungeon["player_hp"] <= 0:
        raise HTTPException(status_code=400, detail="Character is defeated")

    scene = check_scene(await server.ai.generate_json(
        scene_prompt(dungeon, char, body.action.strip())
    ))
    image = await server.ai.generate_image(scene["image_prompt"])

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)

        data: dict[str, Any] = {}
        if scene["enemies"]:
            data["enemies"] = scene["enemies"]
            data["combat"] = {"resolved": False}
        if scene["trap"]:
            data["trap"] = {**scene["trap"], "resolved": False}
        if scene["rewards"]:
            raw = scene["rewards"]
            items = [
                jsonable_encoder(await db.create_item({
                    **item, "owner_id": None, "previous_owner_id": None,
                    "is_base_item": False,
                }, conn=conn))
                for item in validate_generated_items(raw["items"])
            ]
            data["rewards"] = {
                "gold": raw["gold"],
                "xp": raw["xp"],
                "items": items,
                "gold_looted": False,
            }

        stage = dungeon["current_stage"]
        if scene["stage_progress"] and stage < dungeon["max_stages"] - 1:
            stage += 1
        dungeon = await db.update_dungeon(dungeon["id"], {
            "player_hp": _clamp_hp(dungeon["player_hp"] + scene["hp_change"], char),
            "current_stage": stage,
            "logs": dungeon["logs"] + [
                new_log(scene["type"], scene["description"], image=image, data=data)
            ],
        }, conn=conn)

    log.debug("Dungeon %d stage %d/%d hp=%d", dungeon["id"], dungeon["current_stage"] + 1,
              dungeon["max_stages"], dungeon["player_hp"])
    return respond(await _with_character(db, dungeon, char))


@router.post("/combat-result")
@api_errors("Failed to process combat result")
async def combat_result(body: CombatResultBody,
                        user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id or not body.character_id or body.result is None:
        raise HTTPException(status_code=400,
                            detail="dungeon_id, character_id and result are required")
    result = body.result
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        char = await _run_character(db, dungeon, user, character_id=body.character_id,
                                    conn=conn)

        current = dungeon["logs"][-1] if dungeon["logs"] else None
        data = (current or {}).get("data") or {}
        if not data.get("enemies"):
            raise HTTPException(status_code=400, detail="No active combat found")
        if (data.get("combat") or {}).get("resolved"):
            raise HTTPException(status_code=400, detail="Combat already resolved")

        base_xp, bonus_xp = combat_xp(current, char["level"], result.victory)
        total = base_xp + bonus_xp
        if result.victory:
            data["enemies"] = [{**enemy, "hp": 0} for enemy in data["enemies"]]

        used = [u.item_id for u in result.used_items]
        for item_id in used:
            remove_one(char["inventory"], item_id)

        progress = apply_experience(char, total)
        if not result.victory:
            player_hp = 0
        elif progress["level_ups"]:
            player_hp = char["hp"]["max"]
        else:
            player_hp = _clamp_hp(result.remaining_hp, char)

        data["combat"] = {
            "resolved": True,
            "resolution": {
                "victory": result.victory,
                "used_items": [{"item_id": i} for i in used],
                "experience_gained": total,
                "remaining_hp": player_hp,
            },
        }
        current["data"] = data

        await db.update_character(char["id"], {
            "inventory": char["inventory"], "level": char["level"],
            "experience": char["experience"], "hp": char["hp"],
        }, conn=conn)
        dungeon = await db.update_dungeon(dungeon["id"], {
            "player_hp": player_hp, "logs": dungeon["logs"],
        }, conn=conn)
        payload = await _with_character(db, dungeon, char, conn=conn)

    return respond({
        "success": True,
        "message": "Combat victory" if result.victory else "Combat defeat",
        "dungeon": payload,
        "experience_gained": total,
        "experience_breakdown": {"base_xp": base_xp, "bonus_xp": bonus_xp, "total": total},
        "level_up": {
            "levels_gained": len(progress["level_ups"]),
            "details": progress["level_ups"],
            "next_level_xp": progress["next_level_xp"],
        } if progress["level_ups"] else None,
    })


@router.post("/trap-result")
@api_errors("Failed to process trap result")
async def trap_result(body: TrapResultBody,
                      user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id or not body.log_id or body.result is None:
        raise HTTPException(status_code=400,
                            detail="dungeon_id, log_id and result are required")
    result = body.result
    if result.damage < 0:
        raise HTTPException(status_code=400, detail="Damage cannot be negative")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        await _run_character(db, dungeon, user, conn=conn)
        entry = find_log(dungeon, body.log_id)
        trap = (entry.get("data") or {}).get("trap")
        if not trap:
            raise HTTPException(status_code=400, detail="No active trap found")
        if trap.get("resolved"):
            raise HTTPException(status_code=400, detail="Trap already resolved")

        outcomes = trap.get("outcomes") or {}
        outcome = outcomes.get("success" if result.success else "failure") or {}
        resolution = {
            "success": result.success,
            "roll": result.roll,
            "damage": result.damage,
            "description": outcome.get("description", ""),
        }
        trap["resolved"] = True
        trap["resolution"] = resolution

        dungeon = await db.update_dungeon(dungeon["id"], {
            "player_hp": max(0, dungeon["player_hp"] - result.damage),
            "logs": dungeon["logs"],
        }, conn=conn)

    return respond({
        "success": True,
        "message": "함정 회피 성공" if result.success else "함정 피해 발생",
        "dungeon": dungeon,
        "trap_result": resolution,
    })


# ── Loot ─────────────────────────────────────────────────────────

@router.post("/loot")
@api_errors("Failed to loot item")
async def loot_item(body: LootBody,
                    user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id or not body.item_id or not body.log_id:
        raise HTTPException(status_code=400,
                            detail="dungeon_id, item_id and log_id are required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        char = await _run_character(db, dungeon, user, conn=conn)
        entry = find_log(dungeon, body.log_id)
        offered = {int(it["id"]) for it in log_rewards(entry).get("items") or []}
        if body.item_id not in offered:
            raise HTTPException(status_code=404, detail="Item not found in this log")
        if body.item_id in staged_item_ids(dungeon):
            raise HTTPException(status_code=400, detail="Item already looted")
        item = await db.fetch_item(body.item_id, conn=conn, for_update=True)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        if item["owner_id"] is not None:
            raise HTTPException(status_code=400, detail="Item already owned")

        char["inventory"].append(item["id"])
        await db.update_items([item["id"]], {"owner_id": char["id"]}, conn=conn)
        await db.update_character(char["id"], {"inventory": char["inventory"]}, conn=conn)
        dungeon = await db.update_dungeon(dungeon["id"], {
            "temporary_inventory": dungeon["temporary_inventory"] + [{
                "item_id": item["id"],
                "log_id": body.log_id,
                "timestamp": utcnow().isoformat(),
            }],
        }, conn=conn)
        payload = await _with_character(db, dungeon, char, conn=conn)

    return respond(payload)


@router.post("/loot-gold")
@api_errors("Failed to loot gold")
async def loot_gold(body: LootGoldBody,
                    user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id or not body.log_id:
        raise HTTPException(status_code=400, detail="dungeon_id and log_id are required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        char = await _run_character(db, dungeon, user, conn=conn)
        rewards = log_rewards(find_log(dungeon, body.log_id))
        if rewards.get("gold_looted"):
            raise HTTPException(status_code=400, detail="Gold already looted")
        amount = int(rewards.get("gold") or 0)
        if amount <= 0:
            raise HTTPException(status_code=400, detail="No gold available in this log")

        rewards["gold"] = 0
        rewards["gold_looted"] = True
        char = await db.update_character(char["id"], {"gold": char["gold"] + amount}, conn=conn)
        dungeon = await db.update_dungeon(dungeon["id"], {"logs": dungeon["logs"]}, conn=conn)
        payload = await _with_character(db, dungeon, char, conn=conn)

    return respond({**payload, "gold_looted": amount})


# ── Finishing a run ──────────────────────────────────────────────

@router.post("/complete")
@api_errors("Failed to process dungeon completion")
async def complete_dungeon(body: FinishBody,
                           user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.dungeon_id:
        raise HTTPException(status_code=400, detail="Character ID and Dungeon ID are required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        if dungeon["current_stage"] != dungeon["max_stages"] - 1:
            raise HTTPException(status_code=400,
                                detail="Cannot complete dungeon before reaching final stage")
        char = await _run_character(db, dungeon, user, character_id=body.character_id,
                                    conn=conn)

        xp = completion_xp(dungeon, char["level"])
        gold = unclaimed_gold(dungeon["logs"])
        char["hp"]["current"] = _clamp_hp(dungeon["player_hp"], char)
        progress = apply_experience(char, xp)
        char["gold"] += gold
        await db.update_character(char["id"], {
            "gold": char["gold"], "level": char["level"],
            "experience": char["experience"], "hp": char["hp"],
        }, conn=conn)
        await _finish(db, dungeon, status="completed", rewards={"xp": xp, "gold": gold},
                      conn=conn)

    return respond({
        "success": True,
        "message": "Successfully completed dungeon",
        "rewards": {"xp": xp, "gold": gold},
        "level_up": progress,
    })


@router.post("/escape")
@api_errors("Failed to process dungeon escape")
async def escape_dungeon(body: FinishBody,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.dungeon_id:
        raise HTTPException(status_code=400, detail="Character ID and Dungeon ID are required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        if dungeon["current_stage"] == dungeon["max_stages"] - 1:
            raise HTTPException(status_code=400, detail="Cannot escape from the final stage")
        if not dungeon["can_escape"]:
            raise HTTPException(status_code=400, detail="This dungeon does not allow escape")
        char = await _run_character(db, dungeon, user, character_id=body.character_id,
                                    conn=conn)

        staged = await db.fetch_items(staged_item_ids(dungeon), conn=conn)
        outcome = escape_outcome(dungeon, char, {it["id"]: it["rarity"] for it in staged})

        await _drop_staged(db, char, outcome.lost, conn=conn)
        char["hp"]["current"] = _clamp_hp(dungeon["player_hp"], char)
        progress = apply_experience(char, outcome.xp)
        char["gold"] += outcome.final_gold
        await db.update_character(char["id"], {
            "gold": char["gold"], "level": char["level"], "experience": char["experience"],
            "hp": char["hp"], "inventory": char["inventory"],
        }, conn=conn)
        await _finish(db, dungeon, status="escaped",
                      rewards={"xp": outcome.xp, "gold": outcome.final_gold}, conn=conn)

    return respond({
        "success": True,
        "message": "Successfully escaped from dungeon",
        "rewards": {
            "xp": outcome.xp,
            "preserved_gold": outcome.preserved_gold,
            "final_gold": outcome.final_gold,
        },
        "penalties": {"gold_penalty": outcome.gold_penalty, "lost_items": len(outcome.lost)},
        "saved_items": len(outcome.saved),
        "progress": _progress(dungeon),
        "level_up": progress,
    })


@router.post("/fail")
@api_errors("Failed to process dungeon failure")
async def fail_dungeon(body: FinishBody,
                       user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.dungeon_id:
        raise HTTPException(status_code=400, detail="Character ID and Dungeon ID are required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        char = await _run_character(db, dungeon, user, character_id=body.character_id,
                                    conn=conn)

        xp = failure_xp(dungeon, char["level"])
        gold = int(unclaimed_gold(dungeon["logs"]) * FAIL_GOLD_RATIO)
        lost = list(dungeon["temporary_inventory"])
        await _drop_staged(db, char, lost, conn=conn)
        progress = apply_experience(char, xp)
        char["hp"]["current"] = 0
        char["gold"] += gold
        await db.update_character(char["id"], {
            "gold": char["gold"], "level": char["level"], "experience": char["experience"],
            "hp": char["hp"], "inventory": char["inventory"],
        }, conn=conn)
        await _finish(db, dungeon, status="failed", rewards={"xp": xp, "gold": gold},
                      conn=conn)

    return respond({
        "success": True,
        "message": "Dungeon failed",
        "rewards": {"xp": xp, "preserved_gold": gold},
        "progress": _progress(dungeon),
        "lost_items": len(lost),
        "status": {"hp": 0, "needs_healing": True},
        "level_up": progress,
    })


@router.post("/forfeit")
@api_errors("Failed to forfeit dungeon")
async def forfeit_dungeon(body: ForfeitBody,
                          user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.dungeon_id:
        raise HTTPException(status_code=400, detail="dungeon_id is required")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, body.dungeon_id, conn=conn, for_update=True)
        char = await _run_character(db, dungeon, user, conn=conn)

        removed = staged_item_ids(dungeon)
        for item_id in removed:
            remove_one(char["inventory"], item_id)
        await db.update_items(removed, {"owner_id": None, "previous_owner_id": char["id"]},
                              conn=conn)
        await db.update_character(char["id"], {"inventory": char["inventory"]}, conn=conn)
        dungeon = await _finish(db, dungeon, status="forfeited",
                                rewards={"xp": 0, "gold": 0}, conn=conn, loot_gold=False)

    return respond({"success": True, "removed_items": len(removed), "dungeon": dungeon})


# ── Logs ─────────────────────────────────────────────────────────

@router.get("/{dungeon_id}/logs")
@api_errors("Failed to fetch dungeon logs")
async def dungeon_logs(dungeon_id: int,
                       user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    dungeon = await db.fetch_dungeon(dungeon_id)
    if dungeon is None:
        raise HTTPException(status_code=404, detail="Dungeon not found")
    char = await db.fetch_character(dungeon["character_id"])
    if char is None or char["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Not authorized to view this dungeon")
    return respond({
        "logs": dungeon["logs"],
        "status": dungeon["status"],
        "rewards": dungeon["rewards"] if dungeon["status"] != "active" else None,
    })


@router.delete("/{dungeon_id}/logs")
@api_errors("Failed to delete log")
async def rewind_logs(dungeon_id: int, index: Optional[str] = None,
                      user: AuthUser = Depends(current_user)) -> JSONResponse:
    try:
        log_index = int(index) if index is not None else None
    except ValueError:
        log_index = None
    if log_index is None or log_index < 0:
        raise HTTPException(status_code=400, detail="Log index is required")
    if log_index == 0:
        raise HTTPException(status_code=400, detail="Cannot delete the initial log")
    db = get_server().db

    async with db.transaction() as conn:
        dungeon = await _active_dungeon(db, dungeon_id, conn=conn, for_update=True)
        char = await owned_character(db, dungeon["character_id"], user, conn=conn,
                                     for_update=True)
        if log_index >= len(dungeon["logs"]):
            raise HTTPException(status_code=400, detail="Invalid log index")

        removed = dungeon["logs"][log_index:]
        removed_ids = {entry.get("id") for entry in removed}
        offered = [int(it["id"]) for entry in removed
                   for it in log_rewards(entry).get("items") or []]
        staged = [s for s in dungeon["temporary_inventory"] if s.get("log_id") in removed_ids]
        kept = [s for s in dungeon["temporary_inventory"] if s.get("log_id") not in removed_ids]

        for entry in staged:
            remove_one(char["inventory"], int(entry["item_id"]))
        await db.update_character(char["id"], {"inventory": char["inventory"]}, conn=conn)
        await db.delete_items(offered, conn=conn)
        dungeon = await db.update_dungeon(dungeon["id"], {
            "logs": dungeon["logs"][:log_index],
            "temporary_inventory": kept,
        }, conn=conn)

    log.info("Dungeon %d rewound to log %d (%d items removed)",
             dungeon_id, log_index, len(offered))
    return respond({"logs": dungeon["logs"], "temporary_inventory": dungeon["temporary_inventory"]})
