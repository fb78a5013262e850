"""Dashboard routes — character overview and finished-run history."""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user
from game.documents import default_status

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

RECENT_ACTIVITY = 5
SUMMARY_FIELDS = ("id", "name", "level", "class_name", "race", "hp", "resource", "profile_image")


def _activity(dungeon: dict) -> dict:
    return {
        "id": dungeon["id"],
        "character_name": dungeon.get("character_name"),
        "character_profile_image": dungeon.get("character_profile_image"),
        "dungeon_name": dungeon["dungeon_name"],
        "current_stage": dungeon["current_stage"],
        "max_stages": dungeon["max_stages"],
        "status": dungeon["status"],
        "completed_at": dungeon.get("completed_at"),
        "rewards": dungeon.get("rewards") or {},
    }


@router.get("")
@api_errors("Internal Server Error")
async def dashboard(user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    chars = await db.fetch_characters(user.id)

    summaries = []
    for char in chars:
        record = await db.fetch_status(char["id"])
        active = await db.fetch_active_dungeon(char["id"])
        summary = {k: char.get(k) for k in SUMMARY_FIELDS}
        summary["current_status"] = record["status"] if record else default_status()
        summary["active_dungeon"] = {
            "id": active["id"],
            "dungeon_name": active["dungeon_name"],
            "current_stage": active["current_stage"],
            "max_stages": active["max_stages"],
            "logs": active["logs"],
        } if active else None
        summaries.append(summary)

    recent = await db.fetch_finished_dungeons([c["id"] for c in chars], limit=RECENT_ACTIVITY)
    return respond({
        "characters": summaries,
        "recent_activity": [_activity(d) for d in recent],
    })


@router.get("/activities")
@api_errors("Internal Server Error")
async def activities(page: int = Query(1, ge=1), page_size: int = Query(5, ge=1, le=50),
                     user: AuthUser = Depends(current_user)) -> JSONResponse:
    db = get_server().db
    ids = [c["id"] for c in await db.fetch_characters(user.id)]
    offset = (page - 1) * page_size
    dungeons = await db.fetch_finished_dungeons(ids, offset=offset, limit=page_size)
    total = await db.count_finished_dungeons(ids)
    return respond({
        "activities": [_activity(d) for d in dungeons],
        "has_more": total > offset + page_size,
        "total": total,
        "current_page": page,
    })
