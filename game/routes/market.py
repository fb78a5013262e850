"""Market routes — listings per market type, buying and selling."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import BaseModel

from core.ai import AIGenerationError
from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user
from game.constants import (
    BLACK_MARKET_LEVEL_SPAN,
    EQUIPMENT_RESTRICTIONS,
    MARKET_ITEM_COUNTS,
    MARKET_TYPE_MULTIPLIERS,
)
from game.documents import is_equipped, owned_character, remove_one
from game.items import market_price, sell_price, validate_generated_items
from game.prompts import market_items_prompt

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/market", tags=["market"])


class TradeBody(BaseModel):
    character_id: Optional[int] = None
    item_id: Optional[int] = None


async def generate_market_items(level: int, class_name: str, count: int) -> list[dict[str, Any]]:
    """Have the model invent equipment and store it unowned. Empty on failure."""
    server = get_server()
    try:
        raw = await server.ai.generate_json(market_items_prompt(level, class_name, count))
    except (AIGenerationError, OpenAIError):
        log.exception("Market item generation failed")
        return []
    items = validate_generated_items(raw.get("items"), allow_consumables=False)[:count]
    stored = []
    for item in items:
        stored.append(await server.db.create_item({
            **item, "owner_id": None, "previous_owner_id": None, "is_base_item": False,
        }))
    return stored


async def black_market_items(level: int, class_name: str) -> list[dict[str, Any]]:
    count = MARKET_ITEM_COUNTS["black"]
    items = await get_server().db.fetch_unowned_items(
        max_level=level + BLACK_MARKET_LEVEL_SPAN, limit=count,
    )
    if len(items) < count:
        items += await generate_market_items(level, class_name, count - len(items))
    return items


@router.get("")
@api_errors("Failed to generate market")
async def market(level: int = Query(1, ge=1), market_type: str = "normal",
                 class_name: Optional[str] = None,
                 user: AuthUser = Depends(current_user)) -> JSONResponse:
    if class_name not in EQUIPMENT_RESTRICTIONS:
        raise HTTPException(status_code=400, detail="Invalid character class")
    if market_type not in MARKET_TYPE_MULTIPLIERS:
        market_type = "normal"

    if market_type == "secret":
        items = await generate_market_items(level, class_name, MARKET_ITEM_COUNTS["secret"])
    elif market_type == "black":
        items = await black_market_items(level, class_name)
    else:
        items = await get_server().db.fetch_base_items()

    return respond({
        "market_type": market_type,
        "items": [{**it, "value": market_price(it["value"], market_type)} for it in items],
    })


@router.post("")
@api_errors("Failed to purchase item")
async def buy_item(body: TradeBody,
                   user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.item_id:
        raise HTTPException(status_code=400, detail="character_id and item_id are required")
    db = get_server().db

    async with db.transaction() as conn:
        char = await owned_character(db, body.character_id, user, conn=conn, for_update=True)
        item = await db.fetch_item(body.item_id, conn=conn, for_update=True)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        if not item["is_base_item"] and item["owner_id"] is not None:
            raise HTTPException(status_code=400, detail="Item is not for sale")
        if char["gold"] < item["value"]:
            raise HTTPException(status_code=400, detail="Not enough gold")

        if not item["is_base_item"]:
            await db.update_items([item["id"]], {"owner_id": char["id"]}, conn=conn)
            item["owner_id"] = char["id"]
        char = await db.update_character(char["id"], {
            "gold": char["gold"] - item["value"],
            "inventory": char["inventory"] + [item["id"]],
        }, conn=conn)

    log.info("Character %d bought item %d for %d", char["id"], item["id"], item["value"])
    return respond({"success": True, "item": item, "remaining_gold": char["gold"]})


@router.patch("")
@api_errors("Failed to sell item")
async def sell_item(body: TradeBody,
                    user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.character_id or not body.item_id:
        raise HTTPException(status_code=400, detail="character_id and item_id are required")
    db = get_server().db

    async with db.transaction() as conn:
        char = await owned_character(db, body.character_id, user, conn=conn, for_update=True)
        item = await db.fetch_item(body.item_id, conn=conn, for_update=True)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        inventory = list(char["inventory"])
        if not remove_one(inventory, item["id"]):
            raise HTTPException(status_code=400, detail="Item not in inventory")
        if is_equipped(char, item["id"]) and item["id"] not in inventory:
            raise HTTPException(status_code=400, detail="Cannot sell equipped items")

        price = sell_price(item["value"])
        if not item["is_base_item"]:
            await db.update_items([item["id"]], {
                "owner_id": None, "previous_owner_id": item["owner_id"],
            }, conn=conn)
        char = await db.update_character(char["id"], {
            "gold": char["gold"] + price, "inventory": inventory,
        }, conn=conn)

    log.info("Character %d sold item %d for %d", char["id"], item["id"], price)
    return respond({"success": True, "sold_price": price, "new_gold": char["gold"]})
