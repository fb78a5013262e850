"""Media routes — scene illustration and combat image prompts."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user
from game.prompts import combat_image_prompt

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["media"])


class ImageBody(BaseModel):
    prompt: Optional[str] = None


@router.post("/generate-image")
@api_errors("Failed to generate image")
async def generate_image(body: ImageBody,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    ai = get_server().ai
    if not ai.hf_token:
        raise HTTPException(status_code=500, detail="Image generation is not configured")
    if not body.prompt or not body.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    image_url = await ai.generate_image(body.prompt.strip())
    if image_url is None:
        raise HTTPException(status_code=500, detail="Failed to generate image")
    return respond({"image_url": image_url})


@router.post("/generate-combat-prompt")
@api_errors("Internal server error")
async def generate_combat_prompt(scene: dict[str, Any],
                                 user: AuthUser = Depends(current_user)) -> JSONResponse:
    prompt = await get_server().ai.generate_text(combat_image_prompt(scene))
    if not prompt:
        raise HTTPException(status_code=500, detail="Failed to generate prompt")
    return respond({"prompt": prompt})
