"""Profile routes — the signed-in user's own account."""

import base64
import binascii
import logging
import re
import time
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from core.api import api_errors, get_server, respond
from core.auth import AuthUser, current_user, hash_password, verify_password

log = logging.getLogger(__name__)

router = APIRouter(tags=["user"])

UPLOAD_URL_PREFIX = "/uploads/"
DATA_URI_RE = re.compile(r"^data:image/\w+;base64,")


class ProfileBody(BaseModel):
    name: Optional[str] = None


class PasswordBody(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class ProfileImageBody(BaseModel):
    image: Optional[str] = None


def _profile(user: dict) -> dict:
    return {"user": {
        "id": user["id"], "name": user["name"],
        "email": user["email"], "image": user.get("image") or "",
    }}


def _upload_path(url: str) -> Path | None:
    """Map a stored /uploads/... URL back to a file under the uploads dir."""
    if not url.startswith(UPLOAD_URL_PREFIX):
        return None
    root = get_server().uploads_dir.resolve()
    path = (root / url[len(UPLOAD_URL_PREFIX):]).resolve()
    if root not in path.parents:
        return None
    return path


def _remove_upload(url: str) -> None:
    path = _upload_path(url)
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        log.exception("Failed to delete upload %s", path)


@router.get("/api/user/profile")
@api_errors("Failed to fetch profile")
async def get_profile(user: AuthUser = Depends(current_user)) -> JSONResponse:
    record = await get_server().db.fetch_user(user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    return respond(_profile(record))


@router.patch("/api/user/profile")
@api_errors("Failed to update profile")
async def update_profile(body: ProfileBody,
                         user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.name or not body.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    record = await get_server().db.update_user(user.id, {"name": body.name.strip()})
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    return respond(_profile(record))


@router.delete("/api/user/profile", status_code=204)
@api_errors("Failed to delete profile")
async def delete_profile(user: AuthUser = Depends(current_user)) -> Response:
    db = get_server().db
    record = await db.fetch_user(user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")

    _remove_upload(record.get("image") or "")
    await db.delete_user(user.id)
    log.info("User deleted: id=%d", user.id)
    return Response(status_code=204)


@router.patch("/api/user/password")
@api_errors("Failed to update password")
async def change_password(body: PasswordBody,
                          user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.current_password or not body.new_password:
        raise HTTPException(status_code=400, detail="Current and new password are required")
    db = get_server().db
    record = await db.fetch_user(user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(body.current_password, record["password_hash"]):
        raise HTTPException(status_code=400, detail="Invalid current password")

    await db.update_user(user.id, {"password_hash": hash_password(body.new_password)})
    return respond({"message": "Password updated successfully"})


@router.post("/api/user/profile/image")
@api_errors("Failed to update profile image")
async def upload_profile_image(body: ProfileImageBody,
                               user: AuthUser = Depends(current_user)) -> JSONResponse:
    if not body.image:
        raise HTTPException(status_code=400, detail="Image is required")
    try:
        data = base64.b64decode(DATA_URI_RE.sub("", body.image), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Image is not valid base64") from exc

    server = get_server()
    previous = await server.db.fetch_user(user.id)
    if previous is None:
        raise HTTPException(status_code=404, detail="User not found")
    users_dir = server.uploads_dir / "users"
    users_dir.mkdir(parents=True, exist_ok=True)
    file_name = f"{user.id}-{int(time.time() * 1000)}.jpg"
    (users_dir / file_name).write_bytes(data)

    record = await server.db.update_user(user.id, {"image": f"{UPLOAD_URL_PREFIX}users/{file_name}"})
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    if previous.get("image") and previous["image"] != record["image"]:
        _remove_upload(previous["image"])
    return respond({"image": record["image"]})


@router.get("/uploads/users/{file_name}")
@api_errors("Failed to read upload")
async def get_upload(file_name: str) -> FileResponse:
    path = _upload_path(f"{UPLOAD_URL_PREFIX}users/{file_name}")
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path)
