"""Account routes — signup and signin."""

import logging
from typing import Optional

import asyncpg
from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.api import api_errors, get_server, respond
from core.auth import create_access_token, hash_password, verify_password
from game.documents import public_user

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupBody(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class SigninBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


@router.post("/signup", status_code=201)
@api_errors("회원가입 중 오류가 발생했습니다.")
async def signup(body: SignupBody) -> JSONResponse:
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=400, detail="모든 필드를 입력해주세요.")

    db = get_server().db
    email = body.email.strip().lower()
    if await db.fetch_user_by_email(email):
        raise HTTPException(status_code=400, detail="이미 사용 중인 이메일입니다.")

    try:
        user = await db.create_user(
            email=email,
            password_hash=hash_password(body.password),
            name=body.name.strip(),
            role="user",
        )
    except asyncpg.UniqueViolationError as exc:
        raise HTTPException(status_code=400, detail="이미 사용 중인 이메일입니다.") from exc
    log.info("User registered: %s (id=%d)", email, user["id"])
    return respond({"message": "회원가입이 완료되었습니다.", "user": public_user(user)},
                   status_code=201)


@router.post("/signin")
@api_errors("Failed to sign in")
async def signin(body: SigninBody) -> JSONResponse:
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    server = get_server()
    user = await server.db.fetch_user_by_email(body.email.strip())
    if user is None or not verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_access_token(user, server.config["auth"])
    return respond({
        "access_token": token,
        "token_type": "bearer",
        "user": public_user(user),
    })
