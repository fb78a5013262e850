"""Authentication — bcrypt password hashing and JWT bearer tokens."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import bcrypt
from fastapi import Header, HTTPException
from jose import JWTError, jwt

from core.api import get_server

log = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


@dataclass(frozen=True)
class AuthUser:
    """Identity carried by a verified access token."""

    id: int
    email: str
    name: str = ""
    role: str = "user"


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        log.warning("Stored password hash is not a bcrypt hash")
        return False


def create_access_token(user: dict[str, Any], auth_cfg: dict[str, Any]) -> str:
    now = int(time.time())
    claims = {
        "sub": str(user["id"]),
        "email": user["email"],
        "name": user.get("name", ""),
        "role": user.get("role", "user"),
        "iat": now,
        "exp": now + int(auth_cfg.get("token_ttl_minutes", 60 * 24)) * 60,
    }
    return jwt.encode(claims, auth_cfg["secret_key"],
                      algorithm=auth_cfg.get("algorithm", "HS256"))


def decode_access_token(token: str, auth_cfg: dict[str, Any]) -> AuthUser:
    try:
        claims = jwt.decode(token, auth_cfg["secret_key"],
                            algorithms=[auth_cfg.get("algorithm", "HS256")])
        return AuthUser(
            id=int(claims["sub"]),
            email=claims.get("email", ""),
            name=claims.get("name", ""),
            role=claims.get("role", "user"),
        )
    except (JWTError, KeyError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Unauthorized") from exc


async def current_user(authorization: str | None = Header(default=None)) -> AuthUser:
    """FastAPI dependency: the caller identified by the Bearer token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return decode_access_token(token.strip(), get_server().config["auth"])
