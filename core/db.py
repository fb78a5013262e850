"""Database layer — asyncpg connection pool, schema, document CRUD.

Every entity is a row whose nested parts live in JSONB columns, so a row
reads back as a plain document dict.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

import asyncpg

log = logging.getLogger(__name__)

# Columns stored as JSONB, per table. Values are dumped on write and
# loaded on read.
JSON_COLUMNS: dict[str, frozenset[str]] = {
    "users": frozenset(),
    "characters": frozenset({
        "stats", "proficiencies", "hp", "spells", "features", "resource",
        "equipment", "inventory", "arena_stats",
    }),
    "items": frozenset({"stats"}),
    "dungeons": frozenset({"temporary_inventory", "logs", "rewards"}),
    "character_status": frozenset({"status"}),
}

# Columns a caller may write through the generic update helpers.
WRITABLE_COLUMNS: dict[str, frozenset[str]] = {
    "users": frozenset({"email", "password_hash", "name", "role", "image"}),
    "characters": frozenset({
        "name", "level", "experience", "class_name", "race", "stats",
        "proficiencies", "hp", "spells", "features", "resource", "equipment",
        "inventory", "gold", "arena_stats", "profile_image",
    }),
    "items": frozenset({
        "name", "type", "weapon_type", "rarity", "stats", "required_level",
        "description", "value", "owner_id", "previous_owner_id", "is_base_item",
    }),
    "dungeons": frozenset({
        "dungeon_name", "concept", "difficulty", "recommended_level",
        "current_stage", "max_stages", "can_escape", "player_hp", "active",
        "status", "temporary_inventory", "logs", "rewards", "completed_at",
    }),
}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id            SERIAL PRIMARY KEY,
    email         TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    name          TEXT NOT NULL,
    role          TEXT NOT NULL DEFAULT 'user',
    image         TEXT NOT NULL DEFAULT '',
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS characters (
    id            SERIAL PRIMARY KEY,
    user_id       INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    level         INTEGER NOT NULL DEFAULT 1,
    experience    BIGINT NOT NULL DEFAULT 0,
    class_name    TEXT NOT NULL,
    race          TEXT NOT NULL,
    stats         JSONB NOT NULL DEFAULT '{}',
    proficiencies JSONB NOT NULL DEFAULT '[]',
    hp            JSONB NOT NULL DEFAULT '{}',
    spells        JSONB NOT NULL DEFAULT '{"known": [], "slots": []}',
    features      JSONB NOT NULL DEFAULT '[]',
    resource      JSONB NOT NULL DEFAULT '{}',
    equipment     JSONB NOT NULL DEFAULT
                  '{"weapon": null, "armor": null, "shield": null, "accessories": []}',
    inventory     JSONB NOT NULL DEFAULT '[]',
    gold          INTEGER NOT NULL DEFAULT 0,
    arena_stats   JSONB NOT NULL DEFAULT
                  '{"rank": 0, "rating": 1000, "wins": 0, "losses": 0}',
    profile_image TEXT NOT NULL DEFAULT '',
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS characters_user_idx ON characters (user_id);

CREATE TABLE IF NOT EXISTS items (
    id                SERIAL PRIMARY KEY,
    name              TEXT NOT NULL,
    type              TEXT NOT NULL,
    weapon_type       TEXT,
    rarity            TEXT NOT NULL,
    stats             JSONB NOT NULL DEFAULT '{"effects": []}',
    required_level    INTEGER NOT NULL DEFAULT 1,
    description       TEXT NOT NULL DEFAULT '',
    value             INTEGER NOT NULL DEFAULT 0,
    owner_id          INTEGER,
    previous_owner_id INTEGER,
    is_base_item      BOOLEAN NOT NULL DEFAULT FALSE,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS dungeons (
    id                  SERIAL PRIMARY KEY,
    character_id        INTEGER NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
    dungeon_name        TEXT NOT NULL,
    concept             TEXT NOT NULL DEFAULT '',
    difficulty          TEXT NOT NULL DEFAULT 'normal',
    recommended_level   INTEGER NOT NULL DEFAULT 1,
    current_stage       INTEGER NOT NULL DEFAULT 0,
    max_stages          INTEGER NOT NULL DEFAULT 3,
    can_escape          BOOLEAN NOT NULL DEFAULT TRUE,
    player_hp           INTEGER NOT NULL DEFAULT 0,
    active              BOOLEAN NOT NULL DEFAULT TRUE,
    status              TEXT NOT NULL DEFAULT 'active',
    temporary_inventory JSONB NOT NULL DEFAULT '[]',
    logs                JSONB NOT NULL DEFAULT '[]',
    rewards             JSONB NOT NULL DEFAULT '{}',
    completed_at        TIMESTAMPTZ,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS dungeons_one_active_idx
    ON dungeons (character_id) WHERE active;

CREATE TABLE IF NOT EXISTS character_status (
    character_id  INTEGER PRIMARY KEY REFERENCES characters(id) ON DELETE CASCADE,
    status        JSONB NOT NULL DEFAULT '{}',
    last_updated  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _jload(val: Any) -> Any:
    """Load JSON if string, otherwise return as-is."""
    if isinstance(val, str):
        return json.loads(val)
    return val


def _jdump(val: Any) -> Any:
    if isinstance(val, (dict, list)):
        return json.dumps(val, ensure_ascii=False)
    return val


def _doc(table: str, record: asyncpg.Record | None) -> dict[str, Any] | None:
    """Convert a row into a document dict, decoding JSONB columns."""
    if record is None:
        return None
    doc = dict(record)
    for col in JSON_COLUMNS.get(table, ()):
        if col in doc:
            doc[col] = _jload(doc[col])
    return doc


class Database:
    """Async PostgreSQL database wrapper."""

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        assert self._pool is not None, "Database not connected"
        return self._pool

    async def connect(self) -> None:
        host = os.environ.get("DB_HOST", self._config["host"])
        dsn = (
            f"postgresql://{self._config['user']}:{self._config['password']}"
            f"@{host}:{self._config['port']}"
            f"/{self._config['database']}"
        )
        self._pool = await asyncpg.create_pool(
            dsn,
            min_size=self._config.get("min_connections", 2),
            max_size=self._config.get("max_connections", 10),
        )
        log.info("Database pool created: %s", self._config["database"])

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            log.info("Database pool closed")

    async def ensure_schema(self) -> None:
        """Create all tables if they don't exist (idempotent)."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        log.info("Schema ensured")

    # ── Connection helpers ─────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    @asynccontextmanager
    async def _conn(self, conn: asyncpg.Connection | None
                    ) -> AsyncIterator[asyncpg.Connection]:
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as acquired:
            yield acquired

    async def _fetch_by_id(self, table: str, row_id: int, *,
                           conn: asyncpg.Connection | None = None,
                           for_update: bool = False) -> dict[str, Any] | None:
        query = f"SELECT * FROM {table} WHERE id = $1"  # noqa: S608
        if for_update:
            query += " FOR UPDATE"
        async with self._conn(conn) as c:
            return _doc(table, await c.fetchrow(query, row_id))

    async def _insert(self, table: str, data: dict[str, Any], *,
                      conn: asyncpg.Connection | None = None) -> dict[str, Any]:
        cols = list(data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(cols) + 1))
        query = (
            f"INSERT INTO {table} ({', '.join(cols)}) "  # noqa: S608
            f"VALUES ({placeholders}) RETURNING *"
        )
        async with self._conn(conn) as c:
            record = await c.fetchrow(query, *(_jdump(data[k]) for k in cols))
        return _doc(table, record)

    async def _update(self, table: str, row_id: int, data: dict[str, Any], *,
                      conn: asyncpg.Connection | None = None
                      ) -> dict[str, Any] | None:
        """Update only the given columns. Returns the updated document."""
        if not data:
            return await self._fetch_by_id(table, row_id, conn=conn)
        unknown = set(data) - WRITABLE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Not writable on {table}: {sorted(unknown)}")
        cols = []
        vals = []
        for i, (k, v) in enumerate(data.items(), start=2):
            cols.append(f"{k} = ${i}")
            vals.append(_jdump(v))
        touch = ", updated_at = NOW()" if table != "items" else ""
        query = (
            f"UPDATE {table} SET {', '.join(cols)}{touch} "  # noqa: S608
            "WHERE id = $1 RETURNING *"
        )
        async with self._conn(conn) as c:
            return _doc(table, await c.fetchrow(query, row_id, *vals))

    # ── Users ──────────────────────────────────────────────────────

    async def fetch_user(self, user_id: int) -> dict[str, Any] | None:
        return await self._fetch_by_id("users", user_id)

    async def fetch_user_by_email(self, email: str) -> dict[str, Any] | None:
        async with self.pool.acquire() as conn:
            return _doc("users", await conn.fetchrow(
                "SELECT * FROM users WHERE LOWER(email) = LOWER($1)", email
            ))

    async def create_user(self, *, email: str, password_hash: str, name: str,
                          role: str = "user") -> dict[str, Any]:
        return await self._insert("users", {
            "email": email, "password_hash": password_hash,
            "name": name, "role": role,
        })

    async def update_user(self, user_id: int, data: dict[str, Any]
                          ) -> dict[str, Any] | None:
        return await self._update("users", user_id, data)

    async def delete_user(self, user_id: int) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM users WHERE id = $1", user_id)
        return result.endswith(" 1")

    # ── Characters ─────────────────────────────────────────────────

    async def fetch_character(self, character_id: int, *,
                              conn: asyncpg.Connection | None = None,
                              for_update: bool = False) -> dict[str, Any] | None:
        return await self._fetch_by_id(
            "characters", character_id, conn=conn, for_update=for_update
        )

    async def fetch_characters(self, user_id: int, *, offset: int = 0,
                               limit: int | None = None) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM characters WHERE user_id = $1 "
                "ORDER BY id OFFSET $2 LIMIT $3",
                user_id, offset, limit,
            )
        return [_doc("characters", r) for r in rows]

    async def count_characters(self, user_id: int) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM characters WHERE user_id = $1", user_id
            ) or 0

    async def create_character(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._insert("characters", data)

    async def update_character(self, character_id: int, data: dict[str, Any], *,
                               conn: asyncpg.Connection | None = None
                               ) -> dict[str, Any] | None:
        return await self._update("characters", character_id, data, conn=conn)

    async def delete_character(self, character_id: int, user_id: int) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM characters WHERE id = $1 AND user_id = $2",
                character_id, user_id,
            )
        return result.endswith(" 1")

    # ── Items ──────────────────────────────────────────────────────

    async def fetch_item(self, item_id: int, *,
                         conn: asyncpg.Connection | None = None,
                         for_update: bool = False) -> dict[str, Any] | None:
        return await self._fetch_by_id("items", item_id, conn=conn,
                                       for_update=for_update)

    async def fetch_items(self, item_ids: Iterable[int], *,
                          conn: asyncpg.Connection | None = None
                          ) -> list[dict[str, Any]]:
        ids = list({int(i) for i in item_ids})
        if not ids:
            return []
        async with self._conn(conn) as c:
            rows = await c.fetch("SELECT * FROM items WHERE id = ANY($1::int[])", ids)
        return [_doc("items", r) for r in rows]

    async def create_item(self, data: dict[str, Any], *,
                          conn: asyncpg.Connection | None = None) -> dict[str, Any]:
        return await self._insert("items", data, conn=conn)

    async def update_items(self, item_ids: Iterable[int], data: dict[str, Any], *,
                           conn: asyncpg.Connection | None = None) -> None:
        ids = list({int(i) for i in item_ids})
        if not ids or not data:
            return
        unknown = set(data) - WRITABLE_COLUMNS["items"]
        if unknown:
            raise ValueError(f"Not writable on items: {sorted(unknown)}")
        cols = []
        vals = []
        for i, (k, v) in enumerate(data.items(), start=2):
            cols.append(f"{k} = ${i}")
            vals.append(_jdump(v))
        query = f"UPDATE items SET {', '.join(cols)} WHERE id = ANY($1::int[])"  # noqa: S608
        async with self._conn(conn) as c:
            await c.execute(query, ids, *vals)

    async def delete_items(self, item_ids: Iterable[int], *,
                           conn: asyncpg.Connection | None = None) -> None:
        ids = list({int(i) for i in item_ids})
        if not ids:
            return
        async with self._conn(conn) as c:
            await c.execute(
                "DELETE FROM items WHERE id = ANY($1::int[]) AND NOT is_base_item",
                ids,
            )

    async def fetch_base_items(self) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM items WHERE is_base_item ORDER BY id"
            )
        return [_doc("items", r) for r in rows]

    async def fetch_unowned_items(self, *, max_level: int, limit: int
                                  ) -> list[dict[str, Any]]:
        """Random unowned, non-base, non-consumable items for the black market."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM items WHERE owner_id IS NULL "
                "AND NOT is_base_item AND type <> 'consumable' "
                "AND required_level <= $1 ORDER BY random() LIMIT $2",
                max_level, limit,
            )
        return [_doc("items", r) for r in rows]

    async def seed_base_items(self, items: list[dict[str, Any]]) -> int:
        """Insert or refresh catalog items, matched by name/type/rarity."""
        count = 0
        async with self.transaction() as conn:
            for item in items:
                existing = await conn.fetchval(
                    "SELECT id FROM items WHERE name = $1 AND type = $2 "
                    "AND rarity = $3 AND is_base_item",
                    item["name"], item["type"], item["rarity"],
                )
                data = {**item, "is_base_item": True}
                if existing:
                    await self._update("items", existing, data, conn=conn)
                else:
                    await self._insert("items", data, conn=conn)
                count += 1
        log.info("Base items seeded: %d", count)
        return count

    async def remove_base_items(self) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM items WHERE is_base_item")
        return int(result.split()[-1])

    # ── Dungeons ───────────────────────────────────────────────────

    async def fetch_dungeon(self, dungeon_id: int, *,
                            conn: asyncpg.Connection | None = None,
                            for_update: bool = False) -> dict[str, Any] | None:
        return await self._fetch_by_id("dungeons", dungeon_id, conn=conn,
                                       for_update=for_update)

    async def fetch_active_dungeon(self, character_id: int, *,
                                   conn: asyncpg.Connection | None = None
                                   ) -> dict[str, Any] | None:
        async with self._conn(conn) as c:
            return _doc("dungeons", await c.fetchrow(
                "SELECT * FROM dungeons WHERE character_id = $1 AND active",
                character_id,
            ))

    async def create_dungeon(self, data: dict[str, Any], *,
                             conn: asyncpg.Connection | None = None
                             ) -> dict[str, Any]:
        return await self._insert("dungeons", data, conn=conn)

    async def update_dungeon(self, dungeon_id: int, data: dict[str, Any], *,
                             conn: asyncpg.Connection | None = None
                             ) -> dict[str, Any] | None:
        return await self._update("dungeons", dungeon_id, data, conn=conn)

    async def fetch_finished_dungeons(self, character_ids: list[int], *,
                                      offset: int = 0, limit: int = 5
                                      ) -> list[dict[str, Any]]:
        """Finished runs, most recently updated first, with character name/image."""
        if not character_ids:
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT d.*, c.name AS character_name, "
                "c.profile_image AS character_profile_image "
                "FROM dungeons d JOIN characters c ON c.id = d.character_id "
                "WHERE d.character_id = ANY($1::int[]) AND NOT d.active "
                "ORDER BY d.updated_at DESC OFFSET $2 LIMIT $3",
                character_ids, offset, limit,
            )
        return [_doc("dungeons", r) for r in rows]

    async def count_finished_dungeons(self, character_ids: list[int]) -> int:
        if not character_ids:
            return 0
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM dungeons "
                "WHERE character_id = ANY($1::int[]) AND NOT active",
                character_ids,
            ) or 0

    # ── Character status ───────────────────────────────────────────

    async def fetch_status(self, character_id: int, *,
                           conn: asyncpg.Connection | None = None
                           ) -> dict[str, Any] | None:
        async with self._conn(conn) as c:
            return _doc("character_status", await c.fetchrow(
                "SELECT * FROM character_status WHERE character_id = $1",
                character_id,
            ))

    async def save_status(self, character_id: int, status: dict[str, Any], *,
                          conn: asyncpg.Connection | None = None
                          ) -> dict[str, Any]:
        async with self._conn(conn) as c:
            return _doc("character_status", await c.fetchrow(
                "INSERT INTO character_status (character_id, status) "
                "VALUES ($1, $2) ON CONFLICT (character_id) DO UPDATE "
                "SET status = $2, last_updated = NOW() RETURNING *",
                character_id, _jdump(status),
            ))
