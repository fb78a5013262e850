"""Shared fixtures — in-memory database and a server handle for route tests."""

import copy
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

import core.api as api_mod
from core.auth import AuthUser
from core.db import WRITABLE_COLUMNS

AUTH_CFG = {"secret_key": "test-secret", "algorithm": "HS256", "token_ttl_minutes": 60}


def _now():
    return datetime.now(timezone.utc)


class FakeDatabase:
    """Dict-backed stand-in for core.db.Database.

    Rows are returned as deep copies so handlers cannot mutate storage
    without going through an update call. transaction() restores every
    table when the block raises.
    """

    def __init__(self):
        self.tables = {"users": {}, "characters": {}, "items": {}, "dungeons": {}, "status": {}}
        self._seq = {name: 0 for name in self.tables}
        self.transactions = 0
        self.rollbacks = 0

    # ── helpers ──────────────────────────────────────────────────

    def _next_id(self, table):
        self._seq[table] += 1
        return self._seq[table]

    def _get(self, table, row_id):
        row = self.tables[table].get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def _insert(self, table, defaults, data):
        row = {**copy.deepcopy(defaults), **copy.deepcopy(data)}
        row["id"] = self._next_id(table)
        row.setdefault("created_at", _now())
        # Same JSON round trip as JSONB columns
        for key, value in list(row.items()):
            if isinstance(value, (dict, list)):
                row[key] = json.loads(json.dumps(value, default=str))
        self.tables[table][row["id"]] = row
        return copy.deepcopy(row)

    def _update(self, table, row_id, data):
        unknown = set(data) - WRITABLE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Not writable on {table}: {sorted(unknown)}")
        row = self.tables[table].get(row_id)
        if row is None:
            return None
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                value = json.loads(json.dumps(value, default=str))
            row[key] = value
        row["updated_at"] = _now()
        return copy.deepcopy(row)

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy((self.tables, self._seq))
        self.transactions += 1
        try:
            yield MagicMock(name="conn")
        except BaseException:
            self.tables, self._seq = snapshot
            self.rollbacks += 1
            raise

    # ── users ────────────────────────────────────────────────────

    async def fetch_user(self, user_id):
        return self._get("users", user_id)

    async def fetch_user_by_email(self, email):
        for row in self.tables["users"].values():
            if row["email"].lower() == email.lower():
                return copy.deepcopy(row)
        return None

    async def create_user(self, *, email, password_hash, name, role="user"):
        return self._insert("users", {"image": ""}, {
            "email": email, "password_hash": password_hash, "name": name, "role": role,
        })

    async def update_user(self, user_id, data):
        return self._update("users", user_id, data)

    async def delete_user(self, user_id):
        if self.tables["users"].pop(user_id, None) is None:
            return False
        for cid in [c["id"] for c in self.tables["characters"].values()
                    if c["user_id"] == user_id]:
            self.tables["characters"].pop(cid)
        return True

    # ── characters ───────────────────────────────────────────────

    async def fetch_character(self, character_id, *, conn=None, for_update=False):
        return self._get("characters", character_id)

    async def fetch_characters(self, user_id, *, offset=0, limit=None):
        rows = sorted((c for c in self.tables["characters"].values()
                       if c["user_id"] == user_id), key=lambda c: c["id"])
        end = None if limit is None else offset + limit
        return copy.deepcopy(rows[offset:end])

    async def count_characters(self, user_id):
        return sum(1 for c in self.tables["characters"].values() if c["user_id"] == user_id)

    async def create_character(self, data):
        return self._insert("characters", {
            "level": 1, "experience": 0, "proficiencies": [], "features": [],
            "spells": {"known": [], "slots": []},
            "equipment": {"weapon": None, "armor": None, "shield": None, "accessories": []},
            "inventory": [], "gold": 0,
            "arena_stats": {"rank": 0, "rating": 1000, "wins": 0, "losses": 0},
            "profile_image": "",
        }, data)

    async def update_character(self, character_id, data, *, conn=None):
        return self._update("characters", character_id, data)

    async def delete_character(self, character_id, user_id):
        row = self.tables["characters"].get(character_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self.tables["characters"][character_id]
        return True

    # ── items ────────────────────────────────────────────────────

    async def fetch_item(self, item_id, *, conn=None, for_update=False):
        return self._get("items", item_id)

    async def fetch_items(self, item_ids, *, conn=None):
        ids = {int(i) for i in item_ids}
        return [copy.deepcopy(r) for i, r in self.tables["items"].items() if i in ids]

    async def create_item(self, data, *, conn=None):
        return self._insert("items", {
            "weapon_type": None, "description": "", "owner_id": None,
            "previous_owner_id": None, "is_base_item": False, "required_level": 1,
        }, data)

    async def update_items(self, item_ids, data, *, conn=None):
        for item_id in {int(i) for i in item_ids}:
            self._update("items", item_id, data)

    async def delete_items(self, item_ids, *, conn=None):
        for item_id in {int(i) for i in item_ids}:
            row = self.tables["items"].get(item_id)
            if row is not None and not row["is_base_item"]:
                del self.tables["items"][item_id]

    async def fetch_base_items(self):
        return [copy.deepcopy(r) for r in self.tables["items"].values() if r["is_base_item"]]

    async def fetch_unowned_items(self, *, max_level, limit):
        rows = [r for r in self.tables["items"].values()
                if r["owner_id"] is None and not r["is_base_item"]
                and r["type"] != "consumable" and r["required_level"] <= max_level]
        return copy.deepcopy(rows[:limit])

    async def seed_base_items(self, items):
        for item in items:
            await self.create_item({**item, "is_base_item": True})
        return len(items)

    async def remove_base_items(self):
        base = [i for i, r in self.tables["items"].items() if r["is_base_item"]]
        for item_id in base:
            del self.tables["items"][item_id]
        return len(base)

    # ── dungeons ─────────────────────────────────────────────────

    async def fetch_dungeon(self, dungeon_id, *, conn=None, for_update=False):
        return self._get("dungeons", dungeon_id)

    async def fetch_active_dungeon(self, character_id, *, conn=None):
        for row in self.tables["dungeons"].values():
            if row["character_id"] == character_id and row["active"]:
                return copy.deepcopy(row)
        return None

    async def create_dungeon(self, data, *, conn=None):
        return self._insert("dungeons", {
            "concept": "", "difficulty": "normal", "recommended_level": 1,
            "current_stage": 0, "max_stages": 3, "can_escape": True, "player_hp": 0,
            "active": True, "status": "active", "temporary_inventory": [],
            "logs": [], "rewards": {}, "completed_at": None,
        }, data)

    async def update_dungeon(self, dungeon_id, data, *, conn=None):
        return self._update("dungeons", dungeon_id, data)

    async def fetch_finished_dungeons(self, character_ids, *, offset=0, limit=5):
        rows = [r for r in self.tables["dungeons"].values()
                if r["character_id"] in character_ids and not r["active"]]
        rows.sort(key=lambda r: r.get("updated_at") or r["created_at"], reverse=True)
        result = []
        for row in rows[offset:offset + limit]:
            char = self.tables["characters"][row["character_id"]]
            result.append({**copy.deepcopy(row), "character_name": char["name"],
                           "character_profile_image": char["profile_image"]})
        return result

    async def count_finished_dungeons(self, character_ids):
        return sum(1 for r in self.tables["dungeons"].values()
                   if r["character_id"] in character_ids and not r["active"])

    # ── status ───────────────────────────────────────────────────

    async def fetch_status(self, character_id, *, conn=None):
        row = self.tables["status"].get(character_id)
        return copy.deepcopy(row) if row is not None else None

    async def save_status(self, character_id, status, *, conn=None):
        row = {"character_id": character_id,
               "status": json.loads(json.dumps(status, default=str)),
               "last_updated": _now()}
        self.tables["status"][character_id] = row
        return copy.deepcopy(row)


# ── fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def server(db, tmp_path):
    srv = MagicMock()
    srv.name = "Dungeon Realm"
    srv.db = db
    srv.config = {"auth": dict(AUTH_CFG)}
    srv.uploads_dir = tmp_path / "uploads"
    srv.ai = MagicMock()
    srv.ai.hf_token = "hf-test"
    srv.ai.generate_json = AsyncMock()
    srv.ai.generate_text = AsyncMock()
    srv.ai.generate_image = AsyncMock(return_value=None)
    api_mod._server = srv
    yield srv
    api_mod._server = None


@pytest.fixture
async def user(db):
    record = await db.create_user(email="hero@example.com", password_hash="x", name="Hero")
    return AuthUser(id=record["id"], email=record["email"], name=record["name"])


@pytest.fixture
async def other_user(db):
    record = await db.create_user(email="rival@example.com", password_hash="x", name="Rival")
    return AuthUser(id=record["id"], email=record["email"], name=record["name"])


async def make_character(db, user_id, **overrides):
    data = {
        "user_id": user_id,
        "name": "아리아",
        "class_name": "fighter",
        "race": "human",
        "level": 1,
        "experience": 0,
        "stats": {"strength": 15, "dexterity": 12, "constitution": 14,
                  "intelligence": 10, "wisdom": 10, "charisma": 8},
        "hp": {"current": 12, "max": 12, "hit_dice": "d10"},
        "resource": {"current": 10, "max": 10, "name": "Stamina"},
        "gold": 100,
    }
    data.update(overrides)
    return await db.create_character(data)


async def make_item(db, **overrides):
    data = {
        "name": "룬 검", "type": "weapon", "weapon_type": "martial-melee",
        "rarity": "rare", "stats": {"damage": "1d8", "effects": []},
        "required_level": 1, "value": 100,
    }
    data.update(overrides)
    return await db.create_item(data)


def body_of(response):
    return json.loads(response.body)
