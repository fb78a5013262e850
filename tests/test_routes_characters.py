"""Character route tests."""

import pytest
from fastapi import HTTPException

from conftest import body_of, make_character, make_item
from game.routes.characters import (
    CharacterCreateBody,
    CharacterUpdateBody,
    HealBody,
    RewardBody,
    StatusBody,
    create_character,
    delete_character,
    get_character,
    get_status,
    heal_character,
    list_characters,
    reward_character,
    update_character,
    update_status,
)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create(self, server, user):
        body = CharacterCreateBody(name=" 리나 ", class_name="wizard", race="elf",
                                   stats={"constitution": 12, "intelligence": 16})
        response = await create_character(body, user=user)
        assert response.status_code == 201
        data = body_of(response)
        assert data["name"] == "리나"
        assert data["user_id"] == user.id
        assert data["hp"] == {"current": 7, "max": 7, "hit_dice": "d6"}
        assert data["resource"] == {"current": 20, "max": 20, "name": "Mana"}
        assert data["stats"]["strength"] == 10
        assert 40 <= data["gold"] <= 160

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides,detail", [
        ({"class_name": "Wizard"}, "Invalid character class"),
        ({"race": "orc"}, "Invalid character race"),
        ({"name": ""}, "Name is required"),
    ])
    async def test_invalid(self, server, user, overrides, detail):
        fields = {"name": "n", "class_name": "wizard", "race": "elf", **overrides}
        with pytest.raises(HTTPException) as exc_info:
            await create_character(CharacterCreateBody(**fields), user=user)
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == detail


class TestRead:
    @pytest.mark.asyncio
    async def test_list_paginates(self, server, db, user, other_user):
        for i in range(3):
            await make_character(db, user.id, name=f"c{i}")
        await make_character(db, other_user.id)
        data = body_of(await list_characters(page=2, limit=2, user=user))
        assert [c["name"] for c in data["characters"]] == ["c2"]
        assert data["pagination"] == {"total": 3, "page": 2, "pages": 2}
        assert "inventory" in data["characters"][0]

    @pytest.mark.asyncio
    async def test_get_populates_items(self, server, db, user):
        item = await make_item(db)
        char = await make_character(db, user.id, inventory=[item["id"], item["id"]],
                                    equipment={"weapon": item["id"], "armor": None,
                                               "shield": None, "accessories": []})
        data = body_of(await get_character(char["id"], user=user))
        assert data["equipment"]["weapon"]["name"] == "룬 검"
        assert [i["id"] for i in data["inventory"]] == [item["id"], item["id"]]

    @pytest.mark.asyncio
    async def test_foreign_character_is_not_found(self, server, db, user, other_user):
        char = await make_character(db, other_user.id)
        with pytest.raises(HTTPException) as exc_info:
            await get_character(char["id"], user=user)
        assert exc_info.value.status_code == 404


class TestUpdate:
    @pytest.mark.asyncio
    async def test_rename_and_stats(self, server, db, user):
        char = await make_character(db, user.id)
        body = CharacterUpdateBody(name="새 이름", stats={"wisdom": 13})
        data = body_of(await update_character(char["id"], body, user=user))
        assert data["name"] == "새 이름"
        assert data["stats"]["wisdom"] == 13
        assert data["stats"]["strength"] == 15

    @pytest.mark.asyncio
    async def test_equip_from_inventory(self, server, db, user):
        sword = await make_item(db)
        ring = await make_item(db, name="반지", type="accessory", weapon_type=None,
                               stats={"effects": []})
        char = await make_character(db, user.id, inventory=[sword["id"], ring["id"]])
        body = CharacterUpdateBody(equipment={"weapon": sword["id"],
                                              "accessories": [ring["id"]]})
        data = body_of(await update_character(char["id"], body, user=user))
        assert data["equipment"]["weapon"]["id"] == sword["id"]
        assert data["equipment"]["accessories"][0]["id"] == ring["id"]
        assert data["equipment"]["armor"] is None

    @pytest.mark.asyncio
    async def test_equip_missing_item(self, server, db, user):
        sword = await make_item(db)
        char = await make_character(db, user.id)
        body = CharacterUpdateBody(equipment={"weapon": sword["id"]})
        with pytest.raises(HTTPException) as exc_info:
            await update_character(char["id"], body, user=user)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_equip_class_restriction(self, server, db, user):
        plate = await make_item(db, name="판금", type="heavy-armor", weapon_type=None,
                                stats={"defense": 16, "effects": []})
        char = await make_character(db, user.id, class_name="wizard", inventory=[plate["id"]])
        body = CharacterUpdateBody(equipment={"armor": plate["id"]})
        with pytest.raises(HTTPException) as exc_info:
            await update_character(char["id"], body, user=user)
        assert exc_info.value.detail == "Armor not usable by this class"

    @pytest.mark.asyncio
    async def test_delete(self, server, db, user, other_user):
        char = await make_character(db, user.id)
        with pytest.raises(HTTPException) as exc_info:
            await delete_character(char["id"], user=other_user)
        assert exc_info.value.status_code == 404
        response = await delete_character(char["id"], user=user)
        assert response.status_code == 204
        assert await db.fetch_character(char["id"]) is None


class TestHeal:
    @pytest.mark.asyncio
    async def test_heal(self, server, db, user):
        char = await make_character(db, user.id, hp={"current": 3, "max": 12, "hit_dice": "d10"},
                                    resource={"current": 2, "max": 10, "name": "Stamina"})
        data = body_of(await heal_character(HealBody(character_id=char["id"]), user=user))
        assert data["hp"]["current"] == 12
        assert data["resource"]["current"] == 10
        assert data["gold"] == 50

    @pytest.mark.asyncio
    async def test_full_health(self, server, db, user):
        char = await make_character(db, user.id)
        with pytest.raises(HTTPException) as exc_info:
            await heal_character(HealBody(character_id=char["id"]), user=user)
        assert exc_info.value.detail == "Character is already at full health and resources"
        assert db.rollbacks == 1

    @pytest.mark.asyncio
    async def test_not_enough_gold(self, server, db, user):
        char = await make_character(db, user.id, gold=10,
                                    hp={"current": 1, "max": 12, "hit_dice": "d10"})
        with pytest.raises(HTTPException) as exc_info:
            await heal_character(HealBody(character_id=char["id"]), user=user)
        assert exc_info.value.detail == "Insufficient gold for healing"

    @pytest.mark.asyncio
    async def test_fractional_cost_rounds_up(self, server, db, user):
        char = await make_character(db, user.id, hp={"current": 1, "max": 12, "hit_dice": "d10"})
        data = body_of(await heal_character(
            HealBody(character_id=char["id"], healing_cost=0.5), user=user))
        assert data["hp"]["current"] == 12
        assert data["gold"] == 99

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cost", [0, -0.5, -20])
    async def test_cost_must_be_positive(self, server, db, user, cost):
        char = await make_character(db, user.id, hp={"current": 1, "max": 12, "hit_dice": "d10"})
        with pytest.raises(HTTPException) as exc_info:
            await heal_character(HealBody(character_id=char["id"], healing_cost=cost), user=user)
        assert exc_info.value.detail == "Healing cost must be positive"
        assert (await db.fetch_character(char["id"]))["gold"] == 100

    @pytest.mark.asyncio
    async def test_in_dungeon(self, server, db, user):
        char = await make_character(db, user.id, hp={"current": 1, "max": 12, "hit_dice": "d10"})
        await db.create_dungeon({"character_id": char["id"], "dungeon_name": "d"})
        with pytest.raises(HTTPException) as exc_info:
            await heal_character(HealBody(character_id=char["id"]), user=user)
        assert exc_info.value.detail == "Cannot heal while in a dungeon"


class TestReward:
    @pytest.mark.asyncio
    async def test_reward_levels_up(self, server, db, user):
        char = await make_character(db, user.id, experience=900)
        data = body_of(await reward_character(
            RewardBody(character_id=char["id"], gold=25, experience=200), user=user))
        assert data["success"] is True
        assert data["character"]["gold"] == 125
        assert data["character"]["level"] == 2
        assert data["character"]["experience"] == 100
        assert data["level_up"] is True
        assert data["next_level_xp"] == 2000
        stored = await db.fetch_character(char["id"])
        assert stored["hp"]["max"] == 20

    @pytest.mark.asyncio
    async def test_negative(self, server, db, user):
        char = await make_character(db, user.id)
        with pytest.raises(HTTPException) as exc_info:
            await reward_character(RewardBody(character_id=char["id"], gold=-1), user=user)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_gold_required(self, server, db, user):
        char = await make_character(db, user.id)
        with pytest.raises(HTTPException) as exc_info:
            await reward_character(RewardBody(character_id=char["id"], gold="10"), user=user)
        assert exc_info.value.detail == "Character ID and gold amount are required"

    @pytest.mark.asyncio
    async def test_foreign(self, server, db, user, other_user):
        char = await make_character(db, other_user.id)
        with pytest.raises(HTTPException) as exc_info:
            await reward_character(RewardBody(character_id=char["id"], gold=1), user=user)
        assert exc_info.value.status_code == 403


class TestStatus:
    @pytest.mark.asyncio
    async def test_default_status(self, server, db, user):
        char = await make_character(db, user.id)
        data = body_of(await get_status(character_id=char["id"], user=user))
        status = data["status"]["status"]
        assert status["dungeon"] == {"is_active": False, "dungeon_id": None}
        assert status["labor"] == {"is_active": False}

    @pytest.mark.asyncio
    async def test_dungeon_flag_is_derived(self, server, db, user):
        char = await make_character(db, user.id)
        dungeon = await db.create_dungeon({"character_id": char["id"], "dungeon_name": "d"})
        data = body_of(await get_status(character_id=char["id"], user=user))
        assert data["status"]["status"]["dungeon"] == {"is_active": True,
                                                       "dungeon_id": dungeon["id"]}

    @pytest.mark.asyncio
    async def test_start_labor(self, server, db, user):
        char = await make_character(db, user.id, level=2)
        body = StatusBody(character_id=char["id"], status_type="labor",
                          data={"is_active": True})
        data = body_of(await update_status(body, user=user))
        labor = data["status"]["status"]["labor"]
        assert labor["is_active"] is True
        assert labor["reward"] == 330
        assert labor["start_time"] < labor["end_time"]

    @pytest.mark.asyncio
    async def test_labor_blocked_in_dungeon(self, server, db, user):
        char = await make_character(db, user.id)
        await db.create_dungeon({"character_id": char["id"], "dungeon_name": "d"})
        body = StatusBody(character_id=char["id"], status_type="labor",
                          data={"is_active": True})
        with pytest.raises(HTTPException) as exc_info:
            await update_status(body, user=user)
        assert exc_info.value.detail == "Cannot start labor while in a dungeon"

    @pytest.mark.asyncio
    async def test_dungeon_status_not_writable(self, server, db, user):
        char = await make_character(db, user.id)
        body = StatusBody(character_id=char["id"], status_type="dungeon",
                          data={"is_active": True})
        with pytest.raises(HTTPException) as exc_info:
            await update_status(body, user=user)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_status_requires_id(self, server, user):
        with pytest.raises(HTTPException) as exc_info:
            await get_status(character_id=None, user=user)
        assert exc_info.value.status_code == 400
