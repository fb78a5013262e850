"""Dungeon Realm route plugin — mounts the game routers on the API app."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

log = logging.getLogger(__name__)


class RealmPlugin:
    """Game plugin: owns the HTTP routers."""

    name = "dungeon_realm"

    def routers(self) -> list[APIRouter]:
        from game.routes import auth, characters, dashboard, dungeon, market, media, user
        return [
            auth.router, user.router, characters.router, dungeon.router,
            dashboard.router, market.router, media.router,
        ]

    def register_routes(self, app: Any) -> None:
        # Mounted once per app
        if getattr(app.state, "realm_routes", False):
            return
        for router in self.routers():
            app.include_router(router)
        app.state.realm_routes = True
        log.info("Registered %d routers", len(self.routers()))


def create_plugin() -> RealmPlugin:
    return RealmPlugin()
