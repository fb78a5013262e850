"""Dungeon Realm server — config, boot sequence, API lifetime."""

from __future__ import annotations

import asyncio
import importlib
import logging
import os
import signal
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from core.ai import AIClient
from core.db import Database

log = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent


def load_config(config_path: str | Path) -> dict[str, Any]:
    """Read the YAML config and apply environment overrides for secrets."""
    with open(config_path, encoding="utf-8") as f:
        config: dict[str, Any] = yaml.safe_load(f) or {}

    config.setdefault("database", {})
    config.setdefault("network", {})
    config.setdefault("ai", {})
    config.setdefault("storage", {})
    auth = config.setdefault("auth", {})
    auth.setdefault("algorithm", "HS256")
    auth.setdefault("token_ttl_minutes", 60 * 24)
    if os.environ.get("SECRET_KEY"):
        auth["secret_key"] = os.environ["SECRET_KEY"]
    if not auth.get("secret_key"):
        raise RuntimeError("auth.secret_key is not configured (set SECRET_KEY)")
    return config


# ── Plugin Protocol ──────────────────────────────────────────────

@runtime_checkable
class RoutePlugin(Protocol):
    name: str

    def register_routes(self, app: Any) -> None: ...


class GameServer:
    """Owns config, DB pool, AI clients and the HTTP API."""

    def __init__(self, config_path: str | Path) -> None:
        self.config = load_config(config_path)
        self.name: str = self.config.get("name", "Dungeon Realm")
        self.db = Database(self.config["database"])
        self.ai = AIClient(self.config["ai"])
        self.uploads_dir = Path(self.config["storage"].get("uploads_dir", "uploads"))
        if not self.uploads_dir.is_absolute():
            self.uploads_dir = BASE_DIR / self.uploads_dir
        self._plugin: Any = None
        self._running = False

    # ── Boot sequence ────────────────────────────────────────────

    async def boot(self) -> None:
        log.info("=== %s booting ===", self.name)

        # 1. Connect to DB
        await self.db.connect()

        # 2. Schema + catalog
        await self.db.ensure_schema()
        from game.items import load_base_items
        await self.db.seed_base_items(load_base_items(BASE_DIR / "data" / "base_items.yaml"))

        # 3. Load route plugin
        mod = importlib.import_module(self.config.get("plugin", "game.plugin"))
        self._plugin = mod.create_plugin()
        log.info("Route plugin loaded: %s", self._plugin.name)

        # 4. Start HTTP API
        from core.api import app, start_api
        self._plugin.register_routes(app)
        net_cfg = self.config["network"]
        await start_api(
            self,
            host=net_cfg.get("api_host", "0.0.0.0"),
            port=net_cfg.get("api_port", 8080),
        )

        self._running = True
        log.info("=== Boot complete: %d routes ===", len(app.routes))

    async def shutdown(self) -> None:
        log.info("Shutting down...")
        self._running = False
        from core.api import stop_api
        await stop_api()
        await self.ai.close()
        await self.db.close()
        log.info("Shutdown complete")

    async def run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(0.5)

    # ── Entry point ──────────────────────────────────────────────

    async def run(self) -> None:
        """Boot and serve until stopped."""
        await self.boot()
        try:
            await self.run_loop()
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()


# ── Main ─────────────────────────────────────────────────────────

def main() -> None:
    config_path = os.environ.get("REALM_CONFIG", BASE_DIR / "config" / "realm.yaml")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    server = GameServer(config_path)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _signal_handler() -> None:
        server._running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    try:
        loop.run_until_complete(server.run())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
