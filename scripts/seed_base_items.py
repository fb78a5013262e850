#!/usr/bin/env python3
"""Seed or remove the market catalog (data/base_items.yaml).

Usage:
  scripts/seed_base_items.py register   # upsert catalog items (default)
  scripts/seed_base_items.py remove     # delete every base item

Reads the database section of REALM_CONFIG (default config/realm.yaml).
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from core.db import Database  # noqa: E402
from core.server import load_config  # noqa: E402
from game.items import load_base_items  # noqa: E402

CATALOG = ROOT / "data" / "base_items.yaml"

log = logging.getLogger("seed_base_items")


async def run(command: str) -> int:
    config = load_config(os.environ.get("REALM_CONFIG", ROOT / "config" / "realm.yaml"))
    db = Database(config["database"])
    await db.connect()
    try:
        await db.ensure_schema()
        if command == "remove":
            count = await db.remove_base_items()
            log.info("Removed %d base items", count)
        else:
            count = await db.seed_base_items(load_base_items(CATALOG))
            log.info("Registered %d base items", count)
    finally:
        await db.close()
    return count


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    command = sys.argv[1] if len(sys.argv) > 1 else "register"
    if command not in ("register", "remove"):
        print(__doc__)
        sys.exit(2)
    asyncio.run(run(command))


if __name__ == "__main__":
    main()
