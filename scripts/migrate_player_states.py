# scripts/migrate_player_states.py
"""
Offline pass that upgrades every outdated player document in place.

Players are migrated lazily on read anyway; this script is for bringing
dormant accounts forward (e.g. before dropping support for an old schema).
Safe to re-run: migration is idempotent and only documents below the
current schema version are touched.

Run from project root (after `pip install -e .`):
  - python -m scripts.migrate_player_states            # dry run
  - python -m scripts.migrate_player_states --apply
"""

import argparse
import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore

from game_economy.settings import settings
from game_economy.mongo_collections import PLAYER_STATES
from game_economy.services.player_state import get_or_create
from game_economy.services.schema_migration import CURRENT_SCHEMA_VERSION, migrate

logger = logging.getLogger("game_economy.scripts.migrate")

OUTDATED_FILTER = {
    "$or": [
        {"schemaVersion": {"$exists": False}},
        {"schemaVersion": {"$lt": CURRENT_SCHEMA_VERSION}},
    ]
}


async def migrate_all(db, *, apply: bool = False) -> dict:
    stats = {"scanned": 0, "changed": 0, "skipped": 0, "failed": 0}
    cursor = db[PLAYER_STATES].find(OUTDATED_FILTER)
    async for doc in cursor:
        stats["scanned"] += 1
        user_id = doc.get("userId")
        if not user_id:
            # get_or_create would upsert a player keyed on null
            stats["skipped"] += 1
            logger.warning("Skipping player document %s without userId", doc.get("_id"))
            continue

        result = migrate(doc)
        if result.failed:
            stats["failed"] += 1
            continue
        if not result.needs_update:
            continue
        if not apply:
            stats["changed"] += 1
            logger.info("[dry-run] %s: %s", user_id, "; ".join(result.changes))
            continue
        try:
            # the store does migrate + write-back + audit
            await get_or_create(db, user_id)
            stats["changed"] += 1
        except Exception:
            stats["failed"] += 1
            logger.exception("Migration failed for %s", user_id)
    return stats


async def run(apply: bool) -> dict:
    client = AsyncIOMotorClient(settings.mongodb_uri)
    try:
        return await migrate_all(client[settings.mongodb_db], apply=apply)
    finally:
        client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Upgrade outdated player documents")
    parser.add_argument("--apply", action="store_true", help="write changes (default: dry run)")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    stats = asyncio.run(run(args.apply))
    mode = "applied" if args.apply else "dry run"
    print(f"✅ Migration {mode}: {stats}")


if __name__ == "__main__":
    main()
