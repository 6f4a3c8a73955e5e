# game_economy/services/starter_bonus.py
import logging
from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase

from game_economy.db import persistence_guard
from game_economy.mongo_collections import PLAYER_STATES
from game_economy.services.consistency import audit_after_mutation
from game_economy.services.player_state import get_or_create
from game_economy.services.schema_migration import LEGACY_STARTER_MARKER
from game_economy.services.upserts import utcnow
from game_economy.settings import settings

logger = logging.getLogger(__name__)


@persistence_guard
async def grant_starter_bonus(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """
    One-time starter money, exactly once per player.

    The guard lives in the update filter, so Mongo evaluates "not yet claimed"
    and applies the grant in one step: when callers race, only one update
    matches. Later calls report newlyGranted=False and amount 0.
    """
    amount = settings.starter_amount
    await get_or_create(db, user_id)

    result = await db[PLAYER_STATES].update_one(
        {
            "userId": user_id,
            "starterClaimed": {"$ne": True},
            "progress.completedTutorials": {"$ne": LEGACY_STARTER_MARKER},
            # oldest documents kept the marker at the top level
            "completedTutorials": {"$ne": LEGACY_STARTER_MARKER},
        },
        {
            "$inc": {"financial.rupees": amount, "financial.totalWealth": amount},
            "$addToSet": {"progress.completedTutorials": LEGACY_STARTER_MARKER},
            "$set": {"starterClaimed": True, "lastUpdated": utcnow()},
        },
    )
    newly_granted = result.modified_count == 1

    state = await db[PLAYER_STATES].find_one({"userId": user_id})
    rupees = (state or {}).get("financial", {}).get("rupees", 0)

    if newly_granted:
        logger.info("Starter bonus of %s granted to %s", amount, user_id)
        await audit_after_mutation(db, user_id)

    return {
        "newlyGranted": newly_granted,
        "amount": amount if newly_granted else 0,
        "claimed": True,
        "rupees": rupees,
    }
