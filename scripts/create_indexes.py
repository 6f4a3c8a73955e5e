# scripts/create_indexes.py
"""
Create/ensure MongoDB indexes for the game economy service.

Run from project root (after `pip install -e .`):
  - python -m scripts.create_indexes
"""

import asyncio

from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore
from pymongo import ASCENDING, DESCENDING

from game_economy.settings import settings
from game_economy.mongo_collections import (
    PLAYER_STATES,
    BANK_ACCOUNTS,
    FIXED_DEPOSITS,
    STOCK_PORTFOLIOS,
    STOCK_TRANSACTIONS,
)


async def ensure_indexes() -> None:
    client = AsyncIOMotorClient(settings.mongodb_uri)
    db = client[settings.mongodb_db]

    # PLAYER_STATES (one per user; upsert-on-first-access relies on the unique key)
    await db[PLAYER_STATES].create_index("userId", unique=True)
    # batch migration scans for outdated documents
    await db[PLAYER_STATES].create_index([("schemaVersion", ASCENDING)])
    await db[PLAYER_STATES].create_index([("review.required", ASCENDING)], sparse=True)

    # BANK_ACCOUNTS (one per user)
    await db[BANK_ACCOUNTS].create_index("userId", unique=True)

    # FIXED_DEPOSITS (many per user; listing + maturity sweep by status)
    await db[FIXED_DEPOSITS].create_index([("userId", ASCENDING), ("status", ASCENDING)])
    await db[FIXED_DEPOSITS].create_index([("userId", ASCENDING), ("startDate", DESCENDING)])

    # STOCK_PORTFOLIOS (one per user)
    await db[STOCK_PORTFOLIOS].create_index("userId", unique=True)

    # STOCK_TRANSACTIONS (append-only history, newest first)
    await db[STOCK_TRANSACTIONS].create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])

    client.close()


def main() -> None:
    try:
        asyncio.run(ensure_indexes())
        print("✅ Indexes ensured.")
    except Exception as e:
        print(f"❌ Failed to create indexes: {e}")
        raise


if __name__ == "__main__":
    main()
