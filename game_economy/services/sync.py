# game_economy/services/sync.py

from __future__ import annotations
import asyncio
import datetime as dt
from datetime import timezone
from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase

from game_economy.db import persistence_guard
from game_economy.mongo_collections import BANK_ACCOUNTS, STOCK_PORTFOLIOS
from game_economy.services.banking import list_fixed_deposits
from game_economy.services.mappers import map_document, map_documents, map_player_state
from game_economy.services.player_state import get_or_create
from game_economy.services.stocks import list_stock_transactions

SYNC_TRANSACTION_LIMIT = 50


@persistence_guard
async def sync_user(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """
    Everything the client needs in one read:
    - player state (through the store, so it comes back migrated)
    - bank account, fixed deposits, stock portfolio as stored (None if never created)
    - the most recent stock transactions
    """
    player_state, bank_account, fixed_deposits, portfolio, transactions = await asyncio.gather(
        get_or_create(db, user_id),
        db[BANK_ACCOUNTS].find_one({"userId": user_id}),
        list_fixed_deposits(db, user_id),
        db[STOCK_PORTFOLIOS].find_one({"userId": user_id}),
        list_stock_transactions(db, user_id, limit=SYNC_TRANSACTION_LIMIT),
    )

    return {
        "playerState": map_player_state(player_state),
        "bankAccount": map_document(bank_account),
        "fixedDeposits": map_documents(fixed_deposits),
        "stockPortfolio": map_document(portfolio),
        "stockTransactions": map_documents(transactions),
        "syncedAt": dt.datetime.now(timezone.utc).isoformat(),
    }
