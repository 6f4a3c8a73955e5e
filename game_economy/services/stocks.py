# game_economy/services/stocks.py
"""
Stock portfolio: buys, sells and the append-only stock transaction log.

`apply_buy` / `apply_sell` are pure and carry all the cost-basis math; the
async wrappers read the portfolio, apply, and write the pieces back.
Portfolio writes are read-modify-write without locking: concurrent trades
for the same user can lose an update (wallet debits are still guarded).
"""

from __future__ import annotations
import copy
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from game_economy.db import persistence_guard
from game_economy.errors import InsufficientFundsError, NotFoundError, ValidationError
from game_economy.mongo_collections import STOCK_PORTFOLIOS, STOCK_TRANSACTIONS
from game_economy.services.consistency import audit_after_mutation
from game_economy.services.player_state import (
    credit_wallet,
    debit_wallet,
    get_or_create,
    wallet_rupees,
)
from game_economy.services.upserts import utcnow
from game_economy.services.validation import require_positive

logger = logging.getLogger(__name__)

TRANSACTION_HISTORY_LIMIT = 100


@dataclass
class SaleResult:
    portfolio: Dict[str, Any]
    stock_name: str
    sale_value: float
    cost_basis: float
    profit: float
    # None when the whole holding was sold
    holding: Optional[Dict[str, Any]]

    @property
    def profit_percent(self) -> float:
        return (self.profit / self.cost_basis) * 100 if self.cost_basis else 0.0


# ---------------- pure portfolio math ----------------

def _find_holding(portfolio: Dict[str, Any], symbol: str) -> int:
    for i, h in enumerate(portfolio.get("holdings", [])):
        if h.get("symbol") == symbol:
            return i
    return -1


def _reprice(holding: Dict[str, Any], price: float) -> None:
    """Mark a holding to `price` against its (unchanged) average cost."""
    qty = holding["quantity"]
    invested = holding["averagePrice"] * qty
    value = price * qty
    holding["currentPrice"] = price
    holding["totalValue"] = value
    holding["gainLoss"] = value - invested
    holding["gainLossPercentage"] = ((value - invested) / invested) * 100 if invested else 0.0


def _refresh_totals(portfolio: Dict[str, Any]) -> None:
    portfolio["totalValue"] = sum(h["totalValue"] for h in portfolio["holdings"])
    portfolio["totalGainLoss"] = portfolio["totalValue"] - portfolio["totalInvested"]


def apply_buy(
    portfolio: Dict[str, Any],
    symbol: str,
    name: str,
    quantity: float,
    price: float,
    now: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    """Return a new portfolio with the purchase applied (weighted-average cost)."""
    now = now or utcnow()
    updated = copy.deepcopy(portfolio)
    updated.setdefault("holdings", [])
    updated.setdefault("totalInvested", 0)
    cost = price * quantity

    idx = _find_holding(updated, symbol)
    if idx >= 0:
        holding = updated["holdings"][idx]
        old_qty = holding["quantity"]
        new_qty = old_qty + quantity
        holding["averagePrice"] = (holding["averagePrice"] * old_qty + cost) / new_qty
        holding["quantity"] = new_qty
    else:
        holding = {
            "symbol": symbol,
            "name": name,
            "quantity": quantity,
            "averagePrice": price,
            "purchaseDate": now,
        }
        updated["holdings"].append(holding)
    _reprice(holding, price)

    updated["totalInvested"] += cost
    _refresh_totals(updated)
    updated["lastUpdated"] = now
    return updated


def apply_sell(
    portfolio: Dict[str, Any],
    symbol: str,
    quantity: float,
    price: float,
    now: Optional[dt.datetime] = None,
) -> SaleResult:
    """
    Return the portfolio after selling `quantity` shares at `price`.
    Profit is measured against the sold shares' average cost; the average
    cost of what remains is left as it was.
    """
    now = now or utcnow()
    updated = copy.deepcopy(portfolio)
    updated.setdefault("holdings", [])
    updated.setdefault("totalInvested", 0)

    idx = _find_holding(updated, symbol)
    if idx < 0:
        raise NotFoundError("Stock not found in portfolio")
    holding = updated["holdings"][idx]
    if holding["quantity"] < quantity:
        raise InsufficientFundsError("Insufficient shares to sell")

    sale_value = price * quantity
    cost_basis = holding["averagePrice"] * quantity
    profit = sale_value - cost_basis

    if holding["quantity"] == quantity:
        updated["holdings"].pop(idx)
        remaining = None
    else:
        holding["quantity"] -= quantity
        _reprice(holding, price)
        remaining = holding

    updated["totalInvested"] -= cost_basis
    _refresh_totals(updated)
    updated["lastUpdated"] = now

    return SaleResult(
        portfolio=updated,
        stock_name=holding.get("name", symbol),
        sale_value=sale_value,
        cost_basis=cost_basis,
        profit=profit,
        holding=remaining,
    )


# ---------------- persistence ----------------

def _portfolio_fields(portfolio: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "holdings": portfolio["holdings"],
        "totalValue": portfolio["totalValue"],
        "totalInvested": portfolio["totalInvested"],
        "totalGainLoss": portfolio["totalGainLoss"],
        "lastUpdated": portfolio["lastUpdated"],
    }


async def _record_transaction(
    db: AsyncIOMotorDatabase,
    user_id: str,
    portfolio: Dict[str, Any],
    *,
    kind: str,
    stock_id: str,
    stock_name: str,
    price: float,
    quantity: float,
    total: float,
) -> Dict[str, Any]:
    txn = {
        "userId": user_id,
        "stockId": stock_id,
        "stockName": stock_name,
        "type": kind,  # 'buy' | 'sell'
        "price": price,
        "quantity": quantity,
        "total": total,
        "timestamp": utcnow(),
        "portfolioId": str(portfolio["_id"]),
    }
    result = await db[STOCK_TRANSACTIONS].insert_one(txn)
    txn["_id"] = result.inserted_id
    return txn


def _require_symbol(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid {name}")
    return value


@persistence_guard
async def get_portfolio(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """Get the user's portfolio, creating an empty one on demand."""
    now = utcnow()
    return await db[STOCK_PORTFOLIOS].find_one_and_update(
        {"userId": user_id},
        {"$setOnInsert": {
            "holdings": [],
            "totalValue": 0,
            "totalInvested": 0,
            "totalGainLoss": 0,
            "createdAt": now,
            "lastUpdated": now,
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


@persistence_guard
async def list_stock_transactions(
    db: AsyncIOMotorDatabase,
    user_id: str,
    limit: int = TRANSACTION_HISTORY_LIMIT,
) -> List[Dict[str, Any]]:
    """Newest first."""
    cursor = db[STOCK_TRANSACTIONS].find({"userId": user_id}).sort("timestamp", -1).limit(limit)
    return [t async for t in cursor]


@persistence_guard
async def buy_stock(
    db: AsyncIOMotorDatabase,
    user_id: str,
    symbol: str,
    name: str,
    quantity: float,
    price: float,
) -> Dict[str, Any]:
    _require_symbol(symbol, "stock id")
    _require_symbol(name, "stock name")
    require_positive(quantity, "quantity")
    require_positive(price, "price")

    cost = price * quantity
    player = await get_or_create(db, user_id)
    if wallet_rupees(player) < cost:
        raise InsufficientFundsError("Insufficient rupees")

    portfolio = await get_portfolio(db, user_id)
    updated = apply_buy(portfolio, symbol, name, quantity, price)

    await debit_wallet(
        db, user_id, cost,
        extra_set={"financial.stockPortfolioValue": updated["totalValue"]},
    )
    await db[STOCK_PORTFOLIOS].update_one(
        {"_id": portfolio["_id"]}, {"$set": _portfolio_fields(updated)}
    )
    txn = await _record_transaction(
        db, user_id, updated,
        kind="buy", stock_id=symbol, stock_name=name,
        price=price, quantity=quantity, total=cost,
    )

    await audit_after_mutation(db, user_id)
    return {
        "transaction": txn,
        "totalCost": cost,
        "holding": updated["holdings"][_find_holding(updated, symbol)],
        "portfolio": updated,
    }


@persistence_guard
async def sell_stock(
    db: AsyncIOMotorDatabase,
    user_id: str,
    symbol: str,
    quantity: float,
    price: float,
) -> Dict[str, Any]:
    _require_symbol(symbol, "stock id")
    require_positive(quantity, "quantity")
    require_positive(price, "price")

    await get_or_create(db, user_id)
    portfolio = await db[STOCK_PORTFOLIOS].find_one({"userId": user_id})
    if not portfolio:
        raise NotFoundError("Portfolio not found")

    sale = apply_sell(portfolio, symbol, quantity, price)

    await db[STOCK_PORTFOLIOS].update_one(
        {"_id": portfolio["_id"]}, {"$set": _portfolio_fields(sale.portfolio)}
    )
    txn = await _record_transaction(
        db, user_id, sale.portfolio,
        kind="sell", stock_id=symbol, stock_name=sale.stock_name,
        price=price, quantity=quantity, total=sale.sale_value,
    )
    await credit_wallet(
        db, user_id, sale.sale_value,
        extra_set={"financial.stockPortfolioValue": sale.portfolio["totalValue"]},
    )

    await audit_after_mutation(db, user_id)
    return {
        "transaction": txn,
        "saleValue": sale.sale_value,
        "profit": sale.profit,
        "profitPercent": sale.profit_percent,
        "holding": sale.holding,
        "portfolio": sale.portfolio,
    }
