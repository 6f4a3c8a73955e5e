# game_economy/services/consistency.py
"""
Invariant checks over a user's economy documents.

Used after migration and, when `validate_after_mutation` is on, after every
ledger mutation. A failing check only flags the player for manual review;
financial fields are never corrected automatically.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from game_economy.db import persistence_guard
from game_economy.mongo_collections import BANK_ACCOUNTS, PLAYER_STATES, STOCK_PORTFOLIOS
from game_economy.services.upserts import utcnow
from game_economy.services.validation import is_number
from game_economy.settings import settings

logger = logging.getLogger(__name__)

# float sums of rupee amounts drift a little
MONEY_TOLERANCE = 0.01


@dataclass
class ConsistencyReport:
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def _check_non_negative(report: ConsistencyReport, value: Any, label: str) -> None:
    if not is_number(value):
        report.issues.append(f"{label} is not a number: {value!r}")
    elif value < 0:
        report.issues.append(f"{label} is negative: {value}")


def check_economy(
    player: Optional[Dict[str, Any]],
    bank_account: Optional[Dict[str, Any]] = None,
    portfolio: Optional[Dict[str, Any]] = None,
) -> ConsistencyReport:
    report = ConsistencyReport()

    if player is not None:
        financial = player.get("financial") or {}
        _check_non_negative(report, financial.get("rupees"), "financial.rupees")

    if bank_account is not None:
        _check_non_negative(report, bank_account.get("balance"), "bank balance")

    if portfolio is not None:
        holdings = portfolio.get("holdings") or []
        total = 0.0
        for h in holdings:
            symbol = h.get("symbol")
            qty = h.get("quantity")
            if not is_number(qty) or qty <= 0:
                report.issues.append(f"holding {symbol} has non-positive quantity: {qty!r}")
            value = h.get("totalValue")
            if not is_number(value):
                report.issues.append(f"holding {symbol} has no totalValue")
                continue
            total += value

        stored_total = portfolio.get("totalValue", 0)
        if not is_number(stored_total) or abs(stored_total - total) > MONEY_TOLERANCE:
            report.issues.append(
                f"portfolio totalValue {stored_total!r} != sum of holdings {round(total, 2)}"
            )
        invested = portfolio.get("totalInvested", 0)
        gain = portfolio.get("totalGainLoss", 0)
        if is_number(stored_total) and is_number(invested) and is_number(gain):
            if abs(gain - (stored_total - invested)) > MONEY_TOLERANCE:
                report.issues.append(
                    f"portfolio totalGainLoss {gain} != totalValue - totalInvested"
                )

    return report


@persistence_guard
async def flag_for_review(db: AsyncIOMotorDatabase, user_id: str, issues: List[str]) -> None:
    """Mark a player document for manual inspection. Never touches balances."""
    logger.warning("Player %s flagged for manual review: %s", user_id, "; ".join(issues))
    await db[PLAYER_STATES].update_one(
        {"userId": user_id},
        {"$set": {
            "review": {"required": True, "issues": list(issues), "flaggedAt": utcnow()},
        }},
    )


@persistence_guard
async def audit_user(
    db: AsyncIOMotorDatabase,
    user_id: str,
    *,
    player: Optional[Dict[str, Any]] = None,
    extra_issues: List[str] | None = None,
) -> ConsistencyReport:
    """
    Check the user's documents and flag the player when anything is off.
    `player` skips the read when the caller already holds the document
    (e.g. right after migration); `extra_issues` are flagged alongside.
    """
    if player is None:
        player, bank_account, portfolio = await asyncio.gather(
            db[PLAYER_STATES].find_one({"userId": user_id}),
            db[BANK_ACCOUNTS].find_one({"userId": user_id}),
            db[STOCK_PORTFOLIOS].find_one({"userId": user_id}),
        )
    else:
        bank_account, portfolio = await asyncio.gather(
            db[BANK_ACCOUNTS].find_one({"userId": user_id}),
            db[STOCK_PORTFOLIOS].find_one({"userId": user_id}),
        )
    report = check_economy(player, bank_account, portfolio)
    report.issues[:0] = list(extra_issues or [])
    if not report.ok and player is not None:
        await flag_for_review(db, user_id, report.issues)
    return report


async def audit_after_mutation(db: AsyncIOMotorDatabase, user_id: str) -> Optional[ConsistencyReport]:
    if not settings.validate_after_mutation:
        return None
    return await audit_user(db, user_id)
