# game_economy/services/banking.py
"""
Bank accounts and fixed deposits.

Wallet <-> bank transfers touch two documents (playerStates and
bankAccounts) with no multi-document transaction. The source side is always
debited first with a guarded update, so a crash between the two writes can
lose the transfer but never mint money. Reconciliation of such gaps is a
manual-review job (see consistency.py).
"""

from __future__ import annotations
import datetime as dt
import logging
import secrets
import string
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from game_economy.db import persistence_guard
from game_economy.errors import (
    AlreadyClaimedError,
    AlreadyExistsError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from game_economy.mongo_collections import BANK_ACCOUNTS, FIXED_DEPOSITS
from game_economy.services.consistency import audit_after_mutation
from game_economy.services.player_state import (
    adjust_bank_cache,
    credit_wallet,
    debit_wallet,
    get_or_create,
    wallet_rupees,
)
from game_economy.services.upserts import as_utc, utcnow
from game_economy.services.validation import (
    require_non_negative,
    require_object_id,
    require_positive,
)

logger = logging.getLogger(__name__)

# (minimum duration in days, annual rate %), highest threshold first
FD_RATE_TIERS = (
    (730, 9.5),
    (365, 8.5),
    (180, 7.5),
    (90, 6.5),
)
FD_BASE_RATE = 5.0

_ACCOUNT_ALPHABET = string.ascii_uppercase + string.digits


def interest_rate_for(duration_days: float) -> float:
    for min_days, rate in FD_RATE_TIERS:
        if duration_days >= min_days:
            return rate
    return FD_BASE_RATE


def maturity_interest(principal: float, rate: float, duration_days: float) -> int:
    """Simple interest for the full term, rounded half-up to whole rupees."""
    interest = (
        Decimal(str(principal))
        * Decimal(str(rate)) / Decimal(100)
        * Decimal(str(duration_days)) / Decimal(365)
    )
    return int(interest.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _bank_transaction(kind: str, amount: float, description: str) -> Dict[str, Any]:
    return {
        "id": str(ObjectId()),
        "type": kind,  # 'deposit' | 'withdrawal'
        "amount": amount,
        "timestamp": utcnow(),
        "description": description,
    }


def _account_number() -> str:
    return "DIN-" + "".join(secrets.choice(_ACCOUNT_ALPHABET) for _ in range(6))


async def _credit_bank(
    db: AsyncIOMotorDatabase, user_id: str, amount: float, description: str
) -> Dict[str, Any]:
    now = utcnow()
    return await db[BANK_ACCOUNTS].find_one_and_update(
        {"userId": user_id},
        {
            "$inc": {"balance": amount},
            "$push": {"transactions": _bank_transaction("deposit", amount, description)},
            "$set": {"lastUpdated": now},
            "$setOnInsert": {"createdAt": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def _debit_bank(
    db: AsyncIOMotorDatabase, user_id: str, amount: float, description: str
) -> Dict[str, Any]:
    account = await db[BANK_ACCOUNTS].find_one_and_update(
        {"userId": user_id, "balance": {"$gte": amount}},
        {
            "$inc": {"balance": -amount},
            "$push": {"transactions": _bank_transaction("withdrawal", amount, description)},
            "$set": {"lastUpdated": utcnow()},
        },
        return_document=ReturnDocument.AFTER,
    )
    if account is None:
        raise InsufficientFundsError("Insufficient bank balance")
    return account


# ---------------- bank account ----------------

@persistence_guard
async def get_bank_account(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """Get the user's account, creating an empty one on demand."""
    now = utcnow()
    return await db[BANK_ACCOUNTS].find_one_and_update(
        {"userId": user_id},
        {"$setOnInsert": {
            "balance": 0,
            "transactions": [],
            "createdAt": now,
            "lastUpdated": now,
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


@persistence_guard
async def create_bank_account(
    db: AsyncIOMotorDatabase,
    user_id: str,
    account_holder: str,
    initial_deposit: float = 0,
) -> Dict[str, Any]:
    """
    Open the user's account. An empty account created on demand is opened in
    place; an account that already has a number cannot be opened twice.
    """
    if not isinstance(account_holder, str) or not account_holder.strip():
        raise ValidationError("Account holder name is required")
    require_non_negative(initial_deposit, "initial deposit amount")

    existing = await db[BANK_ACCOUNTS].find_one({"userId": user_id})
    if existing and existing.get("accountNumber"):
        raise AlreadyExistsError("Bank account already exists")

    if initial_deposit > 0:
        player = await get_or_create(db, user_id)
        if wallet_rupees(player) < initial_deposit:
            raise InsufficientFundsError("Insufficient rupees for initial deposit")
        await debit_wallet(
            db, user_id, initial_deposit,
            bank_delta=initial_deposit,
            error="Insufficient rupees for initial deposit",
        )

    now = utcnow()
    update: Dict[str, Any] = {
        "$set": {
            "accountNumber": _account_number(),
            "accountHolder": account_holder.strip(),
            "lastUpdated": now,
        },
        "$inc": {"balance": initial_deposit},
        "$setOnInsert": {"createdAt": now},
    }
    if initial_deposit > 0:
        update["$push"] = {"transactions": _bank_transaction(
            "deposit", initial_deposit, f"Initial deposit of ₹{initial_deposit}"
        )}
    else:
        update["$setOnInsert"]["transactions"] = []

    try:
        account = await db[BANK_ACCOUNTS].find_one_and_update(
            {"userId": user_id, "accountNumber": {"$exists": False}},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as e:
        # another request opened it between our read and this write
        if initial_deposit > 0:
            await credit_wallet(db, user_id, initial_deposit, bank_delta=-initial_deposit)
        raise AlreadyExistsError("Bank account already exists") from e

    logger.info("Bank account %s opened for %s", account.get("accountNumber"), user_id)
    await audit_after_mutation(db, user_id)
    return account


@persistence_guard
async def deposit(db: AsyncIOMotorDatabase, user_id: str, amount: float) -> Dict[str, Any]:
    """Move rupees from the wallet into the bank. Returns the updated account."""
    require_positive(amount, "deposit amount")

    player = await get_or_create(db, user_id)
    if wallet_rupees(player) < amount:
        raise InsufficientFundsError("Insufficient rupees")

    await debit_wallet(db, user_id, amount, bank_delta=amount)
    account = await _credit_bank(db, user_id, amount, f"Deposit of ₹{amount}")

    await audit_after_mutation(db, user_id)
    return account


@persistence_guard
async def withdraw(db: AsyncIOMotorDatabase, user_id: str, amount: float) -> Dict[str, Any]:
    """Move money from the bank back into the wallet. Returns the updated account."""
    require_positive(amount, "withdrawal amount")

    await get_or_create(db, user_id)
    account = await db[BANK_ACCOUNTS].find_one({"userId": user_id})
    if not account:
        raise NotFoundError("Bank account not found")
    if account.get("balance", 0) < amount:
        raise InsufficientFundsError("Insufficient bank balance")

    account = await _debit_bank(db, user_id, amount, f"Withdrawal of ₹{amount}")
    await credit_wallet(db, user_id, amount, bank_delta=-amount)

    await audit_after_mutation(db, user_id)
    return account


# ---------------- fixed deposits ----------------

@persistence_guard
async def list_fixed_deposits(db: AsyncIOMotorDatabase, user_id: str) -> List[Dict[str, Any]]:
    """All of the user's deposits; active ones past maturity are reported (and cached) as matured."""
    now = utcnow()
    cursor = db[FIXED_DEPOSITS].find({"userId": user_id}).sort("startDate", -1)
    deposits = [d async for d in cursor]

    newly_matured = []
    for d in deposits:
        if d.get("status") == "active" and as_utc(d["maturityDate"]) <= now:
            d["matured"] = True
            d["status"] = "matured"
            newly_matured.append(d["_id"])

    if newly_matured:
        await db[FIXED_DEPOSITS].update_many(
            {"_id": {"$in": newly_matured}, "status": "active"},
            {"$set": {"matured": True, "status": "matured", "updatedAt": now}},
        )
    return deposits


@persistence_guard
async def create_fixed_deposit(
    db: AsyncIOMotorDatabase,
    user_id: str,
    amount: float,
    duration_days: float,
) -> Dict[str, Any]:
    require_positive(amount, "amount")
    require_positive(duration_days, "duration")

    account = await db[BANK_ACCOUNTS].find_one({"userId": user_id})
    if not account or account.get("balance", 0) < amount:
        raise InsufficientFundsError("Insufficient bank balance")

    rate = interest_rate_for(duration_days)
    account = await _debit_bank(
        db, user_id, amount,
        f"Fixed Deposit creation - ₹{amount} for {duration_days} days",
    )
    await adjust_bank_cache(db, user_id, -amount)

    start = utcnow()
    fixed_deposit = {
        "userId": user_id,
        "accountId": str(account["_id"]),
        "amount": amount,
        "interestRate": rate,
        "startDate": start,
        "duration": duration_days,
        "maturityDate": start + dt.timedelta(days=duration_days),
        "matured": False,
        "status": "active",
        "createdAt": start,
        "updatedAt": start,
    }
    result = await db[FIXED_DEPOSITS].insert_one(fixed_deposit)
    fixed_deposit["_id"] = result.inserted_id

    await audit_after_mutation(db, user_id)
    return fixed_deposit


@persistence_guard
async def claim_fixed_deposit(db: AsyncIOMotorDatabase, user_id: str, deposit_id: str) -> Dict[str, Any]:
    """
    Pay out a matured deposit (principal + interest) into the bank account.
    The status flip is conditional, so a deposit can be claimed at most once.
    """
    oid = require_object_id(deposit_id, "deposit ID")

    fd = await db[FIXED_DEPOSITS].find_one({"_id": oid, "userId": user_id})
    if not fd:
        raise NotFoundError("Fixed deposit not found")
    if fd.get("status") == "claimed":
        raise AlreadyClaimedError("Fixed deposit already claimed")
    if fd.get("status") == "cancelled":
        raise ValidationError("Fixed deposit was cancelled")

    now = utcnow()
    if fd.get("status") != "matured" and as_utc(fd["maturityDate"]) > now:
        raise ValidationError("Fixed deposit not yet matured")

    principal = fd["amount"]
    interest = maturity_interest(principal, fd["interestRate"], fd["duration"])
    total = principal + interest

    result = await db[FIXED_DEPOSITS].update_one(
        {"_id": oid, "status": {"$nin": ["claimed", "cancelled"]}},
        {"$set": {"status": "claimed", "matured": True, "claimedAt": now, "updatedAt": now}},
    )
    if result.modified_count == 0:
        raise AlreadyClaimedError("Fixed deposit already claimed")

    await _credit_bank(
        db, user_id, total,
        f"Fixed Deposit maturity - Principal: ₹{principal}, Interest: ₹{interest}",
    )
    await adjust_bank_cache(db, user_id, total)

    logger.info("Fixed deposit %s claimed by %s: %s + %s", oid, user_id, principal, interest)
    await audit_after_mutation(db, user_id)
    return {"principal": principal, "interest": interest, "total": total}
