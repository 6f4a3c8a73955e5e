"""
Player state store.

Loads or lazily creates the one player document per user, runs the schema
migration on read for outdated documents and writes the result back only
when something actually changed.
"""

import logging
from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from game_economy.db import persistence_guard
from game_economy.errors import InsufficientFundsError, NotFoundError, ValidationError
from game_economy.mongo_collections import PLAYER_STATES
from game_economy.services.consistency import audit_user, flag_for_review
from game_economy.services.schema_migration import (
    COMPAT_ALIASES,
    CURRENT_SCHEMA_VERSION,
    LEGACY_STARTER_MARKER,
    ONBOARDING_STEPS,
    advance_step,
    default_onboarding,
    default_progress,
    has_legacy_starter_claim,
    is_outdated,
    log_migration_changes,
    migrate,
    validate,
)
from game_economy.services.upserts import flatten_patch, normalize_doc, utcnow
from game_economy.services.validation import is_number, require_non_negative

logger = logging.getLogger(__name__)

# sections a client may overwrite through PUT player-state
WRITABLE_SECTIONS = {
    "position",
    "settings",
    "inventory",
    "progress",
    "onboarding",
    "hasCompletedTutorial",
}
SETTINGS_KEYS = {"soundEnabled", "musicEnabled", "autoSave"}
RUPEE_OPERATIONS = {"set", "add", "subtract"}


def _player_defaults() -> Dict[str, Any]:
    return {
        "position": {"x": 400, "y": 300, "scene": "main"},
        "financial": {
            "rupees": 0,
            "totalWealth": 0,
            "bankBalance": 0,
            "stockPortfolioValue": 0,
        },
        "inventory": {"items": [], "capacity": 20},
        "progress": default_progress(),
        "onboarding": default_onboarding(),
        "settings": {"soundEnabled": True, "musicEnabled": True, "autoSave": True},
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "hasCompletedTutorial": False,
        "lastUpdated": utcnow(),
    }


def new_player_state(user_id: str) -> Dict[str, Any]:
    """Fresh player document, already at the current schema version."""
    return {"userId": user_id, **_player_defaults()}


@persistence_guard
async def get_or_create(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """
    Get the player's state, creating it on first access.

    Creation goes through an upsert so two first requests racing each other
    still end up with a single document. Outdated documents are migrated
    before being returned.
    """
    state = await db[PLAYER_STATES].find_one_and_update(
        {"userId": user_id},
        {"$setOnInsert": _player_defaults()},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )

    if is_outdated(state):
        state = await _migrate_and_persist(db, state)

    return state


async def _migrate_and_persist(db: AsyncIOMotorDatabase, state: Dict[str, Any]) -> Dict[str, Any]:
    user_id = state.get("userId")
    result = migrate(state)

    if result.failed:
        await flag_for_review(db, user_id, ["schema migration failed"])
        return state

    migrated = result.migrated
    if result.needs_update:
        log_migration_changes(user_id, result.changes)
        # only the sections migration touched; financial fields are never rewritten here
        changed = {
            k: v for k, v in migrated.items()
            if k != "_id" and state.get(k) != v
        }
        changed["lastUpdated"] = utcnow()
        await db[PLAYER_STATES].update_one({"_id": state["_id"]}, {"$set": normalize_doc(changed)})
        migrated["lastUpdated"] = changed["lastUpdated"]

    # schema problems and broken balances end up in the same review flag
    issues = [] if validate(migrated) else ["migrated document failed validation"]
    await audit_user(db, user_id, player=migrated, extra_issues=issues)

    return migrated


@persistence_guard
async def get_player_state(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any] | None:
    """Raw read, no creation and no migration."""
    return await db[PLAYER_STATES].find_one({"userId": user_id})


@persistence_guard
async def update_position(
    db: AsyncIOMotorDatabase,
    user_id: str,
    x: float,
    y: float,
    scene: str = "main",
) -> Dict[str, Any]:
    if not is_number(x) or not is_number(y):
        raise ValidationError("Invalid position")

    position = {"x": x, "y": y, "scene": scene}
    result = await db[PLAYER_STATES].update_one(
        {"userId": user_id},
        {"$set": {"position": position, "lastUpdated": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Player state not found")
    return position


@persistence_guard
async def update_settings(db: AsyncIOMotorDatabase, user_id: str, **changes: Any) -> Dict[str, Any]:
    unknown = set(changes) - SETTINGS_KEYS
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
    if any(not isinstance(v, bool) for v in changes.values()):
        raise ValidationError("Settings values must be booleans")

    update = {f"settings.{k}": v for k, v in changes.items()}
    update["lastUpdated"] = utcnow()
    state = await db[PLAYER_STATES].find_one_and_update(
        {"userId": user_id},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not state:
        raise NotFoundError("Player state not found")
    return state.get("settings", {})


def _onboarding_patch(current: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """
    Completion flags and their client aliases are written as a pair and a
    true on either side (stored or incoming) wins; the step never regresses.
    """
    patch = dict(patch)
    for canonical, alias in COMPAT_ALIASES.items():
        if canonical in patch or alias in patch:
            value = any(
                bool(src.get(key))
                for src in (current, patch)
                for key in (canonical, alias)
            )
            patch[canonical] = value
            patch[alias] = value

    if "onboardingStep" in patch:
        step = patch["onboardingStep"]
        if step not in ONBOARDING_STEPS:
            raise ValidationError(f"Unknown onboarding step: {step}")
        patch["onboardingStep"] = advance_step(current.get("onboardingStep"), step)

    return patch


@persistence_guard
async def update_player_state(db: AsyncIOMotorDatabase, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Merge-write of the client-owned sections of the player document."""
    unknown = set(patch) - WRITABLE_SECTIONS
    if unknown:
        raise ValidationError(f"Fields not writable: {', '.join(sorted(unknown))}")

    current = await get_or_create(db, user_id)

    patch = dict(patch)
    if isinstance(patch.get("onboarding"), dict):
        patch["onboarding"] = _onboarding_patch(current.get("onboarding") or {}, patch["onboarding"])

    # the starter marker is part of the claim guard; a client overwrite must not drop it
    progress = patch.get("progress")
    if isinstance(progress, dict) and isinstance(progress.get("completedTutorials"), list):
        if starter_claimed(current) and LEGACY_STARTER_MARKER not in progress["completedTutorials"]:
            patch["progress"] = {
                **progress,
                "completedTutorials": [*progress["completedTutorials"], LEGACY_STARTER_MARKER],
            }

    update = flatten_patch(normalize_doc(patch))
    if not update:
        return current
    update["lastUpdated"] = utcnow()

    return await db[PLAYER_STATES].find_one_and_update(
        {"userId": user_id},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )


@persistence_guard
async def update_rupees(
    db: AsyncIOMotorDatabase,
    user_id: str,
    rupees: float,
    operation: str = "set",
) -> float:
    """
    Set / add / subtract wallet rupees. Returns the new balance.
    Subtract is guarded so the wallet never goes below zero.
    """
    require_non_negative(rupees, "rupees amount")
    if operation not in RUPEE_OPERATIONS:
        raise ValidationError(f"Unknown operation: {operation}")

    query: Dict[str, Any] = {"userId": user_id}
    if operation == "add":
        update = {"$inc": {"financial.rupees": rupees}, "$set": {"lastUpdated": utcnow()}}
    elif operation == "subtract":
        query["financial.rupees"] = {"$gte": rupees}
        update = {"$inc": {"financial.rupees": -rupees}, "$set": {"lastUpdated": utcnow()}}
    else:
        update = {"$set": {"financial.rupees": rupees, "lastUpdated": utcnow()}}

    state = await db[PLAYER_STATES].find_one_and_update(
        query, update, return_document=ReturnDocument.AFTER
    )
    if state:
        return state["financial"]["rupees"]

    if await db[PLAYER_STATES].find_one({"userId": user_id}) is None:
        raise NotFoundError("Player state not found")
    raise InsufficientFundsError("Insufficient rupees")


def starter_claimed(state: Dict[str, Any]) -> bool:
    # same test the migrator uses, so status, claim and onboarding agree
    return has_legacy_starter_claim(state)


@persistence_guard
async def get_starter_status(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    """Read-only: unknown players are simply reported as not claimed."""
    state = await db[PLAYER_STATES].find_one({"userId": user_id})
    if not state:
        return {"claimed": False, "rupees": 0}
    return {
        "claimed": starter_claimed(state),
        "rupees": (state.get("financial") or {}).get("rupees", 0),
    }


# ---------------- wallet side of ledger transfers ----------------

def wallet_rupees(state: Dict[str, Any] | None) -> float:
    return ((state or {}).get("financial") or {}).get("rupees", 0)


async def debit_wallet(
    db: AsyncIOMotorDatabase,
    user_id: str,
    amount: float,
    *,
    bank_delta: float = 0,
    extra_set: Dict[str, Any] | None = None,
    error: str = "Insufficient rupees",
) -> None:
    """
    Take `amount` out of the wallet. The balance check is part of the update
    filter, so two concurrent debits can never push the wallet below zero.
    `bank_delta` keeps the denormalized financial.bankBalance in step.
    """
    inc = {"financial.rupees": -amount}
    if bank_delta:
        inc["financial.bankBalance"] = bank_delta
    result = await db[PLAYER_STATES].update_one(
        {"userId": user_id, "financial.rupees": {"$gte": amount}},
        {"$inc": inc, "$set": {**(extra_set or {}), "lastUpdated": utcnow()}},
    )
    if result.matched_count == 0:
        raise InsufficientFundsError(error)


async def credit_wallet(
    db: AsyncIOMotorDatabase,
    user_id: str,
    amount: float,
    *,
    bank_delta: float = 0,
    extra_set: Dict[str, Any] | None = None,
) -> None:
    inc = {"financial.rupees": amount}
    if bank_delta:
        inc["financial.bankBalance"] = bank_delta
    await db[PLAYER_STATES].update_one(
        {"userId": user_id},
        {"$inc": inc, "$set": {**(extra_set or {}), "lastUpdated": utcnow()}},
    )


async def adjust_bank_cache(db: AsyncIOMotorDatabase, user_id: str, delta: float) -> None:
    """Bank-only movements (fixed deposits) still update the player's bankBalance cache."""
    await db[PLAYER_STATES].update_one(
        {"userId": user_id},
        {"$inc": {"financial.bankBalance": delta}, "$set": {"lastUpdated": utcnow()}},
    )
