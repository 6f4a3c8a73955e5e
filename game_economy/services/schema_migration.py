# game_economy/services/schema_migration.py
"""
Player-state schema migration.

Pure functions only: every function here works on an in-memory player
document and never touches Mongo. The player store calls `migrate` when
`is_outdated` says so and decides whether to persist the result.

Schema generations:
  v0  no schemaVersion, progress tracked by the legacy `starterClaimed`
      flag / "starter-claimed" tutorial marker, no onboarding object
  v1  onboarding object with the Maya sequence flags and onboardingStep
  v2  bank / stock-market completion flags, their client-side aliases,
      mayaPosition, per-building unlocks, hasCompletedTutorial

Each generation has one upgrade function. Every upgrade is idempotent, so
the chain always runs in full: a document stamped current but damaged by
hand still gets repaired, and re-running on migrated output is a no-op.
"""

from __future__ import annotations
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

# Increment when schema changes require migration
CURRENT_SCHEMA_VERSION = 2

LEGACY_STARTER_MARKER = "starter-claimed"

ONBOARDING_STEPS = (
    "not_started",
    "met_maya",
    "at_bank_with_maya",
    "claimed_money",
    "bank_onboarding_completed",
    "reached_stock_market",
)

DEFAULT_MAYA_POSITION = {"x": 7779, "y": 3581}       # spawn
BANK_MAYA_POSITION = {"x": 9415, "y": 6297}          # bank entrance
STOCK_MARKET_MAYA_POSITION = {"x": 2598, "y": 3736}  # stock market entrance

CORE_ONBOARDING_FLAGS = ("hasMetMaya", "hasFollowedMaya", "hasClaimedMoney")
EXTENDED_ONBOARDING_FLAGS = ("hasCompletedBankOnboarding", "hasReachedStockMarket")

# canonical server flag -> client compatibility alias
COMPAT_ALIASES = {
    "hasCompletedBankOnboarding": "bankOnboardingComplete",
    "hasReachedStockMarket": "stockMarketOnboardingComplete",
}

_SYNC_LABELS = {
    "hasCompletedBankOnboarding": "bank onboarding",
    "hasReachedStockMarket": "stock market",
}

REQUIRED_TOP_LEVEL = ("userId", "position", "financial")
REQUIRED_ONBOARDING = (
    "hasMetMaya",
    "hasFollowedMaya",
    "hasClaimedMoney",
    "hasCompletedBankOnboarding",
    "hasReachedStockMarket",
    "onboardingStep",
    "unlockedBuildings",
    "bankOnboardingComplete",
    "stockMarketOnboardingComplete",
)


def default_onboarding() -> Dict[str, Any]:
    """Onboarding state every fresh player starts with."""
    return {
        "hasMetMaya": False,
        "hasFollowedMaya": False,
        "hasClaimedMoney": False,
        "hasCompletedBankOnboarding": False,
        "hasReachedStockMarket": False,
        "onboardingStep": "not_started",
        "unlockedBuildings": {"bank": False, "atm": False, "stockmarket": False},
        "mayaPosition": dict(DEFAULT_MAYA_POSITION),
        "bankOnboardingComplete": False,
        "stockMarketOnboardingComplete": False,
    }


def default_progress(completed_tutorials: List[str] | None = None) -> Dict[str, Any]:
    return {
        "level": 1,
        "experience": 0,
        "unlockedBuildings": ["bank", "stockmarket"],
        "completedTutorials": list(completed_tutorials or []),
    }


@dataclass
class MigrationResult:
    migrated: Dict[str, Any]
    changes: List[str] = field(default_factory=list)
    needs_update: bool = False
    # True when migration blew up and `migrated` is the untouched input
    failed: bool = False


# ---------------- helpers ----------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _missing(d: Dict[str, Any], key: str) -> bool:
    return d.get(key) is None


def schema_version_of(doc: Dict[str, Any]) -> int:
    version = doc.get("schemaVersion")
    return int(version) if _is_number(version) else 0


def is_outdated(doc: Dict[str, Any]) -> bool:
    """True when the document predates CURRENT_SCHEMA_VERSION."""
    return schema_version_of(doc) < CURRENT_SCHEMA_VERSION


def has_legacy_starter_claim(doc: Dict[str, Any]) -> bool:
    """
    Pre-onboarding players recorded the starter claim as a top-level flag or
    as a tutorial marker (under progress, or top-level in the oldest docs).
    """
    if doc.get("starterClaimed") is True:
        return True
    progress = doc.get("progress")
    if isinstance(progress, dict):
        tutorials = progress.get("completedTutorials")
        if isinstance(tutorials, list) and LEGACY_STARTER_MARKER in tutorials:
            return True
    tutorials = doc.get("completedTutorials")
    return isinstance(tutorials, list) and LEGACY_STARTER_MARKER in tutorials


def step_index(step: Any) -> int:
    try:
        return ONBOARDING_STEPS.index(step)
    except ValueError:
        return -1


def advance_step(current: Any, target: str) -> str:
    """Move to `target` only if it is further along; steps never regress."""
    if step_index(target) > step_index(current):
        return target
    return current


def infer_step(onboarding: Dict[str, Any]) -> str:
    """Furthest step the completion flags prove the player has reached."""
    if onboarding.get("hasReachedStockMarket") or onboarding.get("stockMarketOnboardingComplete"):
        return "reached_stock_market"
    if onboarding.get("hasCompletedBankOnboarding") or onboarding.get("bankOnboardingComplete"):
        return "bank_onboarding_completed"
    if onboarding.get("hasClaimedMoney"):
        return "claimed_money"
    if onboarding.get("hasFollowedMaya"):
        return "at_bank_with_maya"
    if onboarding.get("hasMetMaya"):
        return "met_maya"
    return "not_started"


def infer_maya_position(onboarding: Dict[str, Any]) -> Dict[str, int]:
    if onboarding.get("hasReachedStockMarket") or onboarding.get("stockMarketOnboardingComplete"):
        return dict(STOCK_MARKET_MAYA_POSITION)
    if (
        onboarding.get("hasFollowedMaya")
        or onboarding.get("hasClaimedMoney")
        or onboarding.get("hasCompletedBankOnboarding")
        or onboarding.get("bankOnboardingComplete")
    ):
        return dict(BANK_MAYA_POSITION)
    return dict(DEFAULT_MAYA_POSITION)


def _valid_position(pos: Any) -> bool:
    return isinstance(pos, dict) and _is_number(pos.get("x")) and _is_number(pos.get("y"))


# ---------------- rules ----------------

def _stamp_schema_version(doc: Dict[str, Any], changes: List[str]) -> None:
    version = schema_version_of(doc)
    if not version:
        doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
        changes.append("Added schema version tracking")
    elif version < CURRENT_SCHEMA_VERSION:
        doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
        changes.append(f"Updated schema version from {version} to {CURRENT_SCHEMA_VERSION}")


def _upgrade_to_v1(doc: Dict[str, Any], changes: List[str], legacy: bool) -> None:
    """Onboarding object with the Maya sequence."""
    if not isinstance(doc.get("onboarding"), dict):
        onboarding = default_onboarding()
        if legacy:
            onboarding.update(
                hasMetMaya=True,
                hasFollowedMaya=True,
                hasClaimedMoney=True,
                onboardingStep="claimed_money",
            )
            onboarding["unlockedBuildings"]["bank"] = True
        doc["onboarding"] = onboarding
        changes.append("Created onboarding object from legacy data")
        return

    onboarding = doc["onboarding"]
    for flag in CORE_ONBOARDING_FLAGS:
        if _missing(onboarding, flag):
            onboarding[flag] = False
            changes.append(f"Added {flag} field")

    step = onboarding.get("onboardingStep")
    if step is None:
        onboarding["onboardingStep"] = infer_step(onboarding)
        changes.append(f"Added onboardingStep field at '{onboarding['onboardingStep']}'")
    elif step_index(step) < 0:
        onboarding["onboardingStep"] = infer_step(onboarding)
        changes.append(f"Replaced unknown onboardingStep '{step}' with '{onboarding['onboardingStep']}'")


def _upgrade_to_v2(doc: Dict[str, Any], changes: List[str], legacy: bool) -> None:
    """Extended progression flags, client aliases, Maya position, unlocks, tutorial flag."""
    onboarding = doc["onboarding"]

    for flag in EXTENDED_ONBOARDING_FLAGS:
        if _missing(onboarding, flag):
            onboarding[flag] = False
            changes.append(f"Added {flag} field")

    for canonical, alias in COMPAT_ALIASES.items():
        if _missing(onboarding, alias):
            onboarding[alias] = bool(onboarding[canonical])
            changes.append(f"Added {alias} field for client compatibility")

    # completion is permanent: if either side says done, both are done
    for canonical, alias in COMPAT_ALIASES.items():
        if onboarding[canonical] != onboarding[alias]:
            value = bool(onboarding[canonical]) or bool(onboarding[alias])
            onboarding[canonical] = value
            onboarding[alias] = value
            changes.append(f"Synchronized {_SYNC_LABELS[canonical]} fields to: {value}")

    if not _valid_position(onboarding.get("mayaPosition")):
        had_position = onboarding.get("mayaPosition") is not None
        pos = infer_maya_position(onboarding)
        onboarding["mayaPosition"] = pos
        verb = "Replaced malformed" if had_position else "Added"
        changes.append(f"{verb} mayaPosition field at ({pos['x']}, {pos['y']})")

    if not isinstance(onboarding.get("unlockedBuildings"), dict):
        onboarding["unlockedBuildings"] = {}
        changes.append("Initialized unlockedBuildings object")
    buildings = onboarding["unlockedBuildings"]
    if _missing(buildings, "bank"):
        buildings["bank"] = bool(onboarding.get("hasClaimedMoney"))
        changes.append("Backfilled bank unlock status")
    if _missing(buildings, "atm"):
        buildings["atm"] = False
        changes.append("Backfilled ATM unlock status")
    if _missing(buildings, "stockmarket"):
        buildings["stockmarket"] = bool(onboarding.get("hasCompletedBankOnboarding"))
        changes.append("Backfilled stock market unlock status")

    # legacy claimers whose onboarding object disagrees with the legacy flag
    if legacy and not onboarding.get("hasClaimedMoney"):
        onboarding["hasMetMaya"] = True
        onboarding["hasFollowedMaya"] = True
        onboarding["hasClaimedMoney"] = True
        onboarding["onboardingStep"] = advance_step(onboarding.get("onboardingStep"), "claimed_money")
        buildings["bank"] = True
        changes.append("Upgraded legacy starterClaimed player to claimed_money state")

    if doc.get("hasCompletedTutorial") is None:
        doc["hasCompletedTutorial"] = legacy or bool(onboarding.get("hasClaimedMoney"))
        changes.append("Backfilled hasCompletedTutorial field")

    seed = [LEGACY_STARTER_MARKER] if legacy else []
    if not isinstance(doc.get("progress"), dict):
        doc["progress"] = default_progress(seed)
        changes.append("Created missing progress object")
    elif not isinstance(doc["progress"].get("completedTutorials"), list):
        doc["progress"]["completedTutorials"] = list(seed)
        changes.append("Added completedTutorials list")
    elif legacy and LEGACY_STARTER_MARKER not in doc["progress"]["completedTutorials"]:
        # the starter grant guard reads progress.completedTutorials
        doc["progress"]["completedTutorials"].append(LEGACY_STARTER_MARKER)
        changes.append("Carried legacy starter claim into progress.completedTutorials")


UpgradeFn = Callable[[Dict[str, Any], List[str], bool], None]

# (target version, upgrade) in order; a new schema generation appends here
UPGRADES: Tuple[Tuple[int, UpgradeFn], ...] = (
    (1, _upgrade_to_v1),
    (2, _upgrade_to_v2),
)


# ---------------- public API ----------------

def migrate(doc: Dict[str, Any]) -> MigrationResult:
    """
    Upgrade a player document to the current schema, preserving progress.

    Works on a deep copy; the caller's object is never mutated. Never raises:
    anything unexpected degrades to "no change" with `failed=True`.
    """
    try:
        migrated = copy.deepcopy(doc)
        legacy = has_legacy_starter_claim(migrated)
        changes: List[str] = []

        _stamp_schema_version(migrated, changes)
        for _target, upgrade in UPGRADES:
            upgrade(migrated, changes, legacy)

        return MigrationResult(migrated=migrated, changes=changes, needs_update=bool(changes))
    except Exception:
        user_id = doc.get("userId") if isinstance(doc, dict) else None
        logger.exception("Schema migration failed for user %s; leaving document untouched", user_id)
        return MigrationResult(migrated=doc, failed=True)


def log_migration_changes(user_id: str, changes: List[str]) -> None:
    if not changes:
        return
    logger.info("Schema migration for user %s (%d changes)", user_id, len(changes))
    for i, change in enumerate(changes, start=1):
        logger.info("  %d. %s", i, change)


def validate(doc: Dict[str, Any]) -> bool:
    """Check that a (migrated) player document has every required field."""
    try:
        for key in REQUIRED_TOP_LEVEL:
            if not doc.get(key):
                logger.warning("Migration validation failed: missing top-level field %s", key)
                return False

        onboarding = doc.get("onboarding")
        if not isinstance(onboarding, dict):
            logger.warning("Migration validation failed: missing onboarding object")
            return False

        for key in REQUIRED_ONBOARDING:
            if key not in onboarding:
                logger.warning("Migration validation failed: missing onboarding.%s", key)
                return False

        if not _valid_position(onboarding.get("mayaPosition")):
            logger.warning("Migration validation failed: invalid mayaPosition")
            return False

        return True
    except Exception:
        logger.exception("Migration validation error")
        return False
