# game_economy/services/mappers.py
from __future__ import annotations
from typing import Any, Dict, List
import datetime as dt

from bson import ObjectId

from game_economy.services.schema_migration import COMPAT_ALIASES


def to_jsonable(value: Any) -> Any:
    """BSON -> JSON: ObjectId -> str, datetime -> ISO-8601 (UTC), recurse containers."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    return value


def map_document(doc: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if doc is None:
        return None
    out = to_jsonable(dict(doc))
    if "_id" in out:
        out["id"] = out.pop("_id")
    return out


def project_onboarding(onboarding: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clients read both the server flag and its alias; answer both from the
    same value so they can never disagree on the wire.
    """
    out = dict(onboarding)
    for canonical, alias in COMPAT_ALIASES.items():
        value = bool(out.get(canonical)) or bool(out.get(alias))
        out[canonical] = value
        out[alias] = value
    return out


def map_player_state(doc: Dict[str, Any] | None) -> Dict[str, Any] | None:
    out = map_document(doc)
    if out and isinstance(out.get("onboarding"), dict):
        out["onboarding"] = project_onboarding(out["onboarding"])
    return out


def map_documents(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [map_document(d) for d in docs]
