# game_economy/services/upserts.py
from __future__ import annotations
from typing import Dict, Any
import datetime as dt


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Mongo hands back naive datetimes that are really UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _storable(value: Any) -> Any:
    # stored datetimes are naive UTC, the same shape the driver reads back
    if isinstance(value, dt.datetime):
        return as_utc(value).replace(tzinfo=None)
    if isinstance(value, dict):
        return {k: _storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_storable(v) for v in value]
    return value


def normalize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `doc` ready for a $set: naive-UTC datetimes, lists for tuples."""
    return _storable(dict(doc))


def flatten_patch(patch: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Turn a nested patch into dotted $set paths so a partial update never
    wipes sibling fields: {"settings": {"autoSave": False}} ->
    {"settings.autoSave": False}. Lists are set whole.
    """
    out: Dict[str, Any] = {}
    for k, v in patch.items():
        path = f"{prefix}{k}"
        if isinstance(v, dict) and v:
            out.update(flatten_patch(v, prefix=f"{path}."))
        else:
            out[path] = v
    return out
