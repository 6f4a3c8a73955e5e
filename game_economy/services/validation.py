# game_economy/services/validation.py
from typing import Any

from bson import ObjectId

from game_economy.errors import ValidationError


def is_number(value: Any) -> bool:
    # bool is an int subclass; True is not a valid amount
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def require_positive(value: Any, name: str = "amount") -> float:
    if not is_number(value) or value <= 0:
        raise ValidationError(f"Invalid {name}: must be a positive number")
    return value


def require_non_negative(value: Any, name: str = "amount") -> float:
    if not is_number(value) or value < 0:
        raise ValidationError(f"Invalid {name}: must be a non-negative number")
    return value


def require_object_id(value: Any, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {name}")
    return ObjectId(value)
